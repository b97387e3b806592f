# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Team roster: who may be contacted, and on which channels.

The roster is a JSON file::

    {"team": [
        {"name": "Ada", "role": "Support",
         "channels": [{"type": "email", "contactInfo": "ada@example.com"}]}
    ]}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from a2ha.config import ConfigError


logger = logging.getLogger(__name__)


class TeamMemberNotFoundError(Exception):
    """Raised when no team member matches a channel and contact."""

    def __init__(self, channel: str, contact_info: str) -> None:
        self.channel = channel
        self.contact_info = contact_info
        super().__init__(
            f'No team member found with channel "{channel}" and '
            f'contact info "{contact_info}"'
        )


@dataclass(frozen=True)
class ContactChannel:
    """One way to reach a team member."""

    type: str
    contact_info: str


@dataclass(frozen=True)
class TeamMember:
    """A human who can be asked for help.

    Attributes:
        name: Display name.
        role: Role or responsibilities.
        channels: Channels the member can be reached on.
        extra: Any further fields from the roster file, kept verbatim.
    """

    name: str
    role: str = ""
    channels: tuple[ContactChannel, ...] = ()
    extra: tuple[tuple[str, Any], ...] = ()

    def reachable_on(self, channel: str, contact_info: str) -> bool:
        return any(
            c.type == channel and c.contact_info == contact_info
            for c in self.channels
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **dict(self.extra),
            "name": self.name,
            "role": self.role,
            "channels": [
                {"type": c.type, "contactInfo": c.contact_info}
                for c in self.channels
            ],
        }


def _parse_member(raw: Any, index: int) -> TeamMember:
    if not isinstance(raw, dict):
        raise ConfigError(f"team[{index}] must be an object")
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"team[{index}].name must be a non-empty string")

    channels: list[ContactChannel] = []
    for j, channel in enumerate(raw.get("channels") or []):
        if (
            not isinstance(channel, dict)
            or not isinstance(channel.get("type"), str)
            or not isinstance(channel.get("contactInfo"), str)
        ):
            raise ConfigError(
                f"team[{index}].channels[{j}] needs string 'type' and "
                f"'contactInfo'"
            )
        channels.append(
            ContactChannel(
                type=channel["type"], contact_info=channel["contactInfo"]
            )
        )

    extra = tuple(
        (k, v) for k, v in raw.items() if k not in ("name", "role", "channels")
    )
    return TeamMember(
        name=name,
        role=str(raw.get("role") or ""),
        channels=tuple(channels),
        extra=extra,
    )


class TeamRoster:
    """Immutable list of team members."""

    def __init__(self, members: list[TeamMember] | None = None) -> None:
        self._members = tuple(members or ())

    @classmethod
    def from_dict(cls, raw: Any) -> TeamRoster:
        """Build a roster from the decoded JSON document.

        Raises:
            ConfigError: If the document is malformed.
        """
        if not isinstance(raw, dict) or not isinstance(raw.get("team"), list):
            raise ConfigError(
                "Team roster must be an object with a 'team' list"
            )
        return cls([_parse_member(m, i) for i, m in enumerate(raw["team"])])

    @classmethod
    def load(cls, path: Path) -> TeamRoster:
        """Load the roster file.

        Raises:
            ConfigError: If the file is missing or malformed.
        """
        try:
            raw = json.loads(path.read_text())
        except FileNotFoundError as e:
            raise ConfigError(f"Team roster not found: {path}") from e
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read team roster {path}: {e}") from e
        roster = cls.from_dict(raw)
        logger.info("Loaded %d team member(s) from %s", len(roster), path)
        return roster

    @property
    def members(self) -> tuple[TeamMember, ...]:
        return self._members

    def __len__(self) -> int:
        return len(self._members)

    def find_member(self, channel: str, contact_info: str) -> TeamMember:
        """Return the member reachable at ``contact_info`` on ``channel``.

        Raises:
            TeamMemberNotFoundError: If nobody matches.
        """
        for member in self._members:
            if member.reachable_on(channel, contact_info):
                return member
        raise TeamMemberNotFoundError(channel, contact_info)

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the roster file format."""
        return {"team": [m.to_dict() for m in self._members]}
