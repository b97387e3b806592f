# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Connector registry.

Dispatches on channel config type to create the correct connector and
maps channel tags to the connectors built at startup.  Kept in its own
module so the relay stays channel-agnostic at the module level.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from a2ha.channel import AnswerHandler, ChannelStatus, Connector
from a2ha.config import ServerConfig


logger = logging.getLogger(__name__)


class UnknownChannelError(Exception):
    """Raised when no connector is registered for a channel tag."""


def build_connectors(config: ServerConfig) -> dict[str, Connector]:
    """Create connectors for all configured channels.

    Imports are deferred to avoid pulling in channel dependencies at
    import time.

    Args:
        config: Complete configuration.

    Returns:
        Mapping of channel tag to connector.
    """
    from a2ha.config import EmailChannelConfig, MockChatConfig
    from a2ha.email.connector import EmailConnector
    from a2ha.mock_chat.connector import MockChatConnector

    connectors: dict[str, Connector] = {}
    for tag, channel_config in config.channels.items():
        if isinstance(channel_config, EmailChannelConfig):
            connectors[tag] = EmailConnector(channel_config)
        elif isinstance(channel_config, MockChatConfig):
            connectors[tag] = MockChatConnector(channel_config)
        else:
            raise ValueError(
                f"Unknown channel config type: {type(channel_config).__name__}"
            )
    return connectors


class ConnectorRegistry:
    """Channel tag to connector mapping."""

    def __init__(self, connectors: dict[str, Connector] | None = None) -> None:
        self._connectors: dict[str, Connector] = dict(connectors or {})

    @classmethod
    def from_config(cls, config: ServerConfig) -> ConnectorRegistry:
        """Build one connector per configured channel."""
        return cls(build_connectors(config))

    def register(self, tag: str, connector: Connector) -> None:
        """Add or replace the connector for ``tag``."""
        self._connectors[tag] = connector

    def get(self, tag: str) -> Connector:
        """Return the connector for a channel tag.

        Raises:
            UnknownChannelError: If no connector is registered.
        """
        try:
            return self._connectors[tag]
        except KeyError:
            raise UnknownChannelError(
                f"No connector for channel {tag!r}"
            ) from None

    def __contains__(self, tag: object) -> bool:
        return tag in self._connectors

    def __iter__(self) -> Iterator[str]:
        return iter(self._connectors)

    def __len__(self) -> int:
        return len(self._connectors)

    def statuses(self) -> dict[str, ChannelStatus]:
        """Current listener status per channel."""
        return {tag: c.status for tag, c in self._connectors.items()}

    def start_all(self, handler: AnswerHandler) -> None:
        """Start every listener.

        If a listener fails to start, the ones already started are
        stopped again before the error propagates.

        Args:
            handler: Answer handler shared by all channels.

        Raises:
            ListenerStartError: If a listener cannot start.
        """
        started: list[str] = []
        try:
            for tag, connector in self._connectors.items():
                logger.info("Starting %s listener", tag)
                connector.start_listener(handler)
                started.append(tag)
        except Exception:
            for tag in reversed(started):
                self._stop_one(tag)
            raise

    def stop_all(self) -> None:
        """Stop every listener.  Errors are logged, not raised."""
        for tag in reversed(list(self._connectors)):
            self._stop_one(tag)

    def _stop_one(self, tag: str) -> None:
        try:
            self._connectors[tag].stop_listener()
        except Exception as e:
            logger.exception("Error stopping %s listener: %s", tag, e)
