# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Task identifiers in email subject lines.

Outgoing requests carry ``Support request: [#<task_id>]`` as subject.
Replies come back with whatever the human's mail client did to it:
``Re:``/``Fwd:`` prefixes, a dropped colon, percent-encoding from web
clients.  The patterns below go from strict to loose and the first one
yielding a valid identifier wins.
"""

import logging
import re
from urllib.parse import unquote


logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "Support request:"

# Ordered most specific first.
TASK_ID_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"(?:(?:Re|Fwd|RE|FWD|Fw):\s*)?Support\s+request:\s*\[#([^\]]+)\]",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:(?:Re|Fwd|RE|FWD|Fw):\s*)?Support\s+request\s*\[#([^\]]+)\]",
        re.IGNORECASE,
    ),
    re.compile(r"Support\s+request:\s*\[#([^\]]+)\]", re.IGNORECASE),
    re.compile(r"Support\s+request\s*\[#([^\]]+)\]", re.IGNORECASE),
    re.compile(r"\[#([^\]]+)\]", re.IGNORECASE),
)

TASK_ID_VALID = re.compile(r"^[a-zA-Z0-9_-]+$")


def format_subject(task_id: str) -> str:
    """Build the subject line for an outgoing request.

    Args:
        task_id: Task identifier.

    Returns:
        ``Support request: [#<task_id>]``.
    """
    return f"{SUBJECT_PREFIX} [#{task_id}]"


def _percent_decode(subject: str) -> str:
    """Percent-decode a subject, returning it unchanged on failure."""
    try:
        return unquote(subject, errors="strict")
    except UnicodeDecodeError:
        logger.debug("Subject is not valid percent-encoding, using raw")
        return subject


def extract_task_id(subject: str) -> str | None:
    """Extract the task identifier from a subject line.

    Args:
        subject: Decoded subject header (may still be percent-encoded).

    Returns:
        The identifier, or None when no pattern yields a valid one.
    """
    if not subject:
        return None

    decoded = _percent_decode(subject)

    for pattern in TASK_ID_PATTERNS:
        # Only the first occurrence of each pattern is a candidate.
        match = pattern.search(decoded)
        if match is None:
            continue
        candidate = match.group(1).strip()
        if TASK_ID_VALID.match(candidate):
            logger.debug(
                "Extracted task ID %s from subject: %.100s",
                candidate,
                decoded,
            )
            return candidate
        logger.debug(
            "Rejected task ID candidate %r (pattern %s)",
            candidate,
            pattern.pattern,
        )

    logger.debug("No task ID found in subject: %.100s", decoded)
    return None
