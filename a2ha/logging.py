# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging setup for a2ha with credential redaction.

Mailbox passwords and notification tokens pass through several layers
(config, IMAP login, webhook headers).  Anything registered with
``SecretFilter`` is masked in every record emitted through the handler
installed by ``configure_logging``.

Usage:
    # Entry points
    from a2ha.logging import configure_logging
    configure_logging(level=logging.INFO)

    # Library modules
    logger = logging.getLogger(__name__)
    log = channel_logger(logger, "email")
    log.info("Scan found %d unread", count)
"""

import logging
import re
from collections.abc import MutableMapping
from typing import Any, ClassVar


DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_REDACTED = "[REDACTED]"


class SecretFilter(logging.Filter):
    """Redacts registered secrets from log records.

    The registry is class-level so that configs constructed anywhere in
    the process feed the same filter instance attached to the handler.
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Rewrite the record in place; never suppresses it."""
        pattern = self._pattern
        if pattern is None:
            return True
        record.msg = pattern.sub(_REDACTED, str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                pattern.sub(_REDACTED, arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True

    @classmethod
    def register_secret(cls, secret: str | None) -> None:
        """Add a value to redact.  Empty values are ignored."""
        if secret:
            cls._secrets.add(secret)
            cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Forget all registered secrets (tests)."""
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        # Longest first so overlapping secrets are fully masked.
        ordered = sorted(cls._secrets, key=len, reverse=True)
        cls._pattern = re.compile("|".join(re.escape(s) for s in ordered))


class ChannelLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the channel tag they belong to."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        channel = (self.extra or {}).get("channel", "?")
        return f"[{channel}] {msg}", kwargs


def channel_logger(logger: logging.Logger, channel: str) -> ChannelLogAdapter:
    """Wrap a module logger with a channel context.

    Args:
        logger: Module-level logger.
        channel: Channel tag (e.g. ``"email"``).

    Returns:
        Adapter that tags every message with the channel.
    """
    return ChannelLogAdapter(logger, {"channel": channel})


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Install a single stream handler on the root logger.

    Args:
        level: Root log level.
        format_string: Record format; ``DEFAULT_FORMAT`` when None.
        add_secret_filter: Attach ``SecretFilter`` to the handler.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(format_string or DEFAULT_FORMAT, DEFAULT_DATEFMT)
    )
    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    # werkzeug and httpx log every request at INFO.
    if level > logging.DEBUG:
        for noisy in ("werkzeug", "httpx"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
