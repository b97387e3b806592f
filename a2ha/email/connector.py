# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Email connector: outbound requests and inbound answers.

Wraps ``EmailResponder`` (SMTP) and ``EmailChannelListener`` (IMAP)
behind the shared ``Connector`` capability.
"""

from __future__ import annotations

import logging
from typing import Any

from a2ha.channel import AnswerHandler, ChannelStatus
from a2ha.config import CHANNEL_EMAIL, EmailChannelConfig, parse_email_channel
from a2ha.email.channel_listener import EmailChannelListener
from a2ha.email.responder import EmailResponder, SendError


logger = logging.getLogger(__name__)


class EmailConnector:
    """Connector implementation for email (SMTP out, IMAP in)."""

    def __init__(
        self,
        config: EmailChannelConfig,
        *,
        responder: EmailResponder | None = None,
        listener: EmailChannelListener | None = None,
    ) -> None:
        """Initialize connector.

        Args:
            config: Validated email channel configuration.
            responder: SMTP sender.  Built from the config if None.
            listener: IMAP listener.  Built from the config if None.
        """
        self._config = config
        self._responder = responder or EmailResponder(
            config.smtp, signature=config.signature
        )
        self._listener = listener or EmailChannelListener(config)

    @classmethod
    def from_dict(cls, raw: dict) -> EmailConnector:
        """Create a connector from an unresolved config mapping.

        Raises:
            ConfigError: If either direction is misconfigured.
        """
        return cls(parse_email_channel(raw))

    @property
    def channel_type(self) -> str:
        """Return the channel tag."""
        return CHANNEL_EMAIL

    @property
    def config(self) -> EmailChannelConfig:
        """Email channel configuration."""
        return self._config

    @property
    def listener(self) -> EmailChannelListener:
        """Listener for lifecycle inspection."""
        return self._listener

    @property
    def responder(self) -> EmailResponder:
        """Expose responder for low-level SMTP access."""
        return self._responder

    @property
    def status(self) -> ChannelStatus:
        """Current listener status."""
        return self._listener.status

    def send(
        self,
        task_id: str,
        destination: str,
        message: str,
        options: dict[str, Any] | None = None,
    ) -> None:
        """Send a request email to ``destination``.

        Raises:
            SendError: If delivery fails.
        """
        self._responder.send(task_id, destination, message, options)

    def send_email(
        self,
        task_id: str,
        message: str,
        options: dict[str, Any] | None = None,
    ) -> None:
        """Send a request email to ``options["to"]`` or the default.

        Args:
            task_id: Task identifier embedded in the subject.
            message: Body text.
            options: Envelope overrides; ``to`` selects the recipient.

        Raises:
            SendError: If no recipient is known or delivery fails.
        """
        options = dict(options or {})
        destination = options.pop("to", None) or self._config.default_recipient
        if not destination:
            raise SendError(task_id, "no recipient configured")
        self.send(task_id, destination, message, options)

    def start_email_listener(self, handler: AnswerHandler) -> None:
        """Start the inbound listener.

        Raises:
            ListenerAlreadyRunningError: If the listener is active.
            ListenerStartError: If the mailbox cannot be reached.
        """
        self._listener.start(handler)

    def stop_email_listener(self) -> None:
        """Stop the inbound listener.  Idempotent."""
        self._listener.stop()

    def start_listener(self, handler: AnswerHandler) -> None:
        """Alias of ``start_email_listener``."""
        self.start_email_listener(handler)

    def stop_listener(self) -> None:
        """Alias of ``stop_email_listener``."""
        self.stop_email_listener()
