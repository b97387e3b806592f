# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Email channel implementation.

Provides email-specific protocol handling:
- EmailConnector: Connector implementation for email
- EmailChannelListener: IMAP session lifecycle and IDLE/poll detection
- MailboxClient: UID-based IMAP operations
- MessageProcessor: scan passes over unread mail
- EmailResponder: SMTP request construction
- Subject identifier extraction and MIME parsing
"""

from a2ha.email.channel_listener import (
    EmailChannelListener,
    ReconnectExhaustedError,
)
from a2ha.email.connector import EmailConnector
from a2ha.email.listener import (
    IMAPConnectionError,
    IMAPIdleError,
    MailboxClient,
)
from a2ha.email.parsing import (
    InboundMessage,
    ParseError,
    decode_subject,
    extract_content,
    normalize_content,
    parse_message,
)
from a2ha.email.processor import MessageProcessor, ScanResult
from a2ha.email.responder import EmailResponder, SendError
from a2ha.email.subject import extract_task_id, format_subject


__all__ = [
    # channel_listener
    "EmailChannelListener",
    "ReconnectExhaustedError",
    # connector
    "EmailConnector",
    # listener
    "IMAPConnectionError",
    "IMAPIdleError",
    "MailboxClient",
    # parsing
    "InboundMessage",
    "ParseError",
    "decode_subject",
    "extract_content",
    "normalize_content",
    "parse_message",
    # processor
    "MessageProcessor",
    "ScanResult",
    # responder
    "EmailResponder",
    "SendError",
    # subject
    "extract_task_id",
    "format_subject",
]
