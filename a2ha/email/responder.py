# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Outbound email over SMTP.

``EmailResponder.send`` delivers one request to a human.  The subject is
always derived from the task identifier so the reply can be correlated;
caller options are merged over the base envelope but cannot replace the
subject.  Failures are raised once, without retry.
"""

import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid, parseaddr
from typing import Any

from a2ha.config import SmtpConfig
from a2ha.email.subject import format_subject


logger = logging.getLogger(__name__)

# Pattern to extract domain from an email address.
_EMAIL_DOMAIN_RE = re.compile(r"@([\w.-]+)")

#: Option keys merged over the base envelope.
ENVELOPE_KEYS = frozenset(
    {"from", "to", "cc", "bcc", "reply_to", "text", "html", "headers"}
)


class SendError(Exception):
    """Raised when an outbound email cannot be delivered.

    Attributes:
        task_id: Task the email belonged to.
        cause: Underlying error (or description).
    """

    def __init__(self, task_id: str, cause: BaseException | str) -> None:
        self.task_id = task_id
        self.cause = cause
        super().__init__(f"Failed to send email for task {task_id}: {cause}")


def _extract_domain(address: str) -> str:
    """Domain of an address (``"localhost"`` if there is none)."""
    _, addr = parseaddr(address)
    match = _EMAIL_DOMAIN_RE.search(addr)
    return match.group(1) if match else "localhost"


def _address_list(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def append_signature(text: str, signature: str) -> str:
    """Append the automation footer to a message body."""
    if not signature:
        return text
    return f"{text}\n\n---\n{signature}"


class EmailResponder:
    """SMTP sender for task requests.

    Attributes:
        config: SMTP configuration.
        signature: Footer appended to every body (empty for none).
    """

    def __init__(self, config: SmtpConfig, signature: str = "") -> None:
        self.config = config
        self.signature = signature
        logger.debug("Initialized email responder for %s", config.host)

    def build_envelope(
        self,
        destination: str,
        text: str,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Merge caller options over the base envelope.

        Args:
            destination: Recipient address.
            text: Message body.
            options: Caller overrides (see ``ENVELOPE_KEYS``).

        Returns:
            Envelope mapping without a subject.
        """
        envelope: dict[str, Any] = {
            "from": self.config.sender,
            "to": destination,
            "text": text,
        }
        for key, value in (options or {}).items():
            if key == "subject":
                logger.warning("Ignoring subject override %r", value)
            elif key in ENVELOPE_KEYS:
                envelope[key] = value
            else:
                logger.warning("Ignoring unknown email option %r", key)
        return envelope

    def build_message(
        self,
        task_id: str,
        destination: str,
        text: str,
        options: dict[str, Any] | None = None,
    ) -> MIMEText | MIMEMultipart:
        """Build the MIME message for a task request.

        Args:
            task_id: Task identifier (embedded in the subject).
            destination: Recipient address.
            text: Message body.
            options: Caller overrides.

        Returns:
            Message ready for ``send_message``.
        """
        envelope = self.build_envelope(destination, text, options)
        body = append_signature(str(envelope["text"]), self.signature)

        msg: MIMEText | MIMEMultipart
        if envelope.get("html"):
            msg = MIMEMultipart("alternative")
            msg.attach(MIMEText(body, "plain", "utf-8"))
            msg.attach(MIMEText(str(envelope["html"]), "html", "utf-8"))
        else:
            msg = MIMEText(body, "plain", "utf-8")

        extra_headers = envelope.get("headers") or {}
        if not isinstance(extra_headers, dict):
            raise TypeError("headers option must be a mapping")
        for name, value in extra_headers.items():
            if str(name).lower() == "subject":
                logger.warning("Ignoring Subject in headers option")
                continue
            msg[str(name)] = str(value)

        msg["From"] = str(envelope["from"])
        msg["To"] = _address_list(envelope["to"])
        if envelope.get("cc"):
            msg["Cc"] = _address_list(envelope["cc"])
        # send_message() uses Bcc for recipients and strips it.
        if envelope.get("bcc"):
            msg["Bcc"] = _address_list(envelope["bcc"])
        if envelope.get("reply_to"):
            msg["Reply-To"] = _address_list(envelope["reply_to"])
        msg["Subject"] = format_subject(task_id)
        msg["Message-ID"] = make_msgid(
            idstring=f"a2ha.{task_id}",
            domain=_extract_domain(str(envelope["from"])),
        )
        return msg

    def send(
        self,
        task_id: str,
        destination: str,
        text: str,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Send a task request.

        Args:
            task_id: Task identifier.
            destination: Recipient address.
            text: Message body.
            options: Caller overrides merged over the envelope.

        Returns:
            Message-ID of the sent email.

        Raises:
            SendError: If building or transmitting the message fails.
        """
        try:
            msg = self.build_message(task_id, destination, text, options)
        except (TypeError, ValueError) as e:
            raise SendError(task_id, e) from e

        config = self.config
        logger.debug("Sending email to %s: %s", msg["To"], msg["Subject"])
        try:
            smtp: smtplib.SMTP
            if config.secure:
                smtp = smtplib.SMTP_SSL(
                    config.host, config.port, timeout=config.timeout_seconds
                )
            else:
                smtp = smtplib.SMTP(
                    config.host, config.port, timeout=config.timeout_seconds
                )
            with smtp as server:
                if not config.secure:
                    server.ehlo()
                    # Only use STARTTLS if the server supports it
                    if server.has_extn("STARTTLS"):
                        server.starttls()
                        server.ehlo()
                if config.require_auth:
                    server.login(config.user, config.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email for task %s: %s", task_id, e)
            raise SendError(task_id, e) from e

        logger.info("Sent email for task %s to %s", task_id, msg["To"])
        return str(msg["Message-ID"])
