# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""In-process SMTP and IMAP servers for end-to-end email tests.

- SMTP (aiosmtpd) collects the requests the connector sends.
- A minimal IMAP server serves the human's replies to the listener.

Only the commands ``MailboxClient`` uses are implemented: CAPABILITY,
LOGIN, SELECT, UID SEARCH/FETCH/STORE, IDLE/DONE, NOOP and LOGOUT.
Both servers speak plain TCP on 127.0.0.1.
"""

import logging
import re
import select
import socket
import socketserver
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from email.message import EmailMessage, Message

import pytest
from aiosmtpd.controller import Controller
from aiosmtpd.handlers import Message as MessageHandler

from a2ha.config import EmailChannelConfig, ImapConfig, SmtpConfig


logger = logging.getLogger(__name__)

IMAP_USER = "relay@example.com"
IMAP_PASSWORD = "imap_password"

_STORE_FLAGS_RE = re.compile(r"\(([^)]*)\)")


def find_free_port() -> int:
    """Ask the OS for a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_until(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@dataclass
class StoredMessage:
    uid: int
    raw: bytes
    flags: set[str] = field(default_factory=set)


class Mailbox:
    """Thread-safe message list shared by the IMAP handlers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: list[StoredMessage] = []
        self._next_uid = 1

    def add(self, raw: bytes) -> int:
        with self._lock:
            uid = self._next_uid
            self._next_uid += 1
            self._messages.append(StoredMessage(uid=uid, raw=raw))
            return uid

    def count(self) -> int:
        with self._lock:
            return len(self._messages)

    def unseen(self) -> list[int]:
        with self._lock:
            return [m.uid for m in self._messages if "\\Seen" not in m.flags]

    def is_seen(self, uid: int) -> bool:
        with self._lock:
            return any(
                m.uid == uid and "\\Seen" in m.flags for m in self._messages
            )

    def get(self, uid: int) -> StoredMessage | None:
        with self._lock:
            for m in self._messages:
                if m.uid == uid:
                    return m
            return None

    def add_flags(self, uid: int, flags: set[str]) -> bool:
        with self._lock:
            for m in self._messages:
                if m.uid == uid:
                    m.flags |= flags
                    return True
            return False


class _IMAPHandler(socketserver.StreamRequestHandler):
    """One IMAP client session."""

    server: "_IMAPServer"

    def handle(self) -> None:
        self.server.track(self.connection)
        self.selected = False
        self._send("* OK IMAP4rev1 test server ready")
        try:
            while True:
                line = self.rfile.readline()
                if not line:
                    return
                parts = line.decode(errors="replace").strip().split(None, 2)
                if len(parts) < 2:
                    self._send("* BAD Invalid command")
                    continue
                tag, command = parts[0], parts[1].upper()
                args = parts[2] if len(parts) > 2 else ""
                if not self._dispatch(tag, command, args):
                    return
        except OSError as e:
            logger.debug("IMAP session ended: %s", e)

    def _send(self, line: str | bytes) -> None:
        data = line if isinstance(line, bytes) else line.encode() + b"\r\n"
        self.wfile.write(data)
        self.wfile.flush()

    def _dispatch(self, tag: str, command: str, args: str) -> bool:
        mailbox = self.server.mailbox
        if command == "CAPABILITY":
            self._send("* CAPABILITY IMAP4rev1 IDLE")
            self._send(f"{tag} OK CAPABILITY completed")
        elif command == "LOGIN":
            user, _, password = args.partition(" ")
            if user.strip('"') == IMAP_USER and (
                password.strip('"') == IMAP_PASSWORD
            ):
                self._send(f"{tag} OK LOGIN completed")
            else:
                self._send(f"{tag} NO LOGIN failed")
        elif command == "SELECT":
            self.selected = True
            self._send(f"* {mailbox.count()} EXISTS")
            self._send("* FLAGS (\\Seen)")
            self._send(f"{tag} OK [READ-WRITE] SELECT completed")
        elif command == "UID":
            self._uid(tag, args)
        elif command == "IDLE":
            self._idle(tag)
        elif command == "NOOP":
            self._send(f"{tag} OK NOOP completed")
        elif command == "LOGOUT":
            self._send("* BYE logging out")
            self._send(f"{tag} OK LOGOUT completed")
            return False
        else:
            self._send(f"{tag} BAD Unknown command {command}")
        return True

    def _uid(self, tag: str, args: str) -> None:
        mailbox = self.server.mailbox
        sub, _, rest = args.partition(" ")
        sub = sub.upper()
        if not self.selected:
            self._send(f"{tag} NO No mailbox selected")
        elif sub == "SEARCH" and "UNSEEN" in rest.upper():
            uids = " ".join(str(u) for u in mailbox.unseen())
            self._send(f"* SEARCH {uids}".rstrip())
            self._send(f"{tag} OK SEARCH completed")
        elif sub == "FETCH":
            uid = int(rest.split()[0])
            message = mailbox.get(uid)
            if message is not None:
                self._send(
                    f"* {uid} FETCH (UID {uid} BODY[] "
                    f"{{{len(message.raw)}}}\r\n".encode()
                    + message.raw
                    + b")\r\n"
                )
            self._send(f"{tag} OK FETCH completed")
        elif sub == "STORE":
            uid = int(rest.split()[0])
            match = _STORE_FLAGS_RE.search(rest)
            flags = set(match.group(1).split()) if match else set()
            if mailbox.add_flags(uid, flags):
                self._send(f"{tag} OK STORE completed")
            else:
                self._send(f"{tag} NO Message not found")
        else:
            self._send(f"{tag} BAD Unsupported UID command")

    def _idle(self, tag: str) -> None:
        """Push EXISTS when mail arrives until the client sends DONE."""
        mailbox = self.server.mailbox
        known = mailbox.count()
        self._send("+ idling")
        while True:
            readable, _, _ = select.select([self.connection], [], [], 0.05)
            if readable:
                line = self.rfile.readline()
                if not line or line.strip().upper() == b"DONE":
                    break
            count = mailbox.count()
            if count != known:
                known = count
                self._send(f"* {count} EXISTS")
        self._send(f"{tag} OK IDLE terminated")


class _IMAPServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, mailbox: Mailbox) -> None:
        super().__init__(("127.0.0.1", 0), _IMAPHandler)
        self.mailbox = mailbox
        self._connections: list[socket.socket] = []
        self._lock = threading.Lock()

    def track(self, connection: socket.socket) -> None:
        with self._lock:
            self._connections.append(connection)

    def drop_connections(self) -> None:
        """Close every client socket, like a server restart would."""
        with self._lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            try:
                connection.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            connection.close()


class _SMTPHandler(MessageHandler):
    """Collects every delivered message."""

    def __init__(self) -> None:
        super().__init__()
        self.messages: list[Message] = []
        self.received = threading.Event()

    def handle_message(self, message: Message) -> None:
        self.messages.append(message)
        self.received.set()


class FakeMailServer:
    """SMTP outbox plus IMAP inbox on localhost.

    Attributes:
        inbox: Messages served over IMAP.
        smtp_port: Port of the SMTP server.
        imap_port: Port of the IMAP server.
    """

    def __init__(self) -> None:
        self.inbox = Mailbox()
        self._smtp_handler = _SMTPHandler()
        # aiosmtpd's readiness check needs a concrete port, not 0.
        self.smtp_port = find_free_port()
        self._smtp = Controller(
            self._smtp_handler, hostname="127.0.0.1", port=self.smtp_port
        )
        self._imap = _IMAPServer(self.inbox)
        self.imap_port = self._imap.server_address[1]
        self._imap_thread: threading.Thread | None = None

    def start(self) -> None:
        self._smtp.start()
        self._imap_thread = threading.Thread(
            target=self._imap.serve_forever, daemon=True, name="FakeIMAP"
        )
        self._imap_thread.start()

    def stop_imap(self) -> None:
        """Stop accepting IMAP connections and drop the open ones."""
        if self._imap_thread is None:
            return
        self._imap.shutdown()
        self._imap.server_close()
        self._imap.drop_connections()
        self._imap_thread.join(timeout=5)
        self._imap_thread = None

    def stop(self) -> None:
        self._smtp.stop()
        self.stop_imap()

    @property
    def sent(self) -> list[Message]:
        """Messages delivered over SMTP, oldest first."""
        return list(self._smtp_handler.messages)

    def wait_for_sent(self, count: int = 1, timeout: float = 10.0) -> bool:
        return wait_until(lambda: len(self.sent) >= count, timeout)

    def deliver(self, subject: str, body: str) -> int:
        """Put a reply from the human into the inbox.

        Returns:
            The UID of the new message.
        """
        msg = EmailMessage()
        msg["From"] = "Ada <ada@example.com>"
        msg["To"] = IMAP_USER
        msg["Subject"] = subject
        msg.set_content(body)
        return self.inbox.add(msg.as_bytes())


@pytest.fixture
def mail_server() -> Iterator[FakeMailServer]:
    server = FakeMailServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def live_email_config(mail_server: FakeMailServer) -> EmailChannelConfig:
    """Email channel wired to the fake servers with short timings."""
    return EmailChannelConfig(
        smtp=SmtpConfig(
            host="127.0.0.1",
            port=mail_server.smtp_port,
            user=IMAP_USER,
            password="smtp_password",
            require_auth=False,
            timeout_seconds=5.0,
        ),
        imap=ImapConfig(
            host="127.0.0.1",
            port=mail_server.imap_port,
            user=IMAP_USER,
            password=IMAP_PASSWORD,
            tls=False,
            timeout_seconds=5.0,
        ),
        default_recipient="ada@example.com",
        poll_interval_seconds=0.2,
        reconnect_delay_seconds=0,
    )
