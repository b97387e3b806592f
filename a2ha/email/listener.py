# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""IMAP mailbox session.

``MailboxClient`` owns one authenticated IMAP connection: connect with
retries, UID-based search/fetch/flag operations, and the IDLE
primitives the listener thread uses as its push trigger.  All message
operations address messages by UID so identities survive reconnects.
"""

import imaplib
import logging
import os
import select
import ssl
import time

from a2ha.config import ImapConfig


logger = logging.getLogger(__name__)

#: RFC 2177 recommends re-issuing IDLE at least every 29 minutes.
MAX_IDLE_SECONDS = 29 * 60


class IMAPIdleError(Exception):
    """Raised when an IMAP IDLE operation fails."""


class IMAPConnectionError(Exception):
    """Raised when the IMAP connection or a mailbox command fails."""


class MailboxClient:
    """Single IMAP session with UID operations and IDLE support.

    Attributes:
        config: Mailbox configuration.
        connection: Active IMAP connection (None when disconnected).
    """

    def __init__(self, config: ImapConfig) -> None:
        """Initialize the client without connecting.

        Args:
            config: Mailbox configuration.
        """
        self.config = config
        self.connection: imaplib.IMAP4 | None = None
        self._idle_tag: str | None = None

        # Writing to _wake_write wakes select() in idle_wait().
        self._wake_read: int | None = None
        self._wake_write: int | None = None
        self._ensure_wake_pipe()

        logger.debug("Initialized mailbox client for %s", config.host)

    def _ensure_wake_pipe(self) -> None:
        if self._wake_read is not None:
            return
        self._wake_read, self._wake_write = os.pipe()
        os.set_blocking(self._wake_read, False)
        os.set_blocking(self._wake_write, False)

    def _open(self) -> imaplib.IMAP4:
        timeout = self.config.timeout_seconds
        if not self.config.tls:
            return imaplib.IMAP4(self.config.host, self.config.port, timeout)
        context = ssl.create_default_context()
        if not self.config.tls_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return imaplib.IMAP4_SSL(
            self.config.host,
            self.config.port,
            ssl_context=context,
            timeout=timeout,
        )

    def connect(self, max_retries: int = 3) -> None:
        """Connect, log in and select the mailbox.

        Args:
            max_retries: Maximum connection attempts.  Attempts after
                the first are preceded by an exponential sleep (1s, 2s,
                ...).

        Raises:
            IMAPConnectionError: If every attempt fails.
        """
        self._ensure_wake_pipe()
        for attempt in range(1, max_retries + 1):
            try:
                logger.debug(
                    "Connecting to IMAP %s:%d (attempt %d/%d)",
                    self.config.host,
                    self.config.port,
                    attempt,
                    max_retries,
                )
                connection = self._open()
                try:
                    connection.login(self.config.user, self.config.password)
                    status, data = connection.select(self.config.mailbox)
                    if status != "OK":
                        raise imaplib.IMAP4.error(
                            f"SELECT {self.config.mailbox} failed: {data!r}"
                        )
                except Exception:
                    _quiet_shutdown(connection)
                    raise
                self.connection = connection
                logger.info(
                    "Connected to IMAP server %s (IDLE %s)",
                    self.config.host,
                    "supported" if self.supports_idle else "unsupported",
                )
                return

            except (imaplib.IMAP4.error, OSError) as e:
                logger.warning(
                    "IMAP connection attempt %d/%d failed: %s",
                    attempt,
                    max_retries,
                    e,
                )
                if attempt < max_retries:
                    sleep_time = 2 ** (attempt - 1)
                    logger.debug("Retrying in %ds...", sleep_time)
                    time.sleep(sleep_time)
                else:
                    raise IMAPConnectionError(
                        f"Failed to connect after {max_retries} attempts: {e}"
                    ) from e

    @property
    def is_connected(self) -> bool:
        """Whether a session is open."""
        return self.connection is not None

    @property
    def supports_idle(self) -> bool:
        """Whether the server advertised the IDLE capability."""
        if self.connection is None:
            return False
        return "IDLE" in self.connection.capabilities

    def _require_connection(self) -> imaplib.IMAP4:
        if self.connection is None:
            raise IMAPConnectionError("Not connected to IMAP server")
        return self.connection

    def search_unseen(self) -> list[str]:
        """Return UIDs of unread messages in server order.

        Raises:
            IMAPConnectionError: If not connected or the search fails.
        """
        connection = self._require_connection()
        try:
            status, data = connection.uid("SEARCH", None, "UNSEEN")
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(f"IMAP search failed: {e}") from e
        if status != "OK":
            raise IMAPConnectionError(f"IMAP search failed: {status}")
        if not data or not data[0]:
            return []
        return [uid.decode() for uid in data[0].split()]

    def fetch_message(self, uid: str) -> bytes | None:
        """Fetch the full message without setting ``\\Seen``.

        Args:
            uid: Message UID.

        Returns:
            Raw message bytes, or None if the server returned no body
            (e.g. the message was expunged meanwhile).

        Raises:
            IMAPConnectionError: If not connected or the fetch fails.
        """
        connection = self._require_connection()
        try:
            status, data = connection.uid("FETCH", uid, "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(
                f"Failed to fetch message {uid}: {e}"
            ) from e
        if status != "OK":
            raise IMAPConnectionError(
                f"Failed to fetch message {uid}: {status}"
            )

        # Literal responses arrive as (envelope, body) tuples.
        for item in data:
            if isinstance(item, tuple) and len(item) == 2:
                body = item[1]
                if isinstance(body, bytes):
                    return body
                logger.warning(
                    "Unexpected message body type for UID %s: %s",
                    uid,
                    type(body).__name__,
                )
        return None

    def mark_seen(self, uid: str) -> bool:
        """Flag a message as read.

        Returns:
            True if the server accepted the flag change.

        Raises:
            IMAPConnectionError: If not connected or the store fails.
        """
        connection = self._require_connection()
        try:
            status, _ = connection.uid("STORE", uid, "+FLAGS", "(\\Seen)")
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(
                f"Failed to mark message {uid} as read: {e}"
            ) from e
        if status != "OK":
            logger.warning(
                "Mark as read returned status %s for message %s",
                status,
                uid,
            )
            return False
        logger.debug("Marked message %s as read", uid)
        return True

    def disconnect(self) -> None:
        """Log out and drop the connection.  Safe when disconnected."""
        connection = self.connection
        if connection is None:
            return
        self.connection = None
        self._idle_tag = None
        try:
            connection.logout()
            logger.debug("Disconnected from IMAP server")
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug("Error during IMAP logout: %s", e)
            _quiet_shutdown(connection)

    def wake(self) -> None:
        """Wake a blocking ``idle_wait()`` from another thread.

        Only the wake pipe is written; the socket stays usable so the
        listener thread can leave IDLE and log out cleanly.
        """
        if self._wake_write is None:
            return
        try:
            os.write(self._wake_write, b"x")
        except OSError:
            # Pipe buffer full means a wake-up is already pending.
            pass

    def close(self) -> None:
        """Disconnect and release the wake pipe."""
        self.disconnect()
        for fd in (self._wake_read, self._wake_write):
            if fd is not None:
                try:
                    os.close(fd)
                except OSError:
                    pass
        self._wake_read = None
        self._wake_write = None
        logger.debug("Mailbox client closed")

    def _drain_wake_pipe(self) -> bool:
        if self._wake_read is None:
            return False
        try:
            return bool(os.read(self._wake_read, 1024))
        except BlockingIOError:
            return False

    def idle_start(self, skip: set[str] | frozenset[str] = frozenset()) -> bool:
        """Enter IDLE unless unread mail is already waiting.

        A message can arrive between the last scan and the IDLE command;
        IDLE would not report it.  Searching first closes that window.
        UIDs in ``skip`` were already considered by the last scan and
        deliberately left unread, so they do not count as pending.

        Args:
            skip: UIDs to ignore in the pre-IDLE check.

        Returns:
            True if new unread messages are pending (IDLE NOT entered),
            False if IDLE was entered.

        Raises:
            IMAPConnectionError: If not connected or the search fails.
            IMAPIdleError: If the server rejects IDLE.
        """
        connection = self._require_connection()

        pending = [uid for uid in self.search_unseen() if uid not in skip]
        if pending:
            logger.debug(
                "Skipping IDLE: %d unseen messages pending", len(pending)
            )
            return True

        try:
            self._idle_tag = connection._new_tag().decode()
            connection.send(f"{self._idle_tag} IDLE\r\n".encode())
            response = connection.readline()
        except (imaplib.IMAP4.error, OSError) as e:
            self._idle_tag = None
            raise IMAPIdleError(f"Failed to enter IDLE mode: {e}") from e

        if not response.startswith(b"+"):
            self._idle_tag = None
            raise IMAPIdleError(
                f"IDLE not accepted: {response.decode(errors='replace')}"
            )

        logger.debug("Entered IDLE mode with tag %s", self._idle_tag)
        return False

    def idle_wait(self, timeout: float) -> bool:
        """Block until the server reports a change, a wake-up, or timeout.

        Args:
            timeout: Maximum seconds to wait (capped at 29 minutes).

        Returns:
            True if the server sent a notification, False on timeout or
            wake-up.

        Raises:
            IMAPConnectionError: If not connected.
            IMAPIdleError: If the socket fails or the server hangs up.
        """
        connection = self._require_connection()
        timeout = min(timeout, MAX_IDLE_SECONDS)

        try:
            sock = connection.socket()
            watch: list = [sock]
            if self._wake_read is not None:
                watch.append(self._wake_read)

            readable, _, _ = select.select(watch, [], [], timeout)

            if self._wake_read is not None and self._wake_read in readable:
                self._drain_wake_pipe()
                logger.debug("IDLE wait woken up")
                return False

            if sock in readable:
                line = connection.readline()
                if not line:
                    raise IMAPIdleError("Server closed connection during IDLE")
                logger.debug(
                    "IDLE notification: %s",
                    line.decode(errors="replace").strip(),
                )
                return True

            logger.debug("IDLE timeout after %.1f seconds", timeout)
            return False

        except OSError as e:
            raise IMAPIdleError(f"IDLE wait error: {e}") from e

    def idle_done(self) -> None:
        """Leave IDLE mode.

        Sends DONE and drains untagged responses (e.g. ``* 3 EXISTS``)
        until the tagged completion arrives.

        Raises:
            IMAPConnectionError: If not connected.
            IMAPIdleError: If the exchange fails.
        """
        connection = self._require_connection()
        tag = self._idle_tag.encode() if self._idle_tag else b""

        try:
            connection.send(b"DONE\r\n")
            # Bounded so a misbehaving server cannot pin the thread.
            for _ in range(100):
                response = connection.readline()
                if not response:
                    raise IMAPIdleError("Server closed connection after IDLE")
                text = response.decode(errors="replace").strip()

                if response.startswith(b"*"):
                    logger.debug("Draining untagged response: %s", text)
                    continue

                if tag and response.startswith(tag):
                    if b" OK" in response.upper():
                        logger.debug("Exited IDLE mode")
                    else:
                        logger.warning(
                            "IDLE completed with non-OK status: %s", text
                        )
                    return

                logger.warning("Unexpected IDLE response: %s", text)
                return

        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPIdleError(f"Failed to exit IDLE mode: {e}") from e
        finally:
            self._idle_tag = None


def _quiet_shutdown(connection: imaplib.IMAP4) -> None:
    """Close a connection that will not be logged out."""
    try:
        connection.shutdown()
    except OSError:
        pass
