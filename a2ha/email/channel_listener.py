# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Email listener: session lifecycle and new-message detection.

Wraps ``MailboxClient`` (IMAP operations) with a background thread that
waits for the push trigger (IMAP IDLE) or the poll interval, runs a scan
pass for each trigger, and reconnects with a fixed delay when the
transport fails.

Scans run only on the listener thread, so a push notification and a
poll tick that fire together collapse into a single pass.
"""

from __future__ import annotations

import logging
import threading

from a2ha.channel import (
    ACTIVE_STATES,
    AnswerHandler,
    ChannelStatus,
    ListenerAlreadyRunningError,
    ListenerStartError,
    SessionState,
)
from a2ha.config import EmailChannelConfig
from a2ha.email.listener import (
    IMAPConnectionError,
    IMAPIdleError,
    MailboxClient,
)
from a2ha.email.processor import MessageProcessor
from a2ha.logging import channel_logger


logger = logging.getLogger(__name__)

#: Seconds ``stop()`` waits for the listener thread.
STOP_JOIN_TIMEOUT = 10.0

#: Connection attempts made by ``start()`` before giving up.
START_CONNECT_RETRIES = 3


class ReconnectExhaustedError(Exception):
    """Raised when the reconnect ceiling is reached.

    Attributes:
        attempts: Number of failed reconnect attempts.
        last_error: Error from the last attempt (or the triggering
            transport failure if no attempt produced one).
    """

    def __init__(
        self, attempts: int, last_error: BaseException | None
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"IMAP reconnection failed after {attempts} attempts: "
            f"{last_error}"
        )


class _ListenerStopped(Exception):
    """Sentinel raised when stop is requested during a reconnect wait."""


class EmailChannelListener:
    """Owns the mailbox session and the listener thread.

    State machine::

        disconnected -> connecting -> ready
        ready -> degraded            (transport failure)
        degraded -> connecting       (reconnect attempt)
        connecting -> ready          (reconnected, counter reset)
        connecting -> closed         (retry ceiling reached)
        ready -> closed              (stop)
    """

    def __init__(
        self,
        config: EmailChannelConfig,
        client: MailboxClient | None = None,
    ) -> None:
        """Initialize listener.

        Args:
            config: Email channel configuration.
            client: Mailbox client.  If None, one is created from the
                config.
        """
        self._config = config
        self._client = client or MailboxClient(config.imap)
        self._log = channel_logger(logger, "email")
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._processor: MessageProcessor | None = None
        self._state = SessionState.DISCONNECTED
        self._status = ChannelStatus(state=SessionState.DISCONNECTED)
        self._reconnect_attempts = 0
        self._terminal_error: ReconnectExhaustedError | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def status(self) -> ChannelStatus:
        """Current status including a human-readable message."""
        return self._status

    @property
    def reconnect_attempts(self) -> int:
        """Consecutive failed reconnect attempts so far."""
        return self._reconnect_attempts

    @property
    def terminal_error(self) -> ReconnectExhaustedError | None:
        """Error that closed the listener, if it gave up reconnecting."""
        return self._terminal_error

    def _set_state(
        self,
        state: SessionState,
        message: str = "",
        error: BaseException | None = None,
    ) -> None:
        self._state = state
        self._status = ChannelStatus(
            state=state,
            message=message,
            error_type=type(error).__name__ if error else None,
        )
        self._log.debug("Session state: %s %s", state.value, message)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, handler: AnswerHandler) -> None:
        """Connect and start the listener thread.

        The initial connection is synchronous (with retries).  The first
        scan pass runs on the listener thread right after it starts.

        Args:
            handler: Answer callback, ``handler(task_id, content)``.

        Raises:
            ListenerAlreadyRunningError: If a session is active.
            ListenerStartError: If the initial connection fails.
        """
        with self._lock:
            thread_alive = self._thread is not None and self._thread.is_alive()
            if self._state in ACTIVE_STATES or thread_alive:
                raise ListenerAlreadyRunningError(
                    "Email listener is already running"
                )
            self._stop_event = threading.Event()
            self._reconnect_attempts = 0
            self._terminal_error = None
            self._set_state(SessionState.CONNECTING, "Connecting to IMAP")

        imap = self._config.imap
        self._log.info("Connecting to IMAP %s:%d", imap.host, imap.port)
        try:
            self._client.connect(max_retries=START_CONNECT_RETRIES)
        except IMAPConnectionError as e:
            self._set_state(
                SessionState.DISCONNECTED, "Initial connection failed", e
            )
            raise ListenerStartError(
                f"Failed to start email listener: {e}"
            ) from e

        with self._lock:
            stop_event = self._stop_event
            if stop_event.is_set():
                # stop() ran while connecting.
                self._client.close()
                self._set_state(SessionState.CLOSED, "Stopped")
                self._log.info("Email listener stopped during startup")
                return

            self._processor = MessageProcessor(
                self._config,
                self._client,
                handler,
                should_stop=stop_event.is_set,
            )
            self._set_state(SessionState.READY)

            self._thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                daemon=True,
                name=f"EmailListener-{imap.host}",
            )
            self._thread.start()

        mode = "IDLE + polling" if self._uses_idle() else "polling"
        self._log.info(
            "Email listener started (%s, every %.1fs)",
            mode,
            self._config.poll_interval_seconds,
        )

    def stop(self) -> None:
        """Stop the listener.  Idempotent.

        Cancels the poll wait and wakes IDLE.  A message whose handler
        is already running is finished and flagged read; no further
        messages are started.
        """
        with self._lock:
            was_active = self._state in ACTIVE_STATES
            thread = self._thread
            self._stop_event.set()
        self._client.wake()

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=STOP_JOIN_TIMEOUT)
            if thread.is_alive():
                self._log.warning(
                    "Listener thread did not terminate within %.0fs",
                    STOP_JOIN_TIMEOUT,
                )
            else:
                with self._lock:
                    if self._thread is thread:
                        self._thread = None
                self._client.close()

        if was_active:
            self._set_state(SessionState.CLOSED, "Stopped")
            self._log.info("Email listener stopped")

    # ------------------------------------------------------------------
    # Listener thread
    # ------------------------------------------------------------------

    def _uses_idle(self) -> bool:
        return self._config.use_idle and self._client.supports_idle

    def _run(self, stop_event: threading.Event) -> None:
        try:
            self._listen(stop_event)
        except ReconnectExhaustedError as e:
            self._terminal_error = e
            self._set_state(SessionState.CLOSED, str(e), e.last_error)
            self._log.critical("%s", e)
        except _ListenerStopped:
            pass
        except Exception as e:
            self._set_state(SessionState.CLOSED, f"Listener crashed: {e}", e)
            self._log.exception("Listener thread crashed: %s", e)
        finally:
            if stop_event.is_set():
                # Also covers a stop() whose join timed out.
                self._client.close()
            else:
                self._client.disconnect()

    def _listen(self, stop_event: threading.Event) -> None:
        """Scan, wait for a trigger, repeat until stopped."""
        assert self._processor is not None
        trigger = "start"
        left_unread: set[str] = set()

        while not stop_event.is_set():
            try:
                result = self._processor.scan(trigger)
                left_unread = result.left_unread
                if stop_event.is_set():
                    break
                trigger = self._wait_for_trigger(stop_event, left_unread)
            except (IMAPConnectionError, IMAPIdleError) as e:
                if stop_event.is_set():
                    break
                self._reconnect(stop_event, e)
                trigger = "reconnect"

    def _wait_for_trigger(
        self, stop_event: threading.Event, left_unread: set[str]
    ) -> str:
        """Block until the push or poll trigger fires.

        Returns:
            ``"push"`` or ``"poll"`` (or ``"stop"`` when woken by stop).
        """
        interval = self._config.poll_interval_seconds
        if not self._uses_idle():
            if stop_event.wait(interval):
                return "stop"
            return "poll"

        client = self._client
        if client.idle_start(skip=left_unread):
            return "push"
        notified = client.idle_wait(interval)
        client.idle_done()
        if stop_event.is_set():
            return "stop"
        return "push" if notified else "poll"

    def _reconnect(
        self, stop_event: threading.Event, error: BaseException
    ) -> None:
        """Reconnect with a fixed delay until success or the ceiling.

        Raises:
            ReconnectExhaustedError: After ``max_reconnect_attempts``
                consecutive failures.
            _ListenerStopped: If stop is requested while waiting.
        """
        max_attempts = self._config.max_reconnect_attempts
        delay = self._config.reconnect_delay_seconds
        last_error: BaseException = error

        self._log.error("IMAP connection error: %s", error)
        self._client.disconnect()

        while self._reconnect_attempts < max_attempts:
            attempt = self._reconnect_attempts + 1
            self._set_state(
                SessionState.DEGRADED,
                f"IMAP reconnecting (attempt {attempt}/{max_attempts})",
                last_error,
            )
            self._log.info(
                "Reconnecting in %.0fs (attempt %d/%d)",
                delay,
                attempt,
                max_attempts,
            )
            if stop_event.wait(delay):
                raise _ListenerStopped

            self._set_state(
                SessionState.CONNECTING,
                f"IMAP reconnect attempt {attempt}/{max_attempts}",
            )
            self._reconnect_attempts = attempt
            try:
                self._client.connect(max_retries=1)
            except IMAPConnectionError as e:
                last_error = e
                self._log.error(
                    "Reconnection attempt %d/%d failed: %s",
                    attempt,
                    max_attempts,
                    e,
                )
                continue

            self._reconnect_attempts = 0
            self._set_state(SessionState.READY)
            self._log.info("Reconnected to IMAP")
            return

        raise ReconnectExhaustedError(max_attempts, last_error)
