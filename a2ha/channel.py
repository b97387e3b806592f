# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Connector protocol and shared listener types.

Defines the capability every channel connector (email, mock chat)
implements so the relay can dispatch by channel tag without knowing the
underlying protocol.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


#: Inbound answer callback: ``handler(task_id, content)``.  May return an
#: awaitable, which is driven to completion before the message is
#: acknowledged.
type AnswerHandler = Callable[[str, str], Awaitable[Any] | None]


class ListenerAlreadyRunningError(Exception):
    """Raised when a listener is started while one is already active."""


class ListenerStartError(Exception):
    """Raised when a listener cannot establish its initial session."""


class SessionState(Enum):
    """Lifecycle state of a connector's listening session.

    Attributes:
        DISCONNECTED: No session; the listener has not been started.
        CONNECTING: Handshake or reconnect attempt in progress.
        READY: Session established and receiving.
        DEGRADED: Transport failed; waiting to reconnect.
        CLOSED: Stopped explicitly or gave up after the retry ceiling.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


#: States in which a second ``start`` is rejected.
ACTIVE_STATES = frozenset(
    {SessionState.CONNECTING, SessionState.READY, SessionState.DEGRADED}
)


@dataclass(frozen=True)
class ChannelStatus:
    """Current status of a connector's listener.

    Attributes:
        state: Session state.
        message: Human-readable description
            (e.g. "IMAP reconnecting (attempt 2/5)").
        error_type: Exception type name when degraded or closed by
            failure.
    """

    state: SessionState
    message: str = ""
    error_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the health endpoint."""
        return {
            "state": self.state.value,
            "message": self.message,
            "error_type": self.error_type,
        }


class Connector(Protocol):
    """Capability shared by all channel connectors."""

    @property
    def channel_type(self) -> str:
        """Channel tag (e.g. ``"email"``)."""
        ...

    @property
    def status(self) -> ChannelStatus:
        """Current listener status."""
        ...

    def send(
        self,
        task_id: str,
        destination: str,
        message: str,
        options: dict[str, Any] | None = None,
    ) -> None:
        """Deliver ``message`` for ``task_id`` to ``destination``.

        Raises:
            Exception: Channel-specific send error carrying the task ID
                and cause.  No retry is performed.
        """
        ...

    def start_listener(self, handler: AnswerHandler) -> None:
        """Start receiving answers, invoking ``handler`` for each.

        Raises:
            ListenerAlreadyRunningError: If already listening.
        """
        ...

    def stop_listener(self) -> None:
        """Stop receiving answers.  Idempotent."""
        ...


def call_handler(handler: AnswerHandler, task_id: str, content: str) -> None:
    """Invoke an answer handler, awaiting its result if needed.

    Runs on listener threads, which have no event loop of their own, so
    an awaitable result is driven with ``asyncio.run``.

    Args:
        handler: Caller-supplied callback.
        task_id: Correlation identifier.
        content: Answer text.

    Raises:
        Exception: Whatever the handler raises, synchronously or from
            its awaitable.
    """
    result = handler(task_id, content)
    if inspect.isawaitable(result):
        asyncio.run(_await(result))


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable
