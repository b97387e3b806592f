# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Single-slot wait for a human's answer.

The agent side of ``a2ha ask`` blocks on a ``ResponseSlot`` while the
webhook thread resolves it when the relay pushes the completed task.
"""

import threading
import time
from enum import Enum


class SlotCancelledError(Exception):
    """Raised by ``wait`` when the slot was cancelled."""


class SlotAlreadyResolvedError(Exception):
    """Raised when a slot that already settled is resolved again."""


class _SlotState(Enum):
    IDLE = "idle"
    ARMED = "armed"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class ResponseSlot:
    """One-shot value handoff between threads.

    ``arm()`` marks the slot as expecting a value; ``resolve()`` and
    ``cancel()`` settle it exactly once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._condition = threading.Condition(self._lock)
        self._state = _SlotState.IDLE
        self._value: str | None = None

    def arm(self) -> None:
        """Mark the slot as waiting for a value.

        Raises:
            SlotAlreadyResolvedError: If the slot already settled.
        """
        with self._lock:
            if self._state in (_SlotState.RESOLVED, _SlotState.CANCELLED):
                raise SlotAlreadyResolvedError(
                    f"Slot is already {self._state.value}"
                )
            self._state = _SlotState.ARMED

    @property
    def is_waiting(self) -> bool:
        """Whether the slot is armed and not yet settled."""
        with self._lock:
            return self._state is _SlotState.ARMED

    @property
    def done(self) -> bool:
        """Whether the slot has been resolved or cancelled."""
        with self._lock:
            return self._state in (_SlotState.RESOLVED, _SlotState.CANCELLED)

    def resolve(self, value: str) -> None:
        """Settle the slot with ``value`` and wake waiters.

        Raises:
            SlotAlreadyResolvedError: If the slot already settled.
        """
        with self._condition:
            if self._state in (_SlotState.RESOLVED, _SlotState.CANCELLED):
                raise SlotAlreadyResolvedError(
                    f"Slot is already {self._state.value}"
                )
            self._value = value
            self._state = _SlotState.RESOLVED
            self._condition.notify_all()

    def cancel(self) -> None:
        """Cancel the slot.  Has no effect once it has settled."""
        with self._condition:
            if self._state in (_SlotState.RESOLVED, _SlotState.CANCELLED):
                return
            self._state = _SlotState.CANCELLED
            self._condition.notify_all()

    def wait(self, timeout: float | None = None) -> str:
        """Block until the slot settles.

        Args:
            timeout: Maximum seconds to wait; None waits forever.

        Returns:
            The resolved value.

        Raises:
            TimeoutError: If the timeout elapses first.
            SlotCancelledError: If the slot was cancelled.
        """
        with self._condition:
            deadline = None if timeout is None else time.monotonic() + timeout
            while self._state not in (
                _SlotState.RESOLVED,
                _SlotState.CANCELLED,
            ):
                if deadline is None:
                    self._condition.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(
                        f"No response within {timeout:.0f} seconds"
                    )
                self._condition.wait(timeout=remaining)

            if self._state is _SlotState.CANCELLED:
                raise SlotCancelledError("Wait was cancelled")
            assert self._value is not None
            return self._value
