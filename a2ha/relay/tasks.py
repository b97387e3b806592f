# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Task records for the relay.

A task is created when an agent asks a human for help and completed
when the human's answer arrives on any channel.  History entries use
the agent-to-agent message shape::

    {"kind": "message", "role": "user", "messageId": "...",
     "parts": [{"kind": "data", "data": {"text": "..."}}]}
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class TaskState(Enum):
    """Task lifecycle state."""

    SUBMITTED = "submitted"
    WORKING = "working"
    COMPLETED = "completed"
    FAILED = "failed"


#: States in which an answer is still accepted.
OPEN_STATES = frozenset({TaskState.SUBMITTED, TaskState.WORKING})


class TaskNotFoundError(Exception):
    """Raised when a task ID is unknown to the store."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class TaskNotActiveError(Exception):
    """Raised when an answer arrives for a task that is already closed."""

    def __init__(self, task_id: str, state: TaskState) -> None:
        self.task_id = task_id
        self.state = state
        super().__init__(f"Task {task_id} is {state.value}")


def new_task_id() -> str:
    """Generate a task ID safe to embed in an email subject."""
    return str(uuid.uuid4())


def text_message(
    role: str,
    text: str,
    *,
    task_id: str | None = None,
    context_id: str | None = None,
) -> dict[str, Any]:
    """Build a history entry carrying ``{"text": text}``."""
    message: dict[str, Any] = {
        "kind": "message",
        "role": role,
        "messageId": str(uuid.uuid4()),
        "parts": [{"kind": "data", "data": {"text": text}}],
    }
    if task_id is not None:
        message["taskId"] = task_id
    if context_id is not None:
        message["contextId"] = context_id
    return message


def _isoformat(timestamp: float) -> str:
    return (
        datetime.fromtimestamp(timestamp, tz=UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


@dataclass(frozen=True)
class Task:
    """Immutable snapshot of a task.

    Attributes:
        id: Task identifier (also embedded in outgoing subjects).
        context_id: Conversation context identifier.
        state: Lifecycle state.
        channel: Channel the request was sent on.
        contact_info: Recipient on that channel.
        history: Messages exchanged so far, oldest first.
        push_url: Where completion notifications are posted, or None.
        push_token: Token sent with notifications, or None.
        error: Failure description when ``state`` is failed.
        created_at: Unix timestamp of creation.
        updated_at: Unix timestamp of the last change.
    """

    id: str
    context_id: str
    state: TaskState = TaskState.SUBMITTED
    channel: str = ""
    contact_info: str = ""
    history: tuple[dict[str, Any], ...] = ()
    push_url: str | None = None
    push_token: str | None = None
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_open(self) -> bool:
        """Whether an answer is still accepted."""
        return self.state in OPEN_STATES

    def to_dict(self) -> dict[str, Any]:
        """Serialize as a task object (push tokens are omitted)."""
        status: dict[str, Any] = {
            "state": self.state.value,
            "timestamp": _isoformat(self.updated_at),
        }
        if self.error:
            status["message"] = self.error
        return {
            "kind": "task",
            "id": self.id,
            "contextId": self.context_id,
            "status": status,
            "channel": self.channel,
            "contactInfo": self.contact_info,
            "history": [dict(m) for m in self.history],
            "createdAt": _isoformat(self.created_at),
        }


class TaskStore:
    """Thread-safe in-memory task storage.

    Attributes:
        max_closed: Maximum number of completed or failed tasks to keep.
    """

    def __init__(self, max_closed: int = 1000) -> None:
        self.max_closed = max_closed
        self._lock = threading.RLock()
        # OrderedDict maintains insertion order for FIFO eviction
        self._tasks: OrderedDict[str, Task] = OrderedDict()

    def put(self, task: Task) -> None:
        """Add or replace a task."""
        with self._lock:
            self._tasks[task.id] = task
            self._evict_old_closed()

    def get(self, task_id: str) -> Task | None:
        """Return a task by ID, or None."""
        with self._lock:
            return self._tasks.get(task_id)

    def update(self, task_id: str, fn: Callable[[Task], Task]) -> Task:
        """Atomically replace a task with ``fn(task)``.

        ``fn`` runs under the store lock; an exception it raises leaves
        the task unchanged and propagates.

        Returns:
            The stored result of ``fn``.

        Raises:
            TaskNotFoundError: If the task is unknown.
        """
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            updated = fn(current)
            self._tasks[task_id] = updated
            self._evict_old_closed()
            return updated

    def list(self) -> list[Task]:
        """All tasks, oldest first."""
        with self._lock:
            return list(self._tasks.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def _evict_old_closed(self) -> None:
        """Drop the oldest closed tasks beyond ``max_closed``."""
        closed = [t.id for t in self._tasks.values() if not t.is_open]
        for task_id in closed[: max(0, len(closed) - self.max_closed)]:
            del self._tasks[task_id]
