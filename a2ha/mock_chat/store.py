# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Contact request storage for the chat simulator.

Provides thread-safe in-memory storage of the requests the mock chat
connector delivered, and of the replies typed back by the human.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any


def _isoformat(timestamp: float | None) -> str | None:
    if timestamp is None:
        return None
    return (
        datetime.fromtimestamp(timestamp, tz=UTC)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


@dataclass(frozen=True)
class ContactRequest:
    """A request delivered to a (simulated) team member.

    Attributes:
        from_: Sender handle.
        to: Recipient handle.
        message: Request text.
        task_id: Task identifier.
        timestamp: Unix timestamp when the request arrived.
        sent_message: Reply typed by the human, or None.
        sent_message_timestamp: Unix timestamp of the reply, or None.
    """

    from_: str
    to: str
    message: str
    task_id: str
    timestamp: float = field(default_factory=time.time)
    sent_message: str | None = None
    sent_message_timestamp: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys and ISO-8601 timestamps."""
        return {
            "from": self.from_,
            "to": self.to,
            "message": self.message,
            "taskId": self.task_id,
            "timestamp": _isoformat(self.timestamp),
            "sentMessage": self.sent_message,
            "sentMessageTimestamp": _isoformat(self.sent_message_timestamp),
        }


class ContactRequestStore:
    """Thread-safe contact request storage keyed by task ID.

    Storing a request for a task ID that already exists replaces it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: OrderedDict[str, ContactRequest] = OrderedDict()

    def put(self, request: ContactRequest) -> None:
        """Add or replace the request for ``request.task_id``."""
        with self._lock:
            self._requests.pop(request.task_id, None)
            self._requests[request.task_id] = request

    def get(self, task_id: str) -> ContactRequest | None:
        """Return the request for a task, or None."""
        with self._lock:
            return self._requests.get(task_id)

    def update(
        self,
        task_id: str,
        fn: Callable[[ContactRequest], ContactRequest],
    ) -> ContactRequest | None:
        """Atomically replace a request with ``fn(request)``.

        Returns:
            The updated request, or None if the task is unknown.
        """
        with self._lock:
            current = self._requests.get(task_id)
            if current is None:
                return None
            updated = fn(current)
            self._requests[task_id] = updated
            return updated

    def set_sent_message(
        self, task_id: str, message: str
    ) -> ContactRequest | None:
        """Record the human's reply for a task."""
        return self.update(
            task_id,
            lambda r: replace(
                r, sent_message=message, sent_message_timestamp=time.time()
            ),
        )

    def list(self) -> list[ContactRequest]:
        """All requests, newest first."""
        with self._lock:
            requests = list(self._requests.values())
        return sorted(requests, key=lambda r: r.timestamp, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)
