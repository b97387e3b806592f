# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Decoding of task update payloads.

Two shapes arrive on ``/webhook/task-updates`` endpoints:

* A plain answer from a channel: ``{"taskId": ..., "answer": ...}``.
* A task snapshot pushed by the relay: ``{"kind": "task", "id": ...,
  "history": [...]}``; its answer is the latest user message.

Payloads are decoded once at the boundary into ``AnswerUpdate`` or
``TaskSnapshot``; anything else is an ``UpdateDecodeError``.
"""

from dataclasses import dataclass
from typing import Any


class UpdateDecodeError(Exception):
    """Raised when a payload matches no known update shape."""


@dataclass(frozen=True)
class AnswerUpdate:
    """A human's answer delivered by a channel."""

    task_id: str
    answer: str


@dataclass(frozen=True)
class TaskSnapshot:
    """A task pushed after a state change.

    Attributes:
        task_id: Task identifier.
        state: Task state name, or None if absent.
        answer: Text of the latest user message, or None if there is
            none yet.
    """

    task_id: str
    state: str | None
    answer: str | None


type TaskUpdate = AnswerUpdate | TaskSnapshot


def _part_text(part: Any) -> str | None:
    if not isinstance(part, dict):
        return None
    kind = part.get("kind")
    if kind == "text" and isinstance(part.get("text"), str):
        return part["text"]
    if kind == "data":
        data = part.get("data")
        if isinstance(data, dict) and "text" in data:
            return str(data["text"])
        if data:
            return str(data)
    return None


def latest_user_text(history: list[Any]) -> str | None:
    """Text of the most recent user message in a history list."""
    for message in reversed(history):
        if not isinstance(message, dict) or message.get("role") != "user":
            continue
        for part in message.get("parts") or []:
            text = _part_text(part)
            if text:
                return text
        return None
    return None


def decode_update(payload: Any) -> TaskUpdate:
    """Decode a task update payload.

    Args:
        payload: Decoded JSON body.

    Returns:
        ``AnswerUpdate`` or ``TaskSnapshot``.

    Raises:
        UpdateDecodeError: If the payload matches neither shape.
    """
    if not isinstance(payload, dict):
        raise UpdateDecodeError("Payload must be a JSON object")

    if payload.get("kind") == "task":
        task_id = payload.get("id")
        if not isinstance(task_id, str) or not task_id:
            raise UpdateDecodeError("Task snapshot without an id")
        history = payload.get("history") or []
        if not isinstance(history, list):
            raise UpdateDecodeError("Task snapshot history must be a list")
        status = payload.get("status")
        state = status.get("state") if isinstance(status, dict) else None
        return TaskSnapshot(
            task_id=task_id,
            state=state if isinstance(state, str) else None,
            answer=latest_user_text(history),
        )

    task_id = payload.get("taskId")
    answer = payload.get("answer")
    if (
        isinstance(task_id, str)
        and task_id
        and isinstance(answer, str)
        and answer
    ):
        return AnswerUpdate(task_id=task_id, answer=answer)

    raise UpdateDecodeError("Invalid payload format")
