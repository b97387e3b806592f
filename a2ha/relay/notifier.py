# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Completion of tasks when a human answers.

``Notifier.deliver_answer`` is the answer handler every connector
listener feeds.  It records the answer, completes the task and pushes
the task to the requesting agent.
"""

import logging
import time
from dataclasses import replace

import httpx

from a2ha.relay.tasks import (
    Task,
    TaskNotActiveError,
    TaskState,
    TaskStore,
    text_message,
)


logger = logging.getLogger(__name__)

#: Header carrying the push notification token.
NOTIFICATION_TOKEN_HEADER = "x-a2a-notification-token"


class Notifier:
    """Completes tasks and sends push notifications."""

    def __init__(
        self,
        store: TaskStore,
        *,
        http_client: httpx.Client | None = None,
        default_token: str | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        """Initialize notifier.

        Args:
            store: Task storage.
            http_client: Client used for pushes.  If None, a short-lived
                client is opened per push.
            default_token: Token sent when a task has none of its own.
            timeout_seconds: HTTP timeout for pushes.
        """
        self._store = store
        self._http_client = http_client
        self._default_token = default_token
        self._timeout = timeout_seconds

    def deliver_answer(self, task_id: str, answer: str) -> Task:
        """Record a human's answer and complete the task.

        Args:
            task_id: Task the answer belongs to.
            answer: Answer text.

        Returns:
            The completed task.

        Raises:
            TaskNotFoundError: If the task is unknown.
            TaskNotActiveError: If the task is already completed or
                failed.
        """

        def complete(task: Task) -> Task:
            if not task.is_open:
                raise TaskNotActiveError(task.id, task.state)
            message = text_message(
                "user", answer, task_id=task.id, context_id=task.context_id
            )
            return replace(
                task,
                state=TaskState.COMPLETED,
                history=(*task.history, message),
                updated_at=time.time(),
            )

        task = self._store.update(task_id, complete)
        logger.info("Task %s completed (%d chars)", task_id, len(answer))
        self.push(task)
        return task

    def push(self, task: Task) -> bool:
        """POST the task to its push URL.  Failures are logged.

        Returns:
            True if the push was accepted, False if it failed or the
            task has no push URL.
        """
        if not task.push_url:
            logger.debug("Task %s has no push URL", task.id)
            return False

        headers = {}
        token = task.push_token or self._default_token
        if token:
            headers[NOTIFICATION_TOKEN_HEADER] = token

        try:
            if self._http_client is not None:
                response = self._http_client.post(
                    task.push_url, json=task.to_dict(), headers=headers
                )
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.post(
                        task.push_url, json=task.to_dict(), headers=headers
                    )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Push notification for task %s to %s failed: %s",
                task.id,
                task.push_url,
                e,
            )
            return False

        logger.info("Push notification sent for task %s", task.id)
        return True
