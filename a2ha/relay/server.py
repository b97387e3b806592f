# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Relay HTTP server.

Agents create tasks here; the relay checks the roster, sends the request
on the chosen channel and completes the task when the answer comes back
(via a connector listener or ``/webhook/task-updates``).
"""

import logging
import time
import uuid
from dataclasses import replace
from typing import Any

from werkzeug.routing import Rule
from werkzeug.wrappers import Request, Response

from a2ha.registry import ConnectorRegistry, UnknownChannelError
from a2ha.relay.notifier import Notifier
from a2ha.relay.tasks import (
    Task,
    TaskNotActiveError,
    TaskNotFoundError,
    TaskState,
    TaskStore,
    new_task_id,
    text_message,
)
from a2ha.relay.team import TeamMemberNotFoundError, TeamRoster
from a2ha.relay.updates import UpdateDecodeError, decode_update
from a2ha.wsgi import JsonServer, json_error, json_response, read_json_object


logger = logging.getLogger(__name__)


def _parse_push_config(
    body: dict[str, Any],
) -> tuple[str | None, str | None]:
    """Return ``(url, token)`` from the optional ``pushNotification``.

    Raises:
        ValueError: If the section is malformed.
    """
    push = body.get("pushNotification")
    if push is None:
        return None, None
    if not isinstance(push, dict) or not isinstance(push.get("url"), str):
        raise ValueError("pushNotification must have a string 'url'")
    token = push.get("token")
    if token is not None and not isinstance(token, str):
        raise ValueError("pushNotification.token must be a string")
    return push["url"], token


class RelayServer(JsonServer):
    """WSGI server for the relay API."""

    thread_name = "RelayServer"

    def __init__(
        self,
        store: TaskStore,
        roster: TeamRoster,
        registry: ConnectorRegistry,
        notifier: Notifier,
        host: str = "127.0.0.1",
        port: int = 4000,
    ) -> None:
        """Initialize relay server.

        Args:
            store: Task storage.
            roster: Team members that may be contacted.
            registry: Connectors by channel tag.
            notifier: Completes tasks when answers arrive.
            host: Host to bind to.
            port: Port to bind to.
        """
        self.store = store
        self.roster = roster
        self.registry = registry
        self.notifier = notifier
        super().__init__(
            [
                Rule("/tasks", endpoint="create_task", methods=["POST"]),
                Rule("/tasks/<task_id>", endpoint="get_task", methods=["GET"]),
                Rule(
                    "/webhook/task-updates",
                    endpoint="task_updates",
                    methods=["POST"],
                ),
                Rule("/team", endpoint="team", methods=["GET"]),
                Rule("/health", endpoint="health", methods=["GET"]),
            ],
            {
                "create_task": self.handle_create_task,
                "get_task": self.handle_get_task,
                "task_updates": self.handle_task_updates,
                "team": self.handle_team,
                "health": self.handle_health,
            },
            host=host,
            port=port,
        )

    def handle_create_task(self, request: Request) -> Response:
        """Create a task and send the request to the team member.

        Returns:
            201 with the task, 400 for a malformed body or unconfigured
            channel, 404 if the roster has no such member, 502 if the
            channel fails to send (the task is marked failed).
        """
        body = read_json_object(request)
        if body is None:
            return json_error("Invalid request body", 400)
        fields = ("channel", "contactInfo", "message")
        if not all(isinstance(body.get(k), str) and body[k] for k in fields):
            return json_error(
                "Missing required fields: channel, contactInfo, message", 400
            )
        options = body.get("options")
        if options is not None and not isinstance(options, dict):
            return json_error("options must be an object", 400)
        try:
            push_url, push_token = _parse_push_config(body)
        except ValueError as e:
            return json_error(str(e), 400)

        channel = body["channel"]
        contact_info = body["contactInfo"]
        message = body["message"]

        try:
            self.roster.find_member(channel, contact_info)
        except TeamMemberNotFoundError as e:
            return json_error(str(e), 404)
        try:
            connector = self.registry.get(channel)
        except UnknownChannelError as e:
            return json_error(str(e), 400)

        task_id = new_task_id()
        context_id = str(uuid.uuid4())
        task = Task(
            id=task_id,
            context_id=context_id,
            channel=channel,
            contact_info=contact_info,
            history=(
                text_message(
                    "agent", message, task_id=task_id, context_id=context_id
                ),
            ),
            push_url=push_url,
            push_token=push_token,
        )
        self.store.put(task)
        logger.info(
            "Task %s created for %s on %s", task_id, contact_info, channel
        )

        try:
            connector.send(task_id, contact_info, message, options)
        except Exception as e:
            logger.error(
                "Failed to send task %s on %s: %s", task_id, channel, e
            )
            self.store.update(
                task_id,
                lambda t: replace(
                    t,
                    state=TaskState.FAILED,
                    error=str(e),
                    updated_at=time.time(),
                ),
            )
            return json_response(
                {"error": str(e), "taskId": task_id}, status=502
            )

        task = self.store.update(
            task_id,
            lambda t: (
                replace(t, state=TaskState.WORKING, updated_at=time.time())
                if t.state is TaskState.SUBMITTED
                else t
            ),
        )
        return json_response(task.to_dict(), status=201)

    def handle_get_task(self, request: Request, task_id: str) -> Response:
        task = self.store.get(task_id)
        if task is None:
            return json_error("Task not found", 404)
        return json_response(task.to_dict())

    def handle_task_updates(self, request: Request) -> Response:
        """Deliver an answer posted by a channel.

        Returns:
            400 for an undecodable update, 404 for an unknown task, 409
            for a task that is already closed, otherwise 200.
        """
        try:
            update = decode_update(read_json_object(request))
        except UpdateDecodeError as e:
            return json_error(str(e), 400)

        answer = update.answer
        if not answer:
            return json_error("Task snapshot carries no answer", 400)

        try:
            self.notifier.deliver_answer(update.task_id, answer)
        except TaskNotFoundError as e:
            return json_error(str(e), 404)
        except TaskNotActiveError as e:
            return json_error(str(e), 409)
        return json_response({"received": True, "taskId": update.task_id})

    def handle_team(self, request: Request) -> Response:
        return json_response(self.roster.to_dict())

    def handle_health(self, request: Request) -> Response:
        channels = {
            tag: status.to_dict()
            for tag, status in self.registry.statuses().items()
        }
        return json_response(
            {"status": "ok", "tasks": len(self.store), "channels": channels}
        )
