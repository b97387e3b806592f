# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mock chat connector.

Delivers requests to the chat simulator over HTTP and receives the
human's replies on a webhook (``POST /webhook/task-updates``).
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import httpx
from werkzeug.routing import Rule
from werkzeug.wrappers import Request, Response

from a2ha.channel import (
    ACTIVE_STATES,
    AnswerHandler,
    ChannelStatus,
    ListenerAlreadyRunningError,
    ListenerStartError,
    SessionState,
    call_handler,
)
from a2ha.config import CHANNEL_MOCK_CHAT, MockChatConfig
from a2ha.logging import channel_logger
from a2ha.wsgi import JsonServer, json_error, json_response, read_json_object


logger = logging.getLogger(__name__)

#: Simulator endpoint that receives contact requests.
CONTACT_PATH = "/api/contact-team-member"


class ChannelSendError(Exception):
    """Raised when the chat simulator does not accept a request.

    Attributes:
        task_id: Task the request belonged to.
        cause: Underlying error (or description).
    """

    def __init__(self, task_id: str, cause: BaseException | str) -> None:
        self.task_id = task_id
        self.cause = cause
        super().__init__(f"Failed to send message for task {task_id}: {cause}")


class AnswerWebhookServer(JsonServer):
    """Receives ``{taskId, answer}`` posts and feeds the answer handler."""

    thread_name = "MockChatWebhook"

    def __init__(
        self, handler: AnswerHandler, host: str = "127.0.0.1", port: int = 0
    ) -> None:
        self._handler = handler
        self._log = channel_logger(logger, CHANNEL_MOCK_CHAT)
        super().__init__(
            [
                Rule(
                    "/webhook/task-updates",
                    endpoint="task_updates",
                    methods=["POST"],
                ),
            ],
            {"task_updates": self.handle_task_updates},
            host=host,
            port=port,
        )

    def handle_task_updates(self, request: Request) -> Response:
        """Deliver one answer to the handler.

        Returns:
            400 for a malformed payload, 500 if the handler fails,
            otherwise 200 ``{"received": true, "taskId": ...}``.
        """
        body = read_json_object(request) or {}
        task_id = body.get("taskId")
        answer = body.get("answer")
        if (
            not isinstance(task_id, str)
            or not isinstance(answer, str)
            or not task_id
            or not answer
        ):
            return json_error("Invalid payload format", 400)

        self._log.info(
            "Received answer for task %s (%d chars)", task_id, len(answer)
        )
        try:
            call_handler(self._handler, task_id, answer)
        except Exception as e:
            self._log.exception("Answer handler failed for task %s", task_id)
            return json_error(str(e) or type(e).__name__, 500)

        return json_response({"received": True, "taskId": task_id})


class MockChatConnector:
    """Connector implementation for the chat simulator."""

    def __init__(
        self,
        config: MockChatConfig,
        *,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize connector.

        Args:
            config: Mock chat configuration.
            http_client: Client used for outgoing requests.  If None, a
                short-lived client is opened per request.
        """
        self._config = config
        self._http_client = http_client
        self._log = channel_logger(logger, CHANNEL_MOCK_CHAT)
        self._lock = threading.Lock()
        self._server: AnswerWebhookServer | None = None
        self._status = ChannelStatus(state=SessionState.DISCONNECTED)

    @property
    def channel_type(self) -> str:
        """Return the channel tag."""
        return CHANNEL_MOCK_CHAT

    @property
    def status(self) -> ChannelStatus:
        """Current webhook listener status."""
        return self._status

    @property
    def webhook_port(self) -> int | None:
        """Bound webhook port while listening."""
        return self._server.port if self._server else None

    def send(
        self,
        task_id: str,
        destination: str,
        message: str,
        options: dict[str, Any] | None = None,
    ) -> None:
        """Post a contact request to the simulator.

        Raises:
            ChannelSendError: On transport failure or a non-2xx reply.
        """
        payload: dict[str, Any] = {
            "from": self._config.sender,
            "to": destination,
            "message": message,
            "taskId": task_id,
            **(options or {}),
        }
        url = f"{self._config.api_url}{CONTACT_PATH}"
        try:
            if self._http_client is not None:
                response = self._http_client.post(url, json=payload)
            else:
                with httpx.Client(
                    timeout=self._config.timeout_seconds
                ) as client:
                    response = client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise ChannelSendError(task_id, e) from e

        if not response.is_success:
            raise ChannelSendError(
                task_id,
                f"chat API returned {response.status_code} {response.text}",
            )
        self._log.info("Message sent for task %s to %s", task_id, destination)

    def start_listener(self, handler: AnswerHandler) -> None:
        """Serve the answer webhook.

        Raises:
            ListenerAlreadyRunningError: If the webhook is served.
            ListenerStartError: If the port cannot be bound.
        """
        with self._lock:
            if self._status.state in ACTIVE_STATES:
                raise ListenerAlreadyRunningError(
                    "Mock chat listener is already running"
                )
            self._status = ChannelStatus(state=SessionState.CONNECTING)
            server = AnswerWebhookServer(
                handler,
                host=self._config.webhook_host,
                port=self._config.webhook_port,
            )
            try:
                server.start()
            except OSError as e:
                self._status = ChannelStatus(
                    state=SessionState.DISCONNECTED,
                    message="Webhook bind failed",
                    error_type=type(e).__name__,
                )
                raise ListenerStartError(
                    f"Failed to start mock chat listener: {e}"
                ) from e
            self._server = server
            self._status = ChannelStatus(
                state=SessionState.READY,
                message=f"Webhook on port {server.port}",
            )
        self._log.info("Mock chat webhook listener started")

    def stop_listener(self) -> None:
        """Stop serving the webhook.  Idempotent."""
        with self._lock:
            server = self._server
            self._server = None
            if server is None:
                return
            self._status = ChannelStatus(
                state=SessionState.CLOSED, message="Stopped"
            )
        server.stop()
        self._log.info("Mock chat listener stopped")
