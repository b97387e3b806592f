# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Chat simulator HTTP server.

Stands in for a real chat product during development.  The mock chat
connector posts contact requests here; a developer (or a test) reads
them and posts the human's reply, which is forwarded to the relay
webhook when one is configured.
"""

import logging
from typing import Any

import httpx
from werkzeug.routing import Rule
from werkzeug.wrappers import Request, Response

from a2ha.mock_chat.store import ContactRequest, ContactRequestStore
from a2ha.wsgi import JsonServer, json_error, json_response, read_json_object


logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("from", "to", "message", "taskId")


class ChatSimulatorServer(JsonServer):
    """WSGI server for the chat simulator API."""

    thread_name = "ChatSimulator"

    def __init__(
        self,
        store: ContactRequestStore,
        host: str = "127.0.0.1",
        port: int = 5000,
        relay_webhook_url: str | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize simulator server.

        Args:
            store: Contact request storage.
            host: Host to bind to.
            port: Port to bind to.
            relay_webhook_url: Where replies are forwarded.  None keeps
                them local.
            http_client: Client used for forwarding.  If None, a
                short-lived client is opened per reply.
        """
        self.store = store
        self.relay_webhook_url = relay_webhook_url
        self._http_client = http_client
        super().__init__(
            [
                Rule(
                    "/api/contact-team-member",
                    endpoint="contact",
                    methods=["POST"],
                ),
                Rule(
                    "/api/contact-requests",
                    endpoint="list_requests",
                    methods=["GET"],
                ),
                Rule(
                    "/api/contact-requests/<task_id>",
                    endpoint="get_request",
                    methods=["GET"],
                ),
                Rule(
                    "/api/contact-requests/<task_id>/sent-message",
                    endpoint="sent_message",
                    methods=["POST"],
                ),
                Rule("/health", endpoint="health", methods=["GET"]),
            ],
            {
                "contact": self.handle_contact,
                "list_requests": self.handle_list_requests,
                "get_request": self.handle_get_request,
                "sent_message": self.handle_sent_message,
                "health": self.handle_health,
            },
            host=host,
            port=port,
        )

    def handle_contact(self, request: Request) -> Response:
        """Store an incoming contact request."""
        body = read_json_object(request)
        if body is None:
            return json_error("Invalid request body", 400)
        if not all(
            isinstance(body.get(k), str) and body.get(k)
            for k in _REQUIRED_FIELDS
        ):
            return json_error(
                "Missing required fields: from, to, message, taskId", 400
            )

        contact = ContactRequest(
            from_=body["from"],
            to=body["to"],
            message=body["message"],
            task_id=body["taskId"],
        )
        self.store.put(contact)
        logger.info(
            "Contact request for task %s to %s", contact.task_id, contact.to
        )
        return json_response({"success": True, "taskId": contact.task_id})

    def handle_list_requests(self, request: Request) -> Response:
        return json_response([r.to_dict() for r in self.store.list()])

    def handle_get_request(self, request: Request, task_id: str) -> Response:
        contact = self.store.get(task_id)
        if contact is None:
            return json_error("Contact request not found", 404)
        return json_response(contact.to_dict())

    def handle_sent_message(self, request: Request, task_id: str) -> Response:
        """Record the human's reply and forward it to the relay.

        Returns:
            400 for a missing message, 404 for an unknown task, 502 if
            forwarding fails (the reply stays recorded), otherwise 200.
        """
        body = read_json_object(request)
        if body is None:
            return json_error("Invalid request body", 400)
        message = body.get("message")
        if not isinstance(message, str) or not message:
            return json_error("Missing or invalid message field", 400)

        if self.store.set_sent_message(task_id, message) is None:
            return json_error("Contact request not found", 404)
        logger.info("Reply recorded for task %s", task_id)

        result: dict[str, Any] = {"success": True, "taskId": task_id}
        if self.relay_webhook_url:
            try:
                self._forward(task_id, message)
            except httpx.HTTPError as e:
                logger.error("Failed to forward reply for %s: %s", task_id, e)
                return json_response(
                    {"error": f"Forwarding failed: {e}", "taskId": task_id},
                    status=502,
                )
            result["forwarded"] = True
        return json_response(result)

    def handle_health(self, request: Request) -> Response:
        return json_response({"status": "ok", "requests": len(self.store)})

    def _forward(self, task_id: str, answer: str) -> None:
        """POST ``{taskId, answer}`` to the relay webhook.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx reply.
        """
        assert self.relay_webhook_url is not None
        payload = {"taskId": task_id, "answer": answer}
        if self._http_client is not None:
            response = self._http_client.post(
                self.relay_webhook_url, json=payload
            )
        else:
            with httpx.Client(timeout=10.0) as client:
                response = client.post(self.relay_webhook_url, json=payload)
        response.raise_for_status()
