# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Agent-side receiver for relay push notifications."""

import hmac
import logging

from werkzeug.routing import Rule
from werkzeug.wrappers import Request, Response

from a2ha.agent.waiter import ResponseSlot, SlotAlreadyResolvedError
from a2ha.relay.notifier import NOTIFICATION_TOKEN_HEADER
from a2ha.relay.updates import UpdateDecodeError, decode_update
from a2ha.wsgi import JsonServer, json_error, json_response, read_json_object


logger = logging.getLogger(__name__)


class AgentWebhook(JsonServer):
    """Resolves a ``ResponseSlot`` from ``POST /webhook/task-updates``.

    Attributes:
        slot: Slot resolved with the answer text.
        task_id: Only updates for this task are accepted once set.
    """

    thread_name = "AgentWebhook"

    def __init__(
        self,
        slot: ResponseSlot,
        token: str | None = None,
        host: str = "127.0.0.1",
        port: int = 4200,
    ) -> None:
        """Initialize webhook.

        Args:
            slot: Slot to resolve.
            token: Expected ``x-a2a-notification-token`` value.  None
                accepts any request.
            host: Host to bind to.
            port: Port to bind to.
        """
        self.slot = slot
        self.task_id: str | None = None
        self._token = token
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

    def _authorized(self, request: Request) -> bool:
        if self._token is None:
            return True
        presented = request.headers.get(NOTIFICATION_TOKEN_HEADER, "")
        return hmac.compare_digest(presented, self._token)

    def handle_task_updates(self, request: Request) -> Response:
        """Accept one update.

        Returns:
            401 on a token mismatch, 400 for an undecodable body,
            otherwise 200 (also when the update is dropped).
        """
        if not self._authorized(request):
            return json_error("Unauthorized", 401)
        try:
            update = decode_update(read_json_object(request))
        except UpdateDecodeError as e:
            return json_error(str(e), 400)

        if self.task_id is not None and update.task_id != self.task_id:
            logger.warning("Ignoring update for other task %s", update.task_id)
            return json_response({"received": True})
        if not update.answer:
            logger.warning("No response text in update for %s", update.task_id)
            return json_response({"received": True})
        if not self.slot.is_waiting:
            logger.info(
                "Received answer for %s while not waiting, dropping",
                update.task_id,
            )
            return json_response({"received": True})

        try:
            self.slot.resolve(update.answer)
        except SlotAlreadyResolvedError:
            logger.info("Duplicate answer for %s dropped", update.task_id)
        return json_response({"received": True, "taskId": update.task_id})
