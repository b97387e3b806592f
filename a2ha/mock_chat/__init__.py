# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mock chat channel: connector and the chat simulator it talks to."""

from a2ha.mock_chat.connector import (
    AnswerWebhookServer,
    ChannelSendError,
    MockChatConnector,
)
from a2ha.mock_chat.server import ChatSimulatorServer
from a2ha.mock_chat.store import ContactRequest, ContactRequestStore


__all__ = [
    "AnswerWebhookServer",
    "ChannelSendError",
    "ChatSimulatorServer",
    "ContactRequest",
    "ContactRequestStore",
    "MockChatConnector",
]
