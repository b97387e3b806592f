# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the relay HTTP API."""

from unittest.mock import MagicMock

import pytest
from werkzeug.test import Client

from a2ha.channel import ChannelStatus, SessionState
from a2ha.registry import ConnectorRegistry
from a2ha.relay.notifier import Notifier
from a2ha.relay.server import RelayServer
from a2ha.relay.tasks import TaskState, TaskStore
from a2ha.relay.team import TeamRoster


ROSTER = {
    "team": [
        {
            "name": "Ada",
            "role": "Support",
            "channels": [
                {"type": "email", "contactInfo": "ada@example.com"},
                {"type": "sms", "contactInfo": "+358401234567"},
            ],
        }
    ]
}

TASK_BODY = {
    "channel": "email",
    "contactInfo": "ada@example.com",
    "message": "Approve the deploy?",
    "pushNotification": {"url": "http://agent.local/hook", "token": "tok"},
}


@pytest.fixture
def connector() -> MagicMock:
    connector = MagicMock()
    connector.status = ChannelStatus(state=SessionState.READY)
    return connector


@pytest.fixture
def store() -> TaskStore:
    return TaskStore()


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock(spec=Notifier)


@pytest.fixture
def client(store, connector, notifier) -> Client:
    server = RelayServer(
        store,
        TeamRoster.from_dict(ROSTER),
        ConnectorRegistry({"email": connector}),
        notifier,
        port=0,
    )
    return Client(server._wsgi_app)


class TestCreateTask:
    def test_creates_and_sends(self, client, store, connector):
        response = client.post("/tasks", json=TASK_BODY)

        assert response.status_code == 201
        task = response.get_json()
        assert task["status"]["state"] == "working"
        assert task["channel"] == "email"
        assert task["history"][0]["role"] == "agent"
        connector.send.assert_called_once_with(
            task["id"], "ada@example.com", "Approve the deploy?", None
        )
        stored = store.get(task["id"])
        assert stored.push_url == "http://agent.local/hook"
        assert stored.push_token == "tok"

    def test_passes_options(self, client, connector):
        body = {**TASK_BODY, "options": {"cc": "bob@example.com"}}

        client.post("/tasks", json=body)

        assert connector.send.call_args[0][3] == {"cc": "bob@example.com"}

    def test_missing_fields(self, client, connector):
        response = client.post("/tasks", json={"channel": "email"})

        assert response.status_code == 400
        assert "Missing required fields" in response.get_json()["error"]
        connector.send.assert_not_called()

    def test_invalid_push_config(self, client):
        body = {**TASK_BODY, "pushNotification": {"token": "tok"}}

        response = client.post("/tasks", json=body)

        assert response.status_code == 400

    def test_unknown_member(self, client, connector):
        body = {**TASK_BODY, "contactInfo": "eve@example.com"}

        response = client.post("/tasks", json=body)

        assert response.status_code == 404
        assert "eve@example.com" in response.get_json()["error"]
        connector.send.assert_not_called()

    def test_unconfigured_channel(self, client):
        body = {**TASK_BODY, "channel": "sms", "contactInfo": "+358401234567"}

        response = client.post("/tasks", json=body)

        assert response.status_code == 400
        assert response.get_json() == {
            "error": "No connector for channel 'sms'"
        }

    def test_send_failure_marks_task_failed(self, client, store, connector):
        connector.send.side_effect = RuntimeError("SMTP down")

        response = client.post("/tasks", json=TASK_BODY)

        assert response.status_code == 502
        body = response.get_json()
        assert body["error"] == "SMTP down"
        task = store.get(body["taskId"])
        assert task.state is TaskState.FAILED
        assert task.error == "SMTP down"


class TestQueries:
    def test_get_task(self, client):
        created = client.post("/tasks", json=TASK_BODY).get_json()

        response = client.get(f"/tasks/{created['id']}")

        assert response.status_code == 200
        assert response.get_json()["id"] == created["id"]

    def test_get_unknown_task(self, client):
        response = client.get("/tasks/nope")

        assert response.status_code == 404
        assert response.get_json() == {"error": "Task not found"}

    def test_team(self, client):
        team = client.get("/team").get_json()["team"]

        assert [m["name"] for m in team] == ["Ada"]

    def test_health(self, client):
        client.post("/tasks", json=TASK_BODY)

        assert client.get("/health").get_json() == {
            "status": "ok",
            "tasks": 1,
            "channels": {
                "email": {
                    "state": "ready",
                    "message": "",
                    "error_type": None,
                }
            },
        }


class TestTaskUpdates:
    def test_answer_delivered(self, client, notifier):
        response = client.post(
            "/webhook/task-updates", json={"taskId": "t1", "answer": "Yes"}
        )

        assert response.status_code == 200
        assert response.get_json() == {"received": True, "taskId": "t1"}
        notifier.deliver_answer.assert_called_once_with("t1", "Yes")

    def test_invalid_payload(self, client, notifier):
        response = client.post("/webhook/task-updates", json={"taskId": "t1"})

        assert response.status_code == 400
        notifier.deliver_answer.assert_not_called()

    def test_snapshot_without_answer(self, client, notifier):
        response = client.post(
            "/webhook/task-updates", json={"kind": "task", "id": "t1"}
        )

        assert response.status_code == 400
        notifier.deliver_answer.assert_not_called()


class TestAnswerLifecycle:
    """Webhook answers against real task state."""

    @pytest.fixture
    def live_client(self, store, connector) -> Client:
        server = RelayServer(
            store,
            TeamRoster.from_dict(ROSTER),
            ConnectorRegistry({"email": connector}),
            Notifier(store),
            port=0,
        )
        return Client(server._wsgi_app)

    def test_answer_completes_once(self, live_client, store):
        body = {k: v for k, v in TASK_BODY.items() if k != "pushNotification"}
        task_id = live_client.post("/tasks", json=body).get_json()["id"]

        first = live_client.post(
            "/webhook/task-updates", json={"taskId": task_id, "answer": "Yes"}
        )
        second = live_client.post(
            "/webhook/task-updates", json={"taskId": task_id, "answer": "No"}
        )

        assert first.status_code == 200
        assert second.status_code == 409
        task = store.get(task_id)
        assert task.state is TaskState.COMPLETED
        assert task.history[-1]["parts"][0]["data"]["text"] == "Yes"

    def test_unknown_task(self, live_client):
        response = live_client.post(
            "/webhook/task-updates", json={"taskId": "nope", "answer": "Yes"}
        )

        assert response.status_code == 404
