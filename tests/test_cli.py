# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the command-line interface."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from a2ha.agent.waiter import SlotCancelledError
from a2ha.channel import ListenerStartError
from a2ha.cli import (
    EXIT_CONFIG,
    EXIT_OK,
    EXIT_RUNTIME,
    EXIT_STARTUP,
    build_parser,
    main,
)
from a2ha.email.responder import SendError


EMAIL_CHANNEL = """\
  email:
    default_recipient: ada@example.com
    smtp:
      host: smtp.example.com
      user: relay@example.com
      password: smtp_password
    imap:
      host: imap.example.com
      user: relay@example.com
      password: imap_password
"""


@pytest.fixture(autouse=True)
def _quiet_cli(tmp_path, monkeypatch):
    """Keep the CLI away from root logging, signals and real dotfiles."""
    monkeypatch.chdir(tmp_path)
    with (
        patch("a2ha.cli.configure_logging"),
        patch("a2ha.cli.signal.signal"),
        patch(
            "a2ha.config.get_dotenv_path", return_value=tmp_path / "x.env"
        ),
        patch(
            "a2ha.cli.get_config_path",
            return_value=tmp_path / "missing" / "a2ha.yaml",
        ),
    ):
        yield


@pytest.fixture
def stop_immediately():
    """Make the blocking wait in long-running commands return at once."""
    with patch(
        "a2ha.cli._install_shutdown_handlers",
        side_effect=lambda event: event.set(),
    ) as install:
        yield install


def _write_config(tmp_path, channels: str = EMAIL_CHANNEL, team=True):
    team_file = tmp_path / "team.json"
    if team:
        team_file.write_text(
            json.dumps(
                {
                    "team": [
                        {
                            "name": "Ada",
                            "channels": [
                                {
                                    "type": "email",
                                    "contactInfo": "ada@example.com",
                                }
                            ],
                        }
                    ]
                }
            )
        )
    path = tmp_path / "a2ha.yaml"
    path.write_text(
        f"relay:\n  port: 4000\n  team_file: {team_file}\n"
        f"channels:\n{channels}"
    )
    return path


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_ask_arguments(self):
        args = build_parser().parse_args(
            [
                "ask",
                "--channel",
                "email",
                "--contact",
                "ada@example.com",
                "--message",
                "Approve?",
                "--timeout",
                "5",
            ]
        )

        assert args.channel == "email"
        assert args.timeout == 5.0
        assert args.config is None


class TestServe:
    def test_missing_config(self, tmp_path):
        code = main(["--config", str(tmp_path / "nope.yaml"), "serve"])

        assert code == EXIT_CONFIG

    def test_no_channels(self, tmp_path):
        path = tmp_path / "a2ha.yaml"
        path.write_text("relay:\n  port: 4000\n")

        assert main(["--config", str(path), "serve"]) == EXIT_CONFIG

    def test_missing_team_file(self, tmp_path):
        path = _write_config(tmp_path, team=False)

        assert main(["--config", str(path), "serve"]) == EXIT_CONFIG

    def test_runs_until_stopped(self, tmp_path, stop_immediately):
        path = _write_config(tmp_path)
        registry = MagicMock()
        registry.__iter__.return_value = iter(["email"])

        with (
            patch(
                "a2ha.registry.ConnectorRegistry.from_config",
                return_value=registry,
            ),
            patch("a2ha.relay.server.RelayServer") as server_class,
        ):
            code = main(["--config", str(path), "serve"])

        assert code == EXIT_OK
        server = server_class.return_value
        server.start.assert_called_once()
        registry.start_all.assert_called_once()
        registry.stop_all.assert_called_once()
        server.stop.assert_called_once()

    def test_answers_complete_tasks(self, tmp_path, stop_immediately):
        """The shared handler hands answers to the notifier."""
        path = _write_config(tmp_path)
        registry = MagicMock()

        with (
            patch(
                "a2ha.registry.ConnectorRegistry.from_config",
                return_value=registry,
            ),
            patch("a2ha.relay.server.RelayServer"),
            patch("a2ha.relay.notifier.Notifier") as notifier_class,
        ):
            main(["--config", str(path), "serve"])
            handler = registry.start_all.call_args[0][0]
            handler("t1", "Approved")

        notifier_class.return_value.deliver_answer.assert_called_once_with(
            "t1", "Approved"
        )

    def test_listener_start_failure(self, tmp_path):
        path = _write_config(tmp_path)
        registry = MagicMock()
        registry.start_all.side_effect = ListenerStartError("IMAP down")

        with (
            patch(
                "a2ha.registry.ConnectorRegistry.from_config",
                return_value=registry,
            ),
            patch("a2ha.relay.server.RelayServer") as server_class,
        ):
            code = main(["--config", str(path), "serve"])

        assert code == EXIT_STARTUP
        server_class.return_value.stop.assert_called_once()

    def test_relay_bind_failure(self, tmp_path):
        path = _write_config(tmp_path)

        with (
            patch("a2ha.registry.ConnectorRegistry.from_config"),
            patch("a2ha.relay.server.RelayServer") as server_class,
        ):
            server_class.return_value.start.side_effect = OSError("in use")
            code = main(["--config", str(path), "serve"])

        assert code == EXIT_STARTUP


class TestChatSim:
    def test_runs_with_defaults(self, stop_immediately):
        with patch("a2ha.mock_chat.server.ChatSimulatorServer") as server_class:
            code = main(["chat-sim", "--port", "5055"])

        assert code == EXIT_OK
        assert server_class.call_args.kwargs["port"] == 5055
        server_class.return_value.start.assert_called_once()
        server_class.return_value.stop.assert_called_once()

    def test_bind_failure(self):
        with patch("a2ha.mock_chat.server.ChatSimulatorServer") as server_class:
            server_class.return_value.start.side_effect = OSError("in use")
            code = main(["chat-sim"])

        assert code == EXIT_STARTUP


ASK_ARGS = [
    "ask",
    "--channel",
    "email",
    "--contact",
    "ada@example.com",
    "--message",
    "Approve?",
]


class TestAsk:
    @pytest.fixture
    def webhook_class(self):
        with patch("a2ha.cli.AgentWebhook") as webhook_class:
            yield webhook_class

    @pytest.fixture
    def slot(self):
        with patch("a2ha.cli.ResponseSlot") as slot_class:
            yield slot_class.return_value

    def test_prints_answer(self, webhook_class, slot, capsys):
        slot.wait.return_value = "Approved"

        with patch(
            "a2ha.cli._create_task", return_value={"id": "t1"}
        ) as create:
            code = main(ASK_ARGS)

        assert code == EXIT_OK
        assert capsys.readouterr().out == "Approved\n"
        body = create.call_args[0][1]
        assert body["channel"] == "email"
        assert body["contactInfo"] == "ada@example.com"
        assert body["pushNotification"] == {
            "url": "http://127.0.0.1:4200/webhook/task-updates"
        }
        slot.arm.assert_called_once()
        assert webhook_class.return_value.task_id == "t1"
        webhook_class.return_value.stop.assert_called_once()

    def test_relay_rejects(self, webhook_class, slot):
        request = httpx.Request("POST", "http://localhost:4000/tasks")
        response = httpx.Response(404, text="not found", request=request)
        error = httpx.HTTPStatusError(
            "404", request=request, response=response
        )

        with patch("a2ha.cli._create_task", side_effect=error):
            code = main(ASK_ARGS)

        assert code == EXIT_RUNTIME
        slot.wait.assert_not_called()
        webhook_class.return_value.stop.assert_called_once()

    def test_relay_unreachable(self, webhook_class, slot):
        error = httpx.ConnectError("refused")

        with patch("a2ha.cli._create_task", side_effect=error):
            assert main(ASK_ARGS) == EXIT_RUNTIME

    def test_timeout(self, webhook_class, slot):
        slot.wait.side_effect = TimeoutError("No response within 5 seconds")

        with patch("a2ha.cli._create_task", return_value={"id": "t1"}):
            code = main([*ASK_ARGS, "--timeout", "5"])

        assert code == EXIT_RUNTIME
        slot.wait.assert_called_once_with(timeout=5.0)

    def test_cancelled(self, webhook_class, slot):
        slot.wait.side_effect = SlotCancelledError()

        with patch("a2ha.cli._create_task", return_value={"id": "t1"}):
            assert main(ASK_ARGS) == EXIT_OK

    def test_webhook_bind_failure(self, webhook_class, slot):
        webhook_class.return_value.start.side_effect = OSError("in use")

        assert main(ASK_ARGS) == EXIT_STARTUP
        slot.arm.assert_not_called()


class TestTestEmail:
    @pytest.fixture
    def connector(self):
        with patch("a2ha.email.connector.EmailConnector") as connector_class:
            yield connector_class.return_value

    def test_sends_and_listens(self, tmp_path, connector, stop_immediately):
        path = _write_config(tmp_path)

        code = main(
            [
                "--config",
                str(path),
                "test-email",
                "--to",
                "bob@example.com",
                "--message",
                "Ping",
            ]
        )

        assert code == EXIT_OK
        task_id, message, options = connector.send_email.call_args[0]
        assert message == "Ping"
        assert options == {"to": "bob@example.com"}
        assert task_id
        connector.start_email_listener.assert_called_once()
        connector.stop_email_listener.assert_called_once()

    def test_send_failure(self, tmp_path, connector):
        path = _write_config(tmp_path)
        connector.send_email.side_effect = SendError("t1", "refused")

        code = main(
            [
                "--config",
                str(path),
                "test-email",
                "--to",
                "bob@example.com",
                "--message",
                "Ping",
            ]
        )

        assert code == EXIT_RUNTIME
        connector.start_email_listener.assert_not_called()

    def test_requires_email_channel(self, tmp_path, connector):
        path = _write_config(tmp_path, channels="  mock-chat: {}\n")

        code = main(
            [
                "--config",
                str(path),
                "test-email",
                "--to",
                "bob@example.com",
                "--message",
                "Ping",
            ]
        )

        assert code == EXIT_CONFIG
        connector.send_email.assert_not_called()
