# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Command-line interface.

Subcommands:

* ``serve``: relay server plus every configured connector listener.
* ``chat-sim``: chat simulator the mock chat connector talks to.
* ``ask``: create a task on the relay and wait for the human's answer.
* ``test-email``: send one request email, then print incoming answers.

Exit codes: 0 success, 1 configuration error, 2 startup error, 3 runtime
error.
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any

import httpx

from a2ha.agent.waiter import ResponseSlot, SlotCancelledError
from a2ha.agent.webhook import AgentWebhook
from a2ha.channel import ListenerStartError
from a2ha.config import (
    CHANNEL_EMAIL,
    ConfigError,
    EmailChannelConfig,
    ServerConfig,
    get_config_path,
)
from a2ha.logging import configure_logging


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_STARTUP = 2
EXIT_RUNTIME = 3

#: Default seconds ``ask`` waits for an answer.
DEFAULT_ASK_TIMEOUT = 3600.0


def _load_config(path: Path | None, *, optional: bool) -> ServerConfig:
    """Load configuration, falling back to defaults when allowed.

    Args:
        path: Explicit config path, or None for the XDG default.
        optional: Use built-in defaults if no file exists at the default
            location.  An explicit path must always exist.

    Raises:
        ConfigError: If the file is missing (when required) or invalid.
    """
    if optional and path is None and not get_config_path().exists():
        logger.info("No config file, using defaults")
        return ServerConfig()
    return ServerConfig.from_yaml(config_path=path)


def _install_shutdown_handlers(stop_event: threading.Event) -> None:
    def shutdown_handler(signum: int, frame: object) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, initiating shutdown...", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the relay with all configured connectors."""
    from a2ha.registry import ConnectorRegistry
    from a2ha.relay.notifier import Notifier
    from a2ha.relay.server import RelayServer
    from a2ha.relay.tasks import TaskStore
    from a2ha.relay.team import TeamRoster

    try:
        config = _load_config(args.config, optional=False)
        if not config.channels:
            raise ConfigError("At least one channel must be configured")
        roster = TeamRoster.load(config.relay.team_file)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG

    store = TaskStore()
    notifier = Notifier(store, default_token=config.relay.notification_token)

    def handle_answer(task_id: str, content: str) -> None:
        notifier.deliver_answer(task_id, content)

    try:
        registry = ConnectorRegistry.from_config(config)
        server = RelayServer(
            store,
            roster,
            registry,
            notifier,
            host=config.relay.host,
            port=config.relay.port,
        )
        server.start()
    except Exception as e:
        logger.exception("Failed to initialize relay: %s", e)
        return EXIT_STARTUP

    try:
        registry.start_all(handle_answer)
    except ListenerStartError as e:
        logger.critical("Failed to start listeners: %s", e)
        server.stop()
        return EXIT_STARTUP

    stop_event = threading.Event()
    _install_shutdown_handlers(stop_event)
    logger.info("Relay ready with channels: %s", ", ".join(registry))

    try:
        stop_event.wait()
        return EXIT_OK
    except Exception as e:
        logger.exception("Fatal runtime error: %s", e)
        return EXIT_RUNTIME
    finally:
        registry.stop_all()
        server.stop()


# ---------------------------------------------------------------------------
# chat-sim
# ---------------------------------------------------------------------------


def cmd_chat_sim(args: argparse.Namespace) -> int:
    """Run the chat simulator."""
    from a2ha.mock_chat.server import ChatSimulatorServer
    from a2ha.mock_chat.store import ContactRequestStore

    try:
        config = _load_config(args.config, optional=True)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG

    simulator = config.simulator
    server = ChatSimulatorServer(
        ContactRequestStore(),
        host=simulator.host,
        port=args.port or simulator.port,
        relay_webhook_url=simulator.relay_webhook_url,
    )
    try:
        server.start()
    except OSError as e:
        logger.critical("Failed to start chat simulator: %s", e)
        return EXIT_STARTUP

    stop_event = threading.Event()
    _install_shutdown_handlers(stop_event)
    try:
        stop_event.wait()
        return EXIT_OK
    finally:
        server.stop()


# ---------------------------------------------------------------------------
# ask
# ---------------------------------------------------------------------------


def _create_task(
    relay_url: str, body: dict[str, Any], timeout: float = 30.0
) -> dict[str, Any]:
    """POST a task to the relay.

    Raises:
        httpx.HTTPError: On transport failure or a non-2xx reply.
    """
    with httpx.Client(timeout=timeout) as client:
        response = client.post(f"{relay_url.rstrip('/')}/tasks", json=body)
        response.raise_for_status()
    return response.json()


def cmd_ask(args: argparse.Namespace) -> int:
    """Ask a team member and print the answer."""
    try:
        config = _load_config(args.config, optional=True)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG

    agent = config.agent
    slot = ResponseSlot()
    webhook = AgentWebhook(
        slot,
        token=agent.notification_token,
        host=agent.webhook_host,
        port=agent.webhook_port,
    )
    try:
        webhook.start()
    except OSError as e:
        logger.critical("Failed to start agent webhook: %s", e)
        return EXIT_STARTUP

    def shutdown_handler(signum: int, frame: object) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, cancelling wait...", signum)
        slot.cancel()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    push: dict[str, Any] = {"url": agent.webhook_url}
    if agent.notification_token:
        push["token"] = agent.notification_token
    body = {
        "channel": args.channel,
        "contactInfo": args.contact,
        "message": args.message,
        "pushNotification": push,
    }

    try:
        slot.arm()
        try:
            task = _create_task(agent.relay_url, body)
        except httpx.HTTPStatusError as e:
            logger.error(
                "Relay rejected the request (%d): %s",
                e.response.status_code,
                e.response.text,
            )
            return EXIT_RUNTIME
        except httpx.HTTPError as e:
            logger.error("Cannot reach relay at %s: %s", agent.relay_url, e)
            return EXIT_RUNTIME

        webhook.task_id = task.get("id")
        logger.info("Task %s created, waiting for answer", webhook.task_id)
        try:
            answer = slot.wait(timeout=args.timeout)
        except TimeoutError as e:
            logger.error("%s", e)
            return EXIT_RUNTIME
        except SlotCancelledError:
            logger.info("Interrupted by user")
            return EXIT_OK

        print(answer)
        return EXIT_OK
    finally:
        webhook.stop()


# ---------------------------------------------------------------------------
# test-email
# ---------------------------------------------------------------------------


def cmd_test_email(args: argparse.Namespace) -> int:
    """Send a request email, then print answers until interrupted."""
    from a2ha.email.connector import EmailConnector
    from a2ha.email.responder import SendError
    from a2ha.relay.tasks import new_task_id

    try:
        config = _load_config(args.config, optional=False)
        email_config = config.channels.get(CHANNEL_EMAIL)
        if not isinstance(email_config, EmailChannelConfig):
            raise ConfigError("No email channel configured")
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG

    connector = EmailConnector(email_config)
    task_id = new_task_id()
    try:
        connector.send_email(task_id, args.message, {"to": args.to})
    except SendError as e:
        logger.error("%s", e)
        return EXIT_RUNTIME
    print(f"Sent task {task_id} to {args.to}")

    def print_answer(answer_task_id: str, content: str) -> None:
        print(f"[{answer_task_id}] {content}", flush=True)

    try:
        connector.start_email_listener(print_answer)
    except ListenerStartError as e:
        logger.critical("%s", e)
        return EXIT_STARTUP

    stop_event = threading.Event()
    _install_shutdown_handlers(stop_event)
    try:
        stop_event.wait()
        return EXIT_OK
    finally:
        connector.stop_email_listener()


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="a2ha",
        description="A2HA: let AI agents ask humans for help",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to a2ha.yaml config file"
            " (default: ~/.config/a2ha/a2ha.yaml)"
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the relay")
    serve.set_defaults(func=cmd_serve)

    chat_sim = subparsers.add_parser("chat-sim", help="Run the chat simulator")
    chat_sim.add_argument(
        "--port", type=int, default=None, help="Override the listen port"
    )
    chat_sim.set_defaults(func=cmd_chat_sim)

    ask = subparsers.add_parser("ask", help="Ask a team member")
    ask.add_argument("--channel", required=True, help="Channel tag")
    ask.add_argument("--contact", required=True, help="Contact info")
    ask.add_argument("--message", required=True, help="Request text")
    ask.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_ASK_TIMEOUT,
        help="Seconds to wait for the answer (default: %(default)s)",
    )
    ask.set_defaults(func=cmd_ask)

    test_email = subparsers.add_parser(
        "test-email", help="Send a test email and print answers"
    )
    test_email.add_argument("--to", required=True, help="Recipient address")
    test_email.add_argument("--message", required=True, help="Body text")
    test_email.set_defaults(func=cmd_test_email)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code (0=success, 1=config error, 2=startup, 3=runtime error).
    """
    args = build_parser().parse_args(argv)
    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )
    return args.func(args)


def cli() -> None:
    """Console script entry point."""
    sys.exit(main())
