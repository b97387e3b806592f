# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the a2ha relay, connectors and tools.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/a2ha/a2ha.yaml``
    (typically ``~/.config/a2ha/a2ha.yaml``)

``!env`` tags resolve values from environment variables, so credentials
can live in ``~/.config/a2ha/.env`` instead of the YAML file.

Every config object is a frozen dataclass that validates itself on
construction.  An invalid value raises ``ConfigError`` before any
connection is attempted, so a connector is never built from a partially
valid config.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, overload

import yaml
from platformdirs import user_config_path

from a2ha.dotenv_loader import load_dotenv_once
from a2ha.logging import SecretFilter


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "a2ha"

#: Channel tags understood by the registry.
CHANNEL_EMAIL = "email"
CHANNEL_MOCK_CHAT = "mock-chat"

DEFAULT_POLL_INTERVAL_SECONDS = 10.0
DEFAULT_RECONNECT_DELAY_SECONDS = 5.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_MAX_CONTENT_LENGTH = 1_000_000
DEFAULT_SIGNATURE = "This email is written by an AI automation called A2HA"
DEFAULT_MOCK_CHAT_SENDER = "@human-agent-proxy"

_NORMALIZATION_FORMS = frozenset({"NFC", "NFD", "NFKC", "NFKD"})

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default config file path.

    Returns:
        ``$XDG_CONFIG_HOME/a2ha/a2ha.yaml``.
    """
    return user_config_path(_APP_NAME) / "a2ha.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


def get_team_path() -> Path:
    """Return the default team roster path."""
    return user_config_path(_APP_NAME) / "team.json"


class ConfigError(Exception):
    """Raised for missing or invalid configuration."""


# ---------------------------------------------------------------------------
# YAML tag placeholders and value resolution
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()


@overload
def _resolve[T](value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve[T](
    value: object,
    coerce: type[T],
    *,
    required: str,
) -> T: ...


@overload
def _resolve[T](value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``, ``bool``,
            ``Path``).
        default: Default when value is absent.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.

    Raises:
        ConfigError: If a required value is absent or coercion fails.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    if coerce is Path:
        return Path(resolved).expanduser()
    try:
        return coerce(resolved)
    except ValueError as e:
        label = required or "value"
        raise ConfigError(
            f"Config '{label}' must be {coerce.__name__}: {resolved!r}"
        ) from e


def _section(raw: dict, key: str) -> dict:
    """Return a nested mapping, treating a missing key as empty."""
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a YAML mapping")
    return value


def _require_text(label: str, value: str) -> None:
    if not value or not value.strip():
        raise ConfigError(f"{label} cannot be empty")


def _validate_port(label: str, port: int) -> None:
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigError(f"{label} port must be an integer: {port!r}")
    if not (1 <= port <= 65535):
        raise ConfigError(f"{label} port must be between 1 and 65535: {port}")


def _validate_http_url(label: str, url: str) -> None:
    if not url.startswith(("http://", "https://")):
        raise ConfigError(f"{label} must be an http(s) URL: {url!r}")


# ---------------------------------------------------------------------------
# Email channel
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SmtpConfig:
    """Outbound mail transport settings.

    Attributes:
        host: SMTP server hostname.
        port: SMTP port.
        user: Login user name.
        password: Login password (auto-redacted in logs).
        secure: Use implicit TLS (``SMTP_SSL``, usually port 465).  When
            false, STARTTLS is used if the server offers it.
        require_auth: Log in before sending.  Disable only for local
            relays and test servers that do not offer AUTH.
        from_address: From header for outgoing mail.  Defaults to
            ``user``.
        timeout_seconds: Socket timeout for one send.
    """

    host: str
    port: int
    user: str
    password: str
    secure: bool = False
    require_auth: bool = True
    from_address: str = ""
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration and register secrets.

        Raises:
            ConfigError: If configuration is invalid.
        """
        SecretFilter.register_secret(self.password)
        _require_text("SMTP host", self.host)
        _validate_port("SMTP", self.port)
        _require_text("SMTP user", self.user)
        if not self.password:
            raise ConfigError("SMTP password cannot be empty")
        if self.timeout_seconds <= 0:
            raise ConfigError(
                f"SMTP timeout must be > 0: {self.timeout_seconds}"
            )

    @property
    def sender(self) -> str:
        """Effective From address."""
        return self.from_address or self.user


@dataclass(frozen=True)
class ImapConfig:
    """Inbound mailbox settings.

    Attributes:
        host: IMAP server hostname.
        port: IMAP port.
        user: Login user name.
        password: Login password (auto-redacted in logs).
        tls: Connect with implicit TLS (``IMAP4_SSL``).
        tls_verify: Verify the server certificate.  Disable only for
            self-signed test servers.
        mailbox: Mailbox to watch.
        timeout_seconds: Socket timeout used for connect and commands.
    """

    host: str
    port: int
    user: str
    password: str
    tls: bool = True
    tls_verify: bool = True
    mailbox: str = "INBOX"
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration and register secrets.

        Raises:
            ConfigError: If configuration is invalid.
        """
        SecretFilter.register_secret(self.password)
        _require_text("IMAP host", self.host)
        _validate_port("IMAP", self.port)
        _require_text("IMAP user", self.user)
        if not self.password:
            raise ConfigError("IMAP password cannot be empty")
        _require_text("IMAP mailbox", self.mailbox)
        if self.timeout_seconds <= 0:
            raise ConfigError(
                f"IMAP timeout must be > 0: {self.timeout_seconds}"
            )


@dataclass(frozen=True)
class EmailChannelConfig:
    """Email connector configuration (both directions).

    Attributes:
        smtp: Outbound transport.
        imap: Inbound mailbox.
        default_recipient: Destination used by ``send_email`` when the
            caller does not pass one.
        poll_interval_seconds: Poll trigger interval.
        use_idle: Use IMAP IDLE as the push trigger when the server
            supports it.
        reconnect_delay_seconds: Fixed delay before each reconnect.
        max_reconnect_attempts: Consecutive failures before the listener
            gives up and closes.
        mark_unmatched_read: Flag messages without a task identifier as
            read instead of leaving them unread.
        normalization_form: Unicode normalization applied to content.
        max_content_length: Content ceiling in characters.
        signature: Footer appended to outgoing mail.  Empty disables it.
    """

    smtp: SmtpConfig
    imap: ImapConfig
    default_recipient: str | None = None
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    use_idle: bool = True
    reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    mark_unmatched_read: bool = False
    normalization_form: str = "NFD"
    max_content_length: int = DEFAULT_MAX_CONTENT_LENGTH
    signature: str = DEFAULT_SIGNATURE

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If configuration is invalid.
        """
        if self.poll_interval_seconds <= 0:
            raise ConfigError(
                f"Poll interval must be > 0s: {self.poll_interval_seconds}"
            )
        if self.reconnect_delay_seconds < 0:
            raise ConfigError(
                f"Reconnect delay must be >= 0s: "
                f"{self.reconnect_delay_seconds}"
            )
        if self.max_reconnect_attempts < 1:
            raise ConfigError(
                f"Max reconnect attempts must be >= 1: "
                f"{self.max_reconnect_attempts}"
            )
        if self.normalization_form not in _NORMALIZATION_FORMS:
            raise ConfigError(
                f"Unknown normalization form: {self.normalization_form!r}"
            )
        if self.max_content_length < 1:
            raise ConfigError(
                f"Max content length must be >= 1: {self.max_content_length}"
            )

    @property
    def channel_type(self) -> str:
        """Return the channel tag."""
        return CHANNEL_EMAIL

    @property
    def channel_info(self) -> str:
        """Short description for logs and the health endpoint."""
        return f"{self.imap.user} via {self.imap.host}"


# ---------------------------------------------------------------------------
# Mock chat channel
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MockChatConfig:
    """Mock chat connector configuration.

    Attributes:
        api_url: Base URL of the chat simulator.
        webhook_host: Bind address for the inbound answer webhook.
        webhook_port: Port for the inbound answer webhook.
        sender: ``from`` value used for outgoing contact requests.
        timeout_seconds: HTTP timeout for outgoing requests.
    """

    api_url: str = "http://localhost:5000"
    webhook_host: str = "127.0.0.1"
    webhook_port: int = 4100
    sender: str = DEFAULT_MOCK_CHAT_SENDER
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration.

        Raises:
            ConfigError: If configuration is invalid.
        """
        _validate_http_url("Mock chat api_url", self.api_url)
        _validate_port("Mock chat webhook", self.webhook_port)
        _require_text("Mock chat sender", self.sender)

    @property
    def channel_type(self) -> str:
        """Return the channel tag."""
        return CHANNEL_MOCK_CHAT

    @property
    def channel_info(self) -> str:
        """Short description for logs and the health endpoint."""
        return self.api_url


type ChannelConfig = EmailChannelConfig | MockChatConfig


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RelayConfig:
    """Relay server settings.

    Attributes:
        host: Bind address.
        port: Listen port.
        team_file: Path to the team roster JSON.
        notification_token: Default token sent with push notifications
            when a task does not carry its own (auto-redacted in logs).
    """

    host: str = "127.0.0.1"
    port: int = 4000
    team_file: Path = field(default_factory=get_team_path)
    notification_token: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration and register secrets."""
        SecretFilter.register_secret(self.notification_token)
        _validate_port("Relay", self.port)


@dataclass(frozen=True)
class SimulatorConfig:
    """Chat simulator settings.

    Attributes:
        host: Bind address.
        port: Listen port.
        relay_webhook_url: Where replies typed into the simulator are
            forwarded (the mock chat connector's webhook).  None keeps
            them local.
    """

    host: str = "127.0.0.1"
    port: int = 5000
    relay_webhook_url: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        _validate_port("Simulator", self.port)
        if self.relay_webhook_url is not None:
            _validate_http_url(
                "Simulator relay_webhook_url", self.relay_webhook_url
            )


@dataclass(frozen=True)
class AgentConfig:
    """Settings for the agent side of ``a2ha ask``.

    Attributes:
        relay_url: Base URL of the relay.
        webhook_host: Bind address for push notifications.
        webhook_port: Port for push notifications.
        notification_token: Token expected on push notifications
            (auto-redacted in logs).
        public_webhook_url: URL the relay should call.  Defaults to
            ``http://<webhook_host>:<webhook_port>/webhook/task-updates``.
    """

    relay_url: str = "http://localhost:4000"
    webhook_host: str = "127.0.0.1"
    webhook_port: int = 4200
    notification_token: str | None = None
    public_webhook_url: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration and register secrets."""
        SecretFilter.register_secret(self.notification_token)
        _validate_http_url("Agent relay_url", self.relay_url)
        _validate_port("Agent webhook", self.webhook_port)

    @property
    def webhook_url(self) -> str:
        """URL the relay posts task updates to."""
        if self.public_webhook_url:
            return self.public_webhook_url
        return (
            f"http://{self.webhook_host}:{self.webhook_port}"
            f"/webhook/task-updates"
        )


@dataclass(frozen=True)
class ServerConfig:
    """Complete a2ha configuration.

    Attributes:
        relay: Relay server settings.
        simulator: Chat simulator settings.
        agent: Agent-side settings used by ``a2ha ask``.
        channels: Channel configs keyed by channel tag.
    """

    relay: RelayConfig = field(default_factory=RelayConfig)
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate that channel tags match their config types.

        Raises:
            ConfigError: If a tag is paired with the wrong config type.
        """
        for tag, channel in self.channels.items():
            if channel.channel_type != tag:
                raise ConfigError(
                    f"Channel '{tag}' has a {type(channel).__name__} config"
                )

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> ServerConfig:
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  ``.env`` files are loaded first.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/a2ha/a2ha.yaml`` (XDG).

        Returns:
            ServerConfig instance.

        Raises:
            ConfigError: If the file is missing or values are invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(
                    f"Invalid YAML in {config_path}: {e}"
                ) from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls.from_dict(raw)
        logger.info(
            "Config loaded from %s: channels=%s",
            config_path,
            sorted(config.channels),
        )
        return config

    @classmethod
    def from_dict(cls, raw: dict) -> ServerConfig:
        """Build config from a parsed (but unresolved) YAML mapping."""
        relay = _section(raw, "relay")
        simulator = _section(raw, "simulator")
        agent = _section(raw, "agent")
        raw_channels = _section(raw, "channels")

        channels: dict[str, ChannelConfig] = {}
        for tag, channel_raw in raw_channels.items():
            tag = str(tag)
            if channel_raw is None:
                channel_raw = {}
            if not isinstance(channel_raw, dict):
                raise ConfigError(f"channels.{tag} must be a YAML mapping")
            if tag == CHANNEL_EMAIL:
                channels[tag] = parse_email_channel(channel_raw)
            elif tag == CHANNEL_MOCK_CHAT:
                channels[tag] = parse_mock_chat_channel(channel_raw)
            else:
                raise ConfigError(f"Unknown channel: {tag!r}")

        return cls(
            relay=RelayConfig(
                host=_resolve(relay.get("host"), str, default="127.0.0.1"),
                port=_resolve(relay.get("port"), int, default=4000),
                team_file=_resolve(
                    relay.get("team_file"), Path, default=get_team_path()
                ),
                notification_token=_resolve(
                    relay.get("notification_token"), str
                ),
            ),
            simulator=SimulatorConfig(
                host=_resolve(simulator.get("host"), str, default="127.0.0.1"),
                port=_resolve(simulator.get("port"), int, default=5000),
                relay_webhook_url=_resolve(
                    simulator.get("relay_webhook_url"), str
                ),
            ),
            agent=AgentConfig(
                relay_url=_resolve(
                    agent.get("relay_url"), str, default="http://localhost:4000"
                ),
                webhook_host=_resolve(
                    agent.get("webhook_host"), str, default="127.0.0.1"
                ),
                webhook_port=_resolve(
                    agent.get("webhook_port"), int, default=4200
                ),
                notification_token=_resolve(
                    agent.get("notification_token"), str
                ),
                public_webhook_url=_resolve(
                    agent.get("public_webhook_url"), str
                ),
            ),
            channels=channels,
        )


def parse_email_channel(raw: dict) -> EmailChannelConfig:
    """Parse the ``channels.email`` section.

    Args:
        raw: Unresolved YAML mapping.

    Returns:
        Validated email channel config.

    Raises:
        ConfigError: If a required value is missing or invalid.
    """
    smtp = _section(raw, "smtp")
    imap = _section(raw, "imap")

    smtp_config = SmtpConfig(
        host=_resolve(smtp.get("host"), str, required="smtp.host").strip(),
        port=_resolve(smtp.get("port"), int, default=587),
        user=_resolve(smtp.get("user"), str, required="smtp.user").strip(),
        password=_resolve(
            smtp.get("password"), str, required="smtp.password"
        ),
        secure=_resolve(smtp.get("secure"), bool, default=False),
        require_auth=_resolve(smtp.get("require_auth"), bool, default=True),
        from_address=_resolve(smtp.get("from"), str, default=""),
        timeout_seconds=_resolve(smtp.get("timeout"), float, default=30.0),
    )
    imap_config = ImapConfig(
        host=_resolve(imap.get("host"), str, required="imap.host").strip(),
        port=_resolve(imap.get("port"), int, default=993),
        user=_resolve(imap.get("user"), str, required="imap.user").strip(),
        password=_resolve(
            imap.get("password"), str, required="imap.password"
        ),
        tls=_resolve(imap.get("tls"), bool, default=True),
        tls_verify=_resolve(imap.get("tls_verify"), bool, default=True),
        mailbox=_resolve(imap.get("mailbox"), str, default="INBOX"),
        timeout_seconds=_resolve(imap.get("timeout"), float, default=10.0),
    )
    return EmailChannelConfig(
        smtp=smtp_config,
        imap=imap_config,
        default_recipient=_resolve(raw.get("default_recipient"), str),
        poll_interval_seconds=_resolve(
            raw.get("poll_interval"),
            float,
            default=DEFAULT_POLL_INTERVAL_SECONDS,
        ),
        use_idle=_resolve(raw.get("use_idle"), bool, default=True),
        reconnect_delay_seconds=_resolve(
            raw.get("reconnect_delay"),
            float,
            default=DEFAULT_RECONNECT_DELAY_SECONDS,
        ),
        max_reconnect_attempts=_resolve(
            raw.get("max_reconnect_attempts"),
            int,
            default=DEFAULT_MAX_RECONNECT_ATTEMPTS,
        ),
        mark_unmatched_read=_resolve(
            raw.get("mark_unmatched_read"), bool, default=False
        ),
        normalization_form=_resolve(
            raw.get("normalization_form"), str, default="NFD"
        ).upper(),
        max_content_length=_resolve(
            raw.get("max_content_length"),
            int,
            default=DEFAULT_MAX_CONTENT_LENGTH,
        ),
        signature=_resolve(
            raw.get("signature"), str, default=DEFAULT_SIGNATURE
        ),
    )


def parse_mock_chat_channel(raw: dict) -> MockChatConfig:
    """Parse the ``channels.mock-chat`` section."""
    return MockChatConfig(
        api_url=_resolve(
            raw.get("api_url"), str, default="http://localhost:5000"
        ).rstrip("/"),
        webhook_host=_resolve(
            raw.get("webhook_host"), str, default="127.0.0.1"
        ),
        webhook_port=_resolve(raw.get("webhook_port"), int, default=4100),
        sender=_resolve(
            raw.get("sender"), str, default=DEFAULT_MOCK_CHAT_SENDER
        ),
        timeout_seconds=_resolve(raw.get("timeout"), float, default=10.0),
    )
