# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

from collections.abc import Iterator

import pytest

from a2ha.config import EmailChannelConfig, ImapConfig, SmtpConfig
from a2ha.dotenv_loader import reset_dotenv_state
from a2ha.logging import SecretFilter


SAMPLE_EMAIL = (
    b"From: Ada <ada@example.com>\r\n"
    b"To: relay@example.com\r\n"
    b"Subject: Re: Support request: [#task-123]\r\n"
    b"Message-ID: <reply1@example.com>\r\n"
    b"Content-Type: text/plain; charset=utf-8\r\n"
    b"\r\n"
    b"Ship it on Friday.\r\n"
)


@pytest.fixture(autouse=True)
def _clean_global_state() -> Iterator[None]:
    """Reset process-wide registries between tests."""
    SecretFilter.clear_secrets()
    reset_dotenv_state()
    yield
    SecretFilter.clear_secrets()
    reset_dotenv_state()


@pytest.fixture
def smtp_config() -> SmtpConfig:
    """Test SMTP configuration."""
    return SmtpConfig(
        host="smtp.example.com",
        port=587,
        user="relay@example.com",
        password="smtp_password",
    )


@pytest.fixture
def imap_config() -> ImapConfig:
    """Test IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        port=993,
        user="relay@example.com",
        password="imap_password",
    )


@pytest.fixture
def email_config(
    smtp_config: SmtpConfig, imap_config: ImapConfig
) -> EmailChannelConfig:
    """Test email channel configuration."""
    return EmailChannelConfig(
        smtp=smtp_config,
        imap=imap_config,
        default_recipient="ada@example.com",
    )


@pytest.fixture
def sample_email_bytes() -> bytes:
    """A plain-text reply carrying a task identifier."""
    return SAMPLE_EMAIL
