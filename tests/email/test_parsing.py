# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for email parsing and content safeguards."""

import unicodedata
from email.message import EmailMessage
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from a2ha.email.parsing import (
    TRUNCATION_NOTICE,
    ParseError,
    decode_subject,
    extract_content,
    normalize_content,
    parse_message,
)


class TestDecodeSubject:
    def test_plain(self) -> None:
        msg = EmailMessage()
        msg["Subject"] = "Re: Support request: [#t1]"
        assert decode_subject(msg) == "Re: Support request: [#t1]"

    def test_missing(self) -> None:
        assert decode_subject(EmailMessage()) == ""

    def test_rfc2047_encoded(self) -> None:
        """Encoded-words are decoded and joined with plain runs."""
        msg = MIMEText("body")
        msg["Subject"] = (
            "Re: =?utf-8?B?U3VwcG9ydCByZXF1ZXN0OiBbI3QxXQ==?= (update)"
        )
        assert decode_subject(msg).startswith("Re: Support request: [#t1]")

    def test_unknown_charset_falls_back(self) -> None:
        msg = MIMEText("body")
        msg["Subject"] = "=?x-bogus?Q?Hello?="
        assert decode_subject(msg) == "Hello"


class TestExtractContent:
    def test_prefers_plain_text(self) -> None:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText("<p>Yes</p>", "html"))
        msg.attach(MIMEText("Yes", "plain"))
        assert extract_content(msg) == ("Yes", "text/plain")

    def test_html_only_returns_markup(self) -> None:
        msg = MIMEText("<p>Approved</p>", "html")
        assert extract_content(msg) == ("<p>Approved</p>", "text/html")

    def test_skips_text_attachments(self) -> None:
        msg = MIMEMultipart()
        attachment = MIMEText("log contents", "plain")
        attachment.add_header(
            "Content-Disposition", "attachment", filename="log.txt"
        )
        msg.attach(attachment)
        msg.attach(MIMEText("Real answer", "plain"))
        assert extract_content(msg) == ("Real answer", "text/plain")

    def test_no_text_part(self) -> None:
        msg = MIMEMultipart()
        msg.attach(MIMEApplication(b"\x00\x01", "octet-stream"))
        assert extract_content(msg) == ("", "")

    def test_charset_decoding(self) -> None:
        msg = MIMEText("Hyvä idea", "plain", "iso-8859-1")
        assert extract_content(msg)[0] == "Hyvä idea"


class TestParseMessage:
    def test_parses_sample(self, sample_email_bytes: bytes) -> None:
        message = parse_message("7", sample_email_bytes)

        assert message.uid == "7"
        assert message.subject == "Re: Support request: [#task-123]"
        assert message.sender == "Ada <ada@example.com>"
        assert message.content.strip() == "Ship it on Friday."
        assert message.content_type == "text/plain"

    @pytest.mark.parametrize("raw", [b"", b"   \r\n"])
    def test_empty_raises(self, raw: bytes) -> None:
        with pytest.raises(ParseError, match="no content"):
            parse_message("1", raw)

    def test_non_bytes_raises(self) -> None:
        with pytest.raises(ParseError):
            parse_message("1", "text")  # type: ignore[arg-type]

    def test_headers_only_message(self) -> None:
        """A message without a body parses to empty content."""
        message = parse_message("2", b"Subject: [#t2]\r\n\r\n")
        assert message.subject == "[#t2]"
        assert message.content == ""


class TestNormalizeContent:
    def test_default_form_is_nfd(self) -> None:
        composed = "caf\u00e9"
        result = normalize_content(composed)
        assert result == unicodedata.normalize("NFD", composed)
        assert len(result) == 5

    def test_other_form(self) -> None:
        decomposed = "cafe\u0301"
        assert normalize_content(decomposed, form="NFC") == "caf\u00e9"

    def test_under_limit_untouched(self) -> None:
        assert normalize_content("abc", max_length=3) == "abc"

    def test_truncates_with_notice(self) -> None:
        result = normalize_content("a" * 12, max_length=10)
        assert result == "a" * 10 + TRUNCATION_NOTICE

    def test_default_ceiling(self) -> None:
        result = normalize_content("x" * 1_000_001)
        assert result == "x" * 1_000_000 + TRUNCATION_NOTICE

    def test_limit_applies_after_normalization(self) -> None:
        """NFD expansion can push content over the ceiling."""
        result = normalize_content("\u00e9" * 6, max_length=10)
        assert result.endswith(TRUNCATION_NOTICE)
        assert len(result) == 10 + len(TRUNCATION_NOTICE)

    def test_truncation_logs_warning(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level("WARNING"):
            normalize_content("a" * 5, max_length=2)
        assert "truncated from 5 to 2" in caplog.text
