"""Unit tests for reply composition."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from virtual_vacation.compose import (
    build_reply,
    format_stored_date,
    render_body,
    render_from,
    render_subject,
)
from virtual_vacation.config import Settings
from virtual_vacation.models import MessageHeaders, VacationConfig


@pytest.fixture
def vacation() -> VacationConfig:
    return VacationConfig(
        email="owner@example.org",
        subject="Out of office: $SUBJECT",
        body="I am away from <%From_Date> and back on <%Until_Date>.",
        activefrom="2024-05-01 00:00:00",
        activeuntil="2024-06-01 00:00:00",
    )


@pytest.fixture
def original() -> MessageHeaders:
    return MessageHeaders(
        from_="Alice <alice@example.net>",
        to="owner@example.org",
        subject="Lunch on Friday?",
        message_id="<msg-1@example.net>",
    )


class TestFormatStoredDate:
    """Test suite for format_stored_date."""

    @pytest.mark.parametrize(
        "value",
        ["2024-06-01 00:00:00", "2024-06-01", datetime(2024, 6, 1, 8, 30), date(2024, 6, 1)],
    )
    def test_formats(self, value) -> None:
        assert format_stored_date(value, "%d.%m.%Y") == "01.06.2024"

    def test_malformed_text_passes_through(self) -> None:
        assert format_stored_date("next monday", "%Y-%m-%d") == "next monday"


class TestRendering:
    """Subject, body and From rendering."""

    def test_subject_token(self) -> None:
        assert render_subject("Re: $SUBJECT", "Lunch") == "Re: Lunch"

    def test_subject_line_breaks_are_flattened(self) -> None:
        assert render_subject("Away\r\n$SUBJECT", "Hi\nthere") == "Away Hi there"

    def test_body_placeholders(self, vacation: VacationConfig) -> None:
        body = render_body(vacation, Settings(_env_file=None))

        assert body == "I am away from 2024-05-01 and back on 2024-06-01."

    def test_body_with_custom_placeholders(self, vacation: VacationConfig) -> None:
        vacation.body = "Back on {until}"
        settings = Settings(_env_file=None, replace_until="{until}", date_format="%d/%m")

        assert render_body(vacation, settings) == "Back on 01/06"

    def test_from_plain(self) -> None:
        assert render_from("owner@example.org", Settings(_env_file=None)) == "owner@example.org"

    def test_from_friendly(self) -> None:
        settings = Settings(_env_file=None, friendly_from="Helpdesk")

        assert render_from("owner@example.org", settings) == "Helpdesk <owner@example.org>"

    def test_account_name_only_when_enabled(self) -> None:
        off = Settings(_env_file=None, friendly_from="Helpdesk")
        on = Settings(_env_file=None, friendly_from="Helpdesk", accountname_check=True)

        assert render_from("owner@example.org", off, "Olga") == "Helpdesk <owner@example.org>"
        assert render_from("owner@example.org", on, "Olga") == "Olga <owner@example.org>"
        assert render_from("owner@example.org", on, None) == "Helpdesk <owner@example.org>"


class TestBuildReply:
    """Test suite for build_reply."""

    def test_headers(self, vacation, original) -> None:
        reply = build_reply(vacation, "alice@example.net", original, Settings(_env_file=None))

        assert reply["To"] == "alice@example.net"
        assert reply["From"] == "owner@example.org"
        assert reply["Subject"] == "Out of office: Lunch on Friday?"
        assert reply["In-Reply-To"] == "<msg-1@example.net>"
        assert reply["Precedence"] == "junk"
        assert reply["X-Loop"] == "Postfix Admin Virtual Vacation"
        assert reply["Auto-Submitted"] == "auto-replied"
        assert reply["Date"]
        assert reply["Message-ID"].endswith("@example.org>")

    def test_body_is_utf8(self, vacation, original) -> None:
        vacation.body = "Zurück am <%Until_Date>."

        reply = build_reply(vacation, "alice@example.net", original, Settings(_env_file=None))

        assert reply.get_content_charset() == "utf-8"
        assert reply.get_content().strip() == "Zurück am 2024-06-01."

    def test_unknown_message_id_is_not_referenced(self, vacation, original) -> None:
        original.message_id = "unknown"

        reply = build_reply(vacation, "alice@example.net", original, Settings(_env_file=None))

        assert reply["In-Reply-To"] is None

    def test_reply_is_recognized_as_a_loop(self, vacation, original) -> None:
        """Test that our own reply would be suppressed if it came back."""
        from virtual_vacation.exceptions import ReplySuppressed
        from virtual_vacation.message import iter_header_lines, read_headers

        reply = build_reply(vacation, "alice@example.net", original, Settings(_env_file=None))

        with pytest.raises(ReplySuppressed):
            read_headers(iter_header_lines(reply.as_bytes()), "Postfix Admin Virtual Vacation")
