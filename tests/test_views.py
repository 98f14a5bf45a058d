from constants import COMMAND_DONE_TEXT, VIEW_EMPTY_TEXT
from handlers.connection_actions import parse_callback
from handlers.connections import build_search_keyboard, build_view_keyboard
from models import (
    Command,
    DisplayProfile,
    InFlightAction,
    RelationshipRecord,
    RelationshipState,
    ViewKind,
)
from services.engine import CommandResult, ViewStatus
from services.reconciliation import SearchHit
from views import format_command_result, format_search_results, format_view, html_safe


def _record(cid, name, state=RelationshipState.CONNECTED, **profile):
    return RelationshipRecord(
        counterparty_id=cid,
        state=state,
        profile=DisplayProfile(name=name, **profile),
    )


def test_html_safe_escapes_and_truncates():
    assert html_safe(None) == "—"
    assert html_safe("   ") == "—"
    assert html_safe("<b>Bob</b>") == "&lt;b&gt;Bob&lt;/b&gt;"
    assert html_safe("abcdefghij", max_len=5) == "abcd…"


def test_format_view_lists_records_with_headline_and_company():
    text = format_view(
        ViewKind.CONNECTIONS,
        [_record("u1", "Alice", headline="CTO", company="Acme"), _record("u2", "<Bob>")],
        ViewStatus(total=2),
    )

    assert "Мои связи (2)" in text
    assert "1. <b>Alice</b> · CTO @ Acme" in text
    assert "2. <b>&lt;Bob&gt;</b>" in text


def test_format_view_empty_and_failed():
    text = format_view(ViewKind.INVITATIONS, [], ViewStatus(error="Network error"))

    assert VIEW_EMPTY_TEXT[ViewKind.INVITATIONS] in text
    assert "Не удалось обновить: Network error" in text


def test_format_view_marks_in_flight_and_errors():
    busy = _record("u1", "Alice", RelationshipState.INCOMING_PENDING)
    busy.in_flight = InFlightAction.ACCEPTING
    failed = _record("u2", "Bob", RelationshipState.INCOMING_PENDING)

    text = format_view(
        ViewKind.INVITATIONS,
        [busy, failed],
        action_errors={"u2": "Request not found"},
    )

    assert "accepting…" in text
    assert "⚠️ Request not found" in text


def test_format_search_results():
    hits = [SearchHit("u9", DisplayProfile(name="Zed"))]

    assert "Zed" in format_search_results(hits, query="zed")
    assert "никого не нашлось" in format_search_results([], query="zed")
    assert "авторизация" in format_search_results([], query="zed", error="auth_required")


def test_format_command_result():
    record = _record("u1", "Alice")

    assert format_command_result(CommandResult("ok", Command.ACCEPT, "u1", record)) == (
        COMMAND_DONE_TEXT[Command.ACCEPT]
    )
    assert "Уже обрабатываем" in format_command_result(
        CommandResult("conflict", Command.ACCEPT, "u1", record)
    )
    assert "на связи" in format_command_result(
        CommandResult("invalid_state", Command.ACCEPT, "u1", record)
    )
    assert "Oops" in format_command_result(
        CommandResult("failed", Command.SEND, "u1", None, "Oops")
    )


def test_parse_callback():
    assert parse_callback("conn:accept:u4") == (Command.ACCEPT, "u4")
    assert parse_callback("conn:explode:u4") is None
    assert parse_callback("conn:accept:") is None
    assert parse_callback("proj_apply:1") is None


def test_view_keyboard_skips_in_flight_records():
    busy = _record("u1", "Alice", RelationshipState.INCOMING_PENDING)
    busy.in_flight = InFlightAction.REJECTING
    idle = _record("u2", "Bob", RelationshipState.INCOMING_PENDING)

    kb = build_view_keyboard(ViewKind.INVITATIONS, [busy, idle])
    buttons = [b for row in kb.as_markup().inline_keyboard for b in row]

    assert [b.callback_data for b in buttons] == ["conn:accept:u2", "conn:reject:u2"]
    assert build_view_keyboard(ViewKind.INVITATIONS, [busy]) is None


def test_search_keyboard_offers_send():
    kb = build_search_keyboard([SearchHit("u9", DisplayProfile(name="Zed"))])
    buttons = [b for row in kb.as_markup().inline_keyboard for b in row]

    assert [b.callback_data for b in buttons] == ["conn:send:u9"]
    assert build_search_keyboard([]) is None
