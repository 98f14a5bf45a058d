# views/connections.py
from __future__ import annotations

from typing import Mapping, Sequence

from constants import (
    COMMAND_DONE_TEXT,
    MAX_ITEMS_PER_MESSAGE,
    STATE_LABELS,
    VIEW_EMPTY_TEXT,
    VIEW_TITLES,
)
from models import DisplayProfile, RelationshipRecord, RelationshipState, ViewKind
from services.engine import CommandResult, ViewStatus
from services.reconciliation import SearchHit
from views.safe import html_safe


def format_profile_line(profile: DisplayProfile) -> str:
    """Имя + должность/компания одной строкой, без контактов."""
    name = html_safe(profile.name, default="Без имени", max_len=64)

    extra = [p for p in (profile.headline, profile.company) if p and p.strip()]
    if not extra:
        return f"<b>{name}</b>"
    return f"<b>{name}</b> · {html_safe(' @ '.join(extra), max_len=80)}"


def format_record(
    record: RelationshipRecord,
    index: int | None = None,
    *,
    error: str | None = None,
) -> str:
    prefix = f"{index}. " if index is not None else ""
    line = prefix + format_profile_line(record.profile)

    if error and record.in_flight is None:
        line += f"\n   ⚠️ {html_safe(error, max_len=120)}"

    if record.in_flight is not None:
        if record.confirmed:
            line += "\n   ✅ готово, обновляем…"
        else:
            line += f"\n   ⏳ {html_safe(record.in_flight.value)}…"
    return line


def format_view(
    kind: ViewKind,
    records: Sequence[RelationshipRecord],
    status: ViewStatus | None = None,
    *,
    query: str = "",
    action_errors: Mapping[str, str] | None = None,
) -> str:
    """
    Одно вью целиком. Если последний фетч упал — старые данные остаются,
    а сверху пишем, что обновить не вышло.
    """
    title = VIEW_TITLES[kind]
    if status is not None and status.total and kind != ViewKind.RECOMMENDATIONS:
        title += f" ({status.total})"
    if query:
        title += f"\nПоиск: «{html_safe(query, max_len=40)}»"

    lines: list[str] = [title]

    if status is not None and status.error:
        lines.append(f"⚠️ Не удалось обновить: {html_safe(status.error, max_len=120)}. /refresh")

    if not records:
        lines.append("")
        lines.append(VIEW_EMPTY_TEXT[kind])
        return "\n".join(lines)

    shown = list(records)[:MAX_ITEMS_PER_MESSAGE]
    lines.append("")
    errors = action_errors or {}
    lines.extend(
        format_record(r, i, error=errors.get(r.counterparty_id))
        for i, r in enumerate(shown, start=1)
    )

    hidden = len(records) - len(shown)
    if hidden > 0:
        lines.append(f"\n…и ещё {hidden}")
    return "\n".join(lines)


def format_search_results(
    hits: Sequence[SearchHit],
    *,
    query: str,
    error: str | None = None,
) -> str:
    """Глобальный поиск — отдельный список, когда среди связей никого не нашли."""
    q = html_safe(query, max_len=40)

    if error == "auth_required":
        return "🔒 Глобальный поиск недоступен: нужна авторизация."
    if error:
        return f"⚠️ Глобальный поиск не удался: {html_safe(error, max_len=120)}"
    if not hits:
        return f"По запросу «{q}» никого не нашлось."

    lines = [f"🔎 Среди связей никого, но нашлись люди по запросу «{q}»:", ""]
    for i, hit in enumerate(hits[:MAX_ITEMS_PER_MESSAGE], start=1):
        lines.append(f"{i}. {format_profile_line(hit.profile)}")
    return "\n".join(lines)


def format_command_result(result: CommandResult) -> str:
    """Короткий ответ на нажатие кнопки (callback.answer)."""
    if result.reason == "ok":
        return COMMAND_DONE_TEXT[result.command]
    if result.reason == "conflict":
        return "Уже обрабатываем, секунду…"
    if result.reason == "invalid_state":
        state = result.record.state if result.record is not None else RelationshipState.NONE
        label = STATE_LABELS[state]
        return f"Сейчас это недоступно ({label})"
    return f"Не получилось: {result.message or 'попробуй ещё раз'}"
