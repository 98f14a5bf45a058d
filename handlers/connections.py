# handlers/connections.py
import logging

from aiogram import Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import Message
from aiogram.utils.keyboard import InlineKeyboardBuilder

from constants import (
    CALLBACK_PREFIX,
    COMMAND_BUTTONS,
    MAX_ITEMS_PER_MESSAGE,
    VIEW_COMMANDS,
)
from models import Command as ConnCommand, RelationshipRecord, ViewKind
from services.engine import ConnectionsEngine
from services.reconciliation import SearchHit
from views import format_search_results, format_view, html_safe

logger = logging.getLogger(__name__)

router = Router()

HELP_TEXT = (
    "Связи 🤝\n\n"
    "/connections — мои связи\n"
    "/invitations — входящие приглашения\n"
    "/sent — отправленные заявки\n"
    "/suggestions — кого можно добавить\n"
    "/find &lt;запрос&gt; — поиск по связям (и по всем, если среди связей нет)\n"
    "/find — сбросить поиск\n"
    "/refresh — перезагрузить всё"
)


# ===== ВСПОМОГАЛКИ =====


def _button_label(command: ConnCommand, name: str, index: int) -> str:
    short = name if len(name) <= 20 else name[:19] + "…"
    return f"{index}. {COMMAND_BUTTONS[command]} {short}".strip()


def build_view_keyboard(
    kind: ViewKind,
    records: list[RelationshipRecord],
) -> InlineKeyboardBuilder | None:
    """По кнопке на каждую доступную команду для каждой карточки."""
    commands = VIEW_COMMANDS[kind]
    kb = InlineKeyboardBuilder()
    count = 0

    for index, record in enumerate(records[:MAX_ITEMS_PER_MESSAGE], start=1):
        if record.in_flight is not None:
            continue
        for command in commands:
            kb.button(
                text=_button_label(command, record.profile.name, index),
                callback_data=f"{CALLBACK_PREFIX}:{command.value}:{record.counterparty_id}",
            )
            count += 1

    if not count:
        return None
    kb.adjust(len(commands))
    return kb


def build_search_keyboard(hits: list[SearchHit]) -> InlineKeyboardBuilder | None:
    if not hits:
        return None
    kb = InlineKeyboardBuilder()
    for index, hit in enumerate(hits[:MAX_ITEMS_PER_MESSAGE], start=1):
        kb.button(
            text=_button_label(ConnCommand.SEND, hit.profile.name, index),
            callback_data=f"{CALLBACK_PREFIX}:{ConnCommand.SEND.value}:{hit.counterparty_id}",
        )
    kb.adjust(1)
    return kb


async def send_view(message: Message, engine: ConnectionsEngine, kind: ViewKind) -> None:
    records = engine.view(kind)
    query = engine.search.active_query if kind in (ViewKind.CONNECTIONS, ViewKind.SENT) else ""

    text = format_view(
        kind,
        records,
        engine.status(kind),
        query=query,
        action_errors=engine.action_errors,
    )
    kb = build_view_keyboard(kind, records)
    await message.answer(text, reply_markup=kb.as_markup() if kb else None)


# ===== КОМАНДЫ =====


@router.message(CommandStart())
@router.message(Command("help"))
async def cmd_help(message: Message):
    await message.answer(HELP_TEXT)


@router.message(Command("connections"))
async def cmd_connections(message: Message, engine: ConnectionsEngine):
    await send_view(message, engine, ViewKind.CONNECTIONS)


@router.message(Command("invitations"))
async def cmd_invitations(message: Message, engine: ConnectionsEngine):
    await send_view(message, engine, ViewKind.INVITATIONS)


@router.message(Command("sent"))
async def cmd_sent(message: Message, engine: ConnectionsEngine):
    await send_view(message, engine, ViewKind.SENT)


@router.message(Command("suggestions"))
async def cmd_suggestions(message: Message, engine: ConnectionsEngine):
    await send_view(message, engine, ViewKind.RECOMMENDATIONS)


@router.message(Command("find"))
async def cmd_find(message: Message, command: CommandObject, engine: ConnectionsEngine):
    query = (command.args or "").strip()
    logger.info("find_requested query=%r", query)

    engine.set_search_query(query)
    # ждём debounce и ответ сервера, чтобы показать уже готовую выдачу
    await engine.join()

    await send_view(message, engine, ViewKind.CONNECTIONS)

    if not query or engine.connections():
        return

    hits = engine.global_results
    text = format_search_results(hits, query=query, error=engine.search.global_error)
    kb = build_search_keyboard(hits)
    await message.answer(text, reply_markup=kb.as_markup() if kb else None)


@router.message(Command("refresh"))
async def cmd_refresh(message: Message, engine: ConnectionsEngine):
    errors = await engine.refresh()
    if not errors:
        await message.answer("Обновлено ✅")
        return

    failed = ", ".join(html_safe(e.view.value) for e in errors)
    await message.answer(f"Обновили не всё ⚠️\nНе загрузилось: {failed}")
