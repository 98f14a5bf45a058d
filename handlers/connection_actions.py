# handlers/connection_actions.py
import logging

from aiogram import Router, F
from aiogram.types import CallbackQuery

from constants import CALLBACK_PREFIX
from models import Command
from services.engine import ConnectionsEngine
from views import format_command_result

logger = logging.getLogger(__name__)

router = Router()


def parse_callback(data: str) -> tuple[Command, str] | None:
    """conn:<command>:<counterparty_id> -> (Command, id) или None."""
    parts = data.split(":", 2)
    if len(parts) != 3 or parts[0] != CALLBACK_PREFIX or not parts[2]:
        return None
    try:
        command = Command(parts[1])
    except ValueError:
        return None
    return command, parts[2]


@router.callback_query(F.data.startswith(f"{CALLBACK_PREFIX}:"))
async def conn_command_callback(callback: CallbackQuery, engine: ConnectionsEngine):
    parsed = parse_callback(callback.data)
    if parsed is None:
        await callback.answer("Неверная кнопка", show_alert=True)
        return

    command, counterparty_id = parsed

    # отвечаем после окна подтверждения, оно короче таймаута Telegram
    result = await engine.dispatch(command, counterparty_id)
    text = format_command_result(result)
    logger.info(
        "conn_callback_done command=%s counterparty_id=%s reason=%s",
        command.value,
        counterparty_id,
        result.reason,
    )
    await callback.answer(text, show_alert=result.reason == "failed")

    if not result.ok or callback.message is None:
        return

    # помечаем сообщение; кнопки других карточек ещё живые, их не трогаем
    base_text = callback.message.html_text or ""
    new_text = f"{base_text}\n\n{text}" if base_text else text
    try:
        await callback.message.edit_text(new_text, reply_markup=callback.message.reply_markup)
    except Exception:
        logger.debug("conn_callback_edit_failed", exc_info=True)
