# handlers/errors.py
from __future__ import annotations

import logging

from aiogram import Dispatcher, Bot
from aiogram.types import ErrorEvent

from config import settings
from logging_config import counterparty_id_var
from middlewares.logging_context import extract_user_chat

logger = logging.getLogger(__name__)


def build_admin_alert(
    exception: Exception,
    user_id: int | None = None,
    chat_id: int | None = None,
    counterparty_id: str | None = None,
) -> str:
    text_lines = ["🔥 Ошибка в боте связей."]
    if user_id:
        text_lines.append(f"Пользователь: {user_id}")
    if chat_id:
        text_lines.append(f"Чат: {chat_id}")
    if counterparty_id and counterparty_id != "-":
        text_lines.append(f"Контрагент: {counterparty_id}")
    text_lines.append(f"Исключение: {type(exception).__name__}")
    return "\n".join(text_lines)


def setup_error_handlers(dp: Dispatcher, bot: Bot) -> None:
    @dp.errors()
    async def error_handler(event: ErrorEvent) -> None:
        exception = event.exception
        logger.error(
            "update_failed error=%s",
            type(exception).__name__,
            exc_info=exception,
        )

        if not settings.admin_chat_id:
            return

        user_id = chat_id = None
        try:
            if event.update:
                user_id, chat_id = extract_user_chat(event.update)
        except Exception:
            logger.debug("Failed to extract update from ErrorEvent", exc_info=True)

        text = build_admin_alert(exception, user_id, chat_id, counterparty_id_var.get())
        try:
            await bot.send_message(chat_id=settings.admin_chat_id, text=text)
        except Exception:
            logger.debug("Failed to send error notification to admin", exc_info=True)
