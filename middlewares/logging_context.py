# middlewares/logging_context.py
from __future__ import annotations

import logging
from typing import Any, Callable, Awaitable, Dict, Optional

from aiogram import BaseMiddleware
from aiogram.types import Update

from constants import CALLBACK_PREFIX
from logging_config import log_context

logger = logging.getLogger(__name__)


def extract_user_chat(update: Update) -> tuple[Optional[int], Optional[int]]:
    """user_id/chat_id из апдейта: сообщение или нажатие кнопки."""
    user = None
    chat = None

    if update.message:
        user = update.message.from_user
        chat = update.message.chat
    elif update.callback_query:
        user = update.callback_query.from_user
        if update.callback_query.message:
            chat = update.callback_query.message.chat

    return (user.id if user else None), (chat.id if chat else None)


def _counterparty_from_callback(update: Update) -> Optional[str]:
    # <CALLBACK_PREFIX>:<command>:<counterparty_id>
    cq = update.callback_query
    if not cq or not cq.data:
        return None
    parts = cq.data.split(":", 2)
    if len(parts) == 3 and parts[0] == CALLBACK_PREFIX:
        return parts[2]
    return None


class LoggingContextMiddleware(BaseMiddleware):
    """
    Заполняет contextvars user_id/chat_id/update_id (и counterparty_id
    для кнопок команд) на время обработки одного апдейта.
    """

    async def __call__(
        self,
        handler: Callable[[Update, Dict[str, Any]], Awaitable[Any]],
        event: Update,
        data: Dict[str, Any],
    ) -> Any:
        user_id = "-"
        chat_id = "-"
        update_id = "-"
        counterparty_id = "-"

        if isinstance(event, Update):
            update_id = str(event.update_id)
            try:
                uid, cid = extract_user_chat(event)
                user_id = str(uid) if uid is not None else "-"
                chat_id = str(cid) if cid is not None else "-"
                counterparty_id = _counterparty_from_callback(event) or "-"
            except Exception:
                logger.debug("Failed to extract user/chat from Update", exc_info=True)

        # после апдейта старые значения возвращаются, между апдейтами не течёт
        with log_context(
            user_id=user_id,
            chat_id=chat_id,
            update_id=update_id,
            counterparty_id=counterparty_id,
        ):
            return await handler(event, data)
