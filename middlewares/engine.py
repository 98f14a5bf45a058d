# middlewares/engine.py
from typing import Any, Awaitable, Callable, Dict, Optional
import logging

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery

from services.engine import ConnectionsEngine

logger = logging.getLogger(__name__)


class EngineMiddleware(BaseMiddleware):
    """
    Вешается на message и callback_query (не на update):
    - пускает только владельца движка (owner_id, если задан);
    - кладёт движок в data["engine"];
    - ловит необработанные ошибки хендлеров и вежливо отвечает.
    """

    def __init__(
        self,
        engine: ConnectionsEngine,
        owner_id: Optional[int] = None,
    ) -> None:
        self.engine = engine
        self.owner_id = owner_id

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        if not self._is_owner(event):
            user = getattr(event, "from_user", None)
            logger.info("engine_access_denied user_id=%s", user.id if user else None)
            if isinstance(event, CallbackQuery):
                await event.answer("Это не твои связи", show_alert=True)
            elif isinstance(event, Message):
                await event.answer("Этот бот управляет чужими связями 🙂")
            return None

        data["engine"] = self.engine
        try:
            return await handler(event, data)
        except Exception:
            logger.exception("Unhandled error while processing update: %r", event)

            # Пробуем уведомить пользователя, но сами при этом не падаем
            try:
                if isinstance(event, CallbackQuery):
                    await event.answer(
                        "Что-то пошло не так, мы уже чиним 🛠",
                        show_alert=True,
                    )
                elif isinstance(event, Message):
                    await event.answer(
                        "Упс, случилась ошибка. Попробуй ещё раз чуть позже."
                    )
            except Exception:
                logger.exception("Failed to send error notification to user")

            return None

    def _is_owner(self, event: TelegramObject) -> bool:
        if self.owner_id is None:
            return True
        user = getattr(event, "from_user", None)
        return user is not None and user.id == self.owner_id
