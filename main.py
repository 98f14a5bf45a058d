# main.py
import asyncio
import logging
from contextlib import suppress

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from clients import ConnectionsApi
from config import settings
from handlers import connection_actions_router, connections_router
from handlers.errors import setup_error_handlers
from logging_config import setup_logging
from middlewares import EngineMiddleware, LoggingContextMiddleware
from services.engine import ConnectionsEngine

logger = logging.getLogger(__name__)


def build_dispatcher(engine: ConnectionsEngine, bot: Bot) -> Dispatcher:
    dp = Dispatcher()

    # контекст логов снаружи, на весь апдейт; движок и проверка владельца
    # только на сообщениях и кнопках, там же ловим ошибки хендлеров
    dp.update.outer_middleware(LoggingContextMiddleware())
    engine_middleware = EngineMiddleware(engine, owner_id=settings.owner_telegram_id)
    dp.message.middleware(engine_middleware)
    dp.callback_query.middleware(engine_middleware)

    dp.include_router(connections_router)
    dp.include_router(connection_actions_router)

    setup_error_handlers(dp, bot)
    return dp


async def load_engine(engine: ConnectionsEngine) -> None:
    """Первичная загрузка. Упавшие вью старт не блокируют — их подтянет /refresh."""
    for error in await engine.load():
        logger.warning("initial_load_failed view=%s error=%s", error.view.value, error.message)

    logger.info(
        "engine_loaded connections=%s invitations=%s sent=%s recommendations=%s",
        len(engine.connections()),
        len(engine.invitations()),
        len(engine.sent()),
        len(engine.recommendations()),
    )


async def main() -> None:
    setup_logging()
    logger.info("connections_bot_starting env=%s", settings.env)

    if not settings.bot_token:
        logger.error("BOT_TOKEN is not set, nothing to run")
        return

    api = ConnectionsApi()
    engine = ConnectionsEngine(api)
    await load_engine(engine)

    bot = Bot(
        token=settings.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    dp = build_dispatcher(engine, bot)

    # транспорт событий реального времени кладёт payload'ы в engine.events
    engine.start_listener()

    try:
        logger.info("polling_started")
        await dp.start_polling(bot)
    except asyncio.CancelledError:
        logger.info("polling_cancelled")
    except Exception:
        logger.exception("Bot stopped by unexpected error")
    finally:
        await engine.aclose()
        await api.aclose()
        with suppress(Exception):
            await bot.session.close()
        logger.info("connections_bot_stopped")


if __name__ == "__main__":
    asyncio.run(main())
