from __future__ import annotations

import contextvars
import json
import logging
from contextlib import contextmanager
from logging.config import dictConfig
from typing import Any, Dict, Iterator

from config import settings

# Корреляция логов: апдейт бота (user/chat/update) и контрагент команды
user_id_var = contextvars.ContextVar("user_id", default="-")
chat_id_var = contextvars.ContextVar("chat_id", default="-")
update_id_var = contextvars.ContextVar("update_id", default="-")
counterparty_id_var = contextvars.ContextVar("counterparty_id", default="-")

CONTEXT_FIELDS: Dict[str, contextvars.ContextVar] = {
    "user_id": user_id_var,
    "chat_id": chat_id_var,
    "update_id": update_id_var,
    "counterparty_id": counterparty_id_var,
}


@contextmanager
def log_context(**values: str) -> Iterator[None]:
    """
    Временно выставить поля контекста логов, например:

        with log_context(counterparty_id=cid):
            ...
    """
    tokens = [(CONTEXT_FIELDS[name], CONTEXT_FIELDS[name].set(value)) for name, value in values.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class ContextFilter(logging.Filter):
    """Вешается на хендлеры: дописывает в record поля из contextvars."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in CONTEXT_FIELDS.items():
            if not hasattr(record, name):
                setattr(record, name, var.get())
        return True


class JsonFormatter(logging.Formatter):
    """Одна строка JSON на запись — для прода."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": self.formatTime(record, self.datefmt),
            "env": settings.env,
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        # пустые ("-") поля контекста не пишем
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, "-")
            if value != "-":
                payload[name] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


CONSOLE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "u=%(user_id)s c=%(chat_id)s upd=%(update_id)s cp=%(counterparty_id)s | %(message)s"
)


def build_logging_config() -> dict:
    """dictConfig: консоль всегда, файл — только если задан LOG_FILE."""
    level = settings.log_level.upper()
    formatter = "json" if settings.env == "prod" else "console"

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": formatter,
            "filters": ["context"],
            "level": level,
        },
    }
    if settings.log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": settings.log_file,
            "encoding": "utf-8",
            "formatter": formatter,
            "filters": ["context"],
            "level": level,
        }
    handler_names = list(handlers)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": "logging_config.ContextFilter"},
        },
        "formatters": {
            "console": {"format": CONSOLE_FORMAT},
            "json": {"()": "logging_config.JsonFormatter"},
        },
        "handlers": handlers,
        "root": {"handlers": handler_names, "level": level},
        # у httpx каждый запрос на INFO
        "loggers": {
            name: {"level": lib_level, "handlers": handler_names, "propagate": False}
            for name, lib_level in (
                ("aiogram", "INFO"),
                ("httpx", "WARNING"),
                ("httpcore", "WARNING"),
            )
        },
    }


_CONFIGURED = False


def setup_logging() -> logging.Logger:
    """Настроить логирование один раз на процесс."""
    global _CONFIGURED
    if not _CONFIGURED:
        dictConfig(build_logging_config())
        _CONFIGURED = True

    logger = logging.getLogger("connections")
    logger.debug("logging_ready env=%s level=%s file=%s", settings.env, settings.log_level, settings.log_file)
    return logger
