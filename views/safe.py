# views/safe.py
from __future__ import annotations

from html import escape

ELLIPSIS = "…"


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max(max_len - 1, 0)].rstrip() + ELLIPSIS


def html_safe(value, default: str = "—", max_len: int | None = None) -> str:
    """
    Текст от сервера/пользователя -> безопасный кусок для ParseMode.HTML.

    Пустое (None, пробелы) заменяем на default. Длину режем ДО экранирования,
    иначе можно разрезать сущность вроде &amp; пополам.
    """
    text = "" if value is None else str(value).strip()
    if not text:
        return default
    if max_len is not None:
        text = truncate(text, max_len)
    return escape(text, quote=True)
