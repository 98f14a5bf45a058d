from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Удалённый API
    api_base_url: str = Field(
        default="http://localhost:8000/api",
        alias="API_BASE_URL",
    )
    api_token: Optional[str] = Field(default=None, alias="API_TOKEN")
    current_user_id: str = Field(default="", alias="CURRENT_USER_ID")
    http_timeout_seconds: float = Field(10.0, alias="HTTP_TIMEOUT_SECONDS")

    # Telegram-фронт (опционален, движок работает и без него)
    bot_token: Optional[str] = Field(default=None, alias="BOT_TOKEN")
    owner_telegram_id: Optional[int] = Field(
        default=None,
        alias="OWNER_TELEGRAM_ID",
    )

    # Environment
    env: Literal["dev", "stage", "prod"] = Field("dev", alias="ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    # пустая строка: без файла, только консоль
    log_file: Optional[str] = Field("connections.log", alias="LOG_FILE")

    # Размеры страниц
    connections_page_limit: int = Field(20, alias="CONNECTIONS_PAGE_LIMIT")
    invitations_limit: int = Field(100, alias="INVITATIONS_LIMIT")
    recommendations_limit: int = Field(8, alias="RECOMMENDATIONS_LIMIT")
    global_search_limit: int = Field(20, alias="GLOBAL_SEARCH_LIMIT")

    # Тайминги
    search_debounce_ms: int = Field(500, alias="SEARCH_DEBOUNCE_MS")
    settle_delay_ms: int = Field(1500, alias="SETTLE_DELAY_MS")

    # Admin / alerts
    admin_chat_id: Optional[int] = Field(
        default=None,
        alias="ADMIN_CHAT_ID",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @field_validator(
        "connections_page_limit",
        "invitations_limit",
        "recommendations_limit",
        "global_search_limit",
        mode="before",
    )
    @classmethod
    def parse_limit(cls, v):
        """Размер страницы: одно целое число не меньше 1."""
        if isinstance(v, str):
            v = v.strip()
        v = int(v)
        if v < 1:
            raise ValueError("limit must be positive")
        return v

    @property
    def search_debounce_seconds(self) -> float:
        return self.search_debounce_ms / 1000

    @property
    def settle_delay_seconds(self) -> float:
        return self.settle_delay_ms / 1000


@lru_cache
def get_settings() -> Settings:
    # кэшируем, чтобы не читать .env каждый раз
    return Settings()


settings = get_settings()
