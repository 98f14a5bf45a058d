from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Protocol

from pydantic import ValidationError

from exceptions import ApiError, FetchFailed
from models import ViewKind, utcnow
from schemas import (
    ActionResult,
    ConnectionsPage,
    ConnectionStatus,
    GlobalSearchUser,
    InvitationsPage,
    SentRequestItem,
    SuggestedPage,
)

logger = logging.getLogger(__name__)


class RelationshipsApi(Protocol):
    """Что движку нужно от удалённой стороны (реальный клиент — clients.api)."""

    async def list_connections(
        self, page: int = 1, limit: int = 20, search: str | None = None
    ) -> ConnectionsPage: ...

    async def list_invitations(self, page: int = 1, limit: int = 100) -> InvitationsPage: ...

    async def list_sent_requests(self, recipient: str | None = None) -> list[SentRequestItem]: ...

    async def list_recommendations(self, page: int = 1, limit: int = 8) -> SuggestedPage: ...

    async def search_users_globally(
        self, query: str, limit: int = 20, offset: int = 0
    ) -> list[GlobalSearchUser]: ...

    async def get_connection_status(self, counterparty_id: str) -> ConnectionStatus: ...

    async def send_connection_request(self, counterparty_id: str) -> ActionResult: ...

    async def accept_connection_request(self, counterparty_id: str) -> ActionResult: ...

    async def reject_connection_request(self, counterparty_id: str) -> ActionResult: ...

    async def withdraw_connection_request(self, counterparty_id: str) -> ActionResult: ...

    async def remove_connection(self, counterparty_id: str) -> ActionResult: ...


@dataclass
class FetchPage:
    """
    Сырая страница одного фетча + мета пагинации.

    complete=True — страница описывает вью целиком (без фильтров и
    следующих страниц), значит по ней можно чистить устаревшие записи.

    issued_at: момент отправки запроса, а не прихода ответа. Данные
    страницы не новее этого момента, по нему пайплайн отличает снимок,
    запрошенный до коммита команды, от свежего.
    """

    kind: ViewKind
    items: list[Any] = field(default_factory=list)
    page: int = 1
    limit: int = 0
    total: int = 0
    total_pages: int = 1
    complete: bool = False
    query: str | None = None
    issued_at: datetime = field(default_factory=utcnow)


@contextmanager
def _fetch_errors(view: ViewKind) -> Iterator[None]:
    """Любой сбой фетча превращаем в FetchFailed конкретного вью."""
    try:
        yield
    except ApiError as exc:
        logger.warning("%s_fetch_failed status=%s error=%s", view.value, exc.status, exc.message)
        raise FetchFailed(view, exc.message) from exc
    except ValidationError as exc:
        logger.warning("%s_fetch_malformed errors=%s", view.value, exc.error_count())
        raise FetchFailed(view, "Malformed response") from exc


async def fetch_connections(
    api: RelationshipsApi,
    *,
    page: int = 1,
    limit: int = 20,
    search: str | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FetchPage:
    issued_at = clock()
    with _fetch_errors(ViewKind.CONNECTIONS):
        data = await api.list_connections(page=page, limit=limit, search=search or None)

    logger.info(
        "connections_fetched page=%s total=%s count=%s search=%r",
        data.page,
        data.total,
        len(data.connections),
        search,
    )
    return FetchPage(
        kind=ViewKind.CONNECTIONS,
        items=list(data.connections),
        page=data.page,
        limit=data.limit,
        total=data.total,
        total_pages=data.total_pages,
        complete=not search and data.page == 1 and data.total_pages <= 1,
        query=search or None,
        issued_at=issued_at,
    )


async def fetch_invitations(
    api: RelationshipsApi,
    *,
    limit: int = 100,
    clock: Callable[[], datetime] = utcnow,
) -> FetchPage:
    """
    Просим у сервера только pending, но фильтр по статусу
    ещё раз делает пайплайн — контракт сервера не доверенный.
    """
    issued_at = clock()
    with _fetch_errors(ViewKind.INVITATIONS):
        data = await api.list_invitations(page=1, limit=limit)

    logger.info(
        "invitations_fetched total=%s count=%s",
        data.total,
        len(data.notifications),
    )
    return FetchPage(
        kind=ViewKind.INVITATIONS,
        items=list(data.notifications),
        page=data.page,
        limit=limit,
        total=data.total,
        total_pages=data.total_pages,
        complete=data.total <= len(data.notifications),
        issued_at=issued_at,
    )


async def fetch_sent_requests(
    api: RelationshipsApi,
    *,
    recipient: str | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FetchPage:
    issued_at = clock()
    with _fetch_errors(ViewKind.SENT):
        items = await api.list_sent_requests(recipient=recipient or None)

    logger.info("sent_requests_fetched count=%s recipient=%r", len(items), recipient)
    return FetchPage(
        kind=ViewKind.SENT,
        items=list(items),
        limit=len(items),
        total=len(items),
        complete=not recipient,
        query=recipient or None,
        issued_at=issued_at,
    )


async def fetch_recommendations(
    api: RelationshipsApi,
    *,
    limit: int = 8,
    clock: Callable[[], datetime] = utcnow,
) -> FetchPage:
    issued_at = clock()
    with _fetch_errors(ViewKind.RECOMMENDATIONS):
        data = await api.list_recommendations(page=1, limit=limit)

    logger.info("recommendations_fetched count=%s", len(data.users))
    return FetchPage(
        kind=ViewKind.RECOMMENDATIONS,
        items=list(data.users),
        page=data.page,
        limit=limit,
        total=data.total,
        total_pages=data.total_pages,
        # рекомендации всегда заменяют прошлый набор целиком
        complete=True,
        issued_at=issued_at,
    )
