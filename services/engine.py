from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal, Mapping

from config import settings
from exceptions import ActionFailed, ConflictingAction, FetchFailed, InvalidTransition
from models import Command, RelationshipRecord, RelationshipState, ViewKind, utcnow
from repositories import RelationshipRepository
from services.actions import ActionHandlers
from services.events import ConnectionEvent, EventListener
from services.fetchers import (
    FetchPage,
    RelationshipsApi,
    fetch_connections,
    fetch_invitations,
    fetch_recommendations,
    fetch_sent_requests,
)
from services.reconciliation import ReconciliationPipeline, SearchHit
from services.search import SearchController

logger = logging.getLogger(__name__)

CommandReason = Literal["ok", "conflict", "invalid_state", "failed"]

# порядок важен для первичной загрузки: рекомендации фильтруются по уже известным связям
REFRESH_ORDER = (
    ViewKind.INVITATIONS,
    ViewKind.CONNECTIONS,
    ViewKind.SENT,
    ViewKind.RECOMMENDATIONS,
)


@dataclass
class ViewStatus:
    loading: bool = False
    error: str | None = None
    total: int = 0
    page: int = 1
    total_pages: int = 1
    refreshed_at: datetime | None = None


@dataclass
class CommandResult:
    reason: CommandReason
    command: Command
    counterparty_id: str
    record: RelationshipRecord | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason == "ok"


class ConnectionsEngine:
    """
    Фасад для UI: четыре вью только на чтение, поисковая строка
    и диспетчер команд. Всё состояние — в одном репозитории.
    """

    def __init__(
        self,
        api: RelationshipsApi,
        *,
        current_user_id: str | None = None,
        page_limit: int | None = None,
        invitations_limit: int | None = None,
        recommendations_limit: int | None = None,
        global_search_limit: int | None = None,
        search_debounce: float | None = None,
        settle_delay: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.api = api
        self.current_user_id = (
            current_user_id if current_user_id is not None else settings.current_user_id
        )
        self.page_limit = page_limit or settings.connections_page_limit
        self.invitations_limit = invitations_limit or settings.invitations_limit
        self.recommendations_limit = recommendations_limit or settings.recommendations_limit
        self._clock = clock

        self.repository = RelationshipRepository()
        self.pipeline = ReconciliationPipeline(
            self.repository,
            current_user_id=self.current_user_id,
            clock=clock,
        )
        self.actions = ActionHandlers(
            self.repository,
            self.pipeline,
            api,
            current_user_id=self.current_user_id,
            settle_delay=settings.settle_delay_seconds if settle_delay is None else settle_delay,
            clock=clock,
            after_commit=self._after_commit,
        )
        self.listener = EventListener(self.refresh)
        self.search = SearchController(
            api,
            self.pipeline,
            fetch_view=self._fetch_view,
            apply_page=self._apply_page,
            report_failure=self._report_failure,
            debounce=(
                settings.search_debounce_seconds if search_debounce is None else search_debounce
            ),
            global_limit=global_search_limit or settings.global_search_limit,
        )

        self.statuses: dict[ViewKind, ViewStatus] = {kind: ViewStatus() for kind in ViewKind}
        # последняя ошибка команды по контрагенту, для инлайн-сообщения в UI
        self.action_errors: dict[str, str] = {}
        self.events: asyncio.Queue = asyncio.Queue()
        self._listener_task: asyncio.Task | None = None

    # ===== вью =====

    def view(self, kind: ViewKind) -> list[RelationshipRecord]:
        records = self.repository.view_of(kind)
        if kind == ViewKind.CONNECTIONS:
            return self.search.filter_connections(records)
        if kind == ViewKind.SENT and self.search.active_query:
            query = self.search.active_query
            return [r for r in records if r.profile.matches(query)]
        return records

    def connections(self) -> list[RelationshipRecord]:
        return self.view(ViewKind.CONNECTIONS)

    def invitations(self) -> list[RelationshipRecord]:
        return self.view(ViewKind.INVITATIONS)

    def sent(self) -> list[RelationshipRecord]:
        return self.view(ViewKind.SENT)

    def recommendations(self) -> list[RelationshipRecord]:
        return self.view(ViewKind.RECOMMENDATIONS)

    @property
    def global_results(self) -> list[SearchHit]:
        return self.search.global_results

    @property
    def search_query(self) -> str:
        return self.search.query

    def status(self, kind: ViewKind) -> ViewStatus:
        return self.statuses[kind]

    # ===== поиск =====

    def set_search_query(self, query: str) -> int:
        return self.search.set_query(query)

    # ===== команды =====

    async def dispatch(self, command: Command | str, counterparty_id: str) -> CommandResult:
        command = Command(command)
        hit = self.search.hit_for(counterparty_id)
        profile = hit.profile if hit is not None else None

        try:
            record = await self.actions.execute(command, counterparty_id, profile=profile)
        except ConflictingAction as exc:
            return self._result("conflict", command, counterparty_id, str(exc))
        except InvalidTransition as exc:
            return self._result("invalid_state", command, counterparty_id, str(exc))
        except ActionFailed as exc:
            self.action_errors[counterparty_id] = exc.message
            return self._result("failed", command, counterparty_id, exc.message)

        self.action_errors.pop(counterparty_id, None)
        self.search.refilter()
        return CommandResult("ok", command, counterparty_id, record)

    def _result(
        self,
        reason: CommandReason,
        command: Command,
        counterparty_id: str,
        message: str,
    ) -> CommandResult:
        record = self.repository.get(counterparty_id)
        return CommandResult(reason, command, counterparty_id, record, message)

    async def _after_commit(self, command: Command, counterparty_id: str) -> None:
        if command in (Command.ACCEPT, Command.REMOVE):
            # счётчик и состав связей берём с сервера
            await self.refresh(ViewKind.CONNECTIONS)

    # ===== фетчи =====

    async def _fetch_view(self, kind: ViewKind, query: str | None = None) -> FetchPage:
        status = self.statuses[kind]
        status.loading = True
        try:
            if kind == ViewKind.CONNECTIONS:
                return await fetch_connections(
                    self.api, page=1, limit=self.page_limit, search=query, clock=self._clock
                )
            if kind == ViewKind.INVITATIONS:
                return await fetch_invitations(
                    self.api, limit=self.invitations_limit, clock=self._clock
                )
            if kind == ViewKind.SENT:
                return await fetch_sent_requests(self.api, recipient=query, clock=self._clock)
            return await fetch_recommendations(
                self.api, limit=self.recommendations_limit, clock=self._clock
            )
        finally:
            status.loading = False

    def _apply_page(self, page: FetchPage) -> None:
        self.pipeline.merge(page)
        status = self.statuses[page.kind]
        # ответ на более ранний запрос пришёл позже: счётчики не откатываем
        if status.refreshed_at is None or page.issued_at >= status.refreshed_at:
            status.error = None
            status.total = page.total
            status.page = page.page
            status.total_pages = page.total_pages
            status.refreshed_at = page.issued_at
        self.search.refilter()

    def _report_failure(self, error: FetchFailed) -> None:
        self.statuses[error.view].error = error.message

    async def _refresh_one(self, kind: ViewKind) -> FetchFailed | None:
        generation = self.search.generation
        query = None
        if kind in (ViewKind.CONNECTIONS, ViewKind.SENT):
            query = self.search.active_query or None

        try:
            page = await self._fetch_view(kind, query)
        except FetchFailed as exc:
            self._report_failure(exc)
            return exc
        except Exception:
            logger.exception("view_refresh_crashed kind=%s", kind.value)
            error = FetchFailed(kind, "Unexpected error")
            self._report_failure(error)
            return error

        if query is not None and not self.search.is_current(generation):
            logger.info("view_refresh_discarded kind=%s generation=%s", kind.value, generation)
            return None

        # мерж сразу по приходу, без ожидания соседних фетчей
        self._apply_page(page)
        return None

    async def refresh(self, *kinds: ViewKind) -> list[FetchFailed]:
        """
        Точечный перефетч указанных вью (по умолчанию — всех) параллельно.
        Ошибки не прерывают остальные вью и возвращаются вызывающему.
        """
        kinds = kinds or REFRESH_ORDER
        results = await asyncio.gather(*(self._refresh_one(kind) for kind in kinds))
        errors = [r for r in results if r is not None]
        logger.info(
            "views_refreshed kinds=%s failed=%s",
            ",".join(k.value for k in kinds),
            ",".join(e.view.value for e in errors) or "-",
        )
        return errors

    async def load(self) -> list[FetchFailed]:
        """Первичная загрузка: связи до рекомендаций, чтобы фильтр увидел их."""
        first = await self.refresh(ViewKind.INVITATIONS, ViewKind.CONNECTIONS, ViewKind.SENT)
        second = await self.refresh(ViewKind.RECOMMENDATIONS)
        return first + second

    # ===== события =====

    async def handle_event(self, event: ConnectionEvent | Mapping[str, Any]) -> list[FetchFailed]:
        if isinstance(event, ConnectionEvent):
            return await self.listener.handle(event)
        return await self.listener.handle_payload(event)

    def start_listener(self) -> asyncio.Task:
        if self._listener_task is None or self._listener_task.done():
            self._listener_task = asyncio.create_task(
                self.listener.run(self.events), name="connection_events"
            )
        return self._listener_task

    # ===== прочее =====

    async def lookup(self, counterparty_id: str) -> RelationshipState:
        """Состояние по локальной записи, иначе спрашиваем сервер."""
        record = self.repository.get(counterparty_id)
        if record is not None:
            return record.state

        status = await self.api.get_connection_status(counterparty_id)
        logger.info(
            "connection_status_fetched counterparty_id=%s is_connected=%s",
            counterparty_id,
            status.is_connected,
        )
        return RelationshipState.CONNECTED if status.is_connected else RelationshipState.NONE

    async def join(self) -> None:
        await self.search.join()

    async def aclose(self) -> None:
        await self.search.aclose()
        if self._listener_task is not None:
            self._listener_task.cancel()
            await asyncio.gather(self._listener_task, return_exceptions=True)
            self._listener_task = None
