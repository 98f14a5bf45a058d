from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from exceptions import ApiError, AuthRequired, FetchFailed
from models import RelationshipRecord, ViewKind
from services.fetchers import FetchPage, RelationshipsApi
from services.reconciliation import ReconciliationPipeline, SearchHit

logger = logging.getLogger(__name__)

FetchView = Callable[[ViewKind, "str | None"], Awaitable[FetchPage]]


class SearchController:
    """
    Поисковая строка над вью связей и отправленных заявок.

    - смена запроса отменяет ещё не сработавший debounce-таймер;
    - каждый запрос получает поколение (generation): ответы старых
      поколений при приходе выкидываются, во вью не попадают;
    - если связей по запросу нет — один глобальный поиск на поколение,
      результаты отдельным списком без уже связанных и ожидающих.
    """

    def __init__(
        self,
        api: RelationshipsApi,
        pipeline: ReconciliationPipeline,
        *,
        fetch_view: FetchView,
        apply_page: Callable[[FetchPage], None],
        report_failure: Callable[[FetchFailed], None],
        debounce: float = 0.5,
        global_limit: int = 20,
    ) -> None:
        self.api = api
        self.pipeline = pipeline
        self._fetch_view = fetch_view
        self._apply_page = apply_page
        self._report_failure = report_failure
        self.debounce = debounce
        self.global_limit = global_limit

        self.query = ""
        self.generation = 0
        self.global_results: list[SearchHit] = []
        self.global_error: str | None = None
        self.is_global_searching = False

        self._global_issued_for: int | None = None
        # id связей, которые сервер вернул на текущий запрос
        self._matched_ids: set[str] = set()
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_query(self) -> str:
        return self.query.strip()

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    # ===== вход из UI =====

    def set_query(self, query: str) -> int:
        """Новый запрос: сбрасываем таймер прошлого и заводим свой."""
        if query == self.query and self._timer is not None and not self._timer.done():
            return self.generation

        self.query = query
        self.generation += 1
        self._matched_ids = set()
        self.global_results = []
        self.global_error = None

        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            logger.debug("search_debounce_cancelled generation=%s", self.generation - 1)

        self._timer = asyncio.create_task(
            self._debounced(self.generation, query),
            name=f"search_debounce_{self.generation}",
        )
        return self.generation

    async def _debounced(self, generation: int, query: str) -> None:
        if self.debounce > 0:
            await asyncio.sleep(self.debounce)
        # сам запрос сменой строки не отменяется, его ответ отбросится при приходе
        task = asyncio.create_task(self.run_query(generation, query), name=f"search_{generation}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ===== выполнение запроса =====

    async def run_query(self, generation: int, query: str) -> None:
        search = query.strip() or None
        logger.info("search_started generation=%s query=%r", generation, search)

        results = await asyncio.gather(
            self._fetch_view(ViewKind.CONNECTIONS, search),
            self._fetch_view(ViewKind.SENT, search),
            return_exceptions=True,
        )

        if not self.is_current(generation):
            logger.info(
                "search_results_discarded generation=%s current=%s query=%r",
                generation,
                self.generation,
                search,
            )
            return

        for result in results:
            if isinstance(result, FetchFailed):
                self._report_failure(result)
            elif isinstance(result, BaseException):
                logger.error("search_fetch_crashed generation=%s", generation, exc_info=result)
            else:
                if result.kind == ViewKind.CONNECTIONS:
                    self._matched_ids = {item.counterparty_id for item in result.items}
                self._apply_page(result)

        await self.maybe_global_search(generation)

    def filter_connections(self, records: list[RelationshipRecord]) -> list[RelationshipRecord]:
        """Вью связей, отфильтрованное текущим запросом."""
        query = self.active_query
        if not query:
            return records
        return [
            r
            for r in records
            if r.counterparty_id in self._matched_ids or r.profile.matches(query)
        ]

    async def maybe_global_search(self, generation: int) -> None:
        query = self.active_query
        if not query:
            self.global_results = []
            return

        connections = self.filter_connections(self.pipeline.repository.view_of(ViewKind.CONNECTIONS))
        if connections:
            self.global_results = []
            return

        if self._global_issued_for == generation:
            return
        self._global_issued_for = generation

        self.is_global_searching = True
        try:
            users = await self.api.search_users_globally(query, limit=self.global_limit, offset=0)
        except AuthRequired:
            logger.warning("global_search_auth_required generation=%s", generation)
            if self.is_current(generation):
                self.global_results = []
                self.global_error = "auth_required"
            return
        except ApiError as exc:
            logger.warning("global_search_failed generation=%s error=%s", generation, exc)
            if self.is_current(generation):
                self.global_results = []
                self.global_error = exc.message
            return
        finally:
            self.is_global_searching = False

        if not self.is_current(generation):
            logger.info("global_search_discarded generation=%s current=%s", generation, self.generation)
            return

        self.global_results = self.pipeline.filter_search_results(users)
        self.global_error = None
        logger.info(
            "global_search_done generation=%s raw_count=%s result_count=%s",
            generation,
            len(users),
            len(self.global_results),
        )

    def refilter(self) -> None:
        if self.global_results:
            self.global_results = self.pipeline.refilter_search_hits(self.global_results)

    def hit_for(self, counterparty_id: str) -> SearchHit | None:
        for hit in self.global_results:
            if hit.counterparty_id == counterparty_id:
                return hit
        return None

    # ===== жизненный цикл =====

    async def join(self) -> None:
        """Дождаться таймера и всех запущенных запросов (удобно в тестах и боте)."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if self._timer is not None and not self._timer.done():
                pending.append(self._timer)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        if self._timer is not None:
            tasks.append(self._timer)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
