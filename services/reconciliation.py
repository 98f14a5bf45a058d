from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Sequence

from models import (
    VIEW_STATES,
    DisplayProfile,
    RelationshipRecord,
    RelationshipState,
    ViewKind,
    utcnow,
)
from repositories import RelationshipRepository
from schemas import GlobalSearchUser
from services.fetchers import FetchPage

logger = logging.getLogger(__name__)

# Кому нельзя предлагать «Connect» в глобальном поиске
_SEARCH_EXCLUDED_STATES = {
    RelationshipState.CONNECTED,
    RelationshipState.OUTGOING_PENDING,
}


@dataclass
class MergeReport:
    kind: ViewKind
    applied: int = 0
    deferred: int = 0
    skipped: int = 0
    pruned: int = 0


@dataclass
class SearchHit:
    counterparty_id: str
    profile: DisplayProfile


class ReconciliationPipeline:
    """
    Превращает сырые страницы фетчей в upsert'ы репозитория
    и держит инварианты: одна запись на контрагента, вью не пересекаются,
    запись с in_flight не перетирается устаревшими данными.
    """

    def __init__(
        self,
        repository: RelationshipRepository,
        *,
        current_user_id: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.current_user_id = current_user_id
        self._clock = clock
        # данные фетчей, пришедшие пока по контрагенту шла команда
        self._deferred: dict[str, list[RelationshipRecord]] = defaultdict(list)
        # когда запись удалена командой: снимки, запрошенные раньше, её не воскрешают
        self._removed_at: dict[str, datetime] = {}

    # ===== общий вход =====

    def merge(self, page: FetchPage) -> MergeReport:
        handlers = {
            ViewKind.CONNECTIONS: self.merge_connections,
            ViewKind.INVITATIONS: self.merge_invitations,
            ViewKind.SENT: self.merge_sent,
            ViewKind.RECOMMENDATIONS: self.merge_recommendations,
        }
        report = handlers[page.kind](page)
        if page.kind != ViewKind.RECOMMENDATIONS:
            self.refilter_recommendations()

        logger.info(
            "reconciled kind=%s applied=%s deferred=%s skipped=%s pruned=%s",
            report.kind.value,
            report.applied,
            report.deferred,
            report.skipped,
            report.pruned,
        )
        return report

    def deferred_count(self, counterparty_id: str) -> int:
        return len(self._deferred.get(counterparty_id, ()))

    # ===== по видам фетча =====

    def merge_connections(self, page: FetchPage) -> MergeReport:
        """Всё из списка связей — CONNECTED, висящие заявки по ним вытесняются."""
        report = MergeReport(ViewKind.CONNECTIONS)
        seen: set[str] = set()

        # идём с конца, чтобы первый элемент страницы оказался «самым новым»
        for item in reversed(page.items):
            cid = item.counterparty_id
            seen.add(cid)
            record = RelationshipRecord(
                counterparty_id=cid,
                state=RelationshipState.CONNECTED,
                profile=item.to_profile(),
                origin_view=ViewKind.CONNECTIONS,
                request_id=item.connection_id,
                created_at=item.created_at,
                last_seen_at=page.issued_at,
            )
            self._apply(record, report)

        if page.complete:
            report.pruned = self._prune(ViewKind.CONNECTIONS, seen, page.issued_at)
        return report

    def merge_invitations(self, page: FetchPage) -> MergeReport:
        report = MergeReport(ViewKind.INVITATIONS)

        pending = [item for item in page.items if item.is_pending]
        filtered_out = len(page.items) - len(pending)
        if filtered_out:
            logger.warning(
                "invitations_non_pending_filtered total=%s pending=%s filtered_out=%s",
                len(page.items),
                len(pending),
                filtered_out,
            )

        seen: set[str] = set()
        for item in reversed(pending):
            cid = item.counterparty_id
            seen.add(cid)
            if self._blocked_by_connection(cid, ViewKind.INVITATIONS):
                report.skipped += 1
                continue
            record = RelationshipRecord(
                counterparty_id=cid,
                state=RelationshipState.INCOMING_PENDING,
                profile=item.to_profile(),
                origin_view=ViewKind.INVITATIONS,
                request_id=item.notification_id,
                created_at=item.created_at,
                last_seen_at=page.issued_at,
            )
            self._apply(record, report)

        report.skipped += filtered_out
        if page.complete:
            report.pruned = self._prune(ViewKind.INVITATIONS, seen, page.issued_at)
        return report

    def merge_sent(self, page: FetchPage) -> MergeReport:
        """
        Фильтр pending — по вложенному payload.connect_request.
        Верхний фильтр сервера и payload могут расходиться: заявка,
        которую сервер всё ещё отдаёт, но payload уже не pending,
        в вью не попадает, а локальная запись по ней чистится.
        """
        report = MergeReport(ViewKind.SENT)

        pending = [item for item in page.items if item.is_pending]
        if len(pending) != len(page.items):
            logger.warning(
                "sent_requests_status_mismatch total=%s pending=%s",
                len(page.items),
                len(pending),
            )
        report.skipped += len(page.items) - len(pending)

        seen: set[str] = set()
        for item in reversed(pending):
            cid = item.counterparty_id
            seen.add(cid)
            if self._blocked_by_connection(cid, ViewKind.SENT):
                report.skipped += 1
                continue
            record = RelationshipRecord(
                counterparty_id=cid,
                state=RelationshipState.OUTGOING_PENDING,
                profile=item.to_profile(),
                origin_view=ViewKind.SENT,
                request_id=item.notification_id,
                created_at=item.created_at,
                last_seen_at=page.issued_at,
            )
            self._apply(record, report)

        if page.complete:
            report.pruned = self._prune(ViewKind.SENT, seen, page.issued_at)
        return report

    def merge_recommendations(self, page: FetchPage) -> MergeReport:
        report = MergeReport(ViewKind.RECOMMENDATIONS)
        seen: set[str] = set()

        for item in reversed(page.items):
            cid = item.counterparty_id
            profile = item.to_profile()
            reason = self.recommendation_rejection(cid, profile)
            if reason:
                logger.debug("recommendation_skipped counterparty_id=%s reason=%s", cid, reason)
                report.skipped += 1
                continue
            seen.add(cid)
            record = RelationshipRecord(
                counterparty_id=cid,
                state=RelationshipState.NONE,
                profile=profile,
                origin_view=ViewKind.RECOMMENDATIONS,
                last_seen_at=page.issued_at,
            )
            self._apply(record, report)

        # новый набор рекомендаций заменяет старый
        report.pruned = self._prune(ViewKind.RECOMMENDATIONS, seen, page.issued_at)
        return report

    # ===== правила рекомендаций =====

    def recommendation_rejection(
        self,
        counterparty_id: str,
        profile: DisplayProfile,
    ) -> str | None:
        """Причина, по которой кандидата нельзя рекомендовать, или None."""
        if not counterparty_id:
            return "no_id"
        if counterparty_id == self.current_user_id:
            return "self"
        existing = self.repository.get(counterparty_id)
        if existing is not None and existing.state != RelationshipState.NONE:
            return existing.state.value
        if not profile.is_complete:
            return "incomplete_profile"
        return None

    def refilter_recommendations(self) -> list[str]:
        """
        Перефильтровать (не перефетчить) рекомендации по текущему репозиторию.
        Выбывшие по состоянию уходят из вью сами — запись одна на контрагента.
        """
        dropped: list[str] = []
        for record in self.repository.view_of(ViewKind.RECOMMENDATIONS):
            if record.in_flight is not None:
                continue
            if self.recommendation_rejection(record.counterparty_id, record.profile):
                self.repository.remove(record.counterparty_id)
                dropped.append(record.counterparty_id)

        if dropped:
            logger.info("recommendations_refiltered dropped=%s", ",".join(dropped))
        return dropped

    # ===== глобальный поиск =====

    def filter_search_results(self, users: Iterable[GlobalSearchUser]) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for user in users:
            cid = user.counterparty_id
            if not cid or cid == self.current_user_id:
                continue
            if self.repository.state_of(cid) in _SEARCH_EXCLUDED_STATES:
                continue
            hits.append(SearchHit(counterparty_id=cid, profile=user.to_profile()))
        return hits

    def refilter_search_hits(self, hits: Sequence[SearchHit]) -> list[SearchHit]:
        return [
            hit
            for hit in hits
            if self.repository.state_of(hit.counterparty_id) not in _SEARCH_EXCLUDED_STATES
        ]

    # ===== завершение команд =====

    def settle(self, counterparty_id: str, *, committed: bool) -> None:
        """
        Команда по контрагенту осела — разбираем отложенные данные фетчей.

        committed=True: согласные с итоговым состоянием записи только
        дополняют профиль, противоречащие выкидываем (они старше коммита).
        committed=False (откат): проигрываем очередь в порядке прихода.
        """
        queued = self._deferred.pop(counterparty_id, [])
        current = self.repository.get(counterparty_id)

        if committed:
            dropped = 0
            for record in queued:
                if current is not None and record.state == current.state:
                    current.profile = record.profile.merged_with(current.profile)
                    if current.request_id is None:
                        current.request_id = record.request_id
                else:
                    dropped += 1
            if queued:
                logger.info(
                    "deferred_merges_settled counterparty_id=%s total=%s dropped=%s",
                    counterparty_id,
                    len(queued),
                    dropped,
                )
        else:
            for record in queued:
                self._apply(record, None)
            if queued:
                logger.info(
                    "deferred_merges_replayed counterparty_id=%s total=%s",
                    counterparty_id,
                    len(queued),
                )

        self.refilter_recommendations()

    def forget(self, counterparty_id: str, at: datetime | None = None) -> None:
        """Команда удалила запись: данные фетчей, запрошенных до этого, не применяем."""
        self._removed_at[counterparty_id] = at or self._clock()

    # ===== внутреннее =====

    def _apply(self, record: RelationshipRecord, report: MergeReport | None) -> None:
        removed_at = self._removed_at.get(record.counterparty_id)
        if removed_at is not None:
            if record.last_seen_at < removed_at:
                logger.debug(
                    "stale_merge_after_removal counterparty_id=%s state=%s",
                    record.counterparty_id,
                    record.state.value,
                )
                if report:
                    report.skipped += 1
                return
            del self._removed_at[record.counterparty_id]

        stored, applied = self.repository.upsert(record)
        if applied:
            if report:
                report.applied += 1
            return
        if stored.in_flight is not None:
            self._deferred[record.counterparty_id].append(record)
            if report:
                report.deferred += 1
        elif report:
            report.skipped += 1

    def _blocked_by_connection(self, counterparty_id: str, kind: ViewKind) -> bool:
        existing = self.repository.get(counterparty_id)
        if existing is not None and existing.state == RelationshipState.CONNECTED:
            logger.warning(
                "pending_for_connected_skipped kind=%s counterparty_id=%s",
                kind.value,
                counterparty_id,
            )
            return True
        return False

    def _prune(self, kind: ViewKind, seen: set[str], issued_at: datetime) -> int:
        """
        Снимок полный — всё, чего в нём нет, вытеснено на сервере.
        Записи новее запроса (коммит команды после отправки фетча) не трогаем.
        """
        pruned = 0
        state = VIEW_STATES[kind]
        for record in self.repository.records():
            if record.state != state or record.counterparty_id in seen:
                continue
            if record.in_flight is not None:
                continue
            if record.last_seen_at > issued_at:
                continue
            if kind == ViewKind.RECOMMENDATIONS and record.origin_view != ViewKind.RECOMMENDATIONS:
                continue
            self.repository.remove(record.counterparty_id)
            pruned += 1
        return pruned
