from __future__ import annotations

import itertools
import logging
from typing import Callable, Iterator

from models import VIEW_STATES, RelationshipRecord, RelationshipState, ViewKind

logger = logging.getLogger(__name__)


class RelationshipRepository:
    """
    Единственный источник правды: по одной записи на контрагента.

    Все методы синхронные — внутри нет await, поэтому мерж фетча
    и оптимистичный переход команды не могут перемешаться посреди мутации.
    """

    def __init__(self) -> None:
        self._records: dict[str, RelationshipRecord] = {}
        # порядок вставки нужен, чтобы записи одного фетча
        # с одинаковым last_seen_at не перемешивались
        self._seq: dict[str, int] = {}
        self._counter = itertools.count()

    def __contains__(self, counterparty_id: object) -> bool:
        return counterparty_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, counterparty_id: str) -> RelationshipRecord | None:
        return self._records.get(counterparty_id)

    def records(self) -> Iterator[RelationshipRecord]:
        return iter(list(self._records.values()))

    def state_of(self, counterparty_id: str) -> RelationshipState:
        record = self._records.get(counterparty_id)
        return record.state if record else RelationshipState.NONE

    def upsert(self, record: RelationshipRecord) -> tuple[RelationshipRecord, bool]:
        """
        Мержим запись с уже существующей. Возвращаем (запись в хранилище, applied).

        Правила:
          - версия с in_flight побеждает «осевшую» входящую (applied=False,
            вызывающий сам решает, отложить ли данные);
          - иначе побеждает более свежий last_seen_at, при равенстве — входящая;
          - пустые поля профиля добираются у проигравшей версии.
        """
        cid = record.counterparty_id
        existing = self._records.get(cid)

        if existing is None:
            self._store(record)
            return record, True

        if existing.in_flight is not None and record.in_flight is None:
            logger.debug(
                "relationship_upsert_deferred counterparty_id=%s in_flight=%s",
                cid,
                existing.in_flight.value,
            )
            return existing, False

        if record.last_seen_at < existing.last_seen_at:
            existing.profile = existing.profile.merged_with(record.profile)
            logger.debug(
                "relationship_upsert_stale counterparty_id=%s state=%s",
                cid,
                record.state.value,
            )
            return existing, False

        record.profile = record.profile.merged_with(existing.profile)
        if record.created_at is None and record.state == existing.state:
            record.created_at = existing.created_at
        self._store(record)
        return record, True

    def put(self, record: RelationshipRecord) -> RelationshipRecord:
        """Безусловная запись — для коммита/отката команд."""
        self._store(record)
        return record

    def remove(self, counterparty_id: str) -> RelationshipRecord | None:
        self._seq.pop(counterparty_id, None)
        removed = self._records.pop(counterparty_id, None)
        if removed is not None:
            logger.debug(
                "relationship_removed counterparty_id=%s state=%s",
                counterparty_id,
                removed.state.value,
            )
        return removed

    def view_of(
        self,
        kind: ViewKind,
        sort_key: Callable[[RelationshipRecord], object] | None = None,
    ) -> list[RelationshipRecord]:
        """
        Записи вью kind. По умолчанию — новые сверху (last_seen_at desc),
        внутри одного фетча сохраняется порядок, в котором пришли данные.
        """
        state = VIEW_STATES[kind]
        items = [r for r in self._records.values() if r.state == state]
        if kind == ViewKind.RECOMMENDATIONS:
            items = [r for r in items if r.origin_view == ViewKind.RECOMMENDATIONS]

        if sort_key is not None:
            return sorted(items, key=sort_key)

        return sorted(
            items,
            key=lambda r: (r.last_seen_at, self._seq.get(r.counterparty_id, 0)),
            reverse=True,
        )

    def _store(self, record: RelationshipRecord) -> None:
        self._records[record.counterparty_id] = record
        self._seq[record.counterparty_id] = next(self._counter)
