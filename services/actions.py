from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from exceptions import ActionFailed, ApiError, ConflictingAction, InvalidTransition
from logging_config import log_context
from models import (
    Command,
    DisplayProfile,
    InFlightAction,
    RelationshipRecord,
    RelationshipState,
    ViewKind,
    utcnow,
)
from repositories import RelationshipRepository
from schemas import ActionResult
from services.fetchers import RelationshipsApi
from services.reconciliation import ReconciliationPipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandRule:
    preconditions: frozenset[RelationshipState]
    in_flight: InFlightAction
    api_method: str
    success_state: RelationshipState | None  # None: запись удаляется
    origin_view: ViewKind | None = None


COMMANDS: dict[Command, CommandRule] = {
    Command.SEND: CommandRule(
        preconditions=frozenset({RelationshipState.NONE}),
        in_flight=InFlightAction.SENDING,
        api_method="send_connection_request",
        success_state=RelationshipState.OUTGOING_PENDING,
        origin_view=ViewKind.SENT,
    ),
    Command.ACCEPT: CommandRule(
        preconditions=frozenset({RelationshipState.INCOMING_PENDING}),
        in_flight=InFlightAction.ACCEPTING,
        api_method="accept_connection_request",
        success_state=RelationshipState.CONNECTED,
        origin_view=ViewKind.CONNECTIONS,
    ),
    Command.REJECT: CommandRule(
        preconditions=frozenset({RelationshipState.INCOMING_PENDING}),
        in_flight=InFlightAction.REJECTING,
        api_method="reject_connection_request",
        success_state=RelationshipState.NONE,
        # запись остаётся с origin_view=INVITATIONS: во вью рекомендаций
        # не попадает, пока её не вернёт следующий фетч рекомендаций
        origin_view=ViewKind.INVITATIONS,
    ),
    Command.WITHDRAW: CommandRule(
        preconditions=frozenset({RelationshipState.OUTGOING_PENDING}),
        in_flight=InFlightAction.WITHDRAWING,
        api_method="withdraw_connection_request",
        success_state=None,
    ),
    Command.REMOVE: CommandRule(
        preconditions=frozenset({RelationshipState.CONNECTED}),
        in_flight=InFlightAction.REMOVING,
        api_method="remove_connection",
        success_state=None,
    ),
}

AfterCommit = Callable[[Command, str], Awaitable[None]]


class ActionHandlers:
    """
    Команды над связью в три фазы:
      1. оптимистично помечаем запись in_flight (состояние не трогаем);
      2. зовём удалённую операцию;
      3. успех — окно подтверждения (settle delay), коммит, снятие метки;
         провал — откат к снимку до команды и ActionFailed.
    """

    def __init__(
        self,
        repository: RelationshipRepository,
        pipeline: ReconciliationPipeline,
        api: RelationshipsApi,
        *,
        current_user_id: str,
        settle_delay: float = 1.5,
        clock: Callable[[], datetime] = utcnow,
        after_commit: AfterCommit | None = None,
    ) -> None:
        self.repository = repository
        self.pipeline = pipeline
        self.api = api
        self.current_user_id = current_user_id
        self.settle_delay = settle_delay
        self._clock = clock
        self._after_commit = after_commit

    async def execute(
        self,
        command: Command,
        counterparty_id: str,
        *,
        profile: DisplayProfile | None = None,
    ) -> RelationshipRecord | None:
        """
        Возвращает итоговую запись (None — если связь удалена).

        Бросает:
          - ConflictingAction — по контрагенту уже идёт команда;
          - InvalidTransition — команда не подходит к состоянию;
          - ActionFailed — удалённая операция не прошла (состояние откачено).
        """
        rule = COMMANDS[command]
        with log_context(counterparty_id=counterparty_id):
            record, snapshot = self._begin(command, rule, counterparty_id, profile)

            try:
                result = await self._call_remote(rule, counterparty_id)
            except asyncio.CancelledError:
                self._rollback(counterparty_id, snapshot)
                raise

            if not result.success:
                self._rollback(counterparty_id, snapshot)
                logger.info(
                    "connection_action_failed command=%s counterparty_id=%s status=%s message=%s",
                    command.value,
                    counterparty_id,
                    result.status,
                    result.message,
                )
                raise ActionFailed(counterparty_id, result.message or f"Failed to {command.value}")

            # окно «Принято!», остальные операции не ждут
            record.confirmed = True
            try:
                if self.settle_delay > 0:
                    await asyncio.sleep(self.settle_delay)
            except asyncio.CancelledError:
                self._commit(rule, counterparty_id)
                self.pipeline.settle(counterparty_id, committed=True)
                raise

            committed = self._commit(rule, counterparty_id)
            self.pipeline.settle(counterparty_id, committed=True)
            logger.info(
                "connection_action_committed command=%s counterparty_id=%s state=%s",
                command.value,
                counterparty_id,
                committed.state.value if committed else "removed",
            )

        if self._after_commit is not None:
            await self._after_commit(command, counterparty_id)
        return committed

    # ===== фазы =====

    def _begin(
        self,
        command: Command,
        rule: CommandRule,
        counterparty_id: str,
        profile: DisplayProfile | None,
    ) -> tuple[RelationshipRecord, RelationshipRecord | None]:
        record = self.repository.get(counterparty_id)

        if record is not None and record.in_flight is not None:
            logger.info(
                "connection_action_conflict command=%s counterparty_id=%s in_flight=%s",
                command.value,
                counterparty_id,
                record.in_flight.value,
            )
            raise ConflictingAction(counterparty_id, record.in_flight.value)

        if command == Command.SEND and counterparty_id == self.current_user_id:
            raise InvalidTransition(counterparty_id, command.value, "self")

        state = record.state if record is not None else RelationshipState.NONE
        if state not in rule.preconditions:
            logger.info(
                "connection_action_invalid command=%s counterparty_id=%s state=%s",
                command.value,
                counterparty_id,
                state.value,
            )
            raise InvalidTransition(counterparty_id, command.value, state.value)

        snapshot = record.copy() if record is not None else None
        if record is None:
            # контрагент из глобального поиска, записи ещё нет
            record = self.repository.put(
                RelationshipRecord(
                    counterparty_id=counterparty_id,
                    state=RelationshipState.NONE,
                    profile=profile or DisplayProfile(),
                    last_seen_at=self._clock(),
                )
            )
        elif profile is not None:
            record.profile = record.profile.merged_with(profile)

        record.in_flight = rule.in_flight
        record.confirmed = False
        logger.info(
            "connection_action_started command=%s counterparty_id=%s state=%s",
            command.value,
            counterparty_id,
            state.value,
        )
        return record, snapshot

    async def _call_remote(self, rule: CommandRule, counterparty_id: str) -> ActionResult:
        method = getattr(self.api, rule.api_method)
        try:
            return await method(counterparty_id)
        except ApiError as exc:
            return ActionResult(success=False, status=exc.status, message=exc.message)
        except Exception:
            logger.exception(
                "connection_action_remote_error method=%s counterparty_id=%s",
                rule.api_method,
                counterparty_id,
            )
            return ActionResult(success=False, status=0, message="Unexpected error")

    def _commit(self, rule: CommandRule, counterparty_id: str) -> RelationshipRecord | None:
        now = self._clock()
        if rule.success_state is None:
            self.repository.remove(counterparty_id)
            self.pipeline.forget(counterparty_id, now)
            return None

        record = self.repository.get(counterparty_id)
        if record is None:
            record = RelationshipRecord(counterparty_id=counterparty_id, state=rule.success_state)

        record.state = rule.success_state
        record.origin_view = rule.origin_view
        record.in_flight = None
        record.confirmed = False
        record.last_seen_at = now
        if rule.success_state != RelationshipState.NONE:
            record.created_at = now
        # id новой заявки/связи узнаем при следующем фетче
        record.request_id = None
        return self.repository.put(record)

    def _rollback(self, counterparty_id: str, snapshot: RelationshipRecord | None) -> None:
        if snapshot is None:
            self.repository.remove(counterparty_id)
        else:
            self.repository.put(snapshot)
        self.pipeline.settle(counterparty_id, committed=False)
        logger.info("connection_action_rolled_back counterparty_id=%s", counterparty_id)
