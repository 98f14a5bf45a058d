from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from exceptions import FetchFailed
from models import ViewKind

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    RECEIVED = "connection_request"
    ACCEPTED = "connection_accepted"
    REJECTED = "connection_rejected"


# Точечные перефетчи: никаких полных сбросов движка
EVENT_REFRESHES: dict[EventKind, tuple[ViewKind, ...]] = {
    EventKind.RECEIVED: (ViewKind.INVITATIONS,),
    EventKind.ACCEPTED: (ViewKind.INVITATIONS, ViewKind.CONNECTIONS),
    EventKind.REJECTED: (ViewKind.INVITATIONS,),
}


@dataclass(frozen=True)
class ConnectionEvent:
    kind: EventKind
    counterparty_id: str | None = None
    notification_id: str | None = None
    message: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ConnectionEvent | None:
        """
        Разбор payload из канала уведомлений:
        {"type": "connection_accepted", "senderId": "...", "metadata": {...}}
        Незнакомый type -> None.
        """
        try:
            kind = EventKind(payload.get("type"))
        except ValueError:
            return None

        metadata = payload.get("metadata") or {}
        sender = payload.get("sender") or {}
        return cls(
            kind=kind,
            counterparty_id=payload.get("senderId") or sender.get("user_id"),
            notification_id=payload.get("notificationId") or metadata.get("notificationId"),
            message=payload.get("message") or "",
        )


Refresh = Callable[..., Awaitable[list[FetchFailed]]]


class EventListener:
    """Реакция на события в реальном времени — только точечные перефетчи."""

    def __init__(self, refresh: Refresh) -> None:
        self._refresh = refresh

    async def handle(self, event: ConnectionEvent) -> list[FetchFailed]:
        kinds = EVENT_REFRESHES[event.kind]
        logger.info(
            "connection_event kind=%s counterparty_id=%s refresh=%s",
            event.kind.value,
            event.counterparty_id,
            ",".join(k.value for k in kinds),
        )
        errors = await self._refresh(*kinds)
        for error in errors:
            logger.warning(
                "connection_event_refresh_failed kind=%s view=%s error=%s",
                event.kind.value,
                error.view.value,
                error.message,
            )
        return errors

    async def handle_payload(self, payload: Mapping[str, Any]) -> list[FetchFailed]:
        event = ConnectionEvent.from_payload(payload)
        if event is None:
            logger.debug("connection_event_ignored type=%r", payload.get("type"))
            return []
        return await self.handle(event)

    async def run(self, queue: asyncio.Queue) -> None:
        """
        Фоновая задача: разбирает очередь событий (ConnectionEvent или сырой
        payload), падения отдельных событий логирует и идёт дальше.
        """
        logger.info("event_listener_started")

        while True:
            try:
                item = await queue.get()
            except asyncio.CancelledError:
                logger.info("event_listener_cancelled")
                break

            try:
                if isinstance(item, ConnectionEvent):
                    await self.handle(item)
                else:
                    await self.handle_payload(item)
            except asyncio.CancelledError:
                logger.info("event_listener_cancelled")
                break
            except Exception:
                logger.exception("Error in event listener loop")
            finally:
                queue.task_done()
