from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RelationshipState(str, Enum):
    NONE = "none"
    OUTGOING_PENDING = "outgoing_pending"
    INCOMING_PENDING = "incoming_pending"
    CONNECTED = "connected"
    DECLINED = "declined"


class ViewKind(str, Enum):
    """Четыре публичных вью и одновременно источники фетча (origin_view)."""

    CONNECTIONS = "connections"
    INVITATIONS = "invitations"
    SENT = "sent"
    RECOMMENDATIONS = "recommendation"


# Какое состояние показывает каждое вью
VIEW_STATES: dict[ViewKind, RelationshipState] = {
    ViewKind.CONNECTIONS: RelationshipState.CONNECTED,
    ViewKind.INVITATIONS: RelationshipState.INCOMING_PENDING,
    ViewKind.SENT: RelationshipState.OUTGOING_PENDING,
    ViewKind.RECOMMENDATIONS: RelationshipState.NONE,
}


class InFlightAction(str, Enum):
    SENDING = "sending"
    ACCEPTING = "accepting"
    REJECTING = "rejecting"
    WITHDRAWING = "withdrawing"
    REMOVING = "removing"


class Command(str, Enum):
    SEND = "send"
    ACCEPT = "accept"
    REJECT = "reject"
    WITHDRAW = "withdraw"
    REMOVE = "remove"


@dataclass
class DisplayProfile:
    name: str = ""
    avatar_url: str | None = None
    headline: str | None = None
    company: str | None = None
    email: str | None = None

    @property
    def is_complete(self) -> bool:
        """Есть имя и контакт (e-mail) — иначе в рекомендации не берём."""
        return bool(self.name and self.name.strip()) and bool(
            self.email and self.email.strip()
        )

    def merged_with(self, older: DisplayProfile | None) -> DisplayProfile:
        """Пустые поля добираем из более старой версии профиля."""
        if older is None:
            return self
        values = {}
        for f in fields(self):
            mine = getattr(self, f.name)
            values[f.name] = mine if mine else getattr(older, f.name)
        return DisplayProfile(**values)

    def matches(self, query: str) -> bool:
        q = query.strip().lower()
        if not q:
            return True
        haystack = (self.name, self.email, self.company, self.headline)
        return any(q in value.lower() for value in haystack if value)


@dataclass
class RelationshipRecord:
    counterparty_id: str
    state: RelationshipState
    profile: DisplayProfile = field(default_factory=DisplayProfile)
    origin_view: ViewKind | None = None
    request_id: str | None = None
    created_at: datetime | None = None
    last_seen_at: datetime = field(default_factory=utcnow)
    in_flight: InFlightAction | None = None
    # успех получен, идёт окно подтверждения (settle delay)
    confirmed: bool = False

    @property
    def is_settled(self) -> bool:
        return self.in_flight is None

    def copy(self, **changes) -> RelationshipRecord:
        changes.setdefault("profile", replace(self.profile))
        return replace(self, **changes)

    def __repr__(self) -> str:
        return (
            f"<RelationshipRecord id={self.counterparty_id} state={self.state.value} "
            f"origin={self.origin_view.value if self.origin_view else None} "
            f"in_flight={self.in_flight.value if self.in_flight else None}>"
        )
