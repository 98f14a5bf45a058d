from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import DisplayProfile

PENDING = "pending"


def _join_name(*parts: Optional[str]) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


class _Wire(BaseModel):
    # лишние поля сервера игнорируем
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# ===== ответы-обёртки =====


class Envelope(_Wire):
    status: Optional[int] = None
    message: str = ""
    success: bool = False
    data: Any = None
    errors: Optional[list[dict[str, Any]]] = None


class ActionResult(_Wire):
    success: bool
    status: int = 200
    message: str = ""


# ===== связи =====


class ConnectedUser(_Wire):
    id: str
    name: str = ""
    email: Optional[str] = None
    profile_pic: Optional[str] = None
    company: Optional[str] = None
    designation: Optional[str] = None


class ConnectionItem(_Wire):
    connection_id: Optional[str] = None
    user_id: Optional[str] = None
    connected_id: Optional[str] = None
    connected_user: ConnectedUser
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def counterparty_id(self) -> str:
        return self.connected_user.id

    def to_profile(self) -> DisplayProfile:
        u = self.connected_user
        return DisplayProfile(
            name=u.name,
            avatar_url=u.profile_pic,
            headline=u.designation,
            company=u.company,
            email=u.email,
        )


class ConnectionsPage(_Wire):
    connections: list[ConnectionItem] = []
    total: int = 0
    page: int = 1
    limit: int = 20
    total_pages: int = 1


class ConnectionStatus(_Wire):
    user_id: str
    is_connected: bool = False
    connection_id: Optional[str] = None
    connected_since: Optional[datetime] = None


# ===== входящие приглашения (уведомления connect_request) =====


class SenderDetails(_Wire):
    id: Optional[str] = None
    name: str = ""
    email: Optional[str] = None


class InvitationItem(_Wire):
    notification_id: str
    sender_id: str
    recipient_id: Optional[str] = None
    sender_details: Optional[SenderDetails] = None
    type: str = "connect_request"
    connect_request: Optional[str] = None
    message: str = ""
    created_at: Optional[datetime] = None

    @property
    def counterparty_id(self) -> str:
        return self.sender_id

    @property
    def is_pending(self) -> bool:
        return self.connect_request == PENDING

    def to_profile(self) -> DisplayProfile:
        details = self.sender_details or SenderDetails()
        return DisplayProfile(name=details.name, email=details.email)


class InvitationsPage(_Wire):
    notifications: list[InvitationItem] = []
    total: int = 0
    page: int = 1
    limit: int = 100
    total_pages: int = 1
    pending_count: int = 0


# ===== отправленные заявки =====


class SentRequestPayload(_Wire):
    sender: Optional[str] = Field(default=None, alias="from")
    connect_request: Optional[str] = None


class SentRequestItem(_Wire):
    notification_id: str
    sender_id: Optional[str] = None
    recipient_id: str
    type: str = "connect_request"
    read: bool = False
    created_at: Optional[datetime] = None
    payload: Optional[SentRequestPayload] = None
    recipient_email: Optional[str] = None
    recipient_role: Optional[str] = None
    recipient_first_name: Optional[str] = None
    recipient_last_name: Optional[str] = None
    recipient_profile_pic: Optional[str] = None

    @property
    def counterparty_id(self) -> str:
        return self.recipient_id

    @property
    def is_pending(self) -> bool:
        # статус смотрим во вложенном payload, а не в верхнем фильтре запроса
        return bool(self.payload and self.payload.connect_request == PENDING)

    def to_profile(self) -> DisplayProfile:
        return DisplayProfile(
            name=_join_name(self.recipient_first_name, self.recipient_last_name),
            avatar_url=self.recipient_profile_pic,
            headline=self.recipient_role,
            email=self.recipient_email,
        )


# ===== рекомендации и глобальный поиск =====


class SuggestedUser(_Wire):
    user_id: str = ""
    email: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_pic: Optional[str] = None
    role: Optional[str] = None
    headline: Optional[str] = None
    company_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def counterparty_id(self) -> str:
        return self.user_id

    def to_profile(self) -> DisplayProfile:
        return DisplayProfile(
            name=self.name or _join_name(self.first_name, self.last_name),
            avatar_url=self.profile_pic,
            headline=self.headline or self.role,
            company=self.company_name,
            email=self.email,
        )


class SuggestedPage(_Wire):
    users: list[SuggestedUser] = []
    total: int = 0
    page: int = 1
    limit: int = 8
    total_pages: int = 1


class GlobalSearchUser(_Wire):
    user_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    headline: Optional[str] = None
    location: Optional[str] = None

    @property
    def counterparty_id(self) -> str:
        return self.user_id

    def to_profile(self) -> DisplayProfile:
        return DisplayProfile(
            name=_join_name(self.first_name, self.last_name),
            avatar_url=self.avatar_url,
            headline=self.headline,
            email=self.email,
        )
