import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from exceptions import ApiError
from schemas import (
    ActionResult,
    ConnectionItem,
    ConnectionsPage,
    ConnectionStatus,
    GlobalSearchUser,
    InvitationItem,
    InvitationsPage,
    SentRequestItem,
    SuggestedPage,
    SuggestedUser,
)


def make_connection(uid: str, name: str, email: str | None = None, **extra: Any) -> ConnectionItem:
    return ConnectionItem.model_validate(
        {
            "connection_id": f"conn-{uid}",
            "connected_user": {"id": uid, "name": name, "email": email, **extra},
        }
    )


def make_invitation(uid: str, name: str, status: str = "pending") -> InvitationItem:
    return InvitationItem.model_validate(
        {
            "notification_id": f"inv-{uid}",
            "sender_id": uid,
            "sender_details": {"id": uid, "name": name, "email": f"{uid}@example.com"},
            "connect_request": status,
            "message": f"{name} wants to connect",
        }
    )


def make_sent(uid: str, first_name: str, status: str = "pending") -> SentRequestItem:
    return SentRequestItem.model_validate(
        {
            "notification_id": f"sent-{uid}",
            "sender_id": "me",
            "recipient_id": uid,
            "recipient_first_name": first_name,
            "recipient_email": f"{uid}@example.com",
            "payload": {"from": "me", "connect_request": status},
        }
    )


def make_suggested(uid: str, name: str, email: str | None = None) -> SuggestedUser:
    return SuggestedUser.model_validate({"user_id": uid, "name": name, "email": email})


def make_global(uid: str, first_name: str, last_name: str = "") -> GlobalSearchUser:
    return GlobalSearchUser.model_validate(
        {"user_id": uid, "first_name": first_name, "last_name": last_name}
    )


class FakeConnectionsApi:
    """
    In-memory стand-in for the REST API with a tiny "server state".

    - fail[name] = ApiError(...) makes that method raise;
    - gates[name] or gates[(name, key)] = asyncio.Event() holds the call
      until the event is set;
    - successful mutations update the server lists the way the backend does.
    """

    def __init__(self) -> None:
        self.connections: list[ConnectionItem] = []
        self.invitations: list[InvitationItem] = []
        self.sent: list[SentRequestItem] = []
        self.suggested: list[SuggestedUser] = []
        self.global_users: list[GlobalSearchUser] = []
        self.invitations_total: int | None = None

        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self.gates: dict[Any, asyncio.Event] = {}

    async def _enter(self, name: str, key: Any = None) -> None:
        self.calls.append((name, key))
        gate = self.gates.get((name, key)) or self.gates.get(name)
        if gate is not None:
            await gate.wait()
        error = self.fail.get(name)
        if error is not None:
            raise error

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    # ===== listings =====
    # the answer is built at call time; a gate only delays its delivery

    async def list_connections(self, page=1, limit=20, search=None) -> ConnectionsPage:
        items = self.connections
        if search:
            q = search.lower()
            items = [
                c
                for c in items
                if q in c.connected_user.name.lower() or q in (c.connected_user.email or "").lower()
            ]
        result = ConnectionsPage(
            connections=list(items), total=len(items), page=page, limit=limit, total_pages=1
        )
        await self._enter("list_connections", search)
        return result

    async def list_invitations(self, page=1, limit=100) -> InvitationsPage:
        total = self.invitations_total if self.invitations_total is not None else len(self.invitations)
        result = InvitationsPage(
            notifications=list(self.invitations), total=total, page=page, limit=limit
        )
        await self._enter("list_invitations")
        return result

    async def list_sent_requests(self, recipient=None) -> list[SentRequestItem]:
        result = list(self.sent)
        if recipient:
            q = recipient.lower()
            result = [
                s
                for s in result
                if q in (s.recipient_first_name or "").lower() or q in (s.recipient_email or "").lower()
            ]
        await self._enter("list_sent_requests", recipient)
        return result

    async def list_recommendations(self, page=1, limit=8) -> SuggestedPage:
        result = SuggestedPage(
            users=list(self.suggested), total=len(self.suggested), page=page, limit=limit
        )
        await self._enter("list_recommendations")
        return result

    async def search_users_globally(self, query, limit=20, offset=0) -> list[GlobalSearchUser]:
        result = list(self.global_users)
        await self._enter("search_users_globally", query)
        return result

    async def get_connection_status(self, counterparty_id) -> ConnectionStatus:
        await self._enter("get_connection_status", counterparty_id)
        connected = any(c.counterparty_id == counterparty_id for c in self.connections)
        return ConnectionStatus(user_id=counterparty_id, is_connected=connected)

    # ===== mutations =====

    async def send_connection_request(self, counterparty_id) -> ActionResult:
        await self._enter("send_connection_request", counterparty_id)
        self.sent.append(make_sent(counterparty_id, counterparty_id))
        return ActionResult(success=True, message="Connection request processed")

    async def accept_connection_request(self, counterparty_id) -> ActionResult:
        await self._enter("accept_connection_request", counterparty_id)
        invitation = next((i for i in self.invitations if i.sender_id == counterparty_id), None)
        self.invitations = [i for i in self.invitations if i.sender_id != counterparty_id]
        name = invitation.sender_details.name if invitation and invitation.sender_details else ""
        self.connections.append(make_connection(counterparty_id, name))
        return ActionResult(success=True, message="Connection request accepted")

    async def reject_connection_request(self, counterparty_id) -> ActionResult:
        await self._enter("reject_connection_request", counterparty_id)
        self.invitations = [i for i in self.invitations if i.sender_id != counterparty_id]
        return ActionResult(success=True, message="Connection request rejected")

    async def withdraw_connection_request(self, counterparty_id) -> ActionResult:
        await self._enter("withdraw_connection_request", counterparty_id)
        self.sent = [s for s in self.sent if s.recipient_id != counterparty_id]
        return ActionResult(success=True, message="Connection request withdrawn")

    async def remove_connection(self, counterparty_id) -> ActionResult:
        await self._enter("remove_connection", counterparty_id)
        self.connections = [c for c in self.connections if c.counterparty_id != counterparty_id]
        return ActionResult(success=True, message="Connection removed successfully")


async def wait_for_call(
    api: FakeConnectionsApi, name: str, key: Any = None, *, times: int = 1, attempts: int = 50
) -> None:
    """Spin the loop until the fake has seen the call `times` times (it may be parked on a gate)."""
    for _ in range(attempts):
        seen = sum(1 for call in api.calls if call[0] == name and (key is None or call[1] == key))
        if seen >= times:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"{name}({key!r}) was never called")


def fail_with(status: int = 500, message: str = "boom") -> ApiError:
    return ApiError(status, message)


class TickingClock:
    """Clock that moves one second per call, so every read is strictly later."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now
