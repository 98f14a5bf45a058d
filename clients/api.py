from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx
from pydantic import ValidationError

from config import settings
from exceptions import ApiError, AuthRequired
from schemas import (
    ActionResult,
    ConnectionsPage,
    ConnectionStatus,
    Envelope,
    GlobalSearchUser,
    InvitationsPage,
    SentRequestItem,
    SuggestedPage,
)

logger = logging.getLogger(__name__)


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class ConnectionsApi:
    """
    HTTP-клиент к REST API связей.

    Листинги бросают ApiError/AuthRequired, мутации возвращают ActionResult
    (success + message) — сервер отвечает конвертом
    {status, message, success, data, errors}.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = token if token is not None else settings.api_token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.token:
            raise AuthRequired("No authentication token found")
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> tuple[int, Envelope]:
        headers = self._headers()
        if params:
            params = {k: v for k, v in params.items() if v not in (None, "")}

        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("api_transport_error method=%s path=%s error=%r", method, path, exc)
            raise ApiError(0, "Network error. Please try again.") from exc

        if response.status_code == 401:
            raise AuthRequired()

        try:
            envelope = Envelope.model_validate(response.json())
        except (ValueError, ValidationError):
            envelope = Envelope(message=response.reason_phrase or "Invalid response")

        logger.debug(
            "api_response method=%s path=%s status=%s success=%s",
            method,
            path,
            response.status_code,
            envelope.success,
        )
        return response.status_code, envelope

    async def _get_data(self, path: str, params: dict[str, Any] | None = None) -> Any:
        status, envelope = await self._request("GET", path, params=params)
        if not (200 <= status < 300 or envelope.success):
            raise ApiError(status, envelope.message or "Request failed")
        return envelope.data

    async def _mutate(
        self,
        method: str,
        path: str,
        body: dict[str, Any],
        counterparty_id: str,
        default_message: str,
    ) -> ActionResult:
        if not _is_uuid(counterparty_id):
            return ActionResult(success=False, status=400, message="Invalid user ID format")
        try:
            status, envelope = await self._request(method, path, json=body)
        except ApiError as exc:
            return ActionResult(success=False, status=exc.status, message=exc.message)
        return ActionResult(
            success=envelope.success or 200 <= status < 300,
            status=status,
            message=envelope.message or default_message,
        )

    # ===== листинги =====

    async def list_connections(
        self,
        page: int = 1,
        limit: int = 20,
        search: str | None = None,
    ) -> ConnectionsPage:
        data = await self._get_data(
            "/connection/list",
            {"page": page, "limit": limit, "search": search, "status": "active"},
        )
        return ConnectionsPage.model_validate(data or {})

    async def list_invitations(self, page: int = 1, limit: int = 100) -> InvitationsPage:
        data = await self._get_data(
            "/connection/notifications",
            {
                "page": page,
                "limit": limit,
                "type": "connect_request",
                "status": "pending",
            },
        )
        return InvitationsPage.model_validate(data or {})

    async def list_sent_requests(self, recipient: str | None = None) -> list[SentRequestItem]:
        status, envelope = await self._request(
            "GET", "/connection/sent", params={"recipient": recipient}
        )
        # с фильтром по получателю сервер отвечает 404, если заявок нет
        if status == 404 and recipient:
            return []
        if not (200 <= status < 300 or envelope.success):
            raise ApiError(status, envelope.message or "Failed to fetch sent requests")
        return [SentRequestItem.model_validate(item) for item in envelope.data or []]

    async def list_recommendations(self, page: int = 1, limit: int = 8) -> SuggestedPage:
        data = await self._get_data("/connection/suggested", {"page": page, "limit": limit})
        if isinstance(data, list):
            return SuggestedPage(users=data, total=len(data), page=page, limit=limit)
        return SuggestedPage.model_validate(data or {})

    async def search_users_globally(
        self,
        query: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[GlobalSearchUser]:
        data = await self._get_data(
            "/profile/search",
            {"q": query, "limit": limit, "offset": offset},
        )
        if isinstance(data, dict):
            data = data.get("results") or []
        return [GlobalSearchUser.model_validate(item) for item in data or []]

    async def get_connection_status(self, counterparty_id: str) -> ConnectionStatus:
        if not _is_uuid(counterparty_id):
            raise ApiError(400, "Invalid user ID format")
        data = await self._get_data(f"/connection/status/{counterparty_id}")
        return ConnectionStatus.model_validate(data or {"user_id": counterparty_id})

    # ===== мутации =====

    async def send_connection_request(self, counterparty_id: str) -> ActionResult:
        return await self._mutate(
            "POST",
            "/connection/request",
            {"recipient_id": counterparty_id},
            counterparty_id,
            "Connection request processed",
        )

    async def accept_connection_request(self, counterparty_id: str) -> ActionResult:
        # сервер ждёт именно connection_status
        return await self._mutate(
            "POST",
            "/connection/accept",
            {"sender_id": counterparty_id, "connection_status": "accepted"},
            counterparty_id,
            "Connection request accepted",
        )

    async def reject_connection_request(self, counterparty_id: str) -> ActionResult:
        return await self._mutate(
            "POST",
            "/connection/reject",
            {"sender_id": counterparty_id},
            counterparty_id,
            "Connection request rejected",
        )

    async def withdraw_connection_request(self, counterparty_id: str) -> ActionResult:
        return await self._mutate(
            "DELETE",
            "/connection/withdraw",
            {"recipient_id": counterparty_id},
            counterparty_id,
            "Connection request withdrawn",
        )

    async def remove_connection(self, counterparty_id: str) -> ActionResult:
        return await self._mutate(
            "DELETE",
            "/connection/remove",
            {"connected_user_id": counterparty_id},
            counterparty_id,
            "Connection removed successfully",
        )
