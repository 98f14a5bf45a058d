from __future__ import annotations

from models import ViewKind


class EngineError(Exception):
    """Базовая ошибка движка связей."""


class ApiError(EngineError):
    """Удалённый вызов не удался (HTTP-статус != success или сеть)."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} (status={self.status})"


class AuthRequired(ApiError):
    """Нет токена или сервер ответил 401."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(401, message)


class FetchFailed(EngineError):
    """Одно из вью не удалось обновить; старые данные остаются."""

    def __init__(self, view: ViewKind, message: str) -> None:
        super().__init__(f"{view.value}: {message}")
        self.view = view
        self.message = message


class ActionFailed(EngineError):
    """Удалённая команда не прошла, оптимистичное состояние откатили."""

    def __init__(self, counterparty_id: str, message: str) -> None:
        super().__init__(message)
        self.counterparty_id = counterparty_id
        self.message = message


class ConflictingAction(EngineError):
    """По этому контрагенту уже выполняется другая команда."""

    def __init__(self, counterparty_id: str, in_progress: str) -> None:
        super().__init__(f"{in_progress} already in progress for {counterparty_id}")
        self.counterparty_id = counterparty_id
        self.in_progress = in_progress


class InvalidTransition(EngineError):
    """Команда не применима к текущему состоянию связи."""

    def __init__(self, counterparty_id: str, command: str, state: str) -> None:
        super().__init__(f"cannot {command} {counterparty_id} in state {state}")
        self.counterparty_id = counterparty_id
        self.command = command
        self.state = state
