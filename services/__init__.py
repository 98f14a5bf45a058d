# services/__init__.py
from .actions import COMMANDS, ActionHandlers
from .engine import CommandResult, ConnectionsEngine, ViewStatus
from .events import ConnectionEvent, EventKind, EventListener
from .fetchers import (
    FetchPage,
    fetch_connections,
    fetch_invitations,
    fetch_recommendations,
    fetch_sent_requests,
)
from .reconciliation import MergeReport, ReconciliationPipeline, SearchHit
from .search import SearchController

__all__ = [
    "COMMANDS",
    "ActionHandlers",
    "CommandResult",
    "ConnectionsEngine",
    "ViewStatus",
    "ConnectionEvent",
    "EventKind",
    "EventListener",
    "FetchPage",
    "fetch_connections",
    "fetch_invitations",
    "fetch_recommendations",
    "fetch_sent_requests",
    "MergeReport",
    "ReconciliationPipeline",
    "SearchHit",
    "SearchController",
]
