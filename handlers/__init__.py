# handlers/__init__.py

from .connections import router as connections_router
from .connection_actions import router as connection_actions_router

__all__ = [
    "connections_router",
    "connection_actions_router",
]
