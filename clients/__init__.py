from .api import ConnectionsApi

__all__ = [
    "ConnectionsApi",
]
