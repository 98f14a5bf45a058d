# middlewares/__init__.py
from .engine import EngineMiddleware
from .logging_context import LoggingContextMiddleware

__all__ = [
    "EngineMiddleware",
    "LoggingContextMiddleware",
]
