"""
Onion - middleware dispatch core for ASGI.

Composes `handler(ctx, next)` middleware into an onion-style chain and
finalizes the HTTP response from the context the chain leaves behind.
"""

from .application import Application, respond
from .config import AppConfig
from .core import (
    BodyKind,
    ClientDisconnect,
    Context,
    HttpError,
    InvalidStatusCodeError,
    MiddlewareError,
    Request,
    Response,
    compose,
    create_error,
)
from .core.logging_config import JsonFormatter, setup_logging
from .middleware import access_log_middleware

__all__ = [
    "Application",
    "respond",
    "AppConfig",
    "BodyKind",
    "ClientDisconnect",
    "Context",
    "HttpError",
    "InvalidStatusCodeError",
    "MiddlewareError",
    "Request",
    "Response",
    "compose",
    "create_error",
    "access_log_middleware",
    "JsonFormatter",
    "setup_logging",
]
