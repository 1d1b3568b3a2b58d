"""
Core logic package.

Provides the middleware composition engine, the request/response facades,
the per-request context and the HTTP helpers they rely on.
"""

from .compose import compose
from .context import Context
from .cookies import Cookies
from .exceptions import (
    ClientDisconnect,
    HttpError,
    InvalidStatusCodeError,
    MiddlewareError,
    create_error,
)
from .negotiation import Accepts
from .request import Request
from .response import BodyKind, Response

__all__ = [
    "compose",
    "Context",
    "Cookies",
    "ClientDisconnect",
    "HttpError",
    "InvalidStatusCodeError",
    "MiddlewareError",
    "create_error",
    "Accepts",
    "Request",
    "BodyKind",
    "Response",
]
