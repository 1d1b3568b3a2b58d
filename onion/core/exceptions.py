"""
Custom exception classes.

Represent HTTP errors raised from middleware and validation failures
raised by the dispatch core.
"""

from typing import Any, Mapping, Optional

from . import statuses


class MiddlewareError(RuntimeError):
    """Raised when the middleware chain is driven incorrectly."""

    pass


class InvalidStatusCodeError(ValueError):
    """Raised when a response status is not an integer in 100-999."""

    pass


class ClientDisconnect(ConnectionError):
    """Raised when the peer goes away before the response is finished."""

    def __init__(self, detail: str = "client disconnected"):
        super().__init__(detail)


class HttpError(Exception):
    """
    Error carrying an HTTP status.

    `expose` tells the error hooks whether the message is safe to show to
    the client; it defaults to True for 4xx and False for 5xx.
    """

    def __init__(
        self,
        status: int = 500,
        message: Optional[str] = None,
        *,
        expose: Optional[bool] = None,
        headers: Optional[Mapping[str, str]] = None,
        **properties: Any,
    ):
        if not isinstance(status, int) or isinstance(status, bool) or not 400 <= status < 600:
            status = 500
        self.status = status
        self.message = message or statuses.message(status)
        self.expose = status < 500 if expose is None else expose
        self.headers = dict(headers or {})
        self.properties = properties
        for key, value in properties.items():
            setattr(self, key, value)
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.status

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, message={self.message!r})"


def create_error(
    status: int = 500, message: Optional[str] = None, **properties: Any
) -> HttpError:
    """Build an HttpError; statuses outside 400-599 collapse to 500."""
    return HttpError(status, message, **properties)
