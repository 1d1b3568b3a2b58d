"""
Per-request context.

Binds one request facade and one response facade to the raw connection
and the application's shared configuration. Common facade members are
reachable directly on the context (`ctx.body`, `ctx.path`, ...).
"""

from typing import TYPE_CHECKING, Any, Dict, NoReturn, Optional, Union

from .cookies import Cookies
from .exceptions import create_error
from .request import Request
from .response import Response
from .transport import RawRequest, RawResponse

if TYPE_CHECKING:
    from ..application import Application


def _access(target: str, name: str) -> property:
    def fget(self):
        return getattr(getattr(self, target), name)

    def fset(self, value):
        setattr(getattr(self, target), name, value)

    return property(fget, fset, doc=f"Read/write {target}.{name}.")


def _getter(target: str, name: str) -> property:
    def fget(self):
        return getattr(getattr(self, target), name)

    return property(fget, doc=f"Read {target}.{name}.")


def _method(target: str, name: str):
    def method(self, *args, **kwargs):
        return getattr(getattr(self, target), name)(*args, **kwargs)

    method.__name__ = name
    method.__doc__ = f"Call {target}.{name}()."
    return method


class Context:
    def __init__(self, app: "Application", req: RawRequest, res: RawResponse):
        self.app = app
        self.req = req
        self.res = res
        self.request = Request(req, res, app, self)
        self.response = Response(req, res, self)
        self.request.response = self.response
        self.response.request = self.request
        self.original_url: str = req.url
        self.state: Dict[str, Any] = {}
        # False skips the finalizer; the handler then owns ctx.res.
        self.respond = True
        self._cookies: Optional[Cookies] = None

    def throw(
        self, status: Union[int, str] = 500, message: Optional[str] = None, **properties: Any
    ) -> NoReturn:
        """Raise an HttpError, e.g. `ctx.throw(403, "forbidden", user=user)`."""
        if isinstance(status, str):
            status, message = 500, status
        raise create_error(status, message, **properties)

    def assert_(
        self, value: Any, status: int = 500, message: Optional[str] = None, **properties: Any
    ) -> None:
        if not value:
            self.throw(status, message, **properties)

    def onerror(self, err: Optional[BaseException]) -> None:
        """Per-request error hook; runs before the application's hook. Does nothing by default."""

    @property
    def cookies(self) -> Cookies:
        if self._cookies is None:
            self._cookies = Cookies(
                self.req, self.res, keys=self.app.keys, secure=self.request.secure
            )
        return self._cookies

    @cookies.setter
    def cookies(self, cookies: Cookies) -> None:
        self._cookies = cookies

    def to_json(self) -> Dict[str, Any]:
        return {
            "request": self.request.to_json(),
            "response": self.response.to_json(),
            "app": self.app.to_json(),
            "original_url": self.original_url,
            "req": "<original asgi request>",
            "res": "<original asgi response>",
        }

    def inspect(self) -> Dict[str, Any]:
        return self.to_json()

    def __repr__(self) -> str:
        return f"<Context {self.inspect()!r}>"

    # response delegation
    status = _access("response", "status")
    message = _access("response", "message")
    body = _access("response", "body")
    length = _access("response", "length")
    type = _access("response", "type")
    last_modified = _access("response", "last_modified")
    etag = _access("response", "etag")
    header_sent = _getter("response", "header_sent")
    writable = _getter("response", "writable")
    attachment = _method("response", "attachment")
    redirect = _method("response", "redirect")
    remove = _method("response", "remove")
    vary = _method("response", "vary")
    has = _method("response", "has")
    set = _method("response", "set")
    append = _method("response", "append")
    flush_headers = _method("response", "flush_headers")

    # request delegation
    querystring = _access("request", "querystring")
    search = _access("request", "search")
    method = _access("request", "method")
    query = _access("request", "query")
    path = _access("request", "path")
    url = _access("request", "url")
    accept = _access("request", "accept")
    ip = _access("request", "ip")
    idempotent = _getter("request", "idempotent")
    origin = _getter("request", "origin")
    href = _getter("request", "href")
    subdomains = _getter("request", "subdomains")
    protocol = _getter("request", "protocol")
    host = _getter("request", "host")
    hostname = _getter("request", "hostname")
    URL = _getter("request", "URL")
    header = _getter("request", "header")
    headers = _getter("request", "headers")
    secure = _getter("request", "secure")
    stale = _getter("request", "stale")
    fresh = _getter("request", "fresh")
    ips = _getter("request", "ips")
    accepts = _method("request", "accepts")
    accepts_encodings = _method("request", "accepts_encodings")
    accepts_charsets = _method("request", "accepts_charsets")
    accepts_languages = _method("request", "accepts_languages")
    get = _method("request", "get")
    is_type = _method("request", "is_type")
