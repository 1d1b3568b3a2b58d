"""
Onion application.

Holds the registered middleware and shared configuration, turns each
ASGI connection into a Context, runs the composed middleware against it
and finalizes the response from whatever the chain left in ctx.response.
"""

import asyncio
import json
import logging
import traceback
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from starlette.types import ASGIApp, Receive, Scope, Send

from .config import AppConfig, load_config
from .core import statuses
from .core.compose import Middleware, compose
from .core.context import Context
from .core.exceptions import HttpError
from .core.logging_config import setup_logging
from .core.response import BodyKind
from .core.transport import RawRequest, RawResponse
from .core.utils import dumps_json

logger = logging.getLogger("onion.application")

ErrorHook = Callable[[Any], None]


class Application:
    """
    Middleware dispatcher.

    Example:
        app = Application(proxy=True)

        async def hello(ctx, next):
            ctx.body = "Hello"

        app.use(hello)
        app.listen(port=3000)
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        on_error: Optional[ErrorHook] = None,
        **options: Any,
    ):
        if config is not None and options:
            raise TypeError("pass either a config or keyword options, not both")
        self.config = config if config is not None else load_config(**options)
        self.middleware: List[Middleware] = []
        self.silent: bool = self.config.SILENT
        # Process-wide error hook; callback() installs self.onerror when unset.
        self.error_hook: Optional[ErrorHook] = on_error
        self.context_class = Context

    @property
    def env(self) -> str:
        return self.config.ENV

    @property
    def keys(self) -> Optional[List[str]]:
        return self.config.KEYS

    @property
    def proxy(self) -> bool:
        return self.config.PROXY

    @property
    def subdomain_offset(self) -> int:
        return self.config.SUBDOMAIN_OFFSET

    @property
    def proxy_ip_header(self) -> str:
        return self.config.PROXY_IP_HEADER

    @property
    def max_ips_count(self) -> int:
        return self.config.MAX_IPS_COUNT

    def use(self, fn: Middleware) -> "Application":
        """Append a middleware `fn(ctx, next)` to the chain."""
        if not callable(fn):
            raise TypeError("middleware must be a callable")
        logger.debug("use %s", getattr(fn, "__name__", None) or "-")
        self.middleware.append(fn)
        return self

    def listen(self, **kwargs: Any) -> None:
        """
        Serve the application with uvicorn.

        Logging is set up from LOG_CONFIG_PATH first. kwargs go to
        uvicorn.run(); log_level defaults to the configured LOG_LEVEL.
        """
        setup_logging(self.config.LOG_CONFIG_PATH, self.config.LOG_LEVEL)
        kwargs.setdefault("log_level", self.config.LOG_LEVEL.lower())
        logger.debug("listen")
        uvicorn.run(self.callback(), **kwargs)

    def callback(self) -> ASGIApp:
        """Return an ASGI callable serving the middleware registered so far."""
        fn = compose(self.middleware)

        if self.error_hook is None:
            self.error_hook = self.onerror

        async def handle(scope: Scope, receive: Receive, send: Send) -> None:
            if scope["type"] == "lifespan":
                await _lifespan(receive, send)
                return
            if scope["type"] != "http":
                raise RuntimeError(f"unsupported ASGI scope type: {scope['type']}")

            res = RawResponse(send)
            req = RawRequest(scope, receive, on_disconnect=res.abort)
            ctx = self.create_context(req, res)
            await self.handle_request(ctx, fn)

        return handle

    def create_context(self, req: RawRequest, res: RawResponse) -> Context:
        return self.context_class(self, req, res)

    async def handle_request(self, ctx: Context, fn: Callable[[Context], Any]) -> None:
        res = ctx.res
        res.status_code = 404
        reported = False

        def onerror(err: Any) -> None:
            nonlocal reported
            if reported:
                return
            reported = True
            ctx.onerror(err)
            (self.error_hook or self.onerror)(err)

        def on_finished(err: Optional[BaseException]) -> None:
            if err is not None:
                onerror(err)

        res.on_finished(on_finished)
        listener = asyncio.ensure_future(ctx.req.wait_for_disconnect())
        failure: Optional[Exception] = None

        try:
            await fn(ctx)
            await respond(ctx)
        except Exception as err:
            failure = err
            onerror(err)
        finally:
            listener.cancel()
            await asyncio.wait([listener])
            if not listener.cancelled() and listener.exception() is not None:
                logger.debug("Disconnect listener failed: %s", listener.exception())

            if isinstance(failure, HttpError):
                await res.close(failure.status, failure.headers)
            else:
                await res.close()

    def onerror(self, err: Any) -> None:
        """Default process-wide error hook: log unexposed, non-404 errors."""
        if not isinstance(err, BaseException):
            raise TypeError(f"non-error thrown: {json.dumps(err, default=repr)}")

        if getattr(err, "status", None) == 404 or getattr(err, "expose", False):
            return
        if self.silent:
            return

        msg = "".join(traceback.format_exception(type(err), err, err.__traceback__)).rstrip()
        msg = "\n".join(f"  {line}" for line in (msg or repr(err)).splitlines())
        logger.error("\n%s\n", msg)

    def to_json(self) -> Dict[str, Any]:
        return {
            "subdomain_offset": self.subdomain_offset,
            "proxy": self.proxy,
            "env": self.env,
        }

    def inspect(self) -> Dict[str, Any]:
        return self.to_json()

    def __repr__(self) -> str:
        return f"<Application {self.inspect()!r}>"


async def respond(ctx: Context) -> None:
    """Write the final context state to the connection."""
    if ctx.respond is False:
        return

    if not ctx.writable:
        return

    res = ctx.res
    response = ctx.response
    body = ctx.body
    code = ctx.status

    # ignore body
    if statuses.is_empty(code):
        ctx.body = None
        await res.end()
        return

    if ctx.method == "HEAD":
        if not res.headers_sent and not response.has("Content-Length"):
            length = response.length
            if isinstance(length, int):
                ctx.length = length
        await res.end()
        return

    # status body
    if body is None:
        if response.explicit_null_body:
            response.remove("Content-Type")
            response.remove("Transfer-Encoding")
            ctx.length = 0
            await res.end()
            return
        if ctx.req.http_version_major >= 2:
            text = str(code)
        else:
            text = ctx.message or str(code)
        payload = text.encode("utf-8")
        if not res.headers_sent:
            ctx.type = "text"
            ctx.length = len(payload)
        await res.end(payload)
        return

    kind = response.body_kind
    if kind is BodyKind.BINARY:
        await res.end(bytes(body))
        return
    if kind is BodyKind.TEXT:
        await res.end(body.encode("utf-8"))
        return
    if kind is BodyKind.STREAM:
        await res.pipe(body)
        return

    # body: json
    payload = dumps_json(body).encode("utf-8")
    if not res.headers_sent:
        ctx.length = len(payload)
    await res.end(payload)


async def _lifespan(receive: Receive, send: Send) -> None:
    while True:
        message = await receive()
        if message["type"] == "lifespan.startup":
            await send({"type": "lifespan.startup.complete"})
        elif message["type"] == "lifespan.shutdown":
            await send({"type": "lifespan.shutdown.complete"})
            return
