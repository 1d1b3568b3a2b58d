"""
Raw connection halves over an ASGI (scope, receive, send) triple.

RawRequest reads the inbound message, RawResponse buffers status and
headers until the first write and tracks whether the exchange finished.
"""

import asyncio
import inspect
import logging
from typing import Any, AsyncIterable, Callable, Dict, List, Mapping, Optional, Set

from starlette.datastructures import MutableHeaders
from starlette.types import Message, Receive, Scope, Send

from .exceptions import ClientDisconnect

logger = logging.getLogger("onion.transport")

FinishCallback = Callable[[Optional[BaseException]], Any]

# Keeps late finish callbacks alive until they complete.
_pending: Set[asyncio.Future] = set()


def _decode_headers(raw_headers) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for raw_name, raw_value in raw_headers:
        name = raw_name.decode("latin-1").lower()
        value = raw_value.decode("latin-1")
        if name in headers:
            separator = "; " if name == "cookie" else ", "
            headers[name] = f"{headers[name]}{separator}{value}"
        else:
            headers[name] = value
    return headers


class RawRequest:
    """Inbound half of a connection."""

    def __init__(
        self,
        scope: Scope,
        receive: Receive,
        on_disconnect: Optional[Callable[[BaseException], Any]] = None,
    ):
        self.scope = scope
        self._receive = receive
        self._on_disconnect = on_disconnect
        self._body: Optional[bytes] = None
        self._consumed = False
        self._error: Optional[BaseException] = None
        # Set once the inbound body has been read to the end (or failed).
        self._drained = asyncio.Event()

        self.method: str = scope.get("method", "GET")
        raw_path = scope.get("raw_path")
        path = raw_path.decode("latin-1") if raw_path else scope.get("path", "/")
        query = scope.get("query_string", b"").decode("latin-1")
        self.url: str = f"{path}?{query}" if query else path
        self.headers: Dict[str, str] = _decode_headers(scope.get("headers", []))
        self.http_version: str = scope.get("http_version", "1.1")
        client = scope.get("client")
        self.remote_address: str = client[0] if client else ""
        self.encrypted: bool = scope.get("scheme", "http") in ("https", "wss")

    @property
    def http_version_major(self) -> int:
        try:
            return int(self.http_version.split(".", 1)[0])
        except ValueError:
            return 1

    @property
    def has_body(self) -> bool:
        if "transfer-encoding" in self.headers:
            return True
        return self.headers.get("content-length", "0") not in ("", "0")

    async def stream(self):
        """Yield request body chunks as they arrive."""
        if self._body is None and self._consumed:
            # another reader is draining the body; wait for its result
            await self._drained.wait()
        if self._error is not None:
            raise self._error
        if self._body is not None:
            yield self._body
            return
        if self._consumed:
            raise RuntimeError("request body already consumed")
        self._consumed = True
        try:
            while True:
                message = await self._receive()
                if message["type"] == "http.request":
                    chunk = message.get("body", b"")
                    if chunk:
                        yield chunk
                    if not message.get("more_body", False):
                        return
                elif message["type"] == "http.disconnect":
                    err = ClientDisconnect()
                    self._error = err
                    await self._disconnected(err)
                    raise err
        finally:
            self._drained.set()

    async def body(self) -> bytes:
        if self._body is None:
            chunks = [chunk async for chunk in self.stream()]
            if self._body is None:
                self._body = b"".join(chunks)
        return self._body

    async def wait_for_disconnect(self) -> None:
        """
        Wait until the peer goes away and abort the paired response.

        Listening starts once the request body has been read: bodiless
        requests are drained here, otherwise the handler's read is awaited.
        Cancel the task once the response is done.
        """
        if self.has_body:
            await self._drained.wait()
        else:
            try:
                await self.body()
            except ClientDisconnect:
                return
        if self._error is not None:
            return

        while True:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                await self._disconnected(ClientDisconnect())
                return

    async def _disconnected(self, err: ClientDisconnect) -> None:
        if self._on_disconnect is None:
            return
        result = self._on_disconnect(err)
        if inspect.isawaitable(result):
            await result


class RawResponse:
    """Outbound half of a connection."""

    def __init__(self, send: Send):
        self._send = send
        self.status_code: int = 200
        self.status_message: str = ""
        self.headers = MutableHeaders()
        self.headers_sent = False
        self.finished = False
        self.error: Optional[BaseException] = None
        self._callbacks: List[FinishCallback] = []

    @property
    def writable(self) -> bool:
        return not self.finished

    def on_finished(self, callback: FinishCallback) -> None:
        """Run callback(err) once the exchange completes; err is None on a clean end."""
        if not self.finished:
            self._callbacks.append(callback)
            return
        result = callback(self.error)
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            _pending.add(future)
            future.add_done_callback(_pending.discard)

    async def _emit(self, message: Message) -> None:
        try:
            await self._send(message)
        except OSError as err:
            await self.abort(err)
            raise

    async def write_head(self) -> None:
        if self.headers_sent:
            return
        self.headers_sent = True
        await self._emit(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": list(self.headers.raw),
            }
        )

    async def write(self, chunk: bytes) -> None:
        if self.finished:
            raise RuntimeError("write after end")
        await self.write_head()
        await self._emit({"type": "http.response.body", "body": chunk, "more_body": True})

    async def end(self, data: bytes = b"") -> None:
        if self.finished:
            return
        await self.write_head()
        await self._emit({"type": "http.response.body", "body": data, "more_body": False})
        await self._finish(None)

    async def pipe(self, stream: AsyncIterable[Any]) -> None:
        """Write every chunk of an async byte stream, then end the response."""
        async for chunk in stream:
            if self.finished:
                break
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            if chunk:
                await self.write(chunk)
        await self.end()

    async def abort(self, err: BaseException) -> None:
        """Mark the exchange finished because of err."""
        if self.finished:
            return
        self.error = err
        await self._finish(err)

    async def close(self, status: int = 500, headers: Optional[Mapping[str, str]] = None) -> None:
        """
        Finish a response nobody completed.

        When nothing was sent yet, the response goes out bodiless with the
        given status and extra headers.
        """
        if self.finished:
            return
        if not self.headers_sent:
            self.status_code = status
            self.headers = MutableHeaders(dict(headers or {}))
            self.headers["content-length"] = "0"
        try:
            await self.end()
        except OSError as err:
            logger.debug("Failed to close response: %s", err)

    async def _finish(self, err: Optional[BaseException]) -> None:
        self.finished = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            result = callback(err)
            if inspect.isawaitable(result):
                await result
