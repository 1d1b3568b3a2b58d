"""
Response facade.

Owns outbound status, headers and body for one context. Assigning a body
keeps Content-Type, Content-Length and Transfer-Encoding consistent with
the kind of value assigned.
"""

import enum
import inspect
import logging
import os
import re
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Union

from . import statuses
from .exceptions import InvalidStatusCodeError
from .transport import RawRequest, RawResponse
from .utils import (
    append_vary,
    content_disposition,
    dumps_json,
    encode_url,
    escape_html,
    get_type,
    type_is,
)

if TYPE_CHECKING:
    from .context import Context

logger = logging.getLogger("onion.response")

HeaderValue = Union[str, int, List[Any]]

_MARKUP_RE = re.compile(r"^\s*<")
_ETAG_RE = re.compile(r'^(W/)?"')


class BodyKind(enum.Enum):
    """The kinds of value a response body can hold."""

    NONE = "none"
    TEXT = "text"
    BINARY = "binary"
    STREAM = "stream"
    JSON = "json"


def body_kind_of(value: Any) -> BodyKind:
    if value is None:
        return BodyKind.NONE
    if isinstance(value, str):
        return BodyKind.TEXT
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BodyKind.BINARY
    if hasattr(value, "__aiter__"):
        return BodyKind.STREAM
    return BodyKind.JSON


async def _close_stream(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
        return
    close = getattr(stream, "close", None)
    if close is not None:
        result = close()
        if inspect.isawaitable(result):
            await result


class Response:
    def __init__(self, req: RawRequest, res: RawResponse, ctx: Optional["Context"] = None):
        self.req = req
        self.res = res
        self.ctx = ctx
        self.request = None
        self._body: Any = None
        self._body_kind = BodyKind.NONE
        self._explicit_status = False
        self._explicit_null_body = False

    # headers

    @property
    def header(self) -> Dict[str, Union[str, List[str]]]:
        headers: Dict[str, Union[str, List[str]]] = {}
        for key in self.res.headers.keys():
            if key in headers:
                continue
            values = self.res.headers.getlist(key)
            headers[key] = values if len(values) > 1 else values[0]
        return headers

    @property
    def headers(self) -> Dict[str, Union[str, List[str]]]:
        return self.header

    @property
    def header_sent(self) -> bool:
        return self.res.headers_sent

    def get(self, field: str) -> Optional[Union[str, List[str]]]:
        values = self.res.headers.getlist(field)
        if not values:
            return None
        return values if len(values) > 1 else values[0]

    def has(self, field: str) -> bool:
        return field.lower() in self.res.headers

    def set(self, field: Union[str, Mapping[str, HeaderValue]], val: Optional[HeaderValue] = None) -> None:
        if self.header_sent:
            return

        if isinstance(field, Mapping):
            for key, value in field.items():
                self.set(key, value)
            return

        if val is None:
            self.remove(field)
            return

        if isinstance(val, (list, tuple)):
            del self.res.headers[field]
            for item in val:
                self.res.headers.append(field, str(item))
        else:
            self.res.headers[field] = str(val)

    def append(self, field: str, val: Union[str, List[str]]) -> None:
        prev = self.get(field)
        if prev:
            prev_list = prev if isinstance(prev, list) else [prev]
            val = prev_list + (list(val) if isinstance(val, (list, tuple)) else [val])
        self.set(field, val)

    def remove(self, field: str) -> None:
        if self.header_sent:
            return
        del self.res.headers[field]

    def vary(self, field: str) -> None:
        if self.header_sent:
            return
        self.set("Vary", append_vary(self.get("Vary"), field))

    async def flush_headers(self) -> None:
        await self.res.write_head()

    # status

    @property
    def status(self) -> int:
        return self.res.status_code

    @status.setter
    def status(self, code: int) -> None:
        if self.header_sent:
            return

        if not isinstance(code, int) or isinstance(code, bool):
            raise InvalidStatusCodeError("status code must be a number")
        if not 100 <= code <= 999:
            raise InvalidStatusCodeError(f"invalid status code: {code}")
        self._explicit_status = True
        self.res.status_code = code
        if self.req.http_version_major < 2:
            self.res.status_message = statuses.message(code)
        if self._body is not None and statuses.is_empty(code):
            self.body = None

    @property
    def message(self) -> str:
        return self.res.status_message or statuses.message(self.status)

    @message.setter
    def message(self, msg: str) -> None:
        self.res.status_message = msg

    # body

    @property
    def body(self) -> Any:
        return self._body

    @body.setter
    def body(self, val: Any) -> None:
        original = self._body
        kind = body_kind_of(val)
        self._body = val
        self._body_kind = kind

        if kind is BodyKind.NONE:
            if not statuses.is_empty(self.status):
                if self.type == "application/json":
                    self._body = "null"
                    self._body_kind = BodyKind.TEXT
                    return
                self.status = 204
            self._explicit_null_body = True
            self.remove("Content-Type")
            self.remove("Content-Length")
            self.remove("Transfer-Encoding")
            return

        if not self._explicit_status:
            self.status = 200

        set_type = not self.has("Content-Type")

        if kind is BodyKind.TEXT:
            if set_type:
                self.type = "html" if _MARKUP_RE.match(val) else "text"
            self.length = len(val.encode("utf-8"))
            return

        if kind is BodyKind.BINARY:
            if set_type:
                self.type = "bin"
            self.length = memoryview(val).nbytes
            return

        if kind is BodyKind.STREAM:
            if original is not val:
                self.res.on_finished(lambda err: _close_stream(val))
                # overwriting
                if original is not None:
                    self.remove("Content-Length")
            if set_type:
                self.type = "bin"
            return

        self.remove("Content-Length")
        self.type = "json"

    @property
    def body_kind(self) -> BodyKind:
        return self._body_kind

    @property
    def explicit_null_body(self) -> bool:
        return self._explicit_null_body

    @property
    def length(self) -> Optional[int]:
        if self.has("Content-Length"):
            try:
                return int(self.get("Content-Length"))
            except (TypeError, ValueError):
                return 0

        kind = self._body_kind
        if kind is BodyKind.NONE or kind is BodyKind.STREAM:
            return None
        if kind is BodyKind.TEXT:
            return len(self._body.encode("utf-8")) if self._body else None
        if kind is BodyKind.BINARY:
            return memoryview(self._body).nbytes
        return len(dumps_json(self._body).encode("utf-8"))

    @length.setter
    def length(self, n: int) -> None:
        if not self.has("Transfer-Encoding"):
            self.set("Content-Length", n)

    # content type and validators

    @property
    def type(self) -> str:
        value = self.get("Content-Type")
        if not value:
            return ""
        return str(value).split(";", 1)[0].strip()

    @type.setter
    def type(self, value: str) -> None:
        mime = get_type(value)
        if mime:
            self.set("Content-Type", mime)
        else:
            self.remove("Content-Type")

    def is_type(self, *types: str) -> Union[str, bool]:
        return type_is(self.type, *types)

    @property
    def last_modified(self) -> Optional[datetime]:
        value = self.get("Last-Modified")
        if not value:
            return None
        try:
            return parsedate_to_datetime(str(value))
        except (TypeError, ValueError):
            return None

    @last_modified.setter
    def last_modified(self, val: Union[str, datetime]) -> None:
        if isinstance(val, str):
            val = parsedate_to_datetime(val)
        if val.tzinfo is None:
            val = val.replace(tzinfo=timezone.utc)
        self.set("Last-Modified", format_datetime(val.astimezone(timezone.utc), usegmt=True))

    @property
    def etag(self) -> Optional[str]:
        return self.get("ETag")

    @etag.setter
    def etag(self, val: str) -> None:
        if not _ETAG_RE.match(val):
            val = f'"{val}"'
        self.set("ETag", val)

    # helpers

    def redirect(self, url: str, alt: Optional[str] = None) -> None:
        if url == "back":
            url = self.ctx.get("Referrer") or alt or "/"
        self.set("Location", encode_url(url))

        if not statuses.is_redirect(self.status):
            self.status = 302

        if self.ctx.accepts("html"):
            url = escape_html(url)
            self.type = "text/html; charset=utf-8"
            self.body = f'Redirecting to <a href="{url}">{url}</a>.'
            return

        self.type = "text/plain; charset=utf-8"
        self.body = f"Redirecting to {url}."

    def attachment(self, filename: Optional[str] = None, **options: Any) -> None:
        if filename:
            self.type = os.path.splitext(filename)[1]
        self.set("Content-Disposition", content_disposition(filename, **options))

    @property
    def writable(self) -> bool:
        return self.res.writable

    def to_json(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "header": self.header,
        }

    def inspect(self) -> Dict[str, Any]:
        data = self.to_json()
        data["body"] = self.body
        return data

    def __repr__(self) -> str:
        return f"<Response {self.inspect()!r}>"
