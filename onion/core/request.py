"""
Request facade.

Read-mostly view over the inbound message. Derived values (parsed URL,
query mapping, negotiation object, client IP) are cached in explicit
fields; the URL and query caches are keyed by the raw string they were
derived from, so reassigning path or query string rebuilds them.
"""

import ipaddress
import re
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import SplitResult, quote, urlencode, urlsplit, urlunsplit

from starlette.datastructures import URL as ParsedURL, QueryParams

from .negotiation import Accepts
from .transport import RawRequest, RawResponse
from .utils import is_fresh, normalize_media_type, type_is

if TYPE_CHECKING:
    from ..application import Application
    from .context import Context
    from .response import Response

QueryValue = Union[str, List[str]]

_COMMA_RE = re.compile(r"\s*,\s*")
_ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_IDEMPOTENT_METHODS = ("GET", "HEAD", "PUT", "DELETE", "OPTIONS", "TRACE")


def parse_query(querystring: str) -> Dict[str, QueryValue]:
    """Parse a query string; repeated keys collect their values in order."""
    parsed: Dict[str, QueryValue] = {}
    for key, value in QueryParams(querystring).multi_items():
        if key not in parsed:
            parsed[key] = value
        elif isinstance(parsed[key], list):
            parsed[key].append(value)
        else:
            parsed[key] = [parsed[key], value]
    return parsed


def _is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


class Request:
    def __init__(
        self,
        req: RawRequest,
        res: RawResponse,
        app: "Application",
        ctx: Optional["Context"] = None,
    ):
        self.req = req
        self.res = res
        self.app = app
        self.ctx = ctx
        self.response: Optional["Response"] = None
        self.original_url: str = req.url

        self._parsed_url: Optional[Tuple[str, SplitResult]] = None
        self._memoized_url: Optional[ParsedURL] = None
        self._query_cache: Optional[Tuple[str, Dict[str, QueryValue]]] = None
        self._accept: Optional[Accepts] = None
        self._ip: Optional[str] = None

    # raw message

    @property
    def header(self) -> Dict[str, str]:
        return self.req.headers

    @header.setter
    def header(self, val: Mapping[str, str]) -> None:
        self.req.headers = {key.lower(): value for key, value in val.items()}

    headers = header

    @property
    def url(self) -> str:
        return self.req.url

    @url.setter
    def url(self, val: str) -> None:
        self.req.url = val

    @property
    def method(self) -> str:
        return self.req.method

    @method.setter
    def method(self, val: str) -> None:
        self.req.method = val

    def get(self, field: str) -> str:
        field = field.lower()
        if field in ("referer", "referrer"):
            return self.req.headers.get("referrer") or self.req.headers.get("referer") or ""
        return self.req.headers.get(field) or ""

    # url components

    def _parse(self) -> SplitResult:
        raw = self.req.url
        if self._parsed_url is None or self._parsed_url[0] != raw:
            self._parsed_url = (raw, urlsplit(raw))
        return self._parsed_url[1]

    @property
    def path(self) -> str:
        return self._parse().path

    @path.setter
    def path(self, path: str) -> None:
        parsed = self._parse()
        if parsed.path == path:
            return
        self._parsed_url = None
        self.url = urlunsplit(parsed._replace(path=path))

    @property
    def querystring(self) -> str:
        return self._parse().query

    @querystring.setter
    def querystring(self, value: str) -> None:
        parsed = self._parse()
        if parsed.query == value:
            return
        self._parsed_url = None
        self.url = urlunsplit(parsed._replace(query=value))

    @property
    def search(self) -> str:
        querystring = self.querystring
        return f"?{querystring}" if querystring else ""

    @search.setter
    def search(self, value: str) -> None:
        self.querystring = value[1:] if value.startswith("?") else value

    @property
    def query(self) -> Dict[str, QueryValue]:
        querystring = self.querystring
        if self._query_cache is None or self._query_cache[0] != querystring:
            self._query_cache = (querystring, parse_query(querystring))
        return self._query_cache[1]

    @query.setter
    def query(self, obj: Mapping[str, Any]) -> None:
        self.querystring = urlencode(obj, doseq=True, quote_via=quote)

    @property
    def origin(self) -> str:
        return f"{self.protocol}://{self.host}"

    @property
    def href(self) -> str:
        # absolute-form request targets, e.g. "GET http://example.com/foo"
        if _ABSOLUTE_URL_RE.match(self.original_url):
            return self.original_url
        return self.origin + self.original_url

    @property
    def URL(self) -> ParsedURL:
        if self._memoized_url is None:
            raw = f"{self.origin}{self.original_url or ''}"
            try:
                urlsplit(raw)
            except ValueError:
                raw = ""
            self._memoized_url = ParsedURL(raw)
        return self._memoized_url

    # host and client

    @property
    def host(self) -> str:
        host = self.app.proxy and self.get("X-Forwarded-Host")
        if not host:
            if self.req.http_version_major >= 2:
                host = self.get(":authority")
            if not host:
                host = self.get("Host")
        if not host:
            return ""
        return _COMMA_RE.split(host, 1)[0]

    @property
    def hostname(self) -> str:
        host = self.host
        if not host:
            return ""
        if host[0] == "[":
            return self.URL.hostname or ""
        return host.split(":", 1)[0]

    @property
    def protocol(self) -> str:
        if self.req.encrypted:
            return "https"
        if not self.app.proxy:
            return "http"
        proto = self.get("X-Forwarded-Proto")
        return _COMMA_RE.split(proto, 1)[0] if proto else "http"

    @property
    def secure(self) -> bool:
        return self.protocol == "https"

    @property
    def ips(self) -> List[str]:
        val = self.get(self.app.proxy_ip_header)
        ips = _COMMA_RE.split(val) if self.app.proxy and val else []
        if self.app.max_ips_count > 0:
            ips = ips[-self.app.max_ips_count:]
        return ips

    @property
    def ip(self) -> str:
        if not self._ip:
            ips = self.ips
            self._ip = (ips[0] if ips else "") or self.req.remote_address or ""
        return self._ip

    @ip.setter
    def ip(self, value: str) -> None:
        self._ip = value

    @property
    def subdomains(self) -> List[str]:
        hostname = self.hostname
        if not hostname or _is_ip(hostname):
            return []
        return hostname.split(".")[::-1][self.app.subdomain_offset:]

    # caching

    @property
    def fresh(self) -> bool:
        if self.method not in ("GET", "HEAD"):
            return False

        status = self.ctx.status
        if 200 <= status < 300 or status == 304:
            return is_fresh(self.header, self.res.headers)
        return False

    @property
    def stale(self) -> bool:
        return not self.fresh

    @property
    def idempotent(self) -> bool:
        return self.method in _IDEMPOTENT_METHODS

    # body metadata

    @property
    def charset(self) -> str:
        content_type = self.get("Content-Type")
        if normalize_media_type(content_type) is None:
            return ""
        for param in content_type.split(";")[1:]:
            key, _, value = param.partition("=")
            if key.strip().lower() == "charset":
                return value.strip().strip('"')
        return ""

    @property
    def length(self) -> Optional[int]:
        value = self.get("Content-Length")
        if value == "":
            return None
        try:
            return int(value)
        except ValueError:
            return 0

    @property
    def type(self) -> str:
        content_type = self.get("Content-Type")
        if not content_type:
            return ""
        return content_type.split(";", 1)[0].strip()

    def is_type(self, *types: str) -> Union[str, bool, None]:
        headers = self.req.headers
        has_body = "transfer-encoding" in headers or headers.get("content-length", "").isdigit()
        if not has_body:
            return None
        return type_is(headers.get("content-type"), *types)

    # negotiation

    @property
    def accept(self) -> Accepts:
        if self._accept is None:
            self._accept = Accepts(self.req.headers)
        return self._accept

    @accept.setter
    def accept(self, obj: Accepts) -> None:
        self._accept = obj

    def accepts(self, *types: str):
        return self.accept.types(*types)

    def accepts_encodings(self, *encodings: str):
        return self.accept.encodings(*encodings)

    def accepts_charsets(self, *charsets: str):
        return self.accept.charsets(*charsets)

    def accepts_languages(self, *languages: str):
        return self.accept.languages(*languages)

    # introspection

    def to_json(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "url": self.url,
            "header": self.header,
        }

    def inspect(self) -> Dict[str, Any]:
        return self.to_json()

    def __repr__(self) -> str:
        return f"<Request {self.inspect()!r}>"
