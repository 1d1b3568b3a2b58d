"""
HTTP helper functions used by the request and response facades.

Covers MIME resolution, Content-Disposition, URL encoding, HTML escaping,
Vary bookkeeping, freshness checks, media type matching and JSON bodies.
"""

import dataclasses
import html
import json
import mimetypes
import os
import re
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, Mapping, Optional, Union
from urllib.parse import quote

from pydantic import BaseModel

_TYPE_ALIASES = {
    "bin": "application/octet-stream",
    "html": "text/html",
    "json": "application/json",
    "js": "application/javascript",
    "text": "text/plain",
    "txt": "text/plain",
    "urlencoded": "application/x-www-form-urlencoded",
    "multipart": "multipart/*",
}

_CHARSET_TYPES = ("application/json", "application/javascript")

# Characters encodeurl leaves alone; "%" is kept only before two hex digits.
_URL_SAFE = "!#$&'()*+,-./:;=?@[]^_|~" + "0123456789" + "ABCDEFGHIJKLMNOPQRSTUVWXYZ" + (
    "abcdefghijklmnopqrstuvwxyz"
)
_URL_ENCODE_RE = re.compile(
    r"(?:[^\x21\x23-\x3B\x3D\x3F-\x5F\x61-\x7A\x7C\x7E]|%(?:[^0-9A-Fa-f]|[0-9A-Fa-f][^0-9A-Fa-f]|$))+"
)

_ATTR_CHAR_SAFE = "!#$&+.^_`|~-"
_LATIN1_PRINTABLE_RE = re.compile(r"^[\x20-\x7e\x80-\xff]*$")
_NO_CACHE_RE = re.compile(r"(?:^|,)\s*?no-cache\s*?(?:,|$)")
_MEDIA_TYPE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]{0,126}/[A-Za-z0-9*][A-Za-z0-9!#$&^_.+*-]{0,126}$")


def lookup_mime(name: str) -> Optional[str]:
    """Resolve an extension or short name ("png", ".png", "html") to a MIME type."""
    name = name.strip().lower()
    if not name:
        return None
    if "/" in name:
        return name
    name = name.lstrip(".")
    if name in _TYPE_ALIASES:
        return _TYPE_ALIASES[name]
    mime, _ = mimetypes.guess_type(f"file.{name}", strict=False)
    return mime


def get_type(value: str) -> str:
    """
    Resolve a Content-Type value.

    Full types pass through, extensions and short names are looked up, and
    text-like types gain a UTF-8 charset. Returns "" when nothing matches.
    """
    if not value:
        return ""
    mime = value if "/" in value else lookup_mime(value)
    if not mime:
        return ""
    base = mime.split(";", 1)[0].strip().lower()
    if "charset" not in mime.lower() and (base.startswith("text/") or base in _CHARSET_TYPES):
        mime = f"{mime}; charset=utf-8"
    return mime


def content_disposition(
    filename: Optional[str] = None, type: str = "attachment", fallback: Union[bool, str] = True
) -> str:
    """Build a Content-Disposition value (RFC 6266)."""
    if filename is None:
        return type

    name = os.path.basename(filename)
    params = []

    if isinstance(fallback, str):
        fallback_name = os.path.basename(fallback)
    elif fallback:
        fallback_name = name.encode("latin-1", "replace").decode("latin-1")
    else:
        fallback_name = None

    is_quoted = bool(_LATIN1_PRINTABLE_RE.match(name))
    has_fallback = fallback_name is not None and fallback_name != name

    if is_quoted or has_fallback:
        params.append(f"filename={_quote_string(fallback_name if has_fallback else name)}")
    if not is_quoted or has_fallback:
        params.append(f"filename*=UTF-8''{quote(name, safe=_ATTR_CHAR_SAFE)}")

    return "; ".join([type, *params])


def _quote_string(value: str) -> str:
    return '"' + re.sub(r'([\\"])', r"\\\1", value) + '"'


def encode_url(url: str) -> str:
    """Percent-encode a URL without double-encoding existing escapes."""
    return _URL_ENCODE_RE.sub(lambda m: quote(m.group(0), safe=_URL_SAFE), url)


def escape_html(value: str) -> str:
    return html.escape(value, quote=True).replace("&#x27;", "&#39;")


def parse_list(value: Optional[str]) -> list:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def append_vary(current: Optional[str], field: Union[str, Iterable[str]]) -> str:
    """Add field(s) to a Vary value, ignoring case-insensitive duplicates."""
    fields = parse_list(field) if isinstance(field, str) else [f.strip() for f in field]
    if current == "*":
        return "*"
    values = parse_list(current)
    lowered = [v.lower() for v in values]
    for fld in fields:
        if fld == "*":
            return "*"
        if fld.lower() not in lowered:
            values.append(fld)
            lowered.append(fld.lower())
    return ", ".join(values)


def _parse_http_date(value: str):
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None


def is_fresh(request_headers: Mapping[str, str], response_headers: Mapping[str, str]) -> bool:
    """Compare conditional request headers against response validators."""
    modified_since = request_headers.get("if-modified-since")
    none_match = request_headers.get("if-none-match")

    if not modified_since and not none_match:
        return False

    cache_control = request_headers.get("cache-control")
    if cache_control and _NO_CACHE_RE.search(cache_control):
        return False

    if none_match and none_match != "*":
        etag = response_headers.get("etag")
        if not etag:
            return False
        if not any(
            token == etag or token == f"W/{etag}" or f"W/{token}" == etag
            for token in parse_list(none_match)
        ):
            return False

    if modified_since:
        last_modified = response_headers.get("last-modified")
        if not last_modified:
            return False
        modified = _parse_http_date(last_modified)
        since = _parse_http_date(modified_since)
        if modified is None or since is None or modified > since:
            return False

    return True


def normalize_media_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    base = value.split(";", 1)[0].strip().lower()
    if not _MEDIA_TYPE_RE.match(base):
        return None
    return base


def _normalize_expected(expected: str) -> Optional[str]:
    if expected.startswith("+"):
        return f"*/*{expected}"
    if "/" in expected:
        return expected.lower()
    mime = lookup_mime(expected)
    return mime.split(";", 1)[0] if mime else None


def _mime_match(expected: str, actual: str) -> bool:
    expected_type, _, expected_sub = expected.partition("/")
    actual_type, _, actual_sub = actual.partition("/")
    if expected_type != "*" and expected_type != actual_type:
        return False
    if expected_sub.startswith("*+"):
        return len(actual_sub) > len(expected_sub) - 1 and actual_sub.endswith(expected_sub[1:])
    return expected_sub == "*" or expected_sub == actual_sub


def type_is(value: Optional[str], *types: str) -> Union[str, bool]:
    """
    Match a media type against candidates ("json", "text/*", "+json").

    Returns the matching candidate (or the actual type for wildcard
    candidates), the actual type when no candidates are given, or False.
    """
    actual = normalize_media_type(value)
    if actual is None:
        return False
    if not types:
        return actual
    for candidate in types:
        expected = _normalize_expected(candidate)
        if expected and _mime_match(expected, actual):
            if candidate.startswith("+") or "*" in candidate:
                return actual
            return candidate
    return False


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps_json(value: Any) -> str:
    """Serialize a structured body compactly, as a JSON response carries it."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_json_default)
