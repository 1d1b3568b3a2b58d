"""
Cookie jar bound to one connection.

Reads the Cookie request header and writes Set-Cookie response headers,
optionally signing values with the application's keys.
"""

import base64
import hashlib
import hmac
import re
from datetime import datetime, timezone
from email.utils import format_datetime
from http.cookies import SimpleCookie
from typing import List, Optional, Sequence, Union

from .transport import RawRequest, RawResponse

_NAME_RE = re.compile(r"^[\u0009 -~\u0080-ÿ]+$")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Keygrip:
    """HMAC-SHA1 signer that verifies against rotated keys."""

    def __init__(self, keys: Sequence[str]):
        if not keys:
            raise ValueError("Keys must be provided.")
        self.keys = list(keys)

    @staticmethod
    def _sign(data: str, key: str) -> str:
        digest = hmac.new(key.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    def sign(self, data: str) -> str:
        return self._sign(data, self.keys[0])

    def index(self, data: str, digest: str) -> int:
        for i, key in enumerate(self.keys):
            if hmac.compare_digest(self._sign(data, key), digest):
                return i
        return -1

    def verify(self, data: str, digest: str) -> bool:
        return self.index(data, digest) > -1


class Cookie:
    def __init__(self, name: str, value: Optional[str] = "", **options):
        if not _NAME_RE.match(name) or "=" in name or ";" in name:
            raise TypeError(f"argument name is invalid: {name}")
        if value and (";" in value or not _NAME_RE.match(value)):
            raise TypeError(f"argument value is invalid: {value}")

        self.name = name
        self.value = value or ""
        self.path: Optional[str] = options.get("path", "/")
        self.domain: Optional[str] = options.get("domain")
        self.max_age: Optional[int] = options.get("max_age")
        self.expires: Optional[datetime] = options.get("expires")
        self.secure: bool = options.get("secure", False)
        self.httponly: bool = options.get("httponly", True)
        self.samesite: Union[str, bool, None] = options.get("samesite")
        self.overwrite: bool = options.get("overwrite", False)

        if not value:
            self.expires = _EPOCH
            self.max_age = None

    def to_header(self) -> str:
        parts = [f"{self.name}={self.value}"]
        if self.max_age is not None:
            parts.append(f"max-age={int(self.max_age)}")
        if self.path:
            parts.append(f"path={self.path}")
        if self.expires is not None:
            parts.append(f"expires={format_datetime(self.expires.astimezone(timezone.utc), usegmt=True)}")
        if self.domain:
            parts.append(f"domain={self.domain}")
        if self.samesite:
            samesite = "strict" if self.samesite is True else str(self.samesite).lower()
            parts.append(f"samesite={samesite}")
        if self.secure:
            parts.append("secure")
        if self.httponly:
            parts.append("httponly")
        return "; ".join(parts)


class Cookies:
    """
    Cookie jar for one request/response pair.

    Signed cookies carry a companion "<name>.sig" cookie with the digest
    of "<name>=<value>" made with the first key.
    """

    def __init__(
        self,
        request: RawRequest,
        response: RawResponse,
        keys: Optional[Sequence[str]] = None,
        secure: Optional[bool] = None,
    ):
        self.request = request
        self.response = response
        self.keys = Keygrip(keys) if keys else None
        self.secure = secure

    def _parse(self) -> SimpleCookie:
        jar = SimpleCookie()
        header = self.request.headers.get("cookie")
        if header:
            jar.load(header)
        return jar

    def get(self, name: str, signed: Optional[bool] = None) -> Optional[str]:
        signed = bool(self.keys) if signed is None else signed
        jar = self._parse()
        if name not in jar:
            return None
        value = jar[name].value
        if not signed:
            return value

        if self.keys is None:
            raise ValueError(".keys required for signed cookies")
        sig_name = f"{name}.sig"
        if sig_name not in jar:
            return None
        remote = jar[sig_name].value
        data = f"{name}={value}"
        index = self.keys.index(data, remote)

        if index < 0:
            self.set(sig_name, None, path="/", signed=False)
            return None
        if index:
            self.set(sig_name, self.keys.sign(data), signed=False)
        return value

    def set(self, name: str, value: Optional[str] = None, **options) -> "Cookies":
        signed = options.pop("signed", None)
        signed = bool(self.keys) if signed is None else signed
        secure = self.secure if self.secure is not None else self.request.encrypted

        if "secure" not in options:
            options["secure"] = secure
        elif options["secure"] and not secure:
            raise ValueError("Cannot send secure cookie over unencrypted connection")

        cookie = Cookie(name, value, **options)
        headers: List[str] = self.response.headers.getlist("set-cookie")
        headers = _push_cookie(headers, cookie)

        if signed:
            if self.keys is None:
                raise ValueError(".keys required for signed cookies")
            sig = Cookie(
                f"{name}.sig",
                self.keys.sign(f"{cookie.name}={cookie.value}"),
                **options,
            )
            if not value:
                sig.expires, sig.max_age = _EPOCH, None
            headers = _push_cookie(headers, sig)

        if self.response.headers_sent:
            return self
        del self.response.headers["set-cookie"]
        for header in headers:
            self.response.headers.append("set-cookie", header)
        return self


def _push_cookie(headers: List[str], cookie: Cookie) -> List[str]:
    if cookie.overwrite:
        prefix = f"{cookie.name}="
        headers = [h for h in headers if not h.startswith(prefix)]
    headers.append(cookie.to_header())
    return headers
