import os

import pytest

# Keep the developer's environment from leaking into AppConfig defaults.
for _name in list(os.environ):
    if _name.startswith("ONION_"):
        del os.environ[_name]

from onion import Application
from onion.core.transport import RawRequest, RawResponse


def build_scope(
    method="GET",
    url="/",
    headers=None,
    http_version="1.1",
    scheme="http",
    client=("127.0.0.1", 50000),
):
    path, _, query = url.partition("?")
    raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in (headers or {}).items()
    ]
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": http_version,
        "method": method,
        "scheme": scheme,
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": query.encode("latin-1"),
        "headers": raw_headers,
        "client": client,
        "server": ("testserver", 80),
    }


@pytest.fixture
def make_context():
    """
    Factory for contexts wired to an in-memory ASGI connection.

    Messages the response sends are collected on `ctx.sent`.
    """

    def factory(method="GET", url="/", headers=None, app=None, body=b"", **scope_options):
        app = app or Application()
        sent = []

        async def receive():
            return {"type": "http.request", "body": body, "more_body": False}

        async def send(message):
            sent.append(message)

        res = RawResponse(send)
        req = RawRequest(
            build_scope(method, url, headers, **scope_options), receive, on_disconnect=res.abort
        )
        ctx = app.create_context(req, res)
        ctx.sent = sent
        return ctx

    return factory


@pytest.fixture
def asgi_scope():
    """Builder for raw ASGI http scopes, for driving app.callback() by hand."""
    return build_scope
