"""
Where: onion/tests/test_application.py
What: End-to-end dispatch tests over the ASGI callable.
Why: Cover finalization, error reporting and transport edge cases together.
"""

import asyncio
import logging
from unittest.mock import MagicMock

import httpx
import pytest
from pydantic import BaseModel

from onion import Application, ClientDisconnect, Context, create_error


def client_for(app: Application) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app.callback()), base_url="http://testserver"
    )


def test_use_rejects_non_callables():
    with pytest.raises(TypeError, match="middleware must be a callable"):
        Application().use("nope")


def test_use_is_chainable():
    async def a(ctx, next):
        pass

    async def b(ctx, next):
        pass

    app = Application()
    assert app.use(a).use(b) is app
    assert app.middleware == [a, b]


def test_unknown_option_is_rejected():
    with pytest.raises(TypeError, match="unknown application option"):
        Application(proxxy=True)


@pytest.mark.asyncio
async def test_default_status_is_404():
    async with client_for(Application()) as client:
        response = await client.get("/")

    assert response.status_code == 404
    assert response.text == "Not Found"
    assert response.headers["content-type"] == "text/plain; charset=utf-8"
    assert response.headers["content-length"] == "9"


@pytest.mark.asyncio
async def test_status_without_body_sends_message():
    app = Application()

    async def teapot(ctx, next):
        ctx.status = 418

    app.use(teapot)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 418
    assert response.text == "I'm a Teapot"


@pytest.mark.asyncio
async def test_text_body():
    app = Application()

    async def hello(ctx, next):
        ctx.body = "Hello"

    app.use(hello)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 200
    assert response.text == "Hello"
    assert response.headers["content-length"] == "5"


@pytest.mark.asyncio
async def test_json_body():
    app = Application()

    async def payload(ctx, next):
        ctx.body = {"name": "tobi", "tags": ["a", "b"]}

    app.use(payload)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.json() == {"name": "tobi", "tags": ["a", "b"]}
    assert response.headers["content-type"] == "application/json; charset=utf-8"
    assert response.headers["content-length"] == str(len(response.content))


@pytest.mark.asyncio
async def test_pydantic_model_body():
    class User(BaseModel):
        name: str
        age: int

    app = Application()

    async def payload(ctx, next):
        ctx.body = User(name="tobi", age=3)

    app.use(payload)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.json() == {"name": "tobi", "age": 3}


@pytest.mark.asyncio
async def test_stream_body():
    app = Application()

    async def chunks():
        yield b"hello "
        yield "world"

    async def stream(ctx, next):
        ctx.body = chunks()

    app.use(stream)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.text == "hello world"
    assert response.headers["content-type"] == "application/octet-stream"
    assert "content-length" not in response.headers


@pytest.mark.asyncio
async def test_head_keeps_length_and_drops_body():
    app = Application()

    async def payload(ctx, next):
        ctx.body = {"a": 1}

    app.use(payload)
    async with client_for(app) as client:
        response = await client.head("/")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["content-length"] == str(len('{"a":1}'))


@pytest.mark.asyncio
async def test_null_body_becomes_204():
    app = Application()

    async def empty(ctx, next):
        ctx.body = "ignored"
        ctx.body = None

    app.use(empty)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 204
    assert response.content == b""
    assert "content-type" not in response.headers


@pytest.mark.asyncio
async def test_explicit_null_with_status_sends_empty_body():
    app = Application()

    async def empty(ctx, next):
        ctx.body = None
        ctx.status = 200

    app.use(empty)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["content-length"] == "0"


@pytest.mark.asyncio
async def test_empty_status_drops_body():
    app = Application()

    async def not_modified(ctx, next):
        ctx.body = "stale"
        ctx.status = 304

    app.use(not_modified)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 304
    assert response.content == b""


@pytest.mark.asyncio
async def test_respond_false_leaves_response_to_handler():
    app = Application()

    async def raw(ctx, next):
        ctx.respond = False
        ctx.res.status_code = 202
        await ctx.res.end(b"raw")

    app.use(raw)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 202
    assert response.text == "raw"


@pytest.mark.asyncio
async def test_downstream_values_seen_upstream():
    app = Application()

    async def timer(ctx, next):
        await next()
        ctx.set("X-Seen", ctx.body)

    async def handler(ctx, next):
        ctx.body = "inner"

    app.use(timer).use(handler)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.headers["x-seen"] == "inner"


@pytest.mark.asyncio
async def test_error_skips_finalizer_and_closes_with_500(caplog):
    app = Application()

    async def broken(ctx, next):
        ctx.body = "partial"
        raise ValueError("kaboom")

    app.use(broken)
    with caplog.at_level(logging.ERROR, logger="onion.application"):
        async with client_for(app) as client:
            response = await client.get("/")

    assert response.status_code == 500
    assert response.content == b""
    assert response.headers["content-length"] == "0"

    records = [r for r in caplog.records if r.name == "onion.application"]
    assert len(records) == 1
    lines = [line for line in records[0].getMessage().splitlines() if line]
    assert all(line.startswith("  ") for line in lines)
    assert "ValueError: kaboom" in lines[-1]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "err",
    [create_error(404), create_error(400, "bad input"), create_error(500, expose=True)],
)
async def test_quiet_errors_are_not_logged(caplog, err):
    app = Application()

    async def fail(ctx, next):
        raise err

    app.use(fail)
    with caplog.at_level(logging.ERROR, logger="onion.application"):
        async with client_for(app) as client:
            await client.get("/")

    assert not [r for r in caplog.records if r.name == "onion.application"]


@pytest.mark.asyncio
async def test_silent_suppresses_logging(caplog):
    app = Application(silent=True)

    async def fail(ctx, next):
        raise RuntimeError("hidden")

    app.use(fail)
    with caplog.at_level(logging.ERROR, logger="onion.application"):
        async with client_for(app) as client:
            await client.get("/")

    assert not [r for r in caplog.records if r.name == "onion.application"]


def test_non_error_is_rejected():
    with pytest.raises(TypeError, match="non-error thrown"):
        Application().onerror("just a string")


@pytest.mark.asyncio
async def test_context_hook_runs_before_error_hook():
    calls = []

    class TrackingContext(Context):
        def onerror(self, err):
            calls.append(("ctx", err))

    hook = MagicMock(side_effect=lambda err: calls.append(("app", err)))
    app = Application(on_error=hook)
    app.context_class = TrackingContext

    async def fail(ctx, next):
        raise RuntimeError("once")

    app.use(fail)
    async with client_for(app) as client:
        await client.get("/")

    hook.assert_called_once()
    assert [who for who, _ in calls] == ["ctx", "app"]
    assert str(calls[0][1]) == "once"


@pytest.mark.asyncio
async def test_stream_error_is_reported_once(caplog):
    hook = MagicMock()
    app = Application(on_error=hook)

    async def flaky():
        yield b"a"
        raise RuntimeError("stream broke")

    async def stream(ctx, next):
        ctx.body = flaky()

    app.use(stream)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 200
    assert response.content == b"a"
    hook.assert_called_once()
    assert str(hook.call_args.args[0]) == "stream broke"


@pytest.mark.asyncio
async def test_client_disconnect_reports_once(asgi_scope):
    hook = MagicMock()
    app = Application(on_error=hook)
    sent = []

    async def reader(ctx, next):
        await ctx.req.body()
        ctx.body = "never sent"

    async def receive():
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    app.use(reader)
    await app.callback()(asgi_scope(method="POST"), receive, send)

    hook.assert_called_once()
    assert isinstance(hook.call_args.args[0], ClientDisconnect)
    assert sent == []


def _request_then_disconnect(body=b""):
    messages = iter([{"type": "http.request", "body": body, "more_body": False}])

    async def receive():
        return next(messages, {"type": "http.disconnect"})

    return receive


@pytest.mark.asyncio
async def test_disconnect_while_handler_stalls(asgi_scope):
    gone = asyncio.Event()
    hook = MagicMock(side_effect=lambda err: gone.set())
    app = Application(on_error=hook)
    sent = []

    async def slow(ctx, next):
        await asyncio.wait_for(gone.wait(), 1)
        ctx.body = "late"

    async def send(message):
        sent.append(message)

    app.use(slow)
    await app.callback()(asgi_scope(), _request_then_disconnect(), send)

    hook.assert_called_once()
    assert isinstance(hook.call_args.args[0], ClientDisconnect)
    assert sent == []


@pytest.mark.asyncio
async def test_disconnect_after_body_was_read(asgi_scope):
    gone = asyncio.Event()
    hook = MagicMock(side_effect=lambda err: gone.set())
    app = Application(on_error=hook)
    seen = []
    sent = []

    async def reader(ctx, next):
        seen.append(await ctx.req.body())
        await asyncio.wait_for(gone.wait(), 1)
        ctx.body = "late"

    async def send(message):
        sent.append(message)

    app.use(reader)
    scope = asgi_scope(method="POST", headers={"Content-Length": "5"})
    await app.callback()(scope, _request_then_disconnect(b"hello"), send)

    assert seen == [b"hello"]
    hook.assert_called_once()
    assert isinstance(hook.call_args.args[0], ClientDisconnect)
    assert sent == []


@pytest.mark.asyncio
async def test_http_error_closes_with_its_status():
    app = Application()

    async def guard(ctx, next):
        ctx.throw(401, headers={"WWW-Authenticate": 'Basic realm="onion"'})

    app.use(guard)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 401
    assert response.content == b""
    assert response.headers["content-length"] == "0"
    assert response.headers["www-authenticate"] == 'Basic realm="onion"'


@pytest.mark.asyncio
async def test_http_error_drops_headers_set_before_it():
    app = Application()

    async def deny(ctx, next):
        ctx.set("X-Partial", "yes")
        ctx.throw(403)

    app.use(deny)
    async with client_for(app) as client:
        response = await client.get("/")

    assert response.status_code == 403
    assert "x-partial" not in response.headers


def test_error_hook_installed_once():
    app = Application()
    app.callback()
    first = app.error_hook
    app.callback()

    assert app.error_hook is first


@pytest.mark.asyncio
async def test_lifespan_is_acknowledged():
    messages = iter([{"type": "lifespan.startup"}, {"type": "lifespan.shutdown"}])
    sent = []

    async def receive():
        return next(messages)

    async def send(message):
        sent.append(message)

    await Application().callback()({"type": "lifespan"}, receive, send)

    assert [m["type"] for m in sent] == [
        "lifespan.startup.complete",
        "lifespan.shutdown.complete",
    ]


@pytest.mark.asyncio
async def test_unsupported_scope_type():
    async def receive():
        return {}

    async def send(message):
        pass

    with pytest.raises(RuntimeError, match="unsupported ASGI scope type"):
        await Application().callback()({"type": "websocket"}, receive, send)


def test_listen_runs_uvicorn(monkeypatch):
    captured = {}

    def fake_run(app, **kwargs):
        captured["app"] = app
        captured["kwargs"] = kwargs

    setup = MagicMock()
    monkeypatch.setattr("onion.application.uvicorn.run", fake_run)
    monkeypatch.setattr("onion.application.setup_logging", setup)
    Application(log_config_path="conf/logging.yml").listen(host="127.0.0.1", port=3000)

    setup.assert_called_once_with("conf/logging.yml", "INFO")
    assert callable(captured["app"])
    assert captured["kwargs"] == {"host": "127.0.0.1", "port": 3000, "log_level": "info"}


def test_inspect():
    app = Application(env="production", proxy=True)

    assert app.to_json() == {"subdomain_offset": 2, "proxy": True, "env": "production"}
    assert "production" in repr(app)
