"""
Where: onion/middleware.py
What: Request id propagation and access logging middleware.
Why: Keep cross-cutting request concerns out of application handlers.
"""

import logging
import time

from .core.request_context import clear_request_id, generate_request_id, set_request_id

logger = logging.getLogger("onion.access")

REQUEST_ID_HEADER = "X-Request-Id"


async def access_log_middleware(ctx, next):
    """Middleware for request id propagation and structured access logging."""
    start_time = time.perf_counter()

    incoming = ctx.get(REQUEST_ID_HEADER)
    req_id = set_request_id(incoming) if incoming else generate_request_id()
    ctx.state["request_id"] = req_id
    ctx.set(REQUEST_ID_HEADER, req_id)

    try:
        await next()
    finally:
        process_time_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.info(
            "%s %s %s",
            ctx.method,
            ctx.path,
            ctx.status,
            extra={
                "request_id": req_id,
                "method": ctx.method,
                "path": ctx.path,
                "query_string": ctx.querystring,
                "status": ctx.status,
                "latency_ms": process_time_ms,
                "user_agent": ctx.get("User-Agent") or None,
                "client_ip": ctx.ip or None,
            },
        )
        clear_request_id()
