"""
Middleware composition.

Turns an ordered list of `handler(ctx, next)` callables into one
`composed(ctx)` coroutine function with onion-style control flow: code
before `await next()` runs in registration order, code after it runs in
reverse order.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from .exceptions import MiddlewareError

logger = logging.getLogger("onion.compose")

Next = Callable[[], Awaitable[None]]
Middleware = Callable[[Any, Next], Any]


async def _done() -> None:
    return None


def compose(middleware: Iterable[Middleware]) -> Callable[..., Awaitable[None]]:
    """
    Compose middleware into a single handler.

    The list is copied, so later registrations do not affect an already
    composed handler. Each call gets its own cursor; calling `next()` twice
    from one handler raises MiddlewareError at the second call.
    """
    handlers = list(middleware)
    for handler in handlers:
        if not callable(handler):
            raise TypeError("middleware must be a callable")
    logger.debug("compose %d middleware", len(handlers))

    async def composed(ctx: Any, next: Optional[Middleware] = None) -> None:
        index = -1

        def dispatch(i: int) -> Awaitable[None]:
            nonlocal index
            if i <= index:
                raise MiddlewareError("next() called multiple times")
            index = i

            if i < len(handlers):
                fn = handlers[i]
            elif i == len(handlers):
                fn = next
            else:
                fn = None
            if fn is None:
                return _done()

            result = fn(ctx, lambda: dispatch(i + 1))
            if inspect.isawaitable(result):
                return result
            return _done()

        await dispatch(0)

    return composed
