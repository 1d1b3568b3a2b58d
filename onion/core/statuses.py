"""
HTTP status classes and phrases.
"""

from http import HTTPStatus

# Statuses that must not carry a body.
EMPTY = frozenset({204, 205, 304})

REDIRECT = frozenset({300, 301, 302, 303, 305, 307, 308})


def is_empty(code: int) -> bool:
    return code in EMPTY


def is_redirect(code: int) -> bool:
    return code in REDIRECT


def message(code: int) -> str:
    """Return the reason phrase for a status code, or "" when unknown."""
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""
