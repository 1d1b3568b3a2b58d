import pytest

from onion import HttpError, InvalidStatusCodeError, MiddlewareError, create_error


@pytest.mark.parametrize(
    "status, expected_status, expose",
    [(400, 400, True), (418, 418, True), (503, 503, False), (200, 500, False), ("404", 500, False)],
)
def test_create_error_status_and_expose(status, expected_status, expose):
    err = create_error(status)

    assert err.status == expected_status
    assert err.expose is expose


def test_properties_and_headers():
    err = create_error(401, "login", headers={"WWW-Authenticate": "Basic"}, realm="admin")

    assert str(err) == "login"
    assert err.headers == {"WWW-Authenticate": "Basic"}
    assert err.realm == "admin"
    assert err.properties == {"realm": "admin"}
    assert repr(err) == "HttpError(status=401, message='login')"


def test_expose_override():
    assert HttpError(500, expose=True).expose is True
    assert HttpError(400, expose=False).expose is False


def test_hierarchy():
    assert issubclass(InvalidStatusCodeError, ValueError)
    assert issubclass(MiddlewareError, RuntimeError)
