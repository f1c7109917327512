import aiohttp
from mautrix.errors import MatrixError, MatrixStandardRequestError, MForbidden, MUnknownToken

from matrix_notify.core.errors import (
    InvalidUserIdError,
    MatrixRequestError,
    NotifyError,
    is_transient,
    wrap_matrix_error,
)


def test_wrap_keeps_errcode_and_status() -> None:
    err = wrap_matrix_error(MUnknownToken(401, "Invalid access token"), "send message")
    assert isinstance(err, MatrixRequestError)
    assert isinstance(err, NotifyError)
    assert err.errcode == "M_UNKNOWN_TOKEN"
    assert err.http_status == 401
    assert str(err).startswith("Failed to send message: M_UNKNOWN_TOKEN")
    assert "Invalid access token" in str(err)
    assert "(status: 401)" in str(err)


def test_wrap_connection_error() -> None:
    err = wrap_matrix_error(aiohttp.ClientConnectionError("refused"), "create room")
    assert str(err).startswith("Failed to create room: connection error:")
    assert err.errcode == ""
    assert err.http_status is None


def test_invalid_user_id_message() -> None:
    err = InvalidUserIdError("alice")
    assert "`alice`" in str(err)
    assert "@username:matrix.org" in str(err)


def test_is_transient() -> None:
    assert is_transient(aiohttp.ClientConnectionError("reset"))
    assert is_transient(MatrixError("connection dropped"))
    assert is_transient(MatrixStandardRequestError(502, "Bad gateway"))
    assert is_transient(MatrixStandardRequestError(429, "Too many requests"))
    assert not is_transient(MForbidden(403, "Forbidden"))
    assert not is_transient(MUnknownToken(401, "Invalid access token"))
    assert not is_transient(ValueError("nope"))
