"""
Error types for matrix-notify.

Every failure the command line can report is a ``NotifyError``; ``main``
prints the message and exits non-zero.  SDK and transport exceptions are
normalised through :func:`wrap_matrix_error` so callers only have to catch
one hierarchy.
"""

from typing import Optional

import aiohttp
from mautrix.errors import MatrixError


class NotifyError(Exception):
    """Base class for errors reported to the user."""


class ConfigError(NotifyError):
    """The config file is missing, unreadable or incomplete."""


class InvalidUserIdError(NotifyError):
    """A string could not be parsed as a Matrix user ID."""

    def __init__(self, raw: str) -> None:
        super().__init__(
            f"Failed to parse a matrix user id from `{raw}`. "
            "Example user id: @username:matrix.org"
        )
        self.raw = raw


class AttachmentError(NotifyError):
    """The attachment path cannot be sent."""


class LoginError(NotifyError):
    """The homeserver refused our credentials."""

    def __init__(self, message: str, errcode: str = "") -> None:
        super().__init__(message)
        self.errcode = errcode


class MatrixRequestError(NotifyError):
    """A homeserver request failed (HTTP error or transport failure)."""

    def __init__(self, message: str, errcode: str = "",
                 http_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.errcode = errcode
        self.http_status = http_status


def wrap_matrix_error(exc: Exception, action: str) -> MatrixRequestError:
    """Map an SDK or aiohttp exception to :class:`MatrixRequestError`.

    *action* describes what was being attempted ("create room", ...) and
    becomes the prefix of the message.  The homeserver's ``errcode`` and
    HTTP status are kept when the SDK exposes them.
    """
    if isinstance(exc, MatrixError):
        errcode = getattr(exc, "errcode", None) or ""
        status = getattr(exc, "http_status", None)
        detail = getattr(exc, "message", None) or str(exc)
        if errcode:
            detail = f"{errcode}: {detail}"
        if status:
            detail = f"{detail} (status: {status})"
        return MatrixRequestError(f"Failed to {action}: {detail}",
                                  errcode=errcode, http_status=status)
    if isinstance(exc, aiohttp.ClientError):
        return MatrixRequestError(f"Failed to {action}: connection error: {exc}")
    return MatrixRequestError(f"Failed to {action}: {exc}")


def is_transient(exc: Exception) -> bool:
    """Return ``True`` if retrying the request that raised *exc* may succeed.

    Connection failures, rate limiting (HTTP 429) and server errors (HTTP
    5xx) are transient.  Anything the homeserver rejected on its merits
    (bad token, forbidden, not found, ...) is not.
    """
    if isinstance(exc, aiohttp.ClientError):
        return True
    if isinstance(exc, MatrixError):
        status = getattr(exc, "http_status", None)
        if status is None:
            # MatrixConnectionError and friends carry no status.
            return True
        return status == 429 or status >= 500
    return False
