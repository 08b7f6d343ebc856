from __future__ import annotations

"""twapi_kit: **shared exception hierarchy** & last-error helper.

The query pipeline never raises for ordinary API or authentication
failures: it returns ``None`` and records a :class:`LastError`.  Callers
that prefer exceptions can turn that record into one:

```python
users = helix.query("GET", "/users", {"login": ["alice"]})
if users is None:
    raise_for_error(helix.get_last_error())
```

Argument-validation problems are different: they raise
:class:`InvalidArgument` straight away, before anything is sent."""

import enum
from dataclasses import dataclass
from typing import Final

__all__ = [
    "TwapiError",
    "InvalidArgument",
    "TransportError",
    "NotAuthorized",
    "RefreshFailed",
    "RateLimited",
    "NotFound",
    "ApiError",
    "ErrorKind",
    "LastError",
    "raise_for_error",
]

# ---------------------------------------------------------------------------
# Base & specialised exceptions
# ---------------------------------------------------------------------------


class TwapiError(Exception):
    """Base for *all* twapi_kit exceptions."""


# ── Client mistakes ---------------------------------------------------------
class InvalidArgument(TwapiError, ValueError):
    """Bad argument given to a service method; raised before any request."""


# ── Transport ---------------------------------------------------------------
class TransportError(TwapiError):
    """No HTTP status was obtained (DNS, connect, timeout)."""


# ── Auth --------------------------------------------------------------------
class NotAuthorized(TwapiError):
    """Token rejected by the API and no refresh was attempted."""


class RefreshFailed(NotAuthorized):
    """Token rejected and the refresh exchange did not yield a new token."""


# ── API replies -------------------------------------------------------------
class ApiError(TwapiError):
    """Any other non-success reply. ``code`` holds the HTTP status."""

    def __init__(self, message: str, code: int = 0):
        super().__init__(message)
        self.code = code


class RateLimited(ApiError):
    """429 – too many requests."""


class NotFound(ApiError):
    """404 – unknown resource."""


# ---------------------------------------------------------------------------
# Last-error record
# ---------------------------------------------------------------------------


class ErrorKind(enum.Enum):
    TRANSPORT = "transport"
    AUTHENTICATION = "authentication"
    REFRESH = "refresh"
    API = "api"


@dataclass(frozen=True)
class LastError:
    """What went wrong on the most recent failed call."""

    code: int
    message: str
    kind: ErrorKind = ErrorKind.API

    def __str__(self) -> str:
        return f"[{self.kind.value} {self.code}] {self.message}"


TRANSPORT_ERROR_CODE: Final[int] = 0

_API_ERRORS: Final[dict[int, type[ApiError]]] = {
    404: NotFound,
    429: RateLimited,
}


def raise_for_error(error: LastError | None) -> None:
    """Raise the appropriate *twapi_kit* exception for *error*.

    Does **nothing** when *error* is ``None``.
    """
    if error is None:
        return

    message = str(error)

    if error.kind is ErrorKind.TRANSPORT:
        raise TransportError(message)
    if error.kind is ErrorKind.REFRESH:
        raise RefreshFailed(message)
    if error.kind is ErrorKind.AUTHENTICATION:
        raise NotAuthorized(message)

    raise _API_ERRORS.get(error.code, ApiError)(message, error.code)
