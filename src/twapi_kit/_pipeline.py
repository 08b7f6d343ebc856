from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Mapping

import requests

from ._credentials import CredentialStore
from ._errors import TRANSPORT_ERROR_CODE, ErrorKind, LastError
from ._formatting import Formatter, join_formatter, repeat_formatter

if TYPE_CHECKING:
    from ._auth import Authenticator

__all__ = [
    "FamilyConfig",
    "RequestDescriptor",
    "QueryPipeline",
    "HELIX",
    "KRAKEN",
    "AUTH",
    "METHODS",
    "BODY_METHODS",
]

_LOGGER = logging.getLogger(__name__)

# ----------------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------------
HELIX_BASE_URL: Final[str] = "https://api.twitch.tv/helix"
KRAKEN_BASE_URL: Final[str] = "https://api.twitch.tv/kraken"
AUTH_BASE_URL: Final[str] = "https://id.twitch.tv/oauth2"
KRAKEN_MIMETYPE: Final[str] = "application/vnd.twitchtv.v5+json"

METHODS: Final[frozenset[str]] = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})
BODY_METHODS: Final[frozenset[str]] = frozenset({"POST", "PUT", "PATCH"})

DEFAULT_TIMEOUT: Final[float] = 30.0

# never written to the debug trace
SECRET_KEYS: Final[frozenset[str]] = frozenset({"client_secret", "refresh_token", "access_token", "code"})


# ----------------------------------------------------------------------------
# Family configuration
# ----------------------------------------------------------------------------
@dataclass(frozen=True)
class FamilyConfig:
    """Everything that differs between API generations.

    Attributes:
        name (str): Short label used in log lines.
        base_url (str): Root prefix for every endpoint path.
        auth_header_style (str | None): ``"Bearer"``, ``"OAuth"`` or ``None``
            for APIs that never take an Authorization header.
        auth_error_codes (frozenset[int]): Statuses meaning "token expired".
        formatter (Formatter): Query-string encoder for GET/DELETE.
        extra_headers (Mapping[str, str]): Sent on every call, on top of
            ``Client-ID``.
        send_client_id (bool): Whether ``Client-ID`` is a base header.
    """

    name: str
    base_url: str
    auth_header_style: str | None
    auth_error_codes: frozenset[int]
    formatter: Formatter = repeat_formatter
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    send_client_id: bool = True

    def token_header(self, token: str) -> str | None:
        if not self.auth_header_style:
            return None
        return f"{self.auth_header_style} {token}"


HELIX: Final[FamilyConfig] = FamilyConfig(
    name="helix",
    base_url=HELIX_BASE_URL,
    auth_header_style="Bearer",
    auth_error_codes=frozenset({400, 401}),
    formatter=repeat_formatter,
)

KRAKEN: Final[FamilyConfig] = FamilyConfig(
    name="kraken",
    base_url=KRAKEN_BASE_URL,
    auth_header_style="OAuth",
    auth_error_codes=frozenset({401}),
    formatter=join_formatter,
    extra_headers={"Accept": KRAKEN_MIMETYPE},
)

AUTH: Final[FamilyConfig] = FamilyConfig(
    name="auth",
    base_url=AUTH_BASE_URL,
    auth_header_style=None,
    auth_error_codes=frozenset(),
    formatter=repeat_formatter,
    send_client_id=False,
)


# ----------------------------------------------------------------------------
# Request descriptor
# ----------------------------------------------------------------------------
@dataclass(frozen=True)
class RequestDescriptor:
    method: str
    url: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    target: str | None = None
    skip_auth_refresh: bool = False

    def __post_init__(self):
        method = self.method.upper()
        if method not in METHODS:
            raise ValueError(f"method={self.method!r} is invalid. Allowed: {sorted(METHODS)}")
        object.__setattr__(self, "method", method)

    def retry(self, target: str | None) -> "RequestDescriptor":
        """Same call, pinned to *target*, with refresh disabled."""
        return RequestDescriptor(self.method, self.url, self.parameters, target, True)


# ----------------------------------------------------------------------------
# Pipeline
# ----------------------------------------------------------------------------
class QueryPipeline:
    """Single chokepoint every API call goes through.

    ``execute`` composes headers, sends the request, classifies the
    reply and, on an authentication-class status, refreshes the token
    and retries **once**.  It never raises for API or auth failures:
    it returns ``None`` and records a :class:`~twapi_kit.LastError`
    readable through :py:meth:`get_last_error`.

    Args:
        store (CredentialStore): Where tokens are read from.
        family (FamilyConfig): API generation parameters.
        session (requests.Session, optional): HTTP session; one with the
            default retry policy is built when omitted.
        authenticator (Authenticator, optional): Used to refresh tokens.
            Built lazily on first refresh when omitted.
        logger (logging.Logger, optional): Debug trace sink.
        timeout (float): Per-request timeout in seconds.
        app_scopes (Sequence[str]): Scopes requested when an app token has
            to be re-issued for a call without target.
    """

    def __init__(
            self,
            store: CredentialStore,
            family: FamilyConfig,
            *,
            session: requests.Session | None = None,
            authenticator: "Authenticator | None" = None,
            logger: logging.Logger | None = None,
            timeout: float = DEFAULT_TIMEOUT,
            app_scopes=(),
    ):
        if session is None:
            from ._auth import build_session
            session = build_session()

        self.store = store
        self.family = family
        self.session = session
        self.timeout = timeout
        self.app_scopes = tuple(app_scopes)
        self.logger = logger or _LOGGER
        self._authenticator = authenticator
        self._default_target: str | None = None
        self._last_error: LastError | None = None

        headers = {"Client-ID": store.get_client_id()} if family.send_client_id else {}
        headers.update(family.extra_headers)
        self.base_headers: dict[str, str] = headers

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------
    @property
    def authenticator(self) -> "Authenticator":
        if self._authenticator is None:
            from ._auth import Authenticator
            self._authenticator = Authenticator(
                self.store, session=self.session, logger=self.logger, timeout=self.timeout
            )
        return self._authenticator

    def get_last_error(self) -> LastError | None:
        return self._last_error

    def clear_last_error(self) -> None:
        self._last_error = None

    def get_default_target(self) -> str | None:
        return self._default_target

    def set_default_target(self, target: str | None = None) -> bool:
        """Send *target*'s token on calls that name no target.

        Returns ``False`` (and changes nothing) when the store has no
        access token for *target*.
        """
        if target is not None and not self.store.get_access_token(target):
            return False
        self._default_target = target
        return True

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------
    def _fail(self, code: int, message: str, kind: ErrorKind) -> None:
        self._last_error = LastError(code, message, kind)
        self.logger.debug("Query failed: %s", self._last_error)
        return None

    def _build_url(self, descriptor: RequestDescriptor) -> str:
        url = descriptor.url
        if not url.startswith(("http://", "https://")):
            url = self.family.base_url + url
        url = url.rstrip("/")

        if descriptor.method not in BODY_METHODS and descriptor.parameters:
            url += ("&" if "?" in url else "?") + self.family.formatter(descriptor.parameters)
        return url

    def _resolve(self, target: str | None) -> tuple[str | None, str | None]:
        """Return ``(target, token)``; the token is read fresh every call."""
        target = target or self._default_target
        if target:
            return target, self.store.get_access_token(target)
        return None, self.store.get_default_access_token()

    def _headers(self, token: str | None, has_body: bool) -> dict[str, str]:
        headers = dict(self.base_headers)
        if token:
            value = self.family.token_header(token)
            if value:
                headers["Authorization"] = value
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def _masked(headers: Mapping[str, str]) -> dict[str, str]:
        shown = dict(headers)
        if "Authorization" in shown:
            style, _, token = shown["Authorization"].partition(" ")
            shown["Authorization"] = f"{style} ****{token[-4:]}"
        return shown

    @staticmethod
    def _masked_params(parameters: Any) -> Any:
        if not isinstance(parameters, Mapping):
            return parameters
        return {k: ("****" if k in SECRET_KEYS and v else v) for k, v in parameters.items()}

    def _masked_body(self, text: str) -> str:
        try:
            payload = json.loads(text)
        except ValueError:
            return text
        if not isinstance(payload, Mapping):
            return text
        return json.dumps(self._masked_params(payload))

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            payload = resp.json()
        except ValueError:
            return resp.text or resp.reason or "unknown error"
        if isinstance(payload, Mapping):
            return str(payload.get("message") or payload.get("error") or resp.text)
        return resp.text

    def _refresh(self, target: str | None) -> bool:
        if target:
            return self.authenticator.refresh(target) is not None
        return self.authenticator.refresh_app_token(self.app_scopes) is not None

    # -------------------------------------------------------------------------
    # Core
    # -------------------------------------------------------------------------
    def execute(self, descriptor: RequestDescriptor) -> Any:
        """Run *descriptor* and return the decoded JSON reply.

        Returns:
            The decoded JSON body, ``True`` for an empty successful body,
            or ``None`` on failure (see :py:meth:`get_last_error`).
        """
        url = self._build_url(descriptor)
        has_body = descriptor.method in BODY_METHODS
        target, token = self._resolve(descriptor.target)
        headers = self._headers(token, has_body)

        log = self.logger
        log.debug(">>> HTTP Query (%s):", self.family.name)
        log.debug("Type: %s", descriptor.method)
        log.debug("URL: %s", url)
        log.debug("Parameters: %s", json.dumps(self._masked_params(descriptor.parameters), default=str))
        log.debug("Target: %s", target or "None")
        log.debug("Skip token refresh: %s", "Yes" if descriptor.skip_auth_refresh else "No")
        log.debug("Generated headers: %s", self._masked(headers))

        try:
            resp = self.session.request(
                descriptor.method,
                url,
                headers=headers,
                json=dict(descriptor.parameters) if has_body else None,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            return self._fail(TRANSPORT_ERROR_CODE, f"{type(exc).__name__}: {exc}", ErrorKind.TRANSPORT)

        log.debug("<<< HTTP Response:")
        log.debug("HTTP Code: %s", resp.status_code)
        log.debug("Content: %s", self._masked_body(resp.text))

        status = resp.status_code
        if status in self.family.auth_error_codes and not descriptor.skip_auth_refresh:
            if not self._refresh(target):
                reason = self.authenticator.get_last_error()
                detail = f": {reason.message}" if reason else ""
                return self._fail(status, f"Token refresh failed for {target or 'app token'}{detail}",
                                  ErrorKind.REFRESH)
            return self.execute(descriptor.retry(target))

        if status >= 300:
            kind = ErrorKind.AUTHENTICATION if status in self.family.auth_error_codes else ErrorKind.API
            return self._fail(status, self._error_message(resp), kind)

        if not resp.content:
            return True

        try:
            return resp.json()
        except ValueError:
            return self._fail(status, "Malformed JSON in response body", ErrorKind.API)
