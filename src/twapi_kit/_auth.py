from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final, Sequence
from urllib.parse import parse_qs, urlsplit, urlunsplit

import requests
from oauthlib.oauth2 import WebApplicationClient
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ._credentials import CredentialStore
from ._errors import LastError
from ._pipeline import AUTH, AUTH_BASE_URL, DEFAULT_TIMEOUT, QueryPipeline, RequestDescriptor

__all__ = [
    "TokenPair",
    "Authenticator",
    "build_session",
]

AUTHORIZE_URL: Final[str] = f"{AUTH_BASE_URL}/authorize"
TOKEN_PATH: Final[str] = "/token"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def build_session(*, total: int = 3, backoff_factor: float = 0.5) -> requests.Session:
    """Return a Session with a sensible retry policy."""
    session = requests.Session()

    retry_policy = Retry(
        total=total,
        backoff_factor=backoff_factor,  # exponential back‑off 0.5→2s
        status_forcelist=[500, 502, 503, 504, 429],
        allowed_methods={"GET"},
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_policy)
    for scheme in ("https://", "http://"):
        session.mount(scheme, adapter)
    return session


class Authenticator:
    """OAuth2 exchanges against ``id.twitch.tv``.

    Every exchange goes through its own :class:`QueryPipeline` with
    ``skip_auth_refresh=True``, so a 401 from the token endpoint can never
    start another refresh.

    Args:
        store (CredentialStore): Source of the client identity and the
            destination for refreshed tokens.
        session (requests.Session, optional): Shared HTTP session.
        logger (logging.Logger, optional): Debug trace sink.
        timeout (float): Per-request timeout in seconds.
    """

    def __init__(self, store: CredentialStore, *, session: requests.Session | None = None,
                 logger: logging.Logger | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.store = store
        self.pipeline = QueryPipeline(store, AUTH, session=session, logger=logger, timeout=timeout)

    def get_last_error(self) -> LastError | None:
        return self.pipeline.get_last_error()

    def _token_request(self, grant_type: str, **fields) -> dict | None:
        parameters = {
            "client_id": self.store.get_client_id(),
            "client_secret": self.store.get_client_secret(),
            "grant_type": grant_type,
            **fields,
        }
        reply = self.pipeline.execute(
            RequestDescriptor("POST", TOKEN_PATH, parameters, skip_auth_refresh=True)
        )
        if not isinstance(reply, dict) or not reply.get("access_token"):
            return None
        return reply

    # -------------------------------------------------------------------------
    # Authorization-code flow
    # -------------------------------------------------------------------------
    def build_authorize_url(self, redirect_uri: str, scopes: Sequence[str] = (),
                            state: str | None = None) -> str:
        """URL to send the user to so they can grant *scopes* to the app.

        Pure string building, no network call.
        """
        client = WebApplicationClient(self.store.get_client_id())
        return client.prepare_request_uri(
            AUTHORIZE_URL,
            redirect_uri=redirect_uri,
            scope=list(scopes) or None,
            state=state,
        )

    def exchange_authorization_code(self, code: str, redirect_uri: str) -> TokenPair | None:
        """Trade an authorization code for an access/refresh token pair."""
        reply = self._token_request("authorization_code", code=code, redirect_uri=redirect_uri)
        if reply is None:
            return None
        return TokenPair(reply["access_token"], reply.get("refresh_token") or "")

    def exchange_from_redirect(self, redirect_url: str) -> TokenPair | None:
        """Read ``code`` from the URL the authorize page redirected to and trade it.

        The ``redirect_uri`` sent along is *redirect_url* without its query.
        Returns ``None`` when the URL carries no code (user denied access).
        """
        parts = urlsplit(redirect_url)
        code = parse_qs(parts.query).get("code", [None])[0]
        if not code:
            return None
        redirect_uri = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
        return self.exchange_authorization_code(code, redirect_uri)

    # -------------------------------------------------------------------------
    # Client-credentials flow
    # -------------------------------------------------------------------------
    def exchange_client_credentials(self, scopes: Sequence[str] = ()) -> TokenPair | None:
        reply = self._token_request("client_credentials", scope=" ".join(scopes))
        if reply is None:
            return None
        # the endpoint does not always send refresh_token for this grant
        return TokenPair(reply["access_token"], reply.get("refresh_token") or "")

    def refresh_app_token(self, scopes: Sequence[str] = ()) -> str | None:
        """Re-issue the app token and store it as the default access token.

        Returns the new access token, or ``None`` on failure.
        """
        pair = self.exchange_client_credentials(scopes)
        if pair is None:
            return None
        self.store.set_default_access_token(pair.access_token)
        return pair.access_token

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------
    def refresh(self, target: str) -> str | None:
        """Refresh *target*'s token pair and write it back to the store.

        Returns the new refresh token, or ``None`` when the exchange fails.
        """
        reply = self._token_request("refresh_token", refresh_token=self.store.get_refresh_token(target))
        if reply is None:
            return None

        refresh_token = reply.get("refresh_token") or ""
        self.store.set_access_token(target, reply["access_token"])
        self.store.set_refresh_token(target, refresh_token)
        return refresh_token
