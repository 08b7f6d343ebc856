from __future__ import annotations

import json
import pathlib
from dataclasses import dataclass
from typing import Final, Mapping, Protocol

__all__ = [
    "ClientIdentity",
    "CredentialRecord",
    "CredentialStore",
    "DefaultCredentialStore",
    "DEFAULT_TOKEN_FILE",
]

DEFAULT_TOKEN_FILE = pathlib.Path("~/.twapi_kit_tokens.json").expanduser()

KEY_TOKEN: Final[str] = "token"
KEY_REFRESH: Final[str] = "refresh"


@dataclass(frozen=True)
class ClientIdentity:
    client_id: str
    client_secret: str


@dataclass
class CredentialRecord:
    target: str
    access_token: str | None = None
    refresh_token: str | None = None


class CredentialStore(Protocol):
    """How the library reads and writes tokens.

    Implement this to keep tokens wherever your application wants them
    (database, keyring, ...).  Only the authenticator ever calls the
    setters; the query pipeline only reads.  Not thread-safe by contract:
    serialise refreshes of the same target yourself.
    """

    def get_client_id(self) -> str: ...

    def get_client_secret(self) -> str: ...

    def get_access_token(self, target: str) -> str | None: ...

    def get_refresh_token(self, target: str) -> str | None: ...

    def set_access_token(self, target: str, token: str | None) -> None: ...

    def set_refresh_token(self, target: str, token: str | None) -> None: ...

    def get_default_access_token(self) -> str | None: ...

    def set_default_access_token(self, token: str | None) -> None: ...


class DefaultCredentialStore:
    """In-memory credential store with optional JSON persistence.

    Args:
        client_id (str): The application's client ID.
        client_secret (str): The application's client secret.
        default_access_token (str | None): App-level token used when a call
            has no target (client-credentials flow).

    Example:
        >>> store = DefaultCredentialStore("abc", "s3cr3t")
        >>> store.set_tokens_database({"alice": {"token": "t", "refresh": "r"}})
        >>> store.get_access_token("alice")
        't'
    """

    def __init__(self, client_id: str, client_secret: str, *,
                 default_access_token: str | None = None):
        self.identity = ClientIdentity(client_id, client_secret)
        self._records: dict[str, CredentialRecord] = {}
        self._default_access_token = default_access_token

    # -------------------------------------------------------------------------
    # CredentialStore protocol
    # -------------------------------------------------------------------------
    def get_client_id(self) -> str:
        return self.identity.client_id

    def get_client_secret(self) -> str:
        return self.identity.client_secret

    def get_access_token(self, target: str) -> str | None:
        record = self._records.get(target)
        return record.access_token if record else None

    def get_refresh_token(self, target: str) -> str | None:
        record = self._records.get(target)
        return record.refresh_token if record else None

    def set_access_token(self, target: str, token: str | None) -> None:
        self._record(target).access_token = token

    def set_refresh_token(self, target: str, token: str | None) -> None:
        self._record(target).refresh_token = token

    def get_default_access_token(self) -> str | None:
        return self._default_access_token

    def set_default_access_token(self, token: str | None) -> None:
        self._default_access_token = token

    # -------------------------------------------------------------------------
    # Bulk helpers
    # -------------------------------------------------------------------------
    def _record(self, target: str) -> CredentialRecord:
        if target not in self._records:
            self._records[target] = CredentialRecord(target)
        return self._records[target]

    def set_tokens_database(self, tokens: Mapping[str, Mapping[str, str | None]]) -> None:
        """Replace every stored record in one go.

        *tokens* maps a target to ``{"token": ..., "refresh": ...}``.
        """
        self._records = {
            target: CredentialRecord(target, pair.get(KEY_TOKEN), pair.get(KEY_REFRESH))
            for target, pair in tokens.items()
        }

    def records(self) -> dict[str, CredentialRecord]:
        """Snapshot of the per-target records."""
        return {t: CredentialRecord(r.target, r.access_token, r.refresh_token)
                for t, r in self._records.items()}

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------
    @classmethod
    def from_file(cls, path: str | pathlib.Path | None = None) -> "DefaultCredentialStore":
        """Load a store previously written by :py:meth:`save`."""
        path = pathlib.Path(path).expanduser() if path else DEFAULT_TOKEN_FILE
        data = json.loads(path.read_text(encoding="utf-8"))

        store = cls(data["client_id"], data["client_secret"],
                    default_access_token=data.get("default_token"))
        store.set_tokens_database(data.get("tokens", {}))
        return store

    def save(self, path: str | pathlib.Path | None = None) -> pathlib.Path:
        path = pathlib.Path(path).expanduser() if path else DEFAULT_TOKEN_FILE
        payload = {
            "client_id": self.identity.client_id,
            "client_secret": self.identity.client_secret,
            "default_token": self._default_access_token,
            "tokens": {
                t: {KEY_TOKEN: r.access_token, KEY_REFRESH: r.refresh_token}
                for t, r in self._records.items()
            },
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path
