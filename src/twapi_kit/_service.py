from __future__ import annotations

import logging
from typing import Any, Callable, ClassVar, Iterable, Mapping

import requests

from ._credentials import CredentialStore
from ._errors import LastError
from ._pipeline import DEFAULT_TIMEOUT, FamilyConfig, QueryPipeline, RequestDescriptor

__all__ = ["Service", "ServiceRegistry", "UserIdCache", "ApiClient"]


class UserIdCache:
    """login → user ID table.

    Owned by a Users service, injectable through the client constructor
    so several clients can share one on purpose. Logins are case-insensitive.
    """

    def __init__(self, initial: Mapping[str, str] | None = None):
        self._ids: dict[str, str] = {}
        for login, user_id in (initial or {}).items():
            self.put(login, user_id)

    @staticmethod
    def _key(login: str) -> str:
        return login.lower()

    def __contains__(self, login: object) -> bool:
        return isinstance(login, str) and self._key(login) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def get(self, login: str) -> str | None:
        return self._ids.get(self._key(login))

    def put(self, login: str, user_id: Any) -> None:
        self._ids[self._key(login)] = str(user_id)

    def lookup(self, logins: Iterable[str]) -> tuple[dict[str, str], list[str]]:
        """Split *logins* into ``(cached {login: id}, missing [login])``."""
        found: dict[str, str] = {}
        missing: list[str] = []
        for login in logins:
            user_id = self.get(login)
            if user_id is not None:
                found[login] = user_id
            else:
                missing.append(login)
        return found, missing

    def clear(self) -> None:
        self._ids.clear()


class Service:
    """Base for every per-resource binding."""

    name: ClassVar[str] = ""

    def __init__(self, client: "ApiClient"):
        self.client = client

    def _query(self, method: str, path: str, parameters: Mapping[str, Any] | None = None,
               target: str | None = None) -> Any:
        return self.client.query(method, path, parameters, target)


ServiceFactory = Callable[["ApiClient"], Service]


class ServiceRegistry:
    """Static name → factory table, resolved by plain lookup."""

    def __init__(self, factories: Mapping[str, ServiceFactory] | None = None):
        self._factories: dict[str, ServiceFactory] = dict(factories or {})

    def register(self, name: str, factory: ServiceFactory) -> None:
        if name in self._factories:
            raise ValueError(f"service {name!r} is already registered")
        self._factories[name] = factory

    def names(self) -> list[str]:
        return sorted(self._factories)

    def build(self, client: "ApiClient") -> dict[str, Service]:
        return {name: factory(client) for name, factory in self._factories.items()}


class ApiClient:
    """Shared host for :class:`HelixClient` and :class:`KrakenClient`.

    Owns one :class:`QueryPipeline` configured for ``FAMILY`` and the
    service instances listed in ``SERVICES``.
    """

    FAMILY: ClassVar[FamilyConfig]
    SERVICES: ClassVar[ServiceRegistry] = ServiceRegistry()

    def __init__(
            self,
            store: CredentialStore,
            *,
            session: requests.Session | None = None,
            logger: logging.Logger | None = None,
            timeout: float = DEFAULT_TIMEOUT,
            user_cache: UserIdCache | None = None,
            app_scopes=(),
    ):
        self.store = store
        self.user_cache = user_cache if user_cache is not None else UserIdCache()
        self.pipeline = QueryPipeline(
            store, self.FAMILY, session=session, logger=logger,
            timeout=timeout, app_scopes=app_scopes,
        )
        self._services = self.SERVICES.build(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self.pipeline.session.close()

    # -------------------------------------------------------------------------
    # Pipeline delegation
    # -------------------------------------------------------------------------
    def query(self, method: str, path: str, parameters: Mapping[str, Any] | None = None,
              target: str | None = None, skip_auth_refresh: bool = False) -> Any:
        """Run one call through the pipeline; ``None`` means failure."""
        return self.pipeline.execute(
            RequestDescriptor(method, path, dict(parameters or {}), target, skip_auth_refresh)
        )

    def execute(self, descriptor: RequestDescriptor) -> Any:
        return self.pipeline.execute(descriptor)

    def get_last_error(self) -> LastError | None:
        return self.pipeline.get_last_error()

    def clear_last_error(self) -> None:
        self.pipeline.clear_last_error()

    def set_default_target(self, target: str | None = None) -> bool:
        return self.pipeline.set_default_target(target)

    def get_default_target(self) -> str | None:
        return self.pipeline.get_default_target()

    @property
    def base_headers(self) -> dict[str, str]:
        return self.pipeline.base_headers

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------
    def get_service(self, name: str) -> Service | None:
        return self._services.get(name)
