from __future__ import annotations

from typing import Any, Final, Iterable, Mapping, Sequence

import pandas as pd

from ._errors import InvalidArgument, raise_for_error
from ._pipeline import HELIX
from ._service import ApiClient, Service, ServiceRegistry
from ._util import (runtime_typecheck, _validate_enum, _prune_none, _paged_list,
                    _is_numeric_id, _as_list)

__all__ = ["HelixClient", "Users", "Channels", "Streams", "Tags", "Videos", "Search"]

# ----------------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------------
VALID_COMMERCIAL_LENGTHS: Final[frozenset[int]] = frozenset({30, 60, 90, 120, 150, 180})

STREAM_FILTERS = {"user_id", "user_login", "game_id", "language"}

VIDEO_MANDATORY_FILTERS = {"id", "game_id", "user_id"}
VIDEO_FILTERS = {*VIDEO_MANDATORY_FILTERS, "language", "period", "sort", "type"}
VIDEO_PERIODS = {"all", "day", "week", "month"}
VIDEO_SORTS = {"time", "trending", "views"}
VIDEO_TYPES = {"all", "upload", "archive", "highlight"}


def _data_of(result: Any) -> list[dict]:
    # an empty 2xx body comes back as True
    if not isinstance(result, Mapping):
        return []
    return result.get("data") or []


def _resolve_user_id(client: ApiClient, login_or_id: Any) -> str | None:
    if _is_numeric_id(login_or_id):
        return str(login_or_id)
    return client.users.get_user_id(login_or_id)


class _CursorService(Service):
    """Service with Helix cursor pagination (``pagination.cursor``)."""

    def __init__(self, client: ApiClient):
        super().__init__(client)
        self._cursors: dict[str, str | None] = {}

    @staticmethod
    def _cursor_of(result: Any) -> str | None:
        if not isinstance(result, Mapping):
            return None
        return (result.get("pagination") or {}).get("cursor") or None

    def _page(self, key: str, path: str, parameters: Mapping[str, Any], *,
              continue_: bool) -> list[dict] | None:
        params = _prune_none({"after": self._cursors.get(key) if continue_ else None, **parameters})
        result = self._query("GET", path, params)
        if result is None:
            return None

        self._cursors[key] = self._cursor_of(result)
        return _data_of(result)

    def _has_more(self, key: str) -> bool:
        return bool(self._cursors.get(key))

    def _collect(self, path: str, parameters: Mapping[str, Any], *,
                 max_pages: int | None = None) -> pd.DataFrame:
        """Walk every page of *path* into one DataFrame; raises on failure."""

        def fetch(after: str | None = None) -> tuple[list[dict], str | None]:
            result = self._query("GET", path, _prune_none({**parameters, "after": after}))
            if result is None:
                raise_for_error(self.client.get_last_error())
            return _data_of(result), self._cursor_of(result)

        return _paged_list(fetch, max_pages=max_pages)

    def _user_id(self, login_or_id: Any) -> str | None:
        return _resolve_user_id(self.client, login_or_id)


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------
class Users(Service):
    """Twitch Helix resource: Users.

    Every login → ID pair seen in a reply lands in the client's
    :class:`~twapi_kit.UserIdCache`, so later ID lookups cost nothing.

    References:
        https://dev.twitch.tv/docs/api/reference#get-users
    """

    name = "users"

    @property
    def cache(self):
        return self.client.user_cache

    def get_users(self, logins_or_ids: Iterable[str | int]) -> dict[str, dict]:
        """Info on several users, keyed by user ID.

        Args:
            logins_or_ids (Iterable[str | int]): Any mix of logins and
                numeric IDs. Empty means "the authenticated user".

        Returns:
            dict[str, dict]: ``{user_id: user}``; empty when the call fails.
        """
        items = list(logins_or_ids)
        parameters = _prune_none({
            "id": [str(i) for i in items if _is_numeric_id(i)],
            "login": [i for i in items if not _is_numeric_id(i)],
        })

        result = self._query("GET", "/users", parameters)
        if result is None:
            return {}

        users: dict[str, dict] = {}
        for user in _data_of(result):
            self.cache.put(user["login"], user["id"])
            users[user["id"]] = user
        return users

    def get_user(self, login_or_id: str | int | None = None) -> dict | None:
        users = self.get_users([login_or_id] if login_or_id is not None else [])
        return next(iter(users.values()), None)

    def get_users_ids(self, logins: Iterable[str]) -> dict[str, str]:
        """``{login: id}``, served from the cache when possible."""
        ids, missing = self.cache.lookup(logins)
        if missing:
            ids.update(self.fetch_users_ids(missing))
        return ids

    def get_user_id(self, login: str) -> str | None:
        return next(iter(self.get_users_ids([login]).values()), None)

    def fetch_users_ids(self, logins: Iterable[str]) -> dict[str, str]:
        """Always asks the API, then refreshes the cache."""
        result = self._query("GET", "/users", {"login": list(logins)})
        if result is None:
            return {}

        ids: dict[str, str] = {}
        for user in _data_of(result):
            self.cache.put(user["login"], user["id"])
            ids[user["login"]] = user["id"]
        return ids

    def fetch_user_id(self, login: str) -> str | None:
        return next(iter(self.fetch_users_ids([login]).values()), None)

    def empty_id_cache(self) -> None:
        self.cache.clear()


# ----------------------------------------------------------------------------
# Channels
# ----------------------------------------------------------------------------
class Channels(Service):
    """Twitch Helix resource: Channels (info, update, commercials)."""

    name = "channels"

    def info(self, usernames_or_ids: str | int | Sequence[str | int]) -> dict | list[dict] | None:
        """Channel information for one or many broadcasters (up to 100).

        Returns a single dict when a single user was given, else a list.
        ``None`` when the call fails.

        References:
            https://dev.twitch.tv/docs/api/reference#get-channel-information
        """
        unique = isinstance(usernames_or_ids, (str, int))
        items = _as_list(usernames_or_ids)

        ids = [str(i) for i in items if _is_numeric_id(i)]
        logins = [i for i in items if not _is_numeric_id(i)]
        if logins:
            ids.extend(self.client.users.get_users_ids(logins).values())

        if not ids:
            return None if unique else []

        result = self._query("GET", "/channels", {"broadcaster_id": ids})
        if result is None:
            return None

        data = _data_of(result)
        if unique:
            return data[0] if data else None
        return data

    def update(self, username_or_id: str | int, new_data: Mapping[str, Any],
               authentication_channel: str | None = None) -> bool:
        """Modify channel information.

        Args:
            username_or_id (str | int): Channel to update.
            new_data (Mapping): At least one of ``game_id``,
                ``broadcaster_language``, ``title``, ``delay``.
            authentication_channel (str | None): Target whose token is used;
                defaults to *username_or_id*.

        Raises:
            InvalidArgument: If *new_data* is empty.

        References:
            https://dev.twitch.tv/docs/api/reference#modify-channel-information
        """
        if not new_data:
            raise InvalidArgument("At least one update parameter must be specified.")

        target = authentication_channel or str(username_or_id)
        broadcaster_id = _resolve_user_id(self.client, username_or_id)
        if broadcaster_id is None:
            return False

        result = self._query("PATCH", f"/channels?broadcaster_id={broadcaster_id}", new_data, target)
        return result is not None

    @runtime_typecheck
    def start_commercial(self, username_or_id: str | int, length: int,
                         authentication_channel: str | None = None) -> dict | None:
        """Run a commercial; returns the commercial info or ``None``.

        Raises:
            InvalidArgument: If *length* is not 30, 60, 90, 120, 150 or 180.
        """
        if length not in VALID_COMMERCIAL_LENGTHS:
            raise InvalidArgument(f"Invalid commercial length: {length!r}")

        target = authentication_channel or str(username_or_id)
        broadcaster_id = _resolve_user_id(self.client, username_or_id)
        if broadcaster_id is None:
            return None

        result = self._query("POST", "/channels/commercial",
                             {"broadcaster_id": broadcaster_id, "length": length}, target)
        if not result or not isinstance(result, dict):
            return None
        return next(iter(result.get("data", [])), None)


# ----------------------------------------------------------------------------
# Streams
# ----------------------------------------------------------------------------
class Streams(_CursorService):
    """Twitch Helix resource: Streams.

    Active streams, ordered by viewer count, with cursor pagination.
    """

    name = "streams"

    @staticmethod
    def _filters(filters: Mapping[str, Any] | None) -> dict[str, Any]:
        filters = dict(filters or {})
        unknown = set(filters) - STREAM_FILTERS
        if unknown:
            raise InvalidArgument(f"Unknown stream filters: {sorted(unknown)}")
        return {k: _as_list(v) for k, v in filters.items()}

    def get_streams(self, filters: Mapping[str, Any] | None = None, length: int = 20,
                    continue_: bool = True) -> list[dict] | None:
        """One page of live streams.

        Args:
            filters (Mapping | None): ``user_id``, ``user_login``, ``game_id``
                or ``language``; each a value or a list of values.
            length (int): Page size (max 100).
            continue_ (bool): Resume from the cursor of the previous call.

        References:
            https://dev.twitch.tv/docs/api/reference#get-streams
        """
        params = {"first": length, **self._filters(filters)}
        return self._page("streams", "/streams", params, continue_=continue_)

    def has_more_streams(self) -> bool:
        return self._has_more("streams")

    def all_streams(self, filters: Mapping[str, Any] | None = None, *,
                    max_pages: int | None = None) -> pd.DataFrame:
        return self._collect("/streams", {"first": 100, **self._filters(filters)}, max_pages=max_pages)


# ----------------------------------------------------------------------------
# Tags
# ----------------------------------------------------------------------------
class Tags(_CursorService):
    """Twitch Helix resource: Tags. Handles tag management for a stream."""

    name = "tags"

    def get_tags(self, tag_ids: Iterable[str] = (), length: int = 20,
                 continue_: bool = True) -> list[dict] | None:
        """Tags from the global stream tag list.

        References:
            https://dev.twitch.tv/docs/api/reference/#get-all-stream-tags
        """
        params = {"first": length, "tag_id": list(tag_ids)}
        return self._page("tags", "/tags/streams", params, continue_=continue_)

    def has_more_tags(self) -> bool:
        return self._has_more("tags")

    def get_stream_tags(self, broadcaster: str | int) -> list[dict] | None:
        """Tags on *broadcaster*'s stream; ``None`` if unknown or untagged."""
        broadcaster_id = self._user_id(broadcaster)
        if broadcaster_id is None:
            return None

        result = self._query("GET", "/streams/tags", {"broadcaster_id": broadcaster_id})
        if not result or not isinstance(result, dict):
            return None
        return result.get("data") or None

    def update_stream_tags(self, broadcaster: str | int, tag_ids: Iterable[str],
                           authentication_channel: str | None = None) -> bool:
        """Replace the tags on *broadcaster*'s stream.

        References:
            https://dev.twitch.tv/docs/api/reference/#replace-stream-tags
        """
        broadcaster_id = self._user_id(broadcaster)
        if broadcaster_id is None:
            return False

        target = authentication_channel or str(broadcaster)
        result = self._query("PUT", f"/streams/tags?broadcaster_id={broadcaster_id}",
                             {"tag_ids": list(tag_ids)}, target)
        return result is not None


# ----------------------------------------------------------------------------
# Videos
# ----------------------------------------------------------------------------
class Videos(_CursorService):
    """Twitch Helix resource: Videos."""

    name = "videos"

    @staticmethod
    def _filters(filters: Mapping[str, Any]) -> dict[str, Any]:
        if not set(filters) & VIDEO_MANDATORY_FILTERS:
            raise InvalidArgument(
                f"Need to specify at least one of {sorted(VIDEO_MANDATORY_FILTERS)}"
            )
        unknown = set(filters) - VIDEO_FILTERS
        if unknown:
            raise InvalidArgument(f"Unknown video filters: {sorted(unknown)}")

        params = dict(filters)
        for key, allowed in (("period", VIDEO_PERIODS), ("sort", VIDEO_SORTS), ("type", VIDEO_TYPES)):
            if key in params:
                params[key] = _validate_enum(key, params[key], allowed, allow_multi=False)[0]
        if "id" in params:
            params["id"] = _as_list(params["id"])
        return params

    @runtime_typecheck
    def get_videos(self, filters: Mapping[str, Any], length: int = 20,
                   continue_: bool = True) -> list[dict] | None:
        """Videos matching *filters*.

        Args:
            filters (Mapping): At least one of ``id`` (up to 100),
                ``game_id`` or ``user_id``.  Optional when ``id`` is absent:
                ``language``, ``period``, ``sort``, ``type``.
            length (int): Page size.
            continue_ (bool): Resume from the previous cursor.

        Raises:
            InvalidArgument: No mandatory filter, an unknown filter, or an
                out-of-range ``period`` / ``sort`` / ``type``.

        References:
            https://dev.twitch.tv/docs/api/reference#get-videos
        """
        params = {"first": length, **self._filters(filters)}
        return self._page("videos", "/videos", params, continue_=continue_)

    def has_more_videos(self) -> bool:
        return self._has_more("videos")

    def all_videos(self, filters: Mapping[str, Any], *, max_pages: int | None = None) -> pd.DataFrame:
        """Every page of :py:meth:`get_videos` as one flat DataFrame."""
        return self._collect("/videos", {"first": 100, **self._filters(filters)}, max_pages=max_pages)


# ----------------------------------------------------------------------------
# Search
# ----------------------------------------------------------------------------
class Search(_CursorService):
    """Twitch Helix resource: Search."""

    name = "search"

    @runtime_typecheck
    def categories(self, search: str, length: int = 20, continue_: bool = True) -> list[dict] | None:
        """Search categories ("games") by name.

        References:
            https://dev.twitch.tv/docs/api/reference#search-categories
        """
        params = {"query": search, "first": length}
        return self._page("categories", "/search/categories", params, continue_=continue_)

    def has_more_categories(self) -> bool:
        return self._has_more("categories")

    @runtime_typecheck
    def channels(self, search: str, live_only: bool = False, length: int = 20,
                 continue_: bool = True) -> list[dict] | None:
        """Search channels by login or display name.

        References:
            https://dev.twitch.tv/docs/api/reference#search-channels
        """
        params = {"query": search, "live_only": live_only, "first": length}
        return self._page("channels", "/search/channels", params, continue_=continue_)

    def has_more_channels(self) -> bool:
        return self._has_more("channels")


# ----------------------------------------------------------------------------
# Client
# ----------------------------------------------------------------------------
class HelixClient(ApiClient):
    """High-level wrapper around the **Twitch Helix API**.

    Every call goes through one :class:`~twapi_kit.QueryPipeline`
    configured with ``Authorization: Bearer`` headers, repeated array
    parameters, and refresh on 400/401.

    Args:
        store (CredentialStore): Client identity and per-target tokens.
        session (requests.Session, optional): HTTP session.
        logger (logging.Logger, optional): Debug trace sink.
        timeout (float, optional): Per-request timeout in seconds.
        user_cache (UserIdCache, optional): login → ID cache to share.
        app_scopes (Sequence[str], optional): Scopes requested when the app
            token gets re-issued.

    Examples:
         helix = HelixClient(DefaultCredentialStore("id", "secret"))
         helix.set_default_target("alice")
         helix.users.get_user()["display_name"]
    """

    FAMILY = HELIX
    SERVICES = ServiceRegistry({
        Users.name: Users,
        Channels.name: Channels,
        Streams.name: Streams,
        Tags.name: Tags,
        Videos.name: Videos,
        Search.name: Search,
    })

    @property
    def users(self) -> Users:
        return self._services["users"]

    @property
    def channels(self) -> Channels:
        return self._services["channels"]

    @property
    def streams(self) -> Streams:
        return self._services["streams"]

    @property
    def tags(self) -> Tags:
        return self._services["tags"]

    @property
    def videos(self) -> Videos:
        return self._services["videos"]

    @property
    def search(self) -> Search:
        return self._services["search"]
