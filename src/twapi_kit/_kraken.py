from __future__ import annotations

from typing import Any, Final

from ._errors import InvalidArgument
from ._pipeline import KRAKEN
from ._service import ApiClient, Service, ServiceRegistry
from ._util import runtime_typecheck, _validate_enum, _prune_none, _is_numeric_id

__all__ = ["KrakenClient", "Users", "Channels", "Streams", "Search"]

VALID_COMMERCIAL_LENGTHS: Final[frozenset[int]] = frozenset({30, 60, 90, 120, 150, 180})
FOLLOW_DIRECTIONS = {"asc", "desc"}


class _KrakenService(Service):

    def _channel_id(self, channel: Any) -> str | None:
        if _is_numeric_id(channel):
            return str(channel)
        return self.client.users.get_user_id(channel)


class Users(_KrakenService):
    """Twitch Kraken (v5) service: users.

    Resolved login → ID pairs are kept in the client's
    :class:`~twapi_kit.UserIdCache`; it lives as long as the client does.
    """

    name = "users"

    @property
    def cache(self):
        return self.client.user_cache

    def info(self, username_or_id: str | int | None = None) -> dict | None:
        """Info on a user, by login or numeric ID.

        With no argument, returns the user owning the default target's
        token (``/user``).  ``None`` when the login is unknown or the call
        fails.

        References:
            https://dev.twitch.tv/docs/v5/reference/users/#get-user
        """
        if username_or_id is None:
            return self._query("GET", "/user")

        if _is_numeric_id(username_or_id):
            return self._query("GET", f"/users/{username_or_id}")

        user_id = self.cache.get(username_or_id)
        if user_id is not None:
            return self._query("GET", f"/users/{user_id}")

        # one request gets both the ID and the info
        user_id, user = self.fetch_user(username_or_id)
        if user_id is None:
            return None
        self.cache.put(username_or_id, user_id)
        return user

    def get_user_id(self, username: str) -> str | None:
        user_id = self.cache.get(username)
        if user_id is None:
            user_id = self.fetch_user_id(username)
            if user_id is None:
                return None
            self.cache.put(username, user_id)
        return user_id

    def fetch_user(self, username: str) -> tuple[str | None, dict | None]:
        """Ask the API for *username*; returns ``(id, info)`` or ``(None, None)``.

        References:
            https://dev.twitch.tv/docs/v5/reference/users/#get-users
        """
        response = self._query("GET", "/users", {"login": username})
        if not isinstance(response, dict) or not response.get("_total"):
            return None, None

        user = response["users"][0]
        return str(user["_id"]), user

    def fetch_user_id(self, username: str) -> str | None:
        return self.fetch_user(username)[0]

    def empty_id_cache(self) -> None:
        self.cache.clear()


class Channels(_KrakenService):
    """Twitch Kraken (v5) service: channels."""

    name = "channels"

    def info(self, channel: str | int | None = None) -> dict | None:
        """Channel by name or ID, or the default target's channel when omitted.

        References:
            https://dev.twitch.tv/docs/v5/reference/channels/#get-channel-by-id
        """
        if channel is None:
            return self._query("GET", "/channel")

        channel_id = self._channel_id(channel)
        if channel_id is None:
            return None
        return self._query("GET", f"/channels/{channel_id}")

    def followers(self, channel: str | int, *, limit: int | None = None,
                  cursor: str | None = None, direction: str | None = None) -> dict | None:
        """One page of a channel's followers.

        Returns the raw reply (``_total``, ``_cursor``, ``follows``).
        Pass the returned ``_cursor`` back as *cursor* for the next page.

        Raises:
            InvalidArgument: If *direction* is not ``"asc"`` or ``"desc"``.

        References:
            https://dev.twitch.tv/docs/v5/reference/channels/#get-channel-followers
        """
        if direction is not None:
            _validate_enum("direction", direction, FOLLOW_DIRECTIONS, allow_multi=False)

        channel_id = self._channel_id(channel)
        if channel_id is None:
            return None

        params = _prune_none({"limit": limit, "cursor": cursor, "direction": direction})
        return self._query("GET", f"/channels/{channel_id}/follows", params)

    def update(self, channel: str | int, *, status: str | None = None, game: str | None = None,
               delay: int | None = None, channel_feed_enabled: bool | None = None) -> dict | None:
        """Update a channel; needs a token owned by *channel*.

        Returns the updated channel, or ``None`` on failure.

        Raises:
            InvalidArgument: If nothing to update was given.

        References:
            https://dev.twitch.tv/docs/v5/reference/channels/#update-channel
        """
        fields = _prune_none({
            "status": status,
            "game": game,
            "delay": delay,
            "channel_feed_enabled": channel_feed_enabled,
        })
        if not fields:
            raise InvalidArgument("At least one update parameter must be specified.")

        channel_id = self._channel_id(channel)
        if channel_id is None:
            return None
        return self._query("PUT", f"/channels/{channel_id}", {"channel": fields}, str(channel))

    @runtime_typecheck
    def start_commercial(self, channel: str | int, length: int) -> bool:
        """Start a commercial on *channel*.

        Raises:
            InvalidArgument: If *length* is not 30, 60, 90, 120, 150 or 180.
        """
        if length not in VALID_COMMERCIAL_LENGTHS:
            raise InvalidArgument(f"Invalid commercial length: {length!r}")

        channel_id = self._channel_id(channel)
        if channel_id is None:
            return False

        reply = self._query("POST", f"/channels/{channel_id}/commercial", {"length": length}, str(channel))
        return bool(reply)


class Streams(_KrakenService):

    name = "streams"

    def info_with_channel(self, user: str | int) -> tuple[dict | None, dict | None]:
        """``(stream, channel)`` for *user*; both ``None`` when offline."""
        user_id = self._channel_id(user)
        if user_id is None:
            return None, None

        reply = self._query("GET", f"/streams/{user_id}")
        if not isinstance(reply, dict) or not reply.get("stream"):
            return None, None
        return reply["stream"], reply["stream"].get("channel")

    def info(self, user: str | int) -> dict | None:
        """Live stream info for *user*, ``None`` when offline."""
        return self.info_with_channel(user)[0]


class Search(_KrakenService):

    name = "search"

    @runtime_typecheck
    def games(self, search: str, live: bool = False) -> list[dict] | None:
        """Games whose name matches *search*.

        ``[]`` when nothing matches, ``None`` when the call fails.

        References:
            https://dev.twitch.tv/docs/v5/reference/search/#search-games
        """
        result = self._query("GET", "/search/games", {"query": search, "live": live})
        if result is None:
            return None
        return (result.get("games") if isinstance(result, dict) else None) or []


class KrakenClient(ApiClient):
    """Wrapper around the legacy **Twitch Kraken (v5) API**.

    Sends ``Accept: application/vnd.twitchtv.v5+json``,
    ``Authorization: OAuth <token>``, joins array parameters with commas
    and refreshes tokens on 401.
    """

    FAMILY = KRAKEN
    SERVICES = ServiceRegistry({
        Users.name: Users,
        Channels.name: Channels,
        Streams.name: Streams,
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
    def search(self) -> Search:
        return self._services["search"]
