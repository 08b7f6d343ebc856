import logging

import pytest

from twapi_kit import (AUTH, HELIX, KRAKEN, DefaultCredentialStore, ErrorKind, QueryPipeline,
                       RequestDescriptor)
from twapi_kit._auth import Authenticator

from conftest import HELIX_URL, KRAKEN_URL, TOKEN_URL, FakeResponse


def _pipeline(store, session, family=HELIX, **kw):
    return QueryPipeline(store, family, session=session, **kw)


def test_no_token_sends_unauthenticated_request(session):
    store = DefaultCredentialStore("cid", "csecret")
    session.add("GET", f"{HELIX_URL}/streams", FakeResponse(200, {"data": []}))
    pipe = _pipeline(store, session)

    result = pipe.execute(RequestDescriptor("GET", "/streams"))

    assert result == {"data": []}
    assert "Authorization" not in session.calls[0].headers
    assert session.calls[0].headers["Client-ID"] == "cid"
    assert pipe.get_last_error() is None


def test_end_to_end_get_users(session):
    store = DefaultCredentialStore("cid", "csecret")
    reply = {"data": [{"id": "1", "login": "alice"}]}
    session.add("GET", f"{HELIX_URL}/users", FakeResponse(200, reply))
    pipe = _pipeline(store, session)

    result = pipe.execute(RequestDescriptor("GET", "/users", {"login": ["alice"]}))

    assert result == reply
    assert session.calls[0].url == f"{HELIX_URL}/users?login=alice"
    assert pipe.get_last_error() is None


def test_end_to_end_put_refreshes_once_and_retries(store, session):
    session.add("PUT", f"{HELIX_URL}/channels/123", FakeResponse(401, {"message": "Invalid OAuth token"}),
                FakeResponse(200, {}))
    session.add("POST", TOKEN_URL, FakeResponse(200, {"access_token": "new-token", "refresh_token": "new-refresh"}))
    pipe = _pipeline(store, session)

    result = pipe.execute(RequestDescriptor("PUT", "/channels/123", {"title": "x"}, target="alice"))

    assert result is not None
    assert result == {}
    assert len(session.calls_to(TOKEN_URL)) == 1
    assert store.get_access_token("alice") == "new-token"
    assert store.get_refresh_token("alice") == "new-refresh"

    first, retry = session.calls_to(f"{HELIX_URL}/channels/123")
    assert first.headers["Authorization"] == "Bearer alice-token"
    assert retry.headers["Authorization"] == "Bearer new-token"
    assert retry.json == {"title": "x"}
    assert retry.headers["Content-Type"] == "application/json"


def test_refresh_invoked_exactly_once_even_if_retry_fails(store, session, mocker):
    session.add("GET", f"{HELIX_URL}/users", FakeResponse(401, {"message": "Invalid OAuth token"}))
    session.add("POST", TOKEN_URL, FakeResponse(200, {"access_token": "t2", "refresh_token": "r2"}))
    spy = mocker.spy(Authenticator, "refresh")
    pipe = _pipeline(store, session)

    result = pipe.execute(RequestDescriptor("GET", "/users", target="alice"))

    assert result is None
    assert spy.call_count == 1
    assert len(session.calls_to(f"{HELIX_URL}/users")) == 2
    error = pipe.get_last_error()
    assert error.code == 401
    assert error.kind is ErrorKind.AUTHENTICATION
    assert error.message == "Invalid OAuth token"


def test_skip_auth_refresh_returns_failure_without_refresh(store, session, mocker):
    session.add("GET", f"{HELIX_URL}/users", FakeResponse(401, {"error": "Unauthorized"}))
    spy = mocker.spy(Authenticator, "refresh")
    pipe = _pipeline(store, session)

    result = pipe.execute(RequestDescriptor("GET", "/users", target="alice", skip_auth_refresh=True))

    assert result is None
    spy.assert_not_called()
    assert session.calls_to(TOKEN_URL) == []
    assert pipe.get_last_error().kind is ErrorKind.AUTHENTICATION
    assert pipe.get_last_error().message == "Unauthorized"


def test_transport_failure_records_error_without_refresh(store, session, connection_error, mocker):
    session.add("GET", f"{HELIX_URL}/streams", connection_error)
    spy = mocker.spy(Authenticator, "refresh")
    pipe = _pipeline(store, session)

    result = pipe.execute(RequestDescriptor("GET", "/streams", target="alice"))

    assert result is None
    spy.assert_not_called()
    error = pipe.get_last_error()
    assert error.kind is ErrorKind.TRANSPORT
    assert error.code == 0
    assert "ConnectionError" in error.message


def test_refresh_failure_is_recorded(store, session):
    session.add("GET", f"{HELIX_URL}/users", FakeResponse(401, {"message": "expired"}))
    session.add("POST", TOKEN_URL, FakeResponse(400, {"message": "Invalid refresh token"}))
    pipe = _pipeline(store, session)

    result = pipe.execute(RequestDescriptor("GET", "/users", target="alice"))

    assert result is None
    error = pipe.get_last_error()
    assert error.kind is ErrorKind.REFRESH
    assert error.code == 401
    assert "alice" in error.message
    assert "Invalid refresh token" in error.message
    assert store.get_access_token("alice") == "alice-token"


def test_helix_treats_400_as_auth_error(store, session):
    session.add("GET", f"{HELIX_URL}/users", FakeResponse(400, {"message": "bad"}), FakeResponse(200, {"data": []}))
    session.add("POST", TOKEN_URL, FakeResponse(200, {"access_token": "t2", "refresh_token": "r2"}))
    pipe = _pipeline(store, session)

    assert pipe.execute(RequestDescriptor("GET", "/users", target="alice")) == {"data": []}
    assert len(session.calls_to(TOKEN_URL)) == 1


def test_kraken_does_not_refresh_on_400(store, session):
    session.add("GET", f"{KRAKEN_URL}/users", FakeResponse(400, {"message": "Bad Request"}))
    pipe = _pipeline(store, session, KRAKEN)

    assert pipe.execute(RequestDescriptor("GET", "/users", target="alice")) is None
    assert session.calls_to(TOKEN_URL) == []
    assert pipe.get_last_error().kind is ErrorKind.API
    assert pipe.get_last_error().code == 400


def test_api_error_uses_message_field(store, session):
    session.add("GET", f"{HELIX_URL}/videos", FakeResponse(404, {"error": "Not Found", "message": "no video"}))
    pipe = _pipeline(store, session)

    assert pipe.execute(RequestDescriptor("GET", "/videos", {"id": "1"})) is None
    assert pipe.get_last_error().message == "no video"
    assert pipe.get_last_error().code == 404


def test_api_error_with_non_json_body(store, session):
    session.add("GET", f"{HELIX_URL}/videos", FakeResponse(502, text="<html>Bad Gateway</html>"))
    pipe = _pipeline(store, session)

    assert pipe.execute(RequestDescriptor("GET", "/videos")) is None
    assert pipe.get_last_error().message == "<html>Bad Gateway</html>"


def test_empty_success_body_returns_true(store, session):
    session.add("DELETE", f"{HELIX_URL}/videos", FakeResponse(204))
    pipe = _pipeline(store, session)

    assert pipe.execute(RequestDescriptor("DELETE", "/videos", {"id": ["1", "2"]}, target="alice")) is True
    assert session.calls[0].url == f"{HELIX_URL}/videos?id=1&id=2"
    assert session.calls[0].json is None


def test_last_error_survives_later_success_until_cleared(store, session):
    session.add("GET", f"{HELIX_URL}/a", FakeResponse(500, {"message": "boom"}))
    session.add("GET", f"{HELIX_URL}/b", FakeResponse(200, {"ok": True}))
    pipe = _pipeline(store, session)

    pipe.execute(RequestDescriptor("GET", "/a"))
    pipe.execute(RequestDescriptor("GET", "/b"))
    assert pipe.get_last_error().message == "boom"

    pipe.clear_last_error()
    assert pipe.get_last_error() is None


def test_token_is_read_at_resolve_time(store, session):
    session.add("GET", f"{HELIX_URL}/users", FakeResponse(200, {"data": []}))
    pipe = _pipeline(store, session)

    pipe.execute(RequestDescriptor("GET", "/users", target="alice"))
    store.set_access_token("alice", "rotated")
    pipe.execute(RequestDescriptor("GET", "/users", target="alice"))

    assert [c.headers["Authorization"] for c in session.calls] == ["Bearer alice-token", "Bearer rotated"]


def test_default_target_and_default_token_resolution(store, session):
    store.set_default_access_token("app-token")
    session.add("GET", f"{HELIX_URL}/users", FakeResponse(200, {"data": []}))
    pipe = _pipeline(store, session)

    pipe.execute(RequestDescriptor("GET", "/users"))
    assert pipe.set_default_target("alice") is True
    pipe.execute(RequestDescriptor("GET", "/users"))

    assert [c.headers["Authorization"] for c in session.calls] == ["Bearer app-token", "Bearer alice-token"]


def test_set_default_target_rejects_unknown_target(store, session):
    pipe = _pipeline(store, session)

    assert pipe.set_default_target("nobody") is False
    assert pipe.get_default_target() is None
    assert pipe.set_default_target(None) is True


def test_no_target_401_reissues_app_token(store, session):
    store.set_default_access_token("stale")
    session.add("GET", f"{HELIX_URL}/games", FakeResponse(401, {"message": "expired"}),
                FakeResponse(200, {"data": [{"id": "33214"}]}))
    session.add("POST", TOKEN_URL, FakeResponse(200, {"access_token": "fresh-app"}))
    pipe = _pipeline(store, session, app_scopes=["user:read:email"])

    assert pipe.execute(RequestDescriptor("GET", "/games", {"name": "Fortnite"})) == {"data": [{"id": "33214"}]}

    token_call = session.calls_to(TOKEN_URL)[0]
    assert token_call.json["grant_type"] == "client_credentials"
    assert token_call.json["scope"] == "user:read:email"
    assert store.get_default_access_token() == "fresh-app"
    assert session.calls[-1].headers["Authorization"] == "Bearer fresh-app"


def test_kraken_headers_and_join_formatting(store, session):
    session.add("GET", f"{KRAKEN_URL}/users", FakeResponse(200, {"_total": 0, "users": []}))
    pipe = _pipeline(store, session, KRAKEN)

    pipe.execute(RequestDescriptor("GET", "/users", {"login": ["a", "b", "c"]}, target="alice"))

    call = session.calls[0]
    assert call.url == f"{KRAKEN_URL}/users?login=a,b,c"
    assert call.headers["Authorization"] == "OAuth alice-token"
    assert call.headers["Accept"] == "application/vnd.twitchtv.v5+json"


def test_auth_family_sends_no_authorization_header(store, session):
    store.set_default_access_token("app-token")
    session.add("POST", TOKEN_URL, FakeResponse(200, {"access_token": "x"}))
    pipe = _pipeline(store, session, AUTH)

    pipe.execute(RequestDescriptor("POST", "/token", {"grant_type": "client_credentials"}))

    assert "Authorization" not in session.calls[0].headers
    assert "Client-ID" not in session.calls[0].headers


def test_trailing_slash_trimmed_and_existing_query_extended(store, session):
    session.add("GET", f"{HELIX_URL}/streams", FakeResponse(200, {"data": []}))
    pipe = _pipeline(store, session)

    pipe.execute(RequestDescriptor("GET", "/streams/"))
    pipe.execute(RequestDescriptor("GET", f"{HELIX_URL}/streams?first=5", {"language": "en"}))

    assert session.calls[0].url == f"{HELIX_URL}/streams"
    assert session.calls[1].url == f"{HELIX_URL}/streams?first=5&language=en"


def test_invalid_method_rejected():
    with pytest.raises(ValueError) as exc:
        RequestDescriptor("FETCH", "/users")
    assert "method='FETCH'" in str(exc.value)


def test_debug_trace_masks_token(store, session, mocker):
    session.add("GET", f"{HELIX_URL}/users", FakeResponse(200, {"data": []}))
    sink = mocker.Mock(spec=logging.Logger)
    pipe = _pipeline(store, session, logger=sink)

    pipe.execute(RequestDescriptor("GET", "/users", target="alice"))

    rendered = [call.args[0] % call.args[1:] for call in sink.debug.call_args_list]
    assert any("Target: alice" == line for line in rendered)
    assert any("HTTP Code: 200" == line for line in rendered)
    assert not any("alice-token" in line for line in rendered)
