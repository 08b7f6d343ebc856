import json
from dataclasses import dataclass, field

import pytest
import requests

from twapi_kit import DefaultCredentialStore, HelixClient, KrakenClient

HELIX_URL = "https://api.twitch.tv/helix"
KRAKEN_URL = "https://api.twitch.tv/kraken"
TOKEN_URL = "https://id.twitch.tv/oauth2/token"


class FakeResponse:
    """Just enough of requests.Response for the pipeline."""

    def __init__(self, status=200, payload=None, text=None):
        self.status_code = status
        if text is None:
            text = "" if payload is None else json.dumps(payload)
        self.text = text
        self.content = text.encode()
        self.reason = "OK" if status < 300 else "Error"

    def json(self):
        return json.loads(self.text)


@dataclass
class Call:
    method: str
    url: str
    headers: dict
    json: dict | None = None


@dataclass
class StubSession:
    """Routes ``request`` to canned replies by method + URL prefix.

    Each route holds a queue; the last reply repeats once the queue is
    down to one item.
    """

    routes: dict = field(default_factory=dict)
    calls: list = field(default_factory=list)
    closed: bool = False

    def add(self, method, url, *replies):
        self.routes.setdefault((method, url), []).extend(replies)
        return self

    def request(self, method, url, headers=None, json=None, timeout=None):
        self.calls.append(Call(method, url, dict(headers or {}), json))
        matches = [k for k in self.routes if k[0] == method and url.startswith(k[1])]
        if not matches:
            raise AssertionError(f"unexpected request {method} {url}")
        queue = self.routes[max(matches, key=lambda k: len(k[1]))]
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def calls_to(self, url):
        return [c for c in self.calls if c.url.startswith(url)]

    def close(self):
        self.closed = True


@pytest.fixture
def store():
    s = DefaultCredentialStore("cid", "csecret")
    s.set_tokens_database({"alice": {"token": "alice-token", "refresh": "alice-refresh"}})
    return s


@pytest.fixture
def session():
    return StubSession()


@pytest.fixture
def helix(store, session):
    return HelixClient(store, session=session)


@pytest.fixture
def kraken(store, session):
    return KrakenClient(store, session=session)


@pytest.fixture
def connection_error():
    return requests.ConnectionError("Name or service not known")
