"""Shared fixtures: an in-memory relay behind httpx.MockTransport and fake capabilities."""

from collections import defaultdict

import httpx
import pytest

from sealpost.exceptions import DecryptionError

RELAY_URL = "http://relay.test"


class FakeRelay:
    """Records requests and serves topics the way the public relay does."""

    def __init__(self):
        self.topics: dict[str, list[str]] = defaultdict(list)
        self.requests: list[httpx.Request] = []
        self.posts = 0
        self.reject_posts: set[int] = set()  # 1-based post numbers answered with 500
        self.unreachable = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("relay down", request=request)
        parts = request.url.path.strip("/").split("/")
        if request.method == "POST" and len(parts) == 1:
            self.posts += 1
            if self.posts in self.reject_posts:
                return httpx.Response(500, text="boom")
            self.topics[parts[0]].append(request.content.decode())
            return httpx.Response(200, json={"topic": parts[0]})
        if request.method == "GET" and len(parts) == 2 and parts[1] == "raw":
            body = "".join(f"{m}\n" for m in self.topics.get(parts[0], []))
            return httpx.Response(200, text=body)
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    @property
    def gets(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "GET"]


class FakeEncryptor:
    """Reversible stand-in for sealed boxes where a key opens what it sealed."""

    def encrypt(self, data: bytes, public_key: bytes) -> bytes:
        return b"to:" + public_key + b"|" + data

    def decrypt(self, data: bytes, private_key: bytes) -> bytes:
        prefix = b"to:" + private_key + b"|"
        if not data.startswith(prefix):
            raise DecryptionError("not for this key")
        return data[len(prefix):]


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float):
        self.calls.append(seconds)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float):
        self.value += seconds


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def http_client(relay):
    with relay.client() as client:
        yield client


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return FakeClock()
