from urllib.parse import quote

import pytest
from starlette.requests import Request

from replayguard.main import guard
from replayguard.services.nonce_store import InMemoryNonceStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def reset_guard_store(store) -> None:
    # Only the in-process store can be cleared between tests.
    if isinstance(store, InMemoryNonceStore):
        store.reset()


@pytest.fixture(autouse=True)
def reset_state():
    reset_guard_store(guard.store)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_request():
    def _make(
        method: str = "POST",
        path: str = "/api/v1/commands",
        query: str = "",
        headers: dict[str, str] | None = None,
        body: bytes = b"",
    ) -> Request:
        raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or {}).items()
        ]
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": quote(path).encode(),
            "root_path": "",
            "query_string": query.encode(),
            "headers": raw_headers,
            "server": ("testserver", 80),
            "client": ("testclient", 50000),
        }
        sent = False

        async def receive():
            nonlocal sent
            if sent:
                return {"type": "http.disconnect"}
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}

        return Request(scope, receive)

    return _make
