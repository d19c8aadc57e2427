"""Shared fixtures: BIP-340 vectors, signed events and a fake WebSocket transport."""

import asyncio
import json
import os
from contextlib import contextmanager

import pytest
from websockets.exceptions import ConnectionClosedError

from nostr_client.config import ClientConfig
from nostr_client.event import Event

# BIP-340 test vector: secret key 1
SK1_HEX = "00" * 31 + "01"
SK1_PUBKEY = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"

# BIP-340 test vector 1
SK3_HEX = "b7e151628aed2a6abf7158809cf4f3c762e7160f38b4da56a784d9045190cfef"
SK3_PUBKEY = "dff1d77f2a671c5f36183726db2341be58feae1da2deced843240f7b502ba659"


# ---------------------------------------------------------------------------
# Environment variable helpers
# ---------------------------------------------------------------------------


@contextmanager
def override_env(**env_vars):
    """Temporarily set/unset environment variables, restoring originals on exit.

    Pass a value of ``None`` to unset a variable for the duration of the block.
    """
    saved: dict[str, str | None] = {}
    try:
        for key, value in env_vars.items():
            saved[key] = os.environ.get(key)
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        yield
    finally:
        for key, original in saved.items():
            if original is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = original


# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------

_CLOSE = object()
_ABORT = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.send_error: Exception | None = None
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, frame: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(frame)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_CLOSE)

    def feed(self, message) -> None:
        """Queue a frame as if the relay had sent it."""
        if not isinstance(message, str):
            message = json.dumps(message)
        self._incoming.put_nowait(message)

    def server_close(self, abnormal: bool = False) -> None:
        """Close from the relay side."""
        self._incoming.put_nowait(_ABORT if abnormal else _CLOSE)

    @property
    def sent_messages(self) -> list:
        return [json.loads(frame) for frame in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if item is _ABORT:
            raise ConnectionClosedError(None, None)
        return item


class FakeConnector:
    """Callable replacing ``websockets.connect``; records every socket it opens."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.fail_always = False
        self.calls: list[str] = []
        self.sockets: list[FakeWebSocket] = []
        self.by_url: dict[str, FakeWebSocket] = {}

    async def __call__(self, url: str, **kwargs) -> FakeWebSocket:
        self.calls.append(url)
        if self.fail_always or self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        self.by_url[url] = ws
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate()`` is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_config():
    """Config with no reconnect delay and a quick tick."""
    return ClientConfig(
        relays=[],
        reconnect_base_delay=0.0,
        tick_interval=0.01,
        rate_limit_messages=100,
    )


@pytest.fixture
def connector():
    return FakeConnector()


def make_signed_event(
    content: str = "hello",
    kind: int = 1,
    tags=None,
    created_at: int = 1700000000,
    private_key: str = SK1_HEX,
) -> Event:
    from nostr_client.crypto import derive_public_key

    event = Event(
        pubkey=derive_public_key(private_key),
        created_at=created_at,
        kind=kind,
        tags=tags or [],
        content=content,
    )
    return event.sign(private_key)


@pytest.fixture
def signed_event() -> Event:
    return make_signed_event()
