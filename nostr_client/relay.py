"""One relay connection: connect, reconnect, rate-limited send, inbound parsing."""

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable
from urllib.parse import urlparse

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from .config import ClientConfig
from .event import Event, check_event
from .exceptions import FormatError, ProtocolError, TransportError, ValidationError
from .messages import (
    EventMessage,
    OkMessage,
    encode,
    event_message,
    parse_relay_message,
)
from .ratelimit import RateLimiter

logger = logging.getLogger(__name__)


class RelayState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


def validate_relay_url(url: str) -> str:
    """Return ``url`` if it is a ws:// or wss:// URL with a host."""
    if not isinstance(url, str):
        raise FormatError("Relay URL must be a string")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("ws", "wss") or not parsed.netloc:
        raise FormatError(f"Relay URL must start with ws:// or wss://: {url!r}")
    return url.strip()


async def call_handler(handler: Callable[..., Any] | None, *args: Any) -> None:
    if handler is None:
        return
    result = handler(*args)
    if inspect.isawaitable(result):
        await result


class RelaySession:
    """State machine around a single WebSocket connection to one relay.

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED | FAILED.

    Every transport open, close and ``disconnect()`` bumps a generation
    counter. Read loops and reconnect timers remember the generation they
    started under and do nothing once it is stale.
    """

    def __init__(
        self,
        url: str,
        config: ClientConfig | None = None,
        *,
        connector: Callable[..., Any] | None = None,
        on_message: Callable[..., Any] | None = None,
        on_state_change: Callable[..., Any] | None = None,
        on_error: Callable[..., Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = validate_relay_url(url)
        self._config = config or ClientConfig()
        self._connector = connector or websockets.connect
        self._on_message = on_message
        self._on_state_change = on_state_change
        self._on_error = on_error

        self._state = RelayState.DISCONNECTED
        self._ws: Any = None
        self._generation = 0
        self._attempts = 0
        self._closed = False
        self._limiter = RateLimiter(
            self._config.rate_limit_messages, self._config.rate_limit_interval, clock
        )
        self._send_lock = asyncio.Lock()
        self._close_lock = asyncio.Lock()
        self._pending_ok: dict[str, list[asyncio.Future]] = {}

        self._connect_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None

    # -- Properties ----------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is RelayState.CONNECTED

    @property
    def pending(self) -> int:
        """Frames waiting for a connection or for rate-limit capacity."""
        return self._limiter.pending

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    # -- Lifecycle -----------------------------------------------------------

    async def connect(self) -> bool:
        """Open the connection, or join an attempt already in flight.

        Returns True when the session ends up CONNECTED.
        """
        if self._state is RelayState.CONNECTED:
            return True
        self._closed = False
        if self._state is RelayState.FAILED:
            self._attempts = 0
        task = self._spawn_connect()
        await asyncio.wait({task})
        return self._state is RelayState.CONNECTED

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting. Always allowed."""
        self._closed = True
        self._generation += 1
        current = asyncio.current_task()
        tasks = [
            t
            for t in (
                self._connect_task,
                self._reconnect_task,
                self._reader_task,
                self._tick_task,
            )
            if t is not None and t is not current and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        self._connect_task = self._reconnect_task = None
        self._reader_task = self._tick_task = None

        async with self._close_lock:
            ws, self._ws = self._ws, None
            await self._close_transport(ws)
            self._attempts = 0
        await self._set_state(RelayState.DISCONNECTED)
        logger.info("Disconnected from %s", self._url)

    def _spawn_connect(self) -> asyncio.Task:
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self._open())
        return self._connect_task

    async def _open(self) -> None:
        self._generation += 1
        generation = self._generation
        await self._set_state(RelayState.CONNECTING)
        logger.info("Connecting to %s", self._url)

        try:
            ws = await self._connector(self._url, open_timeout=self._config.open_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            if generation != self._generation:
                return
            await self._handle_error(
                TransportError(f"Cannot connect to relay {self._url}: {exc}", self._url)
            )
            await self._handle_close(generation)
            return

        if generation != self._generation:
            await self._close_transport(ws)
            return

        self._ws = ws
        self._attempts = 0
        logger.info("Connected to %s", self._url)
        await self._set_state(RelayState.CONNECTED)
        if generation != self._generation:
            return
        self._reader_task = asyncio.create_task(self._read_loop(ws, generation))
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.create_task(self._tick_loop())
        await self._flush()

    async def _handle_error(self, error: Exception) -> None:
        logger.warning("Relay %s error: %s", self._url, error)
        await self._set_state(RelayState.FAILED)
        await self._report(error)

    async def _handle_close(self, generation: int) -> None:
        async with self._close_lock:
            if generation != self._generation:
                return
            self._generation += 1
            generation = self._generation
            ws, self._ws = self._ws, None
            reader = self._reader_task
            if reader is not None and reader is not asyncio.current_task():
                reader.cancel()
            await self._close_transport(ws)

        # Handlers run outside the lock so they may call disconnect().
        await self._set_state(RelayState.DISCONNECTED)
        if generation != self._generation or self._closed or not self._config.auto_reconnect:
            return
        if self._attempts >= self._config.max_reconnect_attempts:
            logger.error(
                "Giving up on %s after %d reconnect attempts",
                self._url,
                self._attempts,
            )
            await self._set_state(RelayState.FAILED)
            await self._report(
                TransportError(
                    f"Relay {self._url} unreachable after {self._attempts} reconnect attempts",
                    self._url,
                )
            )
            return
        self._attempts += 1
        delay = self._config.reconnect_base_delay * self._attempts
        logger.info(
            "Reconnecting to %s in %.1fs (attempt %d/%d)",
            self._url,
            delay,
            self._attempts,
            self._config.max_reconnect_attempts,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay, generation))

    async def _reconnect_after(self, delay: float, generation: int) -> None:
        await asyncio.sleep(delay)
        if generation != self._generation or self._closed:
            return
        self._spawn_connect()

    async def _close_transport(self, ws: Any) -> None:
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("Error closing %s: %s", self._url, exc)

    async def _set_state(self, state: RelayState) -> None:
        if state is self._state:
            return
        self._state = state
        await self._notify(self._on_state_change, self, state)

    async def _notify(self, handler: Callable[..., Any] | None, *args: Any) -> None:
        """Run an owner handler; a raising handler is logged and reported."""
        try:
            await call_handler(handler, *args)
        except Exception as exc:
            logger.exception("Handler for %s failed", self._url)
            await self._report(exc)

    async def _report(self, error: Exception) -> None:
        try:
            await call_handler(self._on_error, self._url, error)
        except Exception:
            logger.exception("Error handler for %s failed", self._url)

    # -- Outbound ------------------------------------------------------------

    async def send(self, message: list | str) -> bool:
        """Send a frame now, or queue it.

        Returns True if the frame went out immediately. Frames queued while
        disconnected trigger a connect, also after ``disconnect()``, and go
        out FIFO once CONNECTED; frames over the rate limit go out on a
        later tick.
        """
        frame = message if isinstance(message, str) else encode(message)
        self._limiter.submit(frame)
        if self._state is RelayState.CONNECTED:
            sent = await self._flush()
            return any(f is frame for f in sent)
        logger.debug("Queued frame for %s (%s)", self._url, self._state.value)
        self._closed = False
        if self._state is not RelayState.CONNECTING:
            if self._reconnect_task is None or self._reconnect_task.done():
                if self._state is RelayState.FAILED:
                    self._attempts = 0
                self._spawn_connect()
        return False

    async def send_event(self, event: Event) -> bool:
        return await self.send(event_message(event))

    async def publish(self, event: Event, timeout: float) -> OkMessage | None:
        """Send ``event`` and wait up to ``timeout`` seconds for the relay's OK."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        waiters = self._pending_ok.setdefault(event.id, [])
        waiters.append(future)
        try:
            await self.send_event(event)
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            logger.warning("No OK from %s for event %s", self._url, event.id)
            return None
        finally:
            waiters.remove(future)
            if not waiters and self._pending_ok.get(event.id) is waiters:
                del self._pending_ok[event.id]

    def discard_queued(self, predicate: Callable[[str], bool]) -> int:
        """Drop queued frames matching ``predicate``; returns how many."""
        return self._limiter.discard(predicate)

    async def _flush(self) -> list[str]:
        sent: list[str] = []
        async with self._send_lock:
            frames = self._limiter.drain()
            for index, frame in enumerate(frames):
                ws = self._ws
                if self._state is not RelayState.CONNECTED or ws is None:
                    self._requeue(frames[index:])
                    break
                try:
                    await ws.send(frame)
                except (ConnectionClosed, OSError) as exc:
                    self._requeue(frames[index:])
                    logger.warning("Send to %s failed: %s", self._url, exc)
                    await self._handle_close(self._generation)
                    break
                logger.debug("Sent to %s: %s", self._url, frame)
                sent.append(frame)
        return sent

    def _requeue(self, frames: list[str]) -> None:
        for frame in reversed(frames):
            self._limiter.requeue(frame)

    async def _tick_loop(self) -> None:
        while self._tick_task is asyncio.current_task():
            await asyncio.sleep(self._config.tick_interval)
            if self._state is RelayState.CONNECTED and self._limiter.pending:
                await self._flush()

    # -- Inbound -------------------------------------------------------------

    async def _read_loop(self, ws: Any, generation: int) -> None:
        error: Exception | None = None
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except ConnectionClosedError as exc:
            error = TransportError(f"Relay {self._url} closed abnormally: {exc}", self._url)
        except OSError as exc:
            error = TransportError(f"Relay {self._url} read failed: {exc}", self._url)

        if generation != self._generation:
            return
        if error is not None:
            await self._handle_error(error)
        await self._handle_close(generation)

    async def _dispatch(self, raw: str | bytes) -> None:
        logger.debug("Received from %s: %s", self._url, raw)
        try:
            message = parse_relay_message(raw)
        except (FormatError, ProtocolError) as exc:
            logger.warning("Dropping frame from %s: %s", self._url, exc)
            return
        except ValidationError as exc:
            logger.warning("Dropping malformed event from %s: %s", self._url, exc)
            await self._report(exc)
            return

        if isinstance(message, EventMessage):
            try:
                check_event(message.event)
            except ValidationError as exc:
                logger.warning("Dropping invalid event from %s: %s", self._url, exc)
                await self._report(exc)
                return
        elif isinstance(message, OkMessage):
            for future in self._pending_ok.get(message.event_id, ()):
                if not future.done():
                    future.set_result(message)

        await self._notify(self._on_message, self, message)

    def __repr__(self) -> str:
        return f"RelaySession({self._url!r}, state={self._state.value})"
