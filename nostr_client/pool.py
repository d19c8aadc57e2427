"""Relay pool: fan-out publish, pool-wide subscriptions, replay on reconnect."""

import asyncio
import json
import logging
import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

from .config import ClientConfig
from .event import Event, check_event
from .exceptions import ValidationError
from .filters import Filter, matches_any
from .messages import (
    AuthMessage,
    ClosedMessage,
    EoseMessage,
    EventMessage,
    NoticeMessage,
    OkMessage,
    close_message,
    encode,
    req_message,
)
from .relay import RelaySession, RelayState, call_handler, validate_relay_url

logger = logging.getLogger(__name__)

DEFAULT_DEDUPE_SIZE = 10_000


@dataclass
class Subscription:
    """A pool-wide subscription.

    ``relays`` holds the relay URLs the REQ is currently active on;
    ``eose_relays`` the ones that have sent EOSE since it was issued.
    """

    id: str
    filters: list[Filter]
    callback: Callable[..., Any]
    created_at: float = field(default_factory=time.time)
    relays: set[str] = field(default_factory=set)
    eose_relays: set[str] = field(default_factory=set)
    max_seen: int = DEFAULT_DEDUPE_SIZE
    _seen: OrderedDict = field(default_factory=OrderedDict, repr=False)

    @staticmethod
    def generate_id() -> str:
        return f"sub_{secrets.token_hex(4)}"

    @property
    def eose_received(self) -> bool:
        return bool(self.eose_relays)

    def mark_seen(self, event_id: str) -> bool:
        """Record ``event_id``; False if it was already delivered."""
        if event_id in self._seen:
            self._seen.move_to_end(event_id)
            return False
        self._seen[event_id] = None
        if len(self._seen) > self.max_seen:
            self._seen.popitem(last=False)
        return True


def _as_filters(filters) -> list[Filter]:
    if isinstance(filters, (Filter, dict)):
        filters = [filters]
    result = [f if isinstance(f, Filter) else Filter.from_dict(f) for f in filters]
    if not result:
        raise ValidationError("A subscription needs at least one filter")
    for f in result:
        f.validate()
    return result


def _is_req_for(frame: str, subscription_id: str) -> bool:
    if not frame.startswith('["REQ"'):
        return False
    try:
        return json.loads(frame)[1] == subscription_id
    except (ValueError, IndexError):
        return False


class RelayPool:
    """A set of relay sessions sharing one subscription registry.

    Sessions report back through callbacks; only the pool touches its own
    collections. Whenever a session reaches CONNECTED, every active
    subscription is re-sent to it once.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        connector: Callable[..., Any] | None = None,
        on_error: Callable[..., Any] | None = None,
        on_state_change: Callable[..., Any] | None = None,
        on_notice: Callable[..., Any] | None = None,
        on_ok: Callable[..., Any] | None = None,
        on_auth: Callable[..., Any] | None = None,
        dedupe_size: int = DEFAULT_DEDUPE_SIZE,
    ) -> None:
        self._config = config or ClientConfig(relays=[])
        self._connector = connector
        self._on_error = on_error
        self._on_state_change = on_state_change
        self._on_notice = on_notice
        self._on_ok = on_ok
        self._on_auth = on_auth
        self._dedupe_size = dedupe_size
        self._sessions: dict[str, RelaySession] = {}
        self._subscriptions: dict[str, Subscription] = {}

    # -- Properties ----------------------------------------------------------

    @property
    def relays(self) -> list[str]:
        return list(self._sessions)

    @property
    def connected_relays(self) -> list[str]:
        return [url for url, s in self._sessions.items() if s.is_connected]

    @property
    def subscriptions(self) -> dict[str, Subscription]:
        return dict(self._subscriptions)

    def session(self, url: str) -> RelaySession | None:
        return self._sessions.get(url)

    # -- Relay management ----------------------------------------------------

    def add_relay(self, url: str) -> bool:
        """Register a relay. Returns False if it is already in the pool."""
        url = validate_relay_url(url)
        if url in self._sessions:
            return False
        self._sessions[url] = RelaySession(
            url,
            self._config,
            connector=self._connector,
            on_message=self._handle_message,
            on_state_change=self._handle_state,
            on_error=self._handle_error,
        )
        logger.info("Added relay %s", url)
        return True

    async def remove_relay(self, url: str) -> bool:
        """Disconnect and forget a relay. Returns False if it was unknown."""
        session = self._sessions.pop(url, None)
        if session is None:
            return False
        await session.disconnect()
        for sub in self._subscriptions.values():
            sub.relays.discard(url)
            sub.eose_relays.discard(url)
        logger.info("Removed relay %s", url)
        return True

    async def connect(self, url: str) -> bool:
        session = self._sessions.get(url)
        if session is None:
            raise KeyError(url)
        return await session.connect()

    async def connect_all(self) -> dict[str, bool]:
        sessions = list(self._sessions.values())
        results = await asyncio.gather(*(s.connect() for s in sessions))
        return {s.url: ok for s, ok in zip(sessions, results)}

    async def close(self) -> None:
        """Disconnect every relay and drop all subscriptions."""
        sessions = list(self._sessions.values())
        await asyncio.gather(*(s.disconnect() for s in sessions))
        self._subscriptions.clear()

    disconnect_all = close

    # -- Publish -------------------------------------------------------------

    async def publish_event(
        self, event: Event, timeout: float | None = None
    ) -> dict[str, str]:
        """Send a signed event to every connected relay.

        Returns a status per relay: ``sent``, ``queued``, or, when waiting
        for OK, ``accepted``, ``rejected: <reason>`` or ``timeout``.
        Raises ValidationError for unsigned or unverifiable events.
        """
        try:
            check_event(event)
        except ValidationError as exc:
            logger.warning("Refusing to publish event %s: %s", event.id, exc)
            await call_handler(self._on_error, None, exc)
            raise

        sessions = [s for s in list(self._sessions.values()) if s.is_connected]
        if not sessions:
            logger.warning("No connected relays to publish event %s", event.id)
            return {}

        if timeout is None:
            timeout = self._config.publish_timeout
        if timeout is None:
            results = await asyncio.gather(*(s.send_event(event) for s in sessions))
            return {
                s.url: "sent" if sent else "queued" for s, sent in zip(sessions, results)
            }

        oks = await asyncio.gather(*(s.publish(event, timeout) for s in sessions))
        statuses = {}
        for session, ok in zip(sessions, oks):
            if ok is None:
                statuses[session.url] = "timeout"
            elif ok.accepted:
                statuses[session.url] = "accepted"
            else:
                statuses[session.url] = f"rejected: {ok.message}"
        return statuses

    # -- Subscriptions -------------------------------------------------------

    async def subscribe(
        self,
        subscription_id: str | None,
        filters,
        callback: Callable[..., Any],
    ) -> Subscription:
        """Register a subscription and send REQ to every connected relay.

        ``callback(event)`` may be a plain function or a coroutine function.
        Relays that connect later get the REQ when they reach CONNECTED.
        """
        sub = Subscription(
            id=subscription_id or Subscription.generate_id(),
            filters=_as_filters(filters),
            callback=callback,
            max_seen=self._dedupe_size,
        )
        if sub.id in self._subscriptions:
            logger.debug("Replacing subscription %s", sub.id)
        self._subscriptions[sub.id] = sub

        for session in list(self._sessions.values()):
            if session.is_connected:
                await self._send_req(session, sub)
        return sub

    async def unsubscribe(self, subscription_id: str) -> bool:
        sub = self._subscriptions.pop(subscription_id, None)
        if sub is None:
            return False
        frame = encode(close_message(sub.id))
        for session in list(self._sessions.values()):
            session.discard_queued(lambda f, sid=sub.id: _is_req_for(f, sid))
            if session.url in sub.relays and session.is_connected:
                await session.send(frame)
        sub.relays.clear()
        return True

    async def _send_req(self, session: RelaySession, sub: Subscription) -> None:
        if session.url in sub.relays:
            return
        sub.relays.add(session.url)
        await session.send(encode(req_message(sub.id, *sub.filters)))

    # -- Session callbacks ---------------------------------------------------

    async def _handle_state(self, session: RelaySession, state: RelayState) -> None:
        if state is RelayState.CONNECTED:
            for sub in list(self._subscriptions.values()):
                session.discard_queued(lambda f, sid=sub.id: _is_req_for(f, sid))
                await self._send_req(session, sub)
        elif state in (RelayState.DISCONNECTED, RelayState.FAILED):
            for sub in self._subscriptions.values():
                sub.relays.discard(session.url)
                sub.eose_relays.discard(session.url)
        await call_handler(self._on_state_change, session.url, state)

    async def _handle_error(self, url: str, error: Exception) -> None:
        await call_handler(self._on_error, url, error)

    async def _handle_message(self, session: RelaySession, message: Any) -> None:
        url = session.url
        if isinstance(message, EventMessage):
            await self._deliver(url, message)
        elif isinstance(message, EoseMessage):
            sub = self._subscriptions.get(message.subscription_id)
            if sub is not None:
                sub.eose_relays.add(url)
                logger.debug("EOSE for %s from %s", sub.id, url)
        elif isinstance(message, ClosedMessage):
            sub = self._subscriptions.get(message.subscription_id)
            if sub is not None:
                sub.relays.discard(url)
            logger.warning(
                "Relay %s closed subscription %s: %s",
                url,
                message.subscription_id,
                message.message,
            )
        elif isinstance(message, NoticeMessage):
            logger.info("NOTICE from %s: %s", url, message.message)
            await call_handler(self._on_notice, url, message.message)
        elif isinstance(message, OkMessage):
            if not message.accepted:
                logger.warning(
                    "Relay %s rejected %s: %s", url, message.event_id, message.message
                )
            await call_handler(self._on_ok, url, message)
        elif isinstance(message, AuthMessage):
            logger.info("AUTH challenge from %s", url)
            await call_handler(self._on_auth, url, message.challenge)

    async def _deliver(self, url: str, message: EventMessage) -> None:
        sub = self._subscriptions.get(message.subscription_id)
        event = message.event
        if sub is None:
            logger.debug("Event for unknown subscription %s from %s", message.subscription_id, url)
            return
        if not matches_any(event, sub.filters):
            logger.warning("Event %s from %s does not match %s", event.id, url, sub.id)
            return
        if not sub.mark_seen(event.id):
            return
        try:
            await call_handler(sub.callback, event)
        except Exception as exc:
            logger.exception("Subscription %s callback failed", sub.id)
            await call_handler(self._on_error, url, exc)
