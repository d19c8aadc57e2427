"""High-level Nostr client: a key pair plus a relay pool."""

import json
import logging
import time
from typing import Any, Callable

from .config import ClientConfig, load_config
from .crypto import KeyPair, normalize_public_key
from .event import Event, EventKind
from .filters import Filter
from .pool import RelayPool, Subscription
from .relay import validate_relay_url

logger = logging.getLogger(__name__)


def generate_subscription_id() -> str:
    return Subscription.generate_id()


def create_pool(config: ClientConfig | dict[str, Any] | None = None, **kwargs: Any) -> RelayPool:
    """Build a RelayPool with every configured relay added (not yet connected)."""
    if not isinstance(config, ClientConfig):
        config = load_config(config)
    pool = RelayPool(config, **kwargs)
    for url in config.relays:
        pool.add_relay(url)
    return pool


class NostrClient:
    """Publish and subscribe as one identity across the configured relays.

    Derives the key pair eagerly at init for fail-fast validation. Without a
    private key the client can still subscribe but not publish.
    """

    def __init__(
        self,
        config: ClientConfig | dict[str, Any] | None = None,
        *,
        keypair: KeyPair | None = None,
        **pool_kwargs: Any,
    ) -> None:
        if not isinstance(config, ClientConfig):
            config = load_config(config)
        self._config = config

        # Derive keys eagerly (fail-fast on bad key)
        if keypair is None and config.private_key:
            keypair = KeyPair(config.private_key)
        self._keypair = keypair
        self._pool = create_pool(config, **pool_kwargs)

    # -- Properties ----------------------------------------------------------

    @property
    def pool(self) -> RelayPool:
        return self._pool

    @property
    def has_signing(self) -> bool:
        return self._keypair is not None

    @property
    def public_key(self) -> str | None:
        return self._keypair.public_key if self._keypair else None

    @property
    def npub(self) -> str | None:
        return self._keypair.npub if self._keypair else None

    # -- Lifecycle -----------------------------------------------------------

    async def start(self) -> dict[str, bool]:
        """Connect every configured relay."""
        return await self._pool.connect_all()

    async def close(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> "NostrClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- Publishing ----------------------------------------------------------

    def build_signed_event(self, kind: int, content: str, tags=None) -> Event:
        """Build and sign an event stamped with the current time."""
        if self._keypair is None:
            raise RuntimeError("No signing key configured")
        event = Event(
            pubkey=self._keypair.public_key,
            created_at=int(time.time()),
            kind=int(kind),
            tags=tags or (),
            content=content,
        )
        return event.sign(self._keypair.private_key)

    async def _publish(self, event: Event) -> dict[str, str]:
        statuses = await self._pool.publish_event(event)
        logger.info("Published %s to %d relays", event.id, len(statuses))
        return statuses

    async def publish_text_note(self, content: str, tags=None) -> dict[str, str]:
        return await self._publish(
            self.build_signed_event(EventKind.TEXT_NOTE, content, tags)
        )

    async def set_metadata(self, metadata: dict[str, Any]) -> dict[str, str]:
        """Publish a kind-0 profile (name, about, picture, ...)."""
        content = json.dumps(metadata, separators=(",", ":"), ensure_ascii=False)
        return await self._publish(
            self.build_signed_event(EventKind.SET_METADATA, content)
        )

    async def recommend_relay(self, url: str) -> dict[str, str]:
        return await self._publish(
            self.build_signed_event(EventKind.RECOMMEND_RELAY, validate_relay_url(url))
        )

    # -- Subscriptions -------------------------------------------------------

    async def subscribe(
        self, filters, callback: Callable[..., Any], subscription_id: str | None = None
    ) -> str:
        sub = await self._pool.subscribe(subscription_id, filters, callback)
        return sub.id

    async def subscribe_to_author(
        self, author: str, callback: Callable[..., Any], kinds=(EventKind.TEXT_NOTE,)
    ) -> str:
        """Follow one author's notes. ``author`` may be hex or an npub."""
        pubkey = normalize_public_key(author)
        return await self.subscribe(
            Filter(authors=[pubkey], kinds=[int(k) for k in kinds]), callback
        )

    async def subscribe_to_tags(
        self, hashtags, callback: Callable[..., Any], kinds=(EventKind.TEXT_NOTE,)
    ) -> str:
        """Follow notes carrying any of ``hashtags`` (the ``t`` tag)."""
        return await self.subscribe(
            Filter(kinds=[int(k) for k in kinds], tags={"t": list(hashtags)}), callback
        )

    async def unsubscribe(self, subscription_id: str) -> bool:
        return await self._pool.unsubscribe(subscription_id)
