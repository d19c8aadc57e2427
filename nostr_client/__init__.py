"""Nostr client core: keys, events, filters and a reconnecting relay pool."""

from .client import NostrClient, create_pool, generate_subscription_id
from .config import ClientConfig, load_config
from .crypto import KeyPair, derive_public_key, normalize_public_key
from .event import Event, EventKind, create_event, sign_event, verify_signature
from .exceptions import (
    CryptoError,
    FormatError,
    NostrError,
    ProtocolError,
    TransportError,
    ValidationError,
)
from .filters import Filter, event_matches_filter
from .pool import RelayPool, Subscription
from .relay import RelaySession, RelayState

__version__ = "0.1.0"

__all__ = [
    "ClientConfig",
    "CryptoError",
    "Event",
    "EventKind",
    "Filter",
    "FormatError",
    "KeyPair",
    "NostrClient",
    "NostrError",
    "ProtocolError",
    "RelayPool",
    "RelaySession",
    "RelayState",
    "Subscription",
    "TransportError",
    "ValidationError",
    "create_event",
    "create_pool",
    "derive_public_key",
    "event_matches_filter",
    "generate_subscription_id",
    "load_config",
    "normalize_public_key",
    "sign_event",
    "verify_signature",
]
