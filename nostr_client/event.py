"""Event value object: construction, id, signing, verification and validation."""

import json
import logging
import re
import time
from enum import IntEnum
from typing import Any

from .crypto import (
    compute_event_id,
    derive_public_key,
    normalize_public_key,
    schnorr_sign,
    schnorr_verify,
)
from .exceptions import FormatError, ValidationError

logger = logging.getLogger(__name__)

MAX_CONTENT_BYTES = 64 * 1024

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")
_HEX128 = re.compile(r"^[0-9a-fA-F]{128}$")

EVENT_FIELDS = ("id", "pubkey", "created_at", "kind", "tags", "content", "sig")


class EventKind(IntEnum):
    SET_METADATA = 0
    TEXT_NOTE = 1
    RECOMMEND_RELAY = 2


def _freeze_tags(tags) -> tuple[tuple[str, ...], ...]:
    return tuple(tuple(tag) for tag in (tags or ()))


class _HashedField:
    """Attribute that invalidates ``id`` and ``sig`` whenever it is assigned."""

    def __init__(self, convert=None) -> None:
        self._convert = convert

    def __set_name__(self, owner, name: str) -> None:
        self._attr = "_" + name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        return getattr(obj, self._attr)

    def __set__(self, obj, value) -> None:
        if self._convert is not None:
            value = self._convert(value)
        setattr(obj, self._attr, value)
        obj.id = None
        obj.sig = None


class Event:
    """A Nostr event.

    ``pubkey``, ``created_at``, ``kind``, ``tags`` and ``content`` are the
    hashed fields; assigning any of them clears ``id`` and ``sig``. Tags are
    held as tuples so they cannot be edited in place.
    """

    pubkey = _HashedField()
    created_at = _HashedField()
    kind = _HashedField()
    tags = _HashedField(_freeze_tags)
    content = _HashedField()

    def __init__(
        self,
        pubkey: str,
        created_at: int,
        kind: int,
        tags=(),
        content: str = "",
        id: str | None = None,
        sig: str | None = None,
    ) -> None:
        self.pubkey = pubkey
        self.created_at = created_at
        self.kind = kind
        self.tags = tags
        self.content = content
        self.id = id
        self.sig = sig

    # -- Identity ------------------------------------------------------------

    def compute_id(self) -> str:
        return compute_event_id(
            self.pubkey, self.created_at, self.kind, self.tags, self.content
        )

    @property
    def is_signed(self) -> bool:
        return bool(self.id and self.sig)

    def sign(self, private_key) -> "Event":
        """Compute the id and sign it.

        A key that does not match ``pubkey`` is logged and signed anyway;
        relays will reject the result.
        """
        derived = derive_public_key(private_key)
        if not self.pubkey:
            self.pubkey = derived
        elif derived != self.pubkey.lower():
            logger.warning(
                "Signing key %s does not match event pubkey %s", derived, self.pubkey
            )
        event_id = self.compute_id()
        sig = schnorr_sign(event_id, private_key)
        self.id = event_id
        self.sig = sig
        return self

    def verify_signature(self) -> bool:
        """True when ``id`` matches the content and ``sig`` verifies under ``pubkey``."""
        if not self.is_signed:
            return False
        try:
            if self.compute_id() != self.id.lower():
                return False
        except (TypeError, ValueError, AttributeError):
            return False
        return schnorr_verify(self.id, self.sig, self.pubkey)

    def validate(self) -> None:
        """Raise ValidationError if the event is structurally invalid."""
        if not isinstance(self.id, str) or not _HEX64.match(self.id):
            raise ValidationError("Event id must be 64 hex characters")
        if not isinstance(self.pubkey, str) or not _HEX64.match(self.pubkey):
            raise ValidationError("Event pubkey must be 64 hex characters")
        if not isinstance(self.sig, str) or not _HEX128.match(self.sig):
            raise ValidationError("Event sig must be 128 hex characters")
        if isinstance(self.created_at, bool) or not isinstance(self.created_at, int):
            raise ValidationError("Event created_at must be an integer")
        if self.created_at <= 0:
            raise ValidationError("Event created_at must be a positive timestamp")
        if isinstance(self.kind, bool) or not isinstance(self.kind, int) or self.kind < 0:
            raise ValidationError("Event kind must be a non-negative integer")
        if not isinstance(self.content, str):
            raise ValidationError("Event content must be a string")
        if len(self.content.encode("utf-8")) > MAX_CONTENT_BYTES:
            raise ValidationError(
                f"Event content exceeds {MAX_CONTENT_BYTES} bytes"
            )
        for tag in self.tags:
            if not tag or not isinstance(tag[0], str) or not tag[0]:
                raise ValidationError("Each tag needs a non-empty name")
            if not all(isinstance(part, str) for part in tag):
                raise ValidationError("Tag elements must be strings")
        if self.compute_id() != self.id.lower():
            raise ValidationError("Event id does not match its content")

    # -- Serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        """Build an event from its wire form. Shape errors raise ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError("Event must be a JSON object")
        missing = [f for f in EVENT_FIELDS if f not in data]
        if missing:
            raise ValidationError(f"Event is missing fields: {', '.join(missing)}")
        tags = data["tags"]
        if not isinstance(tags, list) or not all(isinstance(t, list) for t in tags):
            raise ValidationError("Event tags must be a list of lists")
        return cls(
            pubkey=data["pubkey"],
            created_at=data["created_at"],
            kind=data["kind"],
            tags=tags,
            content=data["content"],
            id=data["id"],
            sig=data["sig"],
        )

    @classmethod
    def from_json(cls, raw: str) -> "Event":
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise FormatError(f"Event is not valid JSON: {exc}") from exc
        return cls.from_dict(data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Event):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"Event(id={self.id!r}, kind={self.kind!r}, pubkey={self.pubkey!r})"


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def create_event(
    pubkey,
    kind: int,
    content: str,
    tags=None,
    created_at: int | None = None,
) -> Event:
    """New unsigned event stamped with the current time."""
    return Event(
        pubkey=normalize_public_key(pubkey),
        created_at=int(time.time()) if created_at is None else created_at,
        kind=int(kind),
        tags=tags or (),
        content=content,
    )


def sign_event(event: Event, private_key) -> Event:
    return event.sign(private_key)


def verify_signature(event: Event) -> bool:
    return event.verify_signature()


def check_event(event: Event) -> None:
    """Raise ValidationError unless the event is signed, well formed and verifies."""
    if not event.is_signed:
        raise ValidationError("Event is not signed")
    event.validate()
    if not event.verify_signature():
        raise ValidationError(f"Event {event.id} has an invalid signature")
