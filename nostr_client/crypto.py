"""Canonical event serialization, BIP-340 Schnorr signing and key handling."""

import hashlib
import json

from coincurve import PrivateKey
from coincurve.keys import PublicKeyXOnly

from . import bech32
from .exceptions import CryptoError, FormatError


# ---------------------------------------------------------------------------
# Canonical serialization (NIP-01)
# ---------------------------------------------------------------------------


def serialize_event(
    pubkey: str, created_at: int, kind: int, tags, content: str
) -> bytes:
    """UTF-8 bytes of ``[0, pubkey, created_at, kind, tags, content]``.

    Compact separators, non-ASCII emitted verbatim, tags as nested arrays
    in their original order.
    """
    commitment = json.dumps(
        [0, pubkey.lower(), created_at, kind, [list(t) for t in tags], content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return commitment.encode("utf-8")


def compute_event_id(
    pubkey: str, created_at: int, kind: int, tags, content: str
) -> str:
    """SHA256 of the canonical commitment array, as lowercase hex."""
    return hashlib.sha256(
        serialize_event(pubkey, created_at, kind, tags, content)
    ).hexdigest()


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def _as_bytes(value, what: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return bytes.fromhex(value)
    except (ValueError, TypeError) as exc:
        raise FormatError(f"{what} is not valid hex") from exc


def normalize_public_key(value) -> str:
    """Return the lowercase hex x-only form of a public key.

    Accepts a 32-byte x-only key, a 33-byte compressed key (the 02/03
    parity byte is dropped; BIP-340 keys carry no parity), or an npub.
    """
    if isinstance(value, str) and value[:5].lower() == bech32.NPUB_PREFIX + "1":
        return bech32.decode_nip19(value)[1]
    raw = _as_bytes(value, "Public key")
    if len(raw) == 33 and raw[0] in (2, 3):
        raw = raw[1:]
    if len(raw) != 32:
        raise FormatError(f"Public key must be 32 or 33 bytes, got {len(raw)}")
    return raw.hex()


def _private_key(private_key) -> PrivateKey:
    try:
        if isinstance(private_key, str) and private_key[:5].lower() == bech32.NSEC_PREFIX + "1":
            private_key = bech32.decode_nip19(private_key)[1]
        raw = _as_bytes(private_key, "Private key")
        if len(raw) != 32:
            raise FormatError(f"Private key must be 32 bytes, got {len(raw)}")
        return PrivateKey(raw)
    except ValueError as exc:
        raise CryptoError(f"Invalid private key: {exc}") from exc


def derive_public_key(private_key) -> str:
    """BIP340 x-only public key (32 bytes) as lowercase hex."""
    # format(compressed=True) -> [02/03] + 32-byte x; drop the prefix byte
    return _private_key(private_key).public_key.format(compressed=True)[1:].hex()


# ---------------------------------------------------------------------------
# Schnorr
# ---------------------------------------------------------------------------


def schnorr_sign(event_id, private_key) -> str:
    """BIP340 Schnorr signature over the 32-byte event ID, as hex."""
    sk = _private_key(private_key)
    try:
        message = _as_bytes(event_id, "Event id")
    except FormatError as exc:
        raise CryptoError(str(exc)) from exc
    if len(message) != 32:
        raise CryptoError(f"Event id must be 32 bytes, got {len(message)}")
    return sk.sign_schnorr(message).hex()


def schnorr_verify(event_id, signature, public_key) -> bool:
    """Check a BIP340 signature. Malformed input verifies as False."""
    try:
        message = _as_bytes(event_id, "Event id")
        sig = _as_bytes(signature, "Signature")
        xonly = bytes.fromhex(normalize_public_key(public_key))
        if len(message) != 32 or len(sig) != 64:
            return False
        return PublicKeyXOnly(xonly).verify(sig, message)
    except (FormatError, ValueError, TypeError):
        return False


# ---------------------------------------------------------------------------
# KeyPair
# ---------------------------------------------------------------------------


class KeyPair:
    """A private key and its derived x-only public key.

    Immutable after construction. Never serialized into events.
    """

    def __init__(self, private_key) -> None:
        sk = _private_key(private_key)
        self._private_key = sk.secret.hex()
        self._public_key = sk.public_key.format(compressed=True)[1:].hex()

    @classmethod
    def generate(cls) -> "KeyPair":
        return cls(PrivateKey().secret)

    @classmethod
    def from_nsec(cls, nsec: str) -> "KeyPair":
        return cls(bech32.to_hex(nsec, bech32.NSEC_PREFIX))

    # -- Properties ----------------------------------------------------------

    @property
    def private_key(self) -> str:
        return self._private_key

    @property
    def public_key(self) -> str:
        return self._public_key

    @property
    def npub(self) -> str:
        return bech32.encode_npub(self._public_key)

    @property
    def nsec(self) -> str:
        return bech32.encode_nsec(self._private_key)

    def sign(self, event_id) -> str:
        return schnorr_sign(event_id, self._private_key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyPair):
            return NotImplemented
        return self._private_key == other._private_key

    def __hash__(self) -> int:
        return hash(self._public_key)

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self._public_key!r})"
