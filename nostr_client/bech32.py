"""Bech32 text codec and NIP-19 key/note identifiers.

Checksums and 8<->5 bit regrouping come from the ``bech32`` package, using
the BIP-173 constant (1) that NIP-19 identifiers require. Decoding checks
the checksum directly instead of going through ``bech32_decode`` so the
BIP-173 90-character limit does not apply; NIP-19 payloads may exceed it.
"""

from bech32 import CHARSET, bech32_encode, bech32_verify_checksum, convertbits

from .exceptions import FormatError

_CHECKSUM_LENGTH = 6
SEPARATOR = "1"

NPUB_PREFIX = "npub"
NSEC_PREFIX = "nsec"
NOTE_PREFIX = "note"
NIP19_PREFIXES = (NPUB_PREFIX, NSEC_PREFIX, NOTE_PREFIX)


def _check_hrp(hrp: str) -> None:
    if not hrp:
        raise FormatError("Empty human-readable part")
    for c in hrp:
        if not 33 <= ord(c) <= 126:
            raise FormatError(f"Invalid character {c!r} in human-readable part")


# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------


def encode(hrp: str, data: bytes) -> str:
    """Encode ``data`` under ``hrp``; the result is always lowercase."""
    _check_hrp(hrp)
    if hrp != hrp.lower():
        raise FormatError("Human-readable part must be lowercase")
    five = convertbits(bytes(data), 8, 5)
    if five is None:
        raise FormatError("Cannot convert data to 5-bit groups")
    return bech32_encode(hrp, five)


def decode(bech: str) -> tuple[str, bytes]:
    """Decode a bech32 string into ``(hrp, data)``.

    Upper-case input is accepted; mixed case is not.
    """
    if not isinstance(bech, str):
        raise FormatError("Bech32 input must be a string")
    if bech.lower() != bech and bech.upper() != bech:
        raise FormatError("Mixed-case bech32 string")
    bech = bech.lower()

    pos = bech.rfind(SEPARATOR)
    if pos < 1:
        raise FormatError("Missing separator or empty human-readable part")
    if len(bech) - pos - 1 < _CHECKSUM_LENGTH:
        raise FormatError("Data part shorter than the checksum")

    hrp = bech[:pos]
    _check_hrp(hrp)

    data: list[int] = []
    for c in bech[pos + 1 :]:
        value = CHARSET.find(c)
        if value < 0:
            raise FormatError(f"Invalid bech32 character {c!r}")
        data.append(value)

    if not bech32_verify_checksum(hrp, data):
        raise FormatError("Invalid bech32 checksum")

    decoded = convertbits(data[:-_CHECKSUM_LENGTH], 5, 8, False)
    if decoded is None:
        raise FormatError("Invalid padding in bech32 data")
    return hrp, bytes(decoded)


# ---------------------------------------------------------------------------
# NIP-19
# ---------------------------------------------------------------------------


def _hex_to_32_bytes(value: str, what: str) -> bytes:
    try:
        raw = bytes.fromhex(value)
    except (ValueError, TypeError) as exc:
        raise FormatError(f"{what} is not valid hex") from exc
    if len(raw) != 32:
        raise FormatError(f"{what} must be 32 bytes, got {len(raw)}")
    return raw


def encode_npub(pubkey_hex: str) -> str:
    return encode(NPUB_PREFIX, _hex_to_32_bytes(pubkey_hex, "Public key"))


def encode_nsec(privkey_hex: str) -> str:
    return encode(NSEC_PREFIX, _hex_to_32_bytes(privkey_hex, "Private key"))


def encode_note(event_id_hex: str) -> str:
    return encode(NOTE_PREFIX, _hex_to_32_bytes(event_id_hex, "Event id"))


def decode_nip19(value: str) -> tuple[str, str]:
    """Decode an npub/nsec/note string into ``(prefix, lowercase hex)``."""
    hrp, data = decode(value)
    if hrp not in NIP19_PREFIXES:
        raise FormatError(f"Unsupported NIP-19 prefix {hrp!r}")
    if len(data) != 32:
        raise FormatError(f"NIP-19 {hrp} payload must be 32 bytes, got {len(data)}")
    return hrp, data.hex()


def to_hex(value: str, expected_prefix: str) -> str:
    """Accept either a 64-char hex string or a NIP-19 string with ``expected_prefix``."""
    if value[:5].lower() in {p + SEPARATOR for p in NIP19_PREFIXES}:
        prefix, hex_value = decode_nip19(value)
        if prefix != expected_prefix:
            raise FormatError(f"Expected {expected_prefix}, got {prefix}")
        return hex_value
    return _hex_to_32_bytes(value, expected_prefix).hex()
