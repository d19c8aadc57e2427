"""Client-to-relay framing and relay-to-client message parsing (NIP-01)."""

import json
from dataclasses import dataclass
from typing import Any

from .event import Event
from .exceptions import FormatError, ProtocolError
from .filters import Filter


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


def event_message(event: Event) -> list:
    return ["EVENT", event.to_dict()]


def req_message(subscription_id: str, *filters: Filter) -> list:
    if not filters:
        raise ValueError("REQ needs at least one filter")
    return ["REQ", subscription_id, *(f.to_dict() for f in filters)]


def close_message(subscription_id: str) -> list:
    return ["CLOSE", subscription_id]


def encode(message: list) -> str:
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventMessage:
    subscription_id: str
    event: Event


@dataclass(frozen=True)
class EoseMessage:
    subscription_id: str


@dataclass(frozen=True)
class NoticeMessage:
    message: str


@dataclass(frozen=True)
class OkMessage:
    event_id: str
    accepted: bool
    message: str = ""


@dataclass(frozen=True)
class AuthMessage:
    challenge: str


@dataclass(frozen=True)
class ClosedMessage:
    subscription_id: str
    message: str = ""


RelayMessage = (
    EventMessage | EoseMessage | NoticeMessage | OkMessage | AuthMessage | ClosedMessage
)


def _string(msg: list, index: int, what: str) -> str:
    if len(msg) <= index or not isinstance(msg[index], str):
        raise ProtocolError(f"{msg[0]} message needs a string {what}")
    return msg[index]


def parse_relay_message(raw: str | bytes) -> RelayMessage:
    """Parse one relay frame.

    Raises FormatError for invalid JSON, ProtocolError for an unknown type or
    wrong shape, ValidationError for a malformed event body.
    """
    try:
        msg: Any = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise FormatError(f"Relay frame is not valid JSON: {exc}") from exc

    if not isinstance(msg, list) or not msg or not isinstance(msg[0], str):
        raise ProtocolError("Relay frame must be a JSON array starting with a type")

    kind = msg[0]
    if kind == "EVENT":
        sub_id = _string(msg, 1, "subscription id")
        if len(msg) < 3:
            raise ProtocolError("EVENT message is missing the event")
        return EventMessage(sub_id, Event.from_dict(msg[2]))
    if kind == "EOSE":
        return EoseMessage(_string(msg, 1, "subscription id"))
    if kind == "NOTICE":
        return NoticeMessage(_string(msg, 1, "message"))
    if kind == "OK":
        event_id = _string(msg, 1, "event id")
        if len(msg) < 3 or not isinstance(msg[2], bool):
            raise ProtocolError("OK message needs a boolean status")
        note = msg[3] if len(msg) > 3 and isinstance(msg[3], str) else ""
        return OkMessage(event_id, msg[2], note)
    if kind == "AUTH":
        return AuthMessage(_string(msg, 1, "challenge"))
    if kind == "CLOSED":
        sub_id = _string(msg, 1, "subscription id")
        note = msg[2] if len(msg) > 2 and isinstance(msg[2], str) else ""
        return ClosedMessage(sub_id, note)
    raise ProtocolError(f"Unknown relay message type {kind!r}")
