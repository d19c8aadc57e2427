"""Subscription filters and the event matcher."""

import re
from dataclasses import dataclass, field
from typing import Any

from .event import Event
from .exceptions import ValidationError

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")
_TAG_KEY = re.compile(r"^#([A-Za-z])$")


@dataclass
class Filter:
    """A NIP-01 filter.

    Populated fields are ANDed, values within a field are ORed. ``None`` or
    an empty list leaves a field unconstrained. ``since`` is inclusive and
    ``until`` exclusive. ``tags`` maps a single tag letter to accepted values
    and goes over the wire as ``#<letter>``.
    """

    ids: list[str] | None = None
    authors: list[str] | None = None
    kinds: list[int] | None = None
    since: int | None = None
    until: int | None = None
    limit: int | None = None
    tags: dict[str, list[str]] = field(default_factory=dict)

    # -- Matching ------------------------------------------------------------

    def matches(self, event: Event) -> bool:
        if self.ids and (event.id or "").lower() not in {i.lower() for i in self.ids}:
            return False
        if self.authors and event.pubkey.lower() not in {
            a.lower() for a in self.authors
        }:
            return False
        if self.kinds and event.kind not in self.kinds:
            return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.until is not None and event.created_at >= self.until:
            return False
        for letter, values in self.tags.items():
            if not values:
                continue
            accepted = set(values)
            if not any(
                len(tag) > 1 and tag[0] == letter and tag[1] in accepted
                for tag in event.tags
            ):
                return False
        return True

    def validate(self) -> None:
        """Raise ValidationError on malformed ids, bounds, limit or tag keys."""
        for name in ("ids", "authors"):
            for value in getattr(self, name) or ():
                if not isinstance(value, str) or not _HEX64.match(value):
                    raise ValidationError(f"Filter {name} entries must be 64 hex characters")
        for kind in self.kinds or ():
            if isinstance(kind, bool) or not isinstance(kind, int) or kind < 0:
                raise ValidationError("Filter kinds must be non-negative integers")
        if self.since is not None and self.until is not None and self.since > self.until:
            raise ValidationError("Filter since must not be after until")
        if self.limit is not None and self.limit <= 0:
            raise ValidationError("Filter limit must be positive")
        for letter in self.tags:
            if not isinstance(letter, str) or not _TAG_KEY.match("#" + letter):
                raise ValidationError(f"Filter tag key {letter!r} must be a single letter")

    # -- Wire form -----------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for name in ("ids", "authors", "kinds"):
            values = getattr(self, name)
            if values:
                data[name] = list(values)
        for name in ("since", "until", "limit"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        for letter, values in self.tags.items():
            data["#" + letter] = list(values)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Filter":
        if not isinstance(data, dict):
            raise ValidationError("Filter must be a JSON object")
        tags = {}
        for key, values in data.items():
            match = _TAG_KEY.match(key)
            if match:
                tags[match.group(1)] = list(values)
        return cls(
            ids=data.get("ids"),
            authors=data.get("authors"),
            kinds=data.get("kinds"),
            since=data.get("since"),
            until=data.get("until"),
            limit=data.get("limit"),
            tags=tags,
        )


def event_matches_filter(event: Event, filter: Filter) -> bool:
    return filter.matches(event)


def matches_any(event: Event, filters) -> bool:
    return any(f.matches(event) for f in filters)
