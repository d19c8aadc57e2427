"""Client configuration resolved from an explicit dict, then the environment."""

import os
from dataclasses import dataclass, field
from typing import Any

DEFAULT_RELAYS = (
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.nostr.band",
)


@dataclass
class ClientConfig:
    relays: list[str] = field(default_factory=lambda: list(DEFAULT_RELAYS))
    private_key: str | None = None
    auto_reconnect: bool = True
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 2.0
    rate_limit_messages: int = 10
    rate_limit_interval: float = 1.0
    tick_interval: float = 0.1
    open_timeout: float = 10.0
    publish_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must not be negative")
        if self.reconnect_base_delay < 0:
            raise ValueError("reconnect_base_delay must not be negative")
        if self.rate_limit_messages <= 0:
            raise ValueError("rate_limit_messages must be positive")
        for name in ("rate_limit_interval", "tick_interval", "open_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _parse_number(value: Any, name: str, cast):
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _resolve(config: dict[str, Any], key: str, env: str) -> Any:
    value = config.get(key)
    if value is None:
        value = os.environ.get(env)
    return value


def load_config(config: dict[str, Any] | None = None) -> ClientConfig:
    """Build a ClientConfig from ``config``, falling back to NOSTR_* env vars.

    Raises ValueError on values that cannot be parsed.
    """
    config = config or {}
    kwargs: dict[str, Any] = {}

    relays = _resolve(config, "relays", "NOSTR_RELAYS")
    if relays is not None:
        if isinstance(relays, str):
            relays = [r.strip() for r in relays.split(",") if r.strip()]
        kwargs["relays"] = list(relays)

    private_key = config.get("private_key") or os.environ.get("NOSTR_PRIVATE_KEY")
    if private_key:
        kwargs["private_key"] = private_key

    auto_reconnect = _resolve(config, "auto_reconnect", "NOSTR_AUTO_RECONNECT")
    if auto_reconnect is not None:
        kwargs["auto_reconnect"] = _parse_bool(auto_reconnect, "auto_reconnect")

    for key, env, cast in (
        ("max_reconnect_attempts", "NOSTR_MAX_RECONNECT_ATTEMPTS", int),
        ("reconnect_base_delay", "NOSTR_RECONNECT_DELAY", float),
        ("rate_limit_messages", "NOSTR_RATE_LIMIT", int),
        ("rate_limit_interval", "NOSTR_RATE_INTERVAL", float),
        ("open_timeout", "NOSTR_OPEN_TIMEOUT", float),
    ):
        value = _resolve(config, key, env)
        if value is not None:
            kwargs[key] = _parse_number(value, key, cast)

    for key in ("tick_interval", "publish_timeout"):
        if config.get(key) is not None:
            kwargs[key] = _parse_number(config[key], key, float)

    return ClientConfig(**kwargs)
