"""Error taxonomy for the Nostr client."""


class NostrError(Exception):
    """Base class for every error raised by nostr_client."""


class FormatError(NostrError, ValueError):
    """Malformed identifier, hex string or JSON frame."""


class ValidationError(NostrError, ValueError):
    """An event or filter failed a structural or id check."""


class CryptoError(NostrError):
    """Key or signature input the signer cannot use."""


class TransportError(NostrError, ConnectionError):
    """Connecting to, sending to or reading from a relay failed."""

    def __init__(self, message: str, relay_url: str | None = None) -> None:
        super().__init__(message)
        self.relay_url = relay_url


class ProtocolError(NostrError):
    """A relay sent a message the client does not understand."""
