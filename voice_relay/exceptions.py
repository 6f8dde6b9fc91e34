"""
Exception types raised by the relay.

Every relay failure derives from RelayError so the HTTP layer can tell relay
faults apart from framework errors.
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class MalformedMessageError(RelayError):
    """A single inbound telephony envelope could not be decoded."""


class TransportClosedError(RelayError):
    """The telephony WebSocket was closed by either side."""


class StreamNotStartedError(RelayError):
    """An outbound envelope was attempted before the stream identifier was known."""


class ConversationStartError(RelayError):
    """The conversational agent session could not be established."""


class RelayTeardownError(RelayError):
    """A step of the shutdown sequence failed; the session is closed regardless."""


class BridgeStateError(RelayError):
    """The audio device contract was used out of order."""
