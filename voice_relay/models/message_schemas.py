"""
Pydantic models for the Twilio Media Streams message schemas.

This module defines structured data models for the JSON envelopes exchanged over
the Twilio Media Streams WebSocket, providing validation for inbound events and
exact serialization for outbound ones.
"""

import base64
import binascii
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

# Twilio sends counters as strings, but some tooling emits plain integers
Counter = Optional[Union[str, int]]


def decode_payload(value: str) -> bytes:
    """Decode a base64 audio payload, rejecting anything that is not strict base64."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 encoded audio data: {e}") from e


def encode_payload(frame: bytes) -> str:
    """Encode raw audio bytes for an outbound media envelope."""
    return base64.b64encode(frame).decode("ascii")


# Inbound messages
class InboundMessage(BaseModel):
    """Base model for envelopes received from Twilio."""

    event: str = Field(..., description="Event name")
    sequenceNumber: Counter = Field(None, description="Message sequence number")
    streamSid: Optional[str] = Field(None, description="Stream identifier, absent on 'connected'")


class ConnectedMessage(InboundMessage):
    """First message on a new stream; carries no call information."""

    event: Literal["connected"]
    protocol: Optional[str] = None
    version: Optional[str] = None


class StartMetadata(BaseModel):
    """Payload of the 'start' event."""

    streamSid: str = Field(..., min_length=1, description="Identifier for this media stream")
    callSid: Optional[str] = Field(None, description="Identifier of the call the stream belongs to")
    accountSid: Optional[str] = None
    tracks: List[str] = Field(default_factory=list)
    customParameters: Dict[str, str] = Field(default_factory=dict)
    mediaFormat: Optional[Dict[str, Any]] = None


class StartMessage(InboundMessage):
    """Model for the 'start' event which assigns the stream identifier."""

    event: Literal["start"]
    start: StartMetadata


class MediaPayload(BaseModel):
    """Payload of an inbound 'media' event."""

    payload: str = Field(..., description="Base64-encoded mu-law audio")
    track: Optional[str] = Field(None, description="inbound or outbound")
    chunk: Counter = None
    timestamp: Counter = None

    @field_validator("payload")
    def validate_payload(cls, v):
        """Validate that the payload is non-empty base64."""
        if not v:
            raise ValueError("Audio payload cannot be empty")
        decode_payload(v)
        return v

    def decode(self) -> bytes:
        return decode_payload(self.payload)


class MediaMessage(InboundMessage):
    """Model for an inbound 'media' event carrying caller audio."""

    event: Literal["media"]
    media: MediaPayload


class MarkMessage(InboundMessage):
    """Playback marker echoed back by Twilio."""

    event: Literal["mark"]
    mark: Dict[str, str] = Field(default_factory=dict)


class StopMessage(InboundMessage):
    """Model for the 'stop' event sent when the call leg ends."""

    event: Literal["stop"]
    stop: Optional[Dict[str, Any]] = None


TwilioInboundMessage = Annotated[
    Union[ConnectedMessage, StartMessage, MediaMessage, MarkMessage, StopMessage],
    Field(discriminator="event"),
]

inbound_message_adapter: TypeAdapter = TypeAdapter(TwilioInboundMessage)


# Outbound messages
class OutboundMedia(BaseModel):
    payload: str = Field(..., description="Base64-encoded mu-law audio")


class MediaResponse(BaseModel):
    """Model for a 'media' envelope sent to Twilio for playback."""

    event: Literal["media"] = "media"
    streamSid: str
    media: OutboundMedia

    @classmethod
    def from_frame(cls, stream_sid: str, frame: bytes) -> "MediaResponse":
        return cls(streamSid=stream_sid, media=OutboundMedia(payload=encode_payload(frame)))


class ClearResponse(BaseModel):
    """Model for a 'clear' envelope, flushing audio Twilio has buffered for playback."""

    event: Literal["clear"] = "clear"
    streamSid: str


OutgoingMessage = Union[MediaResponse, ClearResponse]
