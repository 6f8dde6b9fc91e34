"""
Transport adapter for the Twilio Media Streams WebSocket protocol.

This module translates between the relay's frame/event model and the JSON
envelopes Twilio exchanges over a media-stream WebSocket:
- Inbound 'start', 'media', 'mark' and 'stop' events are validated and returned
  as typed messages; the stream identifier is captured from 'start'.
- Outbound audio is wrapped in 'media' envelopes and playback is flushed with
  'clear' envelopes, both addressed to the captured stream identifier.
"""

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from voice_relay.config.constants import LOGGER_NAME
from voice_relay.exceptions import MalformedMessageError, StreamNotStartedError, TransportClosedError
from voice_relay.models.message_schemas import (
    ClearResponse,
    MediaResponse,
    OutgoingMessage,
    StartMessage,
    TwilioInboundMessage,
    inbound_message_adapter,
)
from voice_relay.models.stream_session import StreamSession

logger = logging.getLogger(LOGGER_NAME)


def parse_message(text: str) -> TwilioInboundMessage:
    """
    Decode one inbound Twilio envelope.

    Args:
        text: Raw JSON text received on the WebSocket

    Returns:
        The typed inbound message

    Raises:
        MalformedMessageError: If the text is not JSON, the event is unknown,
            required fields are missing or the audio payload is not base64
    """
    try:
        return inbound_message_adapter.validate_json(text)
    except ValidationError as e:
        raise MalformedMessageError(f"Invalid Twilio message: {e.errors()[0]['msg']}") from e


class TwilioTransport:
    """
    Duplex Twilio Media Streams connection for one call leg.

    The stream identifier is written once, by receive(), when the 'start' event
    arrives, and published through an asyncio.Event so the output side can wait
    for it.
    """

    def __init__(self, websocket: WebSocket, session: Optional[StreamSession] = None):
        self.websocket = websocket
        self.session = session or StreamSession(connection_id=uuid.uuid4().hex)
        self._stream_ready = asyncio.Event()
        self._closed = False

    @property
    def stream_sid(self) -> Optional[str]:
        return self.session.stream_sid

    @property
    def closed(self) -> bool:
        return self._closed

    async def accept(self) -> None:
        await self.websocket.accept()
        logger.info(f"Media stream connection accepted: {self.session.connection_id}")

    async def receive(self) -> TwilioInboundMessage:
        """
        Wait for and decode the next inbound envelope.

        Raises:
            TransportClosedError: If the connection was closed
            MalformedMessageError: If this one message could not be decoded;
                the connection remains usable
        """
        if self._closed:
            raise TransportClosedError("Media stream connection already closed")

        try:
            message = await self.websocket.receive()
        except (WebSocketDisconnect, RuntimeError) as e:
            self._closed = True
            raise TransportClosedError(f"Media stream disconnected: {e}") from e

        if message.get("type") == "websocket.disconnect":
            self._closed = True
            raise TransportClosedError(f"Media stream disconnected with code {message.get('code')}")

        text = message.get("text")
        if text is None:
            data = message.get("bytes")
            if data is None:
                raise MalformedMessageError(f"Unexpected ASGI message type: {message.get('type')}")
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedMessageError("Binary frame is not UTF-8 JSON") from e

        event = parse_message(text)
        if isinstance(event, StartMessage):
            self._capture_stream(event)
        return event

    def _capture_stream(self, message: StartMessage) -> None:
        start = message.start
        if not self.session.assign_stream(start.streamSid, start.callSid):
            logger.warning(
                f"Ignoring second start event for stream {start.streamSid}; "
                f"stream already assigned {self.session.stream_sid}"
            )
            return
        self.session.custom_parameters.update(start.customParameters)
        self._stream_ready.set()
        logger.info(f"Media stream started: streamSid={start.streamSid} callSid={start.callSid}")

    async def wait_for_stream(self, timeout: float) -> bool:
        """Wait up to `timeout` seconds for the stream identifier; True once it is known."""
        if self._stream_ready.is_set():
            return True
        try:
            await asyncio.wait_for(self._stream_ready.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def send_media(self, frame: bytes) -> None:
        """Send one audio frame for playback on the call."""
        await self._send(MediaResponse.from_frame(self._require_stream(), frame))

    async def send_clear(self) -> None:
        """Ask Twilio to discard any audio it has buffered for playback."""
        await self._send(ClearResponse(streamSid=self._require_stream()))
        logger.debug(f"Sent clear for stream {self.stream_sid}")

    def _require_stream(self) -> str:
        if self.stream_sid is None:
            raise StreamNotStartedError("No stream identifier yet; 'start' event not received")
        return self.stream_sid

    async def _send(self, message: OutgoingMessage) -> None:
        if self._closed:
            raise TransportClosedError("Media stream connection already closed")
        try:
            await self.websocket.send_text(message.model_dump_json())
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            self._closed = True
            raise TransportClosedError(f"Media stream closed while sending {message.event}: {e}") from e

    def release_stream(self) -> None:
        """Forget the stream identifier once the call leg is torn down."""
        if self.session.stream_sid is not None:
            logger.debug(f"Releasing stream {self.session.stream_sid}")
        self.session.stream_sid = None
        self._stream_ready.clear()

    async def close(self, code: int = 1000) -> None:
        """Close the WebSocket if it is still open."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError) as e:
            logger.debug(f"Media stream already closed: {e}")
        logger.info(f"Media stream connection closed: {self.session.connection_id}")
