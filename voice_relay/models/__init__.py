"""
Models module for wire schemas and call state in the voice relay.

Key components:
- message_schemas: Pydantic models for the Twilio Media Streams envelopes, with a
  discriminated union for inbound events and exact serializers for the outbound
  'media' and 'clear' envelopes.
- stream_session: The StreamSession record for one call leg, its SessionState
  lifecycle enum, and the SessionRegistry used for health reporting.

Usage examples:
```python
from voice_relay.models.message_schemas import MediaResponse, inbound_message_adapter

event = inbound_message_adapter.validate_json(raw_text)
reply = MediaResponse.from_frame("MZ123", b"\\xff" * 160)
await websocket.send_text(reply.model_dump_json())
```
"""

from voice_relay.models.message_schemas import (
    ClearResponse,
    ConnectedMessage,
    MarkMessage,
    MediaMessage,
    MediaResponse,
    OutgoingMessage,
    StartMessage,
    StopMessage,
    TwilioInboundMessage,
    inbound_message_adapter,
)
from voice_relay.models.stream_session import SessionRegistry, SessionState, StreamSession
