"""
Bot module relaying call audio between Twilio and a conversational agent.

Key components:
- FrameQueue: Bounded FIFO of outbound audio frames with drop-oldest overflow and
  an atomic drain used for barge-in.
- TwilioTransport: Codec and connection wrapper for the Twilio Media Streams
  WebSocket protocol ('start', 'media', 'stop' in; 'media', 'clear' out).
- AudioInterface / TwilioAudioBridge: The audio device contract the agent session
  drives (start, stop, output, interrupt) and its Twilio implementation.
- Conversation: Client for the ElevenLabs Conversational AI WebSocket protocol.
- SessionController: Owns one call from accept to teardown.

Usage examples:
```python
from voice_relay.bot import SessionController
from voice_relay.config.settings import RelayConfig

config = RelayConfig.from_env()

@app.websocket("/media-stream")
async def media_stream(websocket: WebSocket):
    controller = SessionController(websocket, config)
    await controller.run()
```
"""

from voice_relay.bot.audio_bridge import AudioInterface, TwilioAudioBridge
from voice_relay.bot.conversation import Conversation
from voice_relay.bot.frame_queue import FrameQueue
from voice_relay.bot.session_controller import SessionController
from voice_relay.bot.twilio_transport import TwilioTransport, parse_message

__all__ = [
    "AudioInterface",
    "Conversation",
    "FrameQueue",
    "SessionController",
    "TwilioAudioBridge",
    "TwilioTransport",
    "parse_message",
]
