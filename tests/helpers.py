"""Shared fakes for relay tests."""

import asyncio
import base64
import json
from typing import Any, Callable, Dict, List, Optional, Union

from voice_relay.exceptions import ConversationStartError

SILENCE_20MS = b"\xff" * 160


def start_event(stream_sid: str = "SID1", call_sid: str = "CA123") -> Dict[str, Any]:
    return {
        "event": "start",
        "sequenceNumber": "1",
        "start": {
            "streamSid": stream_sid,
            "callSid": call_sid,
            "tracks": ["inbound"],
            "customParameters": {},
            "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
        },
        "streamSid": stream_sid,
    }


def media_event(frame: bytes, stream_sid: str = "SID1", track: str = "inbound") -> Dict[str, Any]:
    return {
        "event": "media",
        "sequenceNumber": "2",
        "media": {
            "track": track,
            "chunk": "1",
            "timestamp": "5",
            "payload": base64.b64encode(frame).decode("ascii"),
        },
        "streamSid": stream_sid,
    }


def stop_event(stream_sid: str = "SID1") -> Dict[str, Any]:
    return {"event": "stop", "sequenceNumber": "3", "streamSid": stream_sid, "stop": {"callSid": "CA123"}}


class FakeTwilioWebSocket:
    """Stands in for a FastAPI WebSocket carrying a Twilio media stream.

    Inbound messages are fed with feed()/disconnect(); everything the relay
    sends is recorded, parsed, in `sent`.
    """

    def __init__(self, messages: Optional[List[Union[str, Dict[str, Any]]]] = None):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: List[Dict[str, Any]] = []
        self.accepted = False
        self.closed = False
        self.close_code: Optional[int] = None
        self.send_gate: Optional[asyncio.Event] = None
        for message in messages or []:
            self.feed(message)

    def feed(self, message: Union[str, Dict[str, Any]]) -> None:
        text = message if isinstance(message, str) else json.dumps(message)
        self.incoming.put_nowait({"type": "websocket.receive", "text": text})

    def disconnect(self, code: int = 1000) -> None:
        self.incoming.put_nowait({"type": "websocket.disconnect", "code": code})

    async def accept(self) -> None:
        self.accepted = True

    async def receive(self) -> Dict[str, Any]:
        return await self.incoming.get()

    async def send_text(self, text: str) -> None:
        if self.closed:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.close_code = code

    def events(self) -> List[str]:
        return [message["event"] for message in self.sent]

    def media_frames(self) -> List[bytes]:
        return [base64.b64decode(m["media"]["payload"]) for m in self.sent if m["event"] == "media"]


class FakeConversation:
    """Conversation double that drives the audio interface like the real engine."""

    def __init__(self, audio_interface, fail_start: bool = False, fail_end: bool = False):
        self.audio_interface = audio_interface
        self.fail_start = fail_start
        self.fail_end = fail_end
        self.received: List[bytes] = []
        self.stream_sids: List[Optional[str]] = []
        self.calls: List[str] = []

    async def start_session(self) -> None:
        self.calls.append("start")
        if self.fail_start:
            raise ConversationStartError("agent unavailable")
        await self.audio_interface.start(self._on_input)

    async def _on_input(self, frame: bytes) -> None:
        self.received.append(frame)
        self.stream_sids.append(self.audio_interface.transport.stream_sid)

    async def end_session(self) -> None:
        self.calls.append("end")
        await self.audio_interface.stop()
        if self.fail_end:
            raise RuntimeError("close failed")

    async def wait_for_session_end(self) -> Optional[str]:
        self.calls.append("wait")
        return "conv-1"


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll until predicate() is true or fail after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
