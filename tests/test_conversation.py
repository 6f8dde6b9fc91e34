"""
Tests for the conversational agent client.

The agent WebSocket is replaced by FakeAgentSocket so message handling and the
session lifecycle can be exercised without a network.
"""

import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import InvalidURI

from voice_relay.bot.audio_bridge import AudioInterface
from voice_relay.bot.conversation import Conversation
from voice_relay.config.constants import MODE_LISTENING, MODE_SPEAKING
from voice_relay.config.settings import RelayConfig
from voice_relay.exceptions import ConversationStartError


class FakeAgentSocket:
    """Async-iterable stand-in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def feed(self, message):
        self._incoming.put_nowait(json.dumps(message))

    def remote_close(self):
        self._incoming.put_nowait(None)

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


@pytest.fixture
def audio_interface():
    return AsyncMock(spec=AudioInterface)


@pytest.fixture
def conversation(audio_interface):
    return Conversation("agent_test", audio_interface)


def audio_message(frame, event_id):
    return {
        "type": "audio",
        "audio_event": {"audio_base_64": base64.b64encode(frame).decode("ascii"), "event_id": event_id},
    }


@pytest.mark.asyncio
async def test_audio_is_sent_to_interface(conversation, audio_interface):
    modes = []
    conversation.callback_mode_change = modes.append

    await conversation._handle_message(json.dumps(audio_message(b"\x7f" * 160, 1)))

    audio_interface.output.assert_awaited_once_with(b"\x7f" * 160)
    assert conversation.mode == MODE_SPEAKING
    assert modes == [MODE_SPEAKING]


@pytest.mark.asyncio
async def test_interruption_flushes_interface_and_drops_stale_audio(conversation, audio_interface):
    await conversation._handle_message(json.dumps({"type": "interruption", "interruption_event": {"event_id": 5}}))
    await conversation._handle_message(json.dumps(audio_message(b"old", 4)))
    await conversation._handle_message(json.dumps(audio_message(b"new", 6)))

    audio_interface.interrupt.assert_awaited_once()
    audio_interface.output.assert_awaited_once_with(b"new")


@pytest.mark.asyncio
async def test_ping_is_answered_with_pong(conversation):
    conversation._ws = FakeAgentSocket()

    await conversation._handle_message(json.dumps({"type": "ping", "ping_event": {"event_id": 9}}))

    assert conversation._ws.sent == [{"type": "pong", "event_id": 9}]


@pytest.mark.asyncio
async def test_transcripts_reach_callbacks(conversation):
    conversation.callback_agent_response = MagicMock()
    conversation.callback_agent_response_correction = MagicMock()
    conversation.callback_user_transcript = MagicMock()

    await conversation._handle_message(
        json.dumps({"type": "agent_response", "agent_response_event": {"agent_response": " Hello! "}})
    )
    await conversation._handle_message(
        json.dumps({"type": "user_transcript", "user_transcription_event": {"user_transcript": "hi there"}})
    )
    await conversation._handle_message(
        json.dumps(
            {
                "type": "agent_response_correction",
                "agent_response_correction_event": {
                    "original_agent_response": "Hello, how can I",
                    "corrected_agent_response": "Hello",
                },
            }
        )
    )

    conversation.callback_agent_response.assert_called_once_with("Hello!")
    conversation.callback_user_transcript.assert_called_once_with("hi there")
    conversation.callback_agent_response_correction.assert_called_once_with("Hello, how can I", "Hello")
    assert conversation.mode == MODE_LISTENING


@pytest.mark.asyncio
async def test_initiation_metadata_sets_conversation_id(conversation):
    await conversation._handle_message(
        json.dumps(
            {
                "type": "conversation_initiation_metadata",
                "conversation_initiation_metadata_event": {
                    "conversation_id": "conv-42",
                    "user_input_audio_format": "ulaw_8000",
                    "agent_output_audio_format": "ulaw_8000",
                },
            }
        )
    )

    assert conversation.conversation_id == "conv-42"


@pytest.mark.asyncio
async def test_invalid_json_is_ignored(conversation, audio_interface):
    await conversation._handle_message("not json")

    audio_interface.output.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_session_connects_and_streams_user_audio(audio_interface):
    socket = FakeAgentSocket()
    conversation = Conversation("agent_test", audio_interface, dynamic_variables={"caller": "+15550100"})

    with patch("voice_relay.bot.conversation.websockets.connect", new=AsyncMock(return_value=socket)) as connect:
        await conversation.start_session()

    assert connect.call_args.args[0].endswith("?agent_id=agent_test")
    assert socket.sent[0] == {
        "type": "conversation_initiation_client_data",
        "dynamic_variables": {"caller": "+15550100"},
    }

    input_callback = audio_interface.start.await_args.args[0]
    await input_callback(b"\xff" * 160)
    assert socket.sent[1] == {"user_audio_chunk": base64.b64encode(b"\xff" * 160).decode("ascii")}

    socket.feed(audio_message(b"agent", 1))
    await asyncio.sleep(0.01)
    audio_interface.output.assert_awaited_once_with(b"agent")

    await conversation.end_session()
    assert await asyncio.wait_for(conversation.wait_for_session_end(), timeout=1.0) is None


@pytest.mark.asyncio
async def test_start_session_twice_is_rejected(conversation):
    with patch("voice_relay.bot.conversation.websockets.connect", new=AsyncMock(return_value=FakeAgentSocket())):
        await conversation.start_session()
        with pytest.raises(ConversationStartError):
            await conversation.start_session()
    await conversation.end_session()


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [OSError("connection refused"), InvalidURI("bad", "not a uri")])
async def test_connect_failure_raises_start_error(conversation, audio_interface, error):
    with patch("voice_relay.bot.conversation.websockets.connect", new=AsyncMock(side_effect=error)):
        with pytest.raises(ConversationStartError):
            await conversation.start_session()

    audio_interface.start.assert_not_awaited()


@pytest.mark.asyncio
async def test_interface_start_failure_closes_socket(conversation, audio_interface):
    socket = FakeAgentSocket()
    audio_interface.start.side_effect = RuntimeError("already started")

    with patch("voice_relay.bot.conversation.websockets.connect", new=AsyncMock(return_value=socket)):
        with pytest.raises(RuntimeError):
            await conversation.start_session()

    assert socket.closed


@pytest.mark.asyncio
async def test_end_session_does_not_report_remote_end(audio_interface):
    ended = MagicMock()
    conversation = Conversation("agent_test", audio_interface, callback_end_session=ended)
    socket = FakeAgentSocket()

    with patch("voice_relay.bot.conversation.websockets.connect", new=AsyncMock(return_value=socket)):
        await conversation.start_session()
    await conversation.end_session()
    await asyncio.wait_for(conversation.wait_for_session_end(), timeout=1.0)

    audio_interface.stop.assert_awaited_once()
    assert socket.closed
    ended.assert_not_called()


@pytest.mark.asyncio
async def test_agent_closing_connection_reports_end(audio_interface):
    ended = MagicMock()
    conversation = Conversation("agent_test", audio_interface, callback_end_session=ended)
    socket = FakeAgentSocket()

    with patch("voice_relay.bot.conversation.websockets.connect", new=AsyncMock(return_value=socket)):
        await conversation.start_session()
    socket.feed(
        {
            "type": "conversation_initiation_metadata",
            "conversation_initiation_metadata_event": {"conversation_id": "conv-7"},
        }
    )
    socket.remote_close()

    assert await asyncio.wait_for(conversation.wait_for_session_end(), timeout=1.0) == "conv-7"
    ended.assert_called_once_with()


def test_from_config_uses_relay_settings(audio_interface):
    config = RelayConfig(agent_id="agent_cfg", api_key="xi-key", requires_auth=True, connect_timeout=3)

    conversation = Conversation.from_config(config, audio_interface)

    assert conversation.agent_id == "agent_cfg"
    assert conversation.api_key == "xi-key"
    assert conversation.requires_auth is True
    assert conversation.connect_timeout == 3
