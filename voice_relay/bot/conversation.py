"""
Client for the ElevenLabs Conversational AI WebSocket protocol.

A Conversation connects one call to a conversational agent and drives an
AudioInterface with it: caller audio captured by the interface is streamed to
the agent as user_audio_chunk messages, and agent audio, interruptions and
transcripts coming back are dispatched to the interface and the callbacks.

Audio is exchanged in the agent's configured format. For telephony the agent
must be configured for ulaw_8000 input and output; the relay does not transcode.
"""

import asyncio
import base64
import json
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import aiohttp
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from voice_relay.bot.audio_bridge import AudioInterface
from voice_relay.config.constants import (
    AUDIO_FORMAT_ULAW_8000,
    CONVERSATION_WS_URL,
    DEFAULT_CONNECT_TIMEOUT,
    LOGGER_NAME,
    MODE_LISTENING,
    MODE_SPEAKING,
    SIGNED_URL_ENDPOINT,
)
from voice_relay.config.settings import RelayConfig
from voice_relay.exceptions import ConversationStartError

logger = logging.getLogger(LOGGER_NAME)

# WebSocket configuration for the agent connection
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_PING_INTERVAL = 20
WS_PING_TIMEOUT = 20
WS_CLOSE_TIMEOUT = 5

# Message types that arrive many times per second and are not worth logging
NOISY_MESSAGE_TYPES = {"ping", "audio", "vad_score", "internal_vad_score", "internal_turn_probability"}


class Conversation:
    """
    One conversational agent session.

    Lifecycle: start_session() connects and starts the audio interface,
    end_session() stops the interface and closes the connection, and
    wait_for_session_end() returns once the receive loop has finished.
    """

    def __init__(
        self,
        agent_id: str,
        audio_interface: AudioInterface,
        *,
        api_key: Optional[str] = None,
        requires_auth: bool = False,
        endpoint: str = CONVERSATION_WS_URL,
        signed_url_endpoint: str = SIGNED_URL_ENDPOINT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        dynamic_variables: Optional[Dict[str, str]] = None,
        callback_agent_response: Optional[Callable[[str], None]] = None,
        callback_agent_response_correction: Optional[Callable[[str, str], None]] = None,
        callback_user_transcript: Optional[Callable[[str], None]] = None,
        callback_mode_change: Optional[Callable[[str], None]] = None,
        callback_end_session: Optional[Callable[[], None]] = None,
    ):
        self.agent_id = agent_id
        self.audio_interface = audio_interface
        self.api_key = api_key
        self.requires_auth = requires_auth
        self.endpoint = endpoint
        self.signed_url_endpoint = signed_url_endpoint
        self.connect_timeout = connect_timeout
        self.dynamic_variables = dynamic_variables or {}

        self.callback_agent_response = callback_agent_response
        self.callback_agent_response_correction = callback_agent_response_correction
        self.callback_user_transcript = callback_user_transcript
        self.callback_mode_change = callback_mode_change
        self.callback_end_session = callback_end_session

        self.conversation_id: Optional[str] = None
        self.mode = MODE_LISTENING
        self._ws = None
        self._receive_task: Optional[asyncio.Task] = None
        self._last_interrupt_id = 0
        self._closing = False

    @classmethod
    def from_config(cls, config: RelayConfig, audio_interface: AudioInterface, **kwargs: Any) -> "Conversation":
        return cls(
            config.agent_id,
            audio_interface,
            api_key=config.api_key,
            requires_auth=config.requires_auth,
            endpoint=config.conversation_endpoint,
            signed_url_endpoint=config.signed_url_endpoint,
            connect_timeout=config.connect_timeout,
            **kwargs,
        )

    async def start_session(self) -> None:
        """
        Connect to the agent and start the audio interface.

        Raises:
            ConversationStartError: If the session could not be established
        """
        if self._ws is not None:
            raise ConversationStartError("Conversation session already started")

        try:
            url = await self._resolve_url()
            logger.info(f"Connecting to conversational agent {self.agent_id}")
            self._ws = await asyncio.wait_for(
                websockets.connect(
                    url,
                    max_size=WS_MAX_SIZE,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=WS_PING_TIMEOUT,
                    close_timeout=WS_CLOSE_TIMEOUT,
                ),
                timeout=self.connect_timeout,
            )
            await self._ws.send(json.dumps(self._initiation_message()))
        except asyncio.TimeoutError as e:
            await self._close_socket()
            raise ConversationStartError(f"Timed out connecting to agent after {self.connect_timeout}s") from e
        except (OSError, WebSocketException, aiohttp.ClientError) as e:
            await self._close_socket()
            raise ConversationStartError(f"Failed to connect to agent: {e}") from e

        try:
            await self.audio_interface.start(self._send_user_audio)
        except Exception:
            await self._close_socket()
            raise
        self._receive_task = asyncio.create_task(self._receive_loop(), name=f"conversation-{self.agent_id}")
        logger.info("Conversation session started")

    async def end_session(self) -> None:
        """Stop the audio interface and close the agent connection."""
        self._closing = True
        await self.audio_interface.stop()
        await self._close_socket()
        logger.info(f"Conversation session ended: {self.conversation_id}")

    async def wait_for_session_end(self) -> Optional[str]:
        """
        Wait for the receive loop to finish.

        Returns:
            The conversation ID assigned by the agent, if any
        """
        if self._receive_task is not None:
            await asyncio.wait({self._receive_task})
        return self.conversation_id

    async def _resolve_url(self) -> str:
        if not self.requires_auth:
            return f"{self.endpoint}?{urlencode({'agent_id': self.agent_id})}"

        # Authenticated agents are reached through a short-lived signed URL
        timeout = aiohttp.ClientTimeout(total=self.connect_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(
                self.signed_url_endpoint,
                params={"agent_id": self.agent_id},
                headers={"xi-api-key": self.api_key or ""},
            ) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise ConversationStartError(f"Failed to get signed URL: {response.status} - {error_text}")
                data = await response.json()

        signed_url = data.get("signed_url")
        if not signed_url:
            raise ConversationStartError("No signed_url in response")
        logger.debug("Got signed URL for authenticated agent")
        return signed_url

    def _initiation_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"type": "conversation_initiation_client_data"}
        if self.dynamic_variables:
            message["dynamic_variables"] = self.dynamic_variables
        return message

    async def _send_user_audio(self, frame: bytes) -> None:
        """Input callback handed to the audio interface."""
        if self._ws is None or self._closing:
            return
        try:
            await self._ws.send(json.dumps({"user_audio_chunk": base64.b64encode(frame).decode("ascii")}))
        except ConnectionClosed as e:
            logger.debug(f"Agent connection closed while sending audio: {e}")

    async def _send(self, message: Dict[str, Any]) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            logger.debug(f"Agent connection closed while sending {message.get('type')}: {e}")

    async def _receive_loop(self) -> None:
        """Dispatch agent messages until the connection closes."""
        try:
            async for message in self._ws:
                if self._closing:
                    break
                try:
                    await self._handle_message(message)
                except Exception as e:
                    logger.error(f"Error handling agent message: {e}", exc_info=True)
        except ConnectionClosed as e:
            logger.info(f"Agent connection closed: {e}")
        except asyncio.CancelledError:
            logger.debug("Conversation receive loop cancelled")
            raise
        finally:
            if not self._closing:
                logger.info("Conversation ended by the agent")
                if self.callback_end_session is not None:
                    self.callback_end_session()

    async def _handle_message(self, raw_message: str) -> None:
        try:
            data = json.loads(raw_message)
        except json.JSONDecodeError:
            logger.warning(f"Received invalid JSON from agent: {str(raw_message)[:100]}")
            return

        msg_type = data.get("type", "")
        if msg_type not in NOISY_MESSAGE_TYPES:
            logger.debug(f"Received agent message type: {msg_type}")

        if msg_type == "conversation_initiation_metadata":
            self._handle_initiation_metadata(data.get("conversation_initiation_metadata_event", {}))

        elif msg_type == "audio":
            await self._handle_audio(data.get("audio_event", {}))

        elif msg_type == "interruption":
            event = data.get("interruption_event", {})
            self._last_interrupt_id = int(event.get("event_id", self._last_interrupt_id))
            self._set_mode(MODE_LISTENING)
            await self.audio_interface.interrupt()

        elif msg_type == "agent_response":
            text = data.get("agent_response_event", {}).get("agent_response", "")
            if text and self.callback_agent_response is not None:
                self.callback_agent_response(text.strip())

        elif msg_type == "agent_response_correction":
            event = data.get("agent_response_correction_event", {})
            if self.callback_agent_response_correction is not None:
                self.callback_agent_response_correction(
                    event.get("original_agent_response", "").strip(),
                    event.get("corrected_agent_response", "").strip(),
                )

        elif msg_type == "user_transcript":
            text = data.get("user_transcription_event", {}).get("user_transcript", "")
            self._set_mode(MODE_LISTENING)
            if text and self.callback_user_transcript is not None:
                self.callback_user_transcript(text.strip())

        elif msg_type == "ping":
            event = data.get("ping_event", {})
            await self._send({"type": "pong", "event_id": event.get("event_id")})

        elif msg_type == "error":
            logger.error(f"Agent reported an error: {data}")

        else:
            logger.debug(f"Unhandled agent message type: {msg_type}")

    def _handle_initiation_metadata(self, metadata: Dict[str, Any]) -> None:
        self.conversation_id = metadata.get("conversation_id")
        logger.info(f"Conversation initialized: {self.conversation_id}")
        for key in ("user_input_audio_format", "agent_output_audio_format"):
            audio_format = metadata.get(key)
            if audio_format and audio_format != AUDIO_FORMAT_ULAW_8000:
                logger.warning(f"Agent {key} is {audio_format}, telephony expects {AUDIO_FORMAT_ULAW_8000}")

    async def _handle_audio(self, event: Dict[str, Any]) -> None:
        # Audio generated before the latest interruption must not be played
        event_id = int(event.get("event_id", 0) or 0)
        if event_id and event_id <= self._last_interrupt_id:
            logger.debug(f"Skipping audio event {event_id} from before interruption {self._last_interrupt_id}")
            return
        audio_b64 = event.get("audio_base_64")
        if not audio_b64:
            return
        self._set_mode(MODE_SPEAKING)
        await self.audio_interface.output(base64.b64decode(audio_b64))

    def _set_mode(self, mode: str) -> None:
        if mode == self.mode:
            return
        self.mode = mode
        if self.callback_mode_change is not None:
            self.callback_mode_change(mode)

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error closing agent connection: {e}")
