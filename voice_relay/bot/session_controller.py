"""
Lifecycle owner for one relayed call.

A SessionController accepts a Twilio media-stream WebSocket, establishes the
conversation with the agent, pumps inbound messages until the call ends and then
runs the single shutdown sequence every exit path converges on:

    IDLE -> ACCEPTING -> ACTIVE -> DRAINING -> CLOSED

Instances are single use; create one per call leg.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from fastapi import WebSocket

from voice_relay.bot.audio_bridge import TwilioAudioBridge
from voice_relay.bot.conversation import Conversation
from voice_relay.bot.twilio_transport import TwilioTransport
from voice_relay.config.constants import INBOUND_TRACK, LOGGER_NAME
from voice_relay.config.settings import RelayConfig
from voice_relay.exceptions import (
    BridgeStateError,
    ConversationStartError,
    MalformedMessageError,
    RelayTeardownError,
    TransportClosedError,
)
from voice_relay.models.message_schemas import (
    ConnectedMessage,
    MarkMessage,
    MediaMessage,
    StartMessage,
    StopMessage,
    TwilioInboundMessage,
)
from voice_relay.models.stream_session import SessionState, StreamSession

logger = logging.getLogger(LOGGER_NAME)

# Builds the conversation for a call given its audio bridge
ConversationFactory = Callable[[TwilioAudioBridge], Any]


class SessionController:
    """
    Runs one call leg from WebSocket accept to teardown.

    The conversation must expose start_session(), end_session() and
    wait_for_session_end() coroutines. By default a Conversation is built from
    the RelayConfig with the bridge as its audio interface.
    """

    def __init__(
        self,
        websocket: WebSocket,
        config: RelayConfig,
        *,
        conversation_factory: Optional[ConversationFactory] = None,
        callback_agent_response: Optional[Callable[[str], None]] = None,
        callback_user_transcript: Optional[Callable[[str], None]] = None,
        callback_mode_change: Optional[Callable[[str], None]] = None,
        session: Optional[StreamSession] = None,
    ):
        self.config = config
        self.transport = TwilioTransport(websocket, session)
        self.session = self.transport.session
        self.bridge = TwilioAudioBridge.from_config(
            self.transport, config, on_transport_closed=lambda: self.request_end("media stream closed")
        )
        self.conversation: Any = None
        self.end_reason: Optional[str] = None

        self.callback_agent_response = callback_agent_response or self._log_agent_response
        self.callback_user_transcript = callback_user_transcript or self._log_user_transcript
        self.callback_mode_change = callback_mode_change
        self._conversation_factory = conversation_factory or self._build_conversation
        self._conversation_started = False
        self._end_requested = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self.session.state

    def _set_state(self, state: SessionState) -> None:
        logger.info(f"[{self.session.connection_id}] {self.session.state.value} -> {state.value}")
        self.session.state = state

    def _build_conversation(self, bridge: TwilioAudioBridge) -> Conversation:
        return Conversation.from_config(
            self.config,
            bridge,
            callback_agent_response=self.callback_agent_response,
            callback_user_transcript=self.callback_user_transcript,
            callback_mode_change=self._on_mode_change,
            callback_end_session=lambda: self.request_end("agent ended conversation"),
        )

    def request_end(self, reason: str = "end requested") -> None:
        """Ask the controller to drain and close; safe to call repeatedly and from callbacks."""
        if self._end_requested.is_set():
            return
        self.end_reason = reason
        logger.info(f"[{self.session.connection_id}] Ending session: {reason}")
        self._end_requested.set()

    async def end(self) -> None:
        """Explicit end request from the application."""
        self.request_end("explicit end")

    async def run(self) -> StreamSession:
        """
        Serve the call until it ends.

        Returns:
            The closed StreamSession

        Raises:
            ConversationStartError: If the agent session could not be established
            RelayTeardownError: If a shutdown step failed
            BridgeStateError: If this controller has already been run
        """
        if self.state is not SessionState.IDLE:
            raise BridgeStateError("SessionController instances cannot be reused")

        self._set_state(SessionState.ACCEPTING)
        await self.transport.accept()

        try:
            self.conversation = self._conversation_factory(self.bridge)
            await self.conversation.start_session()
        except Exception as e:
            logger.error(f"[{self.session.connection_id}] Failed to start conversation: {e}", exc_info=True)
            try:
                await self._shutdown(draining=False)
            except RelayTeardownError as teardown_error:
                logger.error(f"[{self.session.connection_id}] Teardown after failed start also failed: {teardown_error}")
            if isinstance(e, ConversationStartError):
                raise
            raise ConversationStartError(f"Failed to start conversation: {e}") from e

        self._conversation_started = True
        self._maybe_activate()

        try:
            await self._pump()
        finally:
            await self._shutdown()
        return self.session

    def _maybe_activate(self) -> None:
        if (
            self.state is SessionState.ACCEPTING
            and self._conversation_started
            and self.transport.stream_sid is not None
        ):
            self._set_state(SessionState.ACTIVE)

    async def _pump(self) -> None:
        reader = asyncio.create_task(self._read_loop(), name=f"twilio-input-{self.session.connection_id}")
        ender = asyncio.create_task(self._end_requested.wait())
        try:
            await asyncio.wait({reader, ender}, return_when=asyncio.FIRST_COMPLETED)
            if reader.done() and not reader.cancelled() and reader.exception() is not None:
                error = reader.exception()
                logger.error(
                    f"[{self.session.connection_id}] Media stream reader failed: {error}", exc_info=error
                )
                self.request_end(f"media stream reader failed: {error}")
        finally:
            for task in (reader, ender):
                if not task.done():
                    task.cancel()
            await asyncio.gather(reader, ender, return_exceptions=True)

    async def _read_loop(self) -> None:
        """Read inbound envelopes; a bad message is logged and skipped."""
        while True:
            try:
                message = await self.transport.receive()
            except TransportClosedError as e:
                logger.info(f"[{self.session.connection_id}] {e}")
                self.request_end("media stream disconnected")
                return
            except MalformedMessageError as e:
                logger.warning(f"[{self.session.connection_id}] Skipping malformed message: {e}")
                continue

            if isinstance(message, StopMessage):
                self.request_end("telephony stop event")
                return

            try:
                await self._handle_message(message)
            except Exception as e:
                logger.error(f"[{self.session.connection_id}] Error handling {message.event} message: {e}", exc_info=True)

    async def _handle_message(self, message: TwilioInboundMessage) -> None:
        if isinstance(message, MediaMessage):
            if message.media.track and message.media.track != INBOUND_TRACK:
                return
            await self.bridge.deliver_input(message.media.decode())
        elif isinstance(message, StartMessage):
            self._maybe_activate()
        elif isinstance(message, MarkMessage):
            logger.debug(f"[{self.session.connection_id}] Playback mark reached: {message.mark.get('name')}")
        elif isinstance(message, ConnectedMessage):
            logger.debug(f"[{self.session.connection_id}] Media stream protocol {message.protocol} {message.version}")

    async def _shutdown(self, draining: bool = True) -> None:
        """
        Drain the bridge, end the conversation and close the media stream.

        A call that never became active skips DRAINING and goes straight to CLOSED.
        """
        if self.state is SessionState.CLOSED:
            return
        if draining:
            self._set_state(SessionState.DRAINING)
        errors = []

        try:
            await self.bridge.stop()
        except Exception as e:
            logger.error(f"[{self.session.connection_id}] Error stopping audio bridge: {e}", exc_info=True)
            errors.append(e)

        if self.conversation is not None:
            try:
                await self.conversation.end_session()
            except Exception as e:
                logger.error(f"[{self.session.connection_id}] Error ending conversation: {e}", exc_info=True)
                errors.append(e)
            try:
                conversation_id = await asyncio.wait_for(
                    self.conversation.wait_for_session_end(), timeout=self.config.session_end_timeout
                )
                logger.info(f"[{self.session.connection_id}] Conversation finished: {conversation_id}")
            except asyncio.TimeoutError:
                logger.warning(
                    f"[{self.session.connection_id}] Conversation did not end within "
                    f"{self.config.session_end_timeout}s"
                )
            except Exception as e:
                logger.error(f"[{self.session.connection_id}] Error waiting for conversation end: {e}", exc_info=True)
                errors.append(e)

        self.transport.release_stream()
        await self.transport.close()
        self._set_state(SessionState.CLOSED)

        if errors:
            raise RelayTeardownError(f"{len(errors)} teardown step(s) failed: {errors[0]}") from errors[0]

    def _on_mode_change(self, mode: str) -> None:
        logger.debug(f"[{self.session.connection_id}] Agent mode: {mode}")
        if self.callback_mode_change is not None:
            self.callback_mode_change(mode)

    def _log_agent_response(self, text: str) -> None:
        logger.info(f"[{self.session.connection_id}] Agent: {text}")

    def _log_user_transcript(self, text: str) -> None:
        logger.info(f"[{self.session.connection_id}] Caller: {text}")
