"""
WebSocket connection manager for Twilio media streams.

Every media-stream connection Twilio opens is one call leg. The WebSocketManager
builds a SessionController for it from the shared RelayConfig, keeps the call's
StreamSession in the registry while it runs, and reports how it ended.
"""

import logging
from typing import Callable, Optional

from fastapi import WebSocket
from pydantic import ValidationError

from voice_relay.bot.session_controller import SessionController
from voice_relay.config.constants import LOGGER_NAME
from voice_relay.config.settings import RelayConfig
from voice_relay.exceptions import ConversationStartError, RelayTeardownError
from voice_relay.models.stream_session import SessionRegistry

logger = logging.getLogger(LOGGER_NAME)

# Close code sent when the relay cannot serve the call
WS_CLOSE_INTERNAL_ERROR = 1011


class WebSocketManager:
    """Runs one SessionController per Twilio media-stream connection.

    The relay configuration is loaded from the environment on the first
    connection unless one is passed in.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        controller_factory: Callable[..., SessionController] = SessionController,
    ):
        self.config = config
        self.controller_factory = controller_factory
        self.registry = SessionRegistry()

    def get_config(self) -> RelayConfig:
        if self.config is None:
            self.config = RelayConfig.from_env()
        return self.config

    async def handle_websocket(self, websocket: WebSocket) -> None:
        """Handle a media-stream connection throughout its lifecycle.

        Args:
            websocket (WebSocket): The FastAPI WebSocket connection object

        Failures are logged here rather than raised, since there is no HTTP
        response left to report them on once the WebSocket has been accepted.
        """
        try:
            config = self.get_config()
        except ValidationError as e:
            logger.error(f"Relay is not configured, rejecting media stream: {e}")
            await websocket.close(code=WS_CLOSE_INTERNAL_ERROR)
            return

        controller = self.controller_factory(websocket, config)
        session = controller.session
        self.registry.add_session(session)
        logger.info(f"Media stream connection {session.connection_id} registered ({len(self.registry)} active)")

        try:
            await controller.run()
            logger.info(f"Call {session.call_sid or session.connection_id} finished: {controller.end_reason}")
        except ConversationStartError as e:
            logger.error(f"Could not connect call {session.connection_id} to the agent: {e}")
        except RelayTeardownError as e:
            logger.error(f"Call {session.connection_id} did not shut down cleanly: {e}")
        finally:
            self.registry.remove_session(session.connection_id)
