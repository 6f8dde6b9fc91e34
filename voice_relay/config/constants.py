"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for configuration values and making it easier to
maintain consistent naming throughout the codebase.
"""

# Logger name used throughout the application
LOGGER_NAME = "voice_relay"

# Audio format constants
AUDIO_FORMAT_ULAW_8000 = "ulaw_8000"

# Only the caller's side of the call is relayed to the agent
INBOUND_TRACK = "inbound"

# Conversational engine endpoints
CONVERSATION_WS_URL = "wss://api.elevenlabs.io/v1/convai/conversation"
SIGNED_URL_ENDPOINT = "https://api.elevenlabs.io/v1/convai/conversation/get_signed_url"

# Relay tuning defaults
DEFAULT_QUEUE_CAPACITY = 500  # ~10 s of 20 ms frames
DEFAULT_PUSH_TIMEOUT = 0.05  # seconds output() may wait for queue space
DEFAULT_POLL_INTERVAL = 0.1  # output loop wake-up interval for shutdown checks
DEFAULT_STOP_TIMEOUT = 1.0  # seconds to join the output loop on stop()
DEFAULT_SESSION_END_TIMEOUT = 5.0  # seconds to wait for the agent session to end
DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds to open the agent session

# Agent conversation modes
MODE_SPEAKING = "speaking"
MODE_LISTENING = "listening"
