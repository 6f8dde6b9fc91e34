"""
Typed configuration for the relay.

A single RelayConfig is built once at startup (normally from the environment)
and passed explicitly into every SessionController, so no call leg reads or
mutates process-wide state.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from voice_relay.config.constants import (
    CONVERSATION_WS_URL,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PUSH_TIMEOUT,
    DEFAULT_QUEUE_CAPACITY,
    DEFAULT_SESSION_END_TIMEOUT,
    DEFAULT_STOP_TIMEOUT,
    SIGNED_URL_ENDPOINT,
)

TRUE_VALUES = {"1", "true", "yes", "on"}


class RelayConfig(BaseModel):
    """Settings shared by every call leg served by this process."""

    agent_id: str = Field(..., min_length=1, description="Conversational agent identifier")
    api_key: Optional[str] = Field(None, description="Engine API key, needed for authenticated agents")
    requires_auth: bool = Field(False, description="Whether the agent requires a signed session URL")

    queue_capacity: int = Field(DEFAULT_QUEUE_CAPACITY, gt=0, description="Outbound frame queue capacity")
    push_timeout: float = Field(DEFAULT_PUSH_TIMEOUT, ge=0, description="Max wait for queue space in output()")
    poll_interval: float = Field(DEFAULT_POLL_INTERVAL, gt=0, description="Output loop wait before shutdown checks")
    stop_timeout: float = Field(DEFAULT_STOP_TIMEOUT, gt=0, description="Max wait for the output loop on stop()")
    session_end_timeout: float = Field(
        DEFAULT_SESSION_END_TIMEOUT, gt=0, description="Max wait for the agent session to end"
    )
    connect_timeout: float = Field(DEFAULT_CONNECT_TIMEOUT, gt=0, description="Agent session connect timeout")

    conversation_endpoint: str = CONVERSATION_WS_URL
    signed_url_endpoint: str = SIGNED_URL_ENDPOINT

    @model_validator(mode="after")
    def check_credentials(self):
        """Authenticated agents cannot be reached without an API key."""
        if self.requires_auth and not self.api_key:
            raise ValueError("api_key is required when requires_auth is enabled")
        return self

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Build the configuration from environment variables."""
        values = {
            "agent_id": os.getenv("ELEVENLABS_AGENT_ID", ""),
            "api_key": os.getenv("ELEVENLABS_API_KEY") or None,
            "requires_auth": os.getenv("ELEVENLABS_REQUIRES_AUTH", "false").lower() in TRUE_VALUES,
        }
        optional = {
            "queue_capacity": "RELAY_QUEUE_CAPACITY",
            "push_timeout": "RELAY_PUSH_TIMEOUT",
            "poll_interval": "RELAY_POLL_INTERVAL",
            "stop_timeout": "RELAY_STOP_TIMEOUT",
            "session_end_timeout": "RELAY_SESSION_END_TIMEOUT",
        }
        for field_name, env_name in optional.items():
            raw = os.getenv(env_name)
            if raw:
                values[field_name] = raw
        return cls(**values)
