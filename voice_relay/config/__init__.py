"""
Configuration module for the voice relay.

Key components:
- constants: Logger name, Twilio event names, audio format and engine endpoint
  constants, and default tuning values for the relay.
- settings: RelayConfig, the typed per-deployment configuration handed to every
  SessionController.
- logging_config: Console and rotating-file logging setup.

Usage examples:
```python
from voice_relay.config.constants import LOGGER_NAME
from voice_relay.config.logging_config import configure_logging
from voice_relay.config.settings import RelayConfig

logger = configure_logging()
config = RelayConfig.from_env()
logger.info(f"Relaying calls to agent {config.agent_id}")
```
"""

# Config module initialization
