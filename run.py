"""
Run script for starting the Voice Relay server with low-latency settings.

This script configures and starts the FastAPI server with WebSocket settings
suited to real-time audio streaming between Twilio and the voice agent.

Usage:
    python run.py [--port PORT] [--host HOST] [--log-level LEVEL]
"""

import argparse
import os
import sys
from pathlib import Path

import dotenv
import uvicorn

from voice_relay.config.logging_config import configure_logging

env_path = Path(".") / ".env"
if env_path.exists():
    dotenv.load_dotenv(env_path)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Start the Voice Relay server"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8000")),
        help="Port to run the server on (default: 8000 or PORT env var)",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Host to bind the server to (default: 0.0.0.0 or HOST env var)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO or LOG_LEVEL env var)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for starting the server."""
    args = parse_args(argv)
    logger = configure_logging(args.log_level)

    if not os.getenv("ELEVENLABS_AGENT_ID"):
        logger.error("ELEVENLABS_AGENT_ID environment variable not set")
        print("Error: ELEVENLABS_AGENT_ID environment variable is required")
        sys.exit(1)

    logger.info(f"Starting server on http://{args.host}:{args.port}")
    logger.info(f"Log level: {args.log_level}")
    logger.info(f"Authenticated agent: {os.getenv('ELEVENLABS_REQUIRES_AUTH', 'false')}")

    uvicorn.run(
        "voice_relay.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
        # Use HTTP/1.1 for lower overhead than HTTP/2
        http="h11",
        # Keep dead media streams from lingering
        ws_ping_interval=5,
        ws_ping_timeout=20,
        # Disable access logs for lower overhead, we have our own logging
        access_log=False,
        reload=os.getenv("ENV", "production").lower() == "development",
    )


if __name__ == "__main__":
    main()
