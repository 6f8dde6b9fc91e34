"""
FastAPI server relaying Twilio phone calls to a conversational voice agent.

This module initializes and configures the FastAPI application:
- /incoming-call answers Twilio's voice webhook with TwiML that connects the
  call to a bidirectional media stream.
- /media-stream accepts that media stream and relays audio to the agent.
- /health and / report service status.
"""

import os
from pathlib import Path
from xml.sax.saxutils import quoteattr

import dotenv
from fastapi import FastAPI, Request, Response, WebSocket

from voice_relay import __version__
from voice_relay.config.logging_config import configure_logging
from voice_relay.websocket_manager import WebSocketManager

# Load environment variables from .env file if it exists
env_path = Path(".") / ".env"
if env_path.exists():
    dotenv.load_dotenv(env_path)

logger = configure_logging()

PORT = int(os.getenv("PORT", "8000"))
HOST = os.getenv("HOST", "0.0.0.0")
# Public hostname Twilio should use to reach /media-stream, e.g. an ngrok domain
PUBLIC_HOST = os.getenv("PUBLIC_HOST")

app = FastAPI(
    title="Voice Relay",
    description="Real-time audio relay between Twilio Media Streams and a conversational voice agent",
    version=__version__,
)

websocket_manager = WebSocketManager()


def build_stream_twiml(stream_url: str) -> str:
    """TwiML that connects the call to a bidirectional media stream."""
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url={quoteattr(stream_url)} />"
        "</Connect>"
        "</Response>"
    )


@app.api_route("/incoming-call", methods=["GET", "POST"])
async def incoming_call(request: Request):
    """Twilio voice webhook: route the call into the media stream."""
    host = PUBLIC_HOST or request.headers.get("host") or request.url.netloc
    stream_url = f"wss://{host}/media-stream"
    logger.info(f"Incoming call, connecting media stream to {stream_url}")
    return Response(content=build_stream_twiml(stream_url), media_type="application/xml")


@app.websocket("/media-stream")
async def media_stream(websocket: WebSocket):
    """WebSocket endpoint for Twilio Media Streams; one connection per call."""
    await websocket_manager.handle_websocket(websocket)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring system status.

    Returns:
        dict: Service status, whether the agent is configured, and active calls
    """
    sessions = websocket_manager.registry.get_all_sessions()
    return {
        "status": "healthy",
        "agent_id_configured": bool(os.getenv("ELEVENLABS_AGENT_ID")),
        "api_key_configured": bool(os.getenv("ELEVENLABS_API_KEY")),
        "active_sessions": len(sessions),
        "sessions": [session.to_dict() for session in sessions.values()],
    }


@app.get("/")
async def root():
    """Root endpoint to display basic information about the API."""
    return {
        "name": "Voice Relay",
        "description": "Real-time audio relay between Twilio Media Streams and a conversational voice agent",
        "version": __version__,
        "endpoints": {
            "/incoming-call": "Twilio voice webhook returning TwiML",
            "/media-stream": "WebSocket endpoint for Twilio Media Streams",
            "/health": "Health check endpoint",
        },
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on http://{HOST}:{PORT}")
    uvicorn.run(app, host=HOST, port=PORT, ws_ping_interval=5, ws_ping_timeout=20, http="h11")
