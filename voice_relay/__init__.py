"""
Voice Relay - Twilio Media Streams to Conversational Voice Agent Bridge

This application relays live call audio between a Twilio Media Streams WebSocket
and a conversational voice agent session, so that a phone caller can talk to an
AI agent in real time.

The relay moves 8 kHz mu-law audio frames in both directions without transcoding,
supports barge-in (the agent or caller interrupting playback mid-utterance), and
tears every call down through a single ordered shutdown path.

Architecture Overview:
- FastAPI server exposing the TwiML webhook and the media-stream WebSocket
- One SessionController per call leg, owning the conversation and the bridge
- A bounded FrameQueue between agent audio and the telephony output task
- A pydantic-validated codec for the Twilio JSON envelope

Key Components:
- bot: Frame queue, Twilio transport adapter, audio bridge, session controller
  and the conversation engine client
- config: Constants, typed relay configuration and logging setup
- models: Wire message schemas and per-call session state
- websocket_manager: Accepts media-stream connections and runs a controller each

Getting Started:
1. Set up environment variables:
   - ELEVENLABS_AGENT_ID: The conversational agent to connect calls to
   - ELEVENLABS_API_KEY: Required when the agent has authentication enabled
   - ELEVENLABS_REQUIRES_AUTH: "true" for authenticated agents (default false)
   - PORT / HOST / LOG_LEVEL: Server settings

2. Start the server:
   ```bash
   python run.py
   ```

3. Point the Twilio phone number's voice webhook at:
   - http://your-server:8000/incoming-call
"""

__version__ = "1.0.0"
