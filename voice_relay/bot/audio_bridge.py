"""
Audio device bridge between a conversation session and a Twilio media stream.

The conversation engine drives an audio device through four operations:
start(input_callback), stop(), output(frame) and interrupt(). TwilioAudioBridge
implements them on top of a TwilioTransport:
- Caller audio decoded by the transport is handed to the input callback.
- Agent audio passed to output() is queued and sent by a dedicated output task.
- interrupt() drains the queue and tells Twilio to clear buffered playback.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from voice_relay.config.constants import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PUSH_TIMEOUT,
    DEFAULT_QUEUE_CAPACITY,
    DEFAULT_STOP_TIMEOUT,
    LOGGER_NAME,
)
from voice_relay.config.settings import RelayConfig
from voice_relay.bot.frame_queue import FrameQueue
from voice_relay.bot.twilio_transport import TwilioTransport
from voice_relay.exceptions import BridgeStateError, TransportClosedError

logger = logging.getLogger(LOGGER_NAME)

InputCallback = Callable[[bytes], Awaitable[None]]


class AudioInterface(ABC):
    """Audio device contract consumed by the conversation engine."""

    @abstractmethod
    async def start(self, input_callback: InputCallback) -> None:
        """Begin capturing audio; input_callback receives each captured frame."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop capture and playback and release resources."""

    @abstractmethod
    async def output(self, frame: bytes) -> None:
        """Queue one frame of agent audio for playback."""

    @abstractmethod
    async def interrupt(self) -> None:
        """Discard pending playback immediately."""


class TwilioAudioBridge(AudioInterface):
    """
    AudioInterface that plays agent audio on, and captures caller audio from, a
    Twilio media stream.

    Every queued frame is tagged with the interrupt generation current at the
    time of output(). Sends happen under a lock, and a frame whose generation is
    older than the current one is discarded instead of sent, so nothing queued
    before interrupt() reaches Twilio after the matching 'clear'.
    """

    def __init__(
        self,
        transport: TwilioTransport,
        queue_capacity: int = DEFAULT_QUEUE_CAPACITY,
        push_timeout: float = DEFAULT_PUSH_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        on_transport_closed: Optional[Callable[[], None]] = None,
    ):
        self.transport = transport
        self.queue = FrameQueue(maxsize=queue_capacity, push_timeout=push_timeout)
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout
        self.on_transport_closed = on_transport_closed

        self._input_callback: Optional[InputCallback] = None
        self._output_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._send_lock = asyncio.Lock()
        self._generation = 0
        self._started = False
        self._stopped = False

        self.frames_sent = 0
        self.frames_received = 0
        self.interrupts = 0

    @classmethod
    def from_config(
        cls,
        transport: TwilioTransport,
        config: RelayConfig,
        on_transport_closed: Optional[Callable[[], None]] = None,
    ) -> "TwilioAudioBridge":
        return cls(
            transport,
            queue_capacity=config.queue_capacity,
            push_timeout=config.push_timeout,
            poll_interval=config.poll_interval,
            stop_timeout=config.stop_timeout,
            on_transport_closed=on_transport_closed,
        )

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    async def start(self, input_callback: InputCallback) -> None:
        """
        Record the input callback and spawn the output task.

        Raises:
            BridgeStateError: If the bridge was already started
        """
        if self._started:
            raise BridgeStateError("Audio bridge can only be started once")
        self._started = True
        self._input_callback = input_callback
        self._output_task = asyncio.create_task(
            self._output_loop(), name=f"twilio-output-{self.transport.session.connection_id}"
        )
        logger.info(f"Audio bridge started for connection: {self.transport.session.connection_id}")

    async def deliver_input(self, frame: bytes) -> None:
        """Pass one decoded caller frame to the input callback."""
        if self._input_callback is None or self._stopped:
            logger.debug("Dropping caller audio received while the bridge is not running")
            return
        self.frames_received += 1
        await self._input_callback(frame)

    async def output(self, frame: bytes) -> None:
        """Queue agent audio; waits at most the push timeout, then drops the oldest frame."""
        if self._stopped:
            logger.debug("Dropping agent audio output after stop")
            return
        await self.queue.push((self._generation, frame))

    async def interrupt(self) -> None:
        """Drain queued playback, then send 'clear' so Twilio stops audio already in flight."""
        self._generation += 1
        self.queue.drain_all()
        self.interrupts += 1

        async with self._send_lock:
            # stop() may have run while we waited for the lock
            stream_sid = self.transport.stream_sid
            if self._stopped or stream_sid is None:
                return
            try:
                await self.transport.send_clear()
            except TransportClosedError as e:
                logger.info(f"Could not clear playback, media stream closed: {e}")
                self._notify_closed()
                return
        logger.info(f"Playback interrupted on stream {stream_sid}")

    async def stop(self) -> None:
        """Stop the output task, discard queued frames and release the stream identifier."""
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()

        task = self._output_task
        if task is not None and task is not asyncio.current_task():
            done, _ = await asyncio.wait({task}, timeout=self.stop_timeout)
            if not done:
                logger.warning(f"Output task did not stop within {self.stop_timeout}s, cancelling")
                task.cancel()
                await asyncio.wait({task})

        # Wait out a clear still being sent by interrupt(); later lock holders see _stopped
        try:
            await asyncio.wait_for(self._send_lock.acquire(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"In-flight send did not finish within {self.stop_timeout}s")
        else:
            self._send_lock.release()

        self.queue.drain_all()
        self.transport.release_stream()
        logger.info(
            f"Audio bridge stopped: sent={self.frames_sent} received={self.frames_received} "
            f"interrupts={self.interrupts} dropped={self.queue.dropped}"
        )

    async def _output_loop(self) -> None:
        """Send queued frames to Twilio in order until stop() is called."""
        try:
            while not self._stop_event.is_set():
                # Frames stay queued until Twilio has told us which stream to address
                if self.transport.stream_sid is None:
                    await self.transport.wait_for_stream(self.poll_interval)
                    continue

                item = await self.queue.pop(self.poll_interval)
                if item is None:
                    continue
                generation, frame = item

                async with self._send_lock:
                    if self._stop_event.is_set():
                        break
                    if generation != self._generation:
                        logger.debug("Discarding frame queued before interrupt")
                        continue
                    await self.transport.send_media(frame)
                    self.frames_sent += 1
        except TransportClosedError as e:
            logger.info(f"Output loop ending, media stream closed: {e}")
            self._notify_closed()
        except asyncio.CancelledError:
            logger.debug("Output loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in output loop: {e}", exc_info=True)
            self._notify_closed()

    def _notify_closed(self) -> None:
        if self.on_transport_closed is not None:
            self.on_transport_closed()
