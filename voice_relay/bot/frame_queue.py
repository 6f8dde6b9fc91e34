"""
Bounded FIFO of outbound audio frames.

The queue sits between the agent's audio output and the telephony output loop.
It applies backpressure for a bounded time and then drops the oldest frame,
since stale playback audio is worse than a short gap.
"""

import asyncio
import logging
from typing import Any, Optional

from voice_relay.config.constants import DEFAULT_PUSH_TIMEOUT, DEFAULT_QUEUE_CAPACITY, LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


class FrameQueue:
    """
    Capacity-bounded asyncio queue with drop-oldest overflow and atomic drain.

    All operations run on the event loop thread. drain_all() contains no
    suspension point, so no push or pop can interleave with it.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_CAPACITY, push_timeout: float = DEFAULT_PUSH_TIMEOUT):
        if maxsize <= 0:
            raise ValueError("FrameQueue requires a positive capacity")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.push_timeout = push_timeout
        self.dropped = 0

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    async def push(self, item: Any, timeout: Optional[float] = None) -> bool:
        """
        Append an item at the tail.

        Waits up to `timeout` seconds (default: the queue's push timeout) for
        space. If the queue is still full the oldest item is discarded.

        Returns:
            bool: True if nothing was dropped, False if the oldest item was evicted
        """
        try:
            self._queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            pass

        wait = self.push_timeout if timeout is None else timeout
        if wait > 0:
            try:
                await asyncio.wait_for(self._queue.put(item), timeout=wait)
                return True
            except asyncio.TimeoutError:
                pass

        # Still full: evict the head and append without suspending
        evicted = True
        try:
            self._queue.get_nowait()
        except asyncio.QueueEmpty:
            evicted = False
        self._queue.put_nowait(item)
        if evicted:
            self.dropped += 1
            logger.warning(f"Frame queue full ({self.maxsize}), dropped oldest frame (total dropped: {self.dropped})")
        return not evicted

    def drain_all(self) -> None:
        """Remove and discard every queued item."""
        discarded = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            discarded += 1
        if discarded:
            logger.debug(f"Drained {discarded} frames from queue")

    async def pop(self, timeout: float) -> Optional[Any]:
        """
        Remove and return the head item.

        Returns:
            The head item, or None if nothing arrived within `timeout` seconds
        """
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
