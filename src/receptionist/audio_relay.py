"""
Inbound audio relay between the caller channel and the recognizer.

Microphone audio starts flowing before the Deepgram socket finishes its
handshake. Frames are queued until the recognizer is open, flushed in arrival
order, and forwarded directly afterwards. Once the recognizer has closed,
frames are discarded: nothing can consume them and the queue must not grow
for the rest of the call.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, Protocol

import structlog

logger = structlog.get_logger(__name__)


class RecognizerSink(Protocol):
    """What the relay needs from a recognizer connection."""

    @property
    def is_open(self) -> bool: ...

    @property
    def is_closed(self) -> bool: ...

    async def send_audio(self, audio_bytes: bytes) -> None: ...


class AudioRelayBuffer:
    """
    Order-preserving buffer in front of a recognizer connection.

    `submit` and `flush` share a lock so a flush triggered by the recognizer
    opening can never interleave with a frame forwarded by `submit`.
    """

    def __init__(self, sink: RecognizerSink):
        self._sink = sink
        self._pending: Deque[bytes] = deque()
        self._lock = asyncio.Lock()
        self._forwarded = 0
        self._dropped = 0
        self._logged_buffering = False

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def forwarded(self) -> int:
        return self._forwarded

    @property
    def dropped(self) -> int:
        return self._dropped

    async def submit(self, frame: bytes) -> None:
        """Queue or forward one inbound audio frame."""
        if not frame:
            return

        async with self._lock:
            if self._sink.is_closed:
                self._discard_pending()
                self._dropped += 1
                return

            if not self._sink.is_open:
                self._pending.append(frame)
                if not self._logged_buffering:
                    self._logged_buffering = True
                    logger.debug("Recognizer not ready, buffering audio")
                return

            await self._drain()
            await self._sink.send_audio(frame)
            self._forwarded += 1

    async def flush(self) -> None:
        """Send everything queued so far, if the recognizer is open."""
        async with self._lock:
            if self._sink.is_closed:
                self._discard_pending()
                return
            if self._sink.is_open:
                await self._drain()

    async def _drain(self) -> None:
        if self._pending:
            logger.debug("Flushing buffered audio", frames=len(self._pending))
        while self._pending:
            await self._sink.send_audio(self._pending.popleft())
            self._forwarded += 1

    def _discard_pending(self) -> None:
        if self._pending:
            self._dropped += len(self._pending)
            self._pending.clear()
