"""
Sequential turn processing.

Recognized utterances can arrive faster than they can be answered. Each one is
processed to completion (classification, prompt build, generation, synthesis,
session update) before the next is taken, so replies stay in the order the
caller spoke. The single worker is also what makes session mutation safe
without locks.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

TurnHandler = Callable[[str], Awaitable[None]]
TurnErrorHandler = Callable[[str, BaseException], Awaitable[None]]


class TurnQueue:
    """FIFO queue drained by exactly one worker task."""

    def __init__(
        self,
        handler: TurnHandler,
        on_error: Optional[TurnErrorHandler] = None,
    ):
        self._handler = handler
        self._on_error = on_error
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._worker_task: Optional[asyncio.Task] = None
        self._current_task: Optional[asyncio.Task] = None
        self._running = False
        self.processed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def busy(self) -> bool:
        return self._current_task is not None and not self._current_task.done()

    def start(self) -> None:
        """Start the worker (idempotent)."""
        if self._worker_task is None or self._worker_task.done():
            self._running = True
            self._worker_task = asyncio.create_task(self._worker())

    def enqueue(self, text: str) -> None:
        """Schedule one utterance. Never blocks the caller."""
        if not self._running:
            logger.debug("Turn queue stopped, dropping utterance")
            return
        self._queue.put_nowait(text)
        logger.debug("Turn enqueued", pending=self._queue.qsize())

    async def join(self) -> None:
        """Wait until every enqueued utterance has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the worker and whatever turn is in flight."""
        self._running = False

        tasks = [t for t in (self._current_task, self._worker_task) if t and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._worker_task = None
        self._current_task = None

        # Unprocessed utterances are abandoned; release any join() waiters.
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
        if dropped:
            logger.debug("Turn queue stopped with pending utterances", dropped=dropped)

    async def _worker(self) -> None:
        """Background worker that processes queued transcripts sequentially."""
        try:
            while self._running:
                text = await self._queue.get()
                try:
                    self._current_task = asyncio.create_task(self._handler(text))
                    await self._current_task
                    self.processed += 1
                except asyncio.CancelledError:
                    if not self._running:
                        raise
                    # The turn itself was cancelled; the worker carries on.
                except Exception as e:
                    self.failed += 1
                    logger.error(
                        "Turn failed",
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    await self._report(text, e)
                finally:
                    self._current_task = None
                    self._queue.task_done()
        except asyncio.CancelledError:
            pass

    async def _report(self, text: str, error: BaseException) -> None:
        if not self._on_error:
            return
        try:
            await self._on_error(text, error)
        except Exception as e:
            logger.error("Turn error handler failed", error=str(e))
