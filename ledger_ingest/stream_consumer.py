"""
Stream Consumer

Consumes the live block feed once catch-up has reached the head.

The feed is subscribed from the cursor, so the block left at the head
when catch-up hands over is still delivered.

For each block:
- height is derived from the block id
- height < cursor: discarded (already processed, or a stale duplicate)
- otherwise: dispatched, then cursor = height + 1

The feed ending without a pause request is reported as a
StreamTerminationError. Reconnecting is left to the host.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from .client import BlockFeed, LedgerClient
from .cursor import BlockCursor
from .dispatcher import BlockDispatcher
from .errors import IngestionError, StreamTerminationError
from .metrics import EngineMetrics


class StreamOutcome(Enum):
    """Why the stream consumer returned."""
    PAUSED = "PAUSED"
    TERMINATED = "TERMINATED"


class StreamConsumer:
    """
    Live feed consumer.

    Usage:
        consumer = StreamConsumer(client, cursor, dispatcher, metrics, stop_event)
        outcome = await consumer.run()   # returns after pause() or feed end
    """

    def __init__(
        self,
        client: LedgerClient,
        cursor: BlockCursor,
        dispatcher: BlockDispatcher,
        metrics: EngineMetrics,
        stop_event: asyncio.Event,
        report_error: Optional[Callable[[IngestionError], None]] = None,
    ):
        self._client = client
        self._cursor = cursor
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._stop_event = stop_event
        self._report_error = report_error
        self._feed: Optional[BlockFeed] = None
        self._logger = logging.getLogger("StreamConsumer")

    def pause(self) -> None:
        """Pause the underlying feed, if subscribed."""
        if self._feed is not None:
            self._feed.pause()

    async def run(self) -> StreamOutcome:
        if self._stop_event.is_set():
            return StreamOutcome.PAUSED

        self._feed = self._client.subscribe_block_stream(from_height=self._cursor.value)
        self._logger.info(f"Streaming from block {self._cursor.value}")

        async for block in self._feed:
            if self._stop_event.is_set():
                break

            try:
                height = block.height
            except ValueError as e:
                self._logger.warning(f"Dropping streamed block without a usable id: {e}")
                continue

            if height < self._cursor.value:
                self._metrics.stale_blocks_discarded += 1
                self._logger.debug(f"Discarding stale block {height} (cursor {self._cursor.value})")
                continue

            if height > self._cursor.value:
                self._logger.warning(
                    f"Stream skipped ahead: expected block {self._cursor.value}, got {height}"
                )

            await self._dispatcher.process(block, height)
            self._cursor.advance_to(height + 1)
            self._metrics.blocks_streamed += 1

        if self._stop_event.is_set() or self._feed.paused:
            return StreamOutcome.PAUSED

        self._metrics.stream_terminations += 1
        error = StreamTerminationError(self._cursor.value)
        self._logger.error(str(error))
        if self._report_error is not None:
            self._report_error(error)
        return StreamOutcome.TERMINATED
