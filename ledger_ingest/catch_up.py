"""
Catch-up Fetcher

Replays historical blocks one height at a time until the cursor reaches
the chain head.

Each iteration:
1. Snapshot height = cursor
2. Fetch that block (with timeout and the configured failure policy)
3. Dispatch it and wait for dispatch to finish
4. Advance the cursor by one
5. Exit if shutdown was requested
6. Ask the head tracker whether we are caught up; if not, wait
   catch_up_poll_interval_ms and repeat

Dispatch completes before the cursor moves, so blocks are delivered in
strict height order and a failure never leaves a later height ahead of
an earlier one.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from .client import LedgerClient
from .config import FETCH_POLICY_RETRY, EngineConfig
from .cursor import BlockCursor
from .dispatcher import BlockDispatcher
from .errors import IngestionError, TransientFetchError
from .head_tracker import HeadTracker
from .metrics import EngineMetrics
from .types import Block


class CatchUpOutcome(Enum):
    """Why the catch-up loop returned."""
    CAUGHT_UP = "CAUGHT_UP"
    STOPPED = "STOPPED"


class _FetchAbandoned(Exception):
    """Shutdown arrived while a fetch was waiting to be retried."""
    pass


async def wait_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`; return True as soon as stop_event is set."""
    if stop_event.is_set():
        return True
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
    return stop_event.is_set()


class CatchUpFetcher:
    """
    Sequential historical block fetcher.

    Usage:
        fetcher = CatchUpFetcher(client, cursor, dispatcher, head, config, metrics, stop_event)
        outcome = await fetcher.run()
    """

    def __init__(
        self,
        client: LedgerClient,
        cursor: BlockCursor,
        dispatcher: BlockDispatcher,
        head_tracker: HeadTracker,
        config: EngineConfig,
        metrics: EngineMetrics,
        stop_event: asyncio.Event,
        report_error: Optional[Callable[[IngestionError], None]] = None,
    ):
        self._client = client
        self._cursor = cursor
        self._dispatcher = dispatcher
        self._head = head_tracker
        self._config = config
        self._metrics = metrics
        self._stop_event = stop_event
        self._report_error = report_error
        self._logger = logging.getLogger("CatchUpFetcher")

    async def run(self) -> CatchUpOutcome:
        self._logger.info(f"Catching up from block {self._cursor.value}")

        while not self._stop_event.is_set():
            height = self._cursor.value

            try:
                block = await self._fetch(height)
            except _FetchAbandoned:
                self._logger.info(f"Shutdown during retries for block {height}; cursor left at {height}")
                return CatchUpOutcome.STOPPED

            if block is not None:
                await self._dispatcher.process(block, height)
                self._metrics.blocks_caught_up += 1
            self._cursor.advance()

            if self._stop_event.is_set():
                break

            caught_up = await self._head.is_caught_up_with_retry(
                self._cursor.value,
                self._stop_event,
                on_error=self._on_head_error,
            )
            if caught_up is None:
                break
            if caught_up:
                self._logger.info(f"Caught up at block {self._cursor.value}")
                return CatchUpOutcome.CAUGHT_UP

            if await wait_or_stop(self._stop_event, self._config.catch_up_poll_interval):
                break

        self._logger.info(f"Catch-up stopped at block {self._cursor.value}")
        return CatchUpOutcome.STOPPED

    async def _fetch(self, height: int) -> Optional[Block]:
        """
        Fetch one block, applying the failure policy.

        Returns None when the height is given up on (it is still consumed).
        """
        attempts = 1
        if self._config.fetch_failure_policy == FETCH_POLICY_RETRY:
            attempts += self._config.max_fetch_retries

        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._client.get_block(height),
                    timeout=self._config.fetch_timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e

            if attempt < attempts:
                self._metrics.fetch_retries += 1
                self._logger.warning(
                    f"Fetch of block {height} failed (attempt {attempt}/{attempts}): {last_error!r}"
                )
                if await wait_or_stop(self._stop_event, self._config.fetch_retry_delay):
                    raise _FetchAbandoned()

        self._metrics.fetch_failures += 1
        error = TransientFetchError(height, last_error)
        self._logger.warning(f"{error}; skipping height")
        self._report(error)
        return None

    def _on_head_error(self, error: IngestionError) -> None:
        self._metrics.head_query_errors += 1
        self._report(error)

    def _report(self, error: IngestionError) -> None:
        if self._report_error is not None:
            self._report_error(error)
