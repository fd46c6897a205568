"""
Head Tracker

Queries the ledger for the current head height. Holds no state beyond
the client reference.
"""

import asyncio
import logging
from typing import Optional

from .client import LedgerClient
from .errors import HeadQueryError


class HeadTracker:
    """
    Chain head queries with exponential backoff.

    Usage:
        tracker = HeadTracker(client)
        head = await tracker.get_head()
        caught_up = await tracker.is_caught_up(cursor)
    """

    def __init__(
        self,
        client: LedgerClient,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
    ):
        self._client = client
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._logger = logging.getLogger("HeadTracker")

    async def get_head(self) -> int:
        """Current head height. Raises HeadQueryError on any failure."""
        try:
            return int(await self._client.get_chain_head())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise HeadQueryError(e) from e

    async def is_caught_up(self, cursor: int) -> bool:
        return cursor >= await self.get_head()

    async def is_caught_up_with_retry(
        self,
        cursor: int,
        stop_event: asyncio.Event,
        on_error=None,
    ) -> Optional[bool]:
        """
        is_caught_up(), retried with exponential backoff until it succeeds.

        Returns None if stop_event is set while waiting to retry.
        """
        delay = self._initial_delay

        while not stop_event.is_set():
            try:
                return await self.is_caught_up(cursor)
            except HeadQueryError as e:
                self._logger.warning(f"{e}; retrying in {delay:.1f}s")
                if on_error:
                    on_error(e)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
            delay = min(delay * 2, self._max_delay)

        return None
