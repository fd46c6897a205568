"""
Mock Ledger Client

Scripted stand-in for a Steem node, for offline development and tests.
Blocks, chain head and failures are all controlled by the caller; every
call is recorded.

Usage:
    client = MockLedgerClient(head=12)
    client.add_block(10, [[custom_json_op("myapp_greet", {"msg": "hi"})]])
    client.fail_height(11, times=2)

    engine = IngestionEngine(client, EngineConfig(initial_cursor=10))
    await engine.start()
    ...
    client.feed.push(make_block(13))
"""

import asyncio
import json
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import LedgerRequestError
from .types import Block, block_id_for_height


_END = object()


def custom_json_op(
    op_id: str,
    payload: Any,
    posting_auths: Sequence[str] = ("alice",),
    required_auths: Sequence[str] = (),
) -> List[Any]:
    """Condenser-style custom_json operation. Non-string payloads are JSON-encoded."""
    return [
        "custom_json",
        {
            "id": op_id,
            "json": payload if isinstance(payload, str) else json.dumps(payload),
            "required_posting_auths": list(posting_auths),
            "required_auths": list(required_auths),
        },
    ]


def make_block(
    height: int,
    transactions: Optional[Iterable[Iterable[Any]]] = None,
    timestamp: str = "2024-01-01T00:00:00",
) -> Block:
    """Build a block at `height` whose transactions hold the given raw operations."""
    return Block.from_api({
        "block_id": block_id_for_height(height),
        "timestamp": timestamp,
        "transactions": [{"operations": list(ops)} for ops in (transactions or [])],
    })


class MockBlockFeed:
    """Push-driven block feed. Iteration ends on pause() or end()."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._paused = False
        self.ended = False

    @property
    def paused(self) -> bool:
        return self._paused

    def push(self, block: Block) -> None:
        self._queue.put_nowait(block)

    def end(self) -> None:
        """Simulate the transport closing the stream."""
        self.ended = True
        self._queue.put_nowait(_END)

    def pause(self) -> None:
        self._paused = True
        self._queue.put_nowait(_END)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._queue.get()
            if item is _END or self._paused:
                return
            yield item


class MockLedgerClient:
    """
    Mock client implementing the LedgerClient interface.

    Heights without a scripted block return an empty block.
    """

    def __init__(self, head: int = 0):
        self.head = head
        self.fetch_delay = 0.0
        self.head_failures = 0
        self.calls: List[Tuple[str, Any]] = []
        self.feeds: List[MockBlockFeed] = []
        self._blocks: Dict[int, Block] = {}
        self._failures: Dict[int, int] = {}

    # =========================================================================
    # Scripting
    # =========================================================================

    def add_block(self, height: int, transactions: Optional[Iterable[Iterable[Any]]] = None) -> Block:
        block = make_block(height, transactions)
        self._blocks[height] = block
        return block

    def fail_height(self, height: int, times: int = -1) -> None:
        """Make get_block(height) fail `times` times (-1 = always)."""
        self._failures[height] = times

    @property
    def feed(self) -> Optional[MockBlockFeed]:
        """Most recent feed handed out by subscribe_block_stream()."""
        return self.feeds[-1] if self.feeds else None

    def fetched_heights(self) -> List[int]:
        return [arg for name, arg in self.calls if name == "get_block"]

    def head_queries(self) -> int:
        return sum(1 for name, _ in self.calls if name == "get_chain_head")

    # =========================================================================
    # LedgerClient interface
    # =========================================================================

    async def get_chain_head(self) -> int:
        self.calls.append(("get_chain_head", None))
        if self.head_failures > 0:
            self.head_failures -= 1
            raise LedgerRequestError("get_chain_head", "mock failure")
        return self.head

    async def get_block(self, height: int) -> Block:
        self.calls.append(("get_block", height))
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)

        remaining = self._failures.get(height, 0)
        if remaining != 0:
            if remaining > 0:
                self._failures[height] = remaining - 1
            raise LedgerRequestError("get_block", f"mock failure for block {height}")

        return self._blocks.get(height) or make_block(height)

    def subscribe_block_stream(self, from_height: Optional[int] = None) -> MockBlockFeed:
        self.calls.append(("subscribe_block_stream", from_height))
        feed = MockBlockFeed()
        self.feeds.append(feed)
        return feed
