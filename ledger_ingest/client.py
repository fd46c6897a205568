"""
Steem Ledger Client

JSON-RPC client for a Steem-compatible node plus the interfaces the
ingestion engine consumes.

API Documentation: https://developers.steem.io/apidefinitions/

Methods used:
- condenser_api.get_dynamic_global_properties  (chain head)
- condenser_api.get_block                      (block by height)
"""

import asyncio
import itertools
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import aiohttp

from .config import ClientConfig
from .errors import LedgerRequestError
from .types import Block


class BlockFeed(Protocol):
    """Push feed of new blocks. Iteration ends on pause() or transport end."""

    def __aiter__(self) -> AsyncIterator[Block]: ...

    def pause(self) -> None: ...

    @property
    def paused(self) -> bool: ...


class LedgerClient(Protocol):
    """What the ingestion engine needs from a ledger connection."""

    async def get_chain_head(self) -> int: ...

    async def get_block(self, height: int) -> Block: ...

    def subscribe_block_stream(self, from_height: Optional[int] = None) -> BlockFeed: ...


class SteemClient:
    """
    Steem JSON-RPC client.

    Usage:
        client = SteemClient(ClientConfig(node_url="https://api.steemit.com"))
        await client.start()
        head = await client.get_chain_head()
        block = await client.get_block(head)
        await client.stop()
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self._logger = logging.getLogger("SteemClient")
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def start(self):
        """Open the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )

    async def stop(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "SteemClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # =========================================================================
    # JSON-RPC
    # =========================================================================

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Execute one JSON-RPC 2.0 call and return its result.

        Raises LedgerRequestError on transport errors, non-200 responses
        and JSON-RPC error objects.
        """
        if self._session is None:
            raise LedgerRequestError(method, "client not started")

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }

        try:
            async with self._session.post(
                self.config.node_url,
                json=payload,
                headers={"Content-Type": "application/json"}
            ) as response:
                if response.status != 200:
                    raise LedgerRequestError(method, f"HTTP {response.status}")
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise LedgerRequestError(method, str(e) or type(e).__name__) from e

        if "error" in data:
            error = data["error"] or {}
            raise LedgerRequestError(method, error.get("message", str(error)))
        return data.get("result")

    # =========================================================================
    # Ledger API
    # =========================================================================

    async def get_dynamic_global_properties(self) -> Dict[str, Any]:
        result = await self.call("condenser_api.get_dynamic_global_properties")
        if not result:
            raise LedgerRequestError("condenser_api.get_dynamic_global_properties", "empty result")
        return result

    async def get_chain_head(self) -> int:
        """Height of the current head block."""
        props = await self.get_dynamic_global_properties()
        return int(props["head_block_number"])

    async def get_block(self, height: int) -> Block:
        """Fetch a block by height. Raises LedgerRequestError if the node has none."""
        result = await self.call("condenser_api.get_block", [height])
        if not result:
            raise LedgerRequestError("condenser_api.get_block", f"block {height} not found")
        return Block.from_api(result)

    def subscribe_block_stream(self, from_height: Optional[int] = None) -> "SteemBlockStream":
        return SteemBlockStream(self, self.config, from_height)


class SteemBlockStream:
    """
    Live block feed built on head polling.

    Starts at `from_height` (or, without one, at the head block seen on
    the first poll) and yields every following block in height order.
    Iteration ends when pause() is called or after `stream_error_limit`
    consecutive request failures.

    Usage:
        feed = client.subscribe_block_stream(from_height=cursor)
        async for block in feed:
            process(block)
    """

    def __init__(self, client: SteemClient, config: ClientConfig, from_height: Optional[int] = None):
        self._client = client
        self._config = config
        self._from_height = from_height
        self._logger = logging.getLogger("SteemBlockStream")
        self._paused = False
        self._wake = asyncio.Event()

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        """Stop producing blocks; the current iteration ends cleanly."""
        self._paused = True
        self._wake.set()

    def __aiter__(self) -> AsyncIterator[Block]:
        return self._blocks()

    async def _blocks(self) -> AsyncIterator[Block]:
        next_height: Optional[int] = self._from_height
        consecutive_errors = 0
        started = False

        while not self._paused:
            try:
                head = await self._client.get_chain_head()
                if next_height is None:
                    next_height = head
                if not started:
                    started = True
                    self._logger.info(f"Starting live stream from block {next_height} (head {head})")

                while next_height <= head and not self._paused:
                    block = await self._client.get_block(next_height)
                    next_height += 1
                    consecutive_errors = 0
                    yield block

            except LedgerRequestError as e:
                consecutive_errors += 1
                self._logger.warning(
                    f"Stream poll failed ({consecutive_errors}/{self._config.stream_error_limit}): {e}"
                )
                if consecutive_errors >= self._config.stream_error_limit:
                    self._logger.error("Stream giving up after repeated failures")
                    return

            if self._paused:
                break

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._config.block_interval)
            except asyncio.TimeoutError:
                pass
