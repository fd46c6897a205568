"""
Block Dispatcher

Routes one block to the registered callbacks:
1. the new-block callback, always, exactly once
2. every custom_json operation with a registered handler, in order

A bad payload or a failing handler is contained to its own operation;
sibling operations and later blocks are still processed.
"""

import asyncio
import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import IngestionError, PayloadDecodeError
from .metrics import EngineMetrics
from .registry import OperationRegistry
from .types import Block


ErrorReporter = Callable[[IngestionError], None]


@dataclass
class DispatchResult:
    """Outcome of dispatching a single block."""
    height: int
    operations_matched: int = 0
    handlers_invoked: int = 0
    errors: int = 0


async def _call(callback, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class BlockDispatcher:
    """
    Dispatches decoded blocks to the registry.

    Usage:
        dispatcher = BlockDispatcher(registry)
        result = await dispatcher.process(block, height)
    """

    def __init__(
        self,
        registry: OperationRegistry,
        metrics: Optional[EngineMetrics] = None,
        report_error: Optional[ErrorReporter] = None,
    ):
        self._registry = registry
        self._metrics = metrics or EngineMetrics()
        self._report_error = report_error
        self._logger = logging.getLogger("BlockDispatcher")
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def in_flight(self) -> bool:
        """True while a block is being dispatched."""
        return not self._idle.is_set()

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def process(self, block: Block, height: int) -> DispatchResult:
        self._idle.clear()
        try:
            return await self._process(block, height)
        finally:
            self._idle.set()

    async def _process(self, block: Block, height: int) -> DispatchResult:
        result = DispatchResult(height=height)

        try:
            await _call(self._registry.block_callback, height, block)
        except Exception as e:
            result.errors += 1
            self._metrics.handler_errors += 1
            self._logger.exception(f"Block callback failed at block {height}: {e}")

        for tx in block.transactions:
            try:
                operations = tx.custom_json_operations()
            except Exception as e:
                result.errors += 1
                self._metrics.payload_errors += 1
                self._logger.warning(f"Unreadable transaction in block {height}: {e!r}")
                continue

            for op in operations:
                handler = self._registry.lookup(op.id)
                if handler is None:
                    continue

                result.operations_matched += 1
                self._metrics.operations_matched += 1

                try:
                    payload = json.loads(op.json)
                except (TypeError, ValueError) as e:
                    result.errors += 1
                    self._metrics.payload_errors += 1
                    error = PayloadDecodeError(op.id, height, e)
                    self._logger.warning(str(error))
                    self._report(error)
                    continue

                try:
                    await _call(handler, payload, op.authorizing_identity)
                except Exception as e:
                    result.errors += 1
                    self._metrics.handler_errors += 1
                    self._logger.exception(f"Handler for '{op.id}' failed at block {height}: {e}")
                    continue

                result.handlers_invoked += 1
                self._metrics.handlers_invoked += 1

        self._metrics.blocks_processed += 1
        self._metrics.last_block_time = time.time()
        return result

    def _report(self, error: IngestionError) -> None:
        if self._report_error is not None:
            self._report_error(error)
