"""
Ingestion Engine

Owns the cursor, the registry and the lifecycle of one ingestion run.

Lifecycle:
    CREATED --start()--> CATCHING_UP --caught up--> STREAMING --stop()--> STOPPED
                              |                                   ^
                              +-------------- stop() -------------+

- CATCHING_UP -> STREAMING happens at most once per engine
- stop() sets the shutdown flag and fires the completion callback once
  the run task has exited. While catching up it waits for the current
  iteration to observe the flag. While streaming it pauses the feed and
  waits up to shutdown_grace before cancelling the feed wait
- A block being dispatched is never cancelled; shutdown waits for it
- If the run task fails, the engine moves to STOPPED
- The cursor is only written by the active mode; catch-up has fully
  returned before streaming starts

Usage:
    engine = IngestionEngine(client, EngineConfig(initial_cursor=41_000_000,
                                                  operation_namespace_prefix="myapp_"))
    engine.register("greet", on_greet)
    engine.set_block_callback(on_block)
    await engine.start()
    ...
    await engine.stop(lambda: save_cursor(engine.get_cursor()))
"""

import asyncio
import inspect
import logging
import time
from typing import Callable, Dict, List, Optional

from .catch_up import CatchUpFetcher, CatchUpOutcome
from .client import LedgerClient
from .config import EngineConfig
from .cursor import BlockCursor
from .dispatcher import BlockDispatcher
from .errors import IngestionError
from .head_tracker import HeadTracker
from .metrics import EngineMetrics
from .registry import BlockCallback, OperationHandler, OperationRegistry
from .stream_consumer import StreamConsumer
from .types import EngineMode


ErrorCallback = Callable[[IngestionError], None]


class IngestionEngine:
    """
    Dual-mode block ingestion engine.

    Catches up on historical blocks by polling, then switches to the live
    block feed. Every block goes through the same dispatcher.
    """

    def __init__(self, client: LedgerClient, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.config.validate()
        self._client = client
        self._logger = logging.getLogger("IngestionEngine")

        # State
        self._mode = EngineMode.CREATED
        self._cursor = BlockCursor(self.config.initial_cursor)
        self._registry = OperationRegistry(self.config.operation_namespace_prefix)
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._shutdown: Optional[asyncio.Future] = None
        self._on_error: Optional[ErrorCallback] = None
        self.metrics = EngineMetrics()

        # Components
        self._dispatcher = BlockDispatcher(self._registry, self.metrics, self._report_error)
        self._head = HeadTracker(
            client,
            initial_delay=self.config.head_retry_initial_delay,
            max_delay=self.config.head_retry_max_delay,
        )
        self._catch_up = CatchUpFetcher(
            client,
            self._cursor,
            self._dispatcher,
            self._head,
            self.config,
            self.metrics,
            self._stop_event,
            self._report_error,
        )
        self._stream = StreamConsumer(
            client,
            self._cursor,
            self._dispatcher,
            self.metrics,
            self._stop_event,
            self._report_error,
        )

    # =========================================================================
    # Registration (allowed at any time, including while running)
    # =========================================================================

    def register(self, operation_id: str, handler: OperationHandler) -> None:
        """Route custom_json operations with id prefix+operation_id to handler."""
        self._registry.register(operation_id, handler)

    on = register

    def set_block_callback(self, callback: Optional[BlockCallback]) -> None:
        """Called with (height, block) for every processed block."""
        self._registry.set_block_callback(callback)

    on_block = set_block_callback

    def set_error_callback(self, callback: Optional[ErrorCallback]) -> None:
        """Observer for fetch, head query, payload and stream termination errors."""
        self._on_error = callback

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Begin catching up from the configured cursor. May be called once."""
        if self._mode is not EngineMode.CREATED:
            raise RuntimeError(f"Engine cannot start from state {self._mode.value}")

        self._mode = EngineMode.CATCHING_UP
        self.metrics.start_time = time.time()
        self._task = asyncio.create_task(self._run(), name="ledger-ingest")
        self._logger.info(f"Ingestion started at block {self._cursor.value}")

    async def stop(self, on_stopped: Optional[Callable] = None) -> None:
        """
        Stop ingesting and invoke on_stopped once shutdown has completed.

        Safe to call more than once; each caller's on_stopped fires once.
        """
        if self._shutdown is None:
            self._shutdown = asyncio.ensure_future(self._shutdown_once())
        await asyncio.shield(self._shutdown)

        if on_stopped is not None:
            result = on_stopped()
            if inspect.isawaitable(result):
                await result

    async def join(self) -> None:
        """Wait until ingestion ends (shutdown or stream termination)."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _shutdown_once(self) -> None:
        self._stop_event.set()

        if self._task is None:
            self._mode = EngineMode.STOPPED
            self._logger.info("Engine stopped before start")
            return

        self._logger.info(f"Stopping ({self._mode.value}) at block {self._cursor.value}")
        grace = None
        if self._mode is EngineMode.STREAMING:
            self._stream.pause()
            grace = self.config.shutdown_grace

        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=grace)
        except asyncio.TimeoutError:
            if self._dispatcher.in_flight:
                self._logger.info("Waiting for dispatch of the current block to finish")
                await self._dispatcher.wait_idle()
            if not self._task.done():
                self._logger.warning(f"Feed did not close within {grace}s; cancelling")
                self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

        self._mode = EngineMode.STOPPED
        self._logger.info(f"Engine stopped at block {self._cursor.value}")

    async def _run(self) -> None:
        try:
            outcome = await self._catch_up.run()
            if outcome is not CatchUpOutcome.CAUGHT_UP or self._stop_event.is_set():
                return

            self._mode = EngineMode.STREAMING
            self.metrics.streaming_since = time.time()
            self._logger.info(f"Switching to live stream at block {self._cursor.value}")
            await self._stream.run()

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.exception(f"Ingestion loop failed: {e}")
            self._stop_event.set()
            self._mode = EngineMode.STOPPED

    def _report_error(self, error: IngestionError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as e:
            self._logger.error(f"Error callback failed: {e}")

    # =========================================================================
    # External API
    # =========================================================================

    def get_cursor(self) -> int:
        """Next block height to be processed."""
        return self._cursor.value

    def is_streaming(self) -> bool:
        return self._mode is EngineMode.STREAMING

    @property
    def mode(self) -> EngineMode:
        return self._mode

    def registered_operations(self) -> List[str]:
        return self._registry.identifiers()

    def get_stats(self) -> Dict:
        """Get engine statistics."""
        return {
            "mode": self._mode.value,
            "cursor": self._cursor.value,
            "prefix": self._registry.prefix,
            "handlers": len(self._registry),
            **self.metrics.to_dict(),
        }
