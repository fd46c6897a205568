"""
Ingestion Metrics

Counters for engine throughput and health.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict
import time


@dataclass
class EngineMetrics:
    """Metrics for IngestionEngine."""

    # Block processing
    blocks_processed: int = 0
    blocks_caught_up: int = 0
    blocks_streamed: int = 0
    stale_blocks_discarded: int = 0

    # Operations
    operations_matched: int = 0
    handlers_invoked: int = 0

    # Errors
    payload_errors: int = 0
    handler_errors: int = 0
    fetch_failures: int = 0
    fetch_retries: int = 0
    head_query_errors: int = 0
    stream_terminations: int = 0

    # Timing
    start_time: float = field(default_factory=time.time)
    last_block_time: float = 0.0
    streaming_since: float = 0.0

    @property
    def blocks_per_second(self) -> float:
        elapsed = time.time() - self.start_time
        return self.blocks_processed / elapsed if elapsed > 0 else 0.0

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["blocks_per_second"] = round(self.blocks_per_second, 3)
        return data
