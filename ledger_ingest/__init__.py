"""
Ledger Ingest

Sequential block ingestion for Steem-style ledgers. Replays historical
blocks until the chain head is reached, then follows the live block feed,
routing custom_json operations to handlers registered per application id.

Components:
- IngestionEngine: Lifecycle, cursor ownership, public API
- CatchUpFetcher: Polls historical blocks one height at a time
- StreamConsumer: Follows the live block feed
- BlockDispatcher: Routes a block to the block callback and op handlers
- OperationRegistry: Namespaced handler table
- HeadTracker: Chain head queries
- SteemClient: aiohttp JSON-RPC ledger client
"""

from .catch_up import CatchUpFetcher, CatchUpOutcome
from .client import BlockFeed, LedgerClient, SteemBlockStream, SteemClient
from .config import ClientConfig, EngineConfig
from .cursor import BlockCursor
from .dispatcher import BlockDispatcher, DispatchResult
from .engine import IngestionEngine
from .errors import (
    ConfigurationError,
    HeadQueryError,
    IngestionError,
    LedgerRequestError,
    PayloadDecodeError,
    StreamTerminationError,
    TransientFetchError,
)
from .head_tracker import HeadTracker
from .metrics import EngineMetrics
from .registry import OperationRegistry
from .stream_consumer import StreamConsumer, StreamOutcome
from .types import Block, CustomJsonOperation, EngineMode, Transaction, height_from_block_id

__all__ = [
    "IngestionEngine",
    "EngineConfig",
    "ClientConfig",
    "EngineMode",
    "CatchUpFetcher",
    "CatchUpOutcome",
    "StreamConsumer",
    "StreamOutcome",
    "BlockDispatcher",
    "DispatchResult",
    "OperationRegistry",
    "HeadTracker",
    "BlockCursor",
    "EngineMetrics",
    "LedgerClient",
    "BlockFeed",
    "SteemClient",
    "SteemBlockStream",
    "Block",
    "Transaction",
    "CustomJsonOperation",
    "height_from_block_id",
    "IngestionError",
    "ConfigurationError",
    "LedgerRequestError",
    "TransientFetchError",
    "HeadQueryError",
    "StreamTerminationError",
    "PayloadDecodeError",
]
