"""
Ingestion Error Taxonomy

Every failure the engine can meet while ingesting blocks.

Handling policy:
- ConfigurationError is raised at construction and is fatal
- Everything else is handled where it occurs (logged, counted, reported
  to the error observer) and never aborts the ingestion loop
"""

from typing import Optional


class IngestionError(Exception):
    """Base class for ledger ingestion failures."""
    pass


class ConfigurationError(IngestionError):
    """Raised when the engine is constructed with invalid settings."""
    pass


class LedgerRequestError(IngestionError):
    """Raised by a ledger client when an RPC call fails or returns nothing usable."""

    def __init__(self, method: str, message: str):
        super().__init__(f"{method}: {message}")
        self.method = method


class TransientFetchError(IngestionError):
    """A historical block could not be fetched; the height is skipped."""

    def __init__(self, height: int, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to fetch block {height}: {cause}")
        self.height = height
        self.cause = cause


class HeadQueryError(IngestionError):
    """The chain head could not be queried."""

    def __init__(self, cause: Optional[BaseException] = None):
        super().__init__(f"Head query failed: {cause}")
        self.cause = cause


class StreamTerminationError(IngestionError):
    """The live block feed ended without a pause request."""

    def __init__(self, cursor: int):
        super().__init__(f"Block stream ended unexpectedly at cursor {cursor}")
        self.cursor = cursor


class PayloadDecodeError(IngestionError):
    """A matched operation carried a payload that is not valid JSON."""

    def __init__(self, op_id: str, height: int, cause: Optional[BaseException] = None):
        super().__init__(f"Malformed payload for '{op_id}' in block {height}: {cause}")
        self.op_id = op_id
        self.height = height
        self.cause = cause
