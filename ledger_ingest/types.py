"""
Ledger Data Types

Typed views over the block structures returned by a Steem-style node.

Operation encodings accepted:
- condenser_api: ["custom_json", {...}]
- appbase:       {"type": "custom_json_operation", "value": {...}}
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


CUSTOM_JSON = "custom_json"


class EngineMode(Enum):
    """Ingestion engine lifecycle state."""
    CREATED = "CREATED"
    CATCHING_UP = "CATCHING_UP"
    STREAMING = "STREAMING"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class CustomJsonOperation:
    """The structured-data operation routed to registered handlers."""
    id: str
    json: str
    required_posting_auths: Tuple[str, ...] = ()
    required_auths: Tuple[str, ...] = ()

    @property
    def authorizing_identity(self) -> Optional[str]:
        """First posting authority, falling back to the first active authority."""
        if self.required_posting_auths:
            return self.required_posting_auths[0]
        if self.required_auths:
            return self.required_auths[0]
        return None

    @classmethod
    def from_api(cls, body: Dict[str, Any]) -> "CustomJsonOperation":
        return cls(
            id=str(body.get("id") or ""),
            json=body.get("json", ""),
            required_posting_auths=_accounts(body.get("required_posting_auths")),
            required_auths=_accounts(body.get("required_auths")),
        )


def _accounts(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(name) for name in value)


def normalize_operation(raw: Any) -> Tuple[str, Dict[str, Any]]:
    """
    Return (op_name, op_body) for either operation encoding.

    Unrecognised shapes, and bodies that are not objects, come back as
    ("", {}) so they never match a handler.
    """
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        name, body = str(raw[0]), raw[1]
    elif isinstance(raw, dict):
        name, body = str(raw.get("type", "")), raw.get("value")
        if name.endswith("_operation"):
            name = name[: -len("_operation")]
    else:
        return "", {}
    if not isinstance(body, dict):
        return "", {}
    return name, body


@dataclass
class Transaction:
    """A signed transaction: an ordered list of operations."""
    operations: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Any) -> "Transaction":
        if not isinstance(data, dict):
            return cls()
        return cls(operations=[normalize_operation(op) for op in data.get("operations") or []])

    def custom_json_operations(self) -> List[CustomJsonOperation]:
        return [
            CustomJsonOperation.from_api(body)
            for name, body in self.operations
            if name == CUSTOM_JSON
        ]


@dataclass
class Block:
    """Parsed block data."""
    block_id: str
    transactions: List[Transaction]
    timestamp: str = ""
    raw: Optional[Dict[str, Any]] = None

    @property
    def tx_count(self) -> int:
        return len(self.transactions)

    @property
    def height(self) -> int:
        """Height encoded in the block id (only meaningful for streamed blocks)."""
        return height_from_block_id(self.block_id)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Block":
        return cls(
            block_id=str(data.get("block_id") or ""),
            transactions=[Transaction.from_api(tx) for tx in data.get("transactions") or []],
            timestamp=data.get("timestamp", ""),
            raw=data,
        )


def height_from_block_id(block_id: str) -> int:
    """
    Derive block height from a block id.

    The first 4 bytes (8 hex chars) of a Steem block id are the big-endian
    block number.
    """
    if len(block_id) < 8:
        raise ValueError(f"Block id too short to carry a height: {block_id!r}")
    return int(block_id[:8], 16)


def block_id_for_height(height: int, suffix: str = "") -> str:
    """Build a block id carrying `height`, padded to 40 hex chars."""
    return (f"{height:08x}" + suffix).ljust(40, "0")[:40]
