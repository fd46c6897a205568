"""
Operation Registry

Maps namespaced custom_json identifiers to handlers, plus the single
new-block callback slot.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .types import Block


# handler(payload, authorizing_identity); may be sync or async
OperationHandler = Callable[[Any, Optional[str]], Union[None, Awaitable[None]]]

# callback(height, block); may be sync or async
BlockCallback = Callable[[int, Block], Union[None, Awaitable[None]]]


def _noop_block_callback(height: int, block: Block) -> None:
    return None


class OperationRegistry:
    """
    Handler registry keyed by prefix + identifier.

    Usage:
        registry = OperationRegistry(prefix="myapp_")
        registry.register("greet", on_greet)   # stored as "myapp_greet"
        handler = registry.lookup("myapp_greet")
    """

    def __init__(self, prefix: str = ""):
        self._prefix = prefix
        self._handlers: Dict[str, OperationHandler] = {}
        self._block_callback: BlockCallback = _noop_block_callback
        self._logger = logging.getLogger("OperationRegistry")

    @property
    def prefix(self) -> str:
        return self._prefix

    def register(self, identifier: str, handler: OperationHandler) -> None:
        """Register a handler. A later registration for the same identifier replaces it."""
        if not callable(handler):
            raise TypeError(f"Handler for '{identifier}' is not callable")
        key = self._prefix + identifier
        if key in self._handlers:
            self._logger.debug(f"Replacing handler for {key}")
        self._handlers[key] = handler

    def unregister(self, identifier: str) -> bool:
        """Remove a handler. Returns True if one was registered."""
        return self._handlers.pop(self._prefix + identifier, None) is not None

    def lookup(self, op_id: str) -> Optional[OperationHandler]:
        """Handler for a raw (already prefixed) operation id, or None."""
        return self._handlers.get(op_id)

    def identifiers(self) -> List[str]:
        """Registered identifiers with the prefix stripped."""
        return [key[len(self._prefix):] for key in self._handlers]

    def set_block_callback(self, callback: Optional[BlockCallback]) -> None:
        """Replace the block callback. None restores the no-op default."""
        if callback is not None and not callable(callback):
            raise TypeError("Block callback is not callable")
        self._block_callback = callback or _noop_block_callback

    @property
    def block_callback(self) -> BlockCallback:
        return self._block_callback

    def __len__(self) -> int:
        return len(self._handlers)
