"""
Block Cursor

The next block height to process. Never moves backwards.
"""


class BlockCursor:
    """
    Monotonic height cursor.

    Invariant: value >= 1 and never decreases.
    """

    def __init__(self, initial: int = 1):
        if initial < 1:
            raise ValueError(f"Cursor must start at >= 1, got {initial}")
        self._value = initial

    @property
    def value(self) -> int:
        return self._value

    def advance(self) -> int:
        """Move past the current height. Returns the new value."""
        self._value += 1
        return self._value

    def advance_to(self, height: int) -> int:
        """Jump forward to `height`."""
        if height < self._value:
            raise ValueError(f"Cursor cannot move backwards: {self._value} -> {height}")
        self._value = height
        return self._value

    def __repr__(self) -> str:
        return f"BlockCursor({self._value})"
