"""
The scan cursor: highest fully-processed block number.

The in-memory value only moves after the store has durably accepted
the new value, and it never moves backwards.
"""

import threading

from .logger import get_logger

logger = get_logger()


class MonitorCursor:

    def __init__(self, store, value: int):
        if value < 0:
            raise ValueError("Cursor must be non-negative")
        self._store = store
        self._value = value
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    @classmethod
    def initialize(cls, store, chain, lookback: int = 0) -> "MonitorCursor":
        """
        Resume from the persisted cursor, or start `lookback` blocks behind
        the chain head when nothing has been persisted yet.

        Args:
            store: Cursor store with get()/set()
            chain: Chain client, consulted only when no cursor is persisted
            lookback: Blocks behind head to start from (0 = start at block 0)

        Returns:
            MonitorCursor
        """
        persisted = store.get()
        if persisted > 0:
            logger.info(f"Resuming from last processed block {persisted}")
            return cls(store, persisted)

        if lookback > 0:
            head = chain.head_height()
            start = max(head - lookback, 0)
            logger.info(
                f"No previous cursor; starting {lookback} blocks behind head",
                head=head,
                cursor=start,
            )
            store.set(start)
            return cls(store, start)

        logger.info("No previous cursor and no lookback configured; starting from block 0")
        return cls(store, 0)

    def advance(self, block_number: int) -> None:
        """
        Persist then adopt `block_number`.

        Raises:
            ValueError: If `block_number` is behind the current cursor
            PersistenceError: If the store write fails (cursor unchanged)
        """
        with self._lock:
            if block_number < self._value:
                raise ValueError(
                    f"Cursor cannot regress from {self._value} to {block_number}"
                )
            if block_number == self._value:
                return
            self._store.set(block_number)
            self._value = block_number
