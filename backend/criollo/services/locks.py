"""Per-table locking: one writer per consistency unit at a time."""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Iterator, Optional

from criollo.storage import Storage

TAKEOUT_KEY = "takeout"


class TableLockManager:
    """Hands out one re-entrant lock per table id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def lock_for(self, table_id: Optional[int]) -> threading.RLock:
        key = TAKEOUT_KEY if table_id is None else table_id
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *table_ids: Optional[int]) -> Iterator[None]:
        """Acquire the locks of several tables in a fixed order."""
        keys = sorted({TAKEOUT_KEY if t is None else t for t in table_ids}, key=str)
        locks = [self.lock_for(None if k == TAKEOUT_KEY else k) for k in keys]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()


@contextmanager
def consistency_unit(storage: Storage, locks: TableLockManager,
                     table_ids: Iterable[Optional[int]]) -> Iterator[None]:
    """Hold the table locks and one storage transaction for the whole block."""
    with locks.hold(*table_ids):
        with storage.atomic():
            yield
