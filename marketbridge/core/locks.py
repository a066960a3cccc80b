import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLock:
    """One mutex per key, created on demand and dropped once nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, holders + waiters]
        self._entries: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
