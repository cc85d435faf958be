"""In-process keyed cache shared by the certificate store and ticket manager.

Instances are created by process bootstrap and injected into the components
that use them; nothing here holds module-level state.
"""

import threading
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class MemoryCache(Generic[K, V]):
    """Thread-safe dictionary with the handful of operations the caches need."""

    def __init__(self) -> None:
        self._entries: dict[K, V] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._entries[key] = value

    def pop(self, key: K) -> V | None:
        with self._lock:
            return self._entries.pop(key, None)

    def pop_matching(self, predicate: Callable[[K], bool]) -> list[K]:
        """Remove every entry whose key satisfies ``predicate``; return removed keys."""
        with self._lock:
            removed = [key for key in self._entries if predicate(key)]
            for key in removed:
                del self._entries[key]
            return removed

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
