from __future__ import annotations

from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedCache(Generic[K, V]):
    """Least-recently-used cache with a fixed capacity.

    Owned by whichever component creates it; nothing is shared between
    pipeline runs unless the caller passes the same instance.
    """

    def __init__(self, max_size: int = 1024):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._data: OrderedDict[K, V] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def get_or_compute(self, key: K, compute: Callable[[K], V]) -> V:
        if key in self._data:
            self.hits += 1
            self._data.move_to_end(key)
            return self._data[key]
        self.misses += 1
        value = compute(key)
        self._data[key] = value
        if len(self._data) > self.max_size:
            self._data.popitem(last=False)
        return value

    def clear(self) -> None:
        self._data.clear()
