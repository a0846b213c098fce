"""A size-bounded response cache evicting the least recently used entry."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

MAX_SIZE = 200 * (1 << 20)
MAX_ELEMENT_SIZE = 10 * (1 << 20)
# Fixed bookkeeping cost charged for every entry on top of its data and key.
ELEMENT_OVERHEAD = 40

Key = Union[str, bytes]


@dataclass
class CacheElement:
    """One cached response, keyed by the raw request that produced it."""

    data: bytes
    url: Key
    lru_time_track: float

    @property
    def len(self) -> int:
        """Length of the cached response data."""
        return len(self.data)

    @property
    def charged_size(self) -> int:
        """Bytes this element counts against the cache's capacity."""
        return len(self.data) + 1 + len(self.url) + ELEMENT_OVERHEAD


class LRUCache:
    """Thread-safe cache of responses with least-recently-used eviction."""

    def __init__(
        self,
        max_size: int = MAX_SIZE,
        max_element_size: int = MAX_ELEMENT_SIZE,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.max_size = max_size
        self.max_element_size = max_element_size
        self._clock = clock if clock is not None else time.time
        self._elements: list[CacheElement] = []  # newest first
        self._lock = threading.RLock()
        self.size = 0

    def find(self, url: Key) -> Optional[CacheElement]:
        """Return the entry for ``url`` and mark it as just used, or None."""
        with self._lock:
            for element in self._elements:
                if element.url == url:
                    element.lru_time_track = self._clock()
                    return element
            return None

    def remove_oldest(self) -> Optional[CacheElement]:
        """Evict and return the least recently used entry, or None if empty."""
        with self._lock:
            if not self._elements:
                return None
            oldest = min(self._elements, key=lambda e: e.lru_time_track)
            self._elements.remove(oldest)
            self.size -= oldest.charged_size
            return oldest

    def add(self, data: Union[bytes, bytearray, str], url: Key) -> bool:
        """Store a response; returns False when it is too large to cache."""
        payload = data.encode("latin-1") if isinstance(data, str) else bytes(data)
        element = CacheElement(data=payload, url=url, lru_time_track=0.0)
        element_size = element.charged_size
        with self._lock:
            if element_size > self.max_element_size or element_size > self.max_size:
                return False
            while self.size + element_size > self.max_size:
                self.remove_oldest()
            element.lru_time_track = self._clock()
            self._elements.insert(0, element)
            self.size += element_size
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._elements)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return any(element.url == url for element in self._elements)