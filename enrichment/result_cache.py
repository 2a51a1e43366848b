"""
In-process TTL cache for decoded imagery results.

Entries expire after a fixed TTL and the cache is bounded with
least-recently-used eviction. The clock is injectable so expiry can be
tested without sleeping.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class ResultCache:
    """TTL + LRU cache keyed by request inputs"""

    def __init__(
        self,
        ttl_seconds: float = 3600,
        maxsize: int = 4096,
        clock: Callable[[], float] = time.monotonic
    ):
        self._ttl = ttl_seconds
        self._maxsize = maxsize
        self._clock = clock
        self._data: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                self.misses += 1
                return None

            expires_at, value = item
            if self._clock() >= expires_at:
                del self._data[key]
                self.misses += 1
                return None

            self._data.move_to_end(key)
            self.hits += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (self._clock() + self._ttl, value)
            while len(self._data) > self._maxsize:
                evicted_key, _ = self._data.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Result cache eviction: {evicted_key} (size={len(self._data)})")

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._data)
