"""Short-TTL cache of complete query responses."""

from __future__ import annotations

import copy
import json
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.config import settings
from src.retrieval.models import QueryRequest


@dataclass
class CacheEntry:
    result: dict[str, Any]
    stored_at: float


def make_cache_key(request: QueryRequest, namespace: str) -> str:
    """Deterministic key over the namespace and every request field."""
    payload = {"namespace": namespace, **request.cache_payload()}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


class ResultCache:
    """Thread-safe TTL cache with LRU capacity bound.

    Expired entries are removed when read; inserting beyond ``max_entries``
    evicts the least recently used entry. Stored and returned values are deep
    copies so callers cannot mutate cached responses.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.max_entries = settings.cache_max_entries if max_entries is None else max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return copy.deepcopy(entry.result)

    def set(self, key: str, result: dict[str, Any]) -> None:
        if self.max_entries <= 0:
            return
        with self._lock:
            self._entries[key] = CacheEntry(copy.deepcopy(result), self._clock())
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
