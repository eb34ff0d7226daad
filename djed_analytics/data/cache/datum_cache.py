"""
DJED ANALYTICS - Datum Cache Layer
Datums are addressed by their hash, so a cached value never goes stale.
Re-running a cycle over history already seen costs no datum requests.
"""
from typing import Any, Dict, Optional
from cachetools import LRUCache

from djed_analytics.config.settings import get_settings


class DatumCache:
    """Bounded LRU cache of datum JSON values keyed by datum hash."""

    def __init__(self, maxsize: Optional[int] = None):
        size = maxsize if maxsize is not None else get_settings().batch.datum_cache_size
        self._cache: LRUCache = LRUCache(maxsize=size)
        self._hits = 0
        self._misses = 0

    def get(self, datum_hash: str) -> Optional[Dict[str, Any]]:
        value = self._cache.get(datum_hash)
        if value is None:
            self._misses += 1
        else:
            self._hits += 1
        return value

    def put(self, datum_hash: str, value: Dict[str, Any]) -> None:
        self._cache[datum_hash] = value

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "size": len(self._cache),
            "maxsize": int(self._cache.maxsize),
            "hits": self._hits,
            "misses": self._misses,
        }
