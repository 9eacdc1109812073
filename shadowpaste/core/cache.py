"""In-memory cache for query embeddings."""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Dict, List, NamedTuple, Optional


class CachedVector(NamedTuple):
    embedding: List[float]
    expires_at: float


class QueryEmbeddingCache:
    """Query text to vector, with TTL and LRU eviction.

    ``cache`` is kept in recency order: oldest first, most recently used last.
    """

    def __init__(self, max_size: int = 256, ttl: int = 3600):
        self.cache: "OrderedDict[str, CachedVector]" = OrderedDict()
        self.max_size = max_size
        self.ttl = ttl
        self._lock = asyncio.Lock()

    async def get(self, query: str) -> Optional[List[float]]:
        async with self._lock:
            cached = self.cache.get(query)
            if cached is None:
                return None

            if time.monotonic() > cached.expires_at:
                del self.cache[query]
                return None

            self.cache.move_to_end(query)
            return cached.embedding

    async def set(self, query: str, embedding: List[float], ttl: Optional[int] = None):
        async with self._lock:
            if len(self.cache) >= self.max_size * 0.8:
                self._cleanup_expired()

            if query not in self.cache and len(self.cache) >= self.max_size:
                self._evict_lru()

            expires_at = time.monotonic() + (self.ttl if ttl is None else ttl)
            self.cache[query] = CachedVector(embedding, expires_at)
            self.cache.move_to_end(query)

    async def delete(self, query: str):
        async with self._lock:
            self.cache.pop(query, None)

    async def clear(self):
        async with self._lock:
            self.cache.clear()

    def _cleanup_expired(self):
        now = time.monotonic()
        for query in [q for q, c in self.cache.items() if now > c.expires_at]:
            del self.cache[query]

    def _evict_lru(self):
        """Drop the least recently used 20%."""
        for _ in range(max(1, len(self.cache) // 5)):
            if not self.cache:
                return
            self.cache.popitem(last=False)

    def get_stats(self) -> Dict[str, Any]:
        now = time.monotonic()
        expired = sum(1 for c in self.cache.values() if now > c.expires_at)

        return {
            "total_entries": len(self.cache),
            "expired_entries": expired,
            "active_entries": len(self.cache) - expired,
            "max_size": self.max_size,
            "usage_percent": (
                round(len(self.cache) / self.max_size * 100, 1) if self.max_size else 0.0
            ),
        }
