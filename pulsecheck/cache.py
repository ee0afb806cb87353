from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from starlette.concurrency import run_in_threadpool

from .logs import get_logger, log_event
from .metrics import CACHE_LOOKUPS_TOTAL
from .models import UnifiedResult

logger = get_logger("pulsecheck.cache")

AudioSource = Union[bytes, bytearray, str, Path]

_HASH_CHUNK_BYTES = 64 * 1024


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def hash_audio(source: AudioSource, chunk_size: int = _HASH_CHUNK_BYTES) -> str:
    """SHA-256 over the full audio content, streamed in chunks for paths.

    The filename never contributes to the key.
    """
    h = hashlib.sha256()
    if isinstance(source, (bytes, bytearray)):
        h.update(source)
        return h.hexdigest()
    with open(source, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


@dataclass
class CacheEntry:
    data: UnifiedResult
    timestamp: float
    expires_at: float


class ContentAddressedCache:
    """In-memory transcription cache keyed by audio content hash.

    Entries expire `ttl_seconds` after insertion and are treated as absent
    past that point even before `prune_expired` runs. When the cache holds
    `max_entries`, the oldest 10% (by insertion time) are evicted before a
    new key is inserted. Mutations happen synchronously on the event loop
    thread after hashing completes, so eviction never races an insert.
    """

    def __init__(
        self,
        ttl_seconds: float = 24 * 60 * 60,
        max_entries: int = 1000,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def _key(self, source: AudioSource) -> str:
        if isinstance(source, (bytes, bytearray)):
            return hash_audio(source)
        return await run_in_threadpool(hash_audio, source)

    async def get(self, source: AudioSource) -> Optional[UnifiedResult]:
        try:
            key = await self._key(source)
        except Exception as e:
            log_event(logger, "cache_hash_error", error=str(e))
            CACHE_LOOKUPS_TOTAL.labels(result="error").inc()
            return None
        entry = self._entries.get(key)
        if entry is None:
            CACHE_LOOKUPS_TOTAL.labels(result="miss").inc()
            return None
        if self._clock() > entry.expires_at:
            self._entries.pop(key, None)
            log_event(logger, "cache_expired", hash=key[:8])
            CACHE_LOOKUPS_TOTAL.labels(result="expired").inc()
            return None
        log_event(logger, "cache_hit", hash=key[:8])
        CACHE_LOOKUPS_TOTAL.labels(result="hit").inc()
        return entry.data

    async def set(self, source: AudioSource, result: UnifiedResult) -> None:
        try:
            key = await self._key(source)
        except Exception as e:
            log_event(logger, "cache_store_error", error=str(e))
            return
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self.evict_oldest(max(1, int(self.max_entries * 0.1)))
        now = self._clock()
        self._entries[key] = CacheEntry(data=result, timestamp=now, expires_at=now + self.ttl_seconds)
        log_event(logger, "cache_store", hash=key[:8], size=len(self._entries))

    def evict_oldest(self, count: int) -> int:
        if count <= 0:
            return 0
        oldest = sorted(self._entries.items(), key=lambda kv: kv[1].timestamp)[:count]
        for key, _ in oldest:
            del self._entries[key]
        log_event(logger, "cache_evicted", count=len(oldest))
        return len(oldest)

    def prune_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now > e.expires_at]
        for k in expired:
            del self._entries[k]
        if expired:
            log_event(logger, "cache_pruned", count=len(expired))
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        entries = list(self._entries.values())
        out: Dict[str, Any] = {
            "totalEntries": len(entries),
            "approxMemoryUsage": f"{round(len(json.dumps([e.data.to_dict() for e in entries])) / 1024)} KB",
        }
        if entries:
            timestamps = [e.timestamp for e in entries]
            out["oldestEntry"] = _iso(min(timestamps))
            out["newestEntry"] = _iso(max(timestamps))
        return out

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        log_event(logger, "cache_cleared", count=size)
        return size
