"""
Recipe cache with exact and safety-gated similarity matching.

Lookup order:
  1. Exact match on the fingerprint key                       → one read
  2. Similarity scan over a snapshot of all stored entries    → O(n)
     (only entries whose allergy set equals the request's are scored)

Lookup side effects, part of the contract:
  - an expired exact entry is deleted before the scan
  - expired and corrupt entries met during the scan are deleted
  - the winning entry's accessCount / lastAccessedAt are bumped

Eviction: after each store(), while count > max_size the entry with the
lowest keep score  access_count / (1 + staleness_seconds)  is removed, so a
frequently and recently used recipe outlives one touched once long ago.

Failure policy: storage faults during lookup() / store() are logged and
degrade to a miss / no-op.  Caching is an optimisation; it must never stop
a recipe from being generated.  stats() and clear() propagate them.

Concurrency: one asyncio.Lock guards every mutation.  The similarity scan
reads without the lock; its lazy deletes re-check the record under the lock
and only remove it if it was not replaced in the meantime.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional

from recipe_cache.config import CacheSettings
from recipe_cache.errors import CorruptEntryError, StorageError
from recipe_cache.fingerprint import fingerprint_key
from recipe_cache.normalizer import FingerprintInput
from recipe_cache.similarity import SimilarityScorer
from recipe_cache.store import ArtifactStore, CacheEntry, CorruptEntry, encode_entry

logger = logging.getLogger(__name__)

ArtifactFilter = Callable[[Any], bool]


@dataclass(frozen=True)
class CacheHit:
    artifact: Any
    key: str
    match_type: Literal["exact", "similarity"]
    access_count: int
    similarity: float = 1.0


@dataclass(frozen=True)
class CacheStats:
    count: int
    total_size_bytes: int
    oldest_timestamp: Optional[float]
    newest_timestamp: Optional[float]
    max_access_count: int
    corrupt_count: int = 0     # undecodable records, not included in the figures above


def keep_score(entry: CacheEntry, now: float) -> float:
    """Higher = keep longer.  Frequent and recent wins."""
    staleness = max(now - entry.last_accessed_at, 0.0)
    return entry.access_count / (1.0 + staleness)


class CacheManager:
    """
    Parameters
    ----------
    store : ArtifactStore
        Backend holding the serialised entries.
    settings : CacheSettings
        TTL, capacity and similarity threshold.
    scorer : SimilarityScorer, optional
        Defaults to the standard weights at settings.similarity_threshold.
    clock : callable, optional
        Returns epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        store: ArtifactStore,
        settings: CacheSettings | None = None,
        scorer: SimilarityScorer | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._settings = settings or CacheSettings()
        self._scorer = scorer or SimilarityScorer(threshold=self._settings.similarity_threshold)
        self._clock = clock
        self._lock = asyncio.Lock()

        self._hits = 0
        self._misses = 0

    @property
    def settings(self) -> CacheSettings:
        return self._settings

    @property
    def store_backend(self) -> ArtifactStore:
        return self._store

    def is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self._settings.ttl_seconds

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def lookup(
        self,
        fingerprint: FingerprintInput,
        accept: ArtifactFilter | None = None,
    ) -> CacheHit | None:
        """
        Return a hit or None.  Never raises on storage faults.

        ``accept`` lets the caller veto candidates by artifact (e.g. recipes the
        user has just been served); a vetoed entry is left untouched.
        """
        key = fingerprint_key(fingerprint)
        try:
            hit = await self._lookup_exact(key, accept)
            if hit is None:
                hit = await self._lookup_similar(fingerprint, accept)
        except StorageError:
            logger.exception("Cache lookup failed, treating as miss | key=%s", key)
            hit = None

        if hit is None:
            self._misses += 1
            logger.info("Recipe cache miss | key=%s", key)
        else:
            self._hits += 1
        return hit

    async def _lookup_exact(self, key: str, accept: ArtifactFilter | None) -> CacheHit | None:
        async with self._lock:
            try:
                entry = await self._store.get(key)
            except CorruptEntryError as exc:
                logger.warning("Deleting corrupt cache record | key=%s reason=%s", key, exc.reason)
                await self._store.delete(key)
                return None
            if entry is None:
                return None

            now = self._clock()
            if self.is_expired(entry, now):
                logger.info("Cache entry expired | key=%s age=%.0fs", key, now - entry.created_at)
                await self._store.delete(key)
                return None
            if accept is not None and not accept(entry.artifact):
                logger.info("Cache exact candidate rejected by caller | key=%s", key)
                return None

            entry.access_count += 1
            entry.last_accessed_at = now
            await self._store.put(entry)

        logger.info("Recipe cache exact-hit | key=%s access_count=%d", key, entry.access_count)
        return CacheHit(
            artifact=entry.artifact,
            key=key,
            match_type="exact",
            access_count=entry.access_count,
        )

    async def _lookup_similar(
        self, fingerprint: FingerprintInput, accept: ArtifactFilter | None
    ) -> CacheHit | None:
        now = self._clock()
        best: CacheEntry | None = None
        best_score = 0.0
        stale: list[tuple[str, Optional[float]]] = []   # (key, created_at or None if corrupt)

        async for item in self._store.all_entries():
            if isinstance(item, CorruptEntry):
                logger.warning(
                    "Corrupt cache record found during scan | key=%s reason=%s",
                    item.key, item.reason,
                )
                stale.append((item.key, None))
                continue
            if self.is_expired(item, now):
                stale.append((item.key, item.created_at))
                continue

            result = self._scorer.score(fingerprint, item.fingerprint)
            if not result.eligible:
                continue
            if accept is not None and not accept(item.artifact):
                continue
            if self._scorer.is_match(result) and result.score > best_score:
                best, best_score = item, result.score

        for key, created_at in stale:
            await self._delete_if_unchanged(key, created_at)

        if best is None:
            return None

        access_count = await self._touch(best)
        logger.info(
            "Recipe cache similarity-hit | key=%s similarity=%.3f", best.key, best_score
        )
        return CacheHit(
            artifact=best.artifact,
            key=best.key,
            match_type="similarity",
            access_count=access_count,
            similarity=round(best_score, 4),
        )

    async def _delete_if_unchanged(self, key: str, created_at: Optional[float]) -> None:
        """Lazy delete that spares a record replaced since the scan read it."""
        async with self._lock:
            try:
                current = await self._store.get(key)
            except CorruptEntryError:
                still_stale = created_at is None
            else:
                still_stale = current is not None and current.created_at == created_at
            if still_stale:
                await self._store.delete(key)
                logger.debug("Lazily deleted cache record | key=%s", key)

    async def _touch(self, seen: CacheEntry) -> int:
        async with self._lock:
            try:
                current = await self._store.get(seen.key)
            except CorruptEntryError:
                return seen.access_count
            if current is None or current.created_at != seen.created_at:
                return seen.access_count
            current.access_count += 1
            current.last_accessed_at = self._clock()
            await self._store.put(current)
            return current.access_count

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    async def store(self, fingerprint: FingerprintInput, artifact: Any) -> str | None:
        """
        Insert (or overwrite) the entry for this fingerprint, then enforce
        capacity.  Returns the cache key, or None if the write failed.
        """
        key = fingerprint_key(fingerprint)
        now = self._clock()
        entry = CacheEntry(
            key=key,
            fingerprint=fingerprint,
            artifact=artifact,
            created_at=now,
            last_accessed_at=now,
            access_count=1,
        )
        try:
            async with self._lock:
                await self._store.put(entry)
                await self._enforce_capacity(now)
        except StorageError:
            logger.exception("Cache store failed, skipping | key=%s", key)
            return None

        logger.info("Recipe cached | key=%s", key)
        return key

    async def _enforce_capacity(self, now: float) -> None:
        count = await self._store.count()
        overflow = count - self._settings.max_size
        if overflow <= 0:
            return

        ranked: list[tuple[float, float, float, str]] = []
        async for item in self._store.all_entries():
            if isinstance(item, CorruptEntry):
                # Corrupt records rank below everything else.
                ranked.append((float("-inf"), float("-inf"), float("-inf"), item.key))
                continue
            ranked.append(
                (keep_score(item, now), item.last_accessed_at, item.created_at, item.key)
            )

        ranked.sort()
        for _, _, _, key in ranked[:overflow]:
            await self._store.delete(key)
            logger.debug("Cache evict | key=%s", key)
        logger.info("Cache evicted %d entr%s", overflow, "y" if overflow == 1 else "ies")

    # ------------------------------------------------------------------
    # Administrative
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        async with self._lock:
            await self._store.clear()
        logger.info("Recipe cache cleared")

    async def stats(self) -> CacheStats:
        """Figures over decodable entries; corrupt records are counted apart."""
        count = 0
        corrupt = 0
        total_size = 0
        oldest: Optional[float] = None
        newest: Optional[float] = None
        max_access = 0

        async for item in self._store.all_entries():
            if isinstance(item, CorruptEntry):
                corrupt += 1
                continue
            count += 1
            total_size += len(encode_entry(item).encode("utf-8"))
            oldest = item.created_at if oldest is None else min(oldest, item.created_at)
            newest = item.created_at if newest is None else max(newest, item.created_at)
            max_access = max(max_access, item.access_count)

        return CacheStats(
            count=count,
            total_size_bytes=total_size,
            oldest_timestamp=oldest,
            newest_timestamp=newest,
            max_access_count=max_access,
            corrupt_count=corrupt,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    def hit_rate(self) -> float:
        total = self._hits + self._misses
        return self._hits / total if total else 0.0
