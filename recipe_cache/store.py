"""
Artifact stores: keyed persistence of CacheEntry records.

Pure storage, no TTL or eviction logic.  Records are kept serialised as
JSON, one per cache key:

    {key, fingerprint, artifact, createdAt, lastAccessedAt, accessCount}

A record that cannot be decoded surfaces as CorruptEntryError from get()
and as a CorruptEntry marker from all_entries(); the CacheManager decides
what to do with it.

Two backends:
  - InMemoryArtifactStore  dict of serialised records (tests, ephemeral use)
  - SQLiteArtifactStore    aiosqlite, one row per key, survives restarts
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Union

import aiosqlite

from recipe_cache.errors import CorruptEntryError, StorageError
from recipe_cache.normalizer import FingerprintInput

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    fingerprint: FingerprintInput
    artifact: Any
    created_at: float
    last_accessed_at: float
    access_count: int = 1


@dataclass(frozen=True)
class CorruptEntry:
    key: str
    reason: str


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

def encode_entry(entry: CacheEntry) -> str:
    return json.dumps(
        {
            "key": entry.key,
            "fingerprint": entry.fingerprint.to_dict(),
            "artifact": entry.artifact,
            "createdAt": entry.created_at,
            "lastAccessedAt": entry.last_accessed_at,
            "accessCount": entry.access_count,
        },
        separators=(",", ":"),
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def decode_entry(key: str, raw: Union[str, bytes]) -> CacheEntry:
    """Raises CorruptEntryError for anything that is not a well-formed record."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise CorruptEntryError(key, f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise CorruptEntryError(key, "record is not an object")
    if "artifact" not in data or data["artifact"] is None:
        raise CorruptEntryError(key, "missing artifact")
    if not _is_number(data.get("createdAt")) or not _is_number(data.get("lastAccessedAt")):
        raise CorruptEntryError(key, "missing or non-numeric timestamps")
    access_count = data.get("accessCount")
    if not isinstance(access_count, int) or isinstance(access_count, bool) or access_count < 1:
        raise CorruptEntryError(key, "accessCount must be an integer >= 1")
    try:
        fingerprint = FingerprintInput.from_dict(data.get("fingerprint"))
    except ValueError as exc:
        raise CorruptEntryError(key, str(exc)) from exc

    return CacheEntry(
        key=key,
        fingerprint=fingerprint,
        artifact=data["artifact"],
        created_at=float(data["createdAt"]),
        last_accessed_at=float(data["lastAccessedAt"]),
        access_count=access_count,
    )


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class ArtifactStore(ABC):
    """Async key/value store of CacheEntry records."""

    async def init(self) -> None:
        """Prepare the backend (create tables etc.).  No-op by default."""

    @abstractmethod
    async def get_raw(self, key: str) -> str | None: ...

    @abstractmethod
    async def put_raw(self, key: str, record: str) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def keys(self) -> list[str]: ...

    @abstractmethod
    async def count(self) -> int: ...

    @abstractmethod
    async def clear(self) -> None: ...

    async def get(self, key: str) -> CacheEntry | None:
        raw = await self.get_raw(key)
        if raw is None:
            return None
        return decode_entry(key, raw)

    async def put(self, entry: CacheEntry) -> None:
        try:
            record = encode_entry(entry)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Cannot serialise entry {entry.key!r}: {exc}") from exc
        await self.put_raw(entry.key, record)

    async def all_entries(self) -> AsyncIterator[Union[CacheEntry, CorruptEntry]]:
        """
        Iterate the entries present when the call was made.  Keys deleted
        mid-iteration are skipped; keys added mid-iteration are not seen.
        """
        for key in await self.keys():
            raw = await self.get_raw(key)
            if raw is None:
                continue
            try:
                yield decode_entry(key, raw)
            except CorruptEntryError as exc:
                yield CorruptEntry(key=key, reason=exc.reason)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class InMemoryArtifactStore(ArtifactStore):

    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    async def get_raw(self, key: str) -> str | None:
        return self._records.get(key)

    async def put_raw(self, key: str, record: str) -> None:
        self._records[key] = record

    async def delete(self, key: str) -> None:
        self._records.pop(key, None)

    async def keys(self) -> list[str]:
        return list(self._records)

    async def count(self) -> int:
        return len(self._records)

    async def clear(self) -> None:
        self._records.clear()


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key         TEXT PRIMARY KEY,
    record      TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


class SQLiteArtifactStore(ArtifactStore):
    """
    One row per cache key.  A connection is opened per operation, which is
    plenty for tens of entries at human request rates.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def init(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute(_CREATE_TABLE)
                await db.commit()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Cannot initialise cache DB at {self._db_path}: {exc}") from exc
        logger.info("Recipe cache DB ready at %s", self._db_path)

    async def get_raw(self, key: str) -> str | None:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                async with db.execute(
                    "SELECT record FROM cache_entries WHERE key = ?", (key,)
                ) as cursor:
                    row = await cursor.fetchone()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Read failed for {key!r}: {exc}") from exc
        return row[0] if row else None

    async def put_raw(self, key: str, record: str) -> None:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute(
                    """
                    INSERT INTO cache_entries (key, record, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        record     = excluded.record,
                        updated_at = excluded.updated_at
                    """,
                    (key, record),
                )
                await db.commit()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Write failed for {key!r}: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                await db.commit()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Delete failed for {key!r}: {exc}") from exc

    async def keys(self) -> list[str]:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                async with db.execute("SELECT key FROM cache_entries ORDER BY key") as cursor:
                    rows = await cursor.fetchall()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Key scan failed: {exc}") from exc
        return [r[0] for r in rows]

    async def count(self) -> int:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                async with db.execute("SELECT COUNT(*) FROM cache_entries") as cursor:
                    row = await cursor.fetchone()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Count failed: {exc}") from exc
        return int(row[0]) if row else 0

    async def clear(self) -> None:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute("DELETE FROM cache_entries")
                await db.commit()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Clear failed: {exc}") from exc
