"""
Mudita - Semantic Cache
========================
LanceDB table of ``query → response`` pairs keyed by query embedding.

A lookup hits when an entry of the **same owner**, younger than the TTL,
has cosine similarity ≥ ``CACHE_SIMILARITY_THRESHOLD`` with the query;
the single most similar entry wins.  Entries are capped per owner
(oldest evicted first) and invalidated in bulk when a diary they cite
changes.

Every operation is best-effort: failures are logged and degrade to a
miss / no-op.  The cache is an optimisation, never a dependency.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

import lancedb
import pyarrow as pa

from mudita.config.settings import settings
from mudita.src.core.models import CacheResult
from mudita.src.database.embedding_client import Embedder
from mudita.src.database.vector_store import get_connection, open_or_create_table
from mudita.src.utils.logger import get_logger
from mudita.src.utils.time_utils import from_epoch_ms, to_epoch_ms, utcnow

logger = get_logger(__name__)

CacheStats = dict[str, int | datetime | None]


def cache_schema(dimension: int) -> pa.Schema:
    return pa.schema([
        pa.field("id", pa.utf8()),
        pa.field("user_id", pa.int64()),
        pa.field("query", pa.utf8()),
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("response", pa.utf8()),
        pa.field("diary_ids", pa.list_(pa.int64())),
        pa.field("created_at_ms", pa.int64()),
    ])


def _id_list(ids: Iterable[str]) -> str:
    return ", ".join(f"'{i}'" for i in ids)


class SemanticCache:
    """
    Per-owner semantic response cache.

    Parameters
    ----------
    embedder
        Used when a caller does not pass a precomputed query embedding.
    db_path, table_name, dimension
        Storage overrides (default to settings).
    clock
        Returns the current naive-UTC time; injectable for TTL tests.
    """

    __slots__ = ("_embedder", "_db_path", "_table_name", "_dimension", "_schema", "_clock", "_threshold", "_ttl", "_max_entries", "table")

    def __init__(self, embedder: Embedder, db_path: str | None = None, table_name: str | None = None, dimension: int | None = None, clock: Callable[[], datetime] | None = None) -> None:
        self._embedder = embedder
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name or settings.CACHE_TABLE_NAME
        self._dimension: int = dimension or settings.EMBEDDING_DIMENSION
        self._schema: pa.Schema = cache_schema(self._dimension)
        self._clock: Callable[[], datetime] = clock or utcnow
        self._threshold: float = settings.CACHE_SIMILARITY_THRESHOLD
        self._ttl = timedelta(hours=settings.CACHE_TTL_HOURS)
        self._max_entries: int = settings.CACHE_MAX_ENTRIES_PER_USER
        self.table: lancedb.table.Table = open_or_create_table(get_connection(self._db_path), self._table_name, self._schema)


    async def lookup(self, owner_id: int, query: str, embedding: list[float] | None = None) -> CacheResult:
        """
        Return the best non-expired entry of *owner_id* above the similarity threshold.

        Parameters
        ----------
        owner_id
            Only this owner's entries are considered.
        query
            The user's message; embedded unless *embedding* is given.
        embedding
            Precomputed query vector, reused to avoid a second provider call.
        """
        try:
            vector = embedding if embedding is not None else await self._embedder.embed(query)
            cutoff = to_epoch_ms(self._clock() - self._ttl)
            rows = (
                self.table.search(vector)
                .distance_type("cosine")
                .where(f"user_id = {int(owner_id)} AND created_at_ms > {cutoff}", prefilter=True)
                .limit(1)
                .to_list()
            )
        except Exception as exc:
            logger.warning("[CACHE] Lookup failed for user %d, treating as miss: %s", owner_id, exc)
            return CacheResult(hit=False)

        if not rows:
            logger.debug("[CACHE] Miss for user %d (no live entries).", owner_id)
            return CacheResult(hit=False)

        best = rows[0]
        similarity = 1.0 - float(best["_distance"])
        if similarity < self._threshold:
            logger.debug("[CACHE] Miss for user %d (best similarity %.3f < %.2f).", owner_id, similarity, self._threshold)
            return CacheResult(hit=False, similarity=similarity)

        logger.info("[CACHE] Hit for user %d (similarity %.3f).", owner_id, similarity)
        return CacheResult(hit=True, response=best["response"], diary_ids=list(best["diary_ids"] or []), similarity=similarity)


    async def store(self, owner_id: int, query: str, response: str, diary_ids: Iterable[int], embedding: list[float] | None = None) -> bool:
        """
        Cache *response* for *query*, then evict the owner's oldest entries beyond the cap.

        Trivially short queries or responses are skipped.  Returns ``True``
        when an entry was written.
        """
        if len(query.strip()) < settings.CACHE_MIN_QUERY_CHARS or len(response.strip()) < settings.CACHE_MIN_RESPONSE_CHARS:
            logger.debug("[CACHE] Skipping store for user %d (query/response too short).", owner_id)
            return False

        try:
            vector = embedding if embedding is not None else await self._embedder.embed(query)
            record = {"id": uuid.uuid4().hex, "user_id": owner_id, "query": query, "vector": vector, "response": response, "diary_ids": [int(d) for d in diary_ids], "created_at_ms": to_epoch_ms(self._clock())}
            self.table.add(pa.Table.from_pylist([record], schema=self._schema))
            self._evict_overflow(owner_id)
        except Exception as exc:
            logger.warning("[CACHE] Store failed for user %d: %s", owner_id, exc)
            return False

        logger.info("[CACHE] Stored response for user %d (%d diary reference(s)).", owner_id, len(record["diary_ids"]))
        return True


    def invalidate_by_diaries(self, owner_id: int, diary_ids: Iterable[int]) -> int:
        """Delete every entry of *owner_id* citing any of *diary_ids*.  Returns the count removed."""
        targets = {int(d) for d in diary_ids}
        if not targets:
            return 0
        try:
            rows = self._owner_rows(owner_id, ["id", "diary_ids"])
            stale = [row["id"] for row in rows if targets.intersection(row["diary_ids"] or [])]
            if stale:
                self.table.delete(f"id IN ({_id_list(stale)})")
        except Exception as exc:
            logger.warning("[CACHE] Invalidation failed for user %d: %s", owner_id, exc)
            return 0

        logger.info("[CACHE] Invalidated %d entr(y/ies) for user %d citing diaries %s.", len(stale), owner_id, sorted(targets))
        return len(stale)


    def clear_owner(self, owner_id: int) -> int:
        """Delete every entry of *owner_id*."""
        try:
            clause = f"user_id = {int(owner_id)}"
            removed = self.table.count_rows(clause)
            if removed:
                self.table.delete(clause)
        except Exception as exc:
            logger.warning("[CACHE] Clear failed for user %d: %s", owner_id, exc)
            return 0
        logger.info("[CACHE] Cleared %d entr(y/ies) for user %d.", removed, owner_id)
        return removed


    def stats(self, owner_id: int | None = None) -> CacheStats:
        """Entry counts and the age span of the cached entries."""
        try:
            total = self.table.count_rows()
            if owner_id is None:
                return {"total_entries": total}
            rows = self._owner_rows(owner_id, ["created_at_ms"])
        except Exception as exc:
            logger.warning("[CACHE] Stats unavailable: %s", exc)
            return {"total_entries": 0}

        stamps = [row["created_at_ms"] for row in rows]
        return {"total_entries": total, "owner_entries": len(rows), "oldest_entry": from_epoch_ms(min(stamps)) if stamps else None, "newest_entry": from_epoch_ms(max(stamps)) if stamps else None}


    def drop_table(self) -> None:
        """Drop the cache table (used by the setup script)."""
        try:
            get_connection(self._db_path).drop_table(self._table_name)
            logger.info("Dropped table '%s'.", self._table_name)
        except (ValueError, FileNotFoundError):
            logger.warning("Table '%s' does not exist — nothing to drop.", self._table_name)

    # ── Internals ──────────────────────────────────────────────────────

    def _owner_rows(self, owner_id: int, columns: list[str]) -> list[dict]:
        clause = f"user_id = {int(owner_id)}"
        total = self.table.count_rows(clause)
        if total == 0:
            return []
        return self.table.search().where(clause).select(columns).limit(total).to_list()


    def _evict_overflow(self, owner_id: int) -> None:
        rows = self._owner_rows(owner_id, ["id", "created_at_ms"])
        if len(rows) <= self._max_entries:
            return
        rows.sort(key=lambda r: r["created_at_ms"], reverse=True)
        evicted = [row["id"] for row in rows[self._max_entries:]]
        self.table.delete(f"id IN ({_id_list(evicted)})")
        logger.info("[CACHE] Evicted %d old entr(y/ies) for user %d.", len(evicted), owner_id)
