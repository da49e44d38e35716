"""
Mudita - DiaryIndexer
======================
Keeps the diary embeddings (and the semantic cache that cites them) in
step with the diary service.

Key design decisions:
    • **Detached writes** – ``schedule_upsert`` / ``schedule_delete``
      return immediately; the embedding work runs as a background task
      with its own error boundary.  A failure is logged and never
      retried: the diary stays readable but invisible to vector search
      until ``reindex_owner`` regenerates it.
    • **Cache coherence** – every content change or deletion removes
      cached answers that reference the diary.
    • **Bounded concurrency** – reindexing embeds at most
      ``max_concurrency`` diaries at a time (provider calls are I/O-bound).

Usage:
    from mudita.src.core.indexer import DiaryIndexer
    indexer = DiaryIndexer(vector_store, cache, diary_repository, session_store)
    indexer.schedule_upsert(diary)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Coroutine
from typing import Any

from mudita.src.core.models import DiaryRecord
from mudita.src.database.diary_repository import DiaryRepository
from mudita.src.database.semantic_cache import SemanticCache
from mudita.src.database.session_store import MongoSessionStore
from mudita.src.database.vector_store import DiaryVectorStore
from mudita.src.utils.logger import get_logger

logger = get_logger(__name__)

# Max parallel embedding calls during a reindex
_MAX_CONCURRENCY = 4

# Upper bound on diaries read for one owner's reindex
_REINDEX_LIMIT = 10_000


class DiaryIndexer:
    """
    Embedding lifecycle for diary create / update / delete.

    Parameters
    ----------
    vector_store
        Target ``DiaryVectorStore`` (injected).
    cache
        Semantic cache to invalidate on content changes.
    diary_repository
        Source of diaries for ``reindex_owner``.
    session_store
        Chat sessions removed by ``delete_owner``.
    max_concurrency
        Parallel embedding calls during a reindex.
    """

    __slots__ = ("_store", "_cache", "_diaries", "_sessions", "_max_concurrency", "_pending")

    def __init__(self, vector_store: DiaryVectorStore, cache: SemanticCache, diary_repository: DiaryRepository | None = None, session_store: MongoSessionStore | None = None, max_concurrency: int = _MAX_CONCURRENCY) -> None:
        self._store = vector_store
        self._cache = cache
        self._diaries = diary_repository
        self._sessions = session_store
        self._max_concurrency = max_concurrency
        self._pending: set[asyncio.Task[Any]] = set()

    # ══════════════════════════════════════════════════════════════════
    #  FIRE-AND-FORGET
    # ══════════════════════════════════════════════════════════════════

    def schedule_upsert(self, diary: DiaryRecord) -> asyncio.Task[bool]:
        """Embed *diary* in the background.  The caller does not wait."""
        return self._spawn(self.upsert(diary))


    def schedule_delete(self, diary_id: int, owner_id: int) -> asyncio.Task[bool]:
        return self._spawn(self.delete(diary_id, owner_id))


    async def drain(self) -> None:
        """Await every scheduled task (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ══════════════════════════════════════════════════════════════════
    #  AWAITABLE OPERATIONS
    # ══════════════════════════════════════════════════════════════════

    async def upsert(self, diary: DiaryRecord) -> bool:
        """Embed and store *diary*, then drop cached answers citing it.  Never raises."""
        t_start = time.perf_counter()
        self._cache.invalidate_by_diaries(diary.user_id, [diary.diary_id])
        try:
            await self._store.upsert_embedding(diary)
        except Exception as exc:
            logger.warning("[INDEX] Embedding failed for diary %d (user %d), left unindexed: %s", diary.diary_id, diary.user_id, exc)
            return False

        logger.info("[INDEX] Diary %d indexed in %.1fms.", diary.diary_id, (time.perf_counter() - t_start) * 1000)
        return True


    async def delete(self, diary_id: int, owner_id: int) -> bool:
        """Remove the embedding of *diary_id* and cached answers citing it.  Never raises."""
        self._cache.invalidate_by_diaries(owner_id, [diary_id])
        try:
            self._store.delete_embedding(diary_id)
        except Exception as exc:
            logger.warning("[INDEX] Delete failed for diary %d (user %d): %s", diary_id, owner_id, exc)
            return False
        return True


    async def delete_owner(self, owner_id: int) -> dict[str, int]:
        """Account cascade: embeddings, cache entries and chat sessions of *owner_id*."""
        embeddings = self._store.delete_owner_embeddings(owner_id)
        cached = self._cache.clear_owner(owner_id)
        sessions = await self._sessions.delete_owner_sessions(owner_id) if self._sessions is not None else 0
        logger.info("[INDEX] User %d removed: %d embedding(s), %d cache entr(ies), %d session(s).", owner_id, embeddings, cached, sessions)
        return {"embeddings": embeddings, "cache_entries": cached, "sessions": sessions}


    async def reindex_owner(self, owner_id: int) -> dict[str, Any]:
        """
        Regenerate embeddings for every diary of *owner_id*.

        Returns
        -------
        dict
            ``total_diaries``, ``indexed``, ``failed``, ``elapsed_seconds``.
        """
        if self._diaries is None:
            raise RuntimeError("reindex_owner requires a DiaryRepository.")

        t_start = time.perf_counter()
        diaries = await self._diaries.list_diaries(owner_id, None, _REINDEX_LIMIT)
        logger.info("[INDEX] Reindexing %d diary(ies) for user %d.", len(diaries), owner_id)

        gate = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(diary: DiaryRecord) -> bool:
            async with gate:
                return await self.upsert(diary)

        results = await asyncio.gather(*(_bounded(d) for d in diaries))
        indexed = sum(1 for ok in results if ok)
        elapsed = time.perf_counter() - t_start

        logger.info("[INDEX] Reindex complete for user %d: %d indexed, %d failed in %.2fs.", owner_id, indexed, len(diaries) - indexed, elapsed)
        return {"total_diaries": len(diaries), "indexed": indexed, "failed": len(diaries) - indexed, "elapsed_seconds": round(elapsed, 2)}

    # ── Task bookkeeping ───────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task
