"""
Mudita - DiaryVectorStore
==========================
LanceDB wrapper holding one embedding row per diary.

  • Table created with a strict PyArrow schema (fixed-size vector column).
  • Upsert keyed by ``diary_id`` via ``merge_insert`` (atomic per row).
  • Cosine top-K search **prefiltered** by owner and optional date range:
    the owner restriction is part of the query itself, so another
    user's diary can never reach the result list.

Each row denormalises the diary fields needed to answer a search
(title, content, colour, date) so retrieval is a single LanceDB query.

Usage:
    store = DiaryVectorStore(embedder=EmbeddingClient())
    await store.upsert_embedding(diary)
    results = store.search_similar(owner_id=7, query_vector=vec, top_k=5)
"""

from __future__ import annotations

import threading

import lancedb
import pyarrow as pa

from mudita.config.settings import settings
from mudita.src.core.errors import InvalidArgumentError
from mudita.src.core.models import DateRange, DiaryRecord, DiarySearchResult
from mudita.src.database.embedding_client import Embedder
from mudita.src.utils.logger import get_logger
from mudita.src.utils.text_utils import clean_text
from mudita.src.utils.time_utils import from_epoch_ms, to_epoch_ms, utcnow

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
EmbeddingRecord = dict[str, str | int | list[float]]

_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def diary_schema(dimension: int) -> pa.Schema:
    return pa.schema([
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("diary_id", pa.int64()),
        pa.field("user_id", pa.int64()),
        pa.field("title", pa.utf8()),
        pa.field("content", pa.utf8()),
        pa.field("color", pa.utf8()),
        pa.field("date_ms", pa.int64()),
        pa.field("updated_at_ms", pa.int64()),
    ])


def get_connection(db_path: str) -> lancedb.DBConnection:
    """
    Return a **singleton** ``lancedb.DBConnection`` for *db_path*.

    Shared by the diary store and the semantic cache so both tables
    live behind one connection per directory.
    """
    if db_path not in _db_connection_cache:
        with _DB_LOCK:
            if db_path not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", db_path)
                _db_connection_cache[db_path] = lancedb.connect(db_path)
    return _db_connection_cache[db_path]


def open_or_create_table(db: lancedb.DBConnection, name: str, schema: pa.Schema) -> lancedb.table.Table:
    if name in db.table_names():
        table = db.open_table(name)
        logger.info("Opened existing table '%s' (%d rows).", name, table.count_rows())
        return table
    logger.info("Created new table '%s'.", name)
    return db.create_table(name, schema=schema)


def embedding_text(diary: DiaryRecord) -> str:
    """Text that represents a diary in vector space: title, then body."""
    return clean_text(f"{diary.title}\n{diary.content}")


class DiaryVectorStore:
    """
    Owner-scoped vector index over diary entries.

    Parameters
    ----------
    embedder : Embedder
        Async embedder used by ``upsert_embedding``.
    db_path
        Override the database directory.  Defaults to ``settings.LANCEDB_PATH``.
    table_name
        Override the table name.  Defaults to ``settings.DIARY_TABLE_NAME``.
    dimension
        Override the vector length.  Defaults to ``settings.EMBEDDING_DIMENSION``.
    """

    __slots__ = ("embedder", "_db_path", "_table_name", "_dimension", "_schema", "db", "table")

    def __init__(self, embedder: Embedder, db_path: str | None = None, table_name: str | None = None, dimension: int | None = None) -> None:
        self.embedder: Embedder = embedder
        self._db_path: str = str(db_path or settings.LANCEDB_PATH)
        self._table_name: str = table_name or settings.DIARY_TABLE_NAME
        self._dimension: int = dimension or settings.EMBEDDING_DIMENSION
        self._schema: pa.Schema = diary_schema(self._dimension)
        self.db: lancedb.DBConnection | None = None
        self.table: lancedb.table.Table | None = None
        self._connect()


    def _connect(self) -> None:
        try:
            self.db = get_connection(self._db_path)
            self.table = open_or_create_table(self.db, self._table_name, self._schema)
        except OSError as exc:
            logger.error("LanceDB filesystem error at %s: %s", self._db_path, exc)
            raise


    def _require_table(self) -> lancedb.table.Table:
        if self.table is None:
            raise RuntimeError("Vector table is not initialised. Call _connect() first.")
        return self.table

    # ══════════════════════════════════════════════════════════════════
    #  WRITE PATH
    # ══════════════════════════════════════════════════════════════════

    async def upsert_embedding(self, diary: DiaryRecord, text: str | None = None) -> None:
        """
        Embed *diary* and insert-or-replace its row keyed by ``diary_id``.

        Parameters
        ----------
        diary
            The diary to index.  Owner, title, colour and date are stored
            alongside the vector.
        text
            Text to embed.  Defaults to the diary's title and content.
        """
        table = self._require_table()
        vector = await self.embedder.embed(text or embedding_text(diary))
        if len(vector) != self._dimension:
            raise InvalidArgumentError(f"Vector length {len(vector)} does not match dimension {self._dimension}.")

        record: EmbeddingRecord = {"vector": vector, "diary_id": diary.diary_id, "user_id": diary.user_id, "title": diary.title, "content": diary.content, "color": diary.color, "date_ms": to_epoch_ms(diary.date), "updated_at_ms": to_epoch_ms(utcnow())}
        table.merge_insert("diary_id").when_matched_update_all().when_not_matched_insert_all().execute(pa.Table.from_pylist([record], schema=self._schema))
        logger.info("[VECTOR] Upserted embedding for diary %d (user %d).", diary.diary_id, diary.user_id)


    def delete_embedding(self, diary_id: int) -> None:
        """Remove the embedding of *diary_id*.  Deleting a missing row is a no-op."""
        self._require_table().delete(f"diary_id = {int(diary_id)}")
        logger.info("[VECTOR] Deleted embedding for diary %d (if present).", diary_id)


    def delete_owner_embeddings(self, owner_id: int) -> int:
        """Remove every embedding owned by *owner_id*.  Returns the number of rows removed."""
        table = self._require_table()
        clause = f"user_id = {int(owner_id)}"
        removed = table.count_rows(clause)
        if removed:
            table.delete(clause)
        logger.info("[VECTOR] Deleted %d embedding(s) for user %d.", removed, owner_id)
        return removed


    def has_embedding(self, diary_id: int) -> bool:
        return self._require_table().count_rows(f"diary_id = {int(diary_id)}") > 0

    # ══════════════════════════════════════════════════════════════════
    #  SEARCH
    # ══════════════════════════════════════════════════════════════════

    def search_similar(self, owner_id: int, query_vector: list[float], top_k: int, date_range: DateRange | None = None) -> list[DiarySearchResult]:
        """
        Cosine top-K search over *owner_id*'s diaries.

        Parameters
        ----------
        owner_id
            Authenticated owner.  Only this owner's rows are searched.
        query_vector
            Query embedding of length ``dimension``.
        top_k
            Maximum number of results (≥ 1).
        date_range
            Optional inclusive day window ``[start, endOfDay(end)]``.

        Returns
        -------
        list[DiarySearchResult]
            At most *top_k* results, ordered by descending ``score``
            (``1 - cosine_distance``, clamped to ``[0, 1]``).

        Raises
        ------
        InvalidArgumentError
            If ``top_k < 1`` or the vector has the wrong length.
        """
        if top_k < 1:
            raise InvalidArgumentError(f"top_k must be ≥ 1, got {top_k}.")
        if len(query_vector) != self._dimension:
            raise InvalidArgumentError(f"Query vector length {len(query_vector)} does not match dimension {self._dimension}.")

        clauses = [f"user_id = {int(owner_id)}"]
        if date_range is not None:
            start, end = date_range.bounds()
            clauses.append(f"date_ms >= {to_epoch_ms(start)} AND date_ms <= {to_epoch_ms(end)}")
        where_str = " AND ".join(clauses)

        rows = (
            self._require_table()
            .search(query_vector)
            .distance_type("cosine")
            .where(where_str, prefilter=True)
            .limit(top_k)
            .to_list()
        )

        results = [self._to_result(row) for row in rows]
        results.sort(key=lambda r: r.score, reverse=True)
        logger.info("[VECTOR] Search (%s) returned %d result(s).", where_str, len(results))
        return results


    @staticmethod
    def _to_result(row: dict) -> DiarySearchResult:
        similarity = 1.0 - float(row.get("_distance", 1.0))
        return DiarySearchResult(diary_id=row["diary_id"], title=row["title"], content=row["content"], date=from_epoch_ms(row["date_ms"]), color=row["color"], score=min(1.0, max(0.0, similarity)))

    # ══════════════════════════════════════════════════════════════════
    #  MAINTENANCE
    # ══════════════════════════════════════════════════════════════════

    def count(self) -> int:
        if self.table is None:
            return 0
        return self.table.count_rows()


    def drop_table(self) -> None:
        """Drop the embeddings table (used by the setup script)."""
        if self.db is None:
            logger.warning("No database connection; nothing to drop.")
            return
        try:
            self.db.drop_table(self._table_name)
            self.table = None
            logger.info("Dropped table '%s'.", self._table_name)
        except (ValueError, FileNotFoundError):
            logger.warning("Table '%s' does not exist — nothing to drop.", self._table_name)


    def __repr__(self) -> str:
        return f"DiaryVectorStore(db='{self._db_path}', table='{self._table_name}', rows={self.count()})"
