"""
Mudita - Database Setup Script
================================
CLI entry point that orchestrates:
    1. Load ``.env`` and settings (fail-fast on invalid configuration).
    2. Open (or create) the LanceDB tables: diary embeddings and the
       semantic cache.
    3. Create the MongoDB indexes for sessions, messages, diaries and
       mood-meter records.
    4. Optionally regenerate one user's diary embeddings.
    5. Print a structured execution summary with timing breakdown.

Flags:
    --drop              Drop both LanceDB tables, then recreate them empty.
    --drop-only         Drop both LanceDB tables and exit.
    --reindex-user ID   Re-embed every diary of user ID (needs GOOGLE_API_KEY).

Usage:
    python -m mudita.scripts.setup_db
    python -m mudita.scripts.setup_db --drop
    python -m mudita.scripts.setup_db --reindex-user 42
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

# ── Ensure project root is importable when run directly ────────────────
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


# ── CLI Argument Parsing ───────────────────────────────────────────────

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="setup_db", description="Mudita — Initialise the vector tables and MongoDB indexes.")
    parser.add_argument("--drop", action="store_true", default=False, help="Drop both LanceDB tables before recreating them.")
    parser.add_argument("--drop-only", action="store_true", default=False, help="Drop both LanceDB tables and exit.")
    parser.add_argument("--reindex-user", type=int, default=None, metavar="ID", help="Regenerate diary embeddings for one user.")
    return parser.parse_args(argv)


# ── Main Orchestration ─────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    t_start = time.perf_counter()

    # ── 0. Load settings + .env (timed) ────────────────────────────────
    t_settings = time.perf_counter()
    load_dotenv(_PROJECT_ROOT / "mudita" / ".env")
    try:
        from mudita.config.settings import settings
    except Exception as exc:
        print("\n[FATAL] Configuration error — check your .env file:\n")
        print(f"  {exc}")
        print()
        sys.exit(1)
    settings_ms = (time.perf_counter() - t_settings) * 1000

    from mudita.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Settings loaded in %.1fms", settings_ms)

    _print_header(settings)

    # ── 1. Embedding client (only needed to reindex) ───────────────────
    from mudita.src.core.errors import ConfigurationError
    from mudita.src.database.embedding_client import EmbeddingClient

    t_embedder = time.perf_counter()
    try:
        embedder = EmbeddingClient()
    except ConfigurationError as exc:
        if args.reindex_user is not None:
            logger.error("Cannot reindex: %s", exc)
            sys.exit(1)
        embedder = None
    embedder_ms = (time.perf_counter() - t_embedder) * 1000

    # ── 2. LanceDB tables (timed) ──────────────────────────────────────
    from mudita.src.database.semantic_cache import SemanticCache
    from mudita.src.database.vector_store import DiaryVectorStore

    t_lancedb = time.perf_counter()
    logger.info("Connecting to LanceDB at: %s", settings.LANCEDB_PATH)
    store = DiaryVectorStore(embedder=embedder)
    cache = SemanticCache(embedder=embedder)

    if args.drop or args.drop_only:
        logger.warning("Dropping tables '%s' and '%s' as requested.", settings.DIARY_TABLE_NAME, settings.CACHE_TABLE_NAME)
        store.drop_table()
        cache.drop_table()

        if args.drop_only:
            lancedb_ms = (time.perf_counter() - t_lancedb) * 1000
            logger.info("--drop-only: Tables dropped. Exiting.")
            _print_footer(0, 0, None, time.perf_counter() - t_start, settings_ms, embedder_ms, lancedb_ms, 0.0)
            return

        store = DiaryVectorStore(embedder=embedder)
        cache = SemanticCache(embedder=embedder)
    lancedb_ms = (time.perf_counter() - t_lancedb) * 1000
    logger.info("LanceDB ready in %.1fms — %d embedding(s), %d cache entr(ies).", lancedb_ms, store.count(), cache.stats()["total_entries"])

    # ── 3. MongoDB indexes (+ optional reindex) ────────────────────────
    t_mongo = time.perf_counter()
    reindex_summary = asyncio.run(_mongo_phase(store, cache, args.reindex_user))
    mongo_ms = (time.perf_counter() - t_mongo) * 1000

    # ── 4. Print execution summary ─────────────────────────────────────
    _print_footer(store.count(), cache.stats()["total_entries"], reindex_summary, time.perf_counter() - t_start, settings_ms, embedder_ms, lancedb_ms, mongo_ms)


async def _mongo_phase(store: object, cache: object, reindex_user: int | None) -> dict | None:
    from mudita.src.core.indexer import DiaryIndexer
    from mudita.src.database.diary_repository import DiaryRepository
    from mudita.src.database.mongo import close_mongo_client, ensure_indexes

    try:
        await ensure_indexes()
        if reindex_user is None:
            return None
        indexer = DiaryIndexer(store, cache, DiaryRepository())  # type: ignore[arg-type]
        return await indexer.reindex_owner(reindex_user)
    finally:
        close_mongo_client()


# ── Pretty-print helpers ──────────────────────────────────────────────

def _print_header(settings: object) -> None:
    api_key = settings.GOOGLE_API_KEY  # type: ignore[attr-defined]
    api_key_val = api_key.get_secret_value() if api_key is not None else ""
    masked = f"****{api_key_val[-4:]}" if len(api_key_val) > 4 else "(not set)"

    mongo_uri_val = settings.MONGO_URI.get_secret_value()  # type: ignore[attr-defined]
    mongo_masked = mongo_uri_val.split("@")[-1] if "@" in mongo_uri_val else mongo_uri_val

    print()
    print("=" * 60)
    print("  MUDITA — Database Setup")
    print("=" * 60)
    print(f"  Environment  : {settings.ENV}")                   # type: ignore[attr-defined]
    print(f"  Embedding    : {settings.EMBEDDING_MODEL} ({settings.EMBEDDING_DIMENSION}d)")  # type: ignore[attr-defined]
    print(f"  LanceDB path : {settings.LANCEDB_PATH}")          # type: ignore[attr-defined]
    print(f"  MongoDB      : {mongo_masked} (db: {settings.MONGO_DB_NAME})")  # type: ignore[attr-defined]
    print(f"  API Key      : {masked}")
    print("=" * 60)
    print()


def _print_footer(embeddings: int, cache_entries: int, reindex: dict | None, elapsed: float, settings_ms: float, embedder_ms: float, lancedb_ms: float, mongo_ms: float) -> None:
    print()
    print("=" * 60)
    print("  EXECUTION SUMMARY")
    print("-" * 60)
    print(f"  Diary embeddings     : {embeddings}")
    print(f"  Cache entries        : {cache_entries}")
    if reindex is not None:
        print(f"  Diaries reindexed    : {reindex['indexed']}/{reindex['total_diaries']} ({reindex['failed']} failed)")
    print("-" * 60)
    print("  TIMING BREAKDOWN")
    print("-" * 60)
    print(f"  Settings + .env load : {settings_ms:>8.1f}ms")
    print(f"  Embedder init        : {embedder_ms:>8.1f}ms")
    print(f"  LanceDB tables       : {lancedb_ms:>8.1f}ms")
    print(f"  MongoDB phase        : {mongo_ms:>8.1f}ms")
    print(f"  Total elapsed        : {elapsed:>8.2f}s")
    print("=" * 60)
    print()


# ── Entry point ────────────────────────────────────────────────────────

if __name__ == "__main__":
    main()
