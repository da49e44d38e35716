"""
Mudita - Centralized Configuration
====================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY`` is typed as ``SecretStr``.  It is optional at load
  time so that tooling which never talks to Gemini (migrations, tests)
  can import the settings; the provider clients raise
  ``ConfigurationError`` when they are constructed without it.
- ``MONGO_URI`` is ``SecretStr`` with **no default** — connection strings
  contain credentials and must never leak into logs.

Time
----
"Local time" (midnight boundaries for date filters and the session of
the day) is a fixed UTC offset, ``TIMEZONE_OFFSET_HOURS`` (KST by default).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).
    Fields *without* a default are **required** — the app will refuse
    to start until they are provided.

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr | None
        API key for Google AI Studio (Gemini).
    MONGO_URI : SecretStr
        MongoDB connection string.  **Required.**
    EMBEDDING_DIMENSION : int
        Fixed vector length.  Every stored vector and every query vector
        must have exactly this many components.
    CACHE_SIMILARITY_THRESHOLD : float
        Minimum cosine similarity for a semantic-cache hit.
    SUMMARIZATION_THRESHOLD : int
        Sessions holding *more* than this many messages are compacted.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    TIMEZONE_OFFSET_HOURS: int = 9

    # ── API Keys ───────────────────────────────────────────────────────
    GOOGLE_API_KEY: SecretStr | None = None

    # ── MongoDB (REQUIRED, no default) ────────────────────────────────
    MONGO_URI: SecretStr
    MONGO_DB_NAME: str = "mudita"

    # ── LanceDB ────────────────────────────────────────────────────────
    DIARY_TABLE_NAME: str = "diary_embeddings"
    CACHE_TABLE_NAME: str = "semantic_cache"

    # ── Embeddings ─────────────────────────────────────────────────────
    EMBEDDING_MODEL: str = "gemini-embedding-001"
    EMBEDDING_DIMENSION: int = 1536
    EMBEDDING_MAX_RETRIES: int = 3
    EMBEDDING_RETRY_DELAY: float = 1.0
    EMBEDDING_TIMEOUT: float = 30.0

    # ── Generation ─────────────────────────────────────────────────────
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_TEMPERATURE: float = 0.8
    LLM_MAX_TOKENS: int = 1000
    LLM_MAX_RETRIES: int = 3
    LLM_RETRY_DELAY: float = 3.0
    LLM_TIMEOUT: float = 60.0

    # ── Retrieval & Re-ranking ─────────────────────────────────────────
    SEARCH_TOP_K: int = 5
    RERANK_TOP_K: int = 3
    RERANK_CANDIDATE_CAP: int = 10
    RERANK_TIMEOUT: float = 15.0
    RERANK_CONTENT_CHARS: int = 300

    # ── Semantic Cache ─────────────────────────────────────────────────
    CACHE_SIMILARITY_THRESHOLD: float = 0.92
    CACHE_TTL_HOURS: int = 24
    CACHE_MAX_ENTRIES_PER_USER: int = 100
    CACHE_MIN_QUERY_CHARS: int = 5
    CACHE_MIN_RESPONSE_CHARS: int = 20

    # ── Sessions & Memory ──────────────────────────────────────────────
    SUMMARIZATION_THRESHOLD: int = 10
    SUMMARY_KEEP_RECENT: int = 5
    SESSION_HISTORY_LIMIT: int = 10
    MOOD_CONTEXT_LIMIT: int = 5

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("EMBEDDING_DIMENSION")
    @classmethod
    def _dimension_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"EMBEDDING_DIMENSION must be ≥ 1, got {v}")
        return v


    @field_validator("CACHE_SIMILARITY_THRESHOLD")
    @classmethod
    def _threshold_range(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError(f"CACHE_SIMILARITY_THRESHOLD must be in (0, 1], got {v}")
        return v


    @field_validator("EMBEDDING_MAX_RETRIES", "LLM_MAX_RETRIES")
    @classmethod
    def _retries_range(cls, v: int) -> int:
        if not 1 <= v <= 10:
            raise ValueError(f"retry attempts must be 1–10, got {v}")
        return v


    @field_validator("TIMEZONE_OFFSET_HOURS")
    @classmethod
    def _offset_range(cls, v: int) -> int:
        if not -12 <= v <= 14:
            raise ValueError(f"TIMEZONE_OFFSET_HOURS must be -12–14, got {v}")
        return v


    @field_validator("SUMMARY_KEEP_RECENT")
    @classmethod
    def _keep_recent_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"SUMMARY_KEEP_RECENT must be ≥ 1, got {v}")
        return v

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from mudita.config.settings import settings
settings = Settings()
