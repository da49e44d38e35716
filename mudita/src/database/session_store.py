"""
Mudita - Session Store
=======================
Async chat-session persistence backed by MongoDB via ``motor``.

Collections::

    chat_sessions  {_id: session_id, user_id, title, summary, is_active, created_at, updated_at}
    chat_messages  {message_id, session_id, role, content, related_diary_ids, created_at}

Lifecycle
---------
ACTIVE → messages appended → (count > SUMMARIZATION_THRESHOLD) →
SUMMARIZED-AND-TRIMMED → ACTIVE … → DEACTIVATED / DELETED.

Summarization is a destructive compaction: everything but the most
recent ``SUMMARY_KEEP_RECENT`` messages is condensed into
``summary`` (overwriting any earlier summary) and then deleted.

"Session of the day" resolution is not linearizable: two concurrent
first messages of the day from the same owner may create two sessions.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

import motor.motor_asyncio
from pydantic import BaseModel, Field

from mudita.config.prompt_templates import SUMMARIZATION_PROMPT
from mudita.config.settings import settings
from mudita.src.core.errors import InvalidArgumentError, SessionNotFoundError
from mudita.src.core.models import ChatMessage, ChatSession, MessageRole
from mudita.src.database.mongo import MESSAGES_COLLECTION, SESSIONS_COLLECTION, get_database
from mudita.src.utils.logger import get_logger
from mudita.src.utils.text_utils import truncate
from mudita.src.utils.time_utils import local_midnight, to_utc_naive, utcnow

logger = get_logger(__name__)

_SPEAKER_LABELS: dict[str, str] = {"user": "사용자", "assistant": "무디타", "system": "시스템"}
_FALLBACK_SUMMARY_CHARS = 1000


class SessionContext(BaseModel):
    summary: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)


def format_transcript(messages: Iterable[ChatMessage]) -> str:
    return "\n".join(f"{_SPEAKER_LABELS.get(m.role, m.role)}: {m.content}" for m in messages)


# ══════════════════════════════════════════════════════════════════════
#  CONVERSATION SUMMARIZER
# ══════════════════════════════════════════════════════════════════════


class ConversationSummarizer:
    """
    Condenses old conversation turns into a 3–5 sentence Korean synopsis.

    Falls back to a truncated transcript when the model call fails, so
    compaction always yields a non-empty summary.
    """

    __slots__ = ("_llm",)

    def __init__(self, llm: Any | None = None) -> None:
        self._llm = llm if llm is not None else self._init_llm()


    @staticmethod
    def _init_llm() -> Any:
        """Create a low-temperature LLM for summarization."""
        from langchain_google_genai import ChatGoogleGenerativeAI

        from mudita.src.core.errors import ConfigurationError

        if settings.GOOGLE_API_KEY is None:
            raise ConfigurationError("GOOGLE_API_KEY is not configured; summarization is unavailable.")
        return ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=0.3, max_tokens=500, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())


    async def summarize(self, messages: Sequence[ChatMessage]) -> str:
        transcript = format_transcript(messages)
        try:
            from langchain_core.messages import HumanMessage

            response = await self._llm.ainvoke([HumanMessage(content=SUMMARIZATION_PROMPT.format(conversation=transcript))])
            summary = response.content if hasattr(response, "content") else str(response)
            if isinstance(summary, str) and summary.strip():
                return summary.strip()
            logger.warning("[SESSION] Summarizer returned an empty summary, using transcript fallback.")
        except Exception:
            logger.exception("[SESSION] Summarization LLM call failed, using transcript fallback.")
        return truncate(transcript, _FALLBACK_SUMMARY_CHARS)


# ══════════════════════════════════════════════════════════════════════
#  MONGO SESSION STORE
# ══════════════════════════════════════════════════════════════════════


class MongoSessionStore:
    """
    Owner-scoped chat sessions and their messages.

    Parameters
    ----------
    db
        A ``motor`` database handle.  Defaults to the shared client's
        ``settings.MONGO_DB_NAME`` database.
    summarizer
        Used by ``summarize_old_messages``.  Built lazily on first use
        when omitted, so read-only callers never need a provider key.
    """

    __slots__ = ("_sessions", "_messages", "_summarizer")

    def __init__(self, db: motor.motor_asyncio.AsyncIOMotorDatabase | None = None, summarizer: ConversationSummarizer | None = None) -> None:
        db = db if db is not None else get_database()
        self._sessions = db[SESSIONS_COLLECTION]
        self._messages = db[MESSAGES_COLLECTION]
        self._summarizer = summarizer

    # ══════════════════════════════════════════════════════════════════
    #  SESSIONS
    # ══════════════════════════════════════════════════════════════════

    async def create_session(self, owner_id: int, title: str | None = None) -> ChatSession:
        now = utcnow()
        doc = {"_id": str(uuid.uuid4()), "user_id": owner_id, "title": title, "summary": None, "is_active": True, "created_at": now, "updated_at": now}
        await self._sessions.insert_one(doc)
        logger.info("[SESSION] Created session %s for user %d.", doc["_id"], owner_id)
        return self._to_session(doc)


    async def get_or_create_session(self, owner_id: int, now: datetime | None = None) -> ChatSession:
        """
        Return the newest active session created since local midnight, else a new one.

        Parameters
        ----------
        owner_id
            Session owner.
        now
            Reference moment for "today" (defaults to the current time).
        """
        since = to_utc_naive(local_midnight(now))
        doc = await self._sessions.find_one({"user_id": owner_id, "is_active": True, "created_at": {"$gte": since}}, sort=[("created_at", -1)])
        if doc is not None:
            logger.debug("[SESSION] Reusing today's session %s for user %d.", doc["_id"], owner_id)
            return self._to_session(doc)
        return await self.create_session(owner_id)


    async def get_session(self, session_id: str, include_messages: bool = False) -> ChatSession | None:
        doc = await self._sessions.find_one({"_id": session_id})
        if doc is None:
            return None
        session = self._to_session(doc)
        if include_messages:
            session.messages = await self._all_messages(session_id)
        return session


    async def get_owned_session(self, session_id: str, owner_id: int) -> ChatSession:
        """
        Return *session_id* if it exists and belongs to *owner_id*.

        Raises
        ------
        SessionNotFoundError
            If the session is absent **or** owned by someone else; the two
            cases are indistinguishable to the caller.
        """
        doc = await self._sessions.find_one({"_id": session_id, "user_id": owner_id})
        if doc is None:
            raise SessionNotFoundError(session_id)
        return self._to_session(doc)


    async def list_sessions(self, owner_id: int, limit: int = 50) -> list[ChatSession]:
        cursor = self._sessions.find({"user_id": owner_id}).sort("updated_at", -1).limit(limit)
        return [self._to_session(doc) for doc in await cursor.to_list(length=limit)]


    async def update_title(self, session_id: str, title: str) -> bool:
        result = await self._sessions.update_one({"_id": session_id}, {"$set": {"title": title, "updated_at": utcnow()}})
        return result.matched_count > 0


    async def deactivate_session(self, session_id: str) -> bool:
        result = await self._sessions.update_one({"_id": session_id}, {"$set": {"is_active": False, "updated_at": utcnow()}})
        if result.matched_count:
            logger.info("[SESSION] Deactivated session %s.", session_id)
        return result.matched_count > 0


    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and all of its messages.  Returns True if the session existed."""
        await self._messages.delete_many({"session_id": session_id})
        result = await self._sessions.delete_one({"_id": session_id})
        logger.info("[SESSION] Deleted session %s (existed=%s).", session_id, result.deleted_count > 0)
        return result.deleted_count > 0


    async def delete_owner_sessions(self, owner_id: int) -> int:
        """Delete every session of *owner_id* with its messages.  Returns the session count."""
        docs = await self._sessions.find({"user_id": owner_id}, {"_id": 1}).to_list(length=None)
        session_ids = [doc["_id"] for doc in docs]
        if not session_ids:
            return 0
        await self._messages.delete_many({"session_id": {"$in": session_ids}})
        result = await self._sessions.delete_many({"_id": {"$in": session_ids}})
        logger.info("[SESSION] Deleted %d session(s) of user %d.", result.deleted_count, owner_id)
        return result.deleted_count

    # ══════════════════════════════════════════════════════════════════
    #  MESSAGES
    # ══════════════════════════════════════════════════════════════════

    async def save_message(self, session_id: str, role: MessageRole, content: str, related_diary_ids: Iterable[int] | None = None) -> ChatMessage:
        """Append a message and bump the session's ``updated_at``."""
        message = ChatMessage(message_id=str(uuid.uuid4()), session_id=session_id, role=role, content=content, related_diary_ids=list(related_diary_ids or []), created_at=utcnow())
        await self._messages.insert_one(message.model_dump())
        await self._sessions.update_one({"_id": session_id}, {"$set": {"updated_at": message.created_at}})
        logger.debug("[SESSION] Saved %s message in %s (%d chars).", role, session_id, len(content))
        return message


    async def get_recent_messages(self, session_id: str, limit: int) -> list[ChatMessage]:
        """
        The *limit* most recent messages, oldest first.

        Raises
        ------
        InvalidArgumentError
            If ``limit < 1``.
        """
        if limit < 1:
            raise InvalidArgumentError(f"limit must be ≥ 1, got {limit}.", {"limit": limit})

        cursor = self._messages.find({"session_id": session_id}).sort([("created_at", -1), ("_id", -1)]).limit(limit)
        newest_first = await cursor.to_list(length=limit)
        return [self._to_message(doc) for doc in reversed(newest_first)]


    async def count_messages(self, session_id: str) -> int:
        return await self._messages.count_documents({"session_id": session_id})


    async def get_session_context(self, session_id: str, limit: int | None = None) -> SessionContext:
        """Session summary plus the most recent messages, for context assembly."""
        doc = await self._sessions.find_one({"_id": session_id}, {"summary": 1})
        messages = await self.get_recent_messages(session_id, limit or settings.SESSION_HISTORY_LIMIT)
        return SessionContext(summary=doc.get("summary") if doc else None, messages=messages)

    # ══════════════════════════════════════════════════════════════════
    #  SUMMARIZATION
    # ══════════════════════════════════════════════════════════════════

    async def needs_summarization(self, session_id: str) -> bool:
        return await self.count_messages(session_id) > settings.SUMMARIZATION_THRESHOLD


    async def summarize_old_messages(self, session_id: str) -> str | None:
        """
        Compact the session when it holds more than ``SUMMARIZATION_THRESHOLD`` messages.

        Everything except the newest ``SUMMARY_KEEP_RECENT`` messages is
        summarized; the summary **replaces** any previous one and the
        summarized messages are deleted.

        Returns
        -------
        str | None
            The new summary, or ``None`` when no compaction was needed.
        """
        if not await self.needs_summarization(session_id):
            return None

        t_start = time.perf_counter()
        messages = await self._all_messages(session_id)
        old = messages[:-settings.SUMMARY_KEEP_RECENT]
        if not old:
            return None

        summary = await self._get_summarizer().summarize(old)
        await self._sessions.update_one({"_id": session_id}, {"$set": {"summary": summary, "updated_at": utcnow()}})
        await self._messages.delete_many({"message_id": {"$in": [m.message_id for m in old]}})

        logger.info("[SESSION] Session %s compacted: %d → %d message(s) in %.1fms.", session_id, len(messages), len(messages) - len(old), (time.perf_counter() - t_start) * 1000)
        return summary

    # ══════════════════════════════════════════════════════════════════
    #  INTERNALS
    # ══════════════════════════════════════════════════════════════════

    def _get_summarizer(self) -> ConversationSummarizer:
        if self._summarizer is None:
            self._summarizer = ConversationSummarizer()
        return self._summarizer


    async def _all_messages(self, session_id: str) -> list[ChatMessage]:
        cursor = self._messages.find({"session_id": session_id}).sort([("created_at", 1), ("_id", 1)])
        return [self._to_message(doc) for doc in await cursor.to_list(length=None)]


    @staticmethod
    def _to_session(doc: dict) -> ChatSession:
        return ChatSession(session_id=doc["_id"], user_id=doc["user_id"], title=doc.get("title"), summary=doc.get("summary"), is_active=doc.get("is_active", True), created_at=doc["created_at"], updated_at=doc["updated_at"])


    @staticmethod
    def _to_message(doc: dict) -> ChatMessage:
        return ChatMessage(message_id=doc["message_id"], session_id=doc["session_id"], role=doc["role"], content=doc["content"], related_diary_ids=doc.get("related_diary_ids") or [], created_at=doc["created_at"])
