"""
Mudita - RAG Engine
====================
Composes the pipeline into one streamed request/response cycle.

Architecture
------------
``StreamEvent`` / ``EventStream``
    The transport contract: one ``session`` event first, ``token``
    events in generation order, then exactly one terminal ``done`` or
    ``error``.  ``EventStream.close()`` models a client disconnect:
    later emits are dropped silently while the producer keeps running
    to completion (persistence included).

``RAGOrchestrator``
    Stateless across requests.  Flow (one ``open_stream`` call):
        1. Blank message → ``EmptyMessageError`` (no provider call)
        2. Resolve session (explicit id must belong to the owner,
           otherwise the session of the day)
        3. Persist the user's original message
        4. Guardrail → rejection streamed like a normal answer
        5. No diaries → greeting on the first turn, else plain persona
        6. Semantic cache (short history only) → cached answer
        7. Date parse → embed → owner/date scoped search (over-fetch 2×)
           → rerank → mood records → context
        8. Generation with tools → CTA → output scrubbing
        9. Persist reply → ``done``; cache store and compaction run as
           detached tasks

Failure before the first token streams ``DEFAULT_SUPPORTIVE_MESSAGE``;
failure after it ends with an ``error`` event carrying the partial text,
which is persisted with the interruption marker.

Usage:
    from mudita.src.core.rag_engine import RAGOrchestrator
    stream = await orchestrator.open_stream(7, "요즘 왜 이렇게 지칠까?")
    async for event in stream:
        transport.write(event.to_sse())
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

from mudita.config.prompt_templates import DEFAULT_SUPPORTIVE_MESSAGE, EMPTY_MESSAGE_PROMPT, GUARDRAIL_DEFAULT_REASON, INTERRUPTED_MARKER, NO_CONTEXT_RESPONSE_TEMPLATE, NO_DIARY_RESPONSE_TEMPLATE
from mudita.config.settings import settings
from mudita.src.core.actions import CTADecider, action_for, parse_cta_marker
from mudita.src.core.context_builder import build_context
from mudita.src.core.date_parser import parse_date_range
from mudita.src.core.errors import EmptyMessageError, GenerationError
from mudita.src.core.guardrail import GuardrailService, PatternGuardrail, sanitize_output
from mudita.src.core.generation import GenerationEngine
from mudita.src.core.models import ChatMessage, ChatSession, DiarySearchResult, ResponseAction
from mudita.src.core.reranker import DiaryReranker
from mudita.src.core.tools import ToolContext
from mudita.src.database.diary_repository import DiaryRepository
from mudita.src.database.embedding_client import Embedder
from mudita.src.database.semantic_cache import SemanticCache
from mudita.src.database.session_store import MongoSessionStore
from mudita.src.database.vector_store import DiaryVectorStore
from mudita.src.utils.logger import get_logger
from mudita.src.utils.text_utils import name_with_suffix

logger = get_logger(__name__)

EventName = Literal["session", "token", "done", "error"]
TERMINAL_EVENTS: frozenset[str] = frozenset({"done", "error"})

CACHE_MAX_HISTORY = 2


# ══════════════════════════════════════════════════════════════════════
#  STREAMING TRANSPORT
# ══════════════════════════════════════════════════════════════════════


class StreamEvent(BaseModel):
    event: EventName
    data: dict[str, Any] = Field(default_factory=dict)

    def to_sse(self) -> str:
        """Render as a Server-Sent-Events frame."""
        return f"event: {self.event}\ndata: {json.dumps(self.data, ensure_ascii=False)}\n\n"


class EventStream:
    """
    Single-producer single-consumer event channel.

    ``emit`` returns ``False`` (and drops the event) once the consumer
    has closed the stream or a terminal event was already emitted.
    Iteration ends after the terminal event, or immediately on close.
    """

    __slots__ = ("_queue", "_closed", "_finished", "producer")

    def __init__(self) -> None:
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._closed = False
        self._finished = False
        self.producer: asyncio.Task[None] | None = None


    @property
    def closed(self) -> bool:
        return self._closed


    @property
    def finished(self) -> bool:
        return self._finished


    def emit(self, event: EventName, data: dict[str, Any] | None = None) -> bool:
        if self._closed or self._finished:
            return False
        if event in TERMINAL_EVENTS:
            self._finished = True
        self._queue.put_nowait(StreamEvent(event=event, data=data or {}))
        return True


    def close(self) -> None:
        """Consumer went away.  Wakes a pending iterator."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)


    async def join(self) -> None:
        """Wait for the producer (and its persistence) to finish."""
        if self.producer is not None:
            await asyncio.shield(self.producer)


    async def __aiter__(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is None or self._closed:
                return
            yield item
            if item.event in TERMINAL_EVENTS:
                return


@dataclass
class _Answer:
    text: str
    diary_ids: list[int] = field(default_factory=list)
    action: ResponseAction | None = None
    embedding: list[float] | None = None
    cacheable: bool = False


# ══════════════════════════════════════════════════════════════════════
#  ORCHESTRATOR
# ══════════════════════════════════════════════════════════════════════


class RAGOrchestrator:
    """
    Top-level entry point for one chat turn.

    Parameters
    ----------
    session_store, diary_repository
        MongoDB-backed conversation and diary reads.
    embedder, vector_store, cache
        Query embedding, owner-scoped retrieval and the semantic cache.
    generation
        Streaming persona model.
    reranker, cta_decider, guardrail
        Built with defaults when omitted.
    """

    __slots__ = ("_sessions", "_diaries", "_embedder", "_store", "_cache", "_generation", "_reranker", "_cta", "_guardrail", "_background")

    def __init__(self, session_store: MongoSessionStore, diary_repository: DiaryRepository, embedder: Embedder, vector_store: DiaryVectorStore, cache: SemanticCache, generation: GenerationEngine, reranker: DiaryReranker | None = None, cta_decider: CTADecider | None = None, guardrail: GuardrailService | None = None) -> None:
        self._sessions = session_store
        self._diaries = diary_repository
        self._embedder = embedder
        self._store = vector_store
        self._cache = cache
        self._generation = generation
        self._reranker = reranker or DiaryReranker()
        self._cta = cta_decider or CTADecider()
        self._guardrail: GuardrailService = guardrail or PatternGuardrail()
        self._background: set[asyncio.Task[Any]] = set()

    # ══════════════════════════════════════════════════════════════════
    #  PUBLIC API
    # ══════════════════════════════════════════════════════════════════

    async def open_stream(self, owner_id: int, message: str, session_id: str | None = None, user_name: str | None = None) -> EventStream:
        """
        Start answering *message* and return the event stream.

        Raises
        ------
        EmptyMessageError
            *message* is blank.  Raised before any provider call.
        SessionNotFoundError
            *session_id* does not exist or belongs to another owner.
        """
        if not message or not message.strip():
            raise EmptyMessageError(EMPTY_MESSAGE_PROMPT)

        if session_id:
            session = await self._sessions.get_owned_session(session_id, owner_id)
        else:
            session = await self._sessions.get_or_create_session(owner_id)

        stream = EventStream()
        stream.producer = self._spawn(self._produce(stream, owner_id, session, message, user_name))
        return stream


    async def drain(self) -> None:
        """Await every detached task still running (shutdown, tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ══════════════════════════════════════════════════════════════════
    #  PRODUCER
    # ══════════════════════════════════════════════════════════════════

    async def _produce(self, stream: EventStream, owner_id: int, session: ChatSession, message: str, user_name: str | None) -> None:
        try:
            await self._cycle(stream, owner_id, session, message, user_name)
        except Exception as exc:
            logger.error("[RAG] Request cycle failed for user %d: %s", owner_id, exc)
            stream.emit("error", {"message": DEFAULT_SUPPORTIVE_MESSAGE, "partial_content": ""})


    async def _cycle(self, stream: EventStream, owner_id: int, session: ChatSession, message: str, user_name: str | None) -> None:
        t_start = time.perf_counter()
        session_id = session.session_id
        stream.emit("session", {"session_id": session_id})

        user_turn = await self._sessions.save_message(session_id, "user", message)

        verdict = self._guardrail.check(message)
        if not verdict.is_allowed:
            reply = verdict.reason or GUARDRAIL_DEFAULT_REASON
            logger.info("[RAG] Guardrail rejected message for user %d (%s).", owner_id, verdict.category)
            self._stream_text(stream, reply)
            await self._persist_reply(session_id, reply, [])
            stream.emit("done", {"related_diary_ids": [], "action": None})
            return

        query = verdict.sanitized_input or message.strip()
        delivered: list[str] = []

        def on_token(fragment: str) -> None:
            delivered.append(fragment)
            stream.emit("token", {"content": fragment})

        try:
            answer = await self._answer(owner_id, session_id, user_turn, query, user_name, on_token, delivered)
        except Exception as exc:
            if not delivered:
                logger.error("[RAG] Pipeline failed before first token for user %d: %s", owner_id, exc)
                on_token(DEFAULT_SUPPORTIVE_MESSAGE)
                await self._persist_reply(session_id, DEFAULT_SUPPORTIVE_MESSAGE, [])
                stream.emit("done", {"related_diary_ids": [], "action": None})
                return

            partial = "".join(delivered)
            logger.error("[RAG] Generation interrupted for user %d after %d fragment(s): %s", owner_id, len(delivered), exc)
            stream.emit("error", {"message": exc.user_message if isinstance(exc, GenerationError) else DEFAULT_SUPPORTIVE_MESSAGE, "partial_content": partial})
            await self._persist_reply(session_id, partial + INTERRUPTED_MARKER, [])
            return

        # Tokens were streamed raw; only the stored reply is stripped of the CTA marker and scrubbed.
        await self._persist_reply(session_id, answer.text, answer.diary_ids)
        stream.emit("done", {"related_diary_ids": answer.diary_ids, "action": answer.action.model_dump() if answer.action else None})

        if answer.cacheable:
            self._spawn(self._cache.store(owner_id, query, answer.text, answer.diary_ids, answer.embedding))
        self._spawn(self._compact(session_id))

        logger.info("[RAG] Turn complete for user %d in %.1fms (%d fragment(s), %d diary reference(s)).", owner_id, (time.perf_counter() - t_start) * 1000, len(delivered), len(answer.diary_ids))


    async def _answer(self, owner_id: int, session_id: str, user_turn: ChatMessage, query: str, user_name: str | None, on_token: Any, delivered: list[str]) -> _Answer:
        has_diaries = await self._diaries.count_diaries(owner_id) > 0
        memory = await self._sessions.get_session_context(session_id)
        history = [m for m in memory.messages if m.message_id != user_turn.message_id]
        vocative = name_with_suffix(user_name or "친구")

        # ── Owner without diaries ──────────────────────────────────────
        if not has_diaries:
            if not history:
                text = NO_DIARY_RESPONSE_TEMPLATE.format(name_with_suffix=vocative)
                for char in text:
                    on_token(char)
                return _Answer(text, action=action_for("write_diary"))
            try:
                text = await self._generation.generate(build_context([], history, None, memory.summary), query, on_token=on_token, user_name=user_name, has_diaries=False, history=history, tools_enabled=False)
            except GenerationError as exc:
                if delivered:
                    raise
                logger.warning("[RAG] Persona reply failed for user %d without diaries: %s", owner_id, exc)
                text = NO_CONTEXT_RESPONSE_TEMPLATE.format(name_with_suffix=vocative)
                for char in text:
                    on_token(char)
                return _Answer(text)
            return await self._finish(query, text, [], has_diaries=False, history_length=len(history))

        # ── Semantic cache ─────────────────────────────────────────────
        embedding: list[float] | None = None
        if len(history) <= CACHE_MAX_HISTORY and len(query) >= settings.CACHE_MIN_QUERY_CHARS:
            embedding = await self._embedder.embed(query)
            cached = await self._cache.lookup(owner_id, query, embedding)
            if cached.hit and cached.response:
                for char in cached.response:
                    on_token(char)
                action = await self._cta.decide(query, cached.response, True, len(history))
                return _Answer(cached.response, list(cached.diary_ids), action)

        # ── Retrieval ──────────────────────────────────────────────────
        t_retrieve = time.perf_counter()
        diaries = await self._retrieve(owner_id, query, embedding)
        moods = await self._diaries.recent_moods(owner_id, settings.MOOD_CONTEXT_LIMIT)
        context = build_context(diaries, history, moods, memory.summary)
        diary_ids = [d.diary_id for d in diaries]
        logger.info("[RAG] Retrieved %d diary(ies) and %d mood record(s) in %.1fms.", len(diaries), len(moods), (time.perf_counter() - t_retrieve) * 1000)

        # ── Generation ─────────────────────────────────────────────────
        text = await self._generation.generate(context, query, on_token=on_token, user_name=user_name, has_diaries=True, history=history, tools_enabled=True, tool_context=ToolContext(owner_id=owner_id, user_name=user_name))
        answer = await self._finish(query, text, diary_ids, has_diaries=True, history_length=len(history))
        answer.embedding = embedding
        answer.cacheable = True
        return answer


    async def _retrieve(self, owner_id: int, query: str, embedding: list[float] | None) -> list[DiarySearchResult]:
        top_k = settings.SEARCH_TOP_K
        date_range = parse_date_range(query)
        vector = embedding if embedding is not None else await self._embedder.embed(query)
        candidates = self._store.search_similar(owner_id, vector, min(top_k * 2, settings.RERANK_CANDIDATE_CAP), date_range)
        if len(candidates) > top_k:
            return list(await self._reranker.rerank(query, candidates, top_k))
        return candidates


    async def _finish(self, query: str, text: str, diary_ids: list[int], has_diaries: bool, history_length: int) -> _Answer:
        """CTA marker or decision, then output scrubbing."""
        cleaned, action = parse_cta_marker(text)
        if action is None:
            action = await self._cta.decide(query, cleaned, has_diaries, history_length)
        return _Answer(sanitize_output(cleaned), diary_ids, action)

    # ══════════════════════════════════════════════════════════════════
    #  INTERNALS
    # ══════════════════════════════════════════════════════════════════

    @staticmethod
    def _stream_text(stream: EventStream, text: str) -> None:
        for char in text:
            stream.emit("token", {"content": char})


    async def _persist_reply(self, session_id: str, text: str, diary_ids: list[int]) -> None:
        try:
            await self._sessions.save_message(session_id, "assistant", text, diary_ids)
        except Exception as exc:
            logger.error("[RAG] Failed to persist assistant reply in %s: %s", session_id, exc)


    async def _compact(self, session_id: str) -> None:
        try:
            await self._sessions.summarize_old_messages(session_id)
        except Exception as exc:
            logger.warning("[RAG] Session compaction failed for %s: %s", session_id, exc)


    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
