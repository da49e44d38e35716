"""
Mudita - Diary Reranker
========================
Reorders vector-search candidates by relevance to the user's query.

Two strategies
--------------
**Fast heuristic** (``rerank_fast``)
    ``similarity + keyword bonus + recency bonus + mood bonus``, clamped
    to 1.0.  Title hits weigh +0.15 per query word, body hits +0.05,
    recency decays linearly from +0.1 to 0 over a year, and a query
    containing a mood word of the diary's colour adds +0.1.

**Model-based** (``rerank_with_model``)
    The LLM scores every (truncated) diary 1–10 with a one-line reason;
    scores are normalised to 0–1.  Diaries the model skips keep their
    similarity score.  Any provider failure or timeout falls back to the
    original similarity order; this path never raises.

``rerank`` returns the candidates untouched when there are no more than
``top_k`` of them, otherwise caps the pool at ``RERANK_CANDIDATE_CAP``
and picks a strategy with ``should_use_model_reranking``.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from mudita.config.prompt_templates import RERANK_PROMPT_TEMPLATE, RERANK_SYSTEM_PROMPT
from mudita.config.settings import settings
from mudita.src.core.models import DiarySearchResult, RankedResult
from mudita.src.utils.logger import get_logger
from mudita.src.utils.text_utils import truncate
from mudita.src.utils.time_utils import format_korean_date, to_utc_naive, utcnow

logger = get_logger(__name__)

# ── Heuristic weights ──────────────────────────────────────────────────
TITLE_MATCH_BONUS = 0.15
CONTENT_MATCH_BONUS = 0.05
MOOD_MATCH_BONUS = 0.1
MAX_RECENCY_BONUS = 0.1

MOOD_KEYWORDS: dict[str, list[str]] = {
    "빨간색": ["화나", "짜증", "스트레스", "불안", "걱정"],
    "노란색": ["행복", "기쁨", "즐거", "신나", "좋았"],
    "파란색": ["슬프", "우울", "힘들", "지치", "피곤"],
    "초록색": ["평온", "편안", "차분", "만족", "평화"],
}

# ── Strategy selection ─────────────────────────────────────────────────
COMPLEX_QUERY_CHARS = 20
MANY_RESULTS = 5
_RE_EMOTIONAL = re.compile(r"기분|감정|느낌|행복|슬프|화나|우울|스트레스")
_RE_TEMPORAL = re.compile(r"지난|최근|요즘|어제|오늘|이번|저번")


# ── Structured model output ────────────────────────────────────────────

class DiaryRanking(BaseModel):
    diary_id: int = Field(description="평가한 일기의 ID")
    relevance_score: float = Field(description="관련성 점수 (1-10)")
    reason: str = Field(description="점수 부여 이유 (한 문장)")


class RerankResponse(BaseModel):
    rankings: list[DiaryRanking]


def should_use_model_reranking(query: str, candidate_count: int) -> bool:
    """Model reranking for long queries over many results, or any emotional/temporal query."""
    is_complex = len(query) > COMPLEX_QUERY_CHARS and candidate_count > MANY_RESULTS
    return is_complex or bool(_RE_EMOTIONAL.search(query)) or bool(_RE_TEMPORAL.search(query))


class DiaryReranker:
    """
    Two-tier diary reranker.

    Parameters
    ----------
    llm
        A LangChain chat model supporting ``with_structured_output``.
        Built lazily from settings on the first model rerank.
    candidate_cap
        Maximum candidates considered (defaults to ``RERANK_CANDIDATE_CAP``).
    timeout
        Seconds allowed for the model call (defaults to ``RERANK_TIMEOUT``).
    clock
        Returns the current naive-UTC time; drives the recency bonus.
    """

    __slots__ = ("_llm", "_candidate_cap", "_timeout", "_clock")

    def __init__(self, llm: Any | None = None, candidate_cap: int | None = None, timeout: float | None = None, clock: Callable[[], datetime] | None = None) -> None:
        self._llm = llm
        self._candidate_cap: int = candidate_cap or settings.RERANK_CANDIDATE_CAP
        self._timeout: float = timeout or settings.RERANK_TIMEOUT
        self._clock: Callable[[], datetime] = clock or utcnow


    async def rerank(self, query: str, candidates: Sequence[DiarySearchResult], top_k: int | None = None) -> list[RankedResult]:
        """
        Return at most *top_k* candidates ordered by relevance to *query*.

        When ``len(candidates) <= top_k`` every candidate is returned
        unchanged, with ``rerank_score`` equal to its similarity.
        """
        top_k = top_k or settings.RERANK_TOP_K
        if len(candidates) <= top_k:
            return [RankedResult.unchanged(c) for c in candidates]

        pool = list(candidates[:self._candidate_cap])
        if should_use_model_reranking(query, len(pool)):
            logger.info("[RERANK] Model reranking %d candidate(s) for query '%s'.", len(pool), query[:50])
            return await self.rerank_with_model(query, pool, top_k)

        logger.info("[RERANK] Fast reranking %d candidate(s) for query '%s'.", len(pool), query[:50])
        return self.rerank_fast(query, pool, top_k)

    # ══════════════════════════════════════════════════════════════════
    #  FAST HEURISTIC
    # ══════════════════════════════════════════════════════════════════

    def rerank_fast(self, query: str, candidates: Sequence[DiarySearchResult], top_k: int) -> list[RankedResult]:
        query_lower = query.lower()
        query_words = [w for w in query_lower.split() if len(w) >= 2]
        now = self._clock()

        scored: list[RankedResult] = []
        for diary in candidates:
            title = diary.title.lower()
            content = diary.content.lower()

            bonus = 0.0
            for word in query_words:
                if word in title:
                    bonus += TITLE_MATCH_BONUS
                if word in content:
                    bonus += CONTENT_MATCH_BONUS

            if any(mood_word in query_lower for mood_word in MOOD_KEYWORDS.get(diary.color, [])):
                bonus += MOOD_MATCH_BONUS

            days_since = (now - to_utc_naive(diary.date)).total_seconds() / 86400
            recency = max(0.0, MAX_RECENCY_BONUS - (days_since / 365) * MAX_RECENCY_BONUS)

            final = min(1.0, diary.score + bonus + recency)
            scored.append(RankedResult(**diary.model_dump(), rerank_score=final, reason=f"Vector: {diary.score:.2f}, Bonus: {bonus:.2f}"))

        scored.sort(key=lambda r: r.rerank_score, reverse=True)
        return scored[:top_k]

    # ══════════════════════════════════════════════════════════════════
    #  MODEL-BASED
    # ══════════════════════════════════════════════════════════════════

    async def rerank_with_model(self, query: str, candidates: Sequence[DiarySearchResult], top_k: int) -> list[RankedResult]:
        t_start = time.perf_counter()
        try:
            from langchain_core.messages import HumanMessage, SystemMessage

            structured = self._get_llm().with_structured_output(RerankResponse)
            prompt = RERANK_PROMPT_TEMPLATE.format(query=query, diaries=self._format_candidates(candidates))
            response = await asyncio.wait_for(structured.ainvoke([SystemMessage(content=RERANK_SYSTEM_PROMPT), HumanMessage(content=prompt)]), timeout=self._timeout)
        except Exception as exc:
            logger.warning("[RERANK] Model reranking failed, keeping similarity order: %s", exc)
            return [RankedResult.unchanged(c) for c in candidates[:top_k]]

        if not isinstance(response, RerankResponse) or not response.rankings:
            logger.warning("[RERANK] Empty model response, keeping similarity order.")
            return [RankedResult.unchanged(c) for c in candidates[:top_k]]

        by_id = {r.diary_id: r for r in response.rankings}
        ranked: list[RankedResult] = []
        for diary in candidates:
            ranking = by_id.get(diary.diary_id)
            if ranking is None:
                ranked.append(RankedResult(**diary.model_dump(), rerank_score=diary.score, reason="No ranking provided"))
            else:
                ranked.append(RankedResult(**diary.model_dump(), rerank_score=min(1.0, max(0.0, ranking.relevance_score / 10)), reason=ranking.reason))

        ranked.sort(key=lambda r: r.rerank_score, reverse=True)
        logger.info("[RERANK] Model scored %d diaries in %.1fms, top scores: %s", len(candidates), (time.perf_counter() - t_start) * 1000, ", ".join(f"{r.rerank_score:.2f}" for r in ranked[:3]))
        return ranked[:top_k]


    def _get_llm(self) -> Any:
        if self._llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI

            from mudita.src.core.errors import ConfigurationError

            if settings.GOOGLE_API_KEY is None:
                raise ConfigurationError("GOOGLE_API_KEY is not configured; model reranking is unavailable.")
            self._llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=0.3, max_tokens=1000, max_retries=0, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
        return self._llm


    @staticmethod
    def _format_candidates(candidates: Sequence[DiarySearchResult]) -> str:
        blocks = [
            f"[일기 {d.diary_id}] {format_korean_date(d.date)}\n제목: {d.title}\n감정: {d.color}\n내용: {truncate(d.content, settings.RERANK_CONTENT_CHARS)}"
            for d in candidates
        ]
        return "\n\n".join(blocks)
