"""
Mudita - Domain Models
=======================
Pydantic models shared across the pipeline.

Records owned by external services (diaries, mood-meter entries) are
read-only here.  Search results, ranked results, entities and pattern
analysis outputs are derived per request and never persisted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from mudita.src.utils.time_utils import end_of_day

MessageRole = Literal["user", "assistant", "system"]
EntityType = Literal["activity", "person", "place"]
MoodValence = Literal["positive", "negative"]
ActionType = Literal["write_diary", "view_dashboard", "view_diary"]


# ── External records ───────────────────────────────────────────────────

class DiaryRecord(BaseModel):
    diary_id: int
    user_id: int
    title: str
    content: str
    color: str
    date: datetime


class MoodRecord(BaseModel):
    id: int
    label: str
    color: str
    pleasantness: int
    energy: int
    created_at: datetime


# ── Retrieval ──────────────────────────────────────────────────────────

class DateRange(BaseModel):
    """Inclusive day window; both ends are local midnights."""

    start_date: datetime
    end_date: datetime

    def bounds(self) -> tuple[datetime, datetime]:
        """``(start, endOfDay(end))`` for inclusive range queries."""
        return self.start_date, end_of_day(self.end_date)


class DiarySearchResult(BaseModel):
    diary_id: int
    title: str
    content: str
    date: datetime
    color: str
    score: float = Field(ge=0.0, le=1.0)


class RankedResult(DiarySearchResult):
    """A search result after reranking; ``rerank_score`` drives the order."""

    rerank_score: float
    reason: str | None = None

    @classmethod
    def unchanged(cls, result: DiarySearchResult) -> RankedResult:
        return cls(**result.model_dump(), rerank_score=result.score)


class CacheResult(BaseModel):
    hit: bool
    response: str | None = None
    diary_ids: list[int] = Field(default_factory=list)
    similarity: float | None = None


# ── Sessions ───────────────────────────────────────────────────────────

class ChatMessage(BaseModel):
    message_id: str
    session_id: str
    role: MessageRole
    content: str
    related_diary_ids: list[int] = Field(default_factory=list)
    created_at: datetime


class ChatSession(BaseModel):
    session_id: str
    user_id: int
    title: str | None = None
    summary: str | None = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime
    messages: list[ChatMessage] | None = None


class ResponseAction(BaseModel):
    type: ActionType
    label: str
    path: str


# ── Pattern analysis ───────────────────────────────────────────────────

class MoodDistribution(BaseModel):
    color: str
    count: int
    percentage: int
    description: str


class RecurringTheme(BaseModel):
    theme: str
    frequency: int
    diary_ids: list[int]
    examples: list[str]


class DiaryExample(BaseModel):
    diary_id: int
    title: str
    date: datetime
    excerpt: str


class EmotionTrigger(BaseModel):
    mood_color: str
    triggers: list[str]
    diary_ids: list[int]
    examples: list[DiaryExample]


class EmotionalPatternAnalysis(BaseModel):
    mood_distribution: list[MoodDistribution]
    recurring_themes: list[RecurringTheme]
    emotion_triggers: list[EmotionTrigger]
    diary_count: int
    date_range: tuple[datetime, datetime] | None = None


class ExtractedEntity(BaseModel):
    type: EntityType
    value: str
    frequency: int
    diary_ids: list[int]
    mood_colors: list[str]


class PersonalizedSuggestion(BaseModel):
    suggestion: str
    based_on: list[ExtractedEntity]
    diary_ids: list[int]
    mood_context: MoodValence
