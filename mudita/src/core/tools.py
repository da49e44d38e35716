"""
Mudita - Conversation Tools
============================
Introspection tools the generation model may call mid-answer:

  • ``search_diaries``          semantic search over the owner's diaries
  • ``analyze_mood``            recent mood-meter entries + colour distribution
  • ``get_recommendations``     entity-grounded personalized suggestions
  • ``find_emotion_triggers``   recurring themes per mood colour

The owner is **never** read from model-provided arguments: every call
receives an explicit ``ToolContext`` built by the orchestrator from the
authenticated request.  A tool that raises returns
``{"success": False, "message": ...}`` instead of propagating, so one
failing tool cannot break the answer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from mudita.config.prompt_templates import MOOD_COLOR_TRAITS
from mudita.src.core.date_parser import named_window
from mudita.src.core.models import DateRange
from mudita.src.core.pattern_analyzer import emotion_triggers, mood_distribution, personalized_suggestions
from mudita.src.database.diary_repository import DiaryRepository
from mudita.src.database.embedding_client import Embedder
from mudita.src.database.vector_store import DiaryVectorStore
from mudita.src.utils.logger import get_logger
from mudita.src.utils.text_utils import truncate
from mudita.src.utils.time_utils import format_korean_date, local_midnight

logger = get_logger(__name__)

ToolResult = dict[str, Any]

SEARCH_TOP_K = 5
SEARCH_CONTENT_CHARS = 200
MOOD_RECORD_LIMIT = 10
MOOD_DIARY_LIMIT = 20
RECOMMENDATION_DIARY_LIMIT = 30
TRIGGER_DIARY_LIMIT = 50
TRIGGER_MIN_DIARIES = 3

RECOMMENDATION_MOOD_COLORS: dict[str, str] = {"positive": "노란색", "negative": "파란색", "neutral": "초록색"}
TRIGGER_MOOD_COLORS: dict[str, str] = {"happy": "노란색", "sad": "파란색", "angry": "빨간색", "calm": "초록색"}


@dataclass(frozen=True)
class ToolContext:
    """Authenticated identity every tool call runs under."""

    owner_id: int
    user_name: str | None = None


# ══════════════════════════════════════════════════════════════════════
#  TOOL SCHEMAS (OpenAI function format, accepted by ``bind_tools``)
# ══════════════════════════════════════════════════════════════════════

TOOL_SCHEMAS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "search_diaries",
            "description": "사용자의 일기에서 특정 주제, 감정, 시간대에 대한 내용을 검색합니다. 사용자가 과거 경험이나 감정에 대해 물어볼 때 사용하세요.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": '검색할 내용 (예: "행복했던 날", "스트레스 받았을 때", "친구와 만났던 일")'},
                    "date_filter": {"type": "string", "enum": ["today", "yesterday", "this_week", "last_week", "this_month", "last_month", "all"], "description": "날짜 필터 (선택사항)"},
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "analyze_mood",
            "description": "사용자의 최근 감정 상태와 패턴을 분석합니다. 사용자가 자신의 감정 패턴이나 최근 기분에 대해 물어볼 때 사용하세요.",
            "parameters": {
                "type": "object",
                "properties": {"period": {"type": "string", "enum": ["recent", "this_week", "this_month"], "description": "분석 기간 (기본값: recent)"}},
                "required": [],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "get_recommendations",
            "description": "사용자의 일기 내용을 바탕으로 개인화된 활동이나 조언을 추천합니다. 사용자가 뭘 해야 할지 모르겠거나 기분 전환이 필요할 때 사용하세요.",
            "parameters": {
                "type": "object",
                "properties": {"current_mood": {"type": "string", "enum": ["positive", "negative", "neutral"], "description": "현재 사용자의 기분 상태"}},
                "required": [],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "find_emotion_triggers",
            "description": "특정 감정을 느끼게 하는 상황이나 요인을 분석합니다. 사용자가 왜 특정 감정을 느끼는지 알고 싶어할 때 사용하세요.",
            "parameters": {
                "type": "object",
                "properties": {"target_mood": {"type": "string", "enum": ["happy", "sad", "angry", "calm"], "description": "분석할 감정 (기본값: 전체)"}},
                "required": [],
            },
        },
    },
]

TOOL_NAMES: frozenset[str] = frozenset(schema["function"]["name"] for schema in TOOL_SCHEMAS)


class DiaryToolExecutor:
    """
    Runs tool calls against the owner named in the ``ToolContext``.

    Parameters
    ----------
    embedder
        Embeds ``search_diaries`` queries.
    vector_store
        Owner-scoped diary search.
    diary_repository
        Diary and mood-meter reads for the analysis tools.
    """

    __slots__ = ("_embedder", "_store", "_diaries")

    def __init__(self, embedder: Embedder, vector_store: DiaryVectorStore, diary_repository: DiaryRepository) -> None:
        self._embedder = embedder
        self._store = vector_store
        self._diaries = diary_repository


    async def execute(self, name: str, args: dict[str, Any] | None, context: ToolContext) -> ToolResult:
        """Dispatch *name* with *args*.  Never raises."""
        handler = {
            "search_diaries": self.search_diaries,
            "analyze_mood": self.analyze_mood,
            "get_recommendations": self.get_recommendations,
            "find_emotion_triggers": self.find_emotion_triggers,
        }.get(name)
        if handler is None:
            logger.warning("[TOOL] Unknown tool requested: %s", name)
            return {"success": False, "message": f"Unknown tool: {name}"}

        t_start = time.perf_counter()
        try:
            result = await handler(context, **(args or {}))
        except Exception as exc:
            logger.warning("[TOOL] %s failed for user %d: %s", name, context.owner_id, exc)
            return {"success": False, "message": f"도구 실행 중 오류가 발생했어요: {name}"}

        logger.info("[TOOL] %s for user %d completed in %.1fms", name, context.owner_id, (time.perf_counter() - t_start) * 1000)
        return result

    # ══════════════════════════════════════════════════════════════════
    #  TOOLS
    # ══════════════════════════════════════════════════════════════════

    async def search_diaries(self, context: ToolContext, query: str, date_filter: str | None = None) -> ToolResult:
        vector = await self._embedder.embed(query)
        results = self._store.search_similar(context.owner_id, vector, SEARCH_TOP_K, named_window(date_filter))
        if not results:
            return {"success": True, "found": False, "message": "관련된 일기를 찾지 못했어요."}

        diaries = [
            {"date": format_korean_date(d.date), "title": d.title, "content": truncate(d.content, SEARCH_CONTENT_CHARS), "mood": MOOD_COLOR_TRAITS.get(d.color, {}).get("description", d.color)}
            for d in results
        ]
        return {"success": True, "found": True, "diaries": diaries, "count": len(diaries)}


    async def analyze_mood(self, context: ToolContext, period: str = "recent") -> ToolResult:
        moods = await self._diaries.recent_moods(context.owner_id, MOOD_RECORD_LIMIT)

        today = local_midnight()
        date_range: DateRange | None = None
        if period == "this_week":
            date_range = DateRange(start_date=today - timedelta(days=7), end_date=today)
        elif period == "this_month":
            date_range = DateRange(start_date=today.replace(day=1), end_date=today)

        diaries = await self._diaries.list_diaries(context.owner_id, date_range, MOOD_DIARY_LIMIT)
        distribution = mood_distribution(diaries)

        recent = [
            {"date": format_korean_date(m.created_at, with_year=False), "label": m.label, "zone": MOOD_COLOR_TRAITS.get(m.color, {}).get("zone", m.color), "pleasantness": m.pleasantness, "energy": m.energy}
            for m in moods[:5]
        ]
        if distribution:
            summary = f'최근 가장 많이 느낀 감정은 "{distribution[0].description}" ({distribution[0].percentage}%)입니다.'
        else:
            summary = "아직 분석할 감정 데이터가 충분하지 않아요."
        return {"success": True, "recent_moods": recent, "mood_distribution": [d.model_dump() for d in distribution[:4]], "diary_count": len(diaries), "summary": summary}


    async def get_recommendations(self, context: ToolContext, current_mood: str = "neutral") -> ToolResult:
        diaries = await self._diaries.list_diaries(context.owner_id, None, RECOMMENDATION_DIARY_LIMIT)
        if not diaries:
            return {"success": True, "has_recommendations": False, "message": "아직 일기가 없어서 맞춤 추천을 드리기 어려워요. 일기를 쓰면 더 좋은 추천을 해드릴 수 있어요!"}

        suggestions = personalized_suggestions(diaries, RECOMMENDATION_MOOD_COLORS.get(current_mood, "초록색"), 3)
        return {"success": True, "has_recommendations": bool(suggestions), "recommendations": [s.suggestion for s in suggestions], "based_on_diary_count": len(diaries)}


    async def find_emotion_triggers(self, context: ToolContext, target_mood: str | None = None) -> ToolResult:
        diaries = await self._diaries.list_diaries(context.owner_id, None, TRIGGER_DIARY_LIMIT)
        if len(diaries) < TRIGGER_MIN_DIARIES:
            return {"success": True, "has_analysis": False, "message": "감정 트리거를 분석하려면 최소 3개 이상의 일기가 필요해요."}

        if target_mood:
            color = TRIGGER_MOOD_COLORS.get(target_mood)
            diaries = await self._diaries.list_by_color(context.owner_id, color, TRIGGER_DIARY_LIMIT) if color else []

        triggers = emotion_triggers(diaries)
        return {
            "success": True,
            "has_analysis": bool(triggers),
            "triggers": [
                {"mood": MOOD_COLOR_TRAITS.get(t.mood_color, {}).get("description", t.mood_color), "common_themes": t.triggers[:5], "diary_count": len(t.diary_ids)}
                for t in triggers[:3]
            ],
        }
