"""
Mudita - Context Builder
=========================
Assembles the single context block handed to the generation model.

Sections, in order, each omitted entirely when its input is empty::

    === 최근 감정 상태 (MoodMeter) ===
    === 관련 일기 기록 ===
    === 이전 대화 요약 ===
    === 이전 대화 ===

Pure and deterministic: the same inputs always produce byte-identical
output.
"""

from __future__ import annotations

from collections.abc import Sequence

from mudita.config.prompt_templates import MOOD_COLOR_TRAITS
from mudita.src.core.models import ChatMessage, DiarySearchResult, MoodRecord
from mudita.src.utils.time_utils import format_korean_date

MOOD_HEADER = "=== 최근 감정 상태 (MoodMeter) ==="
DIARY_HEADER = "=== 관련 일기 기록 ==="
SUMMARY_HEADER = "=== 이전 대화 요약 ==="
HISTORY_HEADER = "=== 이전 대화 ==="

_MOOD_LINES = 5


def format_mood(mood: MoodRecord) -> str:
    trait = MOOD_COLOR_TRAITS.get(mood.color)
    zone = trait["zone"] if trait else mood.color
    return f'- {format_korean_date(mood.created_at, with_year=False)}: "{mood.label}" ({zone}, 쾌적함: {mood.pleasantness}/10, 에너지: {mood.energy}/10)'


def format_diary(diary: DiarySearchResult) -> str:
    trait = MOOD_COLOR_TRAITS.get(diary.color)
    mood = f"{diary.color} ({trait['description']})" if trait else diary.color
    return f"[일기 #{diary.diary_id}] {format_korean_date(diary.date)}\n제목: {diary.title}\n감정: {mood}\n내용: {diary.content}"


def format_history(messages: Sequence[ChatMessage]) -> str:
    return "\n".join(f"{'사용자' if m.role == 'user' else '무디타'}: {m.content}" for m in messages)


def build_context(diaries: Sequence[DiarySearchResult], chat_history: Sequence[ChatMessage], mood_data: Sequence[MoodRecord] | None = None, summary: str | None = None) -> str:
    """
    Join the non-empty sections with blank lines.

    Parameters
    ----------
    diaries
        Retrieved (and possibly reranked) diaries, in relevance order.
    chat_history
        Prior turns of the session, oldest first.
    mood_data
        Recent mood-meter entries, newest first; at most five are shown.
    summary
        Compacted summary of older turns, if the session has one.
    """
    sections: list[str] = []

    if mood_data:
        sections.append(f"{MOOD_HEADER}\n" + "\n".join(format_mood(m) for m in mood_data[:_MOOD_LINES]))

    if diaries:
        sections.append(f"{DIARY_HEADER}\n" + "\n\n".join(format_diary(d) for d in diaries))

    if summary and summary.strip():
        sections.append(f"{SUMMARY_HEADER}\n{summary.strip()}")

    if chat_history:
        sections.append(f"{HISTORY_HEADER}\n{format_history(chat_history)}")

    return "\n\n".join(sections)
