"""
Mudita - Pattern Analyzer
==========================
Pure functions over a list of diaries: mood-colour distribution,
recurring lexical themes, emotion triggers per colour group, entity
extraction and entity-grounded personalized suggestions.

No I/O and no model calls.  Every function accepts plain
``DiaryRecord`` objects or vector-search results interchangeably.

Guarantees
----------
- Theme and entity frequencies count **distinct diaries**, never raw
  occurrences.
- An emotion-trigger group for colour C only ever references diaries
  whose colour is C.
- Every suggestion's text literally contains the entity it is based
  on, and that entity occurs in at least one input diary's content.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from mudita.config.prompt_templates import MOOD_COLOR_TRAITS, NEGATIVE_COLORS, POSITIVE_COLORS, SUGGESTION_TEMPLATES, UNKNOWN_COLOR, UNKNOWN_MOOD_DESCRIPTION
from mudita.src.core.models import DiaryExample, DiaryRecord, DiarySearchResult, EmotionalPatternAnalysis, EmotionTrigger, EntityType, ExtractedEntity, MoodDistribution, MoodValence, PersonalizedSuggestion, RecurringTheme
from mudita.src.utils.text_utils import extract_excerpt, extract_keywords, truncate

Diary = DiaryRecord | DiarySearchResult

MAX_THEME_EXAMPLES = 3
MAX_TRIGGERS_PER_COLOR = 5
MAX_TRIGGER_EXAMPLES = 3
TRIGGER_EXCERPT_CHARS = 100

# ══════════════════════════════════════════════════════════════════════
#  ENTITY VOCABULARIES
# ══════════════════════════════════════════════════════════════════════
# Ordered tuples so extraction is deterministic.  When a keyword sits in
# more than one vocabulary the first type (activity > person > place) wins.

ACTIVITY_KEYWORDS: tuple[str, ...] = (
    "운동", "산책", "조깅", "달리기", "수영", "헬스", "요가", "필라테스", "등산",
    "독서", "책", "영화", "드라마", "음악", "노래", "춤", "그림", "그리기",
    "요리", "베이킹", "청소", "정리", "빨래", "설거지",
    "공부", "학습", "강의", "수업", "시험", "과제",
    "게임", "쇼핑", "여행", "캠핑", "피크닉", "드라이브",
    "명상", "휴식", "낮잠", "수면", "잠",
    "카페", "커피", "차", "맥주", "술", "식사", "밥", "점심", "저녁", "아침",
    "미팅", "회의", "발표", "프로젝트", "업무", "일",
    "데이트", "약속", "모임", "파티", "생일",
    "병원", "치료", "검진", "약",
    "글쓰기", "일기", "블로그", "사진", "촬영",
)

PERSON_KEYWORDS: tuple[str, ...] = (
    "친구", "가족", "부모님", "엄마", "아빠", "어머니", "아버지",
    "형", "오빠", "누나", "언니", "동생", "남동생", "여동생",
    "할머니", "할아버지", "조부모", "삼촌", "이모", "고모", "외삼촌",
    "남편", "아내", "배우자", "애인", "여자친구", "남자친구", "연인",
    "아들", "딸", "자녀", "아이", "아기",
    "동료", "상사", "부하", "팀장", "사장", "대표", "선배", "후배",
    "선생님", "교수님", "강사", "학생", "제자",
    "이웃", "주민",
)

PLACE_KEYWORDS: tuple[str, ...] = (
    "집", "회사", "사무실", "학교", "대학", "학원",
    "카페", "커피숍", "식당", "레스토랑", "맛집", "술집", "바",
    "공원", "산", "바다", "해변", "강", "호수", "숲",
    "병원", "약국", "은행", "마트", "슈퍼", "백화점", "쇼핑몰",
    "헬스장", "체육관", "수영장", "운동장", "경기장",
    "도서관", "서점", "미술관", "박물관", "영화관", "극장", "공연장",
    "역", "버스정류장", "공항", "터미널",
    "호텔", "펜션", "숙소", "리조트",
    "교회", "절", "성당",
)

_VOCABULARIES: tuple[tuple[EntityType, tuple[str, ...]], ...] = (
    ("activity", ACTIVITY_KEYWORDS),
    ("person", PERSON_KEYWORDS),
    ("place", PLACE_KEYWORDS),
)

# Single-syllable keywords (책, 잠, 집, 산 …) are substrings of countless
# unrelated words, so they match a whole token, optionally followed by a
# particle, instead of any substring.
_PARTICLES: tuple[str, ...] = ("은", "는", "이", "가", "을", "를", "에", "에서", "도", "과", "와", "으로", "로", "랑", "이랑", "하고")
_TOKEN_STRIP_RE = re.compile(r"[^\w]")


def _color_of(diary: Diary) -> str:
    return diary.color or UNKNOWN_COLOR


# ══════════════════════════════════════════════════════════════════════
#  MOOD DISTRIBUTION
# ══════════════════════════════════════════════════════════════════════

def mood_distribution(diaries: Sequence[Diary]) -> list[MoodDistribution]:
    """
    Diary count per mood colour, most frequent first.

    Percentages are rounded half-up per colour, independently, so they
    may sum to slightly more or less than 100.
    """
    if not diaries:
        return []

    counts: dict[str, int] = {}
    for diary in diaries:
        color = _color_of(diary)
        counts[color] = counts.get(color, 0) + 1

    total = len(diaries)
    distribution = [
        MoodDistribution(color=color, count=count, percentage=math.floor(count / total * 100 + 0.5), description=MOOD_COLOR_TRAITS.get(color, {}).get("description", UNKNOWN_MOOD_DESCRIPTION))
        for color, count in counts.items()
    ]
    distribution.sort(key=lambda d: d.count, reverse=True)
    return distribution


# ══════════════════════════════════════════════════════════════════════
#  RECURRING THEMES & EMOTION TRIGGERS
# ══════════════════════════════════════════════════════════════════════

def recurring_themes(diaries: Sequence[Diary], min_frequency: int = 2) -> list[RecurringTheme]:
    """
    Keywords occurring in at least *min_frequency* distinct diaries.

    Sorted by frequency descending, then lexicographically.  Each theme
    carries up to three excerpts around its first occurrence.
    """
    if not diaries:
        return []

    word_diaries: dict[str, list[int]] = {}
    word_examples: dict[str, list[str]] = {}

    for diary in diaries:
        for word in dict.fromkeys(extract_keywords(diary.content)):
            ids = word_diaries.setdefault(word, [])
            if diary.diary_id not in ids:
                ids.append(diary.diary_id)
            examples = word_examples.setdefault(word, [])
            if len(examples) < MAX_THEME_EXAMPLES:
                excerpt = extract_excerpt(diary.content, word)
                if excerpt:
                    examples.append(excerpt)

    themes = [
        RecurringTheme(theme=word, frequency=len(ids), diary_ids=ids, examples=word_examples[word])
        for word, ids in word_diaries.items()
        if len(ids) >= min_frequency
    ]
    themes.sort(key=lambda t: (-t.frequency, t.theme))
    return themes


def emotion_triggers(diaries: Sequence[Diary]) -> list[EmotionTrigger]:
    """
    Top themes per mood colour, largest colour group first.

    Each group is computed from that colour's diaries alone, so its
    ids and excerpts can never come from a diary of another colour.
    """
    if not diaries:
        return []

    by_color: dict[str, list[Diary]] = {}
    for diary in diaries:
        by_color.setdefault(_color_of(diary), []).append(diary)

    triggers: list[EmotionTrigger] = []
    for color, group in by_color.items():
        themes = recurring_themes(group, min_frequency=1)[:MAX_TRIGGERS_PER_COLOR]
        examples = [
            DiaryExample(diary_id=d.diary_id, title=d.title, date=d.date, excerpt=truncate(d.content, TRIGGER_EXCERPT_CHARS))
            for d in group[:MAX_TRIGGER_EXAMPLES]
        ]
        triggers.append(EmotionTrigger(mood_color=color, triggers=[t.theme for t in themes], diary_ids=[d.diary_id for d in group], examples=examples))

    triggers.sort(key=lambda t: len(t.diary_ids), reverse=True)
    return triggers


def analyze_emotional_patterns(diaries: Sequence[Diary]) -> EmotionalPatternAnalysis:
    if not diaries:
        return EmotionalPatternAnalysis(mood_distribution=[], recurring_themes=[], emotion_triggers=[], diary_count=0, date_range=None)

    dates = [d.date for d in diaries]
    return EmotionalPatternAnalysis(mood_distribution=mood_distribution(diaries), recurring_themes=recurring_themes(diaries), emotion_triggers=emotion_triggers(diaries), diary_count=len(diaries), date_range=(min(dates), max(dates)))


# ══════════════════════════════════════════════════════════════════════
#  ENTITIES
# ══════════════════════════════════════════════════════════════════════

@dataclass
class _EntityAccumulator:
    type: EntityType
    diary_ids: list[int] = field(default_factory=list)
    mood_colors: list[str] = field(default_factory=list)


def _content_tokens(content: str) -> set[str]:
    return {_TOKEN_STRIP_RE.sub("", word) for word in content.split()}


def _mentions(keyword: str, content: str, tokens: set[str]) -> bool:
    if len(keyword) > 1:
        return keyword in content
    return keyword in tokens or any(keyword + particle in tokens for particle in _PARTICLES)


def extract_entities(diaries: Sequence[Diary]) -> list[ExtractedEntity]:
    """
    Activities, people and places mentioned in the diaries.

    ``frequency`` is the number of distinct diaries mentioning the
    entity; ``mood_colors`` collects the colours of those diaries.
    Sorted by frequency descending (first-seen order among ties).
    """
    entities: dict[str, _EntityAccumulator] = {}

    for diary in diaries:
        content = diary.content.lower()
        tokens = _content_tokens(content)
        for entity_type, vocabulary in _VOCABULARIES:
            for keyword in vocabulary:
                if not _mentions(keyword, content, tokens):
                    continue
                entry = entities.setdefault(keyword, _EntityAccumulator(type=entity_type))
                if diary.diary_id not in entry.diary_ids:
                    entry.diary_ids.append(diary.diary_id)
                color = _color_of(diary)
                if color not in entry.mood_colors:
                    entry.mood_colors.append(color)

    result = [
        ExtractedEntity(type=entry.type, value=value, frequency=len(entry.diary_ids), diary_ids=entry.diary_ids, mood_colors=entry.mood_colors)
        for value, entry in entities.items()
    ]
    result.sort(key=lambda e: e.frequency, reverse=True)
    return result


def dominant_valence(mood_colors: Sequence[str]) -> MoodValence:
    """``positive`` unless negative colours strictly outnumber positive ones."""
    positive = sum(1 for c in mood_colors if c in POSITIVE_COLORS)
    negative = sum(1 for c in mood_colors if c in NEGATIVE_COLORS)
    return "positive" if positive >= negative else "negative"


# ══════════════════════════════════════════════════════════════════════
#  PERSONALIZED SUGGESTIONS
# ══════════════════════════════════════════════════════════════════════

def personalized_suggestions(diaries: Sequence[Diary], current_mood: str | None = None, max_suggestions: int = 3) -> list[PersonalizedSuggestion]:
    """
    Up to *max_suggestions* suggestions, one per distinct entity.

    Parameters
    ----------
    diaries
        Source diaries; every entity comes from their content.
    current_mood
        Mood colour of the user right now.  Under a negative colour,
        entities linked to more positive-mood diaries are preferred and
        the "negative" template family is used.
    max_suggestions
        Upper bound on the number of suggestions.
    """
    entities = extract_entities(diaries)
    if not entities:
        return []

    is_negative = current_mood in NEGATIVE_COLORS
    if is_negative:
        ranked = sorted(entities, key=lambda e: (-sum(1 for c in e.mood_colors if c in POSITIVE_COLORS), -e.frequency))
    else:
        ranked = entities

    suggestions: list[PersonalizedSuggestion] = []
    used: set[str] = set()
    for entity in ranked:
        if len(suggestions) >= max_suggestions:
            break
        if entity.value in used:
            continue

        valence: MoodValence = "negative" if is_negative else dominant_valence(entity.mood_colors)
        templates = SUGGESTION_TEMPLATES[entity.type][valence]
        text = templates[len(suggestions) % len(templates)].replace("{entity}", entity.value)
        suggestions.append(PersonalizedSuggestion(suggestion=text, based_on=[entity], diary_ids=entity.diary_ids, mood_context=valence))
        used.add(entity.value)

    return suggestions


def is_personalized_suggestion(suggestion: PersonalizedSuggestion, diaries: Sequence[Diary]) -> bool:
    """True when the text names one of its entities and that entity occurs in some diary."""
    for entity in suggestion.based_on:
        value = entity.value.lower()
        if value not in suggestion.suggestion.lower():
            continue
        if any(value in diary.content.lower() for diary in diaries):
            return True
    return False


def suggestions_for_negative_patterns(diaries: Sequence[Diary]) -> list[PersonalizedSuggestion]:
    """Suggestions drawn from what made the user feel good, if any such diary exists."""
    positive = [d for d in diaries if d.color in POSITIVE_COLORS]
    return personalized_suggestions(positive or diaries, current_mood="빨간색", max_suggestions=3)
