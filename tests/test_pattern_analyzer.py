from datetime import datetime

import pytest

from conftest import make_diary
from mudita.src.core.pattern_analyzer import analyze_emotional_patterns, dominant_valence, emotion_triggers, extract_entities, is_personalized_suggestion, mood_distribution, personalized_suggestions, recurring_themes, suggestions_for_negative_patterns


@pytest.fixture
def diaries():
    return [
        make_diary(1, content="친구와 카페에서 커피를 마셨다. 정말 행복했다", color="노란색", date=datetime(2025, 6, 1)),
        make_diary(2, content="친구랑 공원 산책을 했다", color="노란색", date=datetime(2025, 6, 3)),
        make_diary(3, content="회사에서 회의가 길어서 지쳤다", color="파란색", date=datetime(2025, 6, 5)),
    ]


# ── Mood distribution ──────────────────────────────────────────────────

def test_distribution_counts_and_orders_by_frequency(diaries):
    distribution = mood_distribution(diaries + [make_diary(4, color="초록색")])

    assert [(d.color, d.count, d.percentage) for d in distribution] == [("노란색", 2, 50), ("파란색", 1, 25), ("초록색", 1, 25)]
    assert distribution[0].description == "흥분/기쁨/활력"


def test_percentages_round_independently():
    distribution = mood_distribution([make_diary(1, color="노란색"), make_diary(2, color="파란색"), make_diary(3, color="초록색")])

    assert [d.percentage for d in distribution] == [33, 33, 33]
    assert [d.percentage for d in mood_distribution([make_diary(1, color="노란색"), make_diary(2, color="노란색"), make_diary(3, color="초록색")])] == [67, 33]


def test_empty_input_yields_empty_results():
    assert mood_distribution([]) == []
    assert recurring_themes([]) == []
    assert emotion_triggers([]) == []
    assert analyze_emotional_patterns([]).diary_count == 0


# ── Themes & triggers ──────────────────────────────────────────────────

def test_themes_count_distinct_diaries_with_lexicographic_ties():
    themes = recurring_themes([
        make_diary(1, content="회사 회사 회사 일이 많았다"),
        make_diary(2, content="회사 동료 점심"),
        make_diary(3, content="동료 생일 파티"),
    ])

    assert [(t.theme, t.frequency, t.diary_ids) for t in themes] == [("동료", 2, [2, 3]), ("회사", 2, [1, 2])]
    assert themes[1].examples[0].startswith("회사")


def test_trigger_groups_only_reference_their_own_colour(diaries):
    triggers = emotion_triggers(diaries)

    assert [t.mood_color for t in triggers] == ["노란색", "파란색"]
    assert triggers[0].diary_ids == [1, 2]
    assert triggers[1].diary_ids == [3]
    assert all(example.diary_id in trigger.diary_ids for trigger in triggers for example in trigger.examples)
    assert len(triggers[0].triggers) <= 5


def test_full_analysis(diaries):
    analysis = analyze_emotional_patterns(diaries)

    assert analysis.diary_count == 3
    assert analysis.date_range == (datetime(2025, 6, 1), datetime(2025, 6, 5))


# ── Entities ───────────────────────────────────────────────────────────

def test_entities_by_type_and_distinct_diary_frequency(diaries):
    entities = {e.value: e for e in extract_entities(diaries)}

    assert entities["친구"].type == "person"
    assert entities["친구"].frequency == 2
    assert entities["친구"].diary_ids == [1, 2]
    assert entities["친구"].mood_colors == ["노란색"]
    assert entities["카페"].type == "activity"
    assert entities["공원"].type == "place"
    assert entities["회사"].mood_colors == ["파란색"]
    assert extract_entities(diaries)[0].value == "친구"


def test_single_syllable_keywords_need_a_whole_token():
    values = {e.value for e in extract_entities([make_diary(1, content="집에서 책을 읽었다. 일정이 많다")])}

    assert {"집", "책"} <= values
    assert "일" not in values


def test_dominant_valence():
    assert dominant_valence(["노란색", "파란색"]) == "positive"
    assert dominant_valence(["파란색", "빨간색", "노란색"]) == "negative"


# ── Suggestions ────────────────────────────────────────────────────────

def test_suggestions_name_their_entity(diaries):
    suggestions = personalized_suggestions(diaries)

    assert suggestions[0].suggestion == "친구와(과) 함께한 시간이 즐거웠던 것 같아. 연락해보는 건 어때?"
    assert len(suggestions) == 3
    assert len({s.based_on[0].value for s in suggestions}) == 3
    assert all(is_personalized_suggestion(s, diaries) for s in suggestions)


def test_negative_mood_prefers_entities_from_good_days(diaries):
    suggestions = personalized_suggestions(diaries, current_mood="파란색", max_suggestions=2)

    assert [s.based_on[0].value for s in suggestions] == ["친구", "카페"]
    assert suggestions[0].suggestion == "친구한테 연락해보는 건 어때? 이야기 나누면 기분이 나아질 수도 있어."
    assert all(s.mood_context == "negative" for s in suggestions)


def test_negative_pattern_suggestions_come_from_positive_diaries(diaries):
    suggestions = suggestions_for_negative_patterns(diaries)

    assert suggestions
    assert not {"회사", "회의"} & {s.based_on[0].value for s in suggestions}


def test_no_entities_means_no_suggestions():
    assert personalized_suggestions([make_diary(1, content="그냥 그랬다")]) == []
