from datetime import datetime

from conftest import make_result
from mudita.src.core.context_builder import DIARY_HEADER, HISTORY_HEADER, MOOD_HEADER, SUMMARY_HEADER, build_context, format_diary, format_mood
from mudita.src.core.models import ChatMessage, MoodRecord


def _mood(i: int, color: str = "파란색") -> MoodRecord:
    return MoodRecord(id=i, label=f"지침{i}", color=color, pleasantness=3, energy=2, created_at=datetime(2025, 6, 14, 3, 0))


def _message(role: str, content: str) -> ChatMessage:
    return ChatMessage(message_id=content, session_id="s", role=role, content=content, created_at=datetime(2025, 6, 15, 3, 0))


def test_mood_line_format():
    assert format_mood(_mood(1)) == '- 6월 14일: "지침1" (저에너지 + 불쾌감, 쾌적함: 3/10, 에너지: 2/10)'


def test_diary_block_format():
    diary = make_result(7, title="카페", content="라떼를 마셨다", color="노란색", date=datetime(2025, 6, 10, 3, 0))

    assert format_diary(diary) == "[일기 #7] 2025년 6월 10일\n제목: 카페\n감정: 노란색 (흥분/기쁨/활력)\n내용: 라떼를 마셨다"


def test_unknown_colour_is_shown_verbatim():
    assert "감정: 보라색\n" in format_diary(make_result(1, color="보라색"))


def test_sections_in_order_separated_by_blank_lines():
    context = build_context(
        [make_result(1), make_result(2)],
        [_message("user", "안녕"), _message("assistant", "반가워")],
        [_mood(i) for i in range(7)],
        summary="  어제는 회사 이야기를 했다.  ",
    )

    positions = [context.index(h) for h in (MOOD_HEADER, DIARY_HEADER, SUMMARY_HEADER, HISTORY_HEADER)]
    assert positions == sorted(positions)
    assert context.count('- 6월 14일: "지침') == 5
    assert f"{SUMMARY_HEADER}\n어제는 회사 이야기를 했다.\n\n{HISTORY_HEADER}" in context
    assert context.endswith(f"{HISTORY_HEADER}\n사용자: 안녕\n무디타: 반가워")


def test_empty_sections_are_omitted():
    assert build_context([], [], None, None) == ""
    assert build_context([], [_message("user", "안녕")], [], "  ") == f"{HISTORY_HEADER}\n사용자: 안녕"


def test_output_is_deterministic():
    args = ([make_result(1)], [_message("user", "hi")], [_mood(1)], "요약")

    assert build_context(*args) == build_context(*args)
