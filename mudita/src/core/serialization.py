"""
Mudita - Diary Serialization
=============================
JSON wire format for diary entries exchanged with the diary service::

    {"diary_id": 1, "user_id": 7, "title": "...", "content": "...",
     "color": "초록색", "date": "2025-06-15T03:00:00.000Z"}

Dates are UTC ISO-8601 with millisecond precision, so a round trip
reproduces the entry field for field.
"""

from __future__ import annotations

import json

import pydantic

from mudita.src.core.errors import SerializationError
from mudita.src.core.models import DiaryRecord
from mudita.src.utils.time_utils import to_epoch_ms, to_utc_naive


def serialize_diary(diary: DiaryRecord) -> str:
    payload = {
        "diary_id": diary.diary_id,
        "user_id": diary.user_id,
        "title": diary.title,
        "content": diary.content,
        "color": diary.color,
        "date": to_utc_naive(diary.date).isoformat(timespec="milliseconds") + "Z",
    }
    return json.dumps(payload, ensure_ascii=False)


def parse_diary(raw: str | bytes) -> DiaryRecord:
    """
    Parse and strictly validate a serialized diary.

    Raises
    ------
    SerializationError
        On malformed JSON, a missing field, or a field of the wrong type
        (numbers given as strings are rejected).
    """
    try:
        diary = DiaryRecord.model_validate_json(raw, strict=True)
    except pydantic.ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors()})
        raise SerializationError(f"Invalid serialized diary: {', '.join(fields)}", {"fields": fields}) from exc
    return diary.model_copy(update={"date": to_utc_naive(diary.date)})


def diary_entries_equal(a: DiaryRecord, b: DiaryRecord) -> bool:
    """Field-by-field equality with millisecond-exact dates."""
    return (
        a.diary_id == b.diary_id
        and a.user_id == b.user_id
        and a.title == b.title
        and a.content == b.content
        and a.color == b.color
        and to_epoch_ms(a.date) == to_epoch_ms(b.date)
    )
