import json
from datetime import datetime, timezone

import pytest

from conftest import make_diary
from mudita.src.core.errors import SerializationError
from mudita.src.core.serialization import diary_entries_equal, parse_diary, serialize_diary


def test_round_trip_reproduces_the_entry():
    diary = make_diary(3, user_id=7, title="카페 나들이", content="라떼가 맛있었다 ☕", color="노란색", date=datetime(2025, 6, 15, 3, 0, 0, 123000))

    raw = serialize_diary(diary)
    parsed = parse_diary(raw)

    assert json.loads(raw)["date"] == "2025-06-15T03:00:00.123Z"
    assert "카페 나들이" in raw
    assert diary_entries_equal(diary, parsed)
    assert parsed == diary


def test_aware_dates_are_normalised_to_utc():
    diary = make_diary(1, date=datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc))

    assert json.loads(serialize_diary(diary))["date"] == "2025-06-15T12:00:00.000Z"
    assert parse_diary(serialize_diary(diary)).date == datetime(2025, 6, 15, 12, 0)


def test_equality_detects_any_changed_field():
    diary = make_diary(1)

    assert not diary_entries_equal(diary, diary.model_copy(update={"color": "파란색"}))
    assert not diary_entries_equal(diary, diary.model_copy(update={"date": datetime(2025, 6, 10, 3, 0, 0, 1000)}))


def test_numbers_given_as_strings_are_rejected():
    payload = json.loads(serialize_diary(make_diary(1)))
    payload["diary_id"] = "1"

    with pytest.raises(SerializationError) as exc_info:
        parse_diary(json.dumps(payload))

    assert exc_info.value.details["fields"] == ["diary_id"]


@pytest.mark.parametrize("raw", ["{not json", "[]", '{"diary_id": 1}'])
def test_malformed_input_is_rejected(raw):
    with pytest.raises(SerializationError):
        parse_diary(raw)


def test_invalid_date_is_rejected():
    payload = json.loads(serialize_diary(make_diary(1)))
    payload["date"] = "15/06/2025"

    with pytest.raises(SerializationError) as exc_info:
        parse_diary(json.dumps(payload))

    assert "date" in exc_info.value.details["fields"]
