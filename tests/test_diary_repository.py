from datetime import datetime

import pytest

from conftest import make_diary
from mudita.src.core.models import DateRange
from mudita.src.database.diary_repository import DiaryRepository
from mudita.src.utils.time_utils import LOCAL_TZ, to_utc_naive


def _local(*args) -> datetime:
    return to_utc_naive(datetime(*args, tzinfo=LOCAL_TZ))


@pytest.fixture
async def repository(mongo_db):
    diaries = [
        make_diary(1, color="노란색", date=_local(2025, 6, 9, 23, 59)),
        make_diary(2, color="노란색", date=_local(2025, 6, 10, 0, 0)),
        make_diary(3, color="파란색", date=_local(2025, 6, 10, 23, 59)),
        make_diary(4, color="노란색", date=_local(2025, 6, 11, 0, 0)),
        make_diary(5, user_id=2, color="노란색", date=_local(2025, 6, 10, 12, 0)),
    ]
    for diary in diaries:
        await mongo_db["diaries"].insert_one(diary.model_dump())
    for mood_id in (1, 2, 3):
        await mongo_db["mood_meter"].insert_one({"id": mood_id, "user_id": 1, "label": f"기분{mood_id}", "color": "초록색", "pleasantness": 5, "energy": 5, "created_at": datetime(2025, 6, mood_id, 3, 0)})
    await mongo_db["mood_meter"].insert_one({"id": 9, "user_id": 2, "label": "남의 기분", "color": "빨간색", "pleasantness": 1, "energy": 9, "created_at": datetime(2025, 6, 9, 3, 0)})
    return DiaryRepository(mongo_db)


async def test_count_is_owner_scoped(repository):
    assert await repository.count_diaries(1) == 4
    assert await repository.count_diaries(2) == 1
    assert await repository.count_diaries(3) == 0


async def test_list_is_newest_first(repository):
    diaries = await repository.list_diaries(1)

    assert [d.diary_id for d in diaries] == [4, 3, 2, 1]


async def test_date_range_covers_whole_local_days(repository):
    day = datetime(2025, 6, 10, tzinfo=LOCAL_TZ)

    diaries = await repository.list_diaries(1, DateRange(start_date=day, end_date=day))

    assert [d.diary_id for d in diaries] == [3, 2]


async def test_list_by_color_is_owner_scoped_and_limited(repository):
    yellow = await repository.list_by_color(1, "노란색")

    assert [d.diary_id for d in yellow] == [4, 2, 1]
    assert [d.diary_id for d in await repository.list_by_color(1, "노란색", limit=2)] == [4, 2]
    assert await repository.list_by_color(1, "빨간색") == []


async def test_recent_moods_newest_first(repository):
    moods = await repository.recent_moods(1, limit=2)

    assert [m.id for m in moods] == [3, 2]
    assert moods[0].label == "기분3"
