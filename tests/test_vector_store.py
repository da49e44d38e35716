from datetime import datetime

import pytest

from conftest import DIM, FakeEmbedder, make_diary
from mudita.src.core.errors import InvalidArgumentError
from mudita.src.core.models import DateRange
from mudita.src.database.vector_store import DiaryVectorStore
from mudita.src.utils.time_utils import LOCAL_TZ

VECTORS = {
    "exact": [1.0, 0.0, 0.0, 0.0],
    "close": [0.8, 0.6, 0.0, 0.0],
    "far": [0.0, 1.0, 0.0, 0.0],
}
QUERY = [1.0, 0.0, 0.0, 0.0]


@pytest.fixture
async def store(lancedb_path):
    store = DiaryVectorStore(FakeEmbedder(VECTORS), db_path=lancedb_path, dimension=DIM)
    await store.upsert_embedding(make_diary(1, user_id=1, title="카페", date=datetime(2025, 6, 10, 3, 0)), text="exact")
    await store.upsert_embedding(make_diary(2, user_id=1, title="산책", date=datetime(2025, 6, 1, 3, 0)), text="close")
    await store.upsert_embedding(make_diary(3, user_id=1, title="회의", date=datetime(2025, 5, 20, 3, 0)), text="far")
    await store.upsert_embedding(make_diary(4, user_id=2, title="남의 일기", date=datetime(2025, 6, 10, 3, 0)), text="exact")
    return store


async def test_results_are_scoped_to_the_owner(store):
    results = store.search_similar(1, QUERY, 10)

    assert {r.diary_id for r in results} == {1, 2, 3}


async def test_results_are_ordered_by_descending_similarity(store):
    results = store.search_similar(1, QUERY, 2)

    assert [r.diary_id for r in results] == [1, 2]
    assert results[0].score == pytest.approx(1.0, abs=1e-5)
    assert results[1].score == pytest.approx(0.8, abs=1e-5)
    assert all(0.0 <= r.score <= 1.0 for r in results)


async def test_date_range_is_inclusive_of_the_end_day(store):
    window = DateRange(start_date=datetime(2025, 6, 1, tzinfo=LOCAL_TZ), end_date=datetime(2025, 6, 10, tzinfo=LOCAL_TZ))

    results = store.search_similar(1, QUERY, 10, window)

    assert [r.diary_id for r in results] == [1, 2]


async def test_upsert_replaces_the_existing_row(store):
    await store.upsert_embedding(make_diary(3, user_id=1, title="회의 다시", content="수정된 내용"), text="exact")

    results = store.search_similar(1, QUERY, 10)

    assert store.count() == 4
    replaced = next(r for r in results if r.diary_id == 3)
    assert replaced.title == "회의 다시"
    assert replaced.score == pytest.approx(1.0, abs=1e-5)


async def test_delete_embedding_is_idempotent(store):
    store.delete_embedding(2)
    store.delete_embedding(2)

    assert not store.has_embedding(2)
    assert store.has_embedding(1)


async def test_delete_owner_embeddings_cascades(store):
    assert store.delete_owner_embeddings(1) == 3

    assert store.search_similar(1, QUERY, 10) == []
    assert [r.diary_id for r in store.search_similar(2, QUERY, 10)] == [4]


async def test_invalid_arguments_are_rejected(store):
    with pytest.raises(InvalidArgumentError):
        store.search_similar(1, QUERY, 0)
    with pytest.raises(InvalidArgumentError):
        store.search_similar(1, [1.0, 0.0], 3)
