"""
Mudita - Diary Repository
==========================
Read-only access to the diary and mood-meter records owned by the
diary service.  Content arrives here already decrypted; this module
never writes to either collection.

Every query filters by ``user_id``: an owner only ever sees their own
records.
"""

from __future__ import annotations

import motor.motor_asyncio

from mudita.src.core.models import DateRange, DiaryRecord, MoodRecord
from mudita.src.database.mongo import DIARIES_COLLECTION, MOODS_COLLECTION, get_database
from mudita.src.utils.logger import get_logger
from mudita.src.utils.time_utils import to_utc_naive

logger = get_logger(__name__)

_DIARY_FIELDS = {"_id": 0, "diary_id": 1, "user_id": 1, "title": 1, "content": 1, "color": 1, "date": 1}
_MOOD_FIELDS = {"_id": 0, "id": 1, "label": 1, "color": 1, "pleasantness": 1, "energy": 1, "created_at": 1}


class DiaryRepository:
    """Owner-scoped reads over the ``diaries`` and ``mood_meter`` collections."""

    __slots__ = ("_diaries", "_moods")

    def __init__(self, db: motor.motor_asyncio.AsyncIOMotorDatabase | None = None) -> None:
        db = db if db is not None else get_database()
        self._diaries = db[DIARIES_COLLECTION]
        self._moods = db[MOODS_COLLECTION]


    async def count_diaries(self, owner_id: int) -> int:
        return await self._diaries.count_documents({"user_id": owner_id})


    async def list_diaries(self, owner_id: int, date_range: DateRange | None = None, limit: int = 50) -> list[DiaryRecord]:
        """
        Newest-first diaries of *owner_id*.

        Parameters
        ----------
        date_range
            Optional inclusive day window ``[start, endOfDay(end)]``.
        limit
            Maximum number of diaries returned.
        """
        query: dict = {"user_id": owner_id}
        if date_range is not None:
            start, end = date_range.bounds()
            query["date"] = {"$gte": to_utc_naive(start), "$lte": to_utc_naive(end)}

        cursor = self._diaries.find(query, _DIARY_FIELDS).sort("date", -1).limit(limit)
        docs = await cursor.to_list(length=limit)
        logger.debug("[DIARY] Loaded %d diar(y/ies) for user %d.", len(docs), owner_id)
        return [DiaryRecord(**doc) for doc in docs]


    async def list_by_color(self, owner_id: int, color: str, limit: int = 50) -> list[DiaryRecord]:
        cursor = self._diaries.find({"user_id": owner_id, "color": color}, _DIARY_FIELDS).sort("date", -1).limit(limit)
        return [DiaryRecord(**doc) for doc in await cursor.to_list(length=limit)]


    async def recent_moods(self, owner_id: int, limit: int = 5) -> list[MoodRecord]:
        """Latest mood-meter entries of *owner_id*, newest first."""
        cursor = self._moods.find({"user_id": owner_id}, _MOOD_FIELDS).sort("id", -1).limit(limit)
        return [MoodRecord(**doc) for doc in await cursor.to_list(length=limit)]
