"""Shared fixtures: small fakes for the providers, on-disk LanceDB, mongomock-motor."""

from __future__ import annotations

import os

os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("ENV", "dev")

from datetime import datetime  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from langchain_core.messages import AIMessageChunk  # noqa: E402
from mongomock_motor import AsyncMongoMockClient  # noqa: E402

from mudita.src.core.models import DiaryRecord, DiarySearchResult  # noqa: E402

DIM = 4


class FakeEmbedder:
    """Maps known texts to fixed vectors; anything else gets ``default``."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default: list[float] | None = None) -> None:
        self.vectors = dict(vectors or {})
        self.default = default or [0.5, 0.5, 0.5, 0.5]
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))


class FakeChatModel:
    """
    Scripted streaming chat model.

    Each ``astream`` call consumes the next script: a list of chunks, where
    an ``Exception`` item is raised at that point of the stream.
    """

    def __init__(self, scripts: list[list[Any]]) -> None:
        self.scripts = list(scripts)
        self.calls: list[list[Any]] = []
        self.bound_tools: list[dict] | None = None

    def bind_tools(self, tools: list[dict]) -> FakeChatModel:
        self.bound_tools = tools
        return self

    async def astream(self, messages: list[Any]):
        self.calls.append(list(messages))
        script = self.scripts.pop(0)
        for item in script:
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeStructuredModel:
    """``with_structured_output(...).ainvoke(...)`` returning a canned object (or raising)."""

    def __init__(self, result: Any) -> None:
        self.result = result
        self.calls = 0

    def with_structured_output(self, schema: Any) -> FakeStructuredModel:
        return self

    async def ainvoke(self, messages: Any) -> Any:
        self.calls += 1
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class StatusError(Exception):
    """Provider error carrying an HTTP status, like the SDK exceptions."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def text_chunks(*parts: str) -> list[AIMessageChunk]:
    return [AIMessageChunk(content=p) for p in parts]


def make_diary(diary_id: int, user_id: int = 1, title: str = "제목", content: str = "내용", color: str = "초록색", date: datetime | None = None) -> DiaryRecord:
    return DiaryRecord(diary_id=diary_id, user_id=user_id, title=title, content=content, color=color, date=date or datetime(2025, 6, 10, 3, 0))


def make_result(diary_id: int, score: float = 0.5, title: str = "제목", content: str = "내용", color: str = "초록색", date: datetime | None = None) -> DiarySearchResult:
    return DiarySearchResult(diary_id=diary_id, title=title, content=content, color=color, date=date or datetime(2025, 6, 10, 3, 0), score=score)


@pytest.fixture
def lancedb_path(tmp_path) -> str:
    return str(tmp_path / "lancedb")


@pytest.fixture
def mongo_db():
    return AsyncMongoMockClient()["mudita_test"]
