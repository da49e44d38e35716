from types import SimpleNamespace

import httpx
import pytest

from conftest import DIM, StatusError
from mudita.src.core.errors import EmbeddingProviderError, EmptyInputError, InvalidEmbeddingError
from mudita.src.database.embedding_client import EmbeddingClient


class FakeModels:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def embed_content(self, model, contents, config):
        self.requests.append({"model": model, "contents": contents, "dimension": config.output_dimensionality})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return SimpleNamespace(embeddings=[SimpleNamespace(values=outcome)])


def _client(*outcomes):
    models = FakeModels(outcomes)
    return EmbeddingClient(client=SimpleNamespace(aio=SimpleNamespace(models=models)), model="test-embed", dimension=DIM, max_retries=3, retry_delay=0), models


async def test_embeds_with_requested_dimension():
    client, models = _client([0.1, 0.2, 0.3, 0.4])

    vector = await client.embed("오늘 친구와 카페에 갔다")

    assert vector == pytest.approx([0.1, 0.2, 0.3, 0.4])
    assert models.requests == [{"model": "test-embed", "contents": "오늘 친구와 카페에 갔다", "dimension": DIM}]


async def test_blank_text_is_rejected_without_a_request():
    client, models = _client()

    with pytest.raises(EmptyInputError):
        await client.embed("   ")
    assert models.requests == []


async def test_wrong_dimension_is_a_hard_error():
    client, _ = _client([0.1, 0.2])

    with pytest.raises(InvalidEmbeddingError):
        await client.embed("text")


async def test_retries_rate_limits_then_succeeds():
    client, models = _client(StatusError("quota", 429), StatusError("unavailable", 503), [1.0, 0.0, 0.0, 0.0])

    assert await client.embed("text") == [1.0, 0.0, 0.0, 0.0]
    assert len(models.requests) == 3


async def test_connection_failures_are_retried():
    client, models = _client(httpx.ConnectError("refused"), [0.0, 1.0, 0.0, 0.0])

    assert await client.embed("text") == [0.0, 1.0, 0.0, 0.0]
    assert len(models.requests) == 2


async def test_client_errors_fail_immediately():
    bad_request = StatusError("invalid argument", 400)
    client, models = _client(bad_request, [1.0, 0.0, 0.0, 0.0])

    with pytest.raises(EmbeddingProviderError) as exc_info:
        await client.embed("text")

    assert len(models.requests) == 1
    assert exc_info.value.__cause__ is bad_request


async def test_exhaustion_wraps_the_last_error():
    last = StatusError("server error", 500)
    client, models = _client(StatusError("server error", 500), StatusError("server error", 500), last)

    with pytest.raises(EmbeddingProviderError) as exc_info:
        await client.embed("text")

    assert len(models.requests) == 3
    assert exc_info.value.__cause__ is last


async def test_zero_retries_still_makes_one_attempt():
    models = FakeModels([StatusError("unavailable", 503), [1.0, 0.0, 0.0, 0.0]])
    client = EmbeddingClient(client=SimpleNamespace(aio=SimpleNamespace(models=models)), model="test-embed", dimension=DIM, max_retries=0, retry_delay=0)

    with pytest.raises(EmbeddingProviderError):
        await client.embed("text")
    assert len(models.requests) == 1
