import httpx
import pytest
from langchain_core.messages import AIMessageChunk, HumanMessage, SystemMessage, ToolMessage

from conftest import FakeChatModel, StatusError, text_chunks
from mudita.config.prompt_templates import NO_CONTEXT_PLACEHOLDER
from mudita.src.core.errors import AuthenticationError, ConnectivityError, GenerationError, RateLimitExceeded
from mudita.src.core.generation import GenerationEngine, build_system_prompt, chunk_text
from mudita.src.core.models import ChatMessage
from mudita.src.core.tools import ToolContext


class RecordingExecutor:
    def __init__(self) -> None:
        self.calls = []

    async def execute(self, name, args, context):
        self.calls.append((name, args, context))
        return {"success": True, "found": False, "message": "관련된 일기를 찾지 못했어요."}


def _tool_call_chunk(name: str, args: str, call_id: str = "call_1") -> AIMessageChunk:
    return AIMessageChunk(content="", tool_call_chunks=[{"name": name, "args": args, "id": call_id, "index": 0}])


def _engine(scripts, executor=None, **kwargs) -> tuple[GenerationEngine, FakeChatModel]:
    model = FakeChatModel(scripts)
    return GenerationEngine(chat_model=model, tool_executor=executor, retry_delay=0, **kwargs), model


async def _collect(engine: GenerationEngine, **kwargs) -> list[str]:
    return [fragment async for fragment in engine.stream("컨텍스트", "안녕", **kwargs)]


# ── Prompt ─────────────────────────────────────────────────────────────

def test_system_prompt_uses_vocative_and_context():
    prompt = build_system_prompt("[일기 #1] 내용", "민준")

    assert "민준아" in prompt
    assert "[일기 #1] 내용" in prompt


def test_system_prompt_defaults():
    prompt = build_system_prompt("", None, has_diaries=False)

    assert "친구야" in prompt
    assert NO_CONTEXT_PLACEHOLDER in prompt


def test_chunk_text_accepts_content_parts():
    assert chunk_text([{"type": "text", "text": "안"}, "녕", {"type": "image"}]) == "안녕"
    assert chunk_text(None) == ""


# ── Streaming ──────────────────────────────────────────────────────────

async def test_fragments_are_yielded_in_order():
    engine, model = _engine([text_chunks("오늘", " 하루", " 어땠어?")])

    assert await _collect(engine) == ["오늘", " 하루", " 어땠어?"]
    assert model.bound_tools is None


async def test_history_is_capped_to_the_last_ten_turns():
    history = [ChatMessage(message_id=str(i), session_id="s", role="user" if i % 2 == 0 else "assistant", content=f"h{i}", created_at="2025-06-15T00:00:00") for i in range(14)]
    engine, model = _engine([text_chunks("응")])

    await _collect(engine, history=history)

    sent = model.calls[0]
    assert isinstance(sent[0], SystemMessage)
    assert [m.content for m in sent[1:-1]] == [f"h{i}" for i in range(4, 14)]
    assert isinstance(sent[-1], HumanMessage) and sent[-1].content == "안녕"


async def test_generate_reports_each_fragment():
    engine, _ = _engine([text_chunks("a", "b")])
    seen = []

    assert await engine.generate("ctx", "hi", on_token=seen.append) == "ab"
    assert seen == ["a", "b"]


# ── Tools ──────────────────────────────────────────────────────────────

async def test_tool_round_trip():
    executor = RecordingExecutor()
    engine, model = _engine([[_tool_call_chunk("search_diaries", '{"query": "카페"}')], text_chunks("카페 일기는", " 없네!")], executor)
    context = ToolContext(owner_id=7, user_name="지수")

    fragments = await _collect(engine, tools_enabled=True, tool_context=context)

    assert fragments == ["카페 일기는", " 없네!"]
    assert executor.calls == [("search_diaries", {"query": "카페"}, context)]
    assert model.bound_tools is not None
    follow_up = model.calls[1]
    assert follow_up[-2].tool_calls[0]["id"] == "call_1"
    assert isinstance(follow_up[-1], ToolMessage)
    assert follow_up[-1].tool_call_id == "call_1"
    assert "관련된 일기를 찾지 못했어요." in follow_up[-1].content


async def test_tools_are_not_offered_without_a_context():
    executor = RecordingExecutor()
    engine, model = _engine([text_chunks("응")], executor)

    assert await _collect(engine, tools_enabled=True) == ["응"]
    assert model.bound_tools is None
    assert executor.calls == []


# ── Retry envelope ─────────────────────────────────────────────────────

async def test_retry_before_the_first_fragment():
    engine, model = _engine([[StatusError("Service Unavailable", 503)], text_chunks("다시", " 왔어")])

    assert await _collect(engine) == ["다시", " 왔어"]
    assert len(model.calls) == 2


async def test_no_retry_after_a_fragment_was_delivered():
    engine, model = _engine([text_chunks("반쯤") + [StatusError("Service Unavailable", 503)], text_chunks("중복")])
    fragments = []

    with pytest.raises(GenerationError):
        async for fragment in engine.stream("ctx", "hi"):
            fragments.append(fragment)

    assert fragments == ["반쯤"]
    assert len(model.calls) == 1


async def test_authentication_failure_is_not_retried():
    engine, model = _engine([[StatusError("API key not valid", 401)], text_chunks("never")])

    with pytest.raises(AuthenticationError):
        await _collect(engine)
    assert len(model.calls) == 1


async def test_exhausted_rate_limit_is_classified():
    engine, model = _engine([[StatusError("quota", 429)]] * 3, max_retries=3)

    with pytest.raises(RateLimitExceeded):
        await _collect(engine)
    assert len(model.calls) == 3


async def test_exhausted_connection_failures_are_classified():
    engine, _ = _engine([[httpx.ConnectError("connection refused")]] * 2, max_retries=2)

    with pytest.raises(ConnectivityError):
        await _collect(engine)


async def test_zero_retries_still_makes_one_attempt():
    engine, model = _engine([[StatusError("Service Unavailable", 503)], text_chunks("never")], max_retries=0)

    with pytest.raises(GenerationError):
        await _collect(engine)
    assert len(model.calls) == 1
