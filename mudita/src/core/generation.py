"""
Mudita - Generation Engine
===========================
Streams the persona's answer from the chat model, with tool calling and
a bounded retry envelope.

Flow (one ``stream`` call)
--------------------------
1. System prompt (persona + context) → last 10 history turns → user turn.
2. First streaming request, tools bound when enabled.  Text fragments
   are yielded as they arrive; tool-call fragments are merged chunk by
   chunk until each call is complete.
3. If tools were requested: run each one **once, sequentially**, under
   the request's ``ToolContext``, append the assistant tool-call turn and
   one tool turn per result, then stream a second request (no tools) for
   the natural-language answer.  Raw tool output never reaches the user.

Retry policy
------------
Each streaming request is retried up to ``LLM_MAX_RETRIES`` times with a
fixed ``LLM_RETRY_DELAY`` on rate limits, 5xx and connection failures,
but only while that request has produced nothing yet: a fragment already
delivered is never delivered twice.  Anything else, or exhaustion,
raises a classified ``GenerationError`` subclass.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from mudita.config.prompt_templates import DIARY_GUIDELINES_EXISTING, DIARY_GUIDELINES_NEW, NO_CONTEXT_PLACEHOLDER, SYSTEM_PROMPT_TEMPLATE
from mudita.config.settings import settings
from mudita.src.core.errors import ConfigurationError, classify_generation_error, is_retryable
from mudita.src.core.models import ChatMessage
from mudita.src.core.tools import TOOL_SCHEMAS, DiaryToolExecutor, ToolContext
from mudita.src.utils.logger import get_logger
from mudita.src.utils.text_utils import name_with_suffix

logger = get_logger(__name__)

HISTORY_TURNS = 10


def build_system_prompt(context: str, user_name: str | None = None, has_diaries: bool = True) -> str:
    """
    Persona prompt for *user_name*.

    Owners with diaries get the "rarely mention writing" guidelines;
    new owners get gentle encouragement to start a diary.
    """
    display_name = user_name or "친구"
    vocative = name_with_suffix(display_name)
    guidelines = DIARY_GUIDELINES_EXISTING if has_diaries else DIARY_GUIDELINES_NEW.format(name_with_suffix=vocative)
    diary_status = "있음 (RAG 기반 대화 가능)" if has_diaries else "없음 (일기 쓰기 유도 필요)"
    return SYSTEM_PROMPT_TEMPLATE.format(display_name=display_name, name_with_suffix=vocative, diary_guidelines=guidelines, diary_status=diary_status, context=context or NO_CONTEXT_PLACEHOLDER)


def chunk_text(content: Any) -> str:
    """Text carried by a message chunk (plain string or a list of content parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return ""


class GenerationEngine:
    """
    Chat-model wrapper producing the streamed answer.

    Parameters
    ----------
    chat_model
        A LangChain chat model supporting ``astream`` and ``bind_tools``.
        Built from settings when omitted.
    tool_executor
        Runs tool calls.  Without one, tools are never offered to the model.
    max_retries, retry_delay
        Overrides for ``LLM_MAX_RETRIES`` / ``LLM_RETRY_DELAY``.  ``max_retries`` counts attempts;
        anything below 1 still makes one attempt.

    Raises
    ------
    ConfigurationError
        If no model is injected and ``GOOGLE_API_KEY`` is not configured.
    """

    __slots__ = ("_llm", "_tools", "_max_retries", "_retry_delay")

    def __init__(self, chat_model: Any | None = None, tool_executor: DiaryToolExecutor | None = None, max_retries: int | None = None, retry_delay: float | None = None) -> None:
        self._llm = chat_model if chat_model is not None else self._init_llm()
        self._tools = tool_executor
        self._max_retries: int = settings.LLM_MAX_RETRIES if max_retries is None else max(1, max_retries)
        self._retry_delay: float = settings.LLM_RETRY_DELAY if retry_delay is None else retry_delay


    @staticmethod
    def _init_llm() -> Any:
        """Initialise the Gemini chat model via LangChain.  Retries are handled here, not by the SDK."""
        if settings.GOOGLE_API_KEY is None:
            raise ConfigurationError("GOOGLE_API_KEY is not configured; generation is unavailable.")

        from langchain_google_genai import ChatGoogleGenerativeAI

        llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=settings.LLM_TEMPERATURE, max_tokens=settings.LLM_MAX_TOKENS, timeout=settings.LLM_TIMEOUT, max_retries=0, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
        logger.info("LLM initialised: %s (temperature=%.1f)", settings.LLM_MODEL, settings.LLM_TEMPERATURE)
        return llm


    @property
    def chat_model(self) -> Any:
        return self._llm

    # ══════════════════════════════════════════════════════════════════
    #  PUBLIC API
    # ══════════════════════════════════════════════════════════════════

    async def stream(self, context: str, user_message: str, *, user_name: str | None = None, has_diaries: bool = True, history: Sequence[ChatMessage] = (), tools_enabled: bool = False, tool_context: ToolContext | None = None) -> AsyncIterator[str]:
        """
        Yield the answer as ordered text fragments.

        Parameters
        ----------
        context
            Assembled context block (diaries, moods, history summary).
        user_message
            The current user turn.
        user_name, has_diaries
            Persona personalisation.
        history
            Prior turns, oldest first; only the last ten are sent.
        tools_enabled
            Offer the diary tools to the model.  Requires a tool executor
            and a *tool_context*.

        Raises
        ------
        GenerationError
            Classified provider failure (``RateLimitExceeded``,
            ``AuthenticationError``, ``ConnectivityError`` or generic).
        """
        from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

        messages: list[Any] = [SystemMessage(content=build_system_prompt(context, user_name, has_diaries))]
        for turn in list(history)[-HISTORY_TURNS:]:
            messages.append(HumanMessage(content=turn.content) if turn.role == "user" else AIMessage(content=turn.content))
        messages.append(HumanMessage(content=user_message))

        use_tools = tools_enabled and self._tools is not None and tool_context is not None
        model = self._llm.bind_tools(TOOL_SCHEMAS) if use_tools else self._llm

        t_start = time.perf_counter()
        fragments = 0
        gathered: Any = None
        async for chunk in self._stream_request(model, messages):
            gathered = chunk if gathered is None else gathered + chunk
            text = chunk_text(chunk.content)
            if text:
                fragments += 1
                yield text

        tool_calls = list(getattr(gathered, "tool_calls", None) or []) if use_tools else []
        if tool_calls:
            for call in tool_calls:
                call["id"] = call.get("id") or f"call_{uuid.uuid4().hex}"
            messages.append(AIMessage(content=chunk_text(gathered.content), tool_calls=tool_calls))

            for call in tool_calls:
                logger.info("[GENERATE] Tool call: %s(%s)", call["name"], call.get("args"))
                result = await self._tools.execute(call["name"], call.get("args"), tool_context)
                messages.append(ToolMessage(content=json.dumps(result, ensure_ascii=False, default=str), tool_call_id=call["id"], name=call["name"]))

            async for chunk in self._stream_request(self._llm, messages):
                text = chunk_text(chunk.content)
                if text:
                    fragments += 1
                    yield text

        logger.info("[GENERATE] Stream complete: %d fragment(s), %d tool call(s) in %.1fms", fragments, len(tool_calls), (time.perf_counter() - t_start) * 1000)


    async def generate(self, context: str, user_message: str, *, on_token: Callable[[str], None] | None = None, user_name: str | None = None, has_diaries: bool = True, history: Sequence[ChatMessage] = (), tools_enabled: bool = False, tool_context: ToolContext | None = None) -> str:
        """Run ``stream`` to completion, passing each fragment to *on_token*.  Returns the full text."""
        parts: list[str] = []
        async for fragment in self.stream(context, user_message, user_name=user_name, has_diaries=has_diaries, history=history, tools_enabled=tools_enabled, tool_context=tool_context):
            parts.append(fragment)
            if on_token is not None:
                on_token(fragment)
        return "".join(parts)

    # ══════════════════════════════════════════════════════════════════
    #  RETRY ENVELOPE
    # ══════════════════════════════════════════════════════════════════

    async def _stream_request(self, model: Any, messages: list[Any]) -> AsyncIterator[Any]:
        """One streaming request, retried only while it has yielded nothing."""
        for attempt in range(1, self._max_retries + 1):
            received = False
            try:
                async for chunk in model.astream(messages):
                    received = True
                    yield chunk
                return
            except Exception as exc:
                if received or not is_retryable(exc) or attempt >= self._max_retries:
                    logger.error("[GENERATE] Request failed (attempt %d/%d, mid-stream=%s): %s", attempt, self._max_retries, received, exc)
                    raise classify_generation_error(exc) from exc

                logger.warning("[GENERATE] Attempt %d/%d failed, retrying in %.1fs: %s", attempt, self._max_retries, self._retry_delay, exc)
                await asyncio.sleep(self._retry_delay)
