"""
Mudita - Suggested Follow-up Actions (CTA)
===========================================
Decides whether an answer should carry a call-to-action button.

Two sources, in order:
  1. A trailing ``[CTA:<type>]`` marker written by the persona model;
     the marker is stripped from the text and honoured.
  2. Otherwise a small structured-output model call judges the exchange.

Any failure of the decision call yields no action.
"""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, Field

from mudita.config.prompt_templates import CTA_ACTIONS, CTA_CONVERSATION_TEMPLATE, CTA_FREQUENCY_EXISTING, CTA_FREQUENCY_NEW, CTA_SYSTEM_PROMPT_TEMPLATE
from mudita.config.settings import settings
from mudita.src.core.models import ResponseAction
from mudita.src.utils.logger import get_logger

logger = get_logger(__name__)

CTA_MARKER_RE = re.compile(r"\[CTA:(write_diary|view_dashboard|view_diary)\]\s*$")


class CTADecision(BaseModel):
    should_show_cta: bool = Field(description="CTA 버튼을 보여줄지 여부")
    cta_type: Literal["write_diary", "view_dashboard", "view_diary"] | None = Field(default=None, description="CTA 타입 (should_show_cta가 false면 null)")
    reason: str = Field(default="", description="판단 이유")


def action_for(cta_type: str) -> ResponseAction:
    return ResponseAction(**CTA_ACTIONS[cta_type])


def parse_cta_marker(response: str) -> tuple[str, ResponseAction | None]:
    """Strip a trailing CTA marker.  Returns ``(cleaned_text, action_or_None)``."""
    match = CTA_MARKER_RE.search(response)
    if match is None:
        return response, None
    return CTA_MARKER_RE.sub("", response).strip(), action_for(match.group(1))


class CTADecider:
    """
    Structured-output judge for the CTA button.

    Parameters
    ----------
    llm
        LangChain chat model supporting ``with_structured_output``.
        Built lazily (temperature 0.3) when omitted.
    """

    __slots__ = ("_llm",)

    def __init__(self, llm: Any | None = None) -> None:
        self._llm = llm


    async def decide(self, user_message: str, assistant_response: str, has_diaries: bool, conversation_length: int) -> ResponseAction | None:
        try:
            from langchain_core.messages import HumanMessage, SystemMessage

            system = CTA_SYSTEM_PROMPT_TEMPLATE.format(frequency_guide=CTA_FREQUENCY_EXISTING if has_diaries else CTA_FREQUENCY_NEW, conversation_length=conversation_length)
            human = CTA_CONVERSATION_TEMPLATE.format(user_message=user_message, assistant_response=assistant_response)
            decision = await self._get_llm().with_structured_output(CTADecision).ainvoke([SystemMessage(content=system), HumanMessage(content=human)])
        except Exception as exc:
            logger.warning("[CTA] Decision call failed, no action: %s", exc)
            return None

        if isinstance(decision, CTADecision) and decision.should_show_cta and decision.cta_type:
            logger.info("[CTA] Decision: %s (%s)", decision.cta_type, decision.reason)
            return action_for(decision.cta_type)
        return None


    def _get_llm(self) -> Any:
        if self._llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI

            from mudita.src.core.errors import ConfigurationError

            if settings.GOOGLE_API_KEY is None:
                raise ConfigurationError("GOOGLE_API_KEY is not configured; CTA decisions are unavailable.")
            self._llm = ChatGoogleGenerativeAI(model=settings.LLM_MODEL, temperature=0.3, max_tokens=200, max_retries=0, google_api_key=settings.GOOGLE_API_KEY.get_secret_value())
        return self._llm
