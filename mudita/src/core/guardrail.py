"""
Mudita - Guardrail
===================
Input screening before any provider call, and output scrubbing after.

The orchestrator only depends on the ``GuardrailService`` protocol;
``PatternGuardrail`` is the bundled regex implementation.

Checks, in order (first decisive one wins):
  1. Prompt injection / jailbreak phrasing          → reject
  2. Spam (repetition, length, symbol noise)        → reject
  3. Off-topic categories (coding, harmful, …)      → reject with a
     category-specific localized suggestion
     Crisis vocabulary is **allowed** so the persona can respond.
  4. PII (phone, resident number, e-mail, card, account)
                                                     → allow, masked
"""

from __future__ import annotations

import re
from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel

from mudita.src.utils.logger import get_logger

logger = get_logger(__name__)

GuardrailCategory = Literal["injection", "offtopic", "spam", "pii", "crisis"]


class GuardrailResult(BaseModel):
    is_allowed: bool
    sanitized_input: str | None = None
    reason: str | None = None
    category: GuardrailCategory | None = None
    confidence: float = 1.0


@runtime_checkable
class GuardrailService(Protocol):
    """Screens raw user text before it reaches the pipeline."""

    def check(self, text: str) -> GuardrailResult: ...


# ── Prompt injection ───────────────────────────────────────────────────
_INJECTION_PATTERNS: list[re.Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in (
    r"ignore\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rules?)",
    r"disregard\s+(all\s+)?(previous|above|prior)",
    r"forget\s+(everything|all|what)\s+(you|i)\s+(said|told|know)",
    r"you\s+are\s+(now|no\s+longer)\s+(a|an|the)",
    r"pretend\s+(to\s+be|you\s+are)",
    r"act\s+as\s+(if|a|an|the)",
    r"roleplay\s+as",
    r"from\s+now\s+on\s+you\s+(are|will)",
    r"what\s+(is|are)\s+your\s+(system\s+)?prompt",
    r"show\s+(me\s+)?your\s+(system\s+)?instructions",
    r"reveal\s+your\s+(system\s+)?prompt",
    r"print\s+your\s+(initial\s+)?instructions",
    r"\bDAN\b",
    r"jailbreak",
    r"bypass\s+(your\s+)?(restrictions?|filters?|rules?)",
    r"override\s+(your\s+)?(safety|restrictions?)",
    r"execute\s+(this\s+)?(code|script|command)",
    r"run\s+(this\s+)?(code|script|command)",
    r"eval\s*\(",
    r"이전\s*(지시|명령|프롬프트).*무시",
    r"시스템\s*프롬프트.*알려",
    r"너는\s*이제부터",
    r"역할을\s*바꿔",
)]

_SUSPICIOUS_TOKENS: list[re.Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in (
    r"\[INST\]", r"\[/INST\]", r"<\|im_start\|>", r"<\|im_end\|>", r"###\s*(system|user|assistant)", r"```system",
)]

# ── Off-topic categories ───────────────────────────────────────────────
_OFF_TOPIC_PATTERNS: list[tuple[re.Pattern[str], str]] = [(re.compile(p, re.IGNORECASE), c) for p, c in (
    (r"코드.*작성|프로그래밍|개발.*방법|버그.*수정", "coding"),
    (r"write\s+(me\s+)?(a\s+)?(code|program|script)", "coding"),
    (r"자살|자해|죽고\s*싶", "crisis"),
    (r"폭탄|무기|마약.*만드는", "harmful"),
    (r"how\s+to\s+(make|build)\s+(a\s+)?(bomb|weapon|drug)", "harmful"),
    (r"주식.*추천|투자.*조언|법률.*상담", "professional_advice"),
    (r"stock\s+tips|investment\s+advice|legal\s+advice", "professional_advice"),
    (r"진단.*해줘|병명.*알려|처방.*해줘", "medical"),
    (r"diagnose\s+(me|my)|prescribe\s+(me|medication)", "medical"),
    (r"성인.*콘텐츠|야한|음란", "inappropriate"),
    (r"explicit|pornograph|nsfw", "inappropriate"),
)]

OFF_TOPIC_SUGGESTIONS: dict[str, str] = {
    "coding": "나는 감정 일기와 마음 이야기를 나누는 친구야. 코딩 관련 질문은 다른 도구를 이용해봐!",
    "professional_advice": "전문적인 조언이 필요한 부분은 해당 분야 전문가와 상담하는 게 좋을 것 같아. 대신 그 상황에서 느끼는 감정에 대해 이야기해볼까?",
    "medical": "건강 관련 고민이 있구나. 정확한 진단은 의사 선생님께 받는 게 좋아. 건강 때문에 걱정되는 마음은 나한테 이야기해줘.",
    "harmful": "그런 내용은 도와줄 수 없어. 다른 이야기를 해볼까?",
    "inappropriate": "그런 내용은 도와줄 수 없어. 다른 이야기를 해볼까?",
}
DEFAULT_OFF_TOPIC_SUGGESTION = "그 주제는 내가 잘 모르는 영역이야. 대신 오늘 하루 어땠는지 이야기해볼래?"

INJECTION_REASON = "요청을 처리할 수 없어요. 다른 방식으로 이야기해볼까요?"
SPAM_REASON = "메시지가 너무 길거나 반복적이에요. 간단하게 다시 말해줄래?"
EMPTY_REASON = "메시지를 입력해주세요."

# ── PII (phone before resident number: masking order matters) ─────────
_PII_PATTERNS: list[tuple[re.Pattern[str], str]] = [(re.compile(p), t) for p, t in (
    (r"01[0-9]-?\d{3,4}-?\d{4}", "phone"),
    (r"\d{6}-?[1-4]\d{6}", "rrn"),
    (r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "email"),
    (r"\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}", "credit_card"),
    (r"\d{3,4}-\d{2,4}-\d{4,6}", "bank_account"),
)]

# ── Spam ───────────────────────────────────────────────────────────────
MAX_INPUT_CHARS = 5000
MIN_UNIQUE_WORD_RATIO = 0.3
MAX_SPECIAL_CHAR_RATIO = 0.5
_SPECIAL_CHAR_RE = re.compile(r"[^a-zA-Z0-9가-힣\s]")

# ── Output scrubbing ───────────────────────────────────────────────────
_OUTPUT_MARKERS: list[re.Pattern[str]] = [
    re.compile(r"\[INST\].*?\[/INST\]", re.DOTALL),
    re.compile(r"<\|im_start\|>.*?<\|im_end\|>", re.DOTALL),
    re.compile(r"###\s*(system|System)[\s\S]*?###"),
    re.compile(r"```system[\s\S]*?```"),
]
_OUTPUT_SQL: list[re.Pattern[str]] = [
    re.compile(r"SELECT\s+.*?\s+FROM", re.IGNORECASE),
    re.compile(r"INSERT\s+INTO", re.IGNORECASE),
    re.compile(r"UPDATE\s+.*?\s+SET", re.IGNORECASE),
]


def detect_injection(text: str) -> bool:
    return any(p.search(text) for p in _INJECTION_PATTERNS) or any(p.search(text) for p in _SUSPICIOUS_TOKENS)


def detect_spam(text: str) -> str | None:
    """Return the spam reason code, or ``None``."""
    words = text.split()
    if len(words) > 3 and len({w.lower() for w in words}) / len(words) < MIN_UNIQUE_WORD_RATIO:
        return "excessive_repetition"
    if len(text) > MAX_INPUT_CHARS:
        return "excessive_length"
    if len(text) > 20 and len(_SPECIAL_CHAR_RE.findall(text)) / len(text) > MAX_SPECIAL_CHAR_RATIO:
        return "excessive_special_chars"
    return None


def off_topic_category(text: str) -> str | None:
    for pattern, category in _OFF_TOPIC_PATTERNS:
        if pattern.search(text):
            return category
    return None


def mask_pii(text: str) -> tuple[str, list[str]]:
    """Replace PII with ``[TYPE_MASKED]`` placeholders.  Returns the masked text and the types found."""
    found: list[str] = []
    for pattern, pii_type in _PII_PATTERNS:
        if pattern.search(text):
            found.append(pii_type)
            text = pattern.sub(f"[{pii_type.upper()}_MASKED]", text)
    return text, found


def sanitize_output(text: str) -> str:
    """Strip leaked prompt markers and SQL fragments from model output."""
    for pattern in _OUTPUT_MARKERS:
        text = pattern.sub("", text)
    for pattern in _OUTPUT_SQL:
        text = pattern.sub("[FILTERED]", text)
    return text.strip()


class PatternGuardrail:
    """Regex-based ``GuardrailService``."""

    __slots__ = ()

    def check(self, text: str) -> GuardrailResult:
        if not text or not text.strip():
            return GuardrailResult(is_allowed=False, reason=EMPTY_REASON, category="spam")

        trimmed = text.strip()

        if detect_injection(trimmed):
            logger.warning("[GUARD] Prompt injection pattern detected.")
            return GuardrailResult(is_allowed=False, reason=INJECTION_REASON, category="injection", confidence=0.9)

        spam = detect_spam(trimmed)
        if spam is not None:
            logger.warning("[GUARD] Spam input rejected (%s).", spam)
            return GuardrailResult(is_allowed=False, reason=SPAM_REASON, category="spam", confidence=0.8)

        category = off_topic_category(trimmed)
        if category == "crisis":
            logger.warning("[GUARD] Crisis vocabulary detected; allowing through.")
            return GuardrailResult(is_allowed=True, sanitized_input=trimmed, category="crisis", confidence=0.9)
        if category is not None:
            logger.info("[GUARD] Off-topic input rejected (%s).", category)
            return GuardrailResult(is_allowed=False, reason=OFF_TOPIC_SUGGESTIONS.get(category, DEFAULT_OFF_TOPIC_SUGGESTION), category="offtopic", confidence=0.7)

        masked, pii_types = mask_pii(trimmed)
        if pii_types:
            logger.info("[GUARD] PII masked: %s", pii_types)
            return GuardrailResult(is_allowed=True, sanitized_input=masked, category="pii", confidence=0.8)

        return GuardrailResult(is_allowed=True, sanitized_input=trimmed)
