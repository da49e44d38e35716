"""
Mudita - Text Utilities
========================
Stateless helpers for Korean diary text: normalisation, keyword
tokenisation, excerpting and name-suffix selection.

These utilities are consumed by the pattern analyzer, the reranker and
the prompt builders and must remain side-effect-free.
"""

from __future__ import annotations

import re
import unicodedata

# ── Non-printable character pattern ────────────────────────────────────
# Control characters (except \n, \r, \t), BOM, zero-width chars, soft hyphens.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_DIGITS_RE = re.compile(r"^\d+$")

_HANGUL_FIRST = 0xAC00
_HANGUL_LAST = 0xD7A3

# ── Korean stop words for theme extraction ─────────────────────────────
KOREAN_STOP_WORDS: frozenset[str] = frozenset({
    "그", "저", "이", "것", "수", "등", "때", "더", "안", "못", "잘", "좀",
    "너무", "정말", "진짜", "아주", "매우", "조금", "많이", "다시", "또",
    "오늘", "어제", "내일", "지금", "항상", "가끔", "자주", "계속",
    "나", "내", "제", "우리", "그녀", "그들",
    "하다", "되다", "있다", "없다", "같다", "보다", "가다", "오다", "주다", "받다",
    "하고", "하면", "해서", "했다", "한다", "할", "하는", "했는데",
    "그리고", "그래서", "하지만", "그런데", "그러나", "또한", "그래도",
    "이런", "저런", "그런", "어떤", "무슨", "왜", "어떻게",
    "아", "어", "음", "응", "네", "예", "아니", "아니요",
})


# ── Public API ─────────────────────────────────────────────────────────

def clean_text(text: str) -> str:
    """
    Normalise free text before embedding or matching.

    NFC-composes Hangul (decomposed jamo from some mobile keyboards would
    otherwise never match composed keywords), strips invisible characters
    and collapses horizontal whitespace while keeping newlines.
    """
    text = unicodedata.normalize("NFC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    return "\n".join(line.strip() for line in text.splitlines()).strip()


def tokenize(text: str) -> list[str]:
    """Lower-cased word tokens with punctuation replaced by spaces."""
    return _NON_WORD_RE.sub(" ", unicodedata.normalize("NFC", text)).lower().split()


def extract_keywords(content: str) -> list[str]:
    """
    Meaningful tokens of *content*, in order of appearance.

    Drops tokens shorter than two characters, stop words and pure numbers.
    """
    return [
        word for word in tokenize(content)
        if len(word) >= 2 and word not in KOREAN_STOP_WORDS and not _DIGITS_RE.match(word)
    ]


def extract_excerpt(content: str, word: str, before: int = 30, after: int = 70) -> str | None:
    """
    Short window of *content* around the first occurrence of *word*.

    Returns ``None`` when *word* does not occur.  Ellipses mark cut edges.
    """
    index = content.lower().find(word.lower())
    if index == -1:
        return None

    start = max(0, index - before)
    end = min(len(content), index + len(word) + after)
    excerpt = content[start:end].strip()
    if start > 0:
        excerpt = "..." + excerpt
    if end < len(content):
        excerpt = excerpt + "..."
    return excerpt


def truncate(text: str, limit: int) -> str:
    """Cut *text* to *limit* characters, appending ``...`` when shortened."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def has_final_consonant(word: str) -> bool:
    """True when the last character is a Hangul syllable with a final consonant (받침)."""
    if not word:
        return False
    code = ord(word[-1])
    if not _HANGUL_FIRST <= code <= _HANGUL_LAST:
        return False
    return (code - _HANGUL_FIRST) % 28 != 0


def name_with_suffix(name: str | None) -> str:
    """Vocative form used by the persona: ``민준아`` / ``지수야``; defaults to ``친구야``."""
    display = name or "친구"
    return f"{display}{'아' if has_final_consonant(display) else '야'}"
