"""
Mudita - Error Taxonomy
========================
Every error raised by the pipeline derives from ``MuditaError`` and
carries a machine-readable ``code`` plus the HTTP status a transport
layer should map it to, so callers can branch without parsing messages.

Families
--------
``ValidationError``
    Bad caller input.  Surfaced immediately, never retried.
``ProviderError``
    Embedding / chat provider failures, split into transient
    (retried) and terminal (never retried).
``GenerationError``
    Classified terminal failure of the chat provider after retries.
``NotFoundError``
    Session or diary absent, or owned by someone else.

The helpers at the bottom classify arbitrary provider exceptions
(Gemini SDK errors, LangChain wrappers, ``httpx`` transport errors).
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterator
from typing import Any

import httpx


class MuditaError(Exception):
    """Base class for all application-level errors."""

    http_status: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# ── Validation ─────────────────────────────────────────────────────────

class ValidationError(MuditaError):
    http_status = 400
    code = "VALIDATION_ERROR"


class InvalidArgumentError(ValidationError):
    code = "INVALID_ARGUMENT"


class EmptyInputError(ValidationError):
    code = "EMPTY_INPUT"


class EmptyMessageError(EmptyInputError):
    """Blank chat message.  ``message`` is the localized prompt shown to the user."""

    code = "EMPTY_MESSAGE"


class SerializationError(ValidationError):
    code = "SERIALIZATION_ERROR"


class ConfigurationError(MuditaError):
    code = "CONFIGURATION_ERROR"


# ── Providers ──────────────────────────────────────────────────────────

class ProviderError(MuditaError):
    http_status = 502
    code = "PROVIDER_ERROR"
    retryable: bool = False


class ProviderTransientError(ProviderError):
    code = "PROVIDER_TRANSIENT"
    retryable = True


class ProviderTerminalError(ProviderError):
    code = "PROVIDER_TERMINAL"


class EmbeddingProviderError(ProviderError):
    code = "EMBEDDING_PROVIDER_ERROR"

    def __init__(self, message: str, attempts: int, cause: BaseException | None = None) -> None:
        details: dict[str, Any] = {"attempts": attempts}
        if cause is not None:
            details["cause"] = type(cause).__name__
        super().__init__(message, details)
        self.attempts = attempts


class InvalidEmbeddingError(ProviderError):
    code = "INVALID_EMBEDDING"

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {received}.", {"expected": expected, "received": received})


class GenerationError(ProviderError):
    code = "GENERATION_ERROR"
    user_message: str = "응답을 생성하는 중 문제가 발생했어요. 잠시 후 다시 시도해주세요."


class RateLimitExceeded(GenerationError):
    http_status = 429
    code = "RATE_LIMIT_EXCEEDED"
    user_message = "지금 요청이 너무 많아요. 잠시 후 다시 시도해주세요."


class AuthenticationError(GenerationError):
    code = "AUTHENTICATION_ERROR"
    user_message = "AI 서비스 인증에 실패했어요. 관리자에게 문의해주세요."


class ConnectivityError(GenerationError):
    http_status = 503
    code = "CONNECTIVITY_ERROR"
    user_message = "AI 서비스에 연결할 수 없어요. 잠시 후 다시 시도해주세요."


# ── Lookup ─────────────────────────────────────────────────────────────

class NotFoundError(MuditaError):
    http_status = 404
    code = "NOT_FOUND"


class SessionNotFoundError(NotFoundError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' was not found.", {"session_id": session_id})


# ══════════════════════════════════════════════════════════════════════
#  PROVIDER ERROR CLASSIFICATION
# ══════════════════════════════════════════════════════════════════════

_RE_RATE_LIMIT = re.compile(r"\b429\b|rate.?limit|resource.?exhausted|quota", re.IGNORECASE)
_RE_AUTH = re.compile(r"\b40[13]\b|api.?key|unauthori[sz]ed|permission.?denied", re.IGNORECASE)
_RE_CONNECTIVITY = re.compile(r"network|timeout|timed out|connection|econnrefused|etimedout|enotfound", re.IGNORECASE)
_RE_SERVER = re.compile(r"\b50\d\b|unavailable|internal server error", re.IGNORECASE)
_TRANSPORT_ERRORS = (httpx.TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def provider_status(exc: BaseException) -> int | None:
    """Return the first HTTP status code found along the exception chain."""
    for err in _exception_chain(exc):
        for attr in ("status_code", "code", "status"):
            value = getattr(err, attr, None)
            if isinstance(value, int) and not isinstance(value, bool) and 100 <= value < 600:
                return int(value)
        response = getattr(err, "response", None)
        status = getattr(response, "status_code", None)
        if isinstance(status, int) and 100 <= status < 600:
            return status
    return None


def is_connectivity_failure(exc: BaseException) -> bool:
    if any(isinstance(err, _TRANSPORT_ERRORS) for err in _exception_chain(exc)):
        return True
    return bool(_RE_CONNECTIVITY.search(str(exc)))


def is_retryable(exc: BaseException) -> bool:
    """Rate limits, 5xx and connection failures are retryable; other 4xx are not."""
    status = provider_status(exc)
    if status is not None:
        return status == 429 or status >= 500
    if is_connectivity_failure(exc):
        return True
    message = str(exc)
    return bool(_RE_RATE_LIMIT.search(message) or _RE_SERVER.search(message))


def classify_generation_error(exc: BaseException) -> GenerationError:
    """Map a provider exception onto the terminal ``GenerationError`` family."""
    if isinstance(exc, GenerationError):
        return exc

    status = provider_status(exc)
    message = str(exc)
    if status == 429 or (status is None and _RE_RATE_LIMIT.search(message)):
        return RateLimitExceeded(f"Generation rate-limited: {message}")
    if status in (401, 403) or (status is None and _RE_AUTH.search(message)):
        return AuthenticationError(f"Generation provider rejected credentials: {message}")
    if (status is None or status >= 500) and is_connectivity_failure(exc):
        return ConnectivityError(f"Generation provider unreachable: {message}")
    return GenerationError(f"Generation failed: {message}")
