"""Error classification for retry and user messaging decisions.

Maps an arbitrary exception to an ErrorCategory using an ordered rule
table. The first matching rule wins:

    cancellation -> authentication -> rate limit -> not found -> timeout
    -> transient network -> server (5xx) -> validation -> client (4xx)

When an HTTP status is known it decides the status-based rules; message
matching is the fallback for exceptions without one. Anything unmatched
is UNKNOWN and treated as retryable once, with a short
delay. User-facing messages are fixed per category and never include the
raw exception text.
"""

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from litflow.utils.exceptions import CircuitOpenError, OperationCancelledError


class ErrorCategory(str, Enum):
    """Error categories driving retry behaviour"""

    CANCELLATION = "cancellation"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    TRANSIENT = "transient"
    SERVER_ERROR = "server_error"
    VALIDATION = "validation"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    category: ErrorCategory
    is_retryable: bool
    user_message: str
    suggested_action: str
    retry_delay_seconds: Optional[float] = None
    original_error: Optional[BaseException] = None


@dataclass(frozen=True)
class NormalizedError:
    """Message plus optional HTTP status extracted from an exception."""

    message: str
    status_code: Optional[int]
    error: BaseException

    @classmethod
    def from_exception(cls, error: BaseException) -> "NormalizedError":
        return cls(
            message=str(error).lower(),
            status_code=_extract_status_code(error),
            error=error,
        )


def _extract_status_code(error: BaseException) -> Optional[int]:
    """Read a status code from common exception shapes.

    Checks ``status_code``/``status`` on the exception, then on an attached
    ``response`` object (httpx, requests and aiohttp all use one of these).
    """
    candidates = [error, getattr(error, "response", None)]
    for obj in candidates:
        if obj is None:
            continue
        for attr in ("status_code", "status"):
            value = getattr(obj, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
    return None


_SERVER_STATUS_RE = re.compile(r"\b5\d\d\b")
_CLIENT_STATUS_RE = re.compile(r"\b4\d\d\b")


def _any(*predicates: Callable[[NormalizedError], bool]) -> Callable[[NormalizedError], bool]:
    return lambda e: any(p(e) for p in predicates)


def _status_or_message(
    codes: Tuple[int, ...], *needles: str
) -> Callable[[NormalizedError], bool]:
    """Match on status when one is known, otherwise on the message."""

    def predicate(e: NormalizedError) -> bool:
        if e.status_code is not None:
            return e.status_code in codes
        return any(n in e.message for n in needles)

    return predicate


def _is_cancellation(e: NormalizedError) -> bool:
    if isinstance(e.error, (asyncio.CancelledError, OperationCancelledError)):
        return True
    # "Connection aborted." from dropped sockets is a network failure
    if isinstance(e.error, ConnectionError) or e.status_code is not None:
        return False
    return any(n in e.message for n in ("cancel", "abort"))


def _is_timeout(e: NormalizedError) -> bool:
    return isinstance(e.error, (TimeoutError, asyncio.TimeoutError))


def _is_server_status(e: NormalizedError) -> bool:
    if e.status_code is not None:
        return 500 <= e.status_code <= 599
    return bool(_SERVER_STATUS_RE.search(e.message))


def _is_client_status(e: NormalizedError) -> bool:
    if e.status_code is not None:
        return 400 <= e.status_code <= 499
    return bool(_CLIENT_STATUS_RE.search(e.message))


Rule = Tuple[Callable[[NormalizedError], bool], ErrorClassification]

DEFAULT_RULES: List[Rule] = [
    (
        _is_cancellation,
        ErrorClassification(
            category=ErrorCategory.CANCELLATION,
            is_retryable=False,
            user_message="The operation was cancelled.",
            suggested_action="No action needed.",
        ),
    ),
    (
        _status_or_message(
            (401, 403),
            "401",
            "403",
            "unauthorized",
            "forbidden",
            "authentication",
            "token expired",
        ),
        ErrorClassification(
            category=ErrorCategory.AUTHENTICATION,
            is_retryable=False,
            user_message="Your session is not authorized for this request.",
            suggested_action="Sign in again and retry.",
        ),
    ),
    (
        _status_or_message((429,), "429", "too many requests", "rate limit"),
        ErrorClassification(
            category=ErrorCategory.RATE_LIMIT,
            is_retryable=True,
            user_message="The service is receiving too many requests.",
            suggested_action="Wait a moment; the request will be retried.",
            retry_delay_seconds=30.0,
        ),
    ),
    (
        _status_or_message((404,), "404", "not found"),
        ErrorClassification(
            category=ErrorCategory.NOT_FOUND,
            is_retryable=False,
            user_message="The requested resource could not be found.",
            suggested_action="Check that the paper still exists.",
        ),
    ),
    (
        _any(_is_timeout, _status_or_message((408, 504), "timeout", "timed out")),
        ErrorClassification(
            category=ErrorCategory.TIMEOUT,
            is_retryable=True,
            user_message="The request took too long to complete.",
            suggested_action="The request will be retried.",
            retry_delay_seconds=2.0,
        ),
    ),
    (
        _any(
            lambda e: isinstance(e.error, ConnectionError),
            _status_or_message(
                (),
                "network",
                "econnreset",
                "econnrefused",
                "connection",
                "socket hang up",
            ),
        ),
        ErrorClassification(
            category=ErrorCategory.TRANSIENT,
            is_retryable=True,
            user_message="A network problem interrupted the request.",
            suggested_action="Check your connection; the request will be retried.",
            retry_delay_seconds=1.0,
        ),
    ),
    (
        _any(
            _is_server_status,
            _status_or_message(
                (), "internal server error", "service unavailable", "bad gateway"
            ),
        ),
        ErrorClassification(
            category=ErrorCategory.SERVER_ERROR,
            is_retryable=True,
            user_message="The server encountered an error.",
            suggested_action="The request will be retried shortly.",
            retry_delay_seconds=5.0,
        ),
    ),
    (
        _status_or_message((400, 422), "validation", "invalid"),
        ErrorClassification(
            category=ErrorCategory.VALIDATION,
            is_retryable=False,
            user_message="The request contained invalid data.",
            suggested_action="Review the selected papers and try again.",
        ),
    ),
    (
        _is_client_status,
        ErrorClassification(
            category=ErrorCategory.CLIENT_ERROR,
            is_retryable=False,
            user_message="The request could not be processed.",
            suggested_action="Review the request and try again.",
        ),
    ),
]

UNKNOWN_CLASSIFICATION = ErrorClassification(
    category=ErrorCategory.UNKNOWN,
    is_retryable=True,
    user_message="An unexpected error occurred.",
    suggested_action="The request will be retried once.",
    retry_delay_seconds=1.0,
)


class ErrorClassifier:
    """Ordered rule table; first matching rule wins."""

    def __init__(self, rules: Optional[List[Rule]] = None) -> None:
        self.rules = list(rules if rules is not None else DEFAULT_RULES)

    def classify(self, error: BaseException) -> ErrorClassification:
        normalized = NormalizedError.from_exception(error)
        for predicate, classification in self.rules:
            if predicate(normalized):
                return _with_error(classification, error)
        return _with_error(UNKNOWN_CLASSIFICATION, error)


def _with_error(
    classification: ErrorClassification, error: BaseException
) -> ErrorClassification:
    return ErrorClassification(
        category=classification.category,
        is_retryable=classification.is_retryable,
        user_message=classification.user_message,
        suggested_action=classification.suggested_action,
        retry_delay_seconds=classification.retry_delay_seconds,
        original_error=error,
    )


_default_classifier = ErrorClassifier()


def classify_error(error: BaseException) -> ErrorClassification:
    """Classify with the default rule table."""
    return _default_classifier.classify(error)


def is_retryable_error(error: BaseException) -> bool:
    """Retry predicate used by the save and fetch paths.

    An open circuit is never retried; the breaker is already failing fast.
    """
    if isinstance(error, CircuitOpenError):
        return False
    return classify_error(error).is_retryable
