"""
Retry decisions with exponential backoff.

The decision is a pure function of (error class, attempt, config) so it can
be tested without any I/O. The request executor owns the actual loop.
"""

import random
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional
import logging

from ..config import RetryQuotaConfig
from ..exceptions import (
    APIError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    SerializationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# OS entropy, so concurrent clients started together do not jitter in lockstep
_system_random = random.SystemRandom()

# 2**30 already exceeds any sane max_delay
MAX_EXPONENT = 30


class ErrorClass(str, Enum):
    """Retry-relevant classification of a failed attempt."""
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    SERVER = "server"
    CLIENT = "client"
    AUTH = "auth"
    VALIDATION = "validation"
    SERIALIZATION = "serialization"

    @property
    def retryable(self) -> bool:
        return self in (ErrorClass.RATE_LIMIT, ErrorClass.NETWORK, ErrorClass.SERVER)


@dataclass(frozen=True)
class RetryDecision:
    """Either retry after ``delay`` seconds or give up."""
    retry: bool
    delay: float = 0.0
    reason: str = ""


GIVE_UP = RetryDecision(retry=False, reason="not retryable")


def classify(error: Exception) -> ErrorClass:
    """Map an exception raised by the pipeline to its retry class."""
    if isinstance(error, RateLimitError):
        return ErrorClass.RATE_LIMIT
    if isinstance(error, NetworkError):
        return ErrorClass.NETWORK
    if isinstance(error, AuthenticationError):
        return ErrorClass.AUTH
    if isinstance(error, ValidationError):
        return ErrorClass.VALIDATION
    if isinstance(error, SerializationError):
        return ErrorClass.SERIALIZATION
    if isinstance(error, APIError):
        if error.status_code == 429:
            return ErrorClass.RATE_LIMIT
        if error.status_code is not None and error.status_code >= 500:
            return ErrorClass.SERVER
    return ErrorClass.CLIENT


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a ``Retry-After`` header into seconds to wait.

    Accepts delta-seconds (``"2"``, ``"1.5"``) or an HTTP-date. Dates in the
    past yield 0. Unparseable values yield None.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        if seconds != seconds or seconds in (float("inf"), float("-inf")):
            return None
        return max(0.0, seconds)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Unparseable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def backoff_delay(attempt: int, config: RetryQuotaConfig,
                  rng: Optional[random.Random] = None) -> float:
    """
    Exponential backoff ``base * 2**attempt`` capped at ``max_delay``, with jitter.

    Jitter multiplies by a uniform factor in ``[1 - jitter_ratio, 1 + jitter_ratio]``
    and the result is clamped back under ``max_delay``.
    """
    rng = rng or _system_random
    raw = config.base_delay * (2 ** min(max(attempt, 0), MAX_EXPONENT))
    capped = min(raw, config.max_delay)
    if config.jitter_ratio:
        capped *= rng.uniform(1.0 - config.jitter_ratio, 1.0 + config.jitter_ratio)
    return max(0.001, min(capped, config.max_delay))


def decide_retry(
    error_class: ErrorClass,
    attempt: int,
    config: RetryQuotaConfig,
    retry_after: Optional[float] = None,
    rng: Optional[random.Random] = None
) -> RetryDecision:
    """
    Decide whether a failed attempt is retried.

    Args:
        error_class: Classification of the failure
        attempt: Zero-based index of the attempt that just failed
        config: Retry configuration
        retry_after: Server wait hint in seconds, if any
        rng: Random source for jitter (OS entropy by default)

    Returns:
        RetryDecision
    """
    if not error_class.retryable:
        return GIVE_UP
    if attempt >= config.max_retries:
        return RetryDecision(retry=False, reason="retry budget exhausted")

    if retry_after is not None:
        # A server hint longer than we are willing to wait ends the loop
        # rather than retrying early.
        if retry_after > config.max_delay:
            return RetryDecision(retry=False, reason="Retry-After exceeds max_delay")
        return RetryDecision(retry=True, delay=retry_after, reason="Retry-After")

    return RetryDecision(
        retry=True,
        delay=backoff_delay(attempt, config, rng),
        reason="backoff"
    )
