"""Utility modules for the polyclob client."""

from .cache import TTLCache
from .quota import QuotaManager
from .retry import ErrorClass, RetryDecision, classify, decide_retry

__all__ = [
    "TTLCache",
    "QuotaManager",
    "ErrorClass",
    "RetryDecision",
    "classify",
    "decide_retry",
]
