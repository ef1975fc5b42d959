"""
Thread-safe endpoint quota manager.

Continuous-rate token buckets keyed by path template. Templates match on
whole path segments, so a rule for ``/price`` never applies to
``/prices-history``.
"""

import time
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging

from ..config import RetryQuotaConfig
from ..exceptions import DeadlineExceededError, QuotaExhaustedError

logger = logging.getLogger(__name__)


class MatchMode(str, Enum):
    """How a rule template is compared against a request path."""
    PREFIX = "prefix"  # template plus any deeper segments
    EXACT = "exact"


@dataclass(frozen=True)
class QuotaLimit:
    """``capacity`` requests per ``period`` seconds, burstable up to capacity."""
    capacity: int
    period: float

    @property
    def refill_rate(self) -> float:
        return self.capacity / self.period


@dataclass(frozen=True)
class QuotaRule:
    """Quota for one endpoint template, optionally restricted to one HTTP method."""
    template: str
    limits: Tuple[QuotaLimit, ...]
    method: Optional[str] = None
    match: MatchMode = MatchMode.PREFIX

    def matches(self, method: str, path: str) -> bool:
        if self.method is not None and self.method != method.upper():
            return False
        if self.match == MatchMode.EXACT:
            return _strip_query(path) == self.template
        return segment_match(self.template, path)

    @property
    def specificity(self) -> Tuple[int, int]:
        segments = len([s for s in self.template.split("/") if s])
        return (segments, 1 if self.method else 0)


def _strip_query(path: str) -> str:
    return path.split("?", 1)[0]


def segment_match(template: str, path: str) -> bool:
    """
    Segment-boundary prefix match.

    ``/price`` matches ``/price``, ``/price/extra`` and ``/price?x=1`` but not
    ``/prices-history``. A trailing slash on the template is ignored.
    """
    template = template.rstrip("/") or "/"
    if template == "/":
        return path.startswith("/")
    if not path.startswith(template):
        return False
    rest = path[len(template):]
    return rest == "" or rest[0] in "/?"


@dataclass
class EndpointQuota:
    """
    Token bucket state for one limit of one template.

    Invariant: 0 <= tokens <= capacity.
    """
    template: str
    capacity: int
    refill_rate: float
    tokens: float
    last_refill: float

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(float(self.capacity), self.tokens + elapsed * self.refill_rate)
            self.last_refill = now

    def wait_time(self) -> float:
        """Seconds until one whole token exists (0 if one is available now)."""
        if self.tokens >= 1.0:
            return 0.0
        return (1.0 - self.tokens) / self.refill_rate


DEFAULT_TEMPLATE = "*"


@dataclass
class QuotaTable:
    """Default limit plus endpoint rules for one API surface."""
    default: QuotaLimit
    rules: List[QuotaRule] = field(default_factory=list)


class QuotaManager:
    """
    Thread-safe quota manager for API endpoints.

    The default bucket is always charged; the most specific matching rule
    is charged in addition. A request is admitted only when every bucket
    involved has a whole token, and then all of them are charged at once.

    Owned by one client instance; nothing is shared between instances.
    """

    def __init__(
        self,
        table: QuotaTable,
        block: bool = True,
        max_wait: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize quota manager.

        Args:
            table: Default limit and endpoint rules
            block: Wait for tokens (True) or reject immediately (False)
            max_wait: Longest single wait before rejecting
            clock: Monotonic clock
            sleep: Sleep function (injectable for tests)
        """
        self.table = table
        self.block = block
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._buckets: Dict[Tuple[str, Optional[str], int], EndpointQuota] = {}

    @classmethod
    def from_config(cls, table: QuotaTable, config: RetryQuotaConfig, **kwargs) -> "QuotaManager":
        return cls(table, block=config.block_on_quota, max_wait=config.max_quota_wait, **kwargs)

    def resolve(self, method: str, path: str) -> Optional[QuotaRule]:
        """Most specific rule matching the request, or None for default-only."""
        best: Optional[QuotaRule] = None
        for rule in self.table.rules:
            if not rule.matches(method, path):
                continue
            if best is None or rule.specificity > best.specificity:
                best = rule
        return best

    def _bucket(self, template: str, method: Optional[str], index: int,
                limit: QuotaLimit, now: float) -> EndpointQuota:
        key = (template, method, index)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = EndpointQuota(
                template=template,
                capacity=limit.capacity,
                refill_rate=limit.refill_rate,
                tokens=float(limit.capacity),
                last_refill=now,
            )
            self._buckets[key] = bucket
        return bucket

    def _buckets_for(self, method: str, path: str, now: float) -> List[EndpointQuota]:
        buckets = [self._bucket(DEFAULT_TEMPLATE, None, 0, self.table.default, now)]
        rule = self.resolve(method, path)
        if rule is not None:
            for index, limit in enumerate(rule.limits):
                buckets.append(self._bucket(rule.template, rule.method, index, limit, now))
        return buckets

    def try_acquire(self, method: str, path: str) -> float:
        """
        Attempt to consume one token atomically.

        Returns:
            0.0 if a token was consumed, otherwise seconds until one is available
        """
        with self._lock:
            now = self._clock()
            buckets = self._buckets_for(method, path, now)
            for bucket in buckets:
                bucket.refill(now)
            wait = max(bucket.wait_time() for bucket in buckets)
            if wait > 0:
                return wait
            for bucket in buckets:
                bucket.tokens -= 1.0
            return 0.0

    def acquire(self, method: str, path: str, deadline: Optional[float] = None) -> float:
        """
        Acquire a token, waiting outside the lock when the bucket is empty.

        Args:
            method: HTTP method
            path: Request path (query string allowed)
            deadline: Absolute ``clock()`` value after which to give up

        Returns:
            Seconds spent waiting

        Raises:
            QuotaExhaustedError: If rejecting is configured or the wait exceeds max_wait
            DeadlineExceededError: If the deadline would pass before a token exists
        """
        endpoint = f"{method.upper()} {_strip_query(path)}"
        waited = 0.0
        while True:
            wait = self.try_acquire(method, path)
            if wait <= 0:
                if waited:
                    logger.debug(f"Quota admitted {endpoint} after {waited:.3f}s")
                return waited

            if not self.block or wait > self.max_wait:
                raise QuotaExhaustedError(
                    f"Local quota exhausted for {endpoint}",
                    endpoint=endpoint,
                    retry_after=wait
                )
            if deadline is not None and self._clock() + wait > deadline:
                raise DeadlineExceededError(
                    f"Deadline expires before quota for {endpoint} refills",
                    {"endpoint": endpoint, "wait": wait}
                )

            logger.debug(f"Quota wait {wait:.3f}s for {endpoint}")
            self._sleep(wait)
            waited += wait

    def available(self, method: str, path: str) -> float:
        """Tokens currently available to the request (minimum across its buckets)."""
        with self._lock:
            now = self._clock()
            buckets = self._buckets_for(method, path, now)
            for bucket in buckets:
                bucket.refill(now)
            return min(bucket.tokens for bucket in buckets)


def _rule(template: str, capacity: int, period: float = 10.0, method: Optional[str] = None,
          sustained: Optional[Tuple[int, float]] = None) -> QuotaRule:
    limits: Sequence[QuotaLimit] = [QuotaLimit(capacity, period)]
    if sustained:
        limits = [QuotaLimit(capacity, period), QuotaLimit(*sustained)]
    return QuotaRule(template=template, limits=tuple(limits), method=method)


def clob_quota_table(config: Optional[RetryQuotaConfig] = None) -> QuotaTable:
    """CLOB API quotas. The default bucket comes from ``config`` when given."""
    config = config or RetryQuotaConfig()
    default = QuotaLimit(
        config.default_quota_capacity,
        config.default_quota_capacity / config.default_refill_rate
    )
    return QuotaTable(default=default, rules=[
        _rule("/order", 3500, method="POST", sustained=(36000, 600.0)),
        _rule("/order", 3000, method="DELETE"),
        _rule("/auth", 100),
        _rule("/trades", 900),
        _rule("/data", 900),
        _rule("/prices-history", 1500),
        _rule("/markets", 1500),
        _rule("/book", 1500),
        _rule("/price", 1500),
        _rule("/midpoint", 1500),
        _rule("/neg-risk", 1500),
        _rule("/tick-size", 1500),
    ])


def gamma_quota_table() -> QuotaTable:
    return QuotaTable(default=QuotaLimit(4000, 10.0), rules=[
        _rule("/comments", 200),
        _rule("/tags", 200),
        _rule("/markets", 300),
        _rule("/public-search", 350),
        _rule("/events", 500),
    ])


def relay_quota_table() -> QuotaTable:
    return QuotaTable(default=QuotaLimit(25, 60.0))
