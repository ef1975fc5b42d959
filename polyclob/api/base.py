"""
Typed request executor.

Composes a request descriptor into a signed HTTP call, consults the quota
manager before every attempt, re-signs every retry with a fresh timestamp,
and classifies responses into typed values or package exceptions.

orjson for JSON encoding and parsing (deterministic, releases GIL).
"""

import asyncio
import random
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlencode, urljoin
import logging

import orjson
import pydantic
import requests
from pydantic import TypeAdapter
from requests.adapters import HTTPAdapter

from ..auth.signer import L1Signer, L2Signer
from ..config import ClientSettings, RetryQuotaConfig
from ..exceptions import (
    APIError,
    AuthenticationError,
    DeadlineExceededError,
    NetworkError,
    PolyClobError,
    QuotaExhaustedError,
    SerializationError,
    TimeoutError,
)
from ..metrics import Metrics
from ..utils.quota import QuotaManager
from ..utils.retry import classify, decide_retry, parse_retry_after
from ..utils.structured_logging import reset_correlation_id, set_correlation_id

logger = logging.getLogger(__name__)


class AuthLevel(str, Enum):
    """Authentication a request needs."""
    NONE = "none"
    L1 = "l1"  # ClobAuth headers (API key management)
    L2 = "l2"  # HMAC headers
    L1_L2 = "l1_l2"  # L1-signed body plus HMAC headers (order placement)


class QueryParams:
    """
    Ordered query string builder.

    Unset (None) values are omitted, never emitted empty. Insertion order is
    preserved so the encoded string is deterministic.
    """

    def __init__(self, items: Optional[Iterable[Tuple[str, Any]]] = None):
        self._items: List[Tuple[str, str]] = []
        for key, value in items or ():
            self.add_opt(key, value)

    @staticmethod
    def _format(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, Enum):
            return str(value.value)
        return str(value)

    def add(self, key: str, value: Any) -> "QueryParams":
        if value is None:
            raise ValueError(f"Query parameter {key} is required")
        self._items.append((key, self._format(value)))
        return self

    def add_opt(self, key: str, value: Any) -> "QueryParams":
        if value is not None:
            self._items.append((key, self._format(value)))
        return self

    def add_many(self, key: str, values: Optional[Iterable[Any]]) -> "QueryParams":
        """Repeat ``key`` once per value."""
        for value in values or ():
            self.add_opt(key, value)
        return self

    def items(self) -> List[Tuple[str, str]]:
        return list(self._items)

    def encode(self) -> str:
        return urlencode(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, QueryParams) and self._items == other._items

    def __repr__(self) -> str:
        return f"QueryParams({self._items!r})"


@dataclass(frozen=True)
class RequestDescriptor:
    """
    Everything needed to send (and re-send) one logical request.

    ``response_type`` is any type pydantic can validate into (a model,
    ``list[Model]``, ``dict``). None returns the parsed JSON unchanged.
    """
    method: str
    path: str
    query: QueryParams = field(default_factory=QueryParams)
    body: Any = None
    auth: AuthLevel = AuthLevel.NONE
    response_type: Any = None
    l1_nonce: int = 0

    @property
    def endpoint(self) -> str:
        return f"{self.method.upper()} {self.path}"

    def body_text(self) -> Optional[str]:
        """Exact body string that is both signed and sent."""
        if self.body is None:
            return None
        if isinstance(self.body, str):
            return self.body
        return orjson.dumps(self.body).decode("utf-8")


def create_session(settings: ClientSettings) -> requests.Session:
    """Session with a pooled adapter and no transport-level retries."""
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=settings.pool_connections,
        pool_maxsize=settings.pool_maxsize,
        max_retries=0,  # Retries are decided by utils.retry
        pool_block=False
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({
        "Content-Type": "application/json",
        "Accept": "application/json",
        "User-Agent": "polyclob",
    })
    return session


class RequestExecutor:
    """
    Thread-safe executor for one API surface.

    Concurrent calls share the session and the quota manager; attempts of
    one logical request are strictly sequential.
    """

    def __init__(
        self,
        base_url: str,
        session: requests.Session,
        quota: QuotaManager,
        config: RetryQuotaConfig,
        l1_signer: Optional[L1Signer] = None,
        l2_signer: Optional[L2Signer] = None,
        chain_id: int = 137,
        timeout: Tuple[float, float] = (10.0, 30.0),
        metrics: Optional[Metrics] = None,
        log_requests: bool = False,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        wall_clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize request executor.

        Args:
            base_url: API base URL
            session: Shared HTTP session
            quota: Quota manager owned by the same client
            config: Retry configuration
            l1_signer: Wallet signer (L1 endpoints)
            l2_signer: API credential signer (L2 endpoints)
            chain_id: Chain for ClobAuth headers
            timeout: (connect, read) seconds per attempt
            metrics: Optional metrics collector
            log_requests: Log every attempt at DEBUG
            clock: Monotonic clock for deadlines
            sleep: Sleep function for backoff
            wall_clock: Unix time source for auth timestamps
            rng: Jitter source (OS entropy by default)
        """
        self.base_url = base_url
        self.session = session
        self.quota = quota
        self.config = config
        self.l1_signer = l1_signer
        self.l2_signer = l2_signer
        self.chain_id = chain_id
        self.timeout = timeout
        self.metrics = metrics
        self.log_requests = log_requests
        self._clock = clock
        self._sleep = sleep
        self._wall_clock = wall_clock
        self._rng = rng
        self._adapters: Dict[Any, TypeAdapter] = {}
        self._adapters_lock = threading.Lock()

    def url_for(self, path: str) -> str:
        return urljoin(self.base_url, path)

    def _auth_headers(self, descriptor: RequestDescriptor, body: Optional[str],
                      timestamp: int) -> Dict[str, str]:
        auth = descriptor.auth
        if auth == AuthLevel.NONE:
            return {}
        if auth == AuthLevel.L1:
            if self.l1_signer is None:
                raise AuthenticationError(f"{descriptor.endpoint} requires a signing key")
            return self.l1_signer.l1_headers(self.chain_id, timestamp, descriptor.l1_nonce)
        if self.l2_signer is None:
            raise AuthenticationError(f"{descriptor.endpoint} requires API credentials")
        if auth == AuthLevel.L1_L2 and self.l1_signer is None:
            raise AuthenticationError(f"{descriptor.endpoint} requires a signing key")
        return self.l2_signer.headers(descriptor.method, descriptor.path, body, timestamp)

    def _adapter(self, response_type: Any) -> TypeAdapter:
        with self._adapters_lock:
            adapter = self._adapters.get(response_type)
            if adapter is None:
                adapter = TypeAdapter(response_type)
                self._adapters[response_type] = adapter
            return adapter

    def _decode(self, descriptor: RequestDescriptor, content: bytes) -> Any:
        if not content:
            data = None
        else:
            try:
                data = orjson.loads(content)
            except orjson.JSONDecodeError as e:
                text = content.decode("utf-8", errors="replace")
                logger.error(f"Invalid JSON response from {descriptor.endpoint}: {text[:200]}")
                raise SerializationError(f"Invalid JSON response: {e}", payload=text) from None

        if descriptor.response_type is None:
            return data
        try:
            return self._adapter(descriptor.response_type).validate_python(data)
        except pydantic.ValidationError as e:
            logger.error(f"Unexpected response shape from {descriptor.endpoint}: {e.error_count()} errors")
            raise SerializationError(
                f"Response did not match {getattr(descriptor.response_type, '__name__', descriptor.response_type)}",
                payload=data
            ) from e

    def _attempt(
        self,
        descriptor: RequestDescriptor,
        body: Optional[str],
        headers: Dict[str, str],
        read_timeout: float
    ) -> Any:
        url = self.url_for(descriptor.path)
        method = descriptor.method.upper()
        start = time.monotonic()
        status = "error"
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=descriptor.query.items() or None,
                data=body.encode("utf-8") if body is not None else None,
                headers=headers,
                timeout=(self.timeout[0], read_timeout)
            )
            status = str(response.status_code)
        except requests.exceptions.Timeout as e:
            logger.warning(f"Request timeout: {method} {descriptor.path}")
            raise TimeoutError(f"Request timeout: {type(e).__name__}") from e
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"Connection error: {method} {descriptor.path}")
            raise NetworkError(f"Connection error: {type(e).__name__}") from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"Transport error: {method} {descriptor.path}: {type(e).__name__}")
            raise NetworkError(f"Transport error: {type(e).__name__}") from e
        finally:
            if self.metrics:
                self.metrics.track_api_request(method, descriptor.path, status, time.monotonic() - start)

        if response.status_code >= 400:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise APIError.from_response(
                response.status_code,
                response.text,
                endpoint=descriptor.endpoint,
                retry_after=retry_after
            )
        return self._decode(descriptor, response.content)

    def send(self, descriptor: RequestDescriptor, timeout: Optional[float] = None) -> Any:
        """
        Send a request, retrying transient failures.

        Args:
            descriptor: Request to send
            timeout: Overall deadline in seconds across all attempts and waits

        Returns:
            Decoded response (typed when ``response_type`` is set)

        Raises:
            PolyClobError: Classified failure, with endpoint and attempt in details
        """
        deadline = self._clock() + timeout if timeout is not None else None
        body = descriptor.body_text()
        endpoint = descriptor.endpoint
        token = set_correlation_id()
        last_timestamp: Optional[int] = None
        attempt = 0
        try:
            while True:
                try:
                    read_timeout = self._remaining(deadline, endpoint, attempt)
                    waited = self.quota.acquire(descriptor.method, descriptor.path, deadline)
                    if self.metrics:
                        self.metrics.track_quota_wait(endpoint, waited)
                    read_timeout = self._remaining(deadline, endpoint, attempt)

                    # Every attempt is signed anew; the timestamp must move forward
                    timestamp = int(self._wall_clock())
                    if last_timestamp is not None and timestamp <= last_timestamp:
                        timestamp = last_timestamp + 1
                    last_timestamp = timestamp
                    headers = self._auth_headers(descriptor, body, timestamp)

                    if self.log_requests:
                        logger.debug(f"{endpoint} attempt={attempt + 1} query={descriptor.query.encode()}")
                    return self._attempt(descriptor, body, headers, read_timeout)

                except (DeadlineExceededError, QuotaExhaustedError) as e:
                    raise e.with_context(endpoint=endpoint, attempt=attempt + 1)

                except PolyClobError as e:
                    e.with_context(endpoint=endpoint, attempt=attempt + 1)
                    error_class = classify(e)
                    decision = decide_retry(
                        error_class,
                        attempt,
                        self.config,
                        retry_after=getattr(e, "retry_after", None),
                        rng=self._rng
                    )
                    if not decision.retry:
                        if error_class.retryable:
                            logger.error(f"{endpoint} failed after {attempt + 1} attempts: {e.message}")
                        raise
                    if deadline is not None and self._clock() + decision.delay >= deadline:
                        logger.warning(f"{endpoint} deadline leaves no room to retry")
                        raise

                    logger.warning(
                        f"{endpoint} attempt {attempt + 1} failed ({error_class.value}), "
                        f"retrying in {decision.delay:.2f}s ({decision.reason})"
                    )
                    if self.metrics:
                        self.metrics.track_retry(endpoint, error_class.value)
                    self._sleep(decision.delay)
                    attempt += 1
        finally:
            reset_correlation_id(token)

    def _remaining(self, deadline: Optional[float], endpoint: str, attempt: int) -> float:
        """Read timeout for the next attempt, bounded by the deadline."""
        if deadline is None:
            return self.timeout[1]
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise DeadlineExceededError(f"Deadline expired before {endpoint}")
        return min(self.timeout[1], remaining)

    async def send_async(self, descriptor: RequestDescriptor, timeout: Optional[float] = None) -> Any:
        """Run :meth:`send` on a worker thread."""
        return await asyncio.to_thread(self.send, descriptor, timeout)

    def get(self, path: str, query: Optional[QueryParams] = None, auth: AuthLevel = AuthLevel.NONE,
            response_type: Any = None, timeout: Optional[float] = None) -> Any:
        """Make GET request."""
        return self.send(
            RequestDescriptor("GET", path, query or QueryParams(), None, auth, response_type),
            timeout
        )

    def post(self, path: str, body: Any = None, auth: AuthLevel = AuthLevel.NONE,
             response_type: Any = None, timeout: Optional[float] = None) -> Any:
        """Make POST request."""
        return self.send(
            RequestDescriptor("POST", path, QueryParams(), body, auth, response_type),
            timeout
        )

    def delete(self, path: str, body: Any = None, auth: AuthLevel = AuthLevel.NONE,
               response_type: Any = None, timeout: Optional[float] = None) -> Any:
        """Make DELETE request."""
        return self.send(
            RequestDescriptor("DELETE", path, QueryParams(), body, auth, response_type),
            timeout
        )

    def close(self) -> None:
        """Close session and cleanup resources."""
        self.session.close()
        logger.info("API client session closed")
