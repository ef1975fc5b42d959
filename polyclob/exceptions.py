"""
Custom exceptions for the polyclob client.

Every error raised by the request pipeline, the order builder and the
channel client derives from PolyClobError so callers can catch one type.
"""

from typing import Optional, Any

import orjson


class PolyClobError(Exception):
    """Base exception for all polyclob errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def with_context(self, **context: Any) -> "PolyClobError":
        """Attach call-site context (endpoint, attempt) and return self."""
        for key, value in context.items():
            if value is not None:
                self.details[key] = value
        return self

    def __str__(self) -> str:
        endpoint = self.details.get("endpoint")
        attempt = self.details.get("attempt")
        if endpoint is None and attempt is None:
            return self.message
        context = ", ".join(
            f"{key}={self.details[key]}" for key in ("endpoint", "attempt")
            if self.details.get(key) is not None
        )
        return f"{self.message} ({context})"


class ConfigurationError(PolyClobError):
    """Client configuration is invalid."""
    pass


class NetworkError(PolyClobError):
    """Transport-level failure (connect, reset, DNS)."""
    pass


class TimeoutError(NetworkError):
    """Request timed out."""
    pass


class DeadlineExceededError(TimeoutError):
    """The caller-supplied deadline expired; never retried."""
    pass


class APIError(PolyClobError):
    """Remote service returned an error body."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response: Optional[Any] = None):
        super().__init__(message, {"status_code": status_code, "response": response})
        self.status_code = status_code
        self.response = response

    @property
    def retryable(self) -> bool:
        return self.status_code is not None and (
            self.status_code == 429 or self.status_code >= 500
        )

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: str,
        endpoint: Optional[str] = None,
        retry_after: Optional[float] = None
    ) -> PolyClobError:
        """
        Classify an HTTP error response.

        The message is taken from the JSON ``error`` or ``message`` field when
        present, otherwise from the raw body. The raw body is always kept.

        Args:
            status_code: HTTP status
            body: Raw response text
            endpoint: Request path, used for rate limit errors
            retry_after: Parsed Retry-After wait in seconds

        Returns:
            Classified exception instance (not raised)
        """
        message = body
        parsed: Any = body
        try:
            parsed = orjson.loads(body) if body else body
        except orjson.JSONDecodeError:
            parsed = body
        if isinstance(parsed, dict):
            message = str(parsed.get("error") or parsed.get("message") or body)

        if status_code in (401, 403):
            return AuthenticationError(
                f"Authentication failed ({status_code}): {message}",
                {"status_code": status_code, "response": body}
            )
        if status_code == 400:
            return ValidationError(
                f"Request rejected ({status_code}): {message}",
                {"status_code": status_code, "response": body}
            )
        if status_code == 408:
            return TimeoutError(
                f"Request timed out ({status_code}): {message}",
                {"status_code": status_code, "response": body}
            )
        if status_code == 429:
            return RateLimitError(
                f"Rate limited: {message}",
                endpoint=endpoint or "",
                retry_after=retry_after,
                response=body
            )
        return cls(f"HTTP {status_code}: {message}", status_code=status_code, response=body)


class AuthenticationError(PolyClobError):
    """Signing failed or credentials were rejected."""
    pass


class ValidationError(PolyClobError):
    """Input validation failed."""
    pass


class TickSizeError(ValidationError):
    """Order price is not aligned to the market tick size."""

    def __init__(self, message: str, price: Optional[str] = None,
                 tick_size: Optional[str] = None):
        super().__init__(message, {"price": price, "tick_size": tick_size})
        self.price = price
        self.tick_size = tick_size


class RateLimitError(PolyClobError):
    """Rate limit exceeded, locally or by the server."""

    def __init__(self, message: str, endpoint: str, retry_after: Optional[float] = None,
                 response: Optional[str] = None):
        super().__init__(
            message,
            {"endpoint": endpoint, "retry_after": retry_after, "response": response}
        )
        self.endpoint = endpoint
        self.retry_after = retry_after
        self.response = response


class QuotaExhaustedError(RateLimitError):
    """Local endpoint quota refused the request; surfaced without retrying."""
    pass


class SerializationError(PolyClobError):
    """Response body did not match the expected shape."""

    def __init__(self, message: str, payload: Optional[Any] = None):
        super().__init__(message, {"payload": payload})
        self.payload = payload


# Trading-specific exceptions
class TradingError(PolyClobError):
    """Base exception for trading operations."""
    pass


class OrderRejectedError(TradingError):
    """Order was rejected by exchange."""

    def __init__(self, message: str, order_id: Optional[str] = None,
                 reason: Optional[str] = None):
        super().__init__(message, {"order_id": order_id, "reason": reason})
        self.order_id = order_id
        self.reason = reason


# WebSocket exceptions
class WebSocketError(PolyClobError):
    """WebSocket channel error."""
    pass


class WebSocketConnectionError(WebSocketError):
    """Failed to connect to WebSocket."""
    pass


# Relay exceptions
class RelayError(PolyClobError):
    """Gasless relay submission failed."""
    pass
