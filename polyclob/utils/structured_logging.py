"""
Structured logging helpers.

Credential redaction for every handler and a per-request correlation ID
that follows one logical request across all of its retry attempts.
"""

import logging
import re
import uuid
from contextvars import ContextVar, Token
from typing import Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("polyclob_correlation_id", default=None)


class CredentialRedactionFilter(logging.Filter):
    """
    Redacts credentials from log records.

    Covers private keys (0x followed by 64 hex chars), ``secret=``/``passphrase=``
    style pairs and long base64 strings (URL-safe or standard alphabet).

    Usage:
        >>> handler = logging.StreamHandler()
        >>> handler.addFilter(CredentialRedactionFilter())
    """

    PRIVATE_KEY_PATTERN = re.compile(r'0x[0-9a-fA-F]{64}(?![0-9a-fA-F])')
    API_SECRET_PATTERN = re.compile(
        r'((?:secret|passphrase|password|private_key|api_key)["\']?\s*[:=]\s*["\']?)'
        r'[A-Za-z0-9+/=_\-]{8,}["\']?',
        re.IGNORECASE
    )
    BASE64_SECRET_PATTERN = re.compile(r'[A-Za-z0-9+/_\-]{40,}={0,2}')

    def filter(self, record: logging.LogRecord) -> bool:
        # Render once so args cannot reintroduce a secret after redaction
        if record.args:
            try:
                record.msg = record.getMessage()
            except (TypeError, ValueError):
                record.msg = str(record.msg)
            record.args = None

        if record.msg:
            record.msg = redact(str(record.msg))

        if record.exc_info and record.exc_info[1] is not None and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact(record.exc_text)

        return True


def redact(text: str) -> str:
    """Redact all credential patterns from text."""
    if not text:
        return text

    text = CredentialRedactionFilter.PRIVATE_KEY_PATTERN.sub('0x[REDACTED]', text)
    text = CredentialRedactionFilter.API_SECRET_PATTERN.sub(r'\1[REDACTED]', text)

    def redact_base64(match: re.Match) -> str:
        value = match.group(0)
        # Hex-only runs are hashes and addresses, not secrets
        if re.fullmatch(r'(0x)?[0-9a-fA-F]+', value):
            return value
        return value[:4] + '...[REDACTED]'

    return CredentialRedactionFilter.BASE64_SECRET_PATTERN.sub(redact_base64, text)


class CorrelationIdFilter(logging.Filter):
    """Adds ``correlation_id`` to every record so formatters can render it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get()
        return True


def set_correlation_id(correlation_id: Optional[str] = None) -> Token:
    """
    Set correlation ID for the current context.

    Args:
        correlation_id: Correlation ID (generates one if None)

    Returns:
        Token for :func:`reset_correlation_id`
    """
    if correlation_id is None:
        correlation_id = f"req_{uuid.uuid4().hex[:12]}"
    return _correlation_id.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return _correlation_id.get()


def reset_correlation_id(token: Token) -> None:
    """Restore the correlation ID that was active before ``set_correlation_id``."""
    _correlation_id.reset(token)
