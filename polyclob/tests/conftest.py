"""
Shared fixtures: deterministic clocks, a scripted HTTP session and a
throwaway signing key. Nothing here touches the network.
"""

from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import orjson
import pytest

from polyclob.api.base import RequestExecutor
from polyclob.auth.credentials import ApiCredentials
from polyclob.auth.signer import L1Signer, L2Signer
from polyclob.config import RetryQuotaConfig
from polyclob.models import MarketMetadata
from polyclob.utils.quota import QuotaLimit, QuotaManager, QuotaTable

# Well-known development key (never funded on mainnet)
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

# "test-secret-bytes-0123456789" as URL-safe base64
TEST_SECRET = "dGVzdC1zZWNyZXQtYnl0ZXMtMDEyMzQ1Njc4OQ=="

TOKEN_ID = "71321045679252212594626385532706912750332728571942532289631379312455583992563"


class FakeClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_response(status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
    """requests.Response stand-in."""
    if isinstance(body, (bytes, str)):
        content = body.encode("utf-8") if isinstance(body, str) else body
    elif body is None:
        content = b""
    else:
        content = orjson.dumps(body)
    response = Mock()
    response.status_code = status
    response.content = content
    response.text = content.decode("utf-8")
    response.headers = headers or {}
    return response


def sent_body(call) -> Any:
    """Decoded JSON body of one recorded session.request call."""
    data = call.kwargs["data"]
    return orjson.loads(data) if data is not None else None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def retry_config():
    return RetryQuotaConfig(max_retries=3, base_delay=0.5, max_delay=10.0, jitter_ratio=0.0)


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def credentials():
    return ApiCredentials("test-api-key", TEST_SECRET, "test-passphrase")


@pytest.fixture
def l1_signer():
    return L1Signer(TEST_PRIVATE_KEY)


@pytest.fixture
def l2_signer(credentials, l1_signer):
    return L2Signer(credentials, l1_signer.address)


@pytest.fixture
def make_executor(session, retry_config, clock):
    """Executor factory bound to the scripted session and fake clock."""

    def factory(l1_signer=None, l2_signer=None, wall_clock=lambda: 1700000000.0, quota=None, **kwargs):
        if quota is None:
            quota = QuotaManager(QuotaTable(default=QuotaLimit(1000, 1.0)), clock=clock, sleep=clock.sleep)
        return RequestExecutor(
            base_url="https://clob.test",
            session=session,
            quota=quota,
            config=retry_config,
            l1_signer=l1_signer,
            l2_signer=l2_signer,
            clock=clock,
            sleep=clock.sleep,
            wall_clock=wall_clock,
            **kwargs
        )

    return factory


@pytest.fixture
def metadata():
    return MarketMetadata(tick_size="0.01", min_size="5", neg_risk=False, fee_rate_bps=0)
