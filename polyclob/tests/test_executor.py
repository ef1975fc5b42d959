"""
Tests for the typed request executor.

The session is scripted with canned responses; the clock only moves when
the executor sleeps, so backoff and deadlines are exact.
"""

import asyncio

import pytest
import requests

from polyclob.api.base import AuthLevel, QueryParams, RequestDescriptor
from polyclob.exceptions import (
    APIError,
    AuthenticationError,
    DeadlineExceededError,
    NetworkError,
    QuotaExhaustedError,
    RateLimitError,
    SerializationError,
    TimeoutError,
    ValidationError,
)
from polyclob.metrics import Metrics
from polyclob.models import TickSizeResponse
from polyclob.tests.conftest import make_response, sent_body
from polyclob.utils.quota import QuotaLimit, QuotaManager, QuotaTable


class TestQueryParams:

    def test_required_value(self):
        with pytest.raises(ValueError):
            QueryParams().add("token_id", None)

    def test_optional_values_skipped(self):
        query = QueryParams().add("a", 1).add_opt("b", None).add_opt("c", "x")
        assert query.items() == [("a", "1"), ("c", "x")]

    def test_formatting(self):
        query = QueryParams().add("active", True).add("closed", False).add("side", AuthLevel.L2)
        assert query.encode() == "active=true&closed=false&side=l2"

    def test_repeated_key(self):
        query = QueryParams().add_many("id", ["1", None, "2"])
        assert query.items() == [("id", "1"), ("id", "2")]

    def test_empty_is_falsy(self):
        assert not QueryParams()
        assert QueryParams([("a", None)]) == QueryParams()


class TestSend:

    def test_typed_response(self, session, make_executor):
        session.request.return_value = make_response(200, {"minimum_tick_size": "0.01"})
        executor = make_executor()

        result = executor.get(
            "/tick-size", QueryParams().add("token_id", "123"), response_type=TickSizeResponse
        )

        assert str(result.minimum_tick_size) == "0.01"
        call = session.request.call_args
        assert call.kwargs["method"] == "GET"
        assert call.kwargs["url"] == "https://clob.test/tick-size"
        assert call.kwargs["params"] == [("token_id", "123")]
        assert call.kwargs["data"] is None

    def test_untyped_response_returns_json(self, session, make_executor):
        session.request.return_value = make_response(200, [{"a": 1}])
        assert make_executor().get("/anything") == [{"a": 1}]

    def test_empty_body(self, session, make_executor):
        session.request.return_value = make_response(200, b"")
        assert make_executor().delete("/order", {"orderID": "x"}) is None

    def test_shape_mismatch_keeps_payload(self, session, make_executor):
        session.request.return_value = make_response(200, {"unexpected": True})
        with pytest.raises(SerializationError) as exc_info:
            make_executor().get("/tick-size", response_type=TickSizeResponse)
        assert exc_info.value.payload == {"unexpected": True}
        assert session.request.call_count == 1

    def test_invalid_json(self, session, make_executor):
        session.request.return_value = make_response(200, b"<html>oops</html>")
        with pytest.raises(SerializationError) as exc_info:
            make_executor().get("/book")
        assert exc_info.value.payload == "<html>oops</html>"


class TestRetries:

    def test_transient_errors_retried(self, session, make_executor, clock):
        session.request.side_effect = [
            make_response(503, {"error": "unavailable"}),
            make_response(502, "bad gateway"),
            make_response(200, {"ok": True}),
        ]
        assert make_executor().get("/book") == {"ok": True}
        assert session.request.call_count == 3
        assert clock.sleeps == [0.5, 1.0]

    def test_bounded_attempts(self, session, make_executor, clock):
        session.request.return_value = make_response(500, {"error": "boom"})
        with pytest.raises(APIError) as exc_info:
            make_executor().get("/book")
        # max_retries=3 means four attempts in total
        assert session.request.call_count == 4
        assert exc_info.value.status_code == 500
        assert exc_info.value.details["attempt"] == 4
        assert exc_info.value.details["endpoint"] == "GET /book"
        assert clock.sleeps == [0.5, 1.0, 2.0]

    def test_client_error_not_retried(self, session, make_executor):
        session.request.return_value = make_response(400, {"error": "invalid order"})
        with pytest.raises(ValidationError) as exc_info:
            make_executor().post("/order", {"x": 1})
        assert session.request.call_count == 1
        assert "invalid order" in exc_info.value.message

    def test_auth_error_not_retried(self, session, make_executor):
        session.request.return_value = make_response(401, {"error": "Unauthorized"})
        with pytest.raises(AuthenticationError):
            make_executor().get("/data/orders")
        assert session.request.call_count == 1

    def test_retry_after_honored(self, session, make_executor, clock):
        session.request.side_effect = [
            make_response(429, {"error": "slow down"}, headers={"Retry-After": "2"}),
            make_response(200, {"ok": True}),
        ]
        assert make_executor().get("/book") == {"ok": True}
        assert clock.sleeps == [2.0]

    def test_retry_after_too_long_surfaces(self, session, make_executor, clock):
        session.request.return_value = make_response(429, "limited", headers={"Retry-After": "60"})
        with pytest.raises(RateLimitError) as exc_info:
            make_executor().get("/book")
        assert exc_info.value.retry_after == 60.0
        assert session.request.call_count == 1
        assert clock.sleeps == []

    def test_timeout_is_network_class(self, session, make_executor):
        session.request.side_effect = requests.exceptions.ReadTimeout("slow")
        with pytest.raises(TimeoutError):
            make_executor().get("/book")
        assert session.request.call_count == 4

    def test_connection_error(self, session, make_executor):
        session.request.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            make_response(200, {"ok": True}),
        ]
        assert make_executor().get("/book") == {"ok": True}

    def test_transport_error_mapped(self, session, make_executor, retry_config):
        session.request.side_effect = requests.exceptions.InvalidURL("bad")
        with pytest.raises(NetworkError):
            make_executor().get("/book")


class TestDeadline:

    def test_retry_that_would_overrun_is_not_attempted(self, session, make_executor, clock):
        session.request.return_value = make_response(503, "down")
        with pytest.raises(APIError):
            make_executor().get("/book", timeout=1.0)
        # First retry sleeps 0.5s; the second would need 1.0s more
        assert session.request.call_count == 2
        assert clock.sleeps == [0.5]

    def test_read_timeout_bounded_by_deadline(self, session, make_executor):
        session.request.return_value = make_response(200, {})
        make_executor(timeout=(5.0, 30.0)).get("/book", timeout=2.0)
        assert session.request.call_args.kwargs["timeout"] == (5.0, 2.0)

    def test_expired_deadline(self, session, make_executor):
        with pytest.raises(DeadlineExceededError):
            make_executor().send(RequestDescriptor("GET", "/book"), timeout=0)
        session.request.assert_not_called()


class TestQuotaAdmission:

    def test_reject_mode_surfaces_immediately(self, session, make_executor, clock):
        session.request.return_value = make_response(200, {"ok": True})
        quota = QuotaManager(
            QuotaTable(default=QuotaLimit(1, 10.0)), block=False, clock=clock, sleep=clock.sleep
        )
        executor = make_executor(quota=quota)

        assert executor.get("/book") == {"ok": True}
        with pytest.raises(QuotaExhaustedError) as exc_info:
            executor.get("/book")

        assert exc_info.value.details["endpoint"] == "GET /book"
        assert exc_info.value.details["attempt"] == 1
        assert exc_info.value.retry_after == pytest.approx(10.0)
        assert session.request.call_count == 1
        assert clock.sleeps == []

    def test_block_mode_waits_for_refill(self, session, make_executor, clock):
        session.request.return_value = make_response(200, {"ok": True})
        quota = QuotaManager(QuotaTable(default=QuotaLimit(1, 10.0)), clock=clock, sleep=clock.sleep)
        executor = make_executor(quota=quota)

        executor.get("/book")
        executor.get("/book")

        assert session.request.call_count == 2
        assert clock.sleeps == [pytest.approx(10.0)]


class TestAuth:

    def test_l2_headers_fresh_per_attempt(self, session, make_executor, l2_signer, l1_signer):
        session.request.side_effect = [
            make_response(500, "err"),
            make_response(500, "err"),
            make_response(200, {"ok": True}),
        ]
        # Wall clock is frozen; timestamps must still move forward
        executor = make_executor(l1_signer=l1_signer, l2_signer=l2_signer)
        executor.post("/order", {"order": {"salt": 1}}, auth=AuthLevel.L1_L2)

        timestamps = [c.kwargs["headers"]["POLY_TIMESTAMP"] for c in session.request.call_args_list]
        assert timestamps == ["1700000000", "1700000001", "1700000002"]
        signatures = {c.kwargs["headers"]["POLY_SIGNATURE"] for c in session.request.call_args_list}
        assert len(signatures) == 3

    def test_signed_body_is_sent_body(self, session, make_executor, l2_signer):
        session.request.return_value = make_response(200, {})
        make_executor(l2_signer=l2_signer).post("/order", {"b": 2, "a": [1, 2]}, auth=AuthLevel.L2)

        call = session.request.call_args
        headers = call.kwargs["headers"]
        body = call.kwargs["data"].decode("utf-8")
        assert sent_body(call) == {"b": 2, "a": [1, 2]}
        assert l2_signer.verify(
            headers["POLY_SIGNATURE"], int(headers["POLY_TIMESTAMP"]), "POST", "/order", body
        )
        assert headers["POLY_API_KEY"] == "test-api-key"

    def test_l1_headers(self, session, make_executor, l1_signer):
        session.request.return_value = make_response(200, {})
        executor = make_executor(l1_signer=l1_signer)
        executor.send(RequestDescriptor("GET", "/auth/derive-api-key", auth=AuthLevel.L1, l1_nonce=3))

        headers = session.request.call_args.kwargs["headers"]
        assert headers["POLY_ADDRESS"] == l1_signer.address
        assert headers["POLY_NONCE"] == "3"

    def test_missing_credentials(self, session, make_executor):
        with pytest.raises(AuthenticationError):
            make_executor().get("/data/orders", auth=AuthLevel.L2)
        session.request.assert_not_called()


def test_metrics_recorded(session, make_executor):
    metrics = Metrics(enabled=True)
    session.request.side_effect = [make_response(503, "x"), make_response(200, {})]
    make_executor(metrics=metrics).get("/book")

    exported = metrics.export().decode("utf-8")
    assert 'polyclob_api_requests_total{endpoint="/book",method="GET",status="503"} 1.0' in exported
    assert 'polyclob_retries_total{endpoint="GET /book",error_class="server"} 1.0' in exported


def test_send_async(session, make_executor):
    session.request.return_value = make_response(200, {"ok": True})
    executor = make_executor()
    result = asyncio.run(executor.send_async(RequestDescriptor("GET", "/book")))
    assert result == {"ok": True}
