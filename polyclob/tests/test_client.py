"""
Tests for the client facade.

Construction is checked for configuration errors; order flows run with the
CLOB surface mocked so only ticket bookkeeping is exercised.
"""

from unittest.mock import Mock

import pytest

from polyclob import (
    BuilderCredentials,
    ClientSettings,
    ConfigurationError,
    MarketOrderArgs,
    NetworkError,
    OrderArgs,
    OrderRejectedError,
    OrderState,
    OrderTicket,
    PolyClobClient,
    Side,
    SignatureType,
    TickSizeError,
    TradingError,
    ValidationError,
)
from polyclob.api.websocket import ChannelClient
from polyclob.models import BookLevel, CancelResponse, OrderBookSummary, OrderResponse
from polyclob.relay import RelayClient
from polyclob.tests.conftest import TEST_PRIVATE_KEY, TEST_SECRET, TOKEN_ID


@pytest.fixture
def settings():
    return ClientSettings(chain_id=137, enable_metrics=False)


@pytest.fixture
def client(settings, credentials, metadata):
    client = PolyClobClient.build(settings, private_key=TEST_PRIVATE_KEY, credentials=credentials)
    client.clob.get = Mock(return_value=metadata)
    client.clob.post_order = Mock(
        return_value=OrderResponse(success=True, orderID="0xorder", status="live")
    )
    client.clob.cancel_order = Mock(return_value=CancelResponse(canceled=["0xorder"]))
    yield client
    client.close()


class TestBuild:

    def test_read_only_client(self, settings):
        with PolyClobClient.build(settings) as client:
            assert client.order_builder is None
            with pytest.raises(ConfigurationError):
                client.create_order(OrderArgs(TOKEN_ID, "0.5", "10", Side.BUY))

    def test_credentials_need_key(self, settings, credentials):
        with pytest.raises(ConfigurationError):
            PolyClobClient.build(settings, credentials=credentials)

    def test_proxy_signature_type_needs_key(self, settings):
        with pytest.raises(ConfigurationError):
            PolyClobClient.build(settings, signature_type=SignatureType.POLY_PROXY)

    def test_bad_key(self, settings):
        with pytest.raises(ConfigurationError) as exc_info:
            PolyClobClient.build(settings, private_key="0x1234")
        assert "1234" not in str(exc_info.value)

    def test_relayer_unavailable_on_chain(self):
        builder = BuilderCredentials("builder-key", TEST_SECRET, "builder-pass")
        with pytest.raises(ConfigurationError):
            PolyClobClient.build(
                ClientSettings(chain_id=80002), private_key=TEST_PRIVATE_KEY, builder_credentials=builder
            )

    def test_unknown_chain(self):
        with pytest.raises(ConfigurationError):
            PolyClobClient.build(ClientSettings(chain_id=1))

    def test_relay_requires_builder_credentials(self, client):
        with pytest.raises(ConfigurationError):
            client.relay

    def test_relay_wired(self, settings):
        builder = BuilderCredentials("builder-key", TEST_SECRET, "builder-pass")
        with PolyClobClient.build(
            settings, private_key=TEST_PRIVATE_KEY, builder_credentials=builder
        ) as client:
            assert isinstance(client.relay, RelayClient)
            assert client.relay.executor.base_url == settings.relay_url


class TestOrders:

    def test_place_and_cancel(self, client):
        ticket = client.place_order(OrderArgs(TOKEN_ID, "0.50", "10", Side.BUY))

        assert ticket.state == OrderState.ACCEPTED
        assert ticket.order_id == "0xorder"
        signed = client.clob.post_order.call_args.args[0]
        assert signed is ticket.signed_order
        assert client.clob.post_order.call_args.kwargs["post_only"] is False

        assert client.cancel_order(ticket) is True
        assert ticket.state == OrderState.CANCELLED
        client.clob.cancel_order.assert_called_once_with("0xorder")

    def test_cancel_not_confirmed(self, client):
        client.clob.cancel_order.return_value = CancelResponse(not_canceled={"0xorder": "matched"})
        ticket = client.place_order(OrderArgs(TOKEN_ID, "0.50", "10", Side.BUY))
        assert client.cancel_order(ticket) is False
        assert ticket.state == OrderState.ACCEPTED

    def test_rejection_surfaces_ticket(self, client):
        client.clob.post_order.side_effect = OrderRejectedError(
            "Order rejected: not enough balance", order_id="0xhash", reason="not enough balance"
        )

        with pytest.raises(OrderRejectedError) as exc_info:
            client.place_order(OrderArgs(TOKEN_ID, "0.50", "10", Side.BUY))

        ticket = exc_info.value.details["ticket"]
        assert ticket.state == OrderState.REJECTED
        assert ticket.reason == "not enough balance"
        assert ticket.history[-2:] == [OrderState.SUBMITTED, OrderState.REJECTED]

    def test_transport_failure_keeps_ticket_submitted(self, client):
        client.clob.post_order.side_effect = NetworkError("connection reset")

        with pytest.raises(NetworkError) as exc_info:
            client.place_order(OrderArgs(TOKEN_ID, "0.50", "10", Side.BUY))

        ticket = exc_info.value.details["ticket"]
        assert ticket.state == OrderState.SUBMITTED
        assert ticket.reason == "connection reset"
        assert ticket.order_id is None

    def test_market_order_checked_before_book_fetch(self, client):
        client.clob.get_order_book = Mock()
        with pytest.raises(ValidationError):
            client.place_market_order(MarketOrderArgs(TOKEN_ID, "NaN", Side.BUY))
        client.clob.get_order_book.assert_not_called()
        client.clob.get.assert_not_called()

    def test_invalid_order_is_never_submitted(self, client):
        with pytest.raises(TickSizeError):
            client.place_order(OrderArgs(TOKEN_ID, "0.505", "10", Side.BUY))
        client.clob.post_order.assert_not_called()

    def test_cancel_unsubmitted_ticket(self, client):
        with pytest.raises(TradingError):
            client.cancel_order(OrderTicket(TOKEN_ID))

    def test_market_order_priced_from_book(self, client):
        client.clob.get_order_book = Mock(return_value=OrderBookSummary(
            asset_id=TOKEN_ID,
            bids=[BookLevel(price="0.40", size="100")],
            asks=[BookLevel(price="0.50", size="100")],
        ))

        ticket = client.place_market_order(MarketOrderArgs(TOKEN_ID, "10", Side.BUY))

        assert ticket.state == OrderState.ACCEPTED
        assert ticket.signed_order.message["takerAmount"] == 20_000_000


class TestChannelsAndLifecycle:

    def test_market_channel_not_connected(self, client):
        channel = client.market_channel(["1", "2"])
        assert isinstance(channel, ChannelClient)
        assert channel.url.endswith("/market")
        assert channel.connections == 0

    def test_user_channel_needs_credentials(self, settings):
        with PolyClobClient.build(settings, private_key=TEST_PRIVATE_KEY) as client:
            with pytest.raises(ConfigurationError):
                client.user_channel()

    def test_close_is_idempotent(self, client):
        channel = client.market_channel(["1"])
        client.close()
        client.close()
        assert channel.closed
        with pytest.raises(ConfigurationError):
            client.place_order(OrderArgs(TOKEN_ID, "0.50", "10", Side.BUY))
