"""
Tests for the channel client.

WebSocketApp is replaced by a scripted fake that runs inside the reader
thread, so reconnects and backpressure are exercised without a socket.
"""

import threading
import time
from decimal import Decimal

import orjson
import pytest

from polyclob.api.messages import BookMessage, MessageKind, PriceChangeMessage
from polyclob.api.websocket import (
    ChannelClient,
    ChannelKind,
    ChannelSubscription,
    market_subscription,
    user_subscription,
)
from polyclob.exceptions import ConfigurationError, WebSocketConnectionError, WebSocketError


def book(asset_id: str = "123", price: str = "0.5") -> str:
    return orjson.dumps({
        "event_type": "book",
        "asset_id": asset_id,
        "bids": [{"price": price, "size": "10"}],
        "asks": [],
    }).decode()


def price_change() -> str:
    return orjson.dumps({"event_type": "price_change", "market": "0xabc", "price_changes": []}).decode()


class FakeApp:
    """WebSocketApp stand-in that plays one scripted connection."""

    def __init__(self, url, on_open, on_message, on_error, on_close, frames=(), error=None, hold=True):
        self.url = url
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self.frames = list(frames)
        self.error = error
        self.hold = hold
        self.sent = []
        self.closed = threading.Event()

    def run_forever(self):
        if self.error is not None:
            self.on_error(self, self.error)
            self.on_close(self, None, None)
            return
        self.on_open(self)
        for frame in self.frames:
            self.on_message(self, frame)
        if self.hold:
            self.closed.wait(5)
        self.on_close(self, 1000, "bye")

    def send(self, data):
        self.sent.append(data)

    def close(self):
        self.closed.set()


class ScriptedFactory:
    """Hands out one FakeApp per connection attempt, following ``scripts``."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.apps = []

    def __call__(self, url, **callbacks):
        script = self.scripts.pop(0) if self.scripts else {}
        app = FakeApp(url, **callbacks, **script)
        self.apps.append(app)
        return app


def make_client(factory, **kwargs):
    kwargs.setdefault("reconnect_delay", 0)
    return ChannelClient(
        market_subscription(["123", "456"]),
        ws_url="wss://ws.test/ws/",
        app_factory=factory,
        **kwargs
    )


class TestSubscription:

    def test_market_frame(self):
        frame = market_subscription(["1", "2"]).to_frame()
        assert frame == {"assets_ids": ["1", "2"], "type": "market"}

    def test_user_frame_carries_auth(self, credentials):
        frame = user_subscription(["0xcond"], credentials).to_frame()
        assert frame["markets"] == ["0xcond"]
        assert frame["type"] == "user"
        assert frame["auth"]["apiKey"] == "test-api-key"

    def test_user_needs_credentials(self):
        with pytest.raises(ConfigurationError):
            ChannelSubscription(ChannelKind.USER, ("0xcond",))

    def test_market_needs_assets(self):
        with pytest.raises(ConfigurationError):
            market_subscription([])

    def test_repr_redacts_auth(self, credentials):
        text = repr(user_subscription(["0xcond"], credentials))
        assert "test-passphrase" not in text
        assert "[REDACTED]" in text


class TestChannelClient:

    def test_subscribes_and_filters_kinds(self):
        factory = ScriptedFactory({"frames": [book(price="0.4"), price_change(), book(price="0.6")]})
        with make_client(factory) as client:
            messages = list(client.stream(kinds={MessageKind.BOOK}, max_messages=2, timeout=5))

        assert [m.bids[0].price for m in messages] == [Decimal("0.4"), Decimal("0.6")]
        app = factory.apps[0]
        assert app.url == "wss://ws.test/ws/market"
        assert orjson.loads(app.sent[0]) == {"assets_ids": ["123", "456"], "type": "market"}

    def test_resubscribes_after_reconnect(self):
        factory = ScriptedFactory(
            {"frames": [book(price="0.4")], "hold": False},
            {"frames": [price_change()]},
        )
        client = make_client(factory)
        try:
            messages = list(client.stream(max_messages=2, timeout=5))
        finally:
            client.close()

        assert [type(m) for m in messages] == [BookMessage, PriceChangeMessage]
        assert client.connections == 2
        for app in factory.apps:
            assert orjson.loads(app.sent[0])["assets_ids"] == ["123", "456"]

    def test_slow_consumer_loses_nothing(self):
        frames = [book(price=f"0.{i}") for i in range(1, 8)]
        factory = ScriptedFactory({"frames": frames})
        with make_client(factory, buffer_size=1) as client:
            messages = list(client.stream(max_messages=7, timeout=5))

        assert [str(m.bids[0].price) for m in messages] == [f"0.{i}" for i in range(1, 8)]

    def test_timeout_ends_stream_quietly(self):
        factory = ScriptedFactory({"frames": [book(price="0.4"), book(price="0.6")]})
        with make_client(factory) as client:
            started = time.monotonic()
            messages = list(client.stream(max_messages=5, timeout=0.3))
            elapsed = time.monotonic() - started

        assert [str(m.bids[0].price) for m in messages] == ["0.4", "0.6"]
        assert 0.3 <= elapsed < 3
        assert len(factory.apps) == 1

    def test_gives_up_after_max_reconnects(self):
        refused = ConnectionRefusedError("refused")
        factory = ScriptedFactory({"error": refused}, {"error": refused}, {"error": refused})
        client = make_client(factory, max_reconnects=2)
        try:
            with pytest.raises(WebSocketConnectionError):
                list(client.stream(timeout=5))
        finally:
            client.close()
        assert len(factory.apps) == 3

    def test_no_reconnect_ends_stream(self):
        factory = ScriptedFactory({"frames": [book()], "hold": False})
        client = make_client(factory, reconnect=False)
        try:
            messages = list(client.stream(timeout=5))
        finally:
            client.close()
        assert len(messages) == 1
        assert len(factory.apps) == 1

    def test_closed_client_cannot_reconnect(self):
        client = make_client(ScriptedFactory())
        client.close()
        assert client.closed
        with pytest.raises(WebSocketError):
            client.connect()
