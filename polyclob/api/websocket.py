"""
Channel client for real-time market and user updates.

One WebSocketApp runs in a background thread and feeds a bounded queue;
the consumer iterates decoded messages from the queue. When the consumer
falls behind, the reader thread blocks on the full queue, so nothing is
dropped and memory stays bounded.
"""

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Collection, Iterator, Optional, Sequence, Tuple
import logging

import orjson
import websocket  # websocket-client library

from .messages import ChannelMessage, MessageKind, parse_frame
from ..auth.credentials import ApiCredentials
from ..exceptions import ConfigurationError, WebSocketConnectionError, WebSocketError
from ..metrics import Metrics

logger = logging.getLogger(__name__)

PING_FRAME = "PING"

# Poll interval for blocking queue operations, bounds shutdown latency
_POLL = 0.1


class ChannelKind(str, Enum):
    """WebSocket channel types."""
    MARKET = "market"
    USER = "user"


@dataclass(frozen=True)
class ChannelSubscription:
    """
    What one connection subscribes to.

    Market subscriptions list asset (token) ids; user subscriptions list
    condition ids and carry L2 credentials.
    """
    kind: ChannelKind
    subjects: Tuple[str, ...]
    credentials: Optional[ApiCredentials] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "subjects", tuple(self.subjects))
        if self.kind == ChannelKind.USER and self.credentials is None:
            raise ConfigurationError("User channel requires API credentials")
        if self.kind == ChannelKind.MARKET and not self.subjects:
            raise ConfigurationError("Market channel requires at least one asset id")

    def to_frame(self) -> dict:
        """Subscription frame sent right after connecting."""
        if self.kind == ChannelKind.MARKET:
            return {"assets_ids": list(self.subjects), "type": self.kind.value}
        return {
            "markets": list(self.subjects),
            "type": self.kind.value,
            "auth": self.credentials.to_ws_auth(),
        }

    def __repr__(self) -> str:
        auth = ", auth=[REDACTED]" if self.credentials is not None else ""
        return f"ChannelSubscription(kind={self.kind.value}, subjects={list(self.subjects)}{auth})"


class _EndOfStream:
    pass


_END = _EndOfStream()


class ChannelClient:
    """
    WebSocket client for one channel subscription.

    Provides:
    - Subscription on every (re)connect
    - PING keepalive
    - Automatic reconnection with the same subscription
    - Bounded, blocking message buffer

    Example:
        >>> with ChannelClient(ChannelSubscription(ChannelKind.MARKET, ("123",)), ws_url) as ch:
        ...     for msg in ch.stream(kinds={MessageKind.BOOK}, max_messages=10):
        ...         print(msg)
    """

    def __init__(
        self,
        subscription: ChannelSubscription,
        ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws",
        buffer_size: int = 1000,
        reconnect: bool = True,
        reconnect_delay: float = 5.0,
        max_reconnects: int = 10,
        ping_interval: float = 10.0,
        metrics: Optional[Metrics] = None,
        app_factory: Callable[..., Any] = websocket.WebSocketApp
    ):
        """
        Initialize channel client.

        Args:
            subscription: Channel and subjects to subscribe to
            ws_url: WebSocket base URL (channel kind is appended)
            buffer_size: Max undelivered messages before the reader blocks
            reconnect: Reconnect and resubscribe when the connection drops
            reconnect_delay: Delay between reconnects
            max_reconnects: Max consecutive reconnect attempts
            ping_interval: Seconds between PING frames
            metrics: Optional metrics collector
            app_factory: WebSocketApp constructor (injectable for tests)
        """
        self.subscription = subscription
        self.url = f"{ws_url.rstrip('/')}/{subscription.kind.value}"
        self.reconnect = reconnect
        self.reconnect_delay = reconnect_delay
        self.max_reconnects = max_reconnects
        self.ping_interval = ping_interval
        self.metrics = metrics
        self._app_factory = app_factory

        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=buffer_size)
        self._stop = threading.Event()
        self._lock = threading.RLock()
        self._app = None
        self._thread: Optional[threading.Thread] = None
        self._ping_stop: Optional[threading.Event] = None
        self._last_error: Optional[Exception] = None
        self._reconnect_count = 0
        self.connections = 0

    # ========== Lifecycle ==========

    def connect(self) -> "ChannelClient":
        """Start the reader thread. Idempotent."""
        with self._lock:
            if self._stop.is_set():
                raise WebSocketError("Channel client is closed; create a new one to reconnect")
            if self._thread is not None:
                return self
            self._thread = threading.Thread(
                target=self._run,
                name=f"polyclob-{self.subscription.kind.value}-channel",
                daemon=True
            )
            self._thread.start()
        logger.info(f"Connecting to {self.url}")
        return self

    def close(self, timeout: float = 5.0) -> None:
        """Stop the reader thread and release the socket."""
        self._stop.set()
        with self._lock:
            app = self._app
            thread = self._thread
        self._stop_ping()
        if app is not None:
            try:
                app.close()
            except Exception as e:
                logger.debug(f"Error closing socket: {type(e).__name__}: {e}")
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info(f"Channel {self.subscription.kind.value} closed")

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def __enter__(self) -> "ChannelClient":
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ========== Reader thread ==========

    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                app = self._app_factory(
                    self.url,
                    on_open=self._on_open,
                    on_message=self._on_message,
                    on_error=self._on_error,
                    on_close=self._on_close,
                )
                with self._lock:
                    self._app = app
                app.run_forever()
                self._stop_ping()

                if self._stop.is_set():
                    break
                if not self.reconnect or self._reconnect_count >= self.max_reconnects:
                    if self._last_error is not None:
                        self._put(WebSocketConnectionError(
                            f"Channel {self.subscription.kind.value} lost: {self._last_error}",
                            {"url": self.url, "reconnects": self._reconnect_count}
                        ))
                    break

                self._reconnect_count += 1
                logger.info(
                    f"Reconnecting in {self.reconnect_delay}s "
                    f"(attempt {self._reconnect_count}/{self.max_reconnects})"
                )
                if self._stop.wait(self.reconnect_delay):
                    break
        finally:
            self._put(_END)

    def _on_open(self, ws) -> None:
        """Send the subscription on every connect, including reconnects."""
        self.connections += 1
        self._reconnect_count = 0
        self._last_error = None
        ws.send(orjson.dumps(self.subscription.to_frame()).decode("utf-8"))
        logger.info(
            f"Subscribed to {self.subscription.kind.value} channel "
            f"({len(self.subscription.subjects)} subjects, connection {self.connections})"
        )
        self._start_ping(ws)

    def _on_message(self, ws, frame) -> None:
        for message in parse_frame(frame):
            if self.metrics:
                self.metrics.track_channel_message(self.subscription.kind.value, message.kind.value)
            if not self._put(message):
                return

    def _on_error(self, ws, error) -> None:
        self._last_error = error if isinstance(error, Exception) else WebSocketError(str(error))
        logger.error(f"WebSocket error on {self.subscription.kind.value} channel: {error}")

    def _on_close(self, ws, close_status_code=None, close_msg=None) -> None:
        logger.info(f"WebSocket closed: {close_status_code} - {close_msg}")

    def _put(self, item: Any) -> bool:
        """Blocking put that gives up only when the client is closed."""
        while True:
            try:
                self._queue.put(item, timeout=_POLL)
                return True
            except queue.Full:
                if self._stop.is_set():
                    return False

    def _start_ping(self, ws) -> None:
        self._stop_ping()
        stop = threading.Event()
        self._ping_stop = stop

        def ping_loop():
            while not stop.wait(self.ping_interval) and not self._stop.is_set():
                try:
                    ws.send(PING_FRAME)
                except Exception as e:
                    logger.warning(f"Ping failed: {type(e).__name__}: {e}")
                    return

        threading.Thread(target=ping_loop, name="polyclob-channel-ping", daemon=True).start()

    def _stop_ping(self) -> None:
        if self._ping_stop is not None:
            self._ping_stop.set()
            self._ping_stop = None

    # ========== Consumer side ==========

    def stream(
        self,
        kinds: Optional[Collection[MessageKind]] = None,
        max_messages: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> Iterator[ChannelMessage]:
        """
        Iterate messages in arrival order.

        Reaching ``max_messages`` or ``timeout`` ends iteration normally.
        Connects if not yet connected.

        Args:
            kinds: Only yield these message kinds
            max_messages: Stop after this many yielded messages
            timeout: Stop after this many seconds

        Raises:
            WebSocketConnectionError: If the connection is lost for good
        """
        self.connect()
        wanted = set(kinds) if kinds else None
        deadline = time.monotonic() + timeout if timeout is not None else None
        delivered = 0

        while max_messages is None or delivered < max_messages:
            wait = _POLL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return
                wait = min(wait, remaining)
            try:
                item = self._queue.get(timeout=wait)
            except queue.Empty:
                if self._stop.is_set():
                    return
                continue

            if item is _END:
                return
            if isinstance(item, WebSocketError):
                raise item
            if wanted is not None and item.kind not in wanted:
                continue
            delivered += 1
            yield item

    def __iter__(self) -> Iterator[ChannelMessage]:
        return self.stream()


def market_subscription(asset_ids: Sequence[str]) -> ChannelSubscription:
    return ChannelSubscription(ChannelKind.MARKET, tuple(asset_ids))


def user_subscription(condition_ids: Sequence[str], credentials: ApiCredentials) -> ChannelSubscription:
    return ChannelSubscription(ChannelKind.USER, tuple(condition_ids), credentials)
