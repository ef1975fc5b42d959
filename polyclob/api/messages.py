"""
Channel message types.

Every inbound frame decodes to one of the message classes below, keyed
by its ``event_type`` field. Anything unrecognized (or malformed)
becomes an UnknownMessage carrying the raw payload, so server-side
additions never break a running stream.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union
import logging

import orjson

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME = "PONG"


class MessageKind(str, Enum):
    """Discriminator values of channel messages."""
    BOOK = "book"
    PRICE_CHANGE = "price_change"
    LAST_TRADE_PRICE = "last_trade_price"
    TICK_SIZE_CHANGE = "tick_size_change"
    TRADE = "trade"
    ORDER = "order"
    HEARTBEAT = "heartbeat"
    UNKNOWN = "unknown"


def _dec(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class PriceLevel:
    price: Decimal
    size: Decimal

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceLevel":
        return cls(price=Decimal(str(data["price"])), size=Decimal(str(data["size"])))

    def to_dict(self) -> Dict[str, Any]:
        return {"price": str(self.price), "size": str(self.size)}


@dataclass(frozen=True)
class BookMessage:
    """Full order book snapshot for one asset."""
    kind: ClassVar[MessageKind] = MessageKind.BOOK

    asset_id: str
    market: Optional[str] = None
    bids: List[PriceLevel] = field(default_factory=list)
    asks: List[PriceLevel] = field(default_factory=list)
    timestamp: Optional[str] = None
    hash: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookMessage":
        # Older servers send buys/sells instead of bids/asks
        bids = data.get("bids", data.get("buys")) or []
        asks = data.get("asks", data.get("sells")) or []
        return cls(
            asset_id=data["asset_id"],
            market=data.get("market"),
            bids=[PriceLevel.from_dict(level) for level in bids],
            asks=[PriceLevel.from_dict(level) for level in asks],
            timestamp=data.get("timestamp"),
            hash=data.get("hash"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.kind.value,
            "asset_id": self.asset_id,
            "market": self.market,
            "bids": [level.to_dict() for level in self.bids],
            "asks": [level.to_dict() for level in self.asks],
            "timestamp": self.timestamp,
            "hash": self.hash,
        }


@dataclass(frozen=True)
class PriceChange:
    """One level update inside a price_change message."""
    asset_id: str
    price: Decimal
    size: Decimal
    side: str
    hash: Optional[str] = None
    best_bid: Optional[Decimal] = None
    best_ask: Optional[Decimal] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceChange":
        return cls(
            asset_id=data["asset_id"],
            price=Decimal(str(data["price"])),
            size=Decimal(str(data["size"])),
            side=data["side"],
            hash=data.get("hash"),
            best_bid=_dec(data.get("best_bid")),
            best_ask=_dec(data.get("best_ask")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "price": str(self.price),
            "size": str(self.size),
            "side": self.side,
            "hash": self.hash,
            "best_bid": _str(self.best_bid),
            "best_ask": _str(self.best_ask),
        }


@dataclass(frozen=True)
class PriceChangeMessage:
    """Incremental order book updates."""
    kind: ClassVar[MessageKind] = MessageKind.PRICE_CHANGE

    market: Optional[str] = None
    price_changes: List[PriceChange] = field(default_factory=list)
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceChangeMessage":
        return cls(
            market=data.get("market"),
            price_changes=[PriceChange.from_dict(c) for c in data.get("price_changes") or []],
            timestamp=data.get("timestamp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.kind.value,
            "market": self.market,
            "price_changes": [c.to_dict() for c in self.price_changes],
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class LastTradePriceMessage:
    """Price of the most recent match for an asset."""
    kind: ClassVar[MessageKind] = MessageKind.LAST_TRADE_PRICE

    asset_id: str
    price: Decimal
    market: Optional[str] = None
    side: Optional[str] = None
    size: Optional[Decimal] = None
    fee_rate_bps: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LastTradePriceMessage":
        return cls(
            asset_id=data["asset_id"],
            price=Decimal(str(data["price"])),
            market=data.get("market"),
            side=data.get("side"),
            size=_dec(data.get("size")),
            fee_rate_bps=data.get("fee_rate_bps"),
            timestamp=data.get("timestamp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.kind.value,
            "asset_id": self.asset_id,
            "price": str(self.price),
            "market": self.market,
            "side": self.side,
            "size": _str(self.size),
            "fee_rate_bps": self.fee_rate_bps,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TickSizeChangeMessage:
    """Market tick size changed; cached metadata is stale."""
    kind: ClassVar[MessageKind] = MessageKind.TICK_SIZE_CHANGE

    asset_id: str
    old_tick_size: Decimal
    new_tick_size: Decimal
    market: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TickSizeChangeMessage":
        return cls(
            asset_id=data["asset_id"],
            old_tick_size=Decimal(str(data["old_tick_size"])),
            new_tick_size=Decimal(str(data["new_tick_size"])),
            market=data.get("market"),
            timestamp=data.get("timestamp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.kind.value,
            "asset_id": self.asset_id,
            "old_tick_size": str(self.old_tick_size),
            "new_tick_size": str(self.new_tick_size),
            "market": self.market,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TradeMessage:
    """User channel: a trade involving one of the user's orders."""
    kind: ClassVar[MessageKind] = MessageKind.TRADE

    id: str
    asset_id: str
    market: Optional[str] = None
    side: Optional[str] = None
    price: Optional[Decimal] = None
    size: Optional[Decimal] = None
    status: Optional[str] = None
    outcome: Optional[str] = None
    taker_order_id: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeMessage":
        return cls(
            id=data["id"],
            asset_id=data["asset_id"],
            market=data.get("market"),
            side=data.get("side"),
            price=_dec(data.get("price")),
            size=_dec(data.get("size")),
            status=data.get("status"),
            outcome=data.get("outcome"),
            taker_order_id=data.get("taker_order_id"),
            timestamp=data.get("timestamp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.kind.value,
            "id": self.id,
            "asset_id": self.asset_id,
            "market": self.market,
            "side": self.side,
            "price": _str(self.price),
            "size": _str(self.size),
            "status": self.status,
            "outcome": self.outcome,
            "taker_order_id": self.taker_order_id,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class OrderMessage:
    """User channel: placement, update or cancellation of a user order."""
    kind: ClassVar[MessageKind] = MessageKind.ORDER

    id: str
    asset_id: str
    market: Optional[str] = None
    side: Optional[str] = None
    price: Optional[Decimal] = None
    original_size: Optional[Decimal] = None
    size_matched: Optional[Decimal] = None
    type: Optional[str] = None  # PLACEMENT, UPDATE, CANCELLATION
    outcome: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderMessage":
        return cls(
            id=data["id"],
            asset_id=data["asset_id"],
            market=data.get("market"),
            side=data.get("side"),
            price=_dec(data.get("price")),
            original_size=_dec(data.get("original_size")),
            size_matched=_dec(data.get("size_matched")),
            type=data.get("type"),
            outcome=data.get("outcome"),
            timestamp=data.get("timestamp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.kind.value,
            "id": self.id,
            "asset_id": self.asset_id,
            "market": self.market,
            "side": self.side,
            "price": _str(self.price),
            "original_size": _str(self.original_size),
            "size_matched": _str(self.size_matched),
            "type": self.type,
            "outcome": self.outcome,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class Heartbeat:
    """Keepalive reply to a PING."""
    kind: ClassVar[MessageKind] = MessageKind.HEARTBEAT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Heartbeat":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {"event_type": self.kind.value}


@dataclass(frozen=True)
class UnknownMessage:
    """Frame with a discriminator this client does not know."""
    kind: ClassVar[MessageKind] = MessageKind.UNKNOWN

    event_type: Optional[str]
    raw: Any

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.raw, dict):
            return dict(self.raw)
        return {"event_type": self.event_type, "raw": self.raw}


ChannelMessage = Union[
    BookMessage,
    PriceChangeMessage,
    LastTradePriceMessage,
    TickSizeChangeMessage,
    TradeMessage,
    OrderMessage,
    Heartbeat,
    UnknownMessage,
]

_REGISTRY = {
    cls.kind.value: cls
    for cls in (
        BookMessage,
        PriceChangeMessage,
        LastTradePriceMessage,
        TickSizeChangeMessage,
        TradeMessage,
        OrderMessage,
        Heartbeat,
    )
}


def decode_message(data: Any) -> ChannelMessage:
    """
    Decode one JSON object into a channel message.

    Never raises: unknown discriminators and malformed known messages both
    yield UnknownMessage.
    """
    if not isinstance(data, dict):
        return UnknownMessage(event_type=None, raw=data)
    event_type = data.get("event_type")
    cls = _REGISTRY.get(event_type) if isinstance(event_type, str) else None
    if cls is None:
        logger.debug(f"Unknown channel event_type: {event_type!r}")
        return UnknownMessage(event_type=event_type, raw=data)
    try:
        return cls.from_dict(data)
    except (KeyError, TypeError, ValueError, InvalidOperation) as e:
        logger.warning(f"Malformed {event_type} message: {type(e).__name__}: {e}")
        return UnknownMessage(event_type=event_type, raw=data)


def parse_frame(frame: Union[str, bytes]) -> List[ChannelMessage]:
    """
    Decode one text frame into zero or more messages.

    ``PONG`` is a heartbeat; JSON arrays carry one message per element.
    """
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8", errors="replace")
    text = frame.strip()
    if not text:
        return []
    if text == HEARTBEAT_FRAME:
        return [Heartbeat()]
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        logger.warning(f"Non-JSON channel frame: {text[:100]}")
        return [UnknownMessage(event_type=None, raw=text)]
    if isinstance(data, list):
        return [decode_message(item) for item in data]
    return [decode_message(data)]


def message_from_dict(data: Dict[str, Any]) -> ChannelMessage:
    """Inverse of ``to_dict`` for every message kind."""
    return decode_message(data)
