"""Order building and lifecycle tracking."""

from .order_builder import (
    MarketOrderArgs,
    OrderArgs,
    OrderBuilder,
    OrderState,
    OrderTicket,
    SignedOrder,
    calculate_market_price,
)

__all__ = [
    "MarketOrderArgs",
    "OrderArgs",
    "OrderBuilder",
    "OrderState",
    "OrderTicket",
    "SignedOrder",
    "calculate_market_price",
]
