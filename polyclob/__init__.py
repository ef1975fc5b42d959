"""
polyclob - Polymarket CLOB client library

Thread-safe client for the Polymarket order book: quota-aware request
execution, L1/L2 request signing, order building, real-time channels and
gasless relaying through proxy wallets.
"""

from .client import PolyClobClient
from .config import ClientSettings, RetryQuotaConfig, get_contract_config
from .logging_config import setup_logging
from .auth import ApiCredentials, BuilderCredentials
from .models import (
    Side,
    OrderType,
    SignatureType,
    MarketMetadata,
    OrderBookSummary,
    OrderResponse,
    OpenOrder,
)
from .trading import (
    MarketOrderArgs,
    OrderArgs,
    OrderState,
    OrderTicket,
    SignedOrder,
)
from .exceptions import (
    PolyClobError,
    ConfigurationError,
    NetworkError,
    TimeoutError,
    DeadlineExceededError,
    APIError,
    AuthenticationError,
    ValidationError,
    TickSizeError,
    RateLimitError,
    QuotaExhaustedError,
    SerializationError,
    TradingError,
    OrderRejectedError,
    WebSocketError,
    WebSocketConnectionError,
    RelayError,
)

__version__ = "0.1.0"

__all__ = [
    # Main client
    "PolyClobClient",

    # Configuration
    "ClientSettings",
    "RetryQuotaConfig",
    "get_contract_config",
    "setup_logging",
    "ApiCredentials",
    "BuilderCredentials",

    # Types
    "Side",
    "OrderType",
    "SignatureType",
    "MarketMetadata",
    "OrderBookSummary",
    "OrderResponse",
    "OpenOrder",
    "MarketOrderArgs",
    "OrderArgs",
    "OrderState",
    "OrderTicket",
    "SignedOrder",

    # Exceptions
    "PolyClobError",
    "ConfigurationError",
    "NetworkError",
    "TimeoutError",
    "DeadlineExceededError",
    "APIError",
    "AuthenticationError",
    "ValidationError",
    "TickSizeError",
    "RateLimitError",
    "QuotaExhaustedError",
    "SerializationError",
    "TradingError",
    "OrderRejectedError",
    "WebSocketError",
    "WebSocketConnectionError",
    "RelayError",
]
