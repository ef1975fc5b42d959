"""
Type definitions for the polyclob client.

Uses Pydantic for runtime validation of response bodies.
DECIMAL PRECISION: prices and sizes are Decimal end to end.
"""

from enum import Enum
from typing import Optional, Any
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator, ConfigDict


class Side(str, Enum):
    """Order side."""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def eip712_value(self) -> int:
        """Side as encoded in the signed order struct."""
        return 0 if self is Side.BUY else 1


class OrderType(str, Enum):
    """Order type."""
    GTC = "GTC"  # Good-til-cancelled
    GTD = "GTD"  # Good-til-date
    FOK = "FOK"  # Fill-or-kill
    FAK = "FAK"  # Fill-and-kill


class SignatureType(int, Enum):
    """Wallet signature type."""
    EOA = 0  # Externally Owned Account
    POLY_PROXY = 1  # Polymarket proxy wallet (email / Magic login)
    POLY_GNOSIS_SAFE = 2  # Gnosis Safe proxy (browser wallet login)

    @property
    def is_proxy(self) -> bool:
        return self is not SignatureType.EOA


# Tick sizes the exchange currently publishes
VALID_TICK_SIZES = (Decimal("0.1"), Decimal("0.01"), Decimal("0.001"), Decimal("0.0001"))


def _decimal(v: Any) -> Any:
    if isinstance(v, float):
        return Decimal(repr(v))
    if isinstance(v, (int, str)) and not isinstance(v, bool):
        return Decimal(v)
    return v


class MarketMetadata(BaseModel):
    """Per-market trading constraints fetched from the exchange."""
    model_config = ConfigDict(frozen=True)

    tick_size: Decimal = Field(..., gt=0)
    min_size: Decimal = Field(default=Decimal("0"), ge=0)
    neg_risk: bool = False
    fee_rate_bps: int = Field(default=0, ge=0)
    # Fractional digits the exchange accepts for share sizes
    size_decimals: int = Field(default=2, ge=0, le=6)

    @field_validator("tick_size", "min_size", mode="before")
    @classmethod
    def validate_decimal(cls, v: Any) -> Any:
        """Convert to Decimal without float arithmetic."""
        return _decimal(v)


# Response Models
class TickSizeResponse(BaseModel):
    minimum_tick_size: Decimal

    @field_validator("minimum_tick_size", mode="before")
    @classmethod
    def validate_tick(cls, v: Any) -> Any:
        return _decimal(v)


class NegRiskResponse(BaseModel):
    neg_risk: bool


class FeeRateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fee_rate_bps: int = Field(..., alias="base_fee")


class BookLevel(BaseModel):
    price: Decimal
    size: Decimal

    @field_validator("price", "size", mode="before")
    @classmethod
    def validate_decimal(cls, v: Any) -> Any:
        return _decimal(v)


class OrderBookSummary(BaseModel):
    """Order book for a token as returned by ``GET /book``."""
    model_config = ConfigDict(extra="ignore")

    market: Optional[str] = None
    asset_id: str
    bids: list[BookLevel] = Field(default_factory=list)
    asks: list[BookLevel] = Field(default_factory=list)
    tick_size: Optional[Decimal] = None
    min_order_size: Optional[Decimal] = None
    neg_risk: Optional[bool] = None
    hash: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("tick_size", "min_order_size", mode="before")
    @classmethod
    def validate_decimal(cls, v: Any) -> Any:
        return _decimal(v)

    @property
    def best_bid(self) -> Optional[Decimal]:
        """Highest bid price."""
        return max((level.price for level in self.bids), default=None)

    @property
    def best_ask(self) -> Optional[Decimal]:
        """Lowest ask price."""
        return min((level.price for level in self.asks), default=None)


class OrderResponse(BaseModel):
    """Order placement response."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    success: bool = False
    error_msg: Optional[str] = Field(default=None, alias="errorMsg")
    order_id: Optional[str] = Field(default=None, alias="orderID")
    status: Optional[str] = None
    transaction_hashes: list[str] = Field(default_factory=list, alias="transactionsHashes")
    making_amount: Optional[str] = Field(default=None, alias="makingAmount")
    taking_amount: Optional[str] = Field(default=None, alias="takingAmount")

    @field_validator("transaction_hashes", mode="before")
    @classmethod
    def validate_hashes(cls, v: Any) -> Any:
        return v or []


class CancelResponse(BaseModel):
    """Cancellation response."""
    model_config = ConfigDict(extra="ignore")

    canceled: list[str] = Field(default_factory=list)
    not_canceled: dict[str, str] = Field(default_factory=dict)

    @field_validator("canceled", mode="before")
    @classmethod
    def validate_canceled(cls, v: Any) -> Any:
        return v or []

    @field_validator("not_canceled", mode="before")
    @classmethod
    def validate_not_canceled(cls, v: Any) -> Any:
        return v or {}


class OpenOrder(BaseModel):
    """Open order from ``GET /data/orders``."""
    model_config = ConfigDict(extra="ignore")

    id: str
    status: Optional[str] = None
    market: Optional[str] = None
    asset_id: Optional[str] = None
    side: Optional[Side] = None
    original_size: Optional[Decimal] = None
    size_matched: Optional[Decimal] = None
    price: Optional[Decimal] = None
    outcome: Optional[str] = None
    order_type: Optional[str] = None
    expiration: Optional[str] = None
    created_at: Optional[int] = None

    @field_validator("original_size", "size_matched", "price", mode="before")
    @classmethod
    def validate_decimal(cls, v: Any) -> Any:
        return _decimal(v)


class OrdersPage(BaseModel):
    """One cursor page of open orders."""
    data: list[OpenOrder] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    count: Optional[int] = None
    limit: Optional[int] = None


class ApiKeyResponse(BaseModel):
    """Credentials returned by the create/derive API key endpoints."""
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey")
    secret: str = Field(..., repr=False)
    passphrase: str = Field(..., repr=False)


class PublicProfile(BaseModel):
    """Subset of the Gamma public profile used for maker resolution."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    proxy_wallet: Optional[str] = Field(default=None, alias="proxyWallet")
    address: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None


# Relayer models
class WalletType(str, Enum):
    """Wallet kind the relayer executes through."""
    SAFE = "SAFE"
    PROXY = "PROXY"  # Auto-deployed on first transaction


class NonceResponse(BaseModel):
    nonce: int  # Served as either number or string


class RelayPayload(BaseModel):
    """Relay address and nonce for a proxy transaction."""
    address: str
    nonce: int


class DeployedResponse(BaseModel):
    deployed: bool


class RelayerTransactionResponse(BaseModel):
    """Relayer submission receipt."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transaction_id: str = Field(..., alias="transactionID")
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    state: Optional[str] = None


class TransactionStatusResponse(BaseModel):
    """Relayer transaction state."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    state: str
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    transaction_id: Optional[str] = Field(default=None, alias="transactionID")
