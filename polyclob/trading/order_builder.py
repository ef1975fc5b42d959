"""
Order builder with EIP-712 signing.

Validates price and size against market metadata with exact Decimal
arithmetic, resolves the maker, assembles the canonical order struct and
signs it. Nothing here touches the network except the metadata and
proxy-wallet lookups, which are injected.
"""

import secrets
import threading
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union
import logging

from ..auth.credentials import SigningDomain, normalize_address
from ..auth.signer import L1Signer
from ..config import ContractConfig
from ..exceptions import ConfigurationError, TickSizeError, TradingError, ValidationError
from ..models import BookLevel, MarketMetadata, OrderType, Side, SignatureType
from ..utils.numeric import (
    TOKEN_DECIMALS,
    WIDE,
    decimal_places,
    is_multiple_of,
    multiply,
    round_down,
    to_base_units,
    to_decimal,
)

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Salts are sent as JSON numbers; keep them inside the exactly representable range
SALT_BITS = 53

Number = Union[str, int, float, Decimal]


class MarketMetadataProvider(Protocol):
    """Read-only lookup of per-market trading constraints."""

    def get(self, token_id: str) -> MarketMetadata:
        ...


class ProxyWalletResolver(Protocol):
    """Looks up the proxy wallet registered for a signer address."""

    def get_proxy_wallet(self, address: str) -> Optional[str]:
        ...


class OrderState(str, Enum):
    """Order lifecycle."""
    BUILT = "built"
    VALIDATED = "validated"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    OrderState.BUILT: {OrderState.VALIDATED},
    OrderState.VALIDATED: {OrderState.SIGNED},
    OrderState.SIGNED: {OrderState.SUBMITTED},
    OrderState.SUBMITTED: {OrderState.ACCEPTED, OrderState.REJECTED},
    OrderState.ACCEPTED: {OrderState.CANCELLED},
    OrderState.REJECTED: set(),
    OrderState.CANCELLED: set(),
}


@dataclass
class OrderArgs:
    """
    Limit order parameters.

    ``price`` and ``size`` accept str, int, Decimal or float; floats are read
    through their shortest repr, never through binary arithmetic.
    """
    token_id: str
    price: Number
    size: Number
    side: Side
    order_type: OrderType = OrderType.GTC
    expiration: int = 0  # Unix seconds, GTD only
    nonce: int = 0
    fee_rate_bps: Optional[int] = None
    funder: Optional[str] = None


@dataclass
class MarketOrderArgs:
    """
    Market order parameters.

    ``amount`` is collateral to spend for BUY and shares to sell for SELL.
    Without ``price`` the worst price needed to fill is taken from the book.
    """
    token_id: str
    amount: Number
    side: Side
    price: Optional[Number] = None
    order_type: OrderType = OrderType.FOK
    nonce: int = 0
    fee_rate_bps: Optional[int] = None
    funder: Optional[str] = None


@dataclass(frozen=True)
class SignedOrder:
    """
    Final order struct plus its L1 signature and EIP-712 hash.

    ``message`` holds the exact fields that were signed; nothing about the
    order can change after signing without invalidating ``signature``.
    """
    message: Dict[str, Any]
    signature: str
    order_hash: str
    order_type: OrderType
    domain: SigningDomain

    @property
    def side(self) -> Side:
        return Side.BUY if int(self.message["side"]) == 0 else Side.SELL

    @property
    def token_id(self) -> str:
        return str(self.message["tokenId"])

    def to_dict(self) -> Dict[str, Any]:
        """Order as sent in the ``POST /order`` body."""
        m = self.message
        return {
            "salt": int(m["salt"]),
            "maker": m["maker"],
            "signer": m["signer"],
            "taker": m["taker"],
            "tokenId": str(m["tokenId"]),
            "makerAmount": str(m["makerAmount"]),
            "takerAmount": str(m["takerAmount"]),
            "expiration": str(m["expiration"]),
            "nonce": str(m["nonce"]),
            "feeRateBps": str(m["feeRateBps"]),
            "side": self.side.value,
            "signatureType": int(m["signatureType"]),
            "signature": self.signature,
        }

    def verify(self, signer: L1Signer) -> bool:
        return signer.verify_order(self.message, self.signature, self.domain)


class OrderTicket:
    """
    Tracks one order through its lifecycle.

    Cancellation is a later, independent request that moves an accepted
    ticket to CANCELLED; the signed order itself never changes.
    """

    def __init__(self, token_id: str):
        self.token_id = token_id
        self.state = OrderState.BUILT
        self.history: List[OrderState] = [OrderState.BUILT]
        self.signed_order: Optional[SignedOrder] = None
        self.order_id: Optional[str] = None
        self.reason: Optional[str] = None
        self._lock = threading.Lock()

    def advance(self, new_state: OrderState) -> None:
        """
        Move to ``new_state``.

        Raises:
            TradingError: If the transition is not allowed
        """
        with self._lock:
            if new_state not in _TRANSITIONS[self.state]:
                raise TradingError(
                    f"Illegal order transition {self.state.value} -> {new_state.value}",
                    {"token_id": self.token_id, "order_id": self.order_id}
                )
            self.state = new_state
            self.history.append(new_state)
        logger.debug(f"Order {self.order_id or self.token_id}: {new_state.value}")

    def __repr__(self) -> str:
        return f"OrderTicket(token_id={self.token_id}, state={self.state.value}, order_id={self.order_id})"


def calculate_market_price(
    levels: Iterable[BookLevel],
    amount: Decimal,
    side: Side,
    order_type: OrderType = OrderType.FOK
) -> Decimal:
    """
    Worst price needed to fill ``amount`` by walking the book from the top.

    BUY walks asks accumulating collateral (price * size); SELL walks bids
    accumulating shares.

    Raises:
        ValidationError: If the book cannot fill a FOK order, or is empty
    """
    if side == Side.BUY:
        ordered = sorted(levels, key=lambda level: level.price)
    else:
        ordered = sorted(levels, key=lambda level: level.price, reverse=True)
    if not ordered:
        raise ValidationError("No liquidity on the opposite side of the book")

    total = Decimal("0")
    for level in ordered:
        total += level.size * level.price if side == Side.BUY else level.size
        if total >= amount:
            return level.price

    if order_type == OrderType.FOK:
        raise ValidationError(
            f"Insufficient liquidity to fill {amount} (available {total})",
            {"amount": str(amount), "available": str(total)}
        )
    return ordered[-1].price


class OrderBuilder:
    """
    Builds and signs orders for the CLOB.

    Handles:
    - Price and size validation against market metadata
    - Maker resolution (funder, proxy wallet or signer)
    - Amount conversion to 6-decimal base units
    - EIP-712 signing bound to the right exchange contract
    """

    def __init__(
        self,
        signer: L1Signer,
        contracts: ContractConfig,
        metadata: MarketMetadataProvider,
        signature_type: SignatureType = SignatureType.EOA,
        funder: Optional[str] = None,
        proxy_resolver: Optional[ProxyWalletResolver] = None
    ):
        """
        Initialize order builder.

        Args:
            signer: L1 signer holding the wallet key
            contracts: Exchange addresses for the chain
            metadata: Market metadata provider
            signature_type: EOA or one of the proxy wallet types
            funder: Address holding the funds, if not the signer
            proxy_resolver: Proxy wallet lookup for proxy signature types
        """
        self.signer = signer
        self.contracts = contracts
        self.metadata = metadata
        self.signature_type = signature_type
        self.funder = normalize_address(funder, "funder")
        self.proxy_resolver = proxy_resolver
        self._proxy_wallet: Optional[str] = None
        self._proxy_lock = threading.Lock()

    def domain_for(self, neg_risk: bool) -> SigningDomain:
        """Signing domain for the exchange the market settles on."""
        contract = self.contracts.neg_risk_exchange if neg_risk else self.contracts.exchange
        return SigningDomain(self.contracts.chain_id, contract)

    def resolve_maker(self, funder: Optional[str] = None) -> str:
        """
        Address the order trades from.

        Explicit funder (per order, then per builder) wins; proxy signature
        types fall back to the registered proxy wallet; EOA uses the signer.
        """
        explicit = normalize_address(funder, "funder") or self.funder
        if explicit:
            return explicit
        if not self.signature_type.is_proxy:
            return self.signer.address

        with self._proxy_lock:
            if self._proxy_wallet is None:
                if self.proxy_resolver is None:
                    raise ConfigurationError(
                        f"{self.signature_type.name} orders need a funder or a proxy wallet lookup"
                    )
                proxy = self.proxy_resolver.get_proxy_wallet(self.signer.address)
                if not proxy:
                    raise ConfigurationError(
                        f"No proxy wallet registered for {self.signer.address}"
                    )
                self._proxy_wallet = proxy
                logger.info(f"Resolved proxy wallet {proxy} for {self.signer.address}")
            return self._proxy_wallet

    # ========== Validation ==========

    @staticmethod
    def check_price(price: Number) -> Decimal:
        """Finite price strictly inside (0, 1); needs no market metadata."""
        value = to_decimal(price, "price")
        if value <= 0 or value >= 1:
            raise ValidationError(
                f"Price must be strictly between 0 and 1, got {value}",
                {"price": str(value)}
            )
        return value

    @staticmethod
    def check_positive(amount: Number, field_name: str = "size") -> Decimal:
        value = to_decimal(amount, field_name)
        if value <= 0:
            raise ValidationError(f"{field_name} must be positive, got {value}", {field_name: str(value)})
        return value

    @staticmethod
    def check_token_id(token_id: str) -> None:
        if not token_id or not str(token_id).isdigit():
            raise ValidationError(f"Invalid token id: {token_id!r}")

    def check_order_args(self, args: OrderArgs) -> None:
        """
        Checks that need no market metadata, run before anything is fetched.

        Tick alignment, minimum size and size precision depend on the market
        and are checked once metadata is known.
        """
        self.check_token_id(args.token_id)
        self.check_price(args.price)
        self.check_positive(args.size, "size")
        self._validate_expiration(args.order_type, args.expiration)

    def check_market_args(self, args: MarketOrderArgs) -> None:
        """Metadata-free checks for a market order, run before the book is fetched."""
        if args.order_type not in (OrderType.FOK, OrderType.FAK):
            raise ValidationError(f"Market orders must be FOK or FAK, got {args.order_type.value}")
        self.check_token_id(args.token_id)
        self.check_positive(args.amount, "amount")
        if args.price is not None:
            self.check_price(args.price)

    def validate_price(self, price: Number, metadata: MarketMetadata) -> Decimal:
        """
        Validate a price against the market.

        Raises:
            ValidationError: If non-finite or outside (0, 1)
            TickSizeError: If not a multiple of the tick size
        """
        value = self.check_price(price)
        if not is_multiple_of(value, metadata.tick_size):
            raise TickSizeError(
                f"Price {value} is not a multiple of tick size {metadata.tick_size}",
                price=str(value),
                tick_size=str(metadata.tick_size)
            )
        return value

    def validate_size(self, size: Number, metadata: MarketMetadata, field_name: str = "size") -> Decimal:
        """
        Validate a share size against the market.

        Raises:
            ValidationError: If non-positive, below the market minimum or
                more precise than the market accepts
        """
        value = self.check_positive(size, field_name)
        if decimal_places(value) > metadata.size_decimals:
            raise ValidationError(
                f"{field_name} {value} has more than {metadata.size_decimals} decimal places",
                {field_name: str(value), "max_decimals": metadata.size_decimals}
            )
        if value < metadata.min_size:
            raise ValidationError(
                f"{field_name} {value} is below the market minimum {metadata.min_size}",
                {field_name: str(value), "min_size": str(metadata.min_size)}
            )
        return value

    @staticmethod
    def _validate_expiration(order_type: OrderType, expiration: int) -> None:
        if order_type == OrderType.GTD:
            if expiration <= 0:
                raise ValidationError("GTD orders need a positive expiration")
        elif expiration:
            raise ValidationError(f"Only GTD orders may expire, got {order_type.value}")

    @staticmethod
    def _resolve_fee(requested: Optional[int], metadata: MarketMetadata) -> int:
        if requested is None:
            return metadata.fee_rate_bps
        if requested < 0:
            raise ValidationError(f"Fee rate must be non-negative, got {requested}")
        if metadata.fee_rate_bps > 0 and requested != metadata.fee_rate_bps:
            raise ValidationError(
                f"Fee rate {requested} does not match market fee rate {metadata.fee_rate_bps}"
            )
        return requested

    # ========== Construction ==========

    @staticmethod
    def generate_salt() -> int:
        """Fresh random salt for order uniqueness."""
        return secrets.randbits(SALT_BITS)

    def _advance(self, ticket: Optional[OrderTicket], state: OrderState) -> None:
        if ticket is not None:
            ticket.advance(state)

    def _sign(
        self,
        token_id: str,
        side: Side,
        maker_amount: int,
        taker_amount: int,
        metadata: MarketMetadata,
        fee_rate_bps: int,
        nonce: int,
        expiration: int,
        order_type: OrderType,
        funder: Optional[str]
    ):
        maker = self.resolve_maker(funder)
        message = {
            "salt": self.generate_salt(),
            "maker": maker,
            "signer": self.signer.address,
            "taker": ZERO_ADDRESS,
            "tokenId": int(token_id),
            "makerAmount": maker_amount,
            "takerAmount": taker_amount,
            "expiration": expiration,
            "nonce": nonce,
            "feeRateBps": fee_rate_bps,
            "side": side.eip712_value,
            "signatureType": int(self.signature_type),
        }
        domain = self.domain_for(metadata.neg_risk)
        signature = self.signer.sign_order(message, domain)
        return SignedOrder(
            message=message,
            signature=signature.signature,
            order_hash=signature.order_hash,
            order_type=order_type,
            domain=domain,
        )

    def _metadata(self, token_id: str, metadata: Optional[MarketMetadata]) -> MarketMetadata:
        return metadata if metadata is not None else self.metadata.get(token_id)

    def create_order(
        self,
        args: OrderArgs,
        metadata: Optional[MarketMetadata] = None,
        ticket: Optional[OrderTicket] = None
    ) -> SignedOrder:
        """
        Validate and sign a limit order.

        Args:
            args: Order parameters
            metadata: Market metadata (fetched from the provider if None)
            ticket: Optional ticket advanced to VALIDATED then SIGNED

        Returns:
            SignedOrder ready for submission

        Raises:
            ValidationError: If any parameter is invalid (before any signing)
            AuthenticationError: If signing fails
        """
        self.check_order_args(args)
        metadata = self._metadata(args.token_id, metadata)
        price = self.validate_price(args.price, metadata)
        size = self.validate_size(args.size, metadata)
        fee_rate_bps = self._resolve_fee(args.fee_rate_bps, metadata)
        self._advance(ticket, OrderState.VALIDATED)

        # Exact: price has at most 4 and size at most 6 fractional digits
        shares = to_base_units(size, TOKEN_DECIMALS)
        collateral = to_base_units(multiply(price, size), TOKEN_DECIMALS)
        if args.side == Side.BUY:
            maker_amount, taker_amount = collateral, shares
        else:
            maker_amount, taker_amount = shares, collateral

        signed = self._sign(
            args.token_id, args.side, maker_amount, taker_amount, metadata,
            fee_rate_bps, args.nonce, args.expiration, args.order_type, args.funder
        )
        self._advance(ticket, OrderState.SIGNED)
        if ticket is not None:
            ticket.signed_order = signed
        logger.info(
            f"Built order: {args.side.value} {size} @ {price} "
            f"(token={args.token_id}, hash={signed.order_hash})"
        )
        return signed

    def create_market_order(
        self,
        args: MarketOrderArgs,
        levels: Optional[Iterable[BookLevel]] = None,
        metadata: Optional[MarketMetadata] = None,
        ticket: Optional[OrderTicket] = None
    ) -> SignedOrder:
        """
        Validate and sign a market order.

        Args:
            args: Order parameters
            levels: Opposite side of the book, required when ``args.price`` is None
            metadata: Market metadata (fetched from the provider if None)
            ticket: Optional ticket advanced to VALIDATED then SIGNED

        Returns:
            SignedOrder ready for submission
        """
        self.check_market_args(args)
        if args.price is None and levels is None:
            raise ValidationError("Market order without a price needs the order book")
        metadata = self._metadata(args.token_id, metadata)
        amount = to_decimal(args.amount, "amount")

        if args.price is not None:
            price = self.validate_price(args.price, metadata)
        else:
            price = self.validate_price(
                calculate_market_price(levels, amount, args.side, args.order_type), metadata
            )
        fee_rate_bps = self._resolve_fee(args.fee_rate_bps, metadata)

        price_places = decimal_places(metadata.tick_size)
        if args.side == Side.BUY:
            # Collateral in, shares out; the quotient is truncated so the
            # order never asks for more than the collateral buys
            if decimal_places(amount) > metadata.size_decimals:
                raise ValidationError(
                    f"amount {amount} has more than {metadata.size_decimals} decimal places"
                )
            shares = round_down(
                WIDE.divide(amount, price), min(price_places + metadata.size_decimals, TOKEN_DECIMALS)
            )
            if shares <= 0:
                raise ValidationError(f"amount {amount} buys no shares at {price}")
            if shares < metadata.min_size:
                raise ValidationError(
                    f"amount {amount} buys {shares} shares at {price}, "
                    f"below the market minimum {metadata.min_size}",
                    {"amount": str(amount), "shares": str(shares), "min_size": str(metadata.min_size)}
                )
            maker_amount = to_base_units(amount)
            taker_amount = to_base_units(shares)
        else:
            shares = self.validate_size(amount, metadata, "amount")
            maker_amount = to_base_units(shares)
            taker_amount = to_base_units(multiply(price, shares))
        self._advance(ticket, OrderState.VALIDATED)

        signed = self._sign(
            args.token_id, args.side, maker_amount, taker_amount, metadata,
            fee_rate_bps, args.nonce, 0, args.order_type, args.funder
        )
        self._advance(ticket, OrderState.SIGNED)
        if ticket is not None:
            ticket.signed_order = signed
        logger.info(
            f"Built market order: {args.side.value} {amount} @ <= {price} "
            f"(token={args.token_id}, hash={signed.order_hash})"
        )
        return signed
