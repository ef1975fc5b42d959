"""
CLOB API client for trading operations.

Market metadata, order placement, cancellation, open order queries and
API key management, all sent through the shared request executor.
"""

from decimal import Decimal
from typing import Iterator, List, Optional
import logging

from .base import AuthLevel, QueryParams, RequestDescriptor, RequestExecutor
from ..auth.credentials import ApiCredentials
from ..exceptions import (
    APIError,
    AuthenticationError,
    OrderRejectedError,
    TickSizeError,
    ValidationError,
)
from ..metrics import Metrics
from ..models import (
    ApiKeyResponse,
    CancelResponse,
    FeeRateResponse,
    MarketMetadata,
    NegRiskResponse,
    OpenOrder,
    OrderBookSummary,
    OrderResponse,
    OrdersPage,
    OrderType,
    TickSizeResponse,
)
from ..trading.order_builder import SignedOrder
from ..utils.cache import TTLCache

logger = logging.getLogger(__name__)

# Pagination sentinels used by the CLOB cursor API
INITIAL_CURSOR = "MA=="
END_CURSOR = "LTE="


class ClobAPI:
    """
    CLOB API surface.

    Public market data needs no auth. Trading calls need L2 credentials,
    and order placement additionally carries the L1 signature in the body.
    Also serves as the market metadata provider for the order builder.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        metadata_ttl: float = 300.0,
        metrics: Optional[Metrics] = None
    ):
        """
        Initialize CLOB API client.

        Args:
            executor: Request executor bound to the CLOB base URL
            metadata_ttl: Seconds market metadata stays cached
            metrics: Optional metrics collector
        """
        self.executor = executor
        self.metrics = metrics
        self._metadata: TTLCache[MarketMetadata] = TTLCache(default_ttl=metadata_ttl)

    def _owner(self) -> str:
        signer = self.executor.l2_signer
        if signer is None:
            raise AuthenticationError("Trading requires API credentials")
        return signer.credentials.api_key

    # ========== Market Metadata (Read-Only) ==========

    def get_tick_size(self, token_id: str) -> Decimal:
        """
        Get minimum tick size for a token.

        Example:
            >>> clob.get_tick_size("123456")
            Decimal('0.01')
        """
        response: TickSizeResponse = self.executor.get(
            "/tick-size",
            QueryParams().add("token_id", token_id),
            response_type=TickSizeResponse
        )
        logger.debug(f"Tick size for {token_id}: {response.minimum_tick_size}")
        return response.minimum_tick_size

    def get_neg_risk(self, token_id: str) -> bool:
        """Check whether a token trades on the neg-risk exchange."""
        response: NegRiskResponse = self.executor.get(
            "/neg-risk",
            QueryParams().add("token_id", token_id),
            response_type=NegRiskResponse
        )
        return response.neg_risk

    def get_fee_rate_bps(self, token_id: str) -> int:
        """Base fee rate in basis points the order must commit to."""
        response: FeeRateResponse = self.executor.get(
            "/fee-rate",
            QueryParams().add("token_id", token_id),
            response_type=FeeRateResponse
        )
        return response.fee_rate_bps

    def get_order_book(self, token_id: str) -> OrderBookSummary:
        """Get the order book summary for a token."""
        return self.executor.get(
            "/book",
            QueryParams().add("token_id", token_id),
            response_type=OrderBookSummary
        )

    def get_market_metadata(self, token_id: str) -> MarketMetadata:
        """
        Tick size, minimum size, neg-risk flag and fee rate for a token.

        The order book carries the first three; the dedicated endpoints fill
        in whatever the book omits. Results are cached per token.
        """
        return self._metadata.get_or_fetch(token_id, lambda: self._fetch_metadata(token_id))

    def get(self, token_id: str) -> MarketMetadata:
        """Market metadata provider interface used by the order builder."""
        return self.get_market_metadata(token_id)

    def _fetch_metadata(self, token_id: str) -> MarketMetadata:
        book = self.get_order_book(token_id)
        tick_size = book.tick_size if book.tick_size is not None else self.get_tick_size(token_id)
        neg_risk = book.neg_risk if book.neg_risk is not None else self.get_neg_risk(token_id)
        metadata = MarketMetadata(
            tick_size=tick_size,
            min_size=book.min_order_size or Decimal("0"),
            neg_risk=neg_risk,
            fee_rate_bps=self.get_fee_rate_bps(token_id),
        )
        logger.debug(f"Market metadata for {token_id}: {metadata}")
        return metadata

    def invalidate_metadata(self, token_id: str) -> None:
        """Drop cached metadata, e.g. after a tick size change event."""
        self._metadata.delete(token_id)

    # ========== Trading (L2) ==========

    def post_order(
        self,
        signed_order: SignedOrder,
        order_type: Optional[OrderType] = None,
        post_only: bool = False
    ) -> OrderResponse:
        """
        Post a signed order to the exchange.

        Args:
            signed_order: Order signed by the L1 signer
            order_type: Overrides the order type the order was built with
            post_only: Reject instead of crossing the book (GTC/GTD only)

        Returns:
            Order response

        Raises:
            ValidationError: If post_only is combined with FOK/FAK
            TickSizeError: If the exchange rejects the price increment
            OrderRejectedError: If the exchange rejects the order
        """
        order_type = order_type or signed_order.order_type
        if post_only and order_type in (OrderType.FOK, OrderType.FAK):
            raise ValidationError(f"post_only is not allowed for {order_type.value} orders")

        body = {
            "order": signed_order.to_dict(),
            "owner": self._owner(),
            "orderType": order_type.value,
        }
        if post_only:
            body["postOnly"] = True

        try:
            response: OrderResponse = self.executor.send(RequestDescriptor(
                "POST", "/order", body=body, auth=AuthLevel.L1_L2, response_type=OrderResponse
            ))
        except ValidationError as e:
            if self.metrics:
                self.metrics.track_order(signed_order.side.value, "rejected")
            raise self._rejection(e.message, signed_order.order_hash) from e

        if not response.success and response.error_msg:
            if self.metrics:
                self.metrics.track_order(signed_order.side.value, "rejected")
            raise self._rejection(response.error_msg, signed_order.order_hash)

        if self.metrics:
            self.metrics.track_order(signed_order.side.value, response.status or "accepted")
        logger.info(f"Order placed: {response.order_id} ({response.status})")
        return response

    @staticmethod
    def _rejection(error_msg: str, order_hash: str) -> Exception:
        if "TICK_SIZE" in error_msg.upper():
            return TickSizeError(f"Order price violates minimum tick size: {error_msg}")
        return OrderRejectedError(
            f"Order rejected: {error_msg}",
            order_id=order_hash,
            reason=error_msg
        )

    def cancel_order(self, order_id: str) -> CancelResponse:
        """Cancel one order by id."""
        response: CancelResponse = self.executor.delete(
            "/order", {"orderID": order_id}, auth=AuthLevel.L2, response_type=CancelResponse
        )
        logger.info(f"Cancel {order_id}: canceled={response.canceled}")
        return response

    def cancel_orders(self, order_ids: List[str]) -> CancelResponse:
        """Cancel several orders in one request."""
        if not order_ids:
            return CancelResponse()
        response: CancelResponse = self.executor.delete(
            "/orders", list(order_ids), auth=AuthLevel.L2, response_type=CancelResponse
        )
        logger.info(f"Cancelled {len(response.canceled)}/{len(order_ids)} orders")
        return response

    def cancel_all(self) -> CancelResponse:
        """Cancel every open order of the API key owner."""
        response: CancelResponse = self.executor.delete(
            "/cancel-all", auth=AuthLevel.L2, response_type=CancelResponse
        )
        logger.info(f"Cancelled {len(response.canceled)} orders")
        return response

    def get_orders_page(
        self,
        market: Optional[str] = None,
        asset_id: Optional[str] = None,
        order_id: Optional[str] = None,
        next_cursor: str = INITIAL_CURSOR
    ) -> OrdersPage:
        """Fetch one page of open orders."""
        query = (
            QueryParams()
            .add_opt("id", order_id)
            .add_opt("market", market)
            .add_opt("asset_id", asset_id)
            .add("next_cursor", next_cursor)
        )
        return self.executor.get("/data/orders", query, auth=AuthLevel.L2, response_type=OrdersPage)

    def iter_orders(
        self,
        market: Optional[str] = None,
        asset_id: Optional[str] = None,
        order_id: Optional[str] = None
    ) -> Iterator[OpenOrder]:
        """Lazily walk every page of open orders."""
        cursor = INITIAL_CURSOR
        while True:
            page = self.get_orders_page(market, asset_id, order_id, cursor)
            yield from page.data
            if not page.next_cursor or page.next_cursor in (END_CURSOR, cursor):
                return
            cursor = page.next_cursor

    def get_orders(
        self,
        market: Optional[str] = None,
        asset_id: Optional[str] = None,
        order_id: Optional[str] = None
    ) -> List[OpenOrder]:
        """
        Get open orders, following pagination to the end.

        Args:
            market: Optional condition id filter
            asset_id: Optional token id filter
            order_id: Optional single order id

        Returns:
            List of open orders
        """
        orders = list(self.iter_orders(market, asset_id, order_id))
        logger.info(f"Fetched {len(orders)} open orders")
        return orders

    # ========== API Keys (L1) ==========

    def create_api_key(self, nonce: int = 0) -> ApiCredentials:
        """Create new API credentials for the signing wallet."""
        response: ApiKeyResponse = self.executor.send(RequestDescriptor(
            "POST", "/auth/api-key", auth=AuthLevel.L1, response_type=ApiKeyResponse, l1_nonce=nonce
        ))
        logger.info("Created API key")
        return ApiCredentials(response.api_key, response.secret, response.passphrase)

    def derive_api_key(self, nonce: int = 0) -> ApiCredentials:
        """Derive the existing API credentials for the signing wallet."""
        response: ApiKeyResponse = self.executor.send(RequestDescriptor(
            "GET", "/auth/derive-api-key", auth=AuthLevel.L1, response_type=ApiKeyResponse,
            l1_nonce=nonce
        ))
        logger.info("Derived API key")
        return ApiCredentials(response.api_key, response.secret, response.passphrase)

    def create_or_derive_api_key(self, nonce: int = 0) -> ApiCredentials:
        """Create credentials, or derive them if the wallet already has a key for ``nonce``."""
        try:
            return self.create_api_key(nonce)
        except (ValidationError, APIError) as e:
            logger.info(f"API key creation refused ({e.message}), deriving instead")
            return self.derive_api_key(nonce)
