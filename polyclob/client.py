"""
Main polyclob client.

Wires settings, signers, quota managers and executors into one object that
owns every resource it creates. Built in one step: either every component
is usable or construction raises ConfigurationError.
"""

from typing import Iterable, List, Optional, Sequence, Union
import logging

from .api.base import RequestExecutor, create_session
from .api.clob import ClobAPI
from .api.gamma import GammaAPI
from .api.websocket import ChannelClient, market_subscription, user_subscription
from .auth.credentials import ApiCredentials, BuilderCredentials
from .auth.signer import BuilderSigner, L1Signer, L2Signer
from .config import ClientSettings, ContractConfig, RetryQuotaConfig, get_contract_config
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    OrderRejectedError,
    PolyClobError,
    TickSizeError,
    TradingError,
)
from .metrics import Metrics
from .models import OpenOrder, Side, SignatureType
from .relay.client import RelayClient
from .relay.gas import Web3GasEstimator
from .trading.order_builder import (
    MarketOrderArgs,
    OrderArgs,
    OrderBuilder,
    OrderState,
    OrderTicket,
    SignedOrder,
)
from .utils.quota import (
    QuotaManager,
    clob_quota_table,
    gamma_quota_table,
    relay_quota_table,
)

logger = logging.getLogger(__name__)


class PolyClobClient:
    """
    Client for the CLOB, its metadata surfaces, channels and the relayer.

    Usage:
        with PolyClobClient.build(private_key=key, credentials=creds) as client:
            ticket = client.place_order(OrderArgs(token_id, "0.50", "10", Side.BUY))
            client.cancel_order(ticket)
    """

    def __init__(
        self,
        settings: ClientSettings,
        contracts: ContractConfig,
        retry_config: RetryQuotaConfig,
        metrics: Metrics,
        clob: ClobAPI,
        gamma: GammaAPI,
        order_builder: Optional[OrderBuilder] = None,
        relay_client: Optional[RelayClient] = None,
        credentials: Optional[ApiCredentials] = None,
        executors: Sequence[RequestExecutor] = ()
    ):
        self.settings = settings
        self.contracts = contracts
        self.retry_config = retry_config
        self.metrics = metrics
        self.clob = clob
        self.gamma = gamma
        self.order_builder = order_builder
        self._relay = relay_client
        self.credentials = credentials
        self._executors = list(executors)
        self._channels: List[ChannelClient] = []
        self._closed = False

    @classmethod
    def build(
        cls,
        settings: Optional[ClientSettings] = None,
        private_key: Optional[str] = None,
        credentials: Optional[ApiCredentials] = None,
        builder_credentials: Optional[BuilderCredentials] = None,
        signature_type: SignatureType = SignatureType.EOA,
        funder: Optional[str] = None,
        retry_config: Optional[RetryQuotaConfig] = None
    ) -> "PolyClobClient":
        """
        Build a fully wired client.

        Args:
            settings: Client settings (loaded from the environment if None)
            private_key: Wallet key; required for signing and the relayer
            credentials: L2 API credentials; required for trading endpoints
            builder_credentials: Relayer credentials
            signature_type: EOA or a proxy wallet type
            funder: Address holding the funds, if not the signer
            retry_config: Retry and quota tuning

        Raises:
            ConfigurationError: If the configuration is inconsistent
        """
        settings = settings or ClientSettings()
        retry_config = retry_config or RetryQuotaConfig()
        contracts = get_contract_config(settings.chain_id)

        if credentials is not None and private_key is None:
            raise ConfigurationError("API credentials need the wallet private key for L2 headers")
        if builder_credentials is not None:
            if private_key is None:
                raise ConfigurationError("Relayer access needs the wallet private key")
            if not contracts.proxy_factory or not contracts.relay_hub:
                raise ConfigurationError(
                    f"Relayer proxy wallets are not available on chain {settings.chain_id}"
                )
        if signature_type.is_proxy and private_key is None:
            raise ConfigurationError(f"{signature_type.name} orders need the wallet private key")

        # Fail on a bad key now rather than at the first signature
        l1_signer = L1Signer(private_key) if private_key else None
        address = None
        if l1_signer is not None:
            try:
                address = l1_signer.address
            except AuthenticationError as e:
                raise ConfigurationError(e.message) from None
        l2_signer = L2Signer(credentials, address) if credentials and address else None

        metrics = Metrics(enabled=settings.enable_metrics)
        session = create_session(settings)
        timeout = (settings.connect_timeout, settings.request_timeout)

        def executor(base_url: str, table, l2=None) -> RequestExecutor:
            return RequestExecutor(
                base_url=base_url,
                session=session,
                quota=QuotaManager.from_config(table, retry_config),
                config=retry_config,
                l1_signer=l1_signer,
                l2_signer=l2,
                chain_id=settings.chain_id,
                timeout=timeout,
                metrics=metrics,
                log_requests=settings.log_requests,
            )

        clob_executor = executor(settings.clob_url, clob_quota_table(retry_config), l2_signer)
        gamma_executor = executor(settings.gamma_url, gamma_quota_table())
        executors = [clob_executor, gamma_executor]

        clob = ClobAPI(clob_executor, metrics=metrics)
        gamma = GammaAPI(gamma_executor)

        order_builder = None
        if l1_signer is not None:
            order_builder = OrderBuilder(
                l1_signer, contracts, clob,
                signature_type=signature_type,
                funder=funder,
                proxy_resolver=gamma
            )

        relay_client = None
        if builder_credentials is not None:
            relay_executor = executor(
                settings.relay_url, relay_quota_table(), BuilderSigner(builder_credentials)
            )
            executors.append(relay_executor)
            estimator = Web3GasEstimator(settings.rpc_url) if settings.rpc_url else None
            relay_client = RelayClient(relay_executor, l1_signer, contracts, gas_estimator=estimator)

        logger.info(
            f"polyclob client ready (chain={settings.chain_id}, "
            f"signing={'yes' if l1_signer else 'no'}, trading={'yes' if l2_signer else 'no'}, "
            f"relay={'yes' if relay_client else 'no'})"
        )
        return cls(
            settings, contracts, retry_config, metrics, clob, gamma,
            order_builder=order_builder,
            relay_client=relay_client,
            credentials=credentials,
            executors=executors,
        )

    def _builder(self) -> OrderBuilder:
        if self.order_builder is None:
            raise ConfigurationError("Order signing needs the wallet private key")
        return self.order_builder

    def _check_open(self) -> None:
        if self._closed:
            raise ConfigurationError("Client is closed")

    # ========== Orders ==========

    def create_order(self, args: OrderArgs, ticket: Optional[OrderTicket] = None) -> SignedOrder:
        """Validate and sign a limit order."""
        self._check_open()
        return self._builder().create_order(args, ticket=ticket)

    def create_market_order(
        self,
        args: MarketOrderArgs,
        ticket: Optional[OrderTicket] = None
    ) -> SignedOrder:
        """Validate and sign a market order, pricing it from the book when needed."""
        self._check_open()
        builder = self._builder()
        builder.check_market_args(args)
        levels = None
        if args.price is None:
            book = self.clob.get_order_book(args.token_id)
            levels = book.asks if args.side == Side.BUY else book.bids
        return builder.create_market_order(args, levels=levels, ticket=ticket)

    def _submit(self, ticket: OrderTicket, post_only: bool) -> OrderTicket:
        ticket.advance(OrderState.SUBMITTED)
        try:
            response = self.clob.post_order(ticket.signed_order, post_only=post_only)
        except (OrderRejectedError, TickSizeError) as e:
            ticket.reason = getattr(e, "reason", None) or e.message
            ticket.advance(OrderState.REJECTED)
            raise e.with_context(ticket=ticket)
        except PolyClobError as e:
            # Outcome unknown: the order may have reached the book, so the
            # ticket stays SUBMITTED with the failure recorded
            ticket.reason = e.message
            raise e.with_context(ticket=ticket)
        ticket.order_id = response.order_id
        ticket.advance(OrderState.ACCEPTED)
        return ticket

    def place_order(self, args: OrderArgs, post_only: bool = False) -> OrderTicket:
        """
        Build, sign and submit a limit order.

        Returns:
            Ticket in ACCEPTED state carrying the exchange order id

        Raises:
            ValidationError: If the order is invalid (nothing is submitted)
            OrderRejectedError: If the exchange rejects it; details["ticket"]
                holds the REJECTED ticket
            PolyClobError: If submission fails in transport; the ticket in
                details["ticket"] stays SUBMITTED with the failure as its reason
        """
        ticket = OrderTicket(args.token_id)
        self.create_order(args, ticket=ticket)
        return self._submit(ticket, post_only)

    def place_market_order(self, args: MarketOrderArgs) -> OrderTicket:
        """Build, sign and submit a market order."""
        ticket = OrderTicket(args.token_id)
        self.create_market_order(args, ticket=ticket)
        return self._submit(ticket, post_only=False)

    def cancel_order(self, order: Union[str, OrderTicket]) -> bool:
        """
        Cancel one order by id or ticket.

        Returns:
            True if the exchange reports the order cancelled
        """
        self._check_open()
        if isinstance(order, OrderTicket):
            if order.order_id is None:
                raise TradingError(f"Order in state {order.state.value} has no exchange id")
            order_id = order.order_id
        else:
            order_id = order

        response = self.clob.cancel_order(order_id)
        cancelled = order_id in response.canceled
        if cancelled and isinstance(order, OrderTicket):
            order.advance(OrderState.CANCELLED)
        return cancelled

    def get_orders(
        self,
        market: Optional[str] = None,
        asset_id: Optional[str] = None
    ) -> List[OpenOrder]:
        """Open orders across all pages."""
        self._check_open()
        return self.clob.get_orders(market=market, asset_id=asset_id)

    # ========== Channels ==========

    def _channel(self, subscription) -> ChannelClient:
        self._check_open()
        s = self.settings
        channel = ChannelClient(
            subscription,
            ws_url=s.ws_url,
            buffer_size=s.ws_buffer_size,
            reconnect=s.ws_reconnect,
            reconnect_delay=s.ws_reconnect_delay,
            max_reconnects=s.ws_max_reconnects,
            ping_interval=s.ws_ping_interval,
            metrics=self.metrics,
        )
        self._channels.append(channel)
        return channel

    def market_channel(self, asset_ids: Iterable[str]) -> ChannelClient:
        """Unconnected market channel client for ``asset_ids``."""
        return self._channel(market_subscription(list(asset_ids)))

    def user_channel(self, condition_ids: Iterable[str] = ()) -> ChannelClient:
        """Unconnected user channel client (needs API credentials)."""
        if self.credentials is None:
            raise ConfigurationError("User channel requires API credentials")
        return self._channel(user_subscription(list(condition_ids), self.credentials))

    # ========== Relayer ==========

    @property
    def relay(self) -> RelayClient:
        """Relayer client (needs builder credentials)."""
        self._check_open()
        if self._relay is None:
            raise ConfigurationError("Relayer access needs builder credentials")
        return self._relay

    # ========== Lifecycle ==========

    def close(self) -> None:
        """Close channels and HTTP sessions. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for channel in self._channels:
            channel.close()
        self._channels.clear()
        sessions = {id(e.session): e for e in self._executors}
        for executor in sessions.values():
            executor.close()
        logger.info("polyclob client closed")

    def __enter__(self) -> "PolyClobClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
