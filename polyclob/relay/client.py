"""
Gasless transaction relayer client.

Executes calls through the user's proxy wallet: the calls are packed into
``proxy()`` calldata, the relay request is hashed with the ``rlx:``
prefix, personally signed with the wallet key, and submitted with
builder HMAC headers.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union
import logging

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_bytes, to_checksum_address, to_hex

from .gas import GasEstimate, GasEstimator
from ..api.base import AuthLevel, QueryParams, RequestDescriptor, RequestExecutor
from ..auth.signer import L1Signer
from ..config import ContractConfig
from ..exceptions import RelayError
from ..models import (
    DeployedResponse,
    NonceResponse,
    RelayerTransactionResponse,
    RelayPayload,
    TransactionStatusResponse,
    WalletType,
)

logger = logging.getLogger(__name__)

PROXY_INIT_CODE_HASH = bytes.fromhex(
    "d21df8dc65880a8606f09fe0ce3df9b8869287ab0b058be05aa9e8af6330a00b"
)
DEFAULT_GAS_LIMIT = 10_000_000
ZERO_BYTES32 = b"\x00" * 32

# ProxyTransaction.typeCode
CALL_TYPE_CALL = 1

PROXY_SELECTOR = keccak(text="proxy((uint8,address,uint256,bytes)[])")[:4]
REDEEM_POSITIONS_SELECTOR = keccak(text="redeemPositions(address,bytes32,bytes32,uint256[])")[:4]


@dataclass(frozen=True)
class ProxyCall:
    """One call executed by the proxy wallet."""
    to: str
    data: bytes
    value: int = 0


def _bytes32(value: Union[str, bytes]) -> bytes:
    raw = to_bytes(hexstr=value) if isinstance(value, str) else bytes(value)
    if len(raw) != 32:
        raise RelayError(f"Expected 32 bytes, got {len(raw)}")
    return raw


def derive_proxy_wallet(owner: str, proxy_factory: str) -> str:
    """CREATE2 address of the proxy wallet the factory deploys for ``owner``."""
    salt = keccak(to_bytes(hexstr=owner))
    digest = keccak(b"\xff" + to_bytes(hexstr=proxy_factory) + salt + PROXY_INIT_CODE_HASH)
    return to_checksum_address(digest[12:])


def encode_proxy_calls(calls: Sequence[ProxyCall]) -> bytes:
    """Calldata for ``proxy(ProxyTransaction[])``."""
    if not calls:
        raise RelayError("At least one call is required")
    txns = [
        (CALL_TYPE_CALL, to_checksum_address(call.to), call.value, call.data)
        for call in calls
    ]
    return PROXY_SELECTOR + abi_encode(["(uint8,address,uint256,bytes)[]"], [txns])


def encode_redeem_positions(
    collateral: str,
    condition_id: Union[str, bytes],
    index_sets: Sequence[int]
) -> bytes:
    """Calldata for ``ConditionalTokens.redeemPositions`` with an empty parent collection."""
    return REDEEM_POSITIONS_SELECTOR + abi_encode(
        ["address", "bytes32", "bytes32", "uint256[]"],
        [to_checksum_address(collateral), ZERO_BYTES32, _bytes32(condition_id), list(index_sets)]
    )


def proxy_struct_hash(
    from_address: str,
    to: str,
    data: bytes,
    tx_fee: int,
    gas_price: int,
    gas_limit: int,
    nonce: int,
    relay_hub: str,
    relay: str
) -> bytes:
    """Relay request digest: keccak of the ``rlx:``-prefixed packed fields."""
    message = b"".join([
        b"rlx:",
        to_bytes(hexstr=from_address),
        to_bytes(hexstr=to),
        data,
        tx_fee.to_bytes(32, "big"),
        gas_price.to_bytes(32, "big"),
        gas_limit.to_bytes(32, "big"),
        nonce.to_bytes(32, "big"),
        to_bytes(hexstr=relay_hub),
        to_bytes(hexstr=relay),
    ])
    return keccak(message)


def pack_signature(r: int, s: int, v: int) -> str:
    """``r || s || v`` with v normalized to 27/28."""
    if v < 27:
        v += 27
    return to_hex(r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v]))


class RelayClient:
    """
    Relayer API client for proxy wallets.

    Requests go through a RequestExecutor whose L2 signer is a
    BuilderSigner, so submissions carry POLY_BUILDER_* headers.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        signer: L1Signer,
        contracts: ContractConfig,
        wallet_type: WalletType = WalletType.PROXY,
        gas_estimator: Optional[GasEstimator] = None
    ):
        """
        Initialize relayer client.

        Args:
            executor: Executor bound to the relayer URL with builder credentials
            signer: Wallet key that owns the proxy wallet
            contracts: Chain contract addresses
            wallet_type: Wallet type reported to the relayer
            gas_estimator: Optional estimator for ``estimate_gas=True`` calls
        """
        self.executor = executor
        self.signer = signer
        self.contracts = contracts
        self.wallet_type = wallet_type
        self.gas_estimator = gas_estimator

    def _require(self, value: Optional[str], name: str) -> str:
        if not value:
            raise RelayError(f"{name} is not configured for chain {self.contracts.chain_id}")
        return value

    # ========== Queries ==========

    def get_nonce(self, address: Optional[str] = None, wallet_type: Optional[WalletType] = None) -> int:
        """Relayer nonce for ``address`` (the signer by default)."""
        response: NonceResponse = self.executor.get(
            "/nonce",
            QueryParams()
            .add("address", address or self.signer.address)
            .add("type", (wallet_type or self.wallet_type).value),
            response_type=NonceResponse
        )
        return response.nonce

    def get_relay_payload(self, address: Optional[str] = None) -> Tuple[str, int]:
        """Relay address and nonce to sign a proxy transaction with."""
        response: RelayPayload = self.executor.get(
            "/relay-payload",
            QueryParams().add("address", address or self.signer.address).add("type", WalletType.PROXY.value),
            response_type=RelayPayload
        )
        return to_checksum_address(response.address), response.nonce

    def get_transaction(self, transaction_id: str) -> TransactionStatusResponse:
        """State of a submitted relayer transaction."""
        data: Any = self.executor.get("/transaction", QueryParams().add("id", transaction_id))
        if isinstance(data, list):
            if not data:
                raise RelayError(f"Unknown relayer transaction {transaction_id}")
            data = data[0]
        return TransactionStatusResponse.model_validate(data)

    def get_deployed(self, address: str) -> bool:
        """Whether a Safe wallet is deployed."""
        response: DeployedResponse = self.executor.get(
            "/deployed", QueryParams().add("address", address), response_type=DeployedResponse
        )
        return response.deployed

    def derive_proxy_wallet(self, owner: Optional[str] = None) -> str:
        """Proxy wallet address for ``owner`` (the signer by default)."""
        factory = self._require(self.contracts.proxy_factory, "Proxy factory")
        return derive_proxy_wallet(owner or self.signer.address, factory)

    # ========== Execution ==========

    def execute_proxy(
        self,
        calls: Sequence[ProxyCall],
        gas: Optional[GasEstimate] = None,
        metadata: Optional[str] = None
    ) -> RelayerTransactionResponse:
        """
        Sign and submit calls through the proxy wallet.

        Args:
            calls: Calls to execute, in order
            gas: Gas estimate; the buffered limit is signed (default 10M)
            metadata: Free-form label stored by the relayer

        Returns:
            Relayer receipt with the transaction id

        Raises:
            RelayError: If the chain has no proxy factory or relay hub
        """
        proxy_factory = self._require(self.contracts.proxy_factory, "Proxy factory")
        relay_hub = self._require(self.contracts.relay_hub, "Relay hub")
        from_address = self.signer.address
        proxy_wallet = derive_proxy_wallet(from_address, proxy_factory)

        relay_address, nonce = self.get_relay_payload(from_address)
        data = encode_proxy_calls(calls)
        gas_limit = gas.buffered_limit if gas is not None else DEFAULT_GAS_LIMIT

        digest = proxy_struct_hash(
            from_address, proxy_factory, data,
            tx_fee=0, gas_price=0, gas_limit=gas_limit, nonce=nonce,
            relay_hub=relay_hub, relay=relay_address
        )
        signed = self.signer.sign_eip191(digest)

        body = {
            "type": WalletType.PROXY.value,
            "from": from_address,
            "to": proxy_factory,
            "proxyWallet": proxy_wallet,
            "data": to_hex(data),
            "signature": pack_signature(signed.r, signed.s, signed.v),
            "signatureParams": {
                "relayerFee": "0",
                "gasLimit": str(gas_limit),
                "gasPrice": "0",
                "relayHub": relay_hub,
                "relay": relay_address,
            },
            "nonce": str(nonce),
        }
        if metadata is not None:
            body["metadata"] = metadata

        response: RelayerTransactionResponse = self.executor.send(RequestDescriptor(
            "POST", "/submit", body=body, auth=AuthLevel.L2, response_type=RelayerTransactionResponse
        ))
        logger.info(
            f"Relayed {len(calls)} call(s) via {proxy_wallet}: {response.transaction_id} "
            f"(gas limit {gas_limit}, nonce {nonce})"
        )
        return response

    def redeem_positions(
        self,
        condition_id: Union[str, bytes],
        index_sets: Sequence[int] = (1, 2),
        estimate_gas: bool = False
    ) -> RelayerTransactionResponse:
        """
        Redeem resolved positions for collateral through the proxy wallet.

        Args:
            condition_id: 32-byte condition id (hex or bytes)
            index_sets: Outcome index sets to redeem (both outcomes by default)
            estimate_gas: Simulate the call and sign a buffered gas limit
        """
        ctf = self.contracts.conditional_tokens
        data = encode_redeem_positions(self.contracts.collateral, condition_id, index_sets)

        gas: Optional[GasEstimate] = None
        if estimate_gas:
            if self.gas_estimator is None:
                raise RelayError("estimate_gas requested but no gas estimator is configured")
            gas = self.gas_estimator.estimate({
                "from": self.derive_proxy_wallet(),
                "to": ctf,
                "data": to_hex(data),
            })
        return self.execute_proxy([ProxyCall(to=ctf, data=data)], gas=gas)
