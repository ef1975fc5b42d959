"""
Gas estimation for relayed transactions.

The relayer pays gas, but the signed payload commits to a gas limit, so
the limit must cover the inner call plus the relay hub's own overhead.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol
import logging

from web3 import Web3

from ..exceptions import RelayError

logger = logging.getLogger(__name__)

# Relay hub execution overhead on top of the inner call
RELAYER_OVERHEAD = 50_000
# Safety margin, percent
GAS_BUFFER_PERCENT = 120


def buffer_gas(inner_gas: int) -> int:
    """Gas limit for a relayed call whose inner call uses ``inner_gas``."""
    if inner_gas < 0:
        raise ValueError(f"Gas must be non-negative, got {inner_gas}")
    return (inner_gas + RELAYER_OVERHEAD) * GAS_BUFFER_PERCENT // 100


@dataclass(frozen=True)
class GasEstimate:
    """Simulated gas use and the limit to sign with."""
    gas_limit: int
    gas_price: int
    buffered_limit: int

    @classmethod
    def from_inner(cls, inner_gas: int, gas_price: int = 0) -> "GasEstimate":
        return cls(gas_limit=inner_gas, gas_price=gas_price, buffered_limit=buffer_gas(inner_gas))


class GasEstimator(Protocol):
    def estimate(self, transaction: Dict[str, Any]) -> GasEstimate:
        ...


class Web3GasEstimator:
    """
    Gas estimator backed by a JSON-RPC node.

    ``transaction`` is a web3 transaction dict (``from``, ``to``, ``data``).
    """

    def __init__(self, rpc_url: Optional[str] = None, web3: Optional[Web3] = None):
        if web3 is None:
            if not rpc_url:
                raise RelayError("Gas estimation needs an RPC URL")
            web3 = Web3(Web3.HTTPProvider(rpc_url))
        self.web3 = web3

    def estimate(self, transaction: Dict[str, Any]) -> GasEstimate:
        """
        Simulate ``transaction`` and add relayer overhead.

        Raises:
            RelayError: If the node cannot estimate the call
        """
        tx = dict(transaction)
        for key in ("from", "to"):
            if key in tx:
                tx[key] = Web3.to_checksum_address(tx[key])
        try:
            inner = int(self.web3.eth.estimate_gas(tx))
            gas_price = int(self.web3.eth.gas_price)
        except Exception as e:
            logger.error(f"Gas estimation failed: {type(e).__name__}: {e}")
            raise RelayError(f"Gas estimation failed: {type(e).__name__}: {e}") from e

        estimate = GasEstimate.from_inner(inner, gas_price)
        logger.info(f"Estimated gas {inner}, signing with limit {estimate.buffered_limit}")
        return estimate
