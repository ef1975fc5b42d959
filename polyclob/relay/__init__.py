"""
Gasless transaction relayer.
"""

from .client import ProxyCall, RelayClient, derive_proxy_wallet
from .gas import GasEstimate, Web3GasEstimator, buffer_gas

__all__ = [
    "GasEstimate",
    "ProxyCall",
    "RelayClient",
    "Web3GasEstimator",
    "buffer_gas",
    "derive_proxy_wallet",
]
