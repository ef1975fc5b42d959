"""
Gamma API client.

Only the profile lookup the order builder needs to resolve a proxy
wallet maker lives here; market listings are thin query wrappers callers
can issue through the executor directly.
"""

from typing import Optional
import logging

from .base import QueryParams, RequestExecutor
from ..auth.credentials import normalize_address
from ..models import PublicProfile

logger = logging.getLogger(__name__)


class GammaAPI:
    """Read-only Gamma API surface."""

    def __init__(self, executor: RequestExecutor):
        self.executor = executor

    def get_public_profile(self, address: str) -> PublicProfile:
        """
        Public profile for a signer address.

        Args:
            address: EOA address of the signer

        Returns:
            Profile including the proxy wallet, when one exists
        """
        return self.executor.get(
            "/public-profile",
            QueryParams().add("address", address),
            response_type=PublicProfile
        )

    def get_proxy_wallet(self, address: str) -> Optional[str]:
        """Checksummed proxy wallet address for ``address``, or None."""
        profile = self.get_public_profile(address)
        if not profile.proxy_wallet:
            logger.debug(f"No proxy wallet registered for {address}")
            return None
        return normalize_address(profile.proxy_wallet, "proxy wallet")
