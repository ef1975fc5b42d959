"""
Credential and identity values handed to the signers.

SECURITY: secrets are kept out of repr, str and log output.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Optional

from eth_utils import is_address, to_checksum_address

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


def decode_secret(secret: str) -> bytes:
    """
    Normalize an API secret to raw bytes.

    Tries URL-safe base64 (padded or not), then standard base64. A secret that
    is neither is used as its UTF-8 bytes.
    """
    stripped = secret.strip()
    unpadded = stripped.rstrip("=")
    padded = (unpadded + "=" * (-len(unpadded) % 4)).encode("ascii", errors="replace")
    for altchars in (b"-_", None):
        try:
            return base64.b64decode(padded, altchars=altchars, validate=True)
        except (binascii.Error, ValueError):
            continue
    logger.debug("API secret is not base64, using raw bytes")
    return stripped.encode("utf-8")


@dataclass(frozen=True)
class ApiCredentials:
    """
    L2 API credentials.

    The secret is decoded once at construction; the encoded form is kept only
    for the user channel auth block, which expects it verbatim.
    """
    api_key: str
    secret: str = field(repr=False)
    passphrase: str = field(repr=False)
    secret_bytes: bytes = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.api_key or not self.secret or not self.passphrase:
            raise ConfigurationError("API key, secret and passphrase are all required")
        object.__setattr__(self, "secret_bytes", decode_secret(self.secret))

    def __repr__(self) -> str:
        return f"ApiCredentials(api_key={REDACTED}, secret={REDACTED}, passphrase={REDACTED})"

    __str__ = __repr__

    def to_ws_auth(self) -> dict[str, str]:
        """Auth block embedded in the user channel subscription."""
        return {"apiKey": self.api_key, "secret": self.secret, "passphrase": self.passphrase}


@dataclass(frozen=True)
class BuilderCredentials(ApiCredentials):
    """Builder program credentials used to authenticate with the relayer."""

    def __repr__(self) -> str:
        return f"BuilderCredentials(api_key={REDACTED}, secret={REDACTED}, passphrase={REDACTED})"

    __str__ = __repr__


@dataclass(frozen=True)
class SigningDomain:
    """
    Network and contract an L1 signature is bound to.

    Passed explicitly to every signing call so a signature made for one
    chain or exchange can never verify against another.
    """
    chain_id: int
    verifying_contract: str

    def __post_init__(self) -> None:
        if not is_address(self.verifying_contract):
            raise ConfigurationError(f"Invalid verifying contract: {self.verifying_contract}")
        object.__setattr__(self, "verifying_contract", to_checksum_address(self.verifying_contract))


def normalize_address(address: Optional[str], field_name: str = "address") -> Optional[str]:
    """Checksum an address, or raise ConfigurationError if malformed."""
    if address is None:
        return None
    if not is_address(address):
        raise ConfigurationError(f"Invalid {field_name}: {address}")
    return to_checksum_address(address)
