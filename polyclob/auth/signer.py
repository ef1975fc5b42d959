"""
Dual-layer signing for the CLOB.

L1: EIP-712 signatures from the wallet key (orders, API key management).
L2: HMAC-SHA256 over request metadata with the API secret.

SECURITY: signing errors are reduced to the exception type name so key
material can never reach an error message or a log line.
"""

import base64
import hashlib
import hmac
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional
import logging

from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct
from eth_utils import keccak, to_hex

from .credentials import ApiCredentials, SigningDomain, REDACTED
from .eip712 import (
    CLOB_AUTH_MESSAGE,
    ClobAuth,
    Order,
    clob_auth_domain,
    exchange_domain,
)
from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderSignature:
    """L1 signature over an order plus the EIP-712 digest it signs."""
    signature: str
    order_hash: str


def _signable(struct: Any, domain: Any) -> SignableMessage:
    return SignableMessage(
        version=b"\x01",
        header=domain.hash_struct(),
        body=struct.hash_struct(),
    )


def _order_struct(message: dict) -> Order:
    return Order(
        salt=int(message["salt"]),
        maker=message["maker"],
        signer=message["signer"],
        taker=message["taker"],
        tokenId=int(message["tokenId"]),
        makerAmount=int(message["makerAmount"]),
        takerAmount=int(message["takerAmount"]),
        expiration=int(message["expiration"]),
        nonce=int(message["nonce"]),
        feeRateBps=int(message["feeRateBps"]),
        side=int(message["side"]),
        signatureType=int(message["signatureType"]),
    )


class L1Signer:
    """
    Wallet-key signer.

    Construction never fails: the key is only parsed when first used, and a
    malformed key surfaces there as AuthenticationError.
    """

    def __init__(self, private_key: str):
        self._private_key = private_key
        self._account = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        address = self._account.address if self._account is not None else "<unresolved>"
        return f"L1Signer(address={address}, key={REDACTED})"

    __str__ = __repr__

    def _get_account(self):
        with self._lock:
            if self._account is None:
                try:
                    self._account = Account.from_key(self._private_key)
                except Exception as e:
                    # SECURITY: Sanitize error message to prevent key leakage
                    error_type = type(e).__name__
                    logger.error(f"Failed to load signing key: {error_type}")
                    raise AuthenticationError(
                        f"Invalid signing key: {error_type}. Check private key format."
                    ) from None
            return self._account

    @property
    def address(self) -> str:
        """Checksummed address derived from the signing key."""
        return self._get_account().address

    def order_hash(self, message: dict, domain: SigningDomain) -> str:
        """EIP-712 digest of an order under ``domain``."""
        struct = _order_struct(message)
        eip_domain = exchange_domain(domain.chain_id, domain.verifying_contract)
        return to_hex(keccak(struct.signable_bytes(eip_domain)))

    def sign_order(self, message: dict, domain: SigningDomain) -> OrderSignature:
        """
        Sign the final canonical order struct.

        Args:
            message: Order struct fields (camelCase, as signed)
            domain: Chain and exchange contract the order is bound to

        Returns:
            OrderSignature with 65-byte hex signature and order hash

        Raises:
            AuthenticationError: If the key is malformed or signing fails
        """
        account = self._get_account()
        try:
            struct = _order_struct(message)
            eip_domain = exchange_domain(domain.chain_id, domain.verifying_contract)
            signed = account.sign_message(_signable(struct, eip_domain))
            digest = keccak(struct.signable_bytes(eip_domain))
        except Exception as e:
            error_type = type(e).__name__
            logger.error(f"Order signing failed: {error_type}")
            raise AuthenticationError(f"Order signing failed: {error_type}") from None

        return OrderSignature(signature=to_hex(signed.signature), order_hash=to_hex(digest))

    @staticmethod
    def recover_order_signer(message: dict, signature: str, domain: SigningDomain) -> str:
        """Recover the address that produced ``signature`` over ``message``."""
        struct = _order_struct(message)
        eip_domain = exchange_domain(domain.chain_id, domain.verifying_contract)
        return Account.recover_message(_signable(struct, eip_domain), signature=signature)

    def verify_order(self, message: dict, signature: str, domain: SigningDomain) -> bool:
        """True if ``signature`` over ``message`` was made by this signer."""
        try:
            recovered = self.recover_order_signer(message, signature, domain)
        except Exception as e:
            logger.debug(f"Order signature did not recover: {type(e).__name__}")
            return False
        return recovered == self.address

    def l1_headers(
        self,
        chain_id: int,
        timestamp: Optional[int] = None,
        nonce: int = 0
    ) -> dict[str, str]:
        """
        Create L1 authentication headers (ClobAuth EIP-712).

        Args:
            chain_id: Chain the attestation is bound to
            timestamp: Unix timestamp (uses current time if None)
            nonce: Nonce value (default: 0)

        Returns:
            L1 headers dict

        Raises:
            AuthenticationError: If signing fails
        """
        account = self._get_account()
        if timestamp is None:
            timestamp = int(time.time())
        try:
            clob_auth = ClobAuth(
                address=account.address,
                timestamp=str(timestamp),
                nonce=nonce,
                message=CLOB_AUTH_MESSAGE,
            )
            signed = account.sign_message(_signable(clob_auth, clob_auth_domain(chain_id)))
        except Exception as e:
            error_type = type(e).__name__
            logger.error(f"Failed to create L1 headers: {error_type}")
            raise AuthenticationError(f"L1 signature failed: {error_type}") from None

        logger.debug(f"Created L1 headers for {account.address}")
        return {
            "POLY_ADDRESS": account.address,
            "POLY_SIGNATURE": to_hex(signed.signature),
            "POLY_TIMESTAMP": str(timestamp),
            "POLY_NONCE": str(nonce),
        }

    def sign_eip191(self, digest: bytes):
        """Personal-sign a 32-byte digest (relayer proxy transactions)."""
        account = self._get_account()
        try:
            return account.sign_message(encode_defunct(primitive=digest))
        except Exception as e:
            error_type = type(e).__name__
            logger.error(f"Digest signing failed: {error_type}")
            raise AuthenticationError(f"Digest signing failed: {error_type}") from None


def hmac_signature(secret: bytes, timestamp: int, method: str, path: str,
                   body: Optional[str] = None) -> str:
    """URL-safe base64 HMAC-SHA256 of ``timestamp + METHOD + path + body``."""
    message = f"{timestamp}{method.upper()}{path}{body or ''}"
    digest = hmac.new(secret, message.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8")


class L2Signer:
    """HMAC request signer bound to one set of API credentials."""

    def __init__(self, credentials: ApiCredentials, address: str):
        self.credentials = credentials
        self.address = address

    def __repr__(self) -> str:
        return f"L2Signer(address={self.address}, credentials={self.credentials!r})"

    __str__ = __repr__

    def sign(self, timestamp: int, method: str, path: str, body: Optional[str] = None) -> str:
        """
        Compute the request signature.

        Raises:
            AuthenticationError: If the secret cannot key an HMAC
        """
        try:
            return hmac_signature(self.credentials.secret_bytes, timestamp, method, path, body)
        except Exception as e:
            error_type = type(e).__name__
            logger.error(f"Failed to sign request: {error_type}")
            raise AuthenticationError(f"L2 signature failed: {error_type}") from None

    def verify(self, signature: str, timestamp: int, method: str, path: str,
               body: Optional[str] = None) -> bool:
        expected = self.sign(timestamp, method, path, body)
        return hmac.compare_digest(signature, expected)

    def headers(
        self,
        method: str,
        path: str,
        body: Optional[str] = None,
        timestamp: Optional[int] = None
    ) -> dict[str, str]:
        """
        Create L2 authentication headers.

        Args:
            method: HTTP method
            path: Request path without query string
            body: Exact body string that will be sent
            timestamp: Unix timestamp (uses current time if None)

        Returns:
            L2 headers dict
        """
        if timestamp is None:
            timestamp = int(time.time())
        signature = self.sign(timestamp, method, path, body)
        logger.debug(f"Created L2 headers for {method} {path}")
        return {
            "POLY_ADDRESS": self.address,
            "POLY_SIGNATURE": signature,
            "POLY_TIMESTAMP": str(timestamp),
            "POLY_API_KEY": self.credentials.api_key,
            "POLY_PASSPHRASE": self.credentials.passphrase,
        }


class BuilderSigner(L2Signer):
    """Relayer HMAC headers (POLY_BUILDER_*) from builder credentials."""

    def __init__(self, credentials: ApiCredentials):
        super().__init__(credentials, address="")

    def headers(
        self,
        method: str,
        path: str,
        body: Optional[str] = None,
        timestamp: Optional[int] = None
    ) -> dict[str, str]:
        if timestamp is None:
            timestamp = int(time.time())
        return {
            "POLY_BUILDER_API_KEY": self.credentials.api_key,
            "POLY_BUILDER_TIMESTAMP": str(timestamp),
            "POLY_BUILDER_SIGNATURE": self.sign(timestamp, method, path, body),
            "POLY_BUILDER_PASSPHRASE": self.credentials.passphrase,
        }
