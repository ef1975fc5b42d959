"""
EIP-712 struct models for CLOB authentication and order signing.

Uses poly_eip712_structs library (Polymarket's fork).
"""

from poly_eip712_structs import EIP712Struct, Address, String, Uint, make_domain

CLOB_AUTH_DOMAIN_NAME = "ClobAuthDomain"
EXCHANGE_DOMAIN_NAME = "Polymarket CTF Exchange"
DOMAIN_VERSION = "1"

CLOB_AUTH_MESSAGE = "This message attests that I control the given wallet"


class ClobAuth(EIP712Struct):
    """
    CLOB authentication message structure.

    Used for Level 1 (private key) authentication with the CLOB.
    """
    address = Address()
    timestamp = String()
    nonce = Uint()
    message = String()


class Order(EIP712Struct):
    """Exchange order as hashed and signed by the maker's signer."""
    salt = Uint(256)
    maker = Address()
    signer = Address()
    taker = Address()
    tokenId = Uint(256)
    makerAmount = Uint(256)
    takerAmount = Uint(256)
    expiration = Uint(256)
    nonce = Uint(256)
    feeRateBps = Uint(256)
    side = Uint(8)
    signatureType = Uint(8)


def clob_auth_domain(chain_id: int) -> EIP712Struct:
    return make_domain(name=CLOB_AUTH_DOMAIN_NAME, version=DOMAIN_VERSION, chainId=chain_id)


def exchange_domain(chain_id: int, verifying_contract: str) -> EIP712Struct:
    return make_domain(
        name=EXCHANGE_DOMAIN_NAME,
        version=DOMAIN_VERSION,
        chainId=chain_id,
        verifyingContract=verifying_contract,
    )
