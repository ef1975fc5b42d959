"""Signing and credential modules for the polyclob client."""

from .credentials import ApiCredentials, BuilderCredentials, SigningDomain, decode_secret
from .signer import BuilderSigner, L1Signer, L2Signer, OrderSignature, hmac_signature

__all__ = [
    "ApiCredentials",
    "BuilderCredentials",
    "SigningDomain",
    "decode_secret",
    "BuilderSigner",
    "L1Signer",
    "L2Signer",
    "OrderSignature",
    "hmac_signature",
]
