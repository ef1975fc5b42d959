"""
Tests for credential handling and the two signing layers.

SECURITY: also checks that no key material reaches repr() or errors.
"""

import base64
import hashlib
import hmac

import pytest
from eth_account import Account

from polyclob.auth.credentials import (
    ApiCredentials,
    BuilderCredentials,
    SigningDomain,
    decode_secret,
    normalize_address,
)
from polyclob.auth.signer import BuilderSigner, L1Signer, L2Signer, hmac_signature
from polyclob.config import get_contract_config
from polyclob.exceptions import AuthenticationError, ConfigurationError
from polyclob.tests.conftest import TEST_PRIVATE_KEY, TEST_SECRET

RAW_SECRET = b"test-secret-bytes-0123456789"


def order_message(signer_address: str, **overrides) -> dict:
    message = {
        "salt": 123456789,
        "maker": signer_address,
        "signer": signer_address,
        "taker": "0x0000000000000000000000000000000000000000",
        "tokenId": 1234,
        "makerAmount": 5000000,
        "takerAmount": 10000000,
        "expiration": 0,
        "nonce": 0,
        "feeRateBps": 0,
        "side": 0,
        "signatureType": 0,
    }
    message.update(overrides)
    return message


class TestDecodeSecret:

    def test_url_safe_padded(self):
        assert decode_secret(TEST_SECRET) == RAW_SECRET

    def test_url_safe_unpadded(self):
        assert decode_secret(TEST_SECRET.rstrip("=")) == RAW_SECRET

    def test_url_safe_alphabet(self):
        raw = bytes([0xfb, 0xff, 0xfe])
        assert decode_secret(base64.urlsafe_b64encode(raw).decode()) == raw

    def test_standard_alphabet(self):
        raw = bytes([0xfb, 0xff, 0xfe])
        assert decode_secret(base64.b64encode(raw).decode()) == raw

    def test_not_base64_uses_raw_bytes(self):
        assert decode_secret("not base64!") == b"not base64!"


class TestCredentials:

    def test_repr_redacts_everything(self):
        creds = ApiCredentials("key-123", TEST_SECRET, "pass-456")
        text = repr(creds) + str(creds)
        assert "key-123" not in text
        assert TEST_SECRET not in text
        assert "pass-456" not in text
        assert "[REDACTED]" in text

    def test_builder_repr_redacts(self):
        creds = BuilderCredentials("key-123", TEST_SECRET, "pass-456")
        assert "pass-456" not in repr(creds)

    def test_missing_field(self):
        with pytest.raises(ConfigurationError):
            ApiCredentials("key", "", "pass")

    def test_secret_decoded_once(self):
        assert ApiCredentials("k", TEST_SECRET, "p").secret_bytes == RAW_SECRET

    def test_ws_auth_block(self):
        creds = ApiCredentials("k", TEST_SECRET, "p")
        assert creds.to_ws_auth() == {"apiKey": "k", "secret": TEST_SECRET, "passphrase": "p"}

    def test_signing_domain_checksums(self):
        domain = SigningDomain(137, "0x4bfb41d5b3570defd03c39a9a4d8de6bd8b8982e")
        assert domain.verifying_contract == "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"

    def test_signing_domain_rejects_garbage(self):
        with pytest.raises(ConfigurationError):
            SigningDomain(137, "0x1234")

    def test_normalize_address(self):
        assert normalize_address(None) is None
        with pytest.raises(ConfigurationError):
            normalize_address("nope", "funder")


class TestL2Signer:

    def test_hmac_matches_reference(self):
        expected = base64.urlsafe_b64encode(
            hmac.new(RAW_SECRET, b'1700000000POST/order{"a":1}', hashlib.sha256).digest()
        ).decode()
        assert hmac_signature(RAW_SECRET, 1700000000, "post", "/order", '{"a":1}') == expected

    def test_headers(self, l2_signer, l1_signer):
        headers = l2_signer.headers("GET", "/data/orders", None, 1700000000)
        assert set(headers) == {
            "POLY_ADDRESS", "POLY_SIGNATURE", "POLY_TIMESTAMP", "POLY_API_KEY", "POLY_PASSPHRASE"
        }
        assert headers["POLY_ADDRESS"] == l1_signer.address
        assert headers["POLY_TIMESTAMP"] == "1700000000"

    def test_tampered_body_fails_verification(self, l2_signer):
        signature = l2_signer.sign(1700000000, "POST", "/order", '{"size":"10"}')
        assert l2_signer.verify(signature, 1700000000, "POST", "/order", '{"size":"10"}')
        assert not l2_signer.verify(signature, 1700000000, "POST", "/order", '{"size":"11"}')
        assert not l2_signer.verify(signature, 1700000001, "POST", "/order", '{"size":"10"}')

    def test_repr_redacts(self, l2_signer):
        assert "test-passphrase" not in repr(l2_signer)

    def test_builder_headers(self, credentials):
        headers = BuilderSigner(credentials).headers("POST", "/submit", "{}", 1700000000)
        assert set(headers) == {
            "POLY_BUILDER_API_KEY",
            "POLY_BUILDER_TIMESTAMP",
            "POLY_BUILDER_SIGNATURE",
            "POLY_BUILDER_PASSPHRASE",
        }
        assert headers["POLY_BUILDER_SIGNATURE"] == hmac_signature(
            RAW_SECRET, 1700000000, "POST", "/submit", "{}"
        )


class TestL1Signer:

    def test_address(self, l1_signer):
        assert l1_signer.address == Account.from_key(TEST_PRIVATE_KEY).address

    def test_repr_never_shows_key(self, l1_signer):
        l1_signer.address  # resolve the account
        assert TEST_PRIVATE_KEY[2:] not in repr(l1_signer)
        assert "[REDACTED]" in repr(l1_signer)

    def test_invalid_key_error_is_sanitized(self):
        signer = L1Signer("0xdeadbeef")
        with pytest.raises(AuthenticationError) as exc_info:
            signer.address
        assert "deadbeef" not in str(exc_info.value)

    def test_sign_and_verify(self, l1_signer):
        domain = SigningDomain(137, get_contract_config(137).exchange)
        message = order_message(l1_signer.address)
        signed = l1_signer.sign_order(message, domain)

        assert signed.signature.startswith("0x") and len(signed.signature) == 132
        assert signed.order_hash == l1_signer.order_hash(message, domain)
        assert l1_signer.verify_order(message, signed.signature, domain)
        assert L1Signer.recover_order_signer(message, signed.signature, domain) == l1_signer.address

    def test_any_field_change_invalidates(self, l1_signer):
        domain = SigningDomain(137, get_contract_config(137).exchange)
        message = order_message(l1_signer.address)
        signed = l1_signer.sign_order(message, domain)

        for field, value in [("salt", 987654321), ("makerAmount", 5000001), ("side", 1)]:
            tampered = order_message(l1_signer.address, **{field: value})
            assert not l1_signer.verify_order(tampered, signed.signature, domain)

    def test_signature_bound_to_exchange(self, l1_signer):
        contracts = get_contract_config(137)
        regular = SigningDomain(137, contracts.exchange)
        neg_risk = SigningDomain(137, contracts.neg_risk_exchange)
        message = order_message(l1_signer.address)

        signed = l1_signer.sign_order(message, regular)
        assert not l1_signer.verify_order(message, signed.signature, neg_risk)
        assert l1_signer.order_hash(message, regular) != l1_signer.order_hash(message, neg_risk)

    def test_l1_headers(self, l1_signer):
        headers = l1_signer.l1_headers(137, timestamp=1700000000, nonce=5)
        assert headers["POLY_ADDRESS"] == l1_signer.address
        assert headers["POLY_TIMESTAMP"] == "1700000000"
        assert headers["POLY_NONCE"] == "5"
        assert headers["POLY_SIGNATURE"].startswith("0x")

    def test_l1_headers_deterministic(self, l1_signer):
        first = l1_signer.l1_headers(137, timestamp=1700000000, nonce=0)
        second = l1_signer.l1_headers(137, timestamp=1700000000, nonce=0)
        other_chain = l1_signer.l1_headers(80002, timestamp=1700000000, nonce=0)
        assert first["POLY_SIGNATURE"] == second["POLY_SIGNATURE"]
        assert first["POLY_SIGNATURE"] != other_chain["POLY_SIGNATURE"]
