"""
Tests for ClaimTokenService

Tests cover:
- Issue/verify round trip and payload shape
- Tamper rejection at every token position
- Expiry enforcement
- Token type separation (claim vs mint)
"""

import base64
import json
from datetime import timedelta

import pytest

from vault_orders.errors import ConfigurationError
from vault_orders.services.claim_tokens import ClaimTokenService, canonical_json
from tests.conftest import START_MS

URLSAFE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


def decode(token: str) -> str:
    return base64.urlsafe_b64decode(token + "=" * (-len(token) % 4)).decode("utf-8")


def encode(raw: str) -> str:
    return base64.urlsafe_b64encode(raw.encode("utf-8")).rstrip(b"=").decode("ascii")


class TestIssueAndVerify:
    """Happy path."""

    def test_round_trip(self, tokens):
        issued = tokens.issue("order-1")

        payload = tokens.verify(issued.token)

        assert payload.order_id == "order-1"
        assert payload.wallet_address is None
        assert payload.expires_at == issued.expires_at
        assert payload.type == "claim"
        assert len(payload.nonce) == 32

    def test_default_ttl_is_seven_days(self, tokens):
        issued = tokens.issue("order-1")

        assert issued.expires_at == START_MS + 7 * 24 * 3600 * 1000

    def test_token_layout(self, tokens):
        issued = tokens.issue("order-1", wallet_address="0xabc")

        message, _, signature = decode(issued.token).rpartition(".")
        payload = json.loads(message)

        assert "=" not in issued.token
        assert message == canonical_json(payload)
        assert set(payload) == {"orderId", "walletAddress", "expiresAt", "nonce", "type"}
        assert payload["walletAddress"] == "0xabc"
        assert len(signature) == 64

    def test_nonce_makes_tokens_unique(self, tokens):
        assert tokens.issue("order-1").token != tokens.issue("order-1").token

    def test_claim_link(self, tokens):
        issued = tokens.issue("order-1")

        assert tokens.claim_link(issued.token) == f"https://vault.test/mint?claim={issued.token}"


class TestTamperRejection:
    """Any modification invalidates the token."""

    def test_every_character_mutation_rejected(self, tokens):
        token = tokens.issue("order-1", wallet_address="0xabc").token

        for position, char in enumerate(token):
            replacement = next(c for c in URLSAFE_ALPHABET if c != char)
            mutated = token[:position] + replacement + token[position + 1:]
            assert tokens.verify(mutated) is None, f"mutation at {position} accepted"

    def test_payload_swap_with_original_signature_rejected(self, tokens):
        token = tokens.issue("order-1").token
        message, _, signature = decode(token).rpartition(".")
        forged = message.replace("order-1", "order-2")

        assert tokens.verify(encode(f"{forged}.{signature}")) is None

    def test_truncated_token_rejected(self, tokens):
        token = tokens.issue("order-1").token

        assert tokens.verify(token[:-1]) is None
        assert tokens.verify(token[:10]) is None

    def test_other_secret_rejected(self, tokens, clock):
        other = ClaimTokenService("another-secret", "https://vault.test", clock=clock)

        assert other.verify(tokens.issue("order-1").token) is None

    @pytest.mark.parametrize("garbage", ["", None, "not a token", "====", "e30", encode("no-separator")])
    def test_garbage_rejected_without_raising(self, tokens, garbage):
        assert tokens.verify(garbage) is None

    def test_signed_non_payload_rejected(self, tokens):
        message = json.dumps(["not", "an", "object"])
        forged = encode(f"{message}.{tokens._sign(message)}")

        assert tokens.verify(forged) is None


class TestExpiry:
    def test_negative_ttl_rejected(self, tokens):
        issued = tokens.issue("order-1", ttl=timedelta(milliseconds=-1))

        assert tokens.verify(issued.token) is None

    def test_expires_when_clock_passes_expiry(self, tokens, clock):
        issued = tokens.issue("order-1", ttl=timedelta(seconds=10))

        clock.advance(10_000)
        assert tokens.verify(issued.token) is not None

        clock.advance(1)
        assert tokens.verify(issued.token) is None

    def test_allow_expired_still_checks_signature(self, tokens, clock):
        issued = tokens.issue("order-1", ttl=timedelta(seconds=10))
        clock.advance(10_001)

        assert tokens.verify(issued.token, allow_expired=True).order_id == "order-1"
        assert tokens.verify(issued.token[:-2] + "xx", allow_expired=True) is None


class TestMintSignature:
    """Mint credentials are a separate token type."""

    def test_mint_signature_defaults_to_fifteen_minutes(self, tokens):
        issued = tokens.issue_mint_signature("order-1", "0xabc")

        payload = tokens.verify(issued.token, expected_type="mint")

        assert payload.type == "mint"
        assert payload.wallet_address == "0xabc"
        assert issued.expires_at == START_MS + 15 * 60 * 1000

    def test_types_are_not_interchangeable(self, tokens):
        mint = tokens.issue_mint_signature("order-1", "0xabc")
        claim = tokens.issue("order-1")

        assert tokens.verify(mint.token) is None
        assert tokens.verify(claim.token, expected_type="mint") is None


class TestConfiguration:
    def test_missing_secret_raises_configuration_error(self, clock):
        service = ClaimTokenService(None, "https://vault.test", clock=clock)

        with pytest.raises(ConfigurationError):
            service.issue("order-1")
        with pytest.raises(ConfigurationError):
            service.verify("anything")

    def test_from_settings(self, settings, clock):
        service = ClaimTokenService.from_settings(settings, clock=clock)

        assert service.claim_ttl == timedelta(hours=168)
        assert service.mint_ttl == timedelta(minutes=15)
        assert service.verify(service.issue("order-1").token).order_id == "order-1"
