"""
Claim Token Service
Issues and verifies HMAC-signed claim tokens and mint signatures
"""

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal, Optional
import structlog
from pydantic import ValidationError as PydanticValidationError

from vault_orders.config import Settings
from vault_orders.errors import ConfigurationError
from vault_orders.models.base import RecordModel
from vault_orders.services.clock import Clock, now_ms

logger = structlog.get_logger(__name__)

TokenType = Literal["claim", "mint"]


class ClaimTokenPayload(RecordModel):
    """Signed content of a claim token or mint signature"""

    order_id: str
    wallet_address: Optional[str] = None
    expires_at: int
    nonce: str
    type: TokenType = "claim"


@dataclass
class IssuedToken:
    token: str
    expires_at: int


def canonical_json(data: dict) -> str:
    """Deterministic JSON encoding used as the signed message"""
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(token: str) -> bytes:
    padded = token + "=" * (-len(token) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class ClaimTokenService:
    """
    Tamper-evident tokens binding an order to a later mint.

    Token layout: ``base64url(canonical_json(payload) + "." + hex(hmac_sha256))``
    without padding. Replay protection is not the token's job; a claim is
    single-use because the stored ``Claim`` moves to ``consumed``.
    """

    def __init__(
        self,
        secret: Optional[str],
        base_url: str,
        clock: Clock = now_ms,
        claim_ttl: timedelta = timedelta(hours=168),
        mint_ttl: timedelta = timedelta(minutes=15)
    ):
        self.secret = secret
        self.base_url = base_url.rstrip("/")
        self.clock = clock
        self.claim_ttl = claim_ttl
        self.mint_ttl = mint_ttl
        self.logger = logger.bind(service="claim_tokens")

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = now_ms) -> "ClaimTokenService":
        return cls(
            secret=settings.claim_signing_secret,
            base_url=settings.base_url,
            clock=clock,
            claim_ttl=timedelta(hours=settings.claim_token_ttl_hours),
            mint_ttl=timedelta(minutes=settings.mint_signature_ttl_minutes)
        )

    def _require_secret(self) -> bytes:
        if not self.secret:
            raise ConfigurationError("Claim signing secret not configured")
        return self.secret.encode("utf-8")

    def _sign(self, message: str) -> str:
        return hmac.new(self._require_secret(), message.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(
        self,
        order_id: str,
        wallet_address: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        token_type: TokenType = "claim"
    ) -> IssuedToken:
        """
        Issue a signed token for ``order_id``.

        Args:
            order_id: Order the token is bound to
            wallet_address: Wallet bound into the payload, if any
            ttl: Lifetime; defaults to the claim TTL (7 days)
            token_type: ``claim`` or ``mint``

        Returns:
            The opaque token and its expiry in epoch milliseconds
        """
        ttl = self.claim_ttl if ttl is None else ttl
        expires_at = self.clock() + int(ttl.total_seconds() * 1000)

        payload = ClaimTokenPayload(
            order_id=order_id,
            wallet_address=wallet_address,
            expires_at=expires_at,
            nonce=secrets.token_hex(16),
            type=token_type
        )
        message = canonical_json(payload.to_record())
        token = _b64encode(f"{message}.{self._sign(message)}".encode("utf-8"))

        self.logger.info("token_issued", order_id=order_id, token_type=token_type, expires_at=expires_at)
        return IssuedToken(token=token, expires_at=expires_at)

    def issue_mint_signature(
        self,
        order_id: str,
        wallet_address: Optional[str],
        ttl: Optional[timedelta] = None
    ) -> IssuedToken:
        """Short-lived ``mint`` credential handed out when a claim is consumed"""
        return self.issue(
            order_id,
            wallet_address=wallet_address,
            ttl=self.mint_ttl if ttl is None else ttl,
            token_type="mint"
        )

    def verify(
        self,
        token: Optional[str],
        expected_type: TokenType = "claim",
        allow_expired: bool = False
    ) -> Optional[ClaimTokenPayload]:
        """
        Verify signature, expiry and type of a token.

        ``allow_expired`` skips only the expiry check; callers use it to
        recognize a superseded token of an order, never to redeem one.

        Returns:
            The payload, or None for any invalid, tampered, expired or
            wrong-type token

        Raises:
            ConfigurationError: If no signing secret is configured
        """
        secret = self._require_secret()
        if not token:
            return None

        try:
            raw = _b64decode(token)
        except (binascii.Error, ValueError):
            return None

        # Reject alternative encodings of the same bytes
        if _b64encode(raw) != token:
            return None

        try:
            decoded = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

        message, separator, signature = decoded.rpartition(".")
        if not separator or not message:
            return None

        expected = hmac.new(secret, message.encode("utf-8"), hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
            self.logger.warning("token_signature_mismatch")
            return None

        try:
            payload = ClaimTokenPayload.from_record(json.loads(message))
        except (ValueError, TypeError, PydanticValidationError):
            return None

        if payload.type != expected_type:
            self.logger.warning("token_type_mismatch", expected=expected_type, actual=payload.type)
            return None

        if not allow_expired and self.clock() > payload.expires_at:
            self.logger.info("token_expired", order_id=payload.order_id, expires_at=payload.expires_at)
            return None

        return payload

    def claim_link(self, token: str) -> str:
        return f"{self.base_url}/mint?claim={token}"
