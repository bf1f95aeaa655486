"""Payee-side verification of channel claims.

Verification never trusts a cached channel state: capacity and expiration are
changed by fund and close transactions that are submitted independently of
the claim loop, so `verify_fresh` looks the channel up on every call.
"""

from __future__ import annotations

import binascii
from datetime import datetime
from typing import Optional

from ...crypto.certificates import DERB64, load_public_key_from_der_b64
from ...crypto.claims import verify_claim_signature
from ...domain.channel.entities import (
    ChannelLookup,
    ChannelNotFound,
    Claim,
    VerificationResult,
)
from ...domain.errors import EncodingError, ErrorKind
from ...domain.shared.ledger_gateway_protocol import LedgerGatewayProtocol
from ..shared.clock import Clock, utc_now


class ClaimVerifier:
    """Checks a claim's signature, capacity and liveness against channel state."""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    def verify(
        self,
        channel_id: str,
        cumulative_amount: int,
        signature_b64: str,
        public_key_der_b64: str,
        current_state: ChannelLookup,
        *,
        now: Optional[datetime] = None,
        full_diagnostics: bool = False,
    ) -> VerificationResult:
        """Verify one claim.

        Checks run in order (signature, capacity, expiration). The first hard
        failure ends verification unless `full_diagnostics` is set, in which
        case every failing check is reported.
        """
        reasons: list[ErrorKind] = []
        messages: list[str] = []

        def fail(kind: ErrorKind, message: str) -> None:
            reasons.append(kind)
            messages.append(message)

        def result() -> VerificationResult:
            return VerificationResult(
                valid=not reasons, reasons=reasons, messages=messages
            )

        if isinstance(current_state, ChannelNotFound):
            fail(ErrorKind.CHANNEL_NOT_FOUND, f"Channel {channel_id} not found")
            return result()

        # 1. Cryptographic check
        try:
            public_key = load_public_key_from_der_b64(DERB64(public_key_der_b64))
            signature_ok = verify_claim_signature(
                public_key, channel_id, cumulative_amount, signature_b64
            )
        except EncodingError as e:
            fail(ErrorKind.ENCODING_ERROR, str(e))
            return result()
        except (binascii.Error, ValueError, TypeError):
            signature_ok = False
        if not signature_ok:
            fail(ErrorKind.SIGNATURE_INVALID, "Signature verification failed")
        elif current_state.channel_id.upper() != channel_id.upper():
            # Signed for some other channel; it authorizes nothing here
            fail(
                ErrorKind.SIGNATURE_INVALID,
                f"Claim is signed for channel {channel_id}, not {current_state.channel_id}",
            )
        elif public_key_der_b64 != current_state.payer_public_key_der_b64:
            fail(
                ErrorKind.KEY_MISMATCH,
                "Claim public key does not match the channel public key",
            )
        if reasons and not full_diagnostics:
            return result()

        # 2. Capacity check
        if cumulative_amount > current_state.capacity:
            fail(
                ErrorKind.EXCEEDS_CAPACITY,
                f"Claim amount {cumulative_amount} exceeds channel capacity {current_state.capacity}",
            )
            if not full_diagnostics:
                return result()

        # 3. Liveness check
        deadline = current_state.expires_at()
        if deadline is not None and deadline <= (now or self.clock()):
            fail(
                ErrorKind.CHANNEL_EXPIRED,
                f"Channel has already expired at {deadline.isoformat()}",
            )

        return result()

    def verify_claim(
        self,
        claim: Claim,
        current_state: ChannelLookup,
        *,
        now: Optional[datetime] = None,
        full_diagnostics: bool = False,
    ) -> VerificationResult:
        return self.verify(
            claim.channel_id,
            claim.cumulative_amount,
            claim.signature_b64,
            claim.public_key_der_b64,
            current_state,
            now=now,
            full_diagnostics=full_diagnostics,
        )

    async def verify_fresh(
        self,
        claim: Claim,
        gateway: LedgerGatewayProtocol,
        *,
        full_diagnostics: bool = False,
    ) -> VerificationResult:
        """Fetch the channel state from the ledger and verify against it."""
        current_state = await gateway.query_channel_state(claim.channel_id)
        return self.verify_claim(
            claim, current_state, full_diagnostics=full_diagnostics
        )
