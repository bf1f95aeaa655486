"""Payer-side production of signed channel claims."""

from __future__ import annotations

from typing import Optional

from cryptography.hazmat.primitives.asymmetric import ec

from ...crypto.claims import sign_claim
from ...crypto.key_utils import public_key_der_b64
from ...domain.channel.entities import Claim
from ...domain.errors import KeyMismatchError


def authorize(
    channel_id: str,
    cumulative_amount: int,
    payer_private_key: ec.EllipticCurvePrivateKey,
    *,
    payer_public_key_der_b64: Optional[str] = None,
) -> str:
    """Sign `(channel_id, cumulative_amount)` and return the base64 DER signature.

    Args:
        channel_id: 64 hex character channel identifier.
        cumulative_amount: Total drops authorized so far on the channel.
        payer_private_key: The payer's signing key.
        payer_public_key_der_b64: The channel's public key. When given, the
            private key must correspond to it.

    Raises:
        KeyMismatchError: If the private key does not match the channel key.
        EncodingError: If the claim cannot be canonically encoded.
    """
    if payer_public_key_der_b64 is not None:
        derived = public_key_der_b64(payer_private_key.public_key())
        if derived != payer_public_key_der_b64:
            raise KeyMismatchError("Private key does not match the channel public key")
    return sign_claim(payer_private_key, channel_id, cumulative_amount)


class ClaimAuthority:
    """Signs claims for channels funded by one payer key."""

    def __init__(self, payer_private_key: ec.EllipticCurvePrivateKey):
        self._private_key = payer_private_key
        self.public_key_der_b64 = public_key_der_b64(payer_private_key.public_key())

    def authorize(
        self,
        channel_id: str,
        cumulative_amount: int,
        channel_public_key_der_b64: Optional[str] = None,
    ) -> Claim:
        signature_b64 = authorize(
            channel_id,
            cumulative_amount,
            self._private_key,
            payer_public_key_der_b64=channel_public_key_der_b64,
        )
        return Claim(
            channel_id=channel_id,
            cumulative_amount=cumulative_amount,
            signature_b64=signature_b64,
            public_key_der_b64=self.public_key_der_b64,
        )
