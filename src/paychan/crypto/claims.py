"""Canonical byte encoding and ECDSA signing of channel claims.

A claim authorizes the payee to redeem up to a cumulative amount from one
channel. The signed message is::

    b"CLM\\x00" || channel_id (32 bytes) || amount (uint64, big endian)

so a signature is bound to exactly one ``(channel_id, amount)`` pair.
"""

from __future__ import annotations

import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ec

from ..domain.errors import EncodingError
from .certificates import sign_bytes, verify_signature_bytes
from .key_utils import is_channel_id

CLAIM_PREFIX = b"CLM\x00"
MAX_CLAIM_AMOUNT = 2**64 - 1


def encode_claim(channel_id: str, cumulative_amount: int) -> bytes:
    """Return the canonical bytes signed for a claim.

    Raises:
        EncodingError: if the channel id is not 64 hex characters or the
            amount is not an unsigned 64-bit integer.
    """
    if not isinstance(channel_id, str) or not is_channel_id(channel_id):
        raise EncodingError(f"Channel id must be 64 hex characters, got {channel_id!r}")
    if isinstance(cumulative_amount, bool) or not isinstance(cumulative_amount, int):
        raise EncodingError(
            f"Claim amount must be an integer number of drops, got {cumulative_amount!r}"
        )
    if cumulative_amount < 0 or cumulative_amount > MAX_CLAIM_AMOUNT:
        raise EncodingError(
            f"Claim amount {cumulative_amount} is outside the encodable range"
        )
    return (
        CLAIM_PREFIX
        + bytes.fromhex(channel_id)
        + cumulative_amount.to_bytes(8, "big")
    )


def sign_claim(
    private_key: ec.EllipticCurvePrivateKey, channel_id: str, cumulative_amount: int
) -> str:
    """Sign a claim and return the base64-encoded DER signature."""
    return sign_bytes(private_key, encode_claim(channel_id, cumulative_amount))


def verify_claim_signature(
    public_key: ec.EllipticCurvePublicKey,
    channel_id: str,
    cumulative_amount: int,
    signature_b64: str,
) -> bool:
    """Return True when the signature is valid for the exact claim.

    Malformed signatures are reported as invalid. Encoding problems with the
    claim itself propagate as EncodingError.
    """
    message = encode_claim(channel_id, cumulative_amount)
    try:
        return verify_signature_bytes(public_key, message, signature_b64)
    except (InvalidSignature, binascii.Error, ValueError, TypeError):
        return False
