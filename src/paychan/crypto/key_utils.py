from __future__ import annotations

import base64
import hashlib
import re

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

CHANNEL_ID_PATTERN = re.compile(r"^[0-9A-Fa-f]{64}$")

# Ledger space key for pay-channel entries, mirrors the "x" namespace of the XRPL.
_PAY_CHANNEL_SPACE = b"\x00x"


def public_key_der_b64(public_key: ec.EllipticCurvePublicKey) -> str:
    public_key_der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(public_key_der).decode("utf-8")


def compute_public_key_der_b64_from_private_pem(private_key_pem: str) -> str:
    private_key = serialization.load_pem_private_key(
        private_key_pem.encode(),
        password=None,
    )
    return public_key_der_b64(private_key.public_key())


def private_key_to_pem(private_key: ec.EllipticCurvePrivateKey) -> str:
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return pem.decode("utf-8")


def address_from_public_key_der_b64(der_b64: str) -> str:
    """Derive the ledger account address owned by a public key."""
    digest = hashlib.sha256(base64.b64decode(der_b64, validate=True)).digest()
    return "r" + digest[:20].hex()


def compute_channel_id(payer_address: str, payee_address: str, sequence: int) -> str:
    """Deterministic channel id for the create transaction at `sequence`."""
    hasher = hashlib.sha512()
    hasher.update(_PAY_CHANNEL_SPACE)
    hasher.update(payer_address.encode("utf-8"))
    hasher.update(payee_address.encode("utf-8"))
    hasher.update(sequence.to_bytes(4, "big"))
    return hasher.digest()[:32].hex().upper()


def is_channel_id(value: str) -> bool:
    return bool(CHANNEL_ID_PATTERN.match(value))
