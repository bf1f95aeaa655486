"""Data Transfer Objects for the ledger application layer."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_serializer

from ...crypto.certificates import Envelope, PayloadB64, SignatureB64


class RegistrationRequestDTO(BaseModel):
    """Wallet sends only its public key (DER b64) to open and fund an account."""

    public_key_der_b64: str


class AccountResponseDTO(BaseModel):
    """Account address, key, balance and next sequence."""

    address: str
    public_key_der_b64: str
    balance: int
    sequence: int


class SignedTransactionDTO(BaseModel):
    """A transaction payload signed by the submitting account."""

    public_key_der_b64: str
    payload_b64: str
    signature_b64: str

    def envelope(self) -> Envelope:
        return Envelope(
            payload_b64=PayloadB64(self.payload_b64),
            signature_b64=SignatureB64(self.signature_b64),
        )

    @classmethod
    def from_envelope(
        cls, public_key_der_b64: str, envelope: Envelope
    ) -> "SignedTransactionDTO":
        return cls(
            public_key_der_b64=public_key_der_b64,
            payload_b64=envelope.payload_b64,
            signature_b64=envelope.signature_b64,
        )


class OpenChannelResponseDTO(BaseModel):
    """Response after a validated PaymentChannelCreate."""

    channel_id: str
    sequence: int
    capacity: int


class TransactionResultDTO(BaseModel):
    """Outcome of a fund, claim or close transaction."""

    channel_id: str
    validated: bool = True
    channel_closed: bool = False
    claimed_amount: Optional[int] = None
    capacity: Optional[int] = None
    expiration: Optional[datetime] = None

    @field_serializer("expiration")
    def serialize_expiration(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None
