"""Channel domain entities shared by the payer, the payee and the ledger gateway."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, field_serializer

from ..errors import ErrorKind


class ChannelStatus(str, Enum):
    """Lifecycle states of a channel as driven by the coordinator."""

    CREATED = "created"
    FUNDED = "funded"
    ACTIVE = "active"
    SETTLING = "settling"
    CLOSED = "closed"


class ChannelState(BaseModel):
    """On-ledger view of an open pay channel."""

    kind: Literal["channel"] = "channel"
    channel_id: str
    payer_address: str
    payee_address: str
    payer_public_key_der_b64: str
    capacity: int = Field(..., ge=0)
    settle_delay: int = Field(..., ge=0)
    cancel_after: Optional[datetime] = None
    expiration: Optional[datetime] = None
    claimed_amount: int = Field(default=0, ge=0)
    sequence: int = 0

    def expires_at(self) -> Optional[datetime]:
        """Earliest of the mutable expiration and the immutable cancel_after."""
        deadlines = [d for d in (self.expiration, self.cancel_after) if d is not None]
        return min(deadlines) if deadlines else None

    def is_expired(self, now: datetime) -> bool:
        deadline = self.expires_at()
        return deadline is not None and deadline <= now

    @field_serializer("cancel_after", "expiration")
    def serialize_deadline(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None


class ChannelNotFound(BaseModel):
    """Ledger answer for a channel id with no ledger record (never created or closed)."""

    kind: Literal["not_found"] = "not_found"
    channel_id: str


ChannelLookup = Union[ChannelState, ChannelNotFound]


class Claim(BaseModel):
    """Off-chain authorization to redeem up to `cumulative_amount` from a channel."""

    channel_id: str
    cumulative_amount: int = Field(..., ge=0)
    signature_b64: str
    public_key_der_b64: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        return value.isoformat()


class ChannelPolicy(BaseModel):
    """Payee acceptance policy for a freshly created or funded channel."""

    expected_destination: str
    expected_amount: int = Field(..., ge=0)
    min_settle_delay: int = Field(..., ge=0)
    min_cancel_after: Optional[datetime] = None
    min_expiration: Optional[datetime] = None

    def with_expected_amount(self, expected_amount: int) -> "ChannelPolicy":
        return self.model_copy(update={"expected_amount": expected_amount})


class VerificationResult(BaseModel):
    """Outcome of verifying one claim against the current channel state."""

    valid: bool
    reasons: list[ErrorKind] = Field(default_factory=list)
    messages: list[str] = Field(default_factory=list)

    def has(self, kind: ErrorKind) -> bool:
        return kind in self.reasons


class ValidationResult(BaseModel):
    """Outcome of validating channel parameters against a payee policy."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    channel: Optional[ChannelState] = None


class ChannelOpenResult(BaseModel):
    channel_id: str
    confirmed: bool
    sequence: Optional[int] = None


class SubmitResult(BaseModel):
    confirmed: bool
    channel_closed: bool = False
    claimed_amount: Optional[int] = None
