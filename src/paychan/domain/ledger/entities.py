"""Ledger domain entities: Account, PayChannelEntry and the writes of one transaction."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_serializer

from ..channel.entities import ChannelState


class Account(BaseModel):
    """Ledger account identified by an address derived from its public key."""

    id: UUID = Field(default_factory=uuid4)
    address: str
    public_key_der_b64: str
    balance: int = 0
    sequence: int = 1
    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("id")
    def serialize_id(self, value: UUID) -> str:
        return str(value)

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        return value.isoformat()


class PayChannelEntry(BaseModel):
    """Ledger record of an open unidirectional payment channel.

    The entry is deleted when the channel closes; closed channels have no
    ledger record at all.
    """

    channel_id: str
    payer_address: str
    payee_address: str
    payer_public_key_der_b64: str
    capacity: int
    claimed_amount: int = 0
    settle_delay: int
    cancel_after: Optional[datetime] = None
    expiration: Optional[datetime] = None
    sequence: int
    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("created_at")
    def serialize_created_at(self, value: datetime) -> str:
        return value.isoformat()

    @field_serializer("cancel_after", "expiration")
    def serialize_deadline(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    def is_expired(self, now: datetime) -> bool:
        deadlines = [d for d in (self.expiration, self.cancel_after) if d is not None]
        return bool(deadlines) and min(deadlines) <= now

    def to_state(self) -> ChannelState:
        return ChannelState(
            channel_id=self.channel_id,
            payer_address=self.payer_address,
            payee_address=self.payee_address,
            payer_public_key_der_b64=self.payer_public_key_der_b64,
            capacity=self.capacity,
            settle_delay=self.settle_delay,
            cancel_after=self.cancel_after,
            expiration=self.expiration,
            claimed_amount=self.claimed_amount,
            sequence=self.sequence,
        )


class CommitStatus(IntEnum):
    ALREADY_APPLIED = 0
    COMMITTED = 1
    CONFLICT = 2


class LedgerWrites(BaseModel):
    """Everything one transaction changes, committed together or not at all.

    ``version`` on each account and channel is the one that was read; the
    commit fails with a conflict if any of them changed in the meantime.
    """

    tx_hash: str
    result_json: str = ""
    accounts: dict[str, Account] = Field(default_factory=dict)
    channel: Optional[PayChannelEntry] = None
    channel_created: bool = False
    channel_deleted: bool = False
