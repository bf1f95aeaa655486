"""Payloads of the transactions submitted to the ledger.

Each payload is serialized to canonical JSON, signed by the submitting account
and carried in an :class:`~paychan.crypto.certificates.Envelope`. ``sequence``
must equal the account's next sequence on the ledger; it makes each signed
transaction applicable at most once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class OpenChannelTx(BaseModel):
    """PaymentChannelCreate: reserve `amount` drops for `destination`."""

    account: str
    sequence: int = Field(..., ge=1)
    destination: str
    amount: int = Field(..., gt=0)
    settle_delay: int = Field(..., ge=0)
    public_key_der_b64: str
    cancel_after: Optional[datetime] = None


class FundChannelTx(BaseModel):
    """PaymentChannelFund: add capacity and optionally extend the expiration."""

    account: str
    sequence: int = Field(..., ge=1)
    channel_id: str
    amount: int = Field(..., gt=0)
    expiration: Optional[datetime] = None


class ClaimChannelTx(BaseModel):
    """PaymentChannelClaim: redeem a payer-signed claim and/or request close."""

    account: str
    sequence: int = Field(..., ge=1)
    channel_id: str
    amount: Optional[int] = Field(default=None, ge=0)
    signature_b64: Optional[str] = None
    public_key_der_b64: Optional[str] = None
    close: bool = False


class CloseChannelTx(BaseModel):
    """PaymentChannelClaim carrying only the close flag."""

    account: str
    sequence: int = Field(..., ge=1)
    channel_id: str
