"""Domain-specific exceptions and the error taxonomy shared by all components."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional


class ErrorKind(str, Enum):
    """Closed set of failure reasons reported by verifiers, validators and the ledger."""

    SIGNATURE_INVALID = "signature_invalid"
    EXCEEDS_CAPACITY = "exceeds_capacity"
    CHANNEL_EXPIRED = "channel_expired"
    CHANNEL_NOT_FOUND = "channel_not_found"
    POLICY_VIOLATION = "policy_violation"
    SETTLEMENT_UNCONFIRMED = "settlement_unconfirmed"
    KEY_MISMATCH = "key_mismatch"
    ENCODING_ERROR = "encoding_error"
    NON_INCREASING_AMOUNT = "non_increasing_amount"
    LEDGER_REJECTED = "ledger_rejected"


class PaymentChannelError(Exception):
    """Base class for every payment channel failure."""

    kind: Optional[ErrorKind] = None


class SignatureInvalidError(PaymentChannelError):
    kind = ErrorKind.SIGNATURE_INVALID


class ExceedsCapacityError(PaymentChannelError):
    kind = ErrorKind.EXCEEDS_CAPACITY


class ChannelExpiredError(PaymentChannelError):
    kind = ErrorKind.CHANNEL_EXPIRED


class ChannelNotFoundError(PaymentChannelError):
    """Raised when a channel lookup fails on the ledger."""

    kind = ErrorKind.CHANNEL_NOT_FOUND

    def __init__(self, channel_id: str) -> None:
        super().__init__(f"Channel {channel_id} not found")
        self.channel_id = channel_id


class PolicyViolationError(PaymentChannelError):
    """Raised when a channel does not satisfy the payee's acceptance policy."""

    kind = ErrorKind.POLICY_VIOLATION

    def __init__(
        self, reasons: Iterable[str], channel_id: Optional[str] = None
    ) -> None:
        self.reasons = list(reasons)
        self.channel_id = channel_id
        super().__init__("; ".join(self.reasons) or "Channel policy violated")


class SettlementUnconfirmedError(PaymentChannelError):
    """Raised when a ledger submission did not reach finality."""

    kind = ErrorKind.SETTLEMENT_UNCONFIRMED


class KeyMismatchError(PaymentChannelError):
    kind = ErrorKind.KEY_MISMATCH


class EncodingError(PaymentChannelError):
    kind = ErrorKind.ENCODING_ERROR


class LedgerRejectedError(PaymentChannelError):
    """Raised when the ledger refuses a transaction because it breaks a ledger rule."""

    kind = ErrorKind.LEDGER_REJECTED


class TransactionConflictError(LedgerRejectedError):
    """Raised when a transaction could not be applied against the current ledger state.

    The sequence no longer matches the account, or concurrent writes kept
    invalidating it. Nothing was applied; the transaction may be signed again.
    """


class InvalidStateTransitionError(PaymentChannelError):
    """Raised when the lifecycle coordinator is asked for an illegal transition."""


class AccountNotFoundError(ValueError):
    """Raised when an account lookup fails."""


_ERRORS_BY_KIND: dict[ErrorKind, type[PaymentChannelError]] = {
    ErrorKind.SIGNATURE_INVALID: SignatureInvalidError,
    ErrorKind.EXCEEDS_CAPACITY: ExceedsCapacityError,
    ErrorKind.CHANNEL_EXPIRED: ChannelExpiredError,
    ErrorKind.KEY_MISMATCH: KeyMismatchError,
    ErrorKind.ENCODING_ERROR: EncodingError,
    ErrorKind.LEDGER_REJECTED: LedgerRejectedError,
}


def error_for_kind(kind: Optional[str], message: str) -> PaymentChannelError:
    """Rebuild a ledger-side rejection from its reported kind."""
    try:
        error_class = _ERRORS_BY_KIND[ErrorKind(kind)]
    except (KeyError, ValueError):
        error_class = LedgerRejectedError
    return error_class(message)
