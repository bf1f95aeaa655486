"""Pure validation rules for accepting a channel's on-ledger parameters.

These functions contain the payee's acceptance rules and can be tested in
isolation without a ledger. Every rule is evaluated so the payee sees all
violations at once.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ...domain.channel.entities import (
    ChannelLookup,
    ChannelNotFound,
    ChannelPolicy,
    ChannelState,
    ValidationResult,
)


def check_destination(channel_payee: str, expected_destination: str) -> Optional[str]:
    """Return an error when the channel does not pay the expected account."""
    if channel_payee != expected_destination:
        return (
            f"Destination account mismatch: expected {expected_destination}, "
            f"got {channel_payee}"
        )
    return None


def check_settle_delay(settle_delay: int, min_settle_delay: int) -> Optional[str]:
    """Return an error when the dispute window is shorter than required.

    Args:
        settle_delay: The channel's settle delay in seconds
        min_settle_delay: The payee's minimum settle delay in seconds
    """
    if settle_delay < min_settle_delay:
        return (
            f"Settle delay too short: {settle_delay} seconds "
            f"(minimum required: {min_settle_delay})"
        )
    return None


def check_cancel_after(
    cancel_after: Optional[datetime], min_cancel_after: Optional[datetime]
) -> Optional[str]:
    """Return an error when the immutable expiration comes before the payee's minimum.

    The rule only applies when both the channel and the policy set a value.
    """
    if cancel_after is not None and min_cancel_after is not None:
        if cancel_after < min_cancel_after:
            return (
                "Immutable expiration (cancel_after) is too soon: "
                f"{cancel_after.isoformat()}"
            )
    return None


def check_expiration(
    expiration: Optional[datetime], min_expiration: Optional[datetime]
) -> Optional[str]:
    if expiration is not None and min_expiration is not None:
        if expiration < min_expiration:
            return f"Mutable expiration is too soon: {expiration.isoformat()}"
    return None


def check_amount(capacity: int, expected_amount: int) -> Optional[str]:
    """Return an error unless the channel holds exactly the expected amount.

    A mismatch after a funding event means the caller's expectation is stale;
    it is reported, never silently accepted.
    """
    if capacity != expected_amount:
        return f"Channel amount mismatch: expected {expected_amount}, got {capacity}"
    return None


def validate_channel(
    channel_state: ChannelLookup, policy: ChannelPolicy
) -> ValidationResult:
    """Evaluate every acceptance rule and collect all violations."""
    if isinstance(channel_state, ChannelNotFound):
        return ValidationResult(
            is_valid=False, errors=[f"Channel {channel_state.channel_id} not found"]
        )

    state: ChannelState = channel_state
    errors = [
        error
        for error in (
            check_destination(state.payee_address, policy.expected_destination),
            check_settle_delay(state.settle_delay, policy.min_settle_delay),
            check_cancel_after(state.cancel_after, policy.min_cancel_after),
            check_expiration(state.expiration, policy.min_expiration),
            check_amount(state.capacity, policy.expected_amount),
        )
        if error is not None
    ]
    return ValidationResult(is_valid=not errors, errors=errors, channel=state)


class ChannelValidator:
    """Checks created or funded channels against the payee's policy."""

    def validate(
        self, channel_state: ChannelLookup, policy: ChannelPolicy
    ) -> ValidationResult:
        return validate_channel(channel_state, policy)
