"""Story: Payer adds capacity; payee re-validates against the raised expectation."""

from __future__ import annotations

import pytest

from paychan.application.coordinator import ChannelLifecycleCoordinator
from paychan.domain.channel.entities import ChannelPolicy, ChannelState, ChannelStatus
from paychan.domain.errors import (
    ErrorKind,
    InvalidStateTransitionError,
    PolicyViolationError,
)
from tests.use_cases.helpers import UseCaseLedgerGateway


@pytest.mark.asyncio
async def test_funding_raises_capacity_and_channel_returns_to_active(
    coordinator: ChannelLifecycleCoordinator,
    payee_gateway: UseCaseLedgerGateway,
    channel_policy: ChannelPolicy,
) -> None:
    """
    Story: Payer funds an active channel with 69,420 drops.

    The channel passes through Funded and is re-validated before it is Active
    again. A claim above the old capacity becomes acceptable.
    """
    session = await coordinator.open_channel(10_000_000, 3600, channel_policy)
    await coordinator.run_payments(session, [9_000_000])

    # Above the original capacity: rejected
    too_much = coordinator.authorize_payment(session, 1_050_000)
    result = await coordinator.receive_claim(session, too_much)
    assert not result.valid
    assert result.has(ErrorKind.EXCEEDS_CAPACITY)

    validation = await coordinator.fund_channel(session, 69_420)
    assert validation.is_valid
    assert session.status == ChannelStatus.ACTIVE
    assert session.history[-2:] == [ChannelStatus.FUNDED, ChannelStatus.ACTIVE]
    assert session.policy.expected_amount == 10_069_420

    state = await payee_gateway.query_channel_state(session.channel_id)
    assert isinstance(state, ChannelState)
    assert state.capacity == 10_069_420

    # The same cumulative amount now fits
    result = await coordinator.receive_claim(session, too_much)
    assert result.valid
    assert session.best_claim == too_much

    # A stale expectation is reported, never silently accepted
    stale = coordinator.validator.validate(state, channel_policy)
    assert not stale.is_valid
    assert stale.errors == [
        "Channel amount mismatch: expected 10000000, got 10069420"
    ]


@pytest.mark.asyncio
async def test_channel_failing_policy_stays_created_until_policy_is_fixed(
    coordinator: ChannelLifecycleCoordinator,
    channel_policy: ChannelPolicy,
) -> None:
    """
    Story: Payee demands a longer settle delay than the payer offered.

    The channel exists on the ledger but the coordinator keeps it in Created
    until the payee re-validates with a policy the channel satisfies.
    """
    strict = channel_policy.model_copy(update={"min_settle_delay": 86_400})

    with pytest.raises(PolicyViolationError) as exc_info:
        await coordinator.open_channel(10_000_000, 3600, strict)

    assert exc_info.value.reasons == [
        "Settle delay too short: 3600 seconds (minimum required: 86400)"
    ]

    session = coordinator.get_session(exc_info.value.channel_id)
    assert session.status == ChannelStatus.CREATED
    with pytest.raises(InvalidStateTransitionError):
        coordinator.authorize_payment(session, 1)

    await coordinator.revalidate(session, channel_policy)
    assert session.status == ChannelStatus.ACTIVE
