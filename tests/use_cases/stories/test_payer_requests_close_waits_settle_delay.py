"""Story: Payer requests close; the payee keeps the settle delay to redeem."""

from __future__ import annotations

from datetime import timedelta

import pytest

from paychan.application.coordinator import ChannelLifecycleCoordinator, Role
from paychan.application.ledger.use_cases.accounts import FAUCET_BALANCE
from paychan.domain.channel.entities import (
    ChannelNotFound,
    ChannelPolicy,
    ChannelState,
    ChannelStatus,
)
from paychan.domain.errors import (
    ChannelExpiredError,
    ErrorKind,
    InvalidStateTransitionError,
)
from tests.fixtures import FakeClock
from tests.use_cases.helpers import UseCaseLedgerGateway


@pytest.mark.asyncio
async def test_payer_close_is_deferred_until_settle_delay_elapses(
    coordinator: ChannelLifecycleCoordinator,
    payer_gateway: UseCaseLedgerGateway,
    payee_gateway: UseCaseLedgerGateway,
    channel_policy: ChannelPolicy,
    clock: FakeClock,
) -> None:
    """
    Story: Payer asks to close after paying 1,000,000 drops.

    Phase1: The close only sets an expiration one settle delay away
    Phase2: The payee redeems within the window
    Phase3: The payer cannot finalize early
    Phase4: Once expired, claims fail and the payer finalizes the close
    """
    session = await coordinator.open_channel(10_000_000, 3600, channel_policy)
    await coordinator.run_payments(session, [250_000] * 4)

    # Phase1
    state = await coordinator.request_close(session, Role.PAYER)
    assert isinstance(state, ChannelState)
    assert state.expiration == clock() + timedelta(seconds=3600)
    assert session.status == ChannelStatus.ACTIVE
    assert session.close_requested_at == clock()

    # Phase2
    clock.advance(1800)
    state = await coordinator.settle(session)
    assert isinstance(state, ChannelState)
    assert state.claimed_amount == 1_000_000

    # Phase3
    with pytest.raises(InvalidStateTransitionError, match="cannot be finalized"):
        await coordinator.finalize_close(session)

    # Phase4
    clock.advance(1800)
    late = coordinator.authorize_payment(session, 250_000)
    result = await coordinator.receive_claim(session, late)
    assert not result.valid
    assert result.has(ErrorKind.CHANNEL_EXPIRED)

    closed = await coordinator.finalize_close(session)
    assert isinstance(closed, ChannelNotFound)
    assert session.status == ChannelStatus.CLOSED

    final = await coordinator.final_status(session)
    assert final.payer_balance == FAUCET_BALANCE - 1_000_000
    assert final.payee_balance == FAUCET_BALANCE + 1_000_000
    assert isinstance(
        await payer_gateway.query_channel_state(session.channel_id), ChannelNotFound
    )


@pytest.mark.asyncio
async def test_second_payer_close_keeps_earlier_expiration(
    coordinator: ChannelLifecycleCoordinator,
    channel_policy: ChannelPolicy,
    clock: FakeClock,
) -> None:
    session = await coordinator.open_channel(10_000_000, 3600, channel_policy)
    first = await coordinator.request_close(session, Role.PAYER)
    assert isinstance(first, ChannelState)

    clock.advance(600)
    second = await coordinator.request_close(session, Role.PAYER)
    assert isinstance(second, ChannelState)
    assert second.expiration == first.expiration


@pytest.mark.asyncio
async def test_settle_and_close_after_deadline_redeems_nothing(
    coordinator: ChannelLifecycleCoordinator,
    channel_policy: ChannelPolicy,
    clock: FakeClock,
) -> None:
    """
    Story: Payee sleeps through the settle delay, then settles with close.

    The ledger closes the expired channel on touch and refunds the payer.
    The coordinator must report the claim as lost, not as redeemed.
    """
    session = await coordinator.open_channel(10_000_000, 3600, channel_policy)
    await coordinator.run_payments(session, [400_000])
    await coordinator.request_close(session, Role.PAYER)

    clock.advance(3601)
    with pytest.raises(ChannelExpiredError, match="expired before the claim"):
        await coordinator.settle(session, close=True)

    assert session.status == ChannelStatus.CLOSED
    assert session.claimed_amount == 0
    final = await coordinator.final_status(session)
    assert not final.channel_exists
    assert final.payer_balance == FAUCET_BALANCE
    assert final.payee_balance == FAUCET_BALANCE
