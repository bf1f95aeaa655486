"""Coordinator behavior when ledger round trips fail or stall."""

from __future__ import annotations

import asyncio

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from paychan.application.coordinator import ChannelLifecycleCoordinator, RetryPolicy
from paychan.application.ledger.use_cases.accounts import AccountService
from paychan.application.ledger.use_cases.payment_channel import (
    PayChannelLedgerService,
)
from paychan.application.payer.claim_authority import ClaimAuthority
from paychan.domain.channel.entities import (
    ChannelLookup,
    ChannelPolicy,
    ChannelState,
    ChannelStatus,
    SubmitResult,
)
from paychan.domain.errors import LedgerRejectedError, SettlementUnconfirmedError
from tests.fixtures import FakeClock
from tests.use_cases.helpers import UseCaseLedgerGateway


class FlakyLedgerGateway(UseCaseLedgerGateway):
    """Reports the first `unconfirmed_settles` settlements as not validated."""

    def __init__(self, *args, unconfirmed_settles: int = 0, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.unconfirmed_settles = unconfirmed_settles
        self.stall_queries = False

    async def submit_channel_settle(self, *args, **kwargs) -> SubmitResult:
        if self.unconfirmed_settles > 0:
            self.unconfirmed_settles -= 1
            self.submissions.append("settle-lost")
            return SubmitResult(confirmed=False)
        return await super().submit_channel_settle(*args, **kwargs)

    async def query_channel_state(self, channel_id: str) -> ChannelLookup:
        if self.stall_queries:
            await asyncio.sleep(1)
        return await super().query_channel_state(channel_id)


@pytest.fixture
async def flaky_payee_gateway(
    payee_private_key: ec.EllipticCurvePrivateKey,
    account_service: AccountService,
    ledger_service: PayChannelLedgerService,
) -> FlakyLedgerGateway:
    gateway = FlakyLedgerGateway(payee_private_key, account_service, ledger_service)
    await gateway.register()
    return gateway


@pytest.fixture
def flaky_coordinator(
    payer_gateway: UseCaseLedgerGateway,
    flaky_payee_gateway: FlakyLedgerGateway,
    payer_private_key: ec.EllipticCurvePrivateKey,
    retry_policy: RetryPolicy,
    clock: FakeClock,
    sleeps: list[float],
) -> ChannelLifecycleCoordinator:
    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return ChannelLifecycleCoordinator(
        payer_gateway,
        flaky_payee_gateway,
        ClaimAuthority(payer_private_key),
        retry_policy=retry_policy,
        clock=clock,
        sleep=record_sleep,
    )


@pytest.fixture
def flaky_policy(flaky_payee_gateway: FlakyLedgerGateway) -> ChannelPolicy:
    return ChannelPolicy(
        expected_destination=flaky_payee_gateway.address,
        expected_amount=10_000_000,
        min_settle_delay=3600,
    )


def test_retry_policy_backs_off_exponentially_up_to_the_cap() -> None:
    policy = RetryPolicy(base_delay=0.5, max_delay=3.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_unconfirmed_settlement_is_retried_with_backoff(
    flaky_coordinator: ChannelLifecycleCoordinator,
    flaky_payee_gateway: FlakyLedgerGateway,
    flaky_policy: ChannelPolicy,
    sleeps: list[float],
) -> None:
    session = await flaky_coordinator.open_channel(10_000_000, 3600, flaky_policy)
    await flaky_coordinator.run_payments(session, [700_000])
    flaky_payee_gateway.unconfirmed_settles = 2

    state = await flaky_coordinator.settle(session)

    assert isinstance(state, ChannelState)
    assert state.claimed_amount == 700_000
    assert sleeps == [0.1, 0.2]
    assert flaky_payee_gateway.submissions == ["settle-lost", "settle-lost", "settle"]
    assert session.status == ChannelStatus.ACTIVE


@pytest.mark.asyncio
async def test_settlement_that_never_confirms_leaves_channel_active(
    flaky_coordinator: ChannelLifecycleCoordinator,
    flaky_payee_gateway: FlakyLedgerGateway,
    flaky_policy: ChannelPolicy,
    sleeps: list[float],
) -> None:
    """Settlement is atomic: after the retry bound nothing has been redeemed."""
    session = await flaky_coordinator.open_channel(10_000_000, 3600, flaky_policy)
    await flaky_coordinator.run_payments(session, [700_000])
    flaky_payee_gateway.unconfirmed_settles = 10

    with pytest.raises(SettlementUnconfirmedError):
        await flaky_coordinator.settle(session)

    assert len(sleeps) == 2
    assert session.status == ChannelStatus.ACTIVE
    assert session.history[-2:] == [ChannelStatus.SETTLING, ChannelStatus.ACTIVE]
    state = await flaky_payee_gateway.query_channel_state(session.channel_id)
    assert isinstance(state, ChannelState)
    assert state.claimed_amount == 0

    # The held claim is still redeemable once the ledger recovers
    flaky_payee_gateway.unconfirmed_settles = 0
    state = await flaky_coordinator.settle(session)
    assert isinstance(state, ChannelState)
    assert state.claimed_amount == 700_000


@pytest.mark.asyncio
async def test_stalled_query_times_out_as_unconfirmed(
    flaky_coordinator: ChannelLifecycleCoordinator,
    flaky_payee_gateway: FlakyLedgerGateway,
    flaky_policy: ChannelPolicy,
    sleeps: list[float],
) -> None:
    session = await flaky_coordinator.open_channel(10_000_000, 3600, flaky_policy)
    claim = flaky_coordinator.authorize_payment(session, 100_000)
    flaky_coordinator.retry_policy = RetryPolicy(
        max_attempts=2, base_delay=0.1, timeout=0.01
    )
    flaky_payee_gateway.stall_queries = True

    with pytest.raises(SettlementUnconfirmedError, match="timed out"):
        await flaky_coordinator.receive_claim(session, claim)

    assert sleeps == [0.1]
    assert session.best_claim is None


@pytest.mark.asyncio
async def test_ledger_rejection_is_not_retried(
    flaky_coordinator: ChannelLifecycleCoordinator,
    payer_gateway: UseCaseLedgerGateway,
    flaky_policy: ChannelPolicy,
    sleeps: list[float],
) -> None:
    session = await flaky_coordinator.open_channel(10_000_000, 3600, flaky_policy)

    # More than the faucet left in the payer's account
    with pytest.raises(LedgerRejectedError, match="Insufficient balance"):
        await flaky_coordinator.fund_channel(session, 95_000_000)

    assert sleeps == []
    assert payer_gateway.submissions == ["open", "fund"]
    assert session.status == ChannelStatus.ACTIVE


@pytest.mark.asyncio
async def test_final_status_retries_unavailable_channel_query(
    flaky_coordinator: ChannelLifecycleCoordinator,
    payer_gateway: UseCaseLedgerGateway,
    flaky_policy: ChannelPolicy,
    sleeps: list[float],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session = await flaky_coordinator.open_channel(10_000_000, 3600, flaky_policy)
    query = payer_gateway.query_channel_state
    failures = [SettlementUnconfirmedError("Ledger query failed")]

    async def unavailable_once(channel_id: str) -> ChannelLookup:
        if failures:
            raise failures.pop()
        return await query(channel_id)

    monkeypatch.setattr(payer_gateway, "query_channel_state", unavailable_once)

    status = await flaky_coordinator.final_status(session)

    assert isinstance(status.channel, ChannelState)
    assert status.channel.capacity == 10_000_000
    assert sleeps == [0.1]
