"""Pytest fixtures for use case tests."""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from paychan.application.coordinator import ChannelLifecycleCoordinator, RetryPolicy
from paychan.application.ledger.use_cases.accounts import AccountService
from paychan.application.ledger.use_cases.payment_channel import (
    PayChannelLedgerService,
)
from paychan.application.payer.claim_authority import ClaimAuthority
from paychan.domain.channel.entities import ChannelPolicy
from tests.fixtures import (
    FakeClock,
    InMemoryClaimRepository,
    InMemoryLedgerRepositories,
)
from tests.use_cases.helpers import UseCaseLedgerGateway

CHANNEL_AMOUNT = 10_000_000
SETTLE_DELAY = 3600


# ============================================================================
# Ledger Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def ledger_repositories() -> AsyncGenerator[InMemoryLedgerRepositories, None]:
    repos = await InMemoryLedgerRepositories().setup()
    yield repos
    repos.clear()


@pytest.fixture
async def claim_repository() -> AsyncGenerator[InMemoryClaimRepository, None]:
    repo = InMemoryClaimRepository()
    yield repo
    repo.clear()


@pytest.fixture
def account_service(ledger_repositories: InMemoryLedgerRepositories) -> AccountService:
    return AccountService(ledger_repositories.accounts)


@pytest.fixture
def ledger_service(
    ledger_repositories: InMemoryLedgerRepositories,
    clock: FakeClock,
) -> PayChannelLedgerService:
    return PayChannelLedgerService(
        ledger_repositories.accounts,
        ledger_repositories.channels,
        ledger_repositories.transactions,
        clock,
    )


# ============================================================================
# Wallet Fixtures
# ============================================================================


@pytest.fixture
async def payer_gateway(
    payer_private_key: ec.EllipticCurvePrivateKey,
    account_service: AccountService,
    ledger_service: PayChannelLedgerService,
) -> UseCaseLedgerGateway:
    """Payer wallet, registered and funded by the faucet."""
    gateway = UseCaseLedgerGateway(payer_private_key, account_service, ledger_service)
    await gateway.register()
    return gateway


@pytest.fixture
async def payee_gateway(
    payee_private_key: ec.EllipticCurvePrivateKey,
    account_service: AccountService,
    ledger_service: PayChannelLedgerService,
) -> UseCaseLedgerGateway:
    """Payee wallet, registered and funded by the faucet."""
    gateway = UseCaseLedgerGateway(payee_private_key, account_service, ledger_service)
    await gateway.register()
    return gateway


# ============================================================================
# Coordinator Fixtures
# ============================================================================


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=1.0, timeout=None)


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by the coordinator, recorded instead of slept."""
    return []


@pytest.fixture
def coordinator(
    payer_gateway: UseCaseLedgerGateway,
    payee_gateway: UseCaseLedgerGateway,
    payer_private_key: ec.EllipticCurvePrivateKey,
    claim_repository: InMemoryClaimRepository,
    retry_policy: RetryPolicy,
    clock: FakeClock,
    sleeps: list[float],
) -> ChannelLifecycleCoordinator:
    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    return ChannelLifecycleCoordinator(
        payer_gateway,
        payee_gateway,
        ClaimAuthority(payer_private_key),
        claim_repository=claim_repository,
        retry_policy=retry_policy,
        clock=clock,
        sleep=record_sleep,
    )


@pytest.fixture
def channel_policy(payee_gateway: UseCaseLedgerGateway) -> ChannelPolicy:
    return ChannelPolicy(
        expected_destination=payee_gateway.address,
        expected_amount=CHANNEL_AMOUNT,
        min_settle_delay=SETTLE_DELAY,
    )
