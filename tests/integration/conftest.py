"""Ledger over HTTP, backed by in-memory repositories."""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
from fastapi import FastAPI

from paychan.api.ledger_api.dependencies import (
    get_account_service,
    get_pay_channel_service,
)
from paychan.api.ledger_api.routers import accounts, channels
from paychan.application.ledger.use_cases.accounts import AccountService
from paychan.application.ledger.use_cases.payment_channel import (
    PayChannelLedgerService,
)
from tests.fixtures import FakeClock, InMemoryLedgerRepositories


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def ledger_repositories() -> AsyncGenerator[InMemoryLedgerRepositories, None]:
    repos = await InMemoryLedgerRepositories().setup()
    yield repos
    repos.clear()


@pytest.fixture
def account_service(ledger_repositories: InMemoryLedgerRepositories) -> AccountService:
    return AccountService(ledger_repositories.accounts)


@pytest.fixture
def ledger_service(
    ledger_repositories: InMemoryLedgerRepositories, clock: FakeClock
) -> PayChannelLedgerService:
    return PayChannelLedgerService(
        ledger_repositories.accounts,
        ledger_repositories.channels,
        ledger_repositories.transactions,
        clock,
    )


@pytest.fixture
def ledger_app(
    account_service: AccountService, ledger_service: PayChannelLedgerService
) -> FastAPI:
    app = FastAPI()
    app.include_router(accounts.router, prefix="/api/v1/ledger")
    app.include_router(channels.router, prefix="/api/v1/ledger")
    app.dependency_overrides[get_account_service] = lambda: account_service
    app.dependency_overrides[get_pay_channel_service] = lambda: ledger_service
    return app
