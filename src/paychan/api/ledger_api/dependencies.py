"""Dependencies for the ledger API."""

from __future__ import annotations

from functools import lru_cache

from ...application.ledger.use_cases.accounts import AccountService
from ...application.ledger.use_cases.payment_channel import PayChannelLedgerService
from ...envs.ledger_env import Settings, get_settings
from ...infrastructure.database import DatabaseClient, get_database_client
from ...infrastructure.ledger.account_repository_impl import AccountRepositoryImpl
from ...infrastructure.ledger.pay_channel_repository_impl import (
    PayChannelRepositoryImpl,
)
from ...infrastructure.ledger.ledger_transaction_repository_impl import (
    LedgerTransactionRepositoryImpl,
)
from ...infrastructure.storage import RedisKeyValueStore


@lru_cache()
def get_settings_dependency() -> Settings:
    return get_settings()


@lru_cache()
def get_database_client_dependency() -> DatabaseClient:
    settings = get_settings_dependency()
    return get_database_client(settings)


@lru_cache()
def get_store_dependency() -> RedisKeyValueStore:
    db_client = get_database_client_dependency()
    return RedisKeyValueStore(db_client)


def get_account_repository() -> AccountRepositoryImpl:
    store = get_store_dependency()
    return AccountRepositoryImpl(store)


def get_pay_channel_repository() -> PayChannelRepositoryImpl:
    store = get_store_dependency()
    return PayChannelRepositoryImpl(store)


def get_ledger_transaction_repository() -> LedgerTransactionRepositoryImpl:
    store = get_store_dependency()
    return LedgerTransactionRepositoryImpl(store)


def get_account_service() -> AccountService:
    settings = get_settings_dependency()
    return AccountService(get_account_repository(), settings.faucet_balance)


def get_pay_channel_service() -> PayChannelLedgerService:
    return PayChannelLedgerService(
        get_account_repository(),
        get_pay_channel_repository(),
        get_ledger_transaction_repository(),
    )
