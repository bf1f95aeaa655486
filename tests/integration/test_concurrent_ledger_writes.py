"""Concurrent transactions on one channel must not overwrite each other.

A funding and a claim race on the same channel record. Reads yield to the
event loop, so both transactions read the channel before either writes it.
"""

from __future__ import annotations

import asyncio

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from paychan.application.ledger.use_cases.accounts import FAUCET_BALANCE, AccountService
from paychan.application.ledger.use_cases.payment_channel import (
    PayChannelLedgerService,
)
from paychan.crypto.claims import sign_claim
from paychan.infrastructure.ledger.account_repository_impl import (
    AccountRepositoryImpl,
)
from paychan.infrastructure.ledger.ledger_transaction_repository_impl import (
    LedgerTransactionRepositoryImpl,
)
from paychan.infrastructure.ledger.pay_channel_repository_impl import (
    PayChannelRepositoryImpl,
)
from paychan.infrastructure.scripts import register_ledger_scripts
from paychan.infrastructure.storage import KeyValueStore, RedisKeyValueStore
from tests.fixtures import FakeClock, YieldingKeyValueStore
from tests.use_cases.helpers import UseCaseLedgerGateway


async def _ledger(
    store: KeyValueStore,
    payer_key: ec.EllipticCurvePrivateKey,
    payee_key: ec.EllipticCurvePrivateKey,
) -> tuple[PayChannelLedgerService, AccountService, UseCaseLedgerGateway, UseCaseLedgerGateway]:
    await register_ledger_scripts(store)
    account_service = AccountService(AccountRepositoryImpl(store))
    ledger_service = PayChannelLedgerService(
        AccountRepositoryImpl(store),
        PayChannelRepositoryImpl(store),
        LedgerTransactionRepositoryImpl(store),
        FakeClock(),
    )
    payer = UseCaseLedgerGateway(payer_key, account_service, ledger_service)
    payee = UseCaseLedgerGateway(payee_key, account_service, ledger_service)
    await payer.register()
    await payee.register()
    return ledger_service, account_service, payer, payee


async def _race_fund_and_claim(
    store: KeyValueStore,
    payer_key: ec.EllipticCurvePrivateKey,
    payee_key: ec.EllipticCurvePrivateKey,
) -> None:
    ledger_service, account_service, payer, payee = await _ledger(
        store, payer_key, payee_key
    )
    opened = await payer.submit_channel_open(
        payer.address, payee.address, 10_000_000, 3600
    )
    channel_id = opened.channel_id
    signature = sign_claim(payer_key, channel_id, 400_000)

    funded, claimed = await asyncio.gather(
        payer.submit_channel_fund(channel_id, 69_420),
        payee.submit_channel_settle(
            channel_id, 400_000, signature, False, payer.public_key_der_b64
        ),
    )

    assert funded.confirmed
    assert claimed.confirmed
    state = await ledger_service.get_channel(channel_id)
    assert state.capacity == 10_069_420
    assert state.claimed_amount == 400_000
    payer_account = await account_service.get_account(payer.address)
    payee_account = await account_service.get_account(payee.address)
    assert payer_account.balance == FAUCET_BALANCE - 10_069_420
    assert payee_account.balance == FAUCET_BALANCE + 400_000


@pytest.mark.asyncio
async def test_fund_and_claim_race_keeps_both_updates(
    payer_private_key: ec.EllipticCurvePrivateKey,
    payee_private_key: ec.EllipticCurvePrivateKey,
) -> None:
    await _race_fund_and_claim(
        YieldingKeyValueStore(), payer_private_key, payee_private_key
    )


@pytest.mark.asyncio
async def test_fund_and_claim_race_on_redis(
    redis_store: RedisKeyValueStore,
    payer_private_key: ec.EllipticCurvePrivateKey,
    payee_private_key: ec.EllipticCurvePrivateKey,
) -> None:
    await _race_fund_and_claim(redis_store, payer_private_key, payee_private_key)


@pytest.mark.asyncio
async def test_parallel_claims_credit_the_payee_once(
    payer_private_key: ec.EllipticCurvePrivateKey,
    payee_private_key: ec.EllipticCurvePrivateKey,
) -> None:
    """The same signed claim submitted twice in parallel pays out once."""
    ledger_service, account_service, payer, payee = await _ledger(
        YieldingKeyValueStore(), payer_private_key, payee_private_key
    )
    opened = await payer.submit_channel_open(
        payer.address, payee.address, 10_000_000, 3600
    )
    channel_id = opened.channel_id
    signature = sign_claim(payer_private_key, channel_id, 400_000)

    results = await asyncio.gather(
        payee.submit_channel_settle(
            channel_id, 400_000, signature, False, payer.public_key_der_b64
        ),
        payee.submit_channel_settle(
            channel_id, 400_000, signature, False, payer.public_key_der_b64
        ),
        return_exceptions=True,
    )

    applied = [r for r in results if not isinstance(r, BaseException)]
    assert len(applied) >= 1
    payee_account = await account_service.get_account(payee.address)
    assert payee_account.balance == FAUCET_BALANCE + 400_000
    state = await ledger_service.get_channel(channel_id)
    assert state.claimed_amount == 400_000
