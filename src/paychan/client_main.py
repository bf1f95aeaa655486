"""Walk one channel through its whole lifecycle against a running ledger.

The payer opens a channel to the payee, streams ten off-chain payments,
the payee redeems the best claim and closes, and both balances are printed.
"""

from __future__ import annotations

import asyncio
import logging

from .application.coordinator import ChannelLifecycleCoordinator
from .application.payee.channel_validator import ChannelValidator
from .application.payee.claim_verifier import ClaimVerifier
from .application.payer.claim_authority import ClaimAuthority
from .domain.channel.entities import ChannelPolicy, ChannelState
from .envs.client_env import Settings, get_settings
from .infrastructure.ledger.ledger_client import HttpLedgerGateway

CHANNEL_AMOUNT = 10_000_000
SETTLE_DELAY = 86_400
PAYMENT_DROPS = 400_000
PAYMENT_COUNT = 10


async def print_balances(payer: HttpLedgerGateway, payee: HttpLedgerGateway) -> None:
    for gateway in (payer, payee):
        balance = await gateway.query_account_balance(gateway.address)
        print(f"Balance of {gateway.address} is {balance} drops")


async def run(settings: Settings) -> None:
    async with HttpLedgerGateway(
        settings.ledger_base_url,
        settings.payer_private_key(),
        timeout=settings.http_timeout,
    ) as payer, HttpLedgerGateway(
        settings.ledger_base_url,
        settings.payee_private_key(),
        timeout=settings.http_timeout,
    ) as payee:
        await payer.register()
        await payee.register()
        print("Balances before the channel is claimed:")
        await print_balances(payer, payee)

        coordinator = ChannelLifecycleCoordinator(
            payer,
            payee,
            ClaimAuthority(settings.payer_private_key()),
            verifier=ClaimVerifier(),
            validator=ChannelValidator(),
            retry_policy=settings.retry_policy(),
        )
        policy = ChannelPolicy(
            expected_destination=payee.address,
            expected_amount=CHANNEL_AMOUNT,
            min_settle_delay=SETTLE_DELAY,
        )
        session = await coordinator.open_channel(CHANNEL_AMOUNT, SETTLE_DELAY, policy)
        print(f"Payment channel {session.channel_id} is {session.status.value}")

        print(f"Making {PAYMENT_COUNT} off-chain payments of {PAYMENT_DROPS} drops each")
        loop = await coordinator.run_payments(session, [PAYMENT_DROPS] * PAYMENT_COUNT)
        if not loop.completed and loop.failure is not None:
            print(f"Payments stopped: {'; '.join(loop.failure.messages)}")
        if session.best_claim is not None:
            print(f"Best claim held by payee: {session.best_claim.cumulative_amount} drops")

        await coordinator.settle(session, close=True)
        print("Balances after the channel is claimed and closed:")
        await print_balances(payer, payee)

        final = await coordinator.final_status(session)
        if isinstance(final.channel, ChannelState):
            print(f"Channel still exists: {final.channel.model_dump_json()}")
        else:
            print("Channel closed: no ledger record remains")
        print(f"Payer balance: {final.payer_balance} drops")
        print(f"Payee balance: {final.payee_balance} drops")


def main() -> None:
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    asyncio.run(run(get_settings()))


if __name__ == "__main__":
    main()
