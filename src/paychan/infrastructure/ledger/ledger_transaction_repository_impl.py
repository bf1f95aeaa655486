"""Atomic commit of ledger transaction writes."""

from __future__ import annotations

from typing import Optional

from ...domain.ledger.entities import CommitStatus, LedgerWrites
from ...domain.ledger.repositories import LedgerTransactionRepository
from ..storage import KeyValueStore
from .account_repository_impl import AccountRepositoryImpl
from .pay_channel_repository_impl import PayChannelRepositoryImpl


class LedgerTransactionRepositoryImpl(LedgerTransactionRepository):
    """Commits account and channel writes through the "commit_ledger_writes" script.

    Key layout:
      - tx:{hash} -> result JSON of the applied transaction

    Every written record is compared against the version it was read at,
    so two transactions racing on the same account or channel cannot both
    commit.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(tx_hash: str) -> str:
        return f"tx:{tx_hash}"

    async def get_result(self, tx_hash: str) -> Optional[str]:
        return await self.store.get(self._key(tx_hash))

    async def commit(self, writes: LedgerWrites) -> tuple[CommitStatus, Optional[str]]:
        keys = [self._key(writes.tx_hash)]
        args = [writes.result_json]

        for account in writes.accounts.values():
            keys.append(AccountRepositoryImpl.key_for(account.address))
            args.append(str(account.version))
            bumped = account.model_copy(update={"version": account.version + 1})
            args.append(bumped.model_dump_json())

        channel = writes.channel
        if channel is not None:
            keys.append(PayChannelRepositoryImpl.key_for(channel.channel_id))
            if writes.channel_created:
                args.append("")
                args.append(channel.model_dump_json())
            else:
                args.append(str(channel.version))
                if writes.channel_deleted:
                    args.append("")
                else:
                    bumped_channel = channel.model_copy(
                        update={"version": channel.version + 1}
                    )
                    args.append(bumped_channel.model_dump_json())

        result = await self.store.run_script(
            "commit_ledger_writes", keys=keys, args=args
        )
        status = CommitStatus(int(result[0]))
        if status is CommitStatus.CONFLICT:
            return status, None
        return status, result[1]
