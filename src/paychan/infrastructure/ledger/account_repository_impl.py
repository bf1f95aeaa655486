"""Account repository implementation."""

from __future__ import annotations

from typing import Optional

from ...domain.ledger.entities import Account
from ...domain.ledger.repositories import AccountRepository
from ..storage import KeyValueStore


class AccountRepositoryImpl(AccountRepository):
    """Account repository backed by KeyValueStore.

    Key layout:
      - account:{address} -> Account JSON

    Balance and sequence changes go through LedgerTransactionRepositoryImpl.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def key_for(address: str) -> str:
        return f"account:{address}"

    async def create(self, account: Account) -> bool:
        result = await self.store.run_script(
            "create_if_absent",
            keys=[self.key_for(account.address)],
            args=[account.model_dump_json()],
        )
        return int(result[0]) == 1

    async def get_by_address(self, address: str) -> Optional[Account]:
        data = await self.store.get(self.key_for(address))
        if not data:
            return None
        return Account.model_validate_json(data)
