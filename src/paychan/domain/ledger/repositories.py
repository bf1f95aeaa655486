"""Ledger domain repositories: accounts, pay channels and applied transactions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .entities import Account, CommitStatus, LedgerWrites, PayChannelEntry


class AccountRepository(ABC):
    """Repository for ledger accounts (payers and payees alike)."""

    @abstractmethod
    async def create(self, account: Account) -> bool:
        """Store the account unless the address is taken. Returns True if stored."""
        pass

    @abstractmethod
    async def get_by_address(self, address: str) -> Optional[Account]:
        pass


class PayChannelRepository(ABC):
    """Repository for pay-channel ledger entries."""

    @abstractmethod
    async def get_by_channel_id(self, channel_id: str) -> Optional[PayChannelEntry]:
        pass


class LedgerTransactionRepository(ABC):
    """Applies transaction writes atomically and remembers their results."""

    @abstractmethod
    async def get_result(self, tx_hash: str) -> Optional[str]:
        """Stored result JSON of an applied transaction, if any."""
        pass

    @abstractmethod
    async def commit(self, writes: LedgerWrites) -> tuple[CommitStatus, Optional[str]]:
        """Apply ``writes`` if none of the records they read changed.

        Returns the status and, for ``COMMITTED`` and ``ALREADY_APPLIED``,
        the result JSON recorded for the transaction.
        """
        pass
