"""Use cases for ledger accounts."""

from __future__ import annotations

from ....crypto.certificates import load_public_key_from_der_b64
from ....crypto.key_utils import address_from_public_key_der_b64
from ....domain.errors import AccountNotFoundError
from ....domain.ledger.entities import Account
from ....domain.ledger.repositories import AccountRepository
from ..dtos import AccountResponseDTO, RegistrationRequestDTO

FAUCET_BALANCE = 100_000_000


class AccountService:
    """Service opening ledger accounts and answering balance queries."""

    def __init__(
        self, account_repo: AccountRepository, faucet_balance: int = FAUCET_BALANCE
    ):
        self.account_repo = account_repo
        self.faucet_balance = faucet_balance

    @staticmethod
    def _to_dto(account: Account) -> AccountResponseDTO:
        return AccountResponseDTO(
            address=account.address,
            public_key_der_b64=account.public_key_der_b64,
            balance=account.balance,
            sequence=account.sequence,
        )

    async def register(self, dto: RegistrationRequestDTO) -> AccountResponseDTO:
        try:
            load_public_key_from_der_b64(dto.public_key_der_b64)
            address = address_from_public_key_der_b64(dto.public_key_der_b64)
        except ValueError:
            raise ValueError("Public key must be base64-encoded DER")

        # Fund new accounts from the faucet; re-registering is a no-op
        account = Account(
            address=address,
            public_key_der_b64=dto.public_key_der_b64,
            balance=self.faucet_balance,
        )
        if not await self.account_repo.create(account):
            return await self.get_account(address)
        return self._to_dto(account)

    async def get_account(self, address: str) -> AccountResponseDTO:
        account = await self.account_repo.get_by_address(address)
        if not account:
            raise AccountNotFoundError(f"Account {address} not found")
        return self._to_dto(account)
