from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Type, TypeVar

from cryptography.exceptions import InvalidSignature
from pydantic import BaseModel, ValidationError

from ....crypto.certificates import (
    deserialize_envelope,
    load_public_key_from_der_b64,
    verify_envelope,
)
from ....crypto.claims import verify_claim_signature
from ....crypto.key_utils import address_from_public_key_der_b64, compute_channel_id
from ....domain.channel.entities import ChannelState
from ....domain.errors import (
    AccountNotFoundError,
    ChannelNotFoundError,
    EncodingError,
    ExceedsCapacityError,
    LedgerRejectedError,
    SignatureInvalidError,
    TransactionConflictError,
)
from ....domain.ledger.entities import (
    Account,
    CommitStatus,
    LedgerWrites,
    PayChannelEntry,
)
from ....domain.ledger.repositories import (
    AccountRepository,
    LedgerTransactionRepository,
    PayChannelRepository,
)
from ...shared.clock import Clock, utc_now
from ...shared.transaction_payloads import (
    ClaimChannelTx,
    CloseChannelTx,
    FundChannelTx,
    OpenChannelTx,
)
from ..dtos import (
    OpenChannelResponseDTO,
    SignedTransactionDTO,
    TransactionResultDTO,
)

logger = logging.getLogger(__name__)

TxT = TypeVar("TxT", bound=BaseModel)
ResultT = TypeVar("ResultT", bound=BaseModel)

MAX_COMMIT_ATTEMPTS = 5


class _PendingWrites:
    """Records read and changed by one attempt at applying a transaction."""

    def __init__(
        self,
        account_repo: AccountRepository,
        channel_repo: PayChannelRepository,
        tx_hash: str,
        signer: Account,
    ):
        self._account_repo = account_repo
        self._channel_repo = channel_repo
        self.writes = LedgerWrites(tx_hash=tx_hash)
        self.writes.accounts[signer.address] = signer

    async def account(self, address: str) -> Account:
        account = self.writes.accounts.get(address)
        if account is None:
            account = await self._account_repo.get_by_address(address)
            if not account:
                raise AccountNotFoundError(f"Account {address} not found")
            self.writes.accounts[address] = account
        return account

    async def channel(self, channel_id: str) -> PayChannelEntry:
        entry = await self._channel_repo.get_by_channel_id(channel_id)
        if not entry:
            raise ChannelNotFoundError(channel_id)
        self.writes.channel = entry
        return entry

    def create_channel(self, entry: PayChannelEntry) -> None:
        self.writes.channel = entry
        self.writes.channel_created = True

    def delete_channel(self, entry: PayChannelEntry) -> None:
        self.writes.channel = entry
        self.writes.channel_deleted = True

    def finish(self, result: BaseModel) -> LedgerWrites:
        self.writes.result_json = result.model_dump_json()
        return self.writes


class PayChannelLedgerService:
    """Service applying pay-channel transactions to the ledger.

    Every transaction arrives as an envelope signed by the submitting account
    and carries that account's next sequence. All records a transaction
    changes are committed atomically together with its result, keyed by the
    hash of the signed payload; submitting the same envelope again returns
    the recorded result instead of applying it twice.

    A channel whose expiration (or cancel_after) has passed is closed by the
    first transaction that touches it, before anything else happens.
    """

    def __init__(
        self,
        account_repo: AccountRepository,
        channel_repo: PayChannelRepository,
        tx_repo: LedgerTransactionRepository,
        clock: Clock = utc_now,
    ):
        self.account_repo = account_repo
        self.channel_repo = channel_repo
        self.tx_repo = tx_repo
        self.clock = clock

    async def _authenticate(
        self, dto: SignedTransactionDTO, model: Type[TxT]
    ) -> tuple[Account, TxT]:
        try:
            public_key = load_public_key_from_der_b64(dto.public_key_der_b64)
            verify_envelope(public_key, dto.envelope())
        except InvalidSignature:
            raise LedgerRejectedError("Invalid transaction signature")
        except (binascii.Error, ValueError):
            raise LedgerRejectedError("Malformed transaction envelope")

        try:
            payload = deserialize_envelope(dto.envelope(), model)
        except (ValidationError, ValueError) as e:
            raise LedgerRejectedError(f"Invalid transaction payload: {e}")

        signer = address_from_public_key_der_b64(dto.public_key_der_b64)
        if payload.account != signer:  # type: ignore[attr-defined]
            raise LedgerRejectedError("Transaction account does not match signer")

        account = await self.account_repo.get_by_address(signer)
        if not account:
            raise AccountNotFoundError(f"Account {signer} not found")
        if account.public_key_der_b64 != dto.public_key_der_b64:
            raise LedgerRejectedError("Signer key is not the account's regular key")
        return account, payload

    async def _execute(
        self,
        dto: SignedTransactionDTO,
        model: Type[TxT],
        result_model: Type[ResultT],
        apply: Callable[[_PendingWrites, TxT], Awaitable[ResultT]],
    ) -> ResultT:
        """Authenticate, apply and commit one transaction.

        Each attempt reads fresh state. An attempt whose reads were
        invalidated by a concurrent commit is discarded and run again.
        """
        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            account, tx = await self._authenticate(dto, model)
            tx_hash = hashlib.sha256(base64.b64decode(dto.payload_b64)).hexdigest()

            applied = await self.tx_repo.get_result(tx_hash)
            if applied is not None:
                logger.info("Transaction %s already applied", tx_hash[:16])
                return result_model.model_validate_json(applied)

            sequence = tx.sequence  # type: ignore[attr-defined]
            if sequence < account.sequence:
                raise TransactionConflictError(
                    f"Sequence {sequence} already used; account is at {account.sequence}"
                )
            if sequence > account.sequence:
                raise TransactionConflictError(
                    f"Sequence {sequence} is ahead of account sequence {account.sequence}"
                )

            pending = _PendingWrites(
                self.account_repo, self.channel_repo, tx_hash, account
            )
            account.sequence += 1
            result = await apply(pending, tx)

            status, stored = await self.tx_repo.commit(pending.finish(result))
            if status is CommitStatus.COMMITTED:
                return result
            if status is CommitStatus.ALREADY_APPLIED and stored is not None:
                return result_model.model_validate_json(stored)
            logger.info(
                "Concurrent ledger write on transaction %s (attempt %d/%d)",
                tx_hash[:16],
                attempt,
                MAX_COMMIT_ATTEMPTS,
            )
        raise TransactionConflictError(
            "Ledger records kept changing; transaction not applied"
        )

    async def _close_entry(
        self, pending: _PendingWrites, entry: PayChannelEntry
    ) -> None:
        remainder = entry.capacity - entry.claimed_amount
        if remainder:
            payer = await pending.account(entry.payer_address)
            payer.balance += remainder
        pending.delete_channel(entry)
        logger.info(
            "Closing channel %s: %d claimed, %d returned to %s",
            entry.channel_id,
            entry.claimed_amount,
            remainder,
            entry.payer_address,
        )

    async def _load_live(
        self, pending: _PendingWrites, channel_id: str
    ) -> tuple[Optional[PayChannelEntry], TransactionResultDTO]:
        """Load a channel, closing it first if it has expired."""
        entry = await pending.channel(channel_id)
        if entry.is_expired(self.clock()):
            await self._close_entry(pending, entry)
            return None, TransactionResultDTO(
                channel_id=channel_id,
                channel_closed=True,
                claimed_amount=entry.claimed_amount,
                capacity=entry.capacity,
            )
        return entry, self._result(entry)

    @staticmethod
    def _result(entry: PayChannelEntry, closed: bool = False) -> TransactionResultDTO:
        return TransactionResultDTO(
            channel_id=entry.channel_id,
            channel_closed=closed,
            claimed_amount=entry.claimed_amount,
            capacity=entry.capacity,
            expiration=entry.expiration,
        )

    async def _apply_close(
        self, pending: _PendingWrites, entry: PayChannelEntry, requester: str
    ) -> TransactionResultDTO:
        # The destination, or a fully claimed channel, closes immediately
        if requester == entry.payee_address or entry.claimed_amount == entry.capacity:
            await self._close_entry(pending, entry)
            return self._result(entry, closed=True)

        # The source only schedules the close after SettleDelay, keeping an
        # earlier expiration if one is already set
        scheduled = self.clock() + timedelta(seconds=entry.settle_delay)
        if entry.expiration is None or entry.expiration > scheduled:
            entry.expiration = scheduled
        logger.info(
            "Close of channel %s requested by payer, expires at %s",
            entry.channel_id,
            entry.expiration.isoformat(),
        )
        return self._result(entry)

    async def open_channel(self, dto: SignedTransactionDTO) -> OpenChannelResponseDTO:
        async def apply(
            pending: _PendingWrites, tx: OpenChannelTx
        ) -> OpenChannelResponseDTO:
            payer = await pending.account(tx.account)
            payee = await self.account_repo.get_by_address(tx.destination)
            if not payee:
                raise AccountNotFoundError(
                    f"Destination account {tx.destination} not found"
                )
            if payee.address == payer.address:
                raise LedgerRejectedError("Channel destination must differ from source")
            if payer.balance < tx.amount:
                raise LedgerRejectedError("Insufficient balance to fund channel")
            if tx.cancel_after is not None and tx.cancel_after <= self.clock():
                raise LedgerRejectedError("CancelAfter must be in the future")
            try:
                load_public_key_from_der_b64(tx.public_key_der_b64)
            except (binascii.Error, ValueError):
                raise LedgerRejectedError(
                    "Channel public key must be base64-encoded DER"
                )

            channel_id = compute_channel_id(payer.address, payee.address, tx.sequence)
            if await self.channel_repo.get_by_channel_id(channel_id):
                raise LedgerRejectedError("Payment channel already exists")

            payer.balance -= tx.amount
            pending.create_channel(
                PayChannelEntry(
                    channel_id=channel_id,
                    payer_address=payer.address,
                    payee_address=payee.address,
                    payer_public_key_der_b64=tx.public_key_der_b64,
                    capacity=tx.amount,
                    settle_delay=tx.settle_delay,
                    cancel_after=tx.cancel_after,
                    sequence=tx.sequence,
                )
            )
            return OpenChannelResponseDTO(
                channel_id=channel_id, sequence=tx.sequence, capacity=tx.amount
            )

        return await self._execute(dto, OpenChannelTx, OpenChannelResponseDTO, apply)

    async def fund_channel(
        self, channel_id: str, dto: SignedTransactionDTO
    ) -> TransactionResultDTO:
        async def apply(
            pending: _PendingWrites, tx: FundChannelTx
        ) -> TransactionResultDTO:
            if tx.channel_id != channel_id:
                raise LedgerRejectedError("Transaction channel does not match request")

            entry, expired = await self._load_live(pending, channel_id)
            if entry is None:
                return expired
            account = await pending.account(tx.account)
            if account.address != entry.payer_address:
                raise LedgerRejectedError("Only the channel source may fund it")
            if account.balance < tx.amount:
                raise LedgerRejectedError("Insufficient balance to fund channel")
            if tx.expiration is not None:
                earliest = self.clock() + timedelta(seconds=entry.settle_delay)
                if tx.expiration < earliest:
                    raise LedgerRejectedError(
                        f"Expiration must be at least SettleDelay ({entry.settle_delay}s) from now"
                    )

            account.balance -= tx.amount
            entry.capacity += tx.amount
            if tx.expiration is not None:
                entry.expiration = tx.expiration
            return self._result(entry)

        return await self._execute(dto, FundChannelTx, TransactionResultDTO, apply)

    async def claim(
        self, channel_id: str, dto: SignedTransactionDTO
    ) -> TransactionResultDTO:
        async def apply(
            pending: _PendingWrites, tx: ClaimChannelTx
        ) -> TransactionResultDTO:
            if tx.channel_id != channel_id:
                raise LedgerRejectedError("Transaction channel does not match request")

            entry, expired = await self._load_live(pending, channel_id)
            if entry is None:
                return expired
            if tx.account not in (entry.payer_address, entry.payee_address):
                raise LedgerRejectedError("Only channel participants may submit claims")

            if tx.amount is not None:
                self._check_claim(entry, tx, tx.amount)
                payee = await pending.account(entry.payee_address)
                payee.balance += tx.amount - entry.claimed_amount
                entry.claimed_amount = tx.amount

            if tx.close:
                return await self._apply_close(pending, entry, tx.account)
            return self._result(entry)

        return await self._execute(dto, ClaimChannelTx, TransactionResultDTO, apply)

    @staticmethod
    def _check_claim(entry: PayChannelEntry, tx: ClaimChannelTx, amount: int) -> None:
        if tx.account != entry.payee_address:
            raise LedgerRejectedError("Only the channel destination may redeem claims")
        if not tx.signature_b64 or not tx.public_key_der_b64:
            raise LedgerRejectedError("Claim requires a signature and public key")
        if tx.public_key_der_b64 != entry.payer_public_key_der_b64:
            raise LedgerRejectedError("Claim public key does not match channel")
        try:
            signature_ok = verify_claim_signature(
                load_public_key_from_der_b64(entry.payer_public_key_der_b64),
                entry.channel_id,
                amount,
                tx.signature_b64,
            )
        except EncodingError as e:
            raise LedgerRejectedError(str(e))
        if not signature_ok:
            raise SignatureInvalidError("Invalid claim signature")
        if amount > entry.capacity:
            raise ExceedsCapacityError(
                f"Claim amount {amount} exceeds channel capacity {entry.capacity}"
            )
        if amount <= entry.claimed_amount:
            raise LedgerRejectedError(
                f"Claim amount {amount} does not exceed claimed amount {entry.claimed_amount}"
            )

    async def request_close(
        self, channel_id: str, dto: SignedTransactionDTO
    ) -> TransactionResultDTO:
        async def apply(
            pending: _PendingWrites, tx: CloseChannelTx
        ) -> TransactionResultDTO:
            if tx.channel_id != channel_id:
                raise LedgerRejectedError("Transaction channel does not match request")

            entry, expired = await self._load_live(pending, channel_id)
            if entry is None:
                return expired
            if tx.account not in (entry.payer_address, entry.payee_address):
                raise LedgerRejectedError("Only channel participants may close it")
            return await self._apply_close(pending, entry, tx.account)

        return await self._execute(dto, CloseChannelTx, TransactionResultDTO, apply)

    async def get_channel(self, channel_id: str) -> ChannelState:
        entry = await self.channel_repo.get_by_channel_id(channel_id)
        if not entry:
            raise ChannelNotFoundError(channel_id)
        return entry.to_state()
