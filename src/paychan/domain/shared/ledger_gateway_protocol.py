"""Protocol interface for ledger gateway implementations.

The gateway is the only collaborator that talks to the ledger. Everything else
in the package is pure logic over the data it returns. A gateway instance is
bound to one signing wallet; submissions are made on behalf of that wallet.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..channel.entities import ChannelLookup, ChannelOpenResult, SubmitResult


class LedgerGatewayProtocol(Protocol):
    """Protocol defining the ledger operations used by the lifecycle coordinator.

    All submit operations are request/confirm pairs: implementations retry
    transient network failures and wait for ledger finality before returning
    ``confirmed=True``. A ``confirmed=False`` result means the transaction did
    not take effect. Ledger rule violations raise ``LedgerRejectedError``.
    """

    @property
    def address(self) -> str:
        """Ledger address of the wallet this gateway signs for."""
        ...

    @property
    def public_key_der_b64(self) -> str:
        """Public key of the wallet this gateway signs for."""
        ...

    async def submit_channel_open(
        self,
        payer: str,
        payee: str,
        amount: int,
        settle_delay: int,
        cancel_after: Optional[datetime] = None,
    ) -> ChannelOpenResult:
        """Create a channel from `payer` to `payee` holding `amount` drops."""
        ...

    async def submit_channel_fund(
        self,
        channel_id: str,
        amount: int,
        expiration: Optional[datetime] = None,
    ) -> SubmitResult:
        """Add capacity and optionally set a new mutable expiration."""
        ...

    async def submit_channel_settle(
        self,
        channel_id: str,
        amount: int,
        signature: str,
        close_requested: bool,
        public_key_der_b64: str,
    ) -> SubmitResult:
        """Redeem a claim, optionally requesting close in the same transaction."""
        ...

    async def submit_channel_close_request(self, channel_id: str) -> SubmitResult:
        """Request close, or finalize it once the expiration has passed."""
        ...

    async def query_channel_state(self, channel_id: str) -> ChannelLookup:
        """Return the validated channel state or ``ChannelNotFound``."""
        ...

    async def query_account_balance(self, address: str) -> int:
        """Return the account balance in drops."""
        ...
