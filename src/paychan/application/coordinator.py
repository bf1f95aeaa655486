"""Channel lifecycle coordinator.

Drives a channel through ``Created -> Funded -> Active -> Settling -> Closed``
on behalf of a payer and a payee, each represented by a ledger gateway bound
to its own wallet. Ledger round trips are the only awaits; they are retried
with exponential backoff under a caller supplied bound and then surfaced.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from pydantic import BaseModel, Field

from ..domain.channel.entities import (
    ChannelLookup,
    ChannelNotFound,
    ChannelOpenResult,
    ChannelPolicy,
    ChannelState,
    ChannelStatus,
    Claim,
    SubmitResult,
    ValidationResult,
    VerificationResult,
)
from ..domain.errors import (
    ChannelExpiredError,
    ChannelNotFoundError,
    ErrorKind,
    InvalidStateTransitionError,
    PaymentChannelError,
    PolicyViolationError,
    SettlementUnconfirmedError,
)
from ..domain.payee.claim_repository import ClaimRepository
from ..domain.shared.ledger_gateway_protocol import LedgerGatewayProtocol
from .payee.channel_validator import ChannelValidator
from .payee.claim_verifier import ClaimVerifier
from .payer.claim_authority import ClaimAuthority
from .shared.clock import Clock, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSITIONS: dict[ChannelStatus, frozenset[ChannelStatus]] = {
    ChannelStatus.CREATED: frozenset(
        {ChannelStatus.FUNDED, ChannelStatus.ACTIVE, ChannelStatus.CLOSED}
    ),
    ChannelStatus.FUNDED: frozenset(
        {ChannelStatus.FUNDED, ChannelStatus.ACTIVE, ChannelStatus.CLOSED}
    ),
    ChannelStatus.ACTIVE: frozenset(
        {ChannelStatus.FUNDED, ChannelStatus.SETTLING, ChannelStatus.CLOSED}
    ),
    ChannelStatus.SETTLING: frozenset({ChannelStatus.ACTIVE, ChannelStatus.CLOSED}),
    ChannelStatus.CLOSED: frozenset(),
}

# Claim failures that end the payment loop but leave the channel redeemable
TERMINAL_CLAIM_FAILURES = frozenset(
    {
        ErrorKind.SIGNATURE_INVALID,
        ErrorKind.EXCEEDS_CAPACITY,
        ErrorKind.CHANNEL_EXPIRED,
    }
)


class Role(str, Enum):
    PAYER = "payer"
    PAYEE = "payee"


class RetryPolicy(BaseModel):
    """Bound on retries of ledger round trips."""

    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=8.0, ge=0)
    timeout: Optional[float] = Field(default=30.0, gt=0)

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


class ChannelSession(BaseModel):
    """Explicit per-channel state threaded through every coordinator call."""

    channel_id: str
    payer_address: str
    payee_address: str
    payer_public_key_der_b64: str
    policy: ChannelPolicy
    status: ChannelStatus = ChannelStatus.CREATED
    cumulative_amount: int = 0
    best_claim: Optional[Claim] = None
    claimed_amount: int = 0
    close_requested_at: Optional[datetime] = None
    last_validation: Optional[ValidationResult] = None
    history: list[ChannelStatus] = Field(
        default_factory=lambda: [ChannelStatus.CREATED]
    )


class PaymentLoopResult(BaseModel):
    accepted: list[Claim] = Field(default_factory=list)
    rejected: Optional[Claim] = None
    failure: Optional[VerificationResult] = None

    @property
    def completed(self) -> bool:
        return self.failure is None


class FinalStatus(BaseModel):
    channel: ChannelLookup
    payer_balance: int
    payee_balance: int

    @property
    def channel_exists(self) -> bool:
        return isinstance(self.channel, ChannelState)


class ChannelLifecycleCoordinator:
    """Owns the channel state machine and the invariants tying its phases together."""

    def __init__(
        self,
        payer_gateway: LedgerGatewayProtocol,
        payee_gateway: LedgerGatewayProtocol,
        claim_authority: ClaimAuthority,
        *,
        verifier: Optional[ClaimVerifier] = None,
        validator: Optional[ChannelValidator] = None,
        claim_repository: Optional[ClaimRepository] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.payer_gateway = payer_gateway
        self.payee_gateway = payee_gateway
        self.claim_authority = claim_authority
        self.verifier = verifier or ClaimVerifier(clock=clock)
        self.validator = validator or ChannelValidator()
        self.claim_repository = claim_repository
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock
        self._sleep = sleep
        self._sessions: dict[str, ChannelSession] = {}

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def get_session(self, channel_id: str) -> ChannelSession:
        try:
            return self._sessions[channel_id]
        except KeyError:
            raise ChannelNotFoundError(channel_id)

    def _gateway_for(self, role: Role) -> LedgerGatewayProtocol:
        return self.payer_gateway if role is Role.PAYER else self.payee_gateway

    @staticmethod
    def _require(session: ChannelSession, *allowed: ChannelStatus) -> None:
        if session.status not in allowed:
            raise InvalidStateTransitionError(
                f"Channel {session.channel_id} is {session.status.value}, "
                f"expected one of: {', '.join(s.value for s in allowed)}"
            )

    @staticmethod
    def _transition(session: ChannelSession, target: ChannelStatus) -> None:
        if target not in _TRANSITIONS[session.status]:
            raise InvalidStateTransitionError(
                f"Channel {session.channel_id} cannot move from "
                f"{session.status.value} to {target.value}"
            )
        logger.info(
            "Channel %s: %s -> %s",
            session.channel_id,
            session.status.value,
            target.value,
        )
        session.status = target
        session.history.append(target)

    async def _with_retry(
        self, operation: str, call: Callable[[], Awaitable[T]]
    ) -> T:
        policy = self.retry_policy
        attempt = 0
        while True:
            attempt += 1
            try:
                if policy.timeout is not None:
                    return await asyncio.wait_for(call(), policy.timeout)
                return await call()
            except asyncio.TimeoutError:
                error: PaymentChannelError = SettlementUnconfirmedError(
                    f"{operation} timed out after {policy.timeout}s"
                )
            except (SettlementUnconfirmedError, ChannelNotFoundError) as e:
                error = e

            if attempt >= policy.max_attempts:
                logger.error(
                    "%s failed after %d attempts: %s", operation, attempt, error
                )
                raise error
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (%s); retrying in %.2fs (attempt %d/%d)",
                operation,
                error,
                delay,
                attempt,
                policy.max_attempts,
            )
            await self._sleep(delay)

    async def _submit(
        self, operation: str, call: Callable[[], Awaitable[SubmitResult]]
    ) -> SubmitResult:
        async def attempt() -> SubmitResult:
            result = await call()
            if not result.confirmed:
                raise SettlementUnconfirmedError(f"{operation} was not confirmed")
            return result

        return await self._with_retry(operation, attempt)

    async def _fetch_state(
        self, channel_id: str, gateway: LedgerGatewayProtocol
    ) -> ChannelState:
        async def attempt() -> ChannelState:
            state = await gateway.query_channel_state(channel_id)
            if isinstance(state, ChannelNotFound):
                raise ChannelNotFoundError(channel_id)
            return state

        return await self._with_retry(f"query of channel {channel_id}", attempt)

    async def _mark_closed(self, session: ChannelSession) -> ChannelLookup:
        self._transition(session, ChannelStatus.CLOSED)
        if self.claim_repository is not None:
            await self.claim_repository.discard(session.channel_id)
        return await self.payee_gateway.query_channel_state(session.channel_id)

    # ------------------------------------------------------------------
    # Created / Funded
    # ------------------------------------------------------------------

    async def open_channel(
        self,
        amount: int,
        settle_delay: int,
        policy: ChannelPolicy,
        cancel_after: Optional[datetime] = None,
    ) -> ChannelSession:
        """Create a channel from the payer to the payee and validate it.

        Raises:
            PolicyViolationError: If the created channel fails the payee's
                policy. The session stays ``created`` and can be retrieved
                with :meth:`get_session` for a later :meth:`revalidate`.
        """

        async def submit() -> ChannelOpenResult:
            result = await self.payer_gateway.submit_channel_open(
                self.payer_gateway.address,
                self.payee_gateway.address,
                amount,
                settle_delay,
                cancel_after,
            )
            if not result.confirmed:
                raise SettlementUnconfirmedError("channel open was not confirmed")
            return result

        opened = await self._with_retry("channel open", submit)
        session = ChannelSession(
            channel_id=opened.channel_id,
            payer_address=self.payer_gateway.address,
            payee_address=self.payee_gateway.address,
            payer_public_key_der_b64=self.claim_authority.public_key_der_b64,
            policy=policy,
        )
        self._sessions[session.channel_id] = session
        logger.info(
            "Channel %s created: %d drops from %s to %s",
            session.channel_id,
            amount,
            session.payer_address,
            session.payee_address,
        )
        await self.revalidate(session)
        return session

    async def revalidate(
        self, session: ChannelSession, policy: Optional[ChannelPolicy] = None
    ) -> ValidationResult:
        """Validate fresh channel state against the payee policy; pass means Active."""
        self._require(session, ChannelStatus.CREATED, ChannelStatus.FUNDED)
        if policy is not None:
            session.policy = policy

        state = await self._fetch_state(session.channel_id, self.payee_gateway)
        session.claimed_amount = state.claimed_amount
        result = self.validator.validate(state, session.policy)
        session.last_validation = result
        if not result.is_valid:
            logger.warning(
                "Channel %s rejected by payee policy: %s",
                session.channel_id,
                "; ".join(result.errors),
            )
            raise PolicyViolationError(result.errors, session.channel_id)
        self._transition(session, ChannelStatus.ACTIVE)
        return result

    async def fund_channel(
        self,
        session: ChannelSession,
        amount: int,
        expiration: Optional[datetime] = None,
    ) -> ValidationResult:
        """Add capacity (and optionally a new expiration), then re-validate.

        The payee's expectation is raised by `amount` before the re-check.
        """
        self._require(
            session, ChannelStatus.CREATED, ChannelStatus.FUNDED, ChannelStatus.ACTIVE
        )
        result = await self._submit(
            "channel fund",
            lambda: self.payer_gateway.submit_channel_fund(
                session.channel_id, amount, expiration
            ),
        )
        if result.channel_closed:
            self._transition(session, ChannelStatus.CLOSED)
            raise ChannelExpiredError(
                f"Channel {session.channel_id} had expired and was closed"
            )

        self._transition(session, ChannelStatus.FUNDED)
        return await self.revalidate(
            session,
            session.policy.with_expected_amount(session.policy.expected_amount + amount),
        )

    # ------------------------------------------------------------------
    # Active: off-chain claims
    # ------------------------------------------------------------------

    def authorize_payment(self, session: ChannelSession, increment: int) -> Claim:
        """Payer side: sign a claim for the next cumulative amount."""
        self._require(session, ChannelStatus.ACTIVE)
        if increment <= 0:
            raise ValueError("Payment increment must be positive")
        cumulative_amount = session.cumulative_amount + increment
        claim = self.claim_authority.authorize(
            session.channel_id, cumulative_amount, session.payer_public_key_der_b64
        )
        session.cumulative_amount = cumulative_amount
        return claim

    async def receive_claim(
        self, session: ChannelSession, claim: Claim
    ) -> VerificationResult:
        """Payee side: verify a claim against fresh ledger state and keep the best one."""
        self._require(session, ChannelStatus.ACTIVE)
        best = session.best_claim
        if best is not None and claim.cumulative_amount <= best.cumulative_amount:
            logger.info(
                "Discarding claim of %d on channel %s: best held claim is %d",
                claim.cumulative_amount,
                session.channel_id,
                best.cumulative_amount,
            )
            return VerificationResult(
                valid=False,
                reasons=[ErrorKind.NON_INCREASING_AMOUNT],
                messages=[
                    f"Claim amount {claim.cumulative_amount} does not exceed "
                    f"best held claim {best.cumulative_amount}"
                ],
            )

        state = await self._fetch_state(session.channel_id, self.payee_gateway)
        session.claimed_amount = state.claimed_amount
        result = self.verifier.verify_claim(claim, state, full_diagnostics=True)
        if not result.valid:
            logger.warning(
                "Claim of %d on channel %s rejected: %s",
                claim.cumulative_amount,
                session.channel_id,
                "; ".join(result.messages),
            )
            return result

        session.best_claim = claim
        if self.claim_repository is not None:
            await self.claim_repository.save_best(claim)
        return result

    async def run_payments(
        self, session: ChannelSession, increments: Iterable[int]
    ) -> PaymentLoopResult:
        """Run the off-chain payment loop: authorize, then verify, per payment.

        The loop stops at the first rejected claim. The channel stays active
        and the best claim accepted so far remains redeemable.
        """
        loop = PaymentLoopResult()
        for increment in increments:
            claim = self.authorize_payment(session, increment)
            result = await self.receive_claim(session, claim)
            if not result.valid:
                terminal = TERMINAL_CLAIM_FAILURES.intersection(result.reasons)
                logger.warning(
                    "Stopping payment loop on channel %s at %d drops (%s)",
                    session.channel_id,
                    claim.cumulative_amount,
                    ", ".join(sorted(k.value for k in terminal or result.reasons)),
                )
                loop.rejected = claim
                loop.failure = result
                break
            loop.accepted.append(claim)
        return loop

    # ------------------------------------------------------------------
    # Settling / Closed
    # ------------------------------------------------------------------

    async def settle(
        self, session: ChannelSession, close: bool = False
    ) -> ChannelLookup:
        """Redeem the best held claim in one ledger transaction.

        A claim that does not exceed the on-ledger claimed amount is never
        submitted, so a stale claim can not lower what has been redeemed.
        """
        self._require(session, ChannelStatus.ACTIVE)
        best = session.best_claim
        if best is None and self.claim_repository is not None:
            best = await self.claim_repository.get_best(session.channel_id)

        state = await self._fetch_state(session.channel_id, self.payee_gateway)
        session.claimed_amount = state.claimed_amount
        if best is None or best.cumulative_amount <= state.claimed_amount:
            logger.info(
                "Nothing to redeem on channel %s: claimed %d, best claim %s",
                session.channel_id,
                state.claimed_amount,
                best.cumulative_amount if best else None,
            )
            if close:
                return await self.request_close(session, Role.PAYEE)
            return state

        self._transition(session, ChannelStatus.SETTLING)
        try:
            result = await self._submit(
                "channel settle",
                lambda: self.payee_gateway.submit_channel_settle(
                    session.channel_id,
                    best.cumulative_amount,
                    best.signature_b64,
                    close,
                    best.public_key_der_b64,
                ),
            )
        except (PaymentChannelError, asyncio.CancelledError):
            # Settlement is atomic: nothing was redeemed
            self._transition(session, ChannelStatus.ACTIVE)
            raise

        redeemed = (
            result.claimed_amount is not None
            and result.claimed_amount >= best.cumulative_amount
        )
        if result.channel_closed:
            if not redeemed:
                # Closed on touch after expiry; the claim was not applied
                if result.claimed_amount is not None:
                    session.claimed_amount = result.claimed_amount
                await self._mark_closed(session)
                raise ChannelExpiredError(
                    f"Channel {session.channel_id} expired before the claim was redeemed"
                )
            session.claimed_amount = best.cumulative_amount
            logger.info(
                "Channel %s settled at %d drops and closed",
                session.channel_id,
                best.cumulative_amount,
            )
            return await self._mark_closed(session)

        state = await self._fetch_state(session.channel_id, self.payee_gateway)
        session.claimed_amount = state.claimed_amount
        logger.info(
            "Channel %s settled at %d drops", session.channel_id, state.claimed_amount
        )
        self._transition(session, ChannelStatus.ACTIVE)
        return state

    async def request_close(
        self, session: ChannelSession, requester: Role
    ) -> ChannelLookup:
        """Ask the ledger to close the channel.

        The payee's request, or any request on a fully claimed channel, closes
        immediately. A payer request only schedules the close after the settle
        delay; the channel stays active and redeemable until then.
        """
        self._require(
            session, ChannelStatus.CREATED, ChannelStatus.FUNDED, ChannelStatus.ACTIVE
        )
        gateway = self._gateway_for(requester)
        result = await self._submit(
            "channel close request",
            lambda: gateway.submit_channel_close_request(session.channel_id),
        )
        if result.channel_closed:
            return await self._mark_closed(session)

        session.close_requested_at = self.clock()
        state = await self._fetch_state(session.channel_id, gateway)
        logger.info(
            "Close of channel %s scheduled by %s for %s",
            session.channel_id,
            requester.value,
            state.expiration.isoformat() if state.expiration else "unknown",
        )
        return state

    async def finalize_close(
        self, session: ChannelSession, requester: Role = Role.PAYER
    ) -> ChannelLookup:
        """Finalize a scheduled close once its deadline has passed."""
        self._require(session, ChannelStatus.ACTIVE)
        state = await self._gateway_for(requester).query_channel_state(
            session.channel_id
        )
        if isinstance(state, ChannelNotFound):
            self._transition(session, ChannelStatus.CLOSED)
            return state

        deadline = state.expires_at()
        if deadline is None or deadline > self.clock():
            raise InvalidStateTransitionError(
                f"Channel {session.channel_id} cannot be finalized before "
                f"{deadline.isoformat() if deadline else 'a close is requested'}"
            )
        return await self.request_close(session, requester)

    async def final_status(self, session: ChannelSession) -> FinalStatus:
        """Report the channel's ledger record (if any) and both balances."""
        channel = await self._with_retry(
            "channel query",
            lambda: self.payer_gateway.query_channel_state(session.channel_id),
        )
        payer_balance = await self._with_retry(
            "payer balance query",
            lambda: self.payer_gateway.query_account_balance(session.payer_address),
        )
        payee_balance = await self._with_retry(
            "payee balance query",
            lambda: self.payee_gateway.query_account_balance(session.payee_address),
        )
        return FinalStatus(
            channel=channel,
            payer_balance=payer_balance,
            payee_balance=payee_balance,
        )
