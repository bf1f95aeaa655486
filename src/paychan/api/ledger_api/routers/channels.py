"""Pay-channel API routes (Ledger)."""

from __future__ import annotations

import logging
import time
from typing import Awaitable, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Path, status
from prometheus_client import Counter, Histogram

from ....application.ledger.dtos import (
    OpenChannelResponseDTO,
    SignedTransactionDTO,
    TransactionResultDTO,
)
from ....application.ledger.use_cases.payment_channel import PayChannelLedgerService
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
from ..dependencies import get_pay_channel_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/channels", tags=["channels"])

ERROR_KIND_HEADER = "X-Error-Kind"

T = TypeVar("T")


ledger_transactions_total = Counter(
    "ledger_transactions_total",
    "Total pay-channel transactions processed by the ledger",
    ["transaction", "status"],
)

ledger_transaction_duration_seconds = Histogram(
    "ledger_transaction_duration_seconds",
    "Wall time to apply a pay-channel transaction",
    ["transaction", "status"],
)


def _observe(transaction: str, outcome: str, start_time: float) -> None:
    ledger_transactions_total.labels(transaction=transaction, status=outcome).inc()
    elapsed = time.perf_counter() - start_time
    ledger_transaction_duration_seconds.labels(
        transaction=transaction, status=outcome
    ).observe(elapsed)


async def _apply(transaction: str, call: Awaitable[T]) -> T:
    """Run a ledger transaction, recording metrics and mapping errors to HTTP."""
    start_time = time.perf_counter()
    try:
        result = await call
    except TransactionConflictError as e:
        _observe(transaction, "conflict", start_time)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (
        LedgerRejectedError,
        SignatureInvalidError,
        ExceedsCapacityError,
        EncodingError,
    ) as e:
        _observe(transaction, "rejected", start_time)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
            headers={ERROR_KIND_HEADER: e.kind.value} if e.kind else None,
        )
    except (ChannelNotFoundError, AccountNotFoundError) as e:
        _observe(transaction, "not_found", start_time)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        _observe(transaction, "client_error", start_time)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        _observe(transaction, "server_error", start_time)
        logger.exception("Ledger failed to apply %s", transaction)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to apply {transaction}: {str(e)}",
        )
    _observe(transaction, "success", start_time)
    return result


@router.post(
    "",
    response_model=OpenChannelResponseDTO,
    status_code=status.HTTP_201_CREATED,
)
async def open_channel(
    dto: SignedTransactionDTO,
    service: PayChannelLedgerService = Depends(get_pay_channel_service),
) -> OpenChannelResponseDTO:
    """Apply a signed PaymentChannelCreate."""
    return await _apply("open", service.open_channel(dto))


@router.get("/{channel_id}", response_model=ChannelState)
async def get_channel(
    channel_id: str = Path(..., description="Pay channel identifier"),
    service: PayChannelLedgerService = Depends(get_pay_channel_service),
) -> ChannelState:
    """Validated state of an open channel; closed channels are not found."""
    try:
        return await service.get_channel(channel_id)
    except ChannelNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{channel_id}/fundings", response_model=TransactionResultDTO)
async def fund_channel(
    dto: SignedTransactionDTO,
    channel_id: str = Path(..., description="Pay channel identifier"),
    service: PayChannelLedgerService = Depends(get_pay_channel_service),
) -> TransactionResultDTO:
    """Apply a signed PaymentChannelFund."""
    return await _apply("fund", service.fund_channel(channel_id, dto))


@router.post("/{channel_id}/claims", response_model=TransactionResultDTO)
async def claim_channel(
    dto: SignedTransactionDTO,
    channel_id: str = Path(..., description="Pay channel identifier"),
    service: PayChannelLedgerService = Depends(get_pay_channel_service),
) -> TransactionResultDTO:
    """Apply a signed PaymentChannelClaim redeeming a payer claim."""
    return await _apply("claim", service.claim(channel_id, dto))


@router.post("/{channel_id}/closure-requests", response_model=TransactionResultDTO)
async def request_close(
    dto: SignedTransactionDTO,
    channel_id: str = Path(..., description="Pay channel identifier"),
    service: PayChannelLedgerService = Depends(get_pay_channel_service),
) -> TransactionResultDTO:
    """Apply a signed PaymentChannelClaim carrying only the close flag."""
    return await _apply("close", service.request_close(channel_id, dto))
