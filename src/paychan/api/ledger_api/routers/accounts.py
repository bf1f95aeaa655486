"""Account API routes (Ledger)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, status

from ....application.ledger.dtos import AccountResponseDTO, RegistrationRequestDTO
from ....application.ledger.use_cases.accounts import AccountService
from ....domain.errors import AccountNotFoundError
from ..dependencies import get_account_service

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post(
    "",
    response_model=AccountResponseDTO,
    status_code=status.HTTP_201_CREATED,
)
async def register_account(
    dto: RegistrationRequestDTO,
    service: AccountService = Depends(get_account_service),
) -> AccountResponseDTO:
    """Open a funded account for a public key (idempotent)."""
    try:
        return await service.register(dto)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/{address}", response_model=AccountResponseDTO)
async def get_account(
    address: str = Path(..., description="Ledger account address"),
    service: AccountService = Depends(get_account_service),
) -> AccountResponseDTO:
    try:
        return await service.get_account(address)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
