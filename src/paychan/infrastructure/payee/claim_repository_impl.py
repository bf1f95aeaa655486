"""Best-claim repository implementation."""

from __future__ import annotations

from typing import Optional

from ...domain.channel.entities import Claim
from ...domain.payee.claim_repository import ClaimRepository
from ..storage import KeyValueStore


class ClaimRepositoryImpl(ClaimRepository):
    """Best claim per channel, backed by KeyValueStore.

    Key layout:
      - claim:best:{channel_id} -> Claim JSON
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(channel_id: str) -> str:
        return f"claim:best:{channel_id.upper()}"

    async def get_best(self, channel_id: str) -> Optional[Claim]:
        data = await self.store.get(self._key(channel_id))
        if not data:
            return None
        return Claim.model_validate_json(data)

    async def save_best(self, claim: Claim) -> Claim:
        held = await self.get_best(claim.channel_id)
        if held is not None and held.cumulative_amount >= claim.cumulative_amount:
            return held
        await self.store.set(self._key(claim.channel_id), claim.model_dump_json())
        return claim

    async def discard(self, channel_id: str) -> None:
        await self.store.delete(self._key(channel_id))
