"""Pay-channel repository implementation."""

from __future__ import annotations

from typing import Optional

from ...domain.ledger.entities import PayChannelEntry
from ...domain.ledger.repositories import PayChannelRepository
from ..storage import KeyValueStore


class PayChannelRepositoryImpl(PayChannelRepository):
    """Pay-channel repository backed by KeyValueStore.

    Channel ids are stored upper-case so lookups are case-insensitive.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def key_for(channel_id: str) -> str:
        return f"pay_channel:{channel_id.upper()}"

    async def get_by_channel_id(self, channel_id: str) -> Optional[PayChannelEntry]:
        data = await self.store.get(self.key_for(channel_id))
        if not data:
            return None
        return PayChannelEntry.model_validate_json(data)
