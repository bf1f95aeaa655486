"""Payee-side repository of the best claim held for each channel."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ..channel.entities import Claim


class ClaimRepository(ABC):
    """Keeps only the highest verified claim per channel.

    Lower claims are worthless once a higher one is held, so storage
    overwrites the previous claim instead of appending.
    """

    @abstractmethod
    async def get_best(self, channel_id: str) -> Optional[Claim]:
        pass

    @abstractmethod
    async def save_best(self, claim: Claim) -> Claim:
        """Store the claim if it is higher than the one held; return the held claim."""
        pass

    @abstractmethod
    async def discard(self, channel_id: str) -> None:
        pass
