"""Test fixtures for in-memory implementations."""

from .clock import FakeClock
from .in_memory_storage import InMemoryKeyValueStore, YieldingKeyValueStore
from .in_memory_repositories import (
    InMemoryClaimRepository,
    InMemoryLedgerRepositories,
)

__all__ = [
    "FakeClock",
    "InMemoryClaimRepository",
    "InMemoryKeyValueStore",
    "InMemoryLedgerRepositories",
    "YieldingKeyValueStore",
]
