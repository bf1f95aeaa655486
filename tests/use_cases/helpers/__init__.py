"""Helpers for use case tests."""

from .ledger_gateway_adapter import UseCaseLedgerGateway

__all__ = ["UseCaseLedgerGateway"]
