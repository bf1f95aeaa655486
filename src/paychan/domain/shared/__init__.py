"""Shared domain utilities.

This package is domain-accessible and should not depend on application code.
"""

from .ledger_gateway_protocol import LedgerGatewayProtocol

__all__ = ["LedgerGatewayProtocol"]
