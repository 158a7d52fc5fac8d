"""Confidential token ledger"""
from ocp.core.state.ledger import (
    ConfidentialLedger,
    LedgerCheckpoint,
    TransferRecord,
    LEDGER_ADDRESS,
)

__all__ = [
    "ConfidentialLedger",
    "LedgerCheckpoint",
    "TransferRecord",
    "LEDGER_ADDRESS",
]
