"""
Royalty Sweeper - Ledger Bridges

Boundary to the Cedra ledger:
- Escrow balance views (gas-free)
- Gas account sequence numbers
- Sweep entry-function transactions
"""

from .ledger import (
    CedraLedgerClient,
    LedgerBridge,
    normalize_node_url,
)

__all__ = [
    "CedraLedgerClient",
    "LedgerBridge",
    "normalize_node_url",
]
