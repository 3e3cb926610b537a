"""
FIFO cost reconstruction for warehouse withdrawals.

Rebuilds the surviving cost lots of a (warehouse, product) ledger from a
snapshot and prices a new withdrawal oldest-lot-first, falling back to the
window's weighted average for any quantity the lots cannot cover. Nothing in
this package writes to the ledger or keeps state between calls.
"""

from ._fallback import weighted_average_price
from ._ledger import LedgerReader
from ._matcher import consume_fifo
from ._reconstruction import ConsumptionMatch, ReplayResult, merge_ledger, reconstruct_lots, replay_ledger
from ._service import FifoCostingService, compute_withdrawal_cost, price_withdrawal, validate_quantity
from ._types import (
    ConsumptionRow,
    CostingMethod,
    CostingParameters,
    Lot,
    MatchResult,
    PricedEntry,
    WithdrawalCostResult,
)
from .errors import (
    CostingError,
    InsufficientPriceHistoryError,
    InvalidQuantityError,
    LedgerReadError,
)

__all__ = [
    'compute_withdrawal_cost',
    'price_withdrawal',
    'validate_quantity',
    'FifoCostingService',
    'reconstruct_lots',
    'replay_ledger',
    'merge_ledger',
    'consume_fifo',
    'weighted_average_price',
    'LedgerReader',
    'ConsumptionMatch',
    'ReplayResult',
    'ConsumptionRow',
    'CostingMethod',
    'CostingParameters',
    'Lot',
    'MatchResult',
    'PricedEntry',
    'WithdrawalCostResult',
    'CostingError',
    'InsufficientPriceHistoryError',
    'InvalidQuantityError',
    'LedgerReadError',
]
