import logging
import math
from datetime import datetime
from typing import Any, Optional, Sequence

from ._fallback import weighted_average_price
from ._ledger import LedgerReader
from ._matcher import consume_fifo
from ._reconstruction import reconstruct_lots
from ._types import (
    CostingMethod,
    CostingParameters,
    ConsumptionRow,
    PricedEntry,
    WithdrawalCostResult,
)
from .errors import InvalidQuantityError

logger = logging.getLogger(__name__)


def validate_quantity(quantity) -> float:
    # Form posts arrive as strings; JSON booleans are not quantities
    if isinstance(quantity, bool):
        raise InvalidQuantityError(quantity)
    try:
        value = float(quantity)
    except (TypeError, ValueError):
        raise InvalidQuantityError(quantity) from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidQuantityError(quantity)
    return value


def price_withdrawal(
    entries: Sequence[PricedEntry],
    consumptions: Sequence[ConsumptionRow],
    quantity: float,
    as_of: datetime,
    parameters: Optional[CostingParameters] = None,
) -> WithdrawalCostResult:
    """
    Price a withdrawal of ``quantity`` liters at ``as_of`` from a ledger snapshot.

    Pure: the same snapshot and arguments always produce the same result.
    """
    quantity = validate_quantity(quantity)
    params = parameters or CostingParameters()

    lots = reconstruct_lots(entries, consumptions, cutoff=as_of, epsilon=params.epsilon_liters)
    match = consume_fifo(lots, quantity, cutoff_date=as_of, epsilon=params.epsilon_liters)

    # Residue within epsilon counts as fully matched
    if match.unmatched_liters <= params.epsilon_liters:
        return WithdrawalCostResult(
            unit_cost=match.matched_cost / quantity,
            method=CostingMethod.FIFO,
            matched_liters=quantity,
            unmatched_liters=0.0,
            total_cost=match.matched_cost,
        )

    average = weighted_average_price(entry for entry in entries if entry.date <= as_of)
    if average is None:
        logger.warning(
            f"FIFO COSTING: no priced history for {quantity:.2f}L at {as_of.isoformat()}; "
            f"{match.unmatched_liters:.2f}L cannot be priced"
        )
        return WithdrawalCostResult.unknown(match.matched_liters, match.unmatched_liters)

    total_cost = match.matched_cost + match.unmatched_liters * average
    logger.warning(
        f"FIFO COSTING: lots short by {match.unmatched_liters:.2f}L at {as_of.isoformat()}; "
        f"priced remainder at weighted average {average:.4f}"
    )
    return WithdrawalCostResult(
        unit_cost=total_cost / quantity,
        method=CostingMethod.WEIGHTED_AVERAGE,
        matched_liters=match.matched_liters,
        unmatched_liters=match.unmatched_liters,
        total_cost=total_cost,
    )


def compute_withdrawal_cost(
    reader: LedgerReader,
    warehouse_id: Any,
    product_id: Any,
    quantity: float,
    as_of: datetime,
    parameters: Optional[CostingParameters] = None,
) -> WithdrawalCostResult:
    """Read the lookback window for (warehouse, product) and price the withdrawal."""
    quantity = validate_quantity(quantity)
    params = parameters or CostingParameters()
    window_start = params.window_start(as_of)

    entries = list(reader.list_priced_entries(warehouse_id, product_id, window_start, as_of))
    consumptions = list(
        reader.list_non_transfer_consumptions(warehouse_id, product_id, window_start, as_of)
    )
    logger.debug(
        f"FIFO COSTING: warehouse={warehouse_id} product={product_id} window "
        f"{window_start.isoformat()}..{as_of.isoformat()} entries={len(entries)} "
        f"consumptions={len(consumptions)}"
    )
    return price_withdrawal(entries, consumptions, quantity, as_of, params)


class FifoCostingService:
    """Binds a ledger reader and costing parameters for repeated calls."""

    def __init__(self, reader: LedgerReader, parameters: Optional[CostingParameters] = None):
        self.reader = reader
        self.parameters = parameters or CostingParameters()

    @classmethod
    def from_app(cls, app=None) -> "FifoCostingService":
        from flask import current_app

        from ..ledger_reader import SqlAlchemyLedgerReader

        config = (app or current_app).config
        return cls(SqlAlchemyLedgerReader(), CostingParameters.from_config(config))

    def compute_withdrawal_cost(
        self, warehouse_id: Any, product_id: Any, quantity: float, as_of: datetime
    ) -> WithdrawalCostResult:
        return compute_withdrawal_cost(
            self.reader, warehouse_id, product_id, quantity, as_of, self.parameters
        )
