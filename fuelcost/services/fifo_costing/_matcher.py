import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional

from ._types import DEFAULT_EPSILON_LITERS, Lot, MatchResult
from .errors import InvalidQuantityError

logger = logging.getLogger(__name__)


def consume_fifo(
    lots: Iterable[Lot],
    requested: float,
    cutoff_date: Optional[datetime] = None,
    epsilon: float = DEFAULT_EPSILON_LITERS,
) -> MatchResult:
    """
    Draw ``requested`` liters from ``lots`` oldest-first.

    Lots dated after ``cutoff_date`` are never drawn from but are kept in the
    returned lot list. Lots at or below ``epsilon`` are dropped. The input
    lots are not modified; the surviving composition is returned instead.
    """
    if requested is None or not math.isfinite(requested) or requested < 0:
        raise InvalidQuantityError(requested)

    ordered = sorted(lots, key=lambda lot: lot.entry_timestamp)
    still_needed = float(requested)
    matched_cost = 0.0
    survivors: List[Lot] = []

    for lot in ordered:
        if lot.quantity_remaining <= epsilon:
            continue

        if still_needed <= 0 or (cutoff_date is not None and lot.entry_timestamp > cutoff_date):
            survivors.append(lot)
            continue

        take = min(still_needed, lot.quantity_remaining)
        matched_cost += take * lot.unit_cost
        still_needed -= take

        drawn = lot.drawn(take)
        if drawn.quantity_remaining > epsilon:
            survivors.append(drawn)

    if still_needed > 0:
        logger.debug(f"FIFO: lots exhausted with {still_needed:.4f}L of {requested:.4f}L unmatched")

    return MatchResult(
        matched_cost=matched_cost,
        matched_liters=float(requested) - still_needed,
        unmatched_liters=still_needed,
        remaining_lots=tuple(survivors),
    )
