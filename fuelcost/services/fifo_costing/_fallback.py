from typing import Iterable, Optional

from ._types import PricedEntry


def weighted_average_price(entries: Iterable[PricedEntry]) -> Optional[float]:
    """
    Quantity-weighted average unit cost over every priced entry given,
    including entries whose lots were already fully consumed.

    Returns None when there is no priced entry to average.
    """
    total_liters = 0.0
    total_cost = 0.0
    for entry in entries:
        if entry.unit_cost is None or entry.unit_cost <= 0 or entry.quantity <= 0:
            continue
        total_liters += float(entry.quantity)
        total_cost += float(entry.quantity) * float(entry.unit_cost)

    if total_liters <= 0:
        return None
    return total_cost / total_liters
