import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple, Union

from ._matcher import consume_fifo
from ._types import DEFAULT_EPSILON_LITERS, ConsumptionRow, Lot, PricedEntry

logger = logging.getLogger(__name__)

# Same-instant deposits are available to a same-instant withdrawal
_ENTRY_ORDER = 0
_CONSUMPTION_ORDER = 1


@dataclass(frozen=True)
class ConsumptionMatch:
    """How one replayed withdrawal was covered by the lots alive at its date."""

    consumption: ConsumptionRow
    matched_cost: float
    matched_liters: float
    unmatched_liters: float


@dataclass(frozen=True)
class ReplayResult:
    lots: Tuple[Lot, ...]
    matches: Tuple[ConsumptionMatch, ...]


def is_priced(entry: PricedEntry) -> bool:
    return entry.unit_cost is not None and entry.unit_cost > 0 and entry.quantity > 0


def merge_ledger(
    entries: Sequence[PricedEntry],
    consumptions: Sequence[ConsumptionRow],
    cutoff: Optional[datetime] = None,
) -> List[Union[PricedEntry, ConsumptionRow]]:
    """Single chronological stream; entries precede consumptions at equal timestamps."""
    stream = [
        (entry.date, _ENTRY_ORDER, entry)
        for entry in entries
        if is_priced(entry) and (cutoff is None or entry.date <= cutoff)
    ]
    stream.extend(
        (row.date, _CONSUMPTION_ORDER, row)
        for row in consumptions
        if row.quantity > 0 and (cutoff is None or row.date <= cutoff)
    )
    # sort is stable, so rows sharing (date, kind) keep their ledger order
    stream.sort(key=lambda item: (item[0], item[1]))
    return [item[2] for item in stream]


def replay_ledger(
    entries: Sequence[PricedEntry],
    consumptions: Sequence[ConsumptionRow],
    cutoff: Optional[datetime] = None,
    epsilon: float = DEFAULT_EPSILON_LITERS,
) -> ReplayResult:
    """Replay deposits and withdrawals into the surviving FIFO lots."""
    lots: Tuple[Lot, ...] = ()
    matches: List[ConsumptionMatch] = []

    for row in merge_ledger(entries, consumptions, cutoff):
        if isinstance(row, PricedEntry):
            lots = lots + (Lot(
                quantity_remaining=float(row.quantity),
                unit_cost=float(row.unit_cost),
                entry_timestamp=row.date,
                entry_id=row.id,
            ),)
            continue

        match = consume_fifo(lots, float(row.quantity), cutoff_date=row.date, epsilon=epsilon)
        lots = match.remaining_lots
        matches.append(ConsumptionMatch(
            consumption=row,
            matched_cost=match.matched_cost,
            matched_liters=match.matched_liters,
            unmatched_liters=match.unmatched_liters,
        ))
        if match.unmatched_liters > epsilon:
            logger.debug(
                f"REPLAY: consumption {row.id} at {row.date.isoformat()} overdrew lots by "
                f"{match.unmatched_liters:.4f}L"
            )

    return ReplayResult(lots=lots, matches=tuple(matches))


def reconstruct_lots(
    entries: Sequence[PricedEntry],
    consumptions: Sequence[ConsumptionRow],
    cutoff: datetime,
    epsilon: float = DEFAULT_EPSILON_LITERS,
) -> List[Lot]:
    """FIFO inventory composition of a warehouse as of ``cutoff``."""
    result = replay_ledger(entries, consumptions, cutoff=cutoff, epsilon=epsilon)
    logger.debug(
        f"REPLAY: {len(result.lots)} lots survive at {cutoff.isoformat()} "
        f"({sum(lot.quantity_remaining for lot in result.lots):.2f}L)"
    )
    return list(result.lots)
