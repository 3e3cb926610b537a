"""Period consumption cost report.

Synopsis:
Replays every selected warehouse's ledger from well before the period start
and prices each in-period withdrawal oldest-lot-first. Whatever the lots do
not cover is priced at the warehouse weighted average, then at the product
reference price, and otherwise left as unpriced liters.

Glossary:
- Period: inclusive range of local calendar dates in ``REPORT_TIMEZONE``.
- Orphan warehouse: has withdrawals in the window but no priced deposit in
  it; its deposit window is widened to ``extended_lookback_days``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from ..models import DieselProduct, DieselTransaction, DieselWarehouse
from ..utils.timezone_utils import TimezoneUtils
from .fifo_costing import (
    ConsumptionRow,
    CostingMethod,
    CostingParameters,
    LedgerReadError,
    PricedEntry,
    replay_ledger,
    weighted_average_price,
)
from .ledger_reader import (
    consumption_from_row,
    entry_from_row,
    priced_entry_filters,
    replayable_consumption_filters,
)

logger = logging.getLogger(__name__)

DEFAULT_REPORT_TIMEZONE = "Etc/GMT+6"
REFERENCE_PRICE = "reference_price"
UNPRICED = "unpriced"

InventoryKey = Tuple[Any, Any]


@dataclass(frozen=True)
class ConsumptionCostLine:
    transaction_id: Any
    warehouse_id: Any
    product_id: Any
    plant_code: str
    transaction_date: datetime
    local_date: date
    quantity_liters: float
    fifo_liters: float
    fifo_cost: float
    fallback_liters: float
    fallback_cost: float
    unpriced_liters: float
    pricing: str

    @property
    def total_cost(self) -> float:
        return self.fifo_cost + self.fallback_cost

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "warehouse_id": self.warehouse_id,
            "product_id": self.product_id,
            "plant_code": self.plant_code,
            "transaction_date": self.transaction_date.isoformat(),
            "local_date": self.local_date.isoformat(),
            "quantity_liters": self.quantity_liters,
            "fifo_liters": self.fifo_liters,
            "fifo_cost": self.fifo_cost,
            "fallback_liters": self.fallback_liters,
            "fallback_cost": self.fallback_cost,
            "unpriced_liters": self.unpriced_liters,
            "total_cost": self.total_cost,
            "pricing": self.pricing,
        }


def _group(rows: Iterable, item) -> Dict[InventoryKey, list]:
    grouped: Dict[InventoryKey, list] = defaultdict(list)
    for row in rows:
        grouped[(row.warehouse_id, row.product_id)].append(item(row))
    return grouped


def _priced_entries(warehouse_ids: Sequence[Any], from_date: datetime, to_date: datetime) -> List[DieselTransaction]:
    return (
        DieselTransaction.query.filter(
            DieselTransaction.warehouse_id.in_(list(warehouse_ids)),
            *priced_entry_filters(),
            DieselTransaction.transaction_date >= from_date,
            DieselTransaction.transaction_date <= to_date,
        )
        .order_by(DieselTransaction.transaction_date.asc(), DieselTransaction.id.asc())
        .all()
    )


def _report_timezone(timezone: Optional[str]) -> str:
    if timezone:
        return timezone
    if has_app_context():
        return current_app.config.get("REPORT_TIMEZONE", DEFAULT_REPORT_TIMEZONE)
    return DEFAULT_REPORT_TIMEZONE


def _price_line(
    row: ConsumptionRow,
    unmatched_liters: float,
    entries: Sequence[PricedEntry],
    reference_price: Optional[float],
    epsilon: float,
) -> Tuple[float, float, float, str]:
    """Return (fallback_liters, fallback_cost, unpriced_liters, pricing) for one withdrawal."""
    if unmatched_liters <= epsilon:
        return 0.0, 0.0, 0.0, CostingMethod.FIFO.value

    average = weighted_average_price(entry for entry in entries if entry.date <= row.date)
    if average is not None:
        return unmatched_liters, unmatched_liters * average, 0.0, CostingMethod.WEIGHTED_AVERAGE.value
    if reference_price and reference_price > 0:
        return unmatched_liters, unmatched_liters * reference_price, 0.0, REFERENCE_PRICE
    return 0.0, 0.0, unmatched_liters, UNPRICED


@dataclass
class ConsumptionCostReport:
    date_from: date
    date_to: date
    timezone: str
    lines: List[ConsumptionCostLine] = field(default_factory=list)
    plant_costs: Dict[str, float] = field(default_factory=dict)

    @property
    def transaction_costs(self) -> Dict[Any, float]:
        return {line.transaction_id: line.total_cost for line in self.lines}

    @property
    def unpriced_liters(self) -> float:
        return sum(line.unpriced_liters for line in self.lines)

    @property
    def total_cost(self) -> float:
        return sum(self.plant_costs.values())

    def to_dict(self) -> dict:
        return {
            "date_from": self.date_from.isoformat(),
            "date_to": self.date_to.isoformat(),
            "timezone": self.timezone,
            "plant_costs": dict(self.plant_costs),
            "transaction_costs": {str(key): value for key, value in self.transaction_costs.items()},
            "total_cost": self.total_cost,
            "unpriced_liters": self.unpriced_liters,
            "lines": [line.to_dict() for line in self.lines],
        }

    @classmethod
    def build(
        cls,
        date_from: date,
        date_to: date,
        plant_codes: Optional[Sequence[str]] = None,
        *,
        product_type: str = "diesel",
        parameters: Optional[CostingParameters] = None,
        timezone: Optional[str] = None,
    ) -> "ConsumptionCostReport":
        """Cost every non-transfer withdrawal whose local date falls in ``[date_from, date_to]``."""
        if date_to < date_from:
            raise ValueError("date_to must not be before date_from")
        if parameters is None:
            parameters = (
                CostingParameters.from_config(current_app.config) if has_app_context() else CostingParameters()
            )
        tz_name = _report_timezone(timezone)
        report = cls(date_from=date_from, date_to=date_to, timezone=tz_name)

        period_start, _ = TimezoneUtils.local_day_bounds(date_from, tz_name)
        _, period_end = TimezoneUtils.local_day_bounds(date_to, tz_name)
        window_start = parameters.window_start(period_start)

        query = DieselWarehouse.query.filter(DieselWarehouse.product_type == product_type)
        if plant_codes:
            query = query.filter(DieselWarehouse.plant_code.in_(list(plant_codes)))
        warehouses = query.order_by(DieselWarehouse.id.asc()).all()
        if not warehouses:
            return report

        plant_by_warehouse = {warehouse.id: warehouse.plant_code for warehouse in warehouses}
        for warehouse in warehouses:
            report.plant_costs.setdefault(warehouse.plant_code, 0.0)
        warehouse_ids = list(plant_by_warehouse)

        try:
            entries = _group(_priced_entries(warehouse_ids, window_start, period_end), entry_from_row)
            consumptions = _group(
                DieselTransaction.query.filter(
                    DieselTransaction.warehouse_id.in_(warehouse_ids),
                    *replayable_consumption_filters(),
                    DieselTransaction.transaction_date >= window_start,
                    DieselTransaction.transaction_date <= period_end,
                ).order_by(DieselTransaction.transaction_date.asc(), DieselTransaction.id.asc()).all(),
                consumption_from_row,
            )

            orphans = sorted({key[0] for key in consumptions if key not in entries})
            if orphans:
                extended_start = parameters.window_start(period_start, days=parameters.extended_lookback_days)
                logger.info(
                    f"CONSUMPTION REPORT: widening entry window to {extended_start.date().isoformat()} "
                    f"for warehouses {orphans}"
                )
                extended = _group(_priced_entries(orphans, extended_start, period_end), entry_from_row)
                for key, rows in extended.items():
                    if key not in entries:
                        entries[key] = rows

            reference_prices = {
                product.id: product.reference_price
                for product in DieselProduct.query.filter(
                    DieselProduct.id.in_({key[1] for key in consumptions})
                ).all()
            }
        except SQLAlchemyError as exc:
            logger.error(f"CONSUMPTION REPORT: ledger read failed: {exc}")
            raise LedgerReadError("Could not read the ledger for the consumption cost report") from exc

        for key in sorted(consumptions, key=lambda item: (str(item[0]), str(item[1]))):
            warehouse_id, product_id = key
            key_entries = entries.get(key, [])
            replay = replay_ledger(key_entries, consumptions[key], epsilon=parameters.epsilon_liters)

            for match in replay.matches:
                row = match.consumption
                if not (period_start <= row.date <= period_end):
                    continue

                fallback_liters, fallback_cost, unpriced, pricing = _price_line(
                    row,
                    match.unmatched_liters,
                    key_entries,
                    reference_prices.get(product_id),
                    parameters.epsilon_liters,
                )
                line = ConsumptionCostLine(
                    transaction_id=row.id,
                    warehouse_id=warehouse_id,
                    product_id=product_id,
                    plant_code=plant_by_warehouse[warehouse_id],
                    transaction_date=row.date,
                    local_date=TimezoneUtils.local_date(row.date, tz_name),
                    quantity_liters=row.quantity,
                    fifo_liters=row.quantity if pricing == CostingMethod.FIFO.value else match.matched_liters,
                    fifo_cost=match.matched_cost,
                    fallback_liters=fallback_liters,
                    fallback_cost=fallback_cost,
                    unpriced_liters=unpriced,
                    pricing=pricing,
                )
                report.lines.append(line)
                report.plant_costs[line.plant_code] += line.total_cost

                if unpriced > 0:
                    logger.warning(
                        f"CONSUMPTION REPORT: {unpriced:.2f}L of consumption {row.id} at warehouse "
                        f"{warehouse_id} has no price"
                    )

        report.lines.sort(key=lambda line: (line.transaction_date, str(line.transaction_id)))
        logger.info(
            f"CONSUMPTION REPORT: {date_from.isoformat()}..{date_to.isoformat()} "
            f"{len(report.lines)} consumptions, total {report.total_cost:.2f}, "
            f"unpriced {report.unpriced_liters:.2f}L"
        )
        return report

