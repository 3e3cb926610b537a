from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import CONSUMPTION, ENTRY, DieselTransaction
from ..utils.timezone_utils import TimezoneUtils
from ..utils.transaction_codes import build_transaction_code
from .errors import InsufficientInventoryError, InventoryServiceError
from .fifo_costing import FifoCostingService, InsufficientPriceHistoryError, WithdrawalCostResult, validate_quantity
from .inventory_lock import serialized_inventory
from .ledger_lookups import load_warehouse, resolve_product, source_system

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedConsumption:
    transaction: DieselTransaction
    cost: WithdrawalCostResult

    def to_dict(self) -> dict:
        payload = self.transaction.to_dict()
        payload["cost"] = self.cost.to_dict()
        return payload


class ConsumptionService:
    """Writes deposits and withdrawals against a warehouse ledger."""

    def __init__(self, costing: Optional[FifoCostingService] = None):
        self._costing = costing

    @property
    def costing(self) -> FifoCostingService:
        if self._costing is None:
            self._costing = FifoCostingService.from_app()
        return self._costing

    def record_entry(
        self,
        *,
        warehouse_id: Any,
        quantity_liters: Any,
        unit_cost: Any = None,
        product_id: Any = None,
        transaction_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> DieselTransaction:
        """Record a deposit. Entries without a positive ``unit_cost`` never become cost lots."""
        quantity = validate_quantity(quantity_liters)
        price = None
        if unit_cost is not None and unit_cost != "":
            try:
                price = float(unit_cost)
            except (TypeError, ValueError):
                raise InventoryServiceError(f"Invalid unit cost: {unit_cost!r}") from None
            if price < 0:
                raise InventoryServiceError("Unit cost must not be negative")

        warehouse = load_warehouse(warehouse_id)
        product = resolve_product(warehouse, product_id)
        when = TimezoneUtils.to_storage(transaction_date) or TimezoneUtils.utc_now()

        try:
            with serialized_inventory((warehouse.id, product.id)):
                previous, current = warehouse.apply_delta(quantity)
                row = DieselTransaction(
                    transaction_id=build_transaction_code(product.product_type, warehouse.plant_code, when, "entry"),
                    warehouse_id=warehouse.id,
                    product_id=product.id,
                    transaction_type=ENTRY,
                    quantity_liters=quantity,
                    previous_balance=previous,
                    current_balance=current,
                    transaction_date=when,
                    is_transfer=False,
                    notes=notes,
                    created_by=created_by,
                    source_system=source_system(),
                )
                if price:
                    row.assign_price(price)
                db.session.add(row)
                db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            f"LEDGER: entry {row.id} +{quantity:.2f}L at warehouse {warehouse.warehouse_code} "
            f"(unit_cost={row.unit_cost})"
        )
        return row

    def record_consumption(
        self,
        *,
        warehouse_id: Any,
        quantity_liters: Any,
        product_id: Any = None,
        transaction_date: Optional[datetime] = None,
        asset_id: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> RecordedConsumption:
        """
        Cost and record a withdrawal in one serialized step.

        The withdrawal row itself carries no unit cost; the computed cost is
        returned to the caller. A withdrawal that cannot be priced is
        rejected and nothing is written.
        """
        quantity = validate_quantity(quantity_liters)
        warehouse = load_warehouse(warehouse_id)
        product = resolve_product(warehouse, product_id)
        when = TimezoneUtils.to_storage(transaction_date) or TimezoneUtils.utc_now()
        epsilon = self.costing.parameters.epsilon_liters

        try:
            with serialized_inventory((warehouse.id, product.id)):
                if float(warehouse.current_inventory or 0.0) + epsilon < quantity:
                    raise InsufficientInventoryError(warehouse, quantity)

                cost = self.costing.compute_withdrawal_cost(warehouse.id, product.id, quantity, when)
                if not cost.is_priced:
                    raise InsufficientPriceHistoryError(warehouse_id=warehouse.id, product_id=product.id)

                previous, current = warehouse.apply_delta(-quantity)
                row = DieselTransaction(
                    transaction_id=build_transaction_code(product.product_type, warehouse.plant_code, when, "consumption"),
                    warehouse_id=warehouse.id,
                    product_id=product.id,
                    transaction_type=CONSUMPTION,
                    quantity_liters=quantity,
                    previous_balance=previous,
                    current_balance=current,
                    transaction_date=when,
                    is_transfer=False,
                    asset_id=asset_id,
                    notes=notes,
                    created_by=created_by,
                    source_system=source_system(),
                )
                db.session.add(row)
                db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            f"LEDGER: consumption {row.id} -{quantity:.2f}L at warehouse {warehouse.warehouse_code} "
            f"costed {cost.unit_cost:.4f}/L via {cost.method.value}"
        )
        return RecordedConsumption(transaction=row, cost=cost)
