"""Inter-warehouse transfers.

Synopsis:
A transfer is a pair of ledger rows: a transfer-out withdrawal at the source
and a transfer-in deposit at the destination, linked to each other. The
transfer-in is priced at the FIFO cost the source would have charged for the
same liters at the same instant, so cost follows the fuel.

Glossary:
- Transfer-out: withdrawal leg (``is_transfer``), never replayed against the
  source's lots; its unit cost is kept for audit only.
- Transfer-in: deposit leg (``is_transfer``) that becomes a cost lot at the
  destination once priced.
- Mark: pairing an existing withdrawal with an existing deposit after the fact.
- Fix: filling in the price of a transfer-in that was written without one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from ..extensions import db
from ..models import CONSUMPTION, ENTRY, DieselTransaction, DieselWarehouse
from ..utils.timezone_utils import TimezoneUtils
from ..utils.transaction_codes import build_transaction_code
from .errors import InsufficientInventoryError, InventoryServiceError, RecordNotFoundError, TransferError
from .fifo_costing import (
    FifoCostingService,
    InsufficientPriceHistoryError,
    WithdrawalCostResult,
    validate_quantity,
)
from .inventory_lock import serialized_inventory
from .ledger_lookups import load_transaction, load_warehouse, resolve_product, source_system

logger = logging.getLogger(__name__)

TRANSFER_NOTE_PREFIX = "[TRANSFER]"
MATCH_CANDIDATE_LIMIT = 5


def _plant_label(warehouse: DieselWarehouse) -> str:
    return f"{warehouse.plant_name or warehouse.name} ({warehouse.plant_code})"


def _tag_note(existing: Optional[str], tag: str) -> str:
    if existing and existing.strip():
        return f"{tag} {existing.strip()}"
    return tag


def _reload_locked(*rows: DieselTransaction) -> None:
    """Re-read ``rows`` under a row lock so checks see the last committed state."""
    for row in rows:
        db.session.refresh(row, with_for_update=True)


def _ensure_unpaired(consumption: DieselTransaction, entry: DieselTransaction) -> None:
    if consumption.is_transfer:
        raise TransferError(f"Consumption {consumption.id} is already marked as a transfer")
    if entry.is_transfer:
        raise TransferError(f"Entry {entry.id} is already marked as a transfer")


@dataclass(frozen=True)
class TransferResult:
    transfer_out: DieselTransaction
    transfer_in: DieselTransaction
    unit_cost: Optional[float]
    cost: Optional[WithdrawalCostResult] = None

    def to_dict(self) -> dict:
        return {
            "transfer_out": self.transfer_out.to_dict(),
            "transfer_in": self.transfer_in.to_dict(),
            "unit_cost": self.unit_cost,
            "total_cost": (self.unit_cost * float(self.transfer_in.quantity_liters)) if self.unit_cost else None,
            "cost": self.cost.to_dict() if self.cost else None,
        }


@dataclass(frozen=True)
class FixOutcome:
    entry_id: Any
    consumption_id: Any
    unit_cost: Optional[float]
    fixed_transfer_out: bool = False
    already_priced: bool = False

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "consumption_id": self.consumption_id,
            "unit_cost": self.unit_cost,
            "fixed_transfer_out": self.fixed_transfer_out,
            "already_priced": self.already_priced,
        }


@dataclass
class FixAllReport:
    fixed: List[FixOutcome] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)
    skipped: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "fixed": [outcome.to_dict() for outcome in self.fixed],
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "summary": {
                "fixed": len(self.fixed),
                "failed": len(self.failed),
                "skipped": len(self.skipped),
            },
        }


class TransferService:
    """Creates, pairs and prices transfer legs."""

    def __init__(self, costing: Optional[FifoCostingService] = None):
        self._costing = costing

    @property
    def costing(self) -> FifoCostingService:
        if self._costing is None:
            self._costing = FifoCostingService.from_app()
        return self._costing

    @property
    def epsilon(self) -> float:
        return self.costing.parameters.epsilon_liters

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    def create_transfer(
        self,
        *,
        from_warehouse_id: Any,
        to_warehouse_id: Any,
        quantity_liters: Any,
        product_id: Any = None,
        transaction_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> TransferResult:
        """
        Move liters between warehouses as one atomic pair of rows.

        Both (warehouse, product) keys are held while the source cost is
        computed and both legs are written. If the source has no price
        history the transfer is rejected and nothing is written.
        """
        quantity = validate_quantity(quantity_liters)
        if from_warehouse_id is None or to_warehouse_id is None:
            raise TransferError("from_warehouse_id and to_warehouse_id are required")
        if str(from_warehouse_id) == str(to_warehouse_id):
            raise TransferError("Cannot transfer to the same warehouse")

        source = load_warehouse(from_warehouse_id)
        destination = load_warehouse(to_warehouse_id)
        if source.product_type != destination.product_type:
            raise TransferError(
                f"Cannot transfer {source.product_type} into a {destination.product_type} warehouse"
            )
        product = resolve_product(source, product_id)
        when = TimezoneUtils.to_storage(transaction_date) or TimezoneUtils.utc_now()

        try:
            with serialized_inventory((source.id, product.id), (destination.id, product.id)):
                if float(source.current_inventory or 0.0) + self.epsilon < quantity:
                    raise InsufficientInventoryError(source, quantity)

                cost = self.costing.compute_withdrawal_cost(source.id, product.id, quantity, when)
                if not cost.is_priced:
                    raise InsufficientPriceHistoryError(warehouse_id=source.id, product_id=product.id)
                unit_cost = cost.unit_cost

                out_previous, out_current = source.apply_delta(-quantity)
                in_previous, in_current = destination.apply_delta(quantity)

                transfer_out = DieselTransaction(
                    transaction_id=build_transaction_code(product.product_type, source.plant_code, when, "transfer_out"),
                    warehouse_id=source.id,
                    product_id=product.id,
                    transaction_type=CONSUMPTION,
                    quantity_liters=quantity,
                    previous_balance=out_previous,
                    current_balance=out_current,
                    transaction_date=when,
                    is_transfer=True,
                    notes=_tag_note(notes, f"{TRANSFER_NOTE_PREFIX} To {_plant_label(destination)}"),
                    created_by=created_by,
                    source_system=source_system(),
                )
                transfer_out.assign_price(unit_cost)
                db.session.add(transfer_out)
                db.session.flush()

                transfer_in = DieselTransaction(
                    transaction_id=build_transaction_code(product.product_type, destination.plant_code, when, "transfer_in"),
                    warehouse_id=destination.id,
                    product_id=product.id,
                    transaction_type=ENTRY,
                    quantity_liters=quantity,
                    previous_balance=in_previous,
                    current_balance=in_current,
                    transaction_date=when,
                    is_transfer=True,
                    reference_transaction_id=transfer_out.id,
                    notes=_tag_note(notes, f"{TRANSFER_NOTE_PREFIX} From {_plant_label(source)}"),
                    created_by=created_by,
                    source_system=source_system(),
                )
                transfer_in.assign_price(unit_cost)
                db.session.add(transfer_in)
                db.session.flush()

                transfer_out.reference_transaction_id = transfer_in.id
                db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            f"TRANSFER: {quantity:.2f}L {source.warehouse_code} -> {destination.warehouse_code} "
            f"at {unit_cost:.4f}/L via {cost.method.value} (out={transfer_out.id}, in={transfer_in.id})"
        )
        return TransferResult(transfer_out=transfer_out, transfer_in=transfer_in, unit_cost=unit_cost, cost=cost)

    # ------------------------------------------------------------------
    # Mark existing rows as a transfer pair
    # ------------------------------------------------------------------
    def find_matching_entry(self, consumption: DieselTransaction, to_warehouse_id: Any) -> Optional[DieselTransaction]:
        """Most recent unpaired deposit at ``to_warehouse_id`` that mirrors ``consumption``."""
        quantity = float(consumption.quantity_liters)
        candidates = (
            DieselTransaction.query.filter(
                DieselTransaction.warehouse_id == to_warehouse_id,
                DieselTransaction.product_id == consumption.product_id,
                DieselTransaction.transaction_type == ENTRY,
                DieselTransaction.is_transfer.is_(False),
                DieselTransaction.quantity_liters >= quantity - self.epsilon,
                DieselTransaction.quantity_liters <= quantity + self.epsilon,
                DieselTransaction.transaction_date >= TimezoneUtils.start_of_day(consumption.transaction_date),
            )
            .order_by(DieselTransaction.transaction_date.desc(), DieselTransaction.id.desc())
            .limit(MATCH_CANDIDATE_LIMIT)
            .all()
        )
        return candidates[0] if candidates else None

    def mark_transfer(
        self,
        *,
        consumption_id: Any,
        entry_id: Any = None,
        to_warehouse_id: Any = None,
        preserve_price: bool = True,
    ) -> TransferResult:
        """
        Pair an existing withdrawal with an existing deposit.

        With ``preserve_price`` the deposit inherits the withdrawal's price,
        computing the source FIFO cost first when the withdrawal has none. A
        withdrawal that cannot be priced is rejected instead of leaving an
        unpriced transfer-in behind.
        """
        consumption = load_transaction(consumption_id, CONSUMPTION)
        if consumption.is_transfer:
            raise TransferError(f"Consumption {consumption.id} is already marked as a transfer")

        if entry_id is not None:
            entry = load_transaction(entry_id, ENTRY)
            if abs(float(entry.quantity_liters) - float(consumption.quantity_liters)) > self.epsilon:
                raise TransferError(
                    f"Quantities do not match: consumption {consumption.quantity_liters}L, "
                    f"entry {entry.quantity_liters}L"
                )
        elif to_warehouse_id is not None:
            entry = self.find_matching_entry(consumption, to_warehouse_id)
            if entry is None:
                raise RecordNotFoundError(
                    f"No matching entry of {consumption.quantity_liters}L found at warehouse {to_warehouse_id}"
                )
        else:
            raise TransferError("Provide entry_id or to_warehouse_id")

        _ensure_unpaired(consumption, entry)
        if entry.product_id != consumption.product_id:
            raise TransferError("Consumption and entry are for different products")
        if entry.warehouse_id == consumption.warehouse_id:
            raise TransferError("Consumption and entry belong to the same warehouse")

        source = consumption.warehouse
        destination = entry.warehouse
        cost: Optional[WithdrawalCostResult] = None

        try:
            with serialized_inventory(
                (consumption.warehouse_id, consumption.product_id),
                (entry.warehouse_id, entry.product_id),
            ):
                # Another request may have paired either row while this one waited
                _reload_locked(consumption, entry)
                _ensure_unpaired(consumption, entry)

                # Flushed before costing so the replay no longer draws this withdrawal from the lots.
                consumption.is_transfer = True
                db.session.flush()

                price = float(consumption.unit_cost) if consumption.has_price else None
                if preserve_price and price is None:
                    cost = self.costing.compute_withdrawal_cost(
                        consumption.warehouse_id,
                        consumption.product_id,
                        float(consumption.quantity_liters),
                        consumption.transaction_date,
                    )
                    if not cost.is_priced:
                        raise InsufficientPriceHistoryError(
                            warehouse_id=consumption.warehouse_id, product_id=consumption.product_id
                        )
                    price = cost.unit_cost
                    consumption.assign_price(price)

                consumption.reference_transaction_id = entry.id
                consumption.notes = _tag_note(consumption.notes, f"{TRANSFER_NOTE_PREFIX} To {_plant_label(destination)}")

                entry.is_transfer = True
                entry.reference_transaction_id = consumption.id
                entry.notes = _tag_note(entry.notes, f"{TRANSFER_NOTE_PREFIX} From {_plant_label(source)}")
                if preserve_price and price is not None:
                    entry.assign_price(price)

                db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            f"TRANSFER: marked consumption {consumption.id} -> entry {entry.id} "
            f"(unit_cost={entry.unit_cost}, preserve_price={preserve_price})"
        )
        return TransferResult(
            transfer_out=consumption,
            transfer_in=entry,
            unit_cost=float(entry.unit_cost) if entry.has_price else None,
            cost=cost,
        )

    # ------------------------------------------------------------------
    # Price repair
    # ------------------------------------------------------------------
    def _load_pair(self, entry: DieselTransaction) -> DieselTransaction:
        if not entry.is_transfer:
            raise TransferError(f"Entry {entry.id} is not a transfer")
        if entry.reference_transaction_id is None:
            raise TransferError(f"Transfer entry {entry.id} has no linked consumption")
        consumption = db.session.get(DieselTransaction, entry.reference_transaction_id)
        if consumption is None or consumption.transaction_type != CONSUMPTION:
            raise RecordNotFoundError(f"Linked consumption {entry.reference_transaction_id} not found")
        if not consumption.is_transfer:
            raise TransferError(f"Linked consumption {consumption.id} is not marked as a transfer")
        return consumption

    def _price_pair(self, entry: DieselTransaction, consumption: DieselTransaction) -> FixOutcome:
        """Fill the transfer-in from the transfer-out's recorded cost, computing it when missing."""
        # Re-read under the row locks; a concurrent repair may already have priced it
        _reload_locked(entry, consumption)
        if entry.has_price:
            return FixOutcome(
                entry_id=entry.id,
                consumption_id=consumption.id,
                unit_cost=float(entry.unit_cost),
                already_priced=True,
            )

        fixed_out = False
        if consumption.has_price:
            unit_cost = float(consumption.unit_cost)
        else:
            cost = self.costing.compute_withdrawal_cost(
                consumption.warehouse_id,
                consumption.product_id,
                float(consumption.quantity_liters),
                consumption.transaction_date,
            )
            if not cost.is_priced:
                raise InsufficientPriceHistoryError(
                    warehouse_id=consumption.warehouse_id, product_id=consumption.product_id
                )
            unit_cost = cost.unit_cost
            consumption.assign_price(unit_cost)
            fixed_out = True

        entry.assign_price(unit_cost)
        return FixOutcome(
            entry_id=entry.id,
            consumption_id=consumption.id,
            unit_cost=unit_cost,
            fixed_transfer_out=fixed_out,
        )

    def fix_transfer_price(self, entry_id: Any) -> FixOutcome:
        """Price one transfer-in from its source withdrawal. Already priced rows are left alone."""
        entry = load_transaction(entry_id, ENTRY)
        consumption = self._load_pair(entry)
        if entry.has_price:
            return FixOutcome(
                entry_id=entry.id,
                consumption_id=consumption.id,
                unit_cost=float(entry.unit_cost),
                already_priced=True,
            )

        try:
            with serialized_inventory(
                (consumption.warehouse_id, consumption.product_id),
                (entry.warehouse_id, entry.product_id),
            ):
                outcome = self._price_pair(entry, consumption)
                db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        if outcome.already_priced:
            return outcome
        logger.info(f"TRANSFER: fixed price of transfer-in {entry.id} at {outcome.unit_cost:.4f}/L")
        return outcome

    def fix_all_transfer_prices(self) -> FixAllReport:
        """
        Price every unpriced transfer-in, oldest first.

        Each pair commits on its own so one bad pair does not block the
        rest. A ledger read failure aborts the run.
        """
        report = FixAllReport()
        candidates = (
            DieselTransaction.query.filter(
                DieselTransaction.transaction_type == ENTRY,
                DieselTransaction.is_transfer.is_(True),
                db.or_(DieselTransaction.unit_cost.is_(None), DieselTransaction.unit_cost <= 0),
            )
            .order_by(DieselTransaction.transaction_date.asc(), DieselTransaction.id.asc())
            .all()
        )
        logger.info(f"TRANSFER: {len(candidates)} transfer-in rows without a price")

        for entry in candidates:
            try:
                consumption = self._load_pair(entry)
            except InventoryServiceError as exc:
                report.skipped.append({"entry_id": entry.id, "reason": exc.message})
                continue

            try:
                with serialized_inventory(
                    (consumption.warehouse_id, consumption.product_id),
                    (entry.warehouse_id, entry.product_id),
                ):
                    outcome = self._price_pair(entry, consumption)
                    db.session.commit()
            except InsufficientPriceHistoryError as exc:
                db.session.rollback()
                logger.warning(f"TRANSFER: could not price transfer-in {entry.id}: {exc}")
                report.failed.append({"entry_id": entry.id, "consumption_id": consumption.id, "reason": str(exc)})
                continue
            except Exception:
                db.session.rollback()
                raise
            if outcome.already_priced:
                report.skipped.append({"entry_id": entry.id, "reason": "Already priced"})
                continue
            report.fixed.append(outcome)

        logger.info(
            f"TRANSFER: price repair done fixed={len(report.fixed)} failed={len(report.failed)} "
            f"skipped={len(report.skipped)}"
        )
        return report
