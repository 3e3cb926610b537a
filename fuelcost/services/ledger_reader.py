import logging
from datetime import datetime
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from ..models import CONSUMPTION, ENTRY, DieselTransaction
from .fifo_costing import ConsumptionRow, LedgerReader, LedgerReadError, PricedEntry

__all__ = ["LedgerReader", "SqlAlchemyLedgerReader", "entry_from_row", "consumption_from_row"]

logger = logging.getLogger(__name__)


def entry_from_row(row: DieselTransaction) -> PricedEntry:
    return PricedEntry(
        id=row.id,
        quantity=float(row.quantity_liters),
        unit_cost=float(row.unit_cost),
        date=row.transaction_date,
    )


def consumption_from_row(row: DieselTransaction) -> ConsumptionRow:
    return ConsumptionRow(
        id=row.id,
        quantity=float(row.quantity_liters),
        date=row.transaction_date,
    )


def priced_entry_filters():
    return (
        DieselTransaction.transaction_type == ENTRY,
        DieselTransaction.unit_cost.isnot(None),
        DieselTransaction.unit_cost > 0,
    )


def replayable_consumption_filters():
    return (
        DieselTransaction.transaction_type == CONSUMPTION,
        DieselTransaction.is_transfer.is_(False),
    )


class SqlAlchemyLedgerReader:
    """LedgerReader over the ``diesel_transactions`` table."""

    def __init__(self, session=None):
        self._session = session

    def _query(self):
        if self._session is not None:
            return self._session.query(DieselTransaction)
        return DieselTransaction.query

    def list_priced_entries(self, warehouse_id, product_id, from_date: datetime, to_date: datetime) -> List[PricedEntry]:
        try:
            rows = self._query().filter(
                DieselTransaction.warehouse_id == warehouse_id,
                DieselTransaction.product_id == product_id,
                *priced_entry_filters(),
                DieselTransaction.transaction_date >= from_date,
                DieselTransaction.transaction_date <= to_date,
            ).order_by(
                DieselTransaction.transaction_date.asc(),
                DieselTransaction.id.asc(),
            ).all()
        except SQLAlchemyError as exc:
            logger.error(f"LEDGER: failed to read entries for warehouse {warehouse_id}: {exc}")
            raise LedgerReadError(f"Could not read entries for warehouse {warehouse_id}") from exc

        return [entry_from_row(row) for row in rows]

    def list_non_transfer_consumptions(self, warehouse_id, product_id, from_date: datetime, to_date: datetime) -> List[ConsumptionRow]:
        try:
            rows = self._query().filter(
                DieselTransaction.warehouse_id == warehouse_id,
                DieselTransaction.product_id == product_id,
                *replayable_consumption_filters(),
                DieselTransaction.transaction_date >= from_date,
                DieselTransaction.transaction_date <= to_date,
            ).order_by(
                DieselTransaction.transaction_date.asc(),
                DieselTransaction.id.asc(),
            ).all()
        except SQLAlchemyError as exc:
            logger.error(f"LEDGER: failed to read consumptions for warehouse {warehouse_id}: {exc}")
            raise LedgerReadError(f"Could not read consumptions for warehouse {warehouse_id}") from exc

        return [consumption_from_row(row) for row in rows]
