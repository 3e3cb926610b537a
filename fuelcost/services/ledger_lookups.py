from typing import Any, Optional

from flask import current_app, has_app_context

from ..extensions import db
from ..models import DieselProduct, DieselTransaction, DieselWarehouse
from .errors import InventoryServiceError, RecordNotFoundError


def load_warehouse(warehouse_id: Any) -> DieselWarehouse:
    warehouse = db.session.get(DieselWarehouse, warehouse_id) if warehouse_id is not None else None
    if warehouse is None:
        raise RecordNotFoundError(f"Warehouse {warehouse_id} not found")
    return warehouse


def resolve_product(warehouse: DieselWarehouse, product_id: Any = None) -> DieselProduct:
    """Product stored in ``warehouse``; defaults to the first product of its type."""
    if product_id is not None:
        product = db.session.get(DieselProduct, product_id)
        if product is None:
            raise RecordNotFoundError(f"Product {product_id} not found")
        if product.product_type != warehouse.product_type:
            raise InventoryServiceError(
                f"Product {product.product_code} ({product.product_type}) cannot be stored in "
                f"warehouse {warehouse.warehouse_code} ({warehouse.product_type})"
            )
        return product

    product = (
        DieselProduct.query.filter_by(product_type=warehouse.product_type)
        .order_by(DieselProduct.id.asc())
        .first()
    )
    if product is None:
        raise RecordNotFoundError(f"No {warehouse.product_type} product configured")
    return product


def load_transaction(transaction_id: Any, transaction_type: Optional[str] = None) -> DieselTransaction:
    row = db.session.get(DieselTransaction, transaction_id) if transaction_id is not None else None
    if row is None or (transaction_type and row.transaction_type != transaction_type):
        label = transaction_type or "transaction"
        raise RecordNotFoundError(f"{label.capitalize()} {transaction_id} not found")
    return row


def source_system() -> Optional[str]:
    if has_app_context():
        return current_app.config.get("SOURCE_SYSTEM")
    return None
