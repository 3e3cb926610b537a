class InventoryServiceError(RuntimeError):
    """Rejected ledger write. ``status_code`` is the HTTP status routes answer with."""

    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}


class RecordNotFoundError(InventoryServiceError):
    status_code = 404


class InsufficientInventoryError(InventoryServiceError):
    """Warehouse balance is lower than the requested withdrawal."""

    def __init__(self, warehouse, requested: float):
        available = float(warehouse.current_inventory or 0.0)
        super().__init__(
            f"Insufficient inventory in warehouse {warehouse.warehouse_code}: "
            f"{available:.2f}L available, {requested:.2f}L requested",
            details={"available_liters": available, "requested_liters": requested},
        )


class TransferError(InventoryServiceError):
    """Transfer request that cannot be applied as given."""
