class CostingError(RuntimeError):
    """Base class for withdrawal costing failures."""


class InvalidQuantityError(CostingError, ValueError):
    """Requested liters are not a positive finite number."""

    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Quantity must be greater than 0 (got {quantity!r})")


class InsufficientPriceHistoryError(CostingError):
    """No priced entry exists in the lookback window to cost a withdrawal."""

    default_message = "Cannot determine historical cost: no priced entries in the lookback window"

    def __init__(self, message: str | None = None, *, warehouse_id=None, product_id=None):
        self.warehouse_id = warehouse_id
        self.product_id = product_id
        super().__init__(message or self.default_message)


class LedgerReadError(CostingError):
    """The ledger store could not be read. Safe to retry."""

    retryable = True
