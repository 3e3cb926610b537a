from datetime import datetime
from typing import Any, Protocol, Sequence, runtime_checkable

from ._types import ConsumptionRow, PricedEntry


@runtime_checkable
class LedgerReader(Protocol):
    """Read-only access to one (warehouse, product) ledger.

    Both methods return rows with ``from_date <= date <= to_date`` in
    ascending date order, and raise ``LedgerReadError`` when the store fails.
    """

    def list_priced_entries(
        self, warehouse_id: Any, product_id: Any, from_date: datetime, to_date: datetime
    ) -> Sequence[PricedEntry]:
        """Deposits with ``unit_cost > 0`` (purchases and priced transfer-ins)."""
        ...

    def list_non_transfer_consumptions(
        self, warehouse_id: Any, product_id: Any, from_date: datetime, to_date: datetime
    ) -> Sequence[ConsumptionRow]:
        """Withdrawals that are not the outgoing leg of a transfer."""
        ...
