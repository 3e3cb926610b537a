"""Per-(warehouse, product) serialization of read-cost-write sequences.

Synopsis:
Two withdrawals against the same warehouse stock must not both price
against the same oldest lot. Callers wrap the whole read, costing and write
in ``serialized_inventory`` so that, per key, only one sequence runs at a
time. Different keys never contend.

Glossary:
- Inventory key: ``(warehouse_id, product_id)`` pair that owns one ledger.
- Row lock: ``SELECT ... FOR UPDATE`` on the warehouse balance row, held
  until the caller commits or rolls back (no-op on SQLite).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Any, Dict, Iterator, Optional, Tuple

from flask import current_app, has_app_context

from ..extensions import db
from ..models import DieselWarehouse

logger = logging.getLogger(__name__)

InventoryKey = Tuple[Any, Any]
DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


class InventoryLockTimeout(RuntimeError):
    """Another request held the inventory key for longer than the timeout."""

    retryable = True

    def __init__(self, key: InventoryKey, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(
            f"Inventory for warehouse {key[0]} / product {key[1]} is busy; "
            f"gave up after {timeout:.1f}s. Please retry."
        )


class InventoryLockRegistry:
    """Process-local lock per inventory key."""

    def __init__(self):
        self._guard = Lock()
        self._locks: Dict[InventoryKey, RLock] = {}

    def lock_for(self, key: InventoryKey) -> RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = RLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_registry = InventoryLockRegistry()


def get_lock_registry() -> InventoryLockRegistry:
    return _registry


def _resolve_timeout(timeout: Optional[float]) -> float:
    if timeout is not None:
        return float(timeout)
    if has_app_context():
        return float(current_app.config.get("INVENTORY_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS))
    return DEFAULT_LOCK_TIMEOUT_SECONDS


def _key_order(key: InventoryKey) -> tuple:
    """Numeric ids in numeric order, anything else after them by its text."""
    return tuple(
        (0, part, "") if isinstance(part, (int, float)) else (1, 0, str(part))
        for part in key
    )


def _lock_warehouse_rows(warehouse_ids) -> None:
    (
        db.session.query(DieselWarehouse)
        .filter(DieselWarehouse.id.in_(warehouse_ids))
        .order_by(DieselWarehouse.id.asc())
        .with_for_update()
        .populate_existing()
        .all()
    )


@contextmanager
def serialized_inventory(
    *keys: InventoryKey,
    timeout: Optional[float] = None,
    lock_rows: bool = True,
    registry: Optional[InventoryLockRegistry] = None,
) -> Iterator[None]:
    """
    Hold every given inventory key for the duration of the block.

    Keys are acquired in a fixed order so that two transfers running in
    opposite directions cannot deadlock. The caller must commit or roll back
    inside the block; row locks end with that transaction.
    """
    registry = registry if registry is not None else _registry
    wait = _resolve_timeout(timeout)
    ordered = sorted(set(keys), key=_key_order)
    held = []

    try:
        for key in ordered:
            lock = registry.lock_for(key)
            if not lock.acquire(timeout=wait):
                raise InventoryLockTimeout(key, wait)
            held.append(lock)

        if lock_rows and ordered:
            _lock_warehouse_rows(sorted({key[0] for key in ordered}))

        logger.debug(f"INVENTORY LOCK: holding {ordered}")
        yield
    finally:
        for lock in reversed(held):
            lock.release()
