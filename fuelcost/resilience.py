"""Global resilience and error-handler registration.

Synopsis:
Registers teardown and error handlers for database rollback safety and
maps costing/locking failures onto the JSON envelope used by the API.

Glossary:
- Resilience handler: Global request teardown/error behavior for known failures.
- Retryable failure: Ledger read or lock timeout the client may simply repeat.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import DBAPIError, OperationalError

from .extensions import db
from .services.fifo_costing.errors import LedgerReadError
from .services.inventory_lock import InventoryLockTimeout
from .utils.api_responses import APIResponse

logger = logging.getLogger(__name__)


def register_resilience_handlers(app) -> None:
    """Install global DB rollback and retryable-failure handlers."""

    @app.teardown_request
    def _rollback_on_error(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.errorhandler(OperationalError)
    @app.errorhandler(DBAPIError)
    def _db_error_handler(error):
        db.session.rollback()
        logger.error("Database unavailable: %s", error)
        return APIResponse.error(
            "Service temporarily unavailable. Please try again shortly.",
            errors={"retryable": True},
            status_code=503,
        )

    @app.errorhandler(LedgerReadError)
    def _ledger_read_error_handler(error: LedgerReadError):
        db.session.rollback()
        logger.error("Ledger read failed: %s", error)
        return APIResponse.error(
            "Inventory ledger is temporarily unavailable.",
            errors={"retryable": error.retryable},
            status_code=503,
        )

    @app.errorhandler(InventoryLockTimeout)
    def _lock_timeout_handler(error: InventoryLockTimeout):
        db.session.rollback()
        logger.warning("Inventory lock timeout: %s", error)
        return APIResponse.error(
            str(error),
            errors={"retryable": True},
            status_code=503,
        )
