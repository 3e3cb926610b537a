"""Human-readable ledger transaction codes.

Codes read ``{PRODUCT}-{PLANT}-{YYYYMMDD}-{KIND}``, for example
``DSL-P001-20250115-TRF-OUT``. They are labels for operators, not keys;
several rows can share one code.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict

__all__ = ["build_transaction_code", "PRODUCT_PREFIXES", "KIND_SUFFIXES"]

DEFAULT_PRODUCT_PREFIX = "DSL"

PRODUCT_PREFIXES: Dict[str, str] = {
    "diesel": "DSL",
    "urea": "URE",
}

KIND_SUFFIXES: Dict[str, str] = {
    "entry": "ENT",
    "consumption": "CON",
    "transfer_out": "TRF-OUT",
    "transfer_in": "TRF-IN",
}


def build_transaction_code(product_type: str | None, plant_code: str, when: datetime, kind: str) -> str:
    if kind not in KIND_SUFFIXES:
        raise ValueError(f"Unknown transaction kind: {kind}")
    prefix = PRODUCT_PREFIXES.get((product_type or "").lower(), DEFAULT_PRODUCT_PREFIX)
    return f"{prefix}-{plant_code}-{when.strftime('%Y%m%d')}-{KIND_SUFFIXES[kind]}"
