from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from .errors import InsufficientPriceHistoryError

DEFAULT_LOOKBACK_DAYS = 45
DEFAULT_EPSILON_LITERS = 0.01
DEFAULT_EXTENDED_LOOKBACK_DAYS = 90


@dataclass(frozen=True)
class CostingParameters:
    """Tunables injected into every reconstruction call."""

    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    epsilon_liters: float = DEFAULT_EPSILON_LITERS
    extended_lookback_days: int = DEFAULT_EXTENDED_LOOKBACK_DAYS

    def __post_init__(self):
        if self.lookback_days <= 0:
            raise ValueError("lookback_days must be positive")
        if self.extended_lookback_days < self.lookback_days:
            raise ValueError("extended_lookback_days must not be shorter than lookback_days")
        if self.epsilon_liters < 0:
            raise ValueError("epsilon_liters must not be negative")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "CostingParameters":
        return cls(
            lookback_days=int(config.get("FIFO_LOOKBACK_DAYS", DEFAULT_LOOKBACK_DAYS)),
            epsilon_liters=float(config.get("FIFO_EPSILON_LITERS", DEFAULT_EPSILON_LITERS)),
            extended_lookback_days=int(
                config.get("FIFO_EXTENDED_LOOKBACK_DAYS", DEFAULT_EXTENDED_LOOKBACK_DAYS)
            ),
        )

    def window_start(self, as_of: datetime, days: Optional[int] = None) -> datetime:
        """First instant of the lookback window ending at ``as_of`` (midnight aligned)."""
        start = as_of - timedelta(days=self.lookback_days if days is None else days)
        return start.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class PricedEntry:
    id: Any
    quantity: float
    unit_cost: float
    date: datetime


@dataclass(frozen=True)
class ConsumptionRow:
    id: Any
    quantity: float
    date: datetime


@dataclass(frozen=True)
class Lot:
    """Surviving quantity of one entry. Only ever lives inside a single call."""

    quantity_remaining: float
    unit_cost: float
    entry_timestamp: datetime
    entry_id: Any = None

    def drawn(self, liters: float) -> "Lot":
        return replace(self, quantity_remaining=self.quantity_remaining - liters)


@dataclass(frozen=True)
class MatchResult:
    matched_cost: float
    matched_liters: float
    unmatched_liters: float
    remaining_lots: Tuple[Lot, ...]


class CostingMethod(str, Enum):
    FIFO = "fifo"
    WEIGHTED_AVERAGE = "weighted_average"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class WithdrawalCostResult:
    """Outcome of pricing a withdrawal.

    ``method`` is the tag callers branch on. An ``UNKNOWN`` result has no unit
    cost; use ``require_unit_cost()`` wherever a price is mandatory so the
    missing history surfaces as an error instead of a silent ``None``.
    """

    unit_cost: Optional[float]
    method: CostingMethod
    matched_liters: float
    unmatched_liters: float
    total_cost: Optional[float] = None

    @classmethod
    def unknown(cls, matched_liters: float, unmatched_liters: float) -> "WithdrawalCostResult":
        return cls(
            unit_cost=None,
            method=CostingMethod.UNKNOWN,
            matched_liters=matched_liters,
            unmatched_liters=unmatched_liters,
        )

    @property
    def is_priced(self) -> bool:
        return self.method is not CostingMethod.UNKNOWN

    def require_unit_cost(self) -> float:
        if not self.is_priced or self.unit_cost is None:
            raise InsufficientPriceHistoryError()
        return self.unit_cost

    def to_dict(self) -> dict:
        return {
            "unit_cost": self.unit_cost,
            "method": self.method.value,
            "matched_liters": self.matched_liters,
            "unmatched_liters": self.unmatched_liters,
            "total_cost": self.total_cost,
        }
