"""Data models for rates, tariff configuration and fee results."""

from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any


class RateType(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    OVERNIGHT = "overnight"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class Unit(str, Enum):
    HOUR = "hour"
    DAY = "day"
    NIGHT = "night"
    WEEK = "week"
    FORTNIGHT = "fortnight"
    MONTH = "month"


class WindowType(str, Enum):
    DAILY = "daily"
    OVERNIGHT = "overnight"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"


class RuleType(str, Enum):
    FIRST_HOUR = "first_hour"
    DAILY_MAX = "daily_max"
    TIME_RANGE = "time_range"
    HOURLY_PROGRESSION = "hourly_progression"


# Unit a rate is priced in when none is given
DEFAULT_UNITS = {
    RateType.HOURLY: Unit.HOUR,
    RateType.DAILY: Unit.DAY,
    RateType.OVERNIGHT: Unit.NIGHT,
    RateType.WEEKLY: Unit.WEEK,
    RateType.BIWEEKLY: Unit.FORTNIGHT,
    RateType.MONTHLY: Unit.MONTH,
}


@dataclass
class Rate:
    """A base tariff for a vehicle category."""

    id: str
    vehicle_category: str
    rate_type: RateType
    unit_price: Decimal
    unit: Unit | None = None
    courtesy_minutes: int = 0
    name: str = ""
    is_active: bool = True
    config: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.unit is None:
            self.unit = DEFAULT_UNITS[self.rate_type]
        if self.unit_price < 0:
            raise ValueError(f"Rate {self.id}: unit price must not be negative")
        if self.courtesy_minutes < 0:
            raise ValueError(f"Rate {self.id}: courtesy minutes must not be negative")


@dataclass
class TimeWindow:
    """A time-of-day, day-of-week or duration constraint on a rate.

    Days run 0-6 with 0 = Sunday (7 is read as Sunday too). An end earlier
    than the start (time or day) wraps past midnight or the end of the week.
    """

    id: str
    rate_id: str
    window_type: WindowType
    start_time: time | None = None
    end_time: time | None = None
    start_day: int | None = None
    end_day: int | None = None
    duration_limit_minutes: int | None = None
    extra_rate_id: str | None = None
    is_active: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Stored day ranges may use 7 for Sunday
        if self.start_day == 7:
            self.start_day = 0
        if self.end_day == 7:
            self.end_day = 0


# Rule adjustments: one shape per rule type


@dataclass(frozen=True)
class Override:
    value: Decimal


@dataclass(frozen=True)
class Cap:
    value: Decimal


@dataclass(frozen=True)
class Multiplier:
    value: Decimal


@dataclass(frozen=True)
class ProgressiveRange:
    """Hours [start, end) priced at value per hour. end=None is open-ended."""

    start: int
    end: int | None
    value: Decimal


@dataclass(frozen=True)
class Progressive:
    ranges: tuple[ProgressiveRange, ...]


Adjustment = Override | Cap | Multiplier | Progressive


@dataclass(frozen=True)
class RuleConditions:
    hour_start: int | None = None
    hour_end: int | None = None
    days_of_week: tuple[int, ...] | None = None


@dataclass
class PricingRule:
    """An adjustment layered on top of a rate's base price.

    `adjustment` is None when the stored shape could not be parsed; such a
    rule is skipped at calculation time.
    """

    id: str
    rate_id: str
    rule_type: RuleType
    adjustment: Adjustment | None
    priority: int = 0
    sequence: int = 0
    conditions: RuleConditions = field(default_factory=RuleConditions)
    is_active: bool = True
    description: str = ""

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.priority, self.sequence)


@dataclass
class Threshold:
    """Suggest or force a switch to another rate above an amount."""

    id: str
    source_rate_id: str
    target_rate_id: str
    threshold_amount: Decimal
    auto_apply: bool = False
    sequence: int = 0


@dataclass
class StayInterval:
    """A vehicle's entry/exit pair being billed."""

    entry: datetime
    exit: datetime
    vehicle_category: str = ""

    @property
    def elapsed_minutes(self) -> int:
        return int((self.exit - self.entry).total_seconds() // 60)


@dataclass
class TariffBook:
    """All tariff configuration known to a caller, read-only."""

    rates: list[Rate] = field(default_factory=list)
    windows: list[TimeWindow] = field(default_factory=list)
    rules: list[PricingRule] = field(default_factory=list)
    thresholds: list[Threshold] = field(default_factory=list)

    def get_rate(self, rate_id: str) -> Rate | None:
        for rate in self.rates:
            if rate.id == rate_id:
                return rate
        return None

    def windows_for(self, rate_id: str) -> list[TimeWindow]:
        return [w for w in self.windows if w.rate_id == rate_id]

    def rules_for(self, rate_id: str) -> list[PricingRule]:
        return [r for r in self.rules if r.rate_id == rate_id]

    def thresholds_for(self, rate_id: str) -> list[Threshold]:
        return [t for t in self.thresholds if t.source_rate_id == rate_id]

    def hourly_rate_for(self, vehicle_category: str) -> Rate | None:
        """The active hourly/fraction rate of a vehicle category."""
        category = vehicle_category.lower()
        for rate in self.rates:
            if (
                rate.rate_type == RateType.HOURLY
                and rate.is_active
                and rate.vehicle_category.lower() == category
            ):
                return rate
        return None


@dataclass
class BreakdownLine:
    """One line of a fee breakdown, as printed on a receipt."""

    kind: str
    description: str
    amount: Decimal
    minutes: int | None = None
    ref_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "description": self.description,
            "amount": str(self.amount),
            "minutes": self.minutes,
            "ref_id": self.ref_id,
        }


@dataclass
class Suggestion:
    """A non-binding offer to switch to a cheaper or better-fitting rate."""

    target_rate_id: str
    target_amount: Decimal
    threshold_id: str


@dataclass
class FeeResult:
    """Outcome of a fee calculation."""

    amount: Decimal
    rate_id: str
    elapsed_minutes: int
    base_amount: Decimal = Decimal("0")
    breakdown: list[BreakdownLine] = field(default_factory=list)
    applied_rule_ids: list[str] = field(default_factory=list)
    substituted_rate_id: str | None = None
    suggestion: Suggestion | None = None
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "rate_id": self.rate_id,
            "elapsed_minutes": self.elapsed_minutes,
            "base_amount": str(self.base_amount),
            "breakdown": [line.to_dict() for line in self.breakdown],
            "applied_rule_ids": list(self.applied_rule_ids),
            "substituted_rate_id": self.substituted_rate_id,
            "suggestion": (
                {
                    "target_rate_id": self.suggestion.target_rate_id,
                    "target_amount": str(self.suggestion.target_amount),
                    "threshold_id": self.suggestion.threshold_id,
                }
                if self.suggestion
                else None
            ),
            "issues": list(self.issues),
        }
