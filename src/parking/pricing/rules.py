"""Pricing rule evaluation.

Rules adjust the priced segments of a stay in (priority, sequence) order, each
one seeing the segments as the previous rule left them. Daily caps always run
last, on the subtotal.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import time, timedelta
from decimal import Decimal

from ..models import (
    BreakdownLine,
    Cap,
    Multiplier,
    Override,
    PricingRule,
    Progressive,
    Rate,
    RateType,
    RuleType,
    StayInterval,
)
from .errors import ConfigurationError
from .segments import (
    MINUTES_PER_HOUR,
    UNIT_MINUTES,
    Segment,
    count_units,
    daily_occurrences,
    overlap_seconds,
    total_price,
)

logger = logging.getLogger(__name__)

ADJUSTMENT_FOR_RULE = {
    RuleType.FIRST_HOUR: Override,
    RuleType.DAILY_MAX: Cap,
    RuleType.TIME_RANGE: Multiplier,
    RuleType.HOURLY_PROGRESSION: Progressive,
}


@dataclass
class RuleOutcome:
    """Result of running a rate's rules over its base segments."""

    segments: list[Segment]
    amount: Decimal
    applied_rule_ids: list[str] = field(default_factory=list)
    lines: list[BreakdownLine] = field(default_factory=list)


def check_rule(rule: PricingRule) -> None:
    """Raise ConfigurationError if a rule's adjustment does not fit its type."""
    expected = ADJUSTMENT_FOR_RULE[rule.rule_type]
    adjustment = rule.adjustment

    if adjustment is None:
        raise ConfigurationError(f"Rule {rule.id} ({rule.rule_type.value}) has no usable adjustment")
    if not isinstance(adjustment, expected):
        raise ConfigurationError(
            f"Rule {rule.id}: {rule.rule_type.value} needs a {expected.__name__.lower()} "
            f"adjustment, got {type(adjustment).__name__.lower()}"
        )

    if isinstance(adjustment, Progressive):
        if not adjustment.ranges:
            raise ConfigurationError(f"Rule {rule.id}: progressive adjustment without ranges")
        for r in adjustment.ranges:
            if r.start < 0 or (r.end is not None and r.end <= r.start):
                raise ConfigurationError(f"Rule {rule.id}: invalid hour range {r.start}-{r.end}")
            if r.value < 0:
                raise ConfigurationError(f"Rule {rule.id}: negative range value {r.value}")
    elif adjustment.value < 0:
        raise ConfigurationError(f"Rule {rule.id}: negative adjustment value {adjustment.value}")

    conditions = rule.conditions
    if (conditions.hour_start is None) != (conditions.hour_end is None):
        raise ConfigurationError(f"Rule {rule.id}: hour_start and hour_end must be set together")
    for hour in (conditions.hour_start, conditions.hour_end):
        if hour is not None and not 0 <= hour <= 24:
            raise ConfigurationError(f"Rule {rule.id}: hour {hour} is outside 0-24")
    for day in conditions.days_of_week or ():
        if not 0 <= day <= 6:
            raise ConfigurationError(f"Rule {rule.id}: day {day} is outside 0-6")


def billable_hours(stay: StayInterval, rate: Rate) -> int:
    """Hours a progression prices: hourly fractions for hourly rates, else whole hours rounded up."""
    if rate.rate_type == RateType.HOURLY:
        return count_units(stay.elapsed_minutes, UNIT_MINUTES[rate.unit], rate.courtesy_minutes)
    return count_units(stay.elapsed_minutes, MINUTES_PER_HOUR)


def apply_first_hour(
    segments: list[Segment], rule: PricingRule, stay: StayInterval, rate: Rate
) -> list[Segment] | None:
    """Replace what the first 60 billable minutes cost with the override value."""
    if stay.elapsed_minutes < rate.courtesy_minutes:
        return None

    first_hour = (stay.entry, stay.entry + timedelta(minutes=MINUTES_PER_HOUR))
    adjusted = []
    for segment in segments:
        nominal = (segment.start, segment.start + timedelta(minutes=segment.nominal_minutes))
        shared = overlap_seconds([nominal], [first_hour])
        if shared:
            attributed = segment.price * shared / (segment.nominal_minutes * 60)
            segment = replace(segment, price=segment.price - attributed)
        adjusted.append(segment)

    adjusted.append(
        Segment(
            kind=RuleType.FIRST_HOUR.value,
            description=rule.description or "First hour",
            price=rule.adjustment.value,
            start=stay.entry,
            nominal_minutes=MINUTES_PER_HOUR,
            spans=[(stay.entry, min(first_hour[1], stay.exit))],
            ref_id=rule.id,
        )
    )
    return adjusted


def apply_time_range(
    segments: list[Segment], rule: PricingRule, stay: StayInterval
) -> list[Segment] | None:
    """Scale the share of each segment parked inside the rule's hours and days."""
    conditions = rule.conditions
    if conditions.hour_start is None:
        start, end = time(0, 0), time(0, 0)
    elif conditions.hour_start == conditions.hour_end:
        # [h, h) is empty; only 0-24 spans the whole day
        return None
    else:
        start, end = time(conditions.hour_start % 24), time(conditions.hour_end % 24)

    days = set(conditions.days_of_week) if conditions.days_of_week is not None else None
    peak_spans = [span for _, span in daily_occurrences(stay.entry, stay.exit, start, end, days)]
    if not peak_spans:
        return None

    factor = rule.adjustment.value - 1
    touched = False
    adjusted = []
    for segment in segments:
        parked = segment.parked_seconds
        shared = overlap_seconds(segment.spans, peak_spans) if parked else 0
        if shared:
            touched = True
            portion = segment.price * shared / parked
            segment = replace(segment, price=segment.price + portion * factor)
        adjusted.append(segment)

    return adjusted if touched else None


def apply_progression(
    segments: list[Segment], rule: PricingRule, stay: StayInterval, rate: Rate
) -> list[Segment]:
    """Reprice the stay hour by hour from the rule's ranges.

    Ranges are laid down in the order given, so a later range overlapping an
    earlier one wins. Hours no range covers are not charged.
    """
    hours = billable_hours(stay, rate)
    prices: list[Decimal | None] = [None] * hours
    for r in rule.adjustment.ranges:
        end = hours if r.end is None else min(r.end, hours)
        for hour in range(r.start, end):
            prices[hour] = r.value

    repriced = []
    for hour, price in enumerate(prices):
        hour_start = stay.entry + timedelta(hours=hour)
        hour_end = stay.exit if hour == hours - 1 else min(hour_start + timedelta(hours=1), stay.exit)
        repriced.append(
            Segment(
                kind=RuleType.HOURLY_PROGRESSION.value,
                description=f"Hour {hour + 1}",
                price=price if price is not None else Decimal("0"),
                start=hour_start,
                nominal_minutes=MINUTES_PER_HOUR,
                spans=[(hour_start, hour_end)] if hour_end > hour_start else [],
                ref_id=rule.id,
            )
        )
    return repriced


def evaluate_rules(
    segments: list[Segment],
    rules: list[PricingRule],
    stay: StayInterval,
    rate: Rate,
    issues: list[str] | None = None,
) -> RuleOutcome:
    """Run a rate's active rules over its base segments.

    Malformed rules are skipped, logged and reported through `issues`; they
    never abort the calculation.
    """
    if issues is None:
        issues = []

    usable = []
    for rule in sorted(rules, key=lambda r: r.sort_key):
        if not rule.is_active:
            continue
        try:
            check_rule(rule)
        except ConfigurationError as e:
            logger.warning("Skipping pricing rule: %s", e)
            issues.append(str(e))
            continue
        usable.append(rule)

    outcome = RuleOutcome(segments=list(segments), amount=total_price(segments))

    for rule in usable:
        if rule.rule_type == RuleType.DAILY_MAX:
            continue

        if rule.rule_type == RuleType.FIRST_HOUR:
            adjusted = apply_first_hour(outcome.segments, rule, stay, rate)
        elif rule.rule_type == RuleType.TIME_RANGE:
            adjusted = apply_time_range(outcome.segments, rule, stay)
        else:
            adjusted = apply_progression(outcome.segments, rule, stay, rate)

        if adjusted is None:
            continue

        before = outcome.amount
        outcome.segments = adjusted
        outcome.amount = total_price(adjusted)
        _record(outcome, rule, outcome.amount - before)

    for rule in usable:
        if rule.rule_type != RuleType.DAILY_MAX:
            continue
        cap = rule.adjustment.value
        if outcome.amount > cap:
            delta = cap - outcome.amount
            outcome.amount = cap
            _record(outcome, rule, delta)

    return outcome


def _record(outcome: RuleOutcome, rule: PricingRule, delta: Decimal) -> None:
    outcome.applied_rule_ids.append(rule.id)
    outcome.lines.append(
        BreakdownLine(
            kind=rule.rule_type.value,
            description=rule.description or _describe(rule),
            amount=delta,
            ref_id=rule.id,
        )
    )


def _describe(rule: PricingRule) -> str:
    adjustment = rule.adjustment
    if isinstance(adjustment, Override):
        return f"First hour at {adjustment.value}"
    if isinstance(adjustment, Cap):
        return f"Capped at {adjustment.value}"
    if isinstance(adjustment, Multiplier):
        return f"x{adjustment.value} in time range"
    return "Progressive hourly pricing"
