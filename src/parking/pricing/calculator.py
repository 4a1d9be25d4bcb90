"""Fee calculation for a parked vehicle.

`compute_fee` is a pure function of its inputs: it reads no clock, performs
no I/O and keeps all working state local, so the same stay and configuration
always produce the same amount.

Steps:
1. Validate the interval and take elapsed whole minutes.
2. Stays within the courtesy minutes are free.
3. Build base segments: time window coverage and excess for daily, overnight,
   weekly and biweekly rates; hour fractions for hourly rates; one flat
   segment otherwise.
4. Apply pricing rules, then thresholds.
5. Round half-up to the currency's minor unit.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from itertools import groupby

from ..models import (
    BreakdownLine,
    FeeResult,
    PricingRule,
    Rate,
    RateType,
    StayInterval,
    Suggestion,
    TariffBook,
    Threshold,
    TimeWindow,
)
from .errors import InvalidInterval, UnresolvedRate
from .rules import evaluate_rules
from .segments import UNIT_MINUTES, Segment, count_units, total_price
from .thresholds import advise
from .windows import WINDOW_TYPE_FOR_RATE, match_window, window_segments

logger = logging.getLogger(__name__)

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0")
UNIT_KINDS = ("hourly", "daily")


@dataclass
class _Priced:
    amount: Decimal
    base_amount: Decimal
    lines: list[BreakdownLine] = field(default_factory=list)
    applied_rule_ids: list[str] = field(default_factory=list)
    courtesy: bool = False


def round_amount(amount: Decimal) -> Decimal:
    """Round to the minor unit, half-up, never below zero."""
    return max(amount, ZERO).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def validate_interval(stay: StayInterval) -> None:
    if (stay.entry.tzinfo is None) != (stay.exit.tzinfo is None):
        raise InvalidInterval("Entry and exit must both be timezone-aware or both naive")
    if stay.exit < stay.entry:
        raise InvalidInterval(
            f"Exit {stay.exit.isoformat()} is before entry {stay.entry.isoformat()}"
        )


def base_segments(
    stay: StayInterval,
    rate: Rate,
    windows: list[TimeWindow],
    book: TariffBook | None = None,
    issues: list[str] | None = None,
) -> list[Segment]:
    """Price the stay under the rate before any rule is applied."""
    if rate.rate_type in WINDOW_TYPE_FOR_RATE:
        match = match_window(stay, rate, windows, book, issues)
        if match is not None:
            return window_segments(match, stay)

    elapsed = stay.elapsed_minutes

    if rate.rate_type == RateType.HOURLY:
        unit_minutes = UNIT_MINUTES[rate.unit]
        count = count_units(elapsed, unit_minutes, rate.courtesy_minutes)
        return _unit_segments(stay, rate, "hourly", count, unit_minutes)

    if rate.rate_type == RateType.DAILY:
        unit_minutes = UNIT_MINUTES[rate.unit]
        count = count_units(elapsed, unit_minutes)
        return _unit_segments(stay, rate, "daily", count, unit_minutes)

    # Overnight, weekly, biweekly and monthly rates without a window are flat
    return [
        Segment(
            kind=rate.rate_type.value,
            description=f"{rate.rate_type.value.capitalize()} flat rate",
            price=rate.unit_price,
            start=stay.entry,
            nominal_minutes=max(elapsed, 1),
            spans=[(stay.entry, stay.exit)],
            ref_id=rate.id,
        )
    ]


def _unit_segments(
    stay: StayInterval, rate: Rate, kind: str, count: int, unit_minutes: int
) -> list[Segment]:
    segments = []
    for i in range(count):
        start = stay.entry + timedelta(minutes=i * unit_minutes)
        # The last unit absorbs any remainder forgiven by the courtesy minutes
        end = stay.exit if i == count - 1 else min(start + timedelta(minutes=unit_minutes), stay.exit)
        segments.append(
            Segment(
                kind=kind,
                description=f"{kind.capitalize()} unit {i + 1}",
                price=rate.unit_price,
                start=start,
                nominal_minutes=unit_minutes,
                spans=[(start, end)] if end > start else [],
                ref_id=rate.id,
            )
        )
    return segments


def _base_lines(segments: list[Segment], rate: Rate) -> list[BreakdownLine]:
    """Receipt lines for base segments, with runs of whole units collapsed."""
    lines = []
    for kind, group in groupby(segments, key=lambda s: s.kind):
        group = list(group)
        if kind in UNIT_KINDS:
            lines.append(
                BreakdownLine(
                    kind=kind,
                    description=f"{kind.capitalize()} x{len(group)} at {rate.unit_price}",
                    amount=total_price(group),
                    minutes=sum(s.parked_seconds for s in group) // 60,
                    ref_id=rate.id,
                )
            )
            continue
        lines.extend(
            BreakdownLine(
                kind=s.kind,
                description=s.description,
                amount=s.price,
                minutes=s.parked_seconds // 60,
                ref_id=s.ref_id,
            )
            for s in group
        )
    return lines


def _price(
    stay: StayInterval,
    rate: Rate,
    windows: list[TimeWindow],
    rules: list[PricingRule],
    book: TariffBook | None,
    issues: list[str],
) -> _Priced:
    if stay.elapsed_minutes <= rate.courtesy_minutes:
        line = BreakdownLine(
            kind="courtesy",
            description=f"Within {rate.courtesy_minutes} courtesy minutes",
            amount=ZERO,
            minutes=stay.elapsed_minutes,
            ref_id=rate.id,
        )
        return _Priced(amount=ZERO, base_amount=ZERO, lines=[line], courtesy=True)

    segments = base_segments(stay, rate, windows, book, issues)
    base_amount = total_price(segments)
    outcome = evaluate_rules(segments, rules, stay, rate, issues)

    return _Priced(
        amount=outcome.amount,
        base_amount=base_amount,
        lines=_base_lines(segments, rate) + outcome.lines,
        applied_rule_ids=outcome.applied_rule_ids,
    )


def compute_fee(
    stay: StayInterval,
    rate: Rate,
    windows: list[TimeWindow] | None = None,
    rules: list[PricingRule] | None = None,
    thresholds: list[Threshold] | None = None,
    book: TariffBook | None = None,
) -> FeeResult:
    """Compute what a stay owes under a rate and its configuration.

    `book` supplies the other rates a calculation may need: the extra rate of
    a time window and the target rate of a threshold, with their own windows
    and rules. Without it, excess time and thresholds cannot be priced and are
    reported as configuration issues.

    Raises:
        InvalidInterval: exit precedes entry.
    """
    validate_interval(stay)
    windows = list(windows or [])
    rules = list(rules or [])
    thresholds = list(thresholds or [])
    issues: list[str] = []

    if not rate.is_active:
        message = f"Rate {rate.id} is inactive"
        logger.warning(message)
        issues.append(message)

    priced = _price(stay, rate, windows, rules, book, issues)
    result = FeeResult(
        amount=round_amount(priced.amount),
        rate_id=rate.id,
        elapsed_minutes=stay.elapsed_minutes,
        base_amount=round_amount(priced.base_amount),
        breakdown=priced.lines,
        applied_rule_ids=priced.applied_rule_ids,
        issues=issues,
    )
    if priced.courtesy:
        return result

    priced_targets: dict[str, _Priced] = {}

    def price_target(target: Rate) -> Decimal:
        # Targets are priced with their own windows and rules, not thresholds
        priced_targets[target.id] = _price(
            stay, target, book.windows_for(target.id), book.rules_for(target.id), book, issues
        )
        return round_amount(priced_targets[target.id].amount)

    advice = advise(priced.amount, rate, thresholds, book, price_target, issues)
    if advice is None:
        return result

    if advice.substitutes:
        target = advice.target_rate
        target_priced = priced_targets[target.id]
        result.amount = advice.target_amount
        result.base_amount = round_amount(target_priced.base_amount)
        result.substituted_rate_id = target.id
        result.applied_rule_ids = target_priced.applied_rule_ids
        result.breakdown = target_priced.lines + [
            BreakdownLine(
                kind="threshold",
                description=(
                    f"{rate.id} amount {round_amount(priced.amount)} exceeds "
                    f"{advice.threshold.threshold_amount}, billed at {target.id}"
                ),
                amount=ZERO,
                ref_id=advice.threshold.id,
            )
        ]
    else:
        result.suggestion = Suggestion(
            target_rate_id=advice.target_rate.id,
            target_amount=advice.target_amount,
            threshold_id=advice.threshold.id,
        )

    return result


def compute_fee_for_rate(stay: StayInterval, rate_id: str, book: TariffBook) -> FeeResult:
    """Compute a fee for a rate id, taking its configuration from a tariff book.

    Raises:
        UnresolvedRate: the book has no rate with this id.
        InvalidInterval: exit precedes entry.
    """
    rate = book.get_rate(rate_id)
    if rate is None:
        raise UnresolvedRate(f"Rate {rate_id} not found")
    return compute_fee(
        stay,
        rate,
        book.windows_for(rate_id),
        book.rules_for(rate_id),
        book.thresholds_for(rate_id),
        book,
    )
