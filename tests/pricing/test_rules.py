"""Tests for pricing rule evaluation."""

from datetime import datetime
from decimal import Decimal

import pytest
from parking.models import (
    Cap,
    Multiplier,
    Override,
    PricingRule,
    Progressive,
    ProgressiveRange,
    Rate,
    RateType,
    RuleConditions,
    RuleType,
    StayInterval,
)
from parking.pricing.calculator import compute_fee
from parking.pricing.errors import ConfigurationError
from parking.pricing.rules import billable_hours, check_rule


TEN = Rate("hourly-10", "car", RateType.HOURLY, Decimal("10.00"))

# 2026-03-02 is a Monday
MONDAY = datetime(2026, 3, 2)


def at(hour, minute=0):
    return MONDAY.replace(hour=hour, minute=minute)


def stay(entry, exit):
    return StayInterval(entry=entry, exit=exit, vehicle_category="car")


def rule(rule_id, rule_type, adjustment, priority=0, sequence=0, **conditions):
    return PricingRule(
        id=rule_id,
        rate_id="hourly-10",
        rule_type=rule_type,
        adjustment=adjustment,
        priority=priority,
        sequence=sequence,
        conditions=RuleConditions(**conditions),
    )


def test_progression_prices_each_hour():
    """Hours 1, 2-3 and 4+ are priced from their ranges."""
    progression = rule(
        "prog",
        RuleType.HOURLY_PROGRESSION,
        Progressive(
            ranges=(
                ProgressiveRange(0, 1, Decimal("10")),
                ProgressiveRange(1, 3, Decimal("8")),
                ProgressiveRange(3, None, Decimal("6")),
            )
        ),
    )
    result = compute_fee(stay(at(9), at(15)), TEN, rules=[progression])
    assert result.base_amount == Decimal("60.00")
    assert result.amount == Decimal("44.00")
    assert result.applied_rule_ids == ["prog"]


def test_progression_uncovered_hours_are_free():
    progression = rule(
        "prog",
        RuleType.HOURLY_PROGRESSION,
        Progressive(ranges=(ProgressiveRange(0, 2, Decimal("7")),)),
    )
    result = compute_fee(stay(at(9), at(13)), TEN, rules=[progression])
    assert result.amount == Decimal("14.00")


def test_cap_runs_after_multiplier():
    """A daily max is applied last even with a lower priority."""
    cap = rule("cap", RuleType.DAILY_MAX, Cap(Decimal("80")), priority=0)
    evening = rule(
        "evening",
        RuleType.TIME_RANGE,
        Multiplier(Decimal("2")),
        priority=5,
        hour_start=20,
        hour_end=22,
    )
    result = compute_fee(stay(at(10), at(22)), TEN, rules=[cap, evening])
    assert result.base_amount == Decimal("120.00")
    assert result.amount == Decimal("80.00")
    assert result.applied_rule_ids == ["evening", "cap"]

    lines = {line.ref_id: line.amount for line in result.breakdown if line.kind != "hourly"}
    assert lines["evening"] == Decimal("20")
    assert lines["cap"] == Decimal("-60")


def test_cap_not_recorded_below_limit():
    cap = rule("cap", RuleType.DAILY_MAX, Cap(Decimal("80")))
    result = compute_fee(stay(at(10), at(12)), TEN, rules=[cap])
    assert result.amount == Decimal("20.00")
    assert result.applied_rule_ids == []


def test_time_range_scales_only_overlap():
    """Half of a unit parked in peak hours gets half the uplift."""
    peak = rule("peak", RuleType.TIME_RANGE, Multiplier(Decimal("2")), hour_start=18, hour_end=20)
    result = compute_fee(stay(at(17, 30), at(18, 30)), TEN, rules=[peak])
    assert result.amount == Decimal("15.00")


def test_time_range_respects_days():
    """A Sunday-only multiplier leaves a Monday stay alone."""
    sunday = rule("sunday", RuleType.TIME_RANGE, Multiplier(Decimal("2")), days_of_week=(0,))
    result = compute_fee(stay(at(10), at(12)), TEN, rules=[sunday])
    assert result.amount == Decimal("20.00")
    assert result.applied_rule_ids == []


def test_first_hour_override():
    first = rule("first", RuleType.FIRST_HOUR, Override(Decimal("2")))
    rate = Rate("hourly-5", "car", RateType.HOURLY, Decimal("5.00"))
    result = compute_fee(stay(at(10), at(13)), rate, rules=[first])
    assert result.amount == Decimal("12.00")
    assert result.applied_rule_ids == ["first"]


def test_first_hour_on_daily_rate_is_pro_rata():
    """The first hour's share of a whole day unit is replaced."""
    first = rule("first", RuleType.FIRST_HOUR, Override(Decimal("2")))
    daily = Rate("daily-30", "car", RateType.DAILY, Decimal("30.00"))
    result = compute_fee(stay(at(10), at(13)), daily, rules=[first])
    # 30 - 30/24 + 2
    assert result.amount == Decimal("30.75")


def test_rules_ordered_by_priority_then_sequence():
    late = rule("late", RuleType.TIME_RANGE, Multiplier(Decimal("1.1")), priority=1, sequence=2)
    early = rule("early", RuleType.TIME_RANGE, Multiplier(Decimal("1.2")), priority=1, sequence=1)
    first = rule("first", RuleType.TIME_RANGE, Multiplier(Decimal("1.5")), priority=0, sequence=9)
    result = compute_fee(stay(at(10), at(11)), TEN, rules=[late, early, first])
    assert result.applied_rule_ids == ["first", "early", "late"]
    assert result.amount == Decimal("19.80")


def test_malformed_rule_skipped_with_issue():
    """A first_hour rule carrying a cap is skipped, not fatal."""
    bad = rule("bad", RuleType.FIRST_HOUR, Cap(Decimal("1")))
    missing = rule("missing", RuleType.DAILY_MAX, None)
    result = compute_fee(stay(at(10), at(12)), TEN, rules=[bad, missing])
    assert result.amount == Decimal("20.00")
    assert result.applied_rule_ids == []
    assert len(result.issues) == 2
    assert any("bad" in issue for issue in result.issues)


def test_inactive_rule_ignored():
    cap = rule("cap", RuleType.DAILY_MAX, Cap(Decimal("5")))
    cap.is_active = False
    result = compute_fee(stay(at(10), at(12)), TEN, rules=[cap])
    assert result.amount == Decimal("20.00")


def test_check_rule_rejects_half_hour_range():
    r = rule("peak", RuleType.TIME_RANGE, Multiplier(Decimal("2")), hour_start=18)
    with pytest.raises(ConfigurationError):
        check_rule(r)


def test_check_rule_rejects_negative_value():
    r = rule("neg", RuleType.FIRST_HOUR, Override(Decimal("-1")))
    with pytest.raises(ConfigurationError):
        check_rule(r)


def test_billable_hours_uses_courtesy_for_hourly():
    rate = Rate("hourly", "car", RateType.HOURLY, Decimal("5"), courtesy_minutes=10)
    assert billable_hours(stay(at(10), at(11, 5)), rate) == 1
    assert billable_hours(stay(at(10), at(11, 25)), rate) == 2


def test_progression_six_hours_gives_fifty():
    progression = rule(
        "prog",
        RuleType.HOURLY_PROGRESSION,
        Progressive(
            ranges=(
                ProgressiveRange(0, 2, Decimal("10")),
                ProgressiveRange(2, 5, Decimal("8")),
                ProgressiveRange(5, 999, Decimal("6")),
            )
        ),
    )
    assert compute_fee(stay(at(8), at(14)), TEN, rules=[progression]).amount == Decimal("50.00")


def test_time_range_equal_hours_never_applies():
    """[8, 8) is an empty range, not the whole day."""
    empty = rule("empty", RuleType.TIME_RANGE, Multiplier(Decimal("2")), hour_start=8, hour_end=8)
    result = compute_fee(stay(at(10), at(12)), TEN, rules=[empty])
    assert result.amount == Decimal("20.00")
    assert result.applied_rule_ids == []


def test_time_range_zero_to_twenty_four_is_whole_day():
    allday = rule("allday", RuleType.TIME_RANGE, Multiplier(Decimal("2")), hour_start=0, hour_end=24)
    result = compute_fee(stay(at(10), at(12)), TEN, rules=[allday])
    assert result.amount == Decimal("40.00")


def test_progression_later_overlapping_range_wins():
    overlapping = rule(
        "prog",
        RuleType.HOURLY_PROGRESSION,
        Progressive(
            ranges=(
                ProgressiveRange(0, None, Decimal("10")),
                ProgressiveRange(2, 4, Decimal("3")),
            )
        ),
    )
    result = compute_fee(stay(at(9), at(14)), TEN, rules=[overlapping])
    # 10 + 10 + 3 + 3 + 10
    assert result.amount == Decimal("36.00")

    reversed_ranges = rule(
        "prog",
        RuleType.HOURLY_PROGRESSION,
        Progressive(
            ranges=(
                ProgressiveRange(2, 4, Decimal("3")),
                ProgressiveRange(0, None, Decimal("10")),
            )
        ),
    )
    assert compute_fee(stay(at(9), at(14)), TEN, rules=[reversed_ranges]).amount == Decimal("50.00")


def progression_at_six(priority):
    return rule(
        "prog",
        RuleType.HOURLY_PROGRESSION,
        Progressive(ranges=(ProgressiveRange(0, None, Decimal("6")),)),
        priority=priority,
    )


def peak_doubling(priority):
    return rule(
        "peak",
        RuleType.TIME_RANGE,
        Multiplier(Decimal("2")),
        priority=priority,
        hour_start=8,
        hour_end=10,
    )


def test_multiplier_before_progression_is_superseded():
    """The progression reprices every hour, discarding the earlier uplift."""
    result = compute_fee(stay(at(8), at(12)), TEN, rules=[progression_at_six(2), peak_doubling(1)])
    assert result.applied_rule_ids == ["peak", "prog"]
    assert result.amount == Decimal("24.00")


def test_multiplier_after_progression_scales_it():
    result = compute_fee(stay(at(8), at(12)), TEN, rules=[progression_at_six(1), peak_doubling(2)])
    assert result.applied_rule_ids == ["prog", "peak"]
    # 12 + 12 + 6 + 6
    assert result.amount == Decimal("36.00")


def test_progression_without_ranges_skipped():
    empty = rule("empty", RuleType.HOURLY_PROGRESSION, Progressive(ranges=()))
    result = compute_fee(stay(at(10), at(12)), TEN, rules=[empty])
    assert result.amount == Decimal("20.00")
    assert result.applied_rule_ids == []
    assert len(result.issues) == 1
    assert "without ranges" in result.issues[0]
