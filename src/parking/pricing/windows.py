"""Time window matching.

Decides which of a rate's windows governs a stay and splits the stay into the
part the window covers (billed at the rate's own price) and the excess
(billed per fraction through an extra rate, normally the vehicle category's
hourly rate).
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from ..models import Rate, RateType, StayInterval, TariffBook, TimeWindow, WindowType
from .errors import ConfigurationError
from .segments import (
    UNIT_MINUTES,
    Segment,
    Span,
    count_units,
    day_in_range,
    day_index,
    daily_occurrences,
    span_seconds,
    subtract_spans,
)

logger = logging.getLogger(__name__)

# Which window type a rate type is governed by
WINDOW_TYPE_FOR_RATE = {
    RateType.DAILY: WindowType.DAILY,
    RateType.OVERNIGHT: WindowType.OVERNIGHT,
    RateType.WEEKLY: WindowType.WEEKLY,
    RateType.BIWEEKLY: WindowType.BIWEEKLY,
}

TIME_OF_DAY_WINDOWS = (WindowType.DAILY, WindowType.OVERNIGHT)
DURATION_WINDOWS = (WindowType.WEEKLY, WindowType.BIWEEKLY)


@dataclass
class WindowMatch:
    """How a window splits a stay."""

    window: TimeWindow
    covered_amount: Decimal
    covered_minutes: int
    excess_minutes: int
    excess_rate: Rate | None
    covered_spans: list[Span] = field(default_factory=list)
    excess_spans: list[Span] = field(default_factory=list)
    occurrences: int = 1

    @property
    def excess_units(self) -> int:
        if self.excess_minutes <= 0 or self.excess_rate is None:
            return 0
        return count_units(self.excess_minutes, UNIT_MINUTES[self.excess_rate.unit])

    @property
    def excess_amount(self) -> Decimal:
        if self.excess_rate is None:
            return Decimal("0")
        return self.excess_units * self.excess_rate.unit_price


def check_window(window: TimeWindow) -> None:
    """Raise ConfigurationError if a window's shape is inconsistent."""
    for name in ("start_day", "end_day"):
        day = getattr(window, name)
        if day is not None and not 0 <= day <= 6:
            raise ConfigurationError(f"Window {window.id}: {name} {day} is outside 0-6")

    if window.window_type in TIME_OF_DAY_WINDOWS:
        if window.start_time is None or window.end_time is None:
            raise ConfigurationError(
                f"Window {window.id}: {window.window_type.value} window needs start and end times"
            )

    if window.duration_limit_minutes is not None and window.duration_limit_minutes <= 0:
        raise ConfigurationError(
            f"Window {window.id}: duration limit must be positive, got {window.duration_limit_minutes}"
        )


def is_applicable(window: TimeWindow, rate: Rate, stay: StayInterval) -> bool:
    """Check whether a well-formed window can govern this stay under this rate."""
    if not window.is_active:
        return False
    if window.window_type != WINDOW_TYPE_FOR_RATE.get(rate.rate_type):
        return False
    # Weekly/biweekly without a limit falls back to the flat rate
    if window.window_type in DURATION_WINDOWS and window.duration_limit_minutes is None:
        return False
    return day_in_range(day_index(stay.entry), window.start_day, window.end_day)


def resolve_extra_rate(
    window: TimeWindow, rate: Rate, book: TariffBook | None
) -> Rate | None:
    """The rate that bills time outside the window."""
    if book is None:
        return None
    if window.extra_rate_id:
        return book.get_rate(window.extra_rate_id)
    return book.hourly_rate_for(rate.vehicle_category)


def match_window(
    stay: StayInterval,
    rate: Rate,
    windows: list[TimeWindow],
    book: TariffBook | None = None,
    issues: list[str] | None = None,
) -> WindowMatch | None:
    """Find the first applicable window and split the stay by it.

    Windows are tried in the order given. Malformed windows are skipped and
    reported through `issues`. Returns None when no window applies.
    """
    if issues is None:
        issues = []

    for window in windows:
        if not window.is_active:
            continue
        if window.window_type != WINDOW_TYPE_FOR_RATE.get(rate.rate_type):
            continue

        try:
            check_window(window)
        except ConfigurationError as e:
            logger.warning("Skipping time window: %s", e)
            issues.append(str(e))
            continue

        if not is_applicable(window, rate, stay):
            continue

        if window.window_type in TIME_OF_DAY_WINDOWS:
            match = _split_time_of_day(stay, rate, window)
        else:
            match = _split_duration(stay, rate, window)

        if match.excess_minutes > 0:
            match.excess_rate = resolve_extra_rate(window, rate, book)
            if match.excess_rate is None:
                message = (
                    f"Window {window.id}: no extra rate found for "
                    f"{match.excess_minutes} excess minutes, excess not charged"
                )
                logger.warning(message)
                issues.append(message)

        return match

    return None


def _split_time_of_day(stay: StayInterval, rate: Rate, window: TimeWindow) -> WindowMatch:
    days = None
    if window.start_day is not None and window.end_day is not None:
        days = {d for d in range(7) if day_in_range(d, window.start_day, window.end_day)}

    occurrences = daily_occurrences(
        stay.entry, stay.exit, window.start_time, window.end_time, days
    )
    covered_spans = [span for _, span in occurrences]
    excess_spans = subtract_spans((stay.entry, stay.exit), covered_spans)

    # The rate's price is due once per window occurrence the stay touches
    count = max(len({occ_start for occ_start, _ in occurrences}), 1)

    return WindowMatch(
        window=window,
        covered_amount=rate.unit_price * count,
        covered_minutes=sum(span_seconds(s) for s in covered_spans) // 60,
        excess_minutes=sum(span_seconds(s) for s in excess_spans) // 60,
        excess_rate=None,
        covered_spans=covered_spans,
        excess_spans=excess_spans,
        occurrences=count,
    )


def _split_duration(stay: StayInterval, rate: Rate, window: TimeWindow) -> WindowMatch:
    elapsed = stay.elapsed_minutes
    limit = window.duration_limit_minutes
    covered = min(elapsed, limit)
    limit_end = stay.entry + timedelta(minutes=covered)

    covered_spans = [(stay.entry, limit_end)] if covered > 0 else []
    excess_spans = [(limit_end, stay.exit)] if elapsed > limit else []

    return WindowMatch(
        window=window,
        covered_amount=rate.unit_price,
        covered_minutes=covered,
        excess_minutes=elapsed - covered,
        excess_rate=None,
        covered_spans=covered_spans,
        excess_spans=excess_spans,
    )


def window_segments(match: WindowMatch, stay: StayInterval) -> list[Segment]:
    """Priced segments for a matched window: its coverage, then any excess."""
    window = match.window
    kind = window.window_type.value

    if window.window_type in TIME_OF_DAY_WINDOWS:
        label = (
            f"{kind.capitalize()} window {window.start_time:%H:%M}-{window.end_time:%H:%M}"
            f" x{match.occurrences}"
        )
    else:
        label = f"{kind.capitalize()} window, up to {window.duration_limit_minutes} min"

    start = match.covered_spans[0][0] if match.covered_spans else stay.entry
    segments = [
        Segment(
            kind=kind,
            description=label,
            price=match.covered_amount,
            start=start,
            nominal_minutes=max(match.covered_minutes, 1),
            spans=list(match.covered_spans),
            ref_id=window.id,
        )
    ]

    if match.excess_minutes > 0:
        rate = match.excess_rate
        unit_minutes = UNIT_MINUTES[rate.unit] if rate else match.excess_minutes
        units = match.excess_units
        description = f"Excess {match.excess_minutes} min"
        if rate:
            description += f" ({units} x {rate.unit_price} at {rate.id})"
        segments.append(
            Segment(
                kind=f"{kind}_extra",
                description=description,
                price=match.excess_amount,
                start=match.excess_spans[0][0],
                nominal_minutes=max(units * unit_minutes, 1),
                spans=list(match.excess_spans),
                ref_id=rate.id if rate else None,
            )
        )

    return segments
