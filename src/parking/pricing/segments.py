"""Priced segments of a stay and the wall-clock helpers shared by the engine."""

from collections.abc import Container, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from ..models import Unit

Span = tuple[datetime, datetime]

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * 60

# Length of one billing unit
UNIT_MINUTES = {
    Unit.HOUR: MINUTES_PER_HOUR,
    Unit.DAY: MINUTES_PER_DAY,
    Unit.NIGHT: MINUTES_PER_DAY,
    Unit.WEEK: 7 * MINUTES_PER_DAY,
    Unit.FORTNIGHT: 14 * MINUTES_PER_DAY,
    Unit.MONTH: 30 * MINUTES_PER_DAY,
}


@dataclass
class Segment:
    """A priced slice of a stay.

    `spans` is the wall-clock time the vehicle was actually parked in this
    slice (used by time-of-day multipliers). `start` and `nominal_minutes`
    describe the billed unit, which may be longer than the parked time, e.g.
    a whole hour fraction for a 20 minute remainder.
    """

    kind: str
    description: str
    price: Decimal
    start: datetime
    nominal_minutes: int
    spans: list[Span] = field(default_factory=list)
    ref_id: str | None = None

    @property
    def parked_seconds(self) -> int:
        return sum(span_seconds(span) for span in self.spans)


def span_seconds(span: Span) -> int:
    return int((span[1] - span[0]).total_seconds())


def day_index(dt: datetime | date) -> int:
    """Day of week with 0 = Sunday, 6 = Saturday."""
    return (dt.weekday() + 1) % 7


def time_in_range(check_time: time, start: time, end: time) -> bool:
    """Check if a time falls within [start, end) (handles overnight ranges).

    Equal start and end cover the whole day.
    """
    if start < end:
        return start <= check_time < end
    else:
        # Overnight range (e.g., 22:00 to 06:00)
        return check_time >= start or check_time < end


def day_in_range(day: int, start: int | None, end: int | None) -> bool:
    """Check if a day index falls within [start, end] (inclusive, wrapping)."""
    if start is None or end is None:
        return True
    if start <= end:
        return start <= day <= end
    return day >= start or day <= end


def daily_occurrences(
    begin: datetime,
    finish: datetime,
    start_time: time,
    end_time: time,
    days: Container[int] | None = None,
) -> list[tuple[datetime, Span]]:
    """Lay a time-of-day range over every calendar day touched by [begin, finish).

    Returns (occurrence start, clipped span) for each occurrence that overlaps
    the interval. An occurrence belongs to the day it starts on, which is what
    `days` filters on. An end at or before the start rolls over to the next day.
    """
    results = []
    tz = begin.tzinfo
    day = begin.date() - timedelta(days=1)
    while day <= finish.date():
        occ_start = datetime.combine(day, start_time, tzinfo=tz)
        end_day = day if end_time > start_time else day + timedelta(days=1)
        occ_end = datetime.combine(end_day, end_time, tzinfo=tz)

        if days is None or day_index(day) in days:
            clipped_start = max(occ_start, begin)
            clipped_end = min(occ_end, finish)
            if clipped_end > clipped_start:
                results.append((occ_start, (clipped_start, clipped_end)))

        day += timedelta(days=1)
    return results


def overlap_seconds(spans: Iterable[Span], others: Iterable[Span]) -> int:
    """Total seconds shared by two collections of spans."""
    others = list(others)
    total = 0
    for start, end in spans:
        for other_start, other_end in others:
            lo = max(start, other_start)
            hi = min(end, other_end)
            if hi > lo:
                total += int((hi - lo).total_seconds())
    return total


def subtract_spans(span: Span, covered: Iterable[Span]) -> list[Span]:
    """The parts of `span` not inside any of the (sorted, disjoint) covered spans."""
    remaining = []
    cursor = span[0]
    for start, end in sorted(covered):
        if start > cursor:
            remaining.append((cursor, min(start, span[1])))
        cursor = max(cursor, end)
        if cursor >= span[1]:
            break
    if cursor < span[1]:
        remaining.append((cursor, span[1]))
    return [s for s in remaining if s[1] > s[0]]


def total_price(segments: Iterable[Segment]) -> Decimal:
    return sum((s.price for s in segments), Decimal("0"))


def count_units(minutes: int, unit_minutes: int, courtesy_minutes: int = 0) -> int:
    """Whole billing units for a duration, at least one.

    A trailing remainder counts as a further unit only when it is longer than
    the courtesy tolerance; with no courtesy this rounds up.
    """
    units, remainder = divmod(minutes, unit_minutes)
    if remainder > courtesy_minutes:
        units += 1
    return max(units, 1)
