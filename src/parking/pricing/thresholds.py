"""Threshold advice: switch, or offer to switch, to another rate above an amount."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal

from ..models import Rate, TariffBook, Threshold
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class Advice:
    """The threshold that fired and what the target rate would charge."""

    threshold: Threshold
    target_rate: Rate
    target_amount: Decimal

    @property
    def substitutes(self) -> bool:
        return self.threshold.auto_apply


def check_threshold(threshold: Threshold) -> None:
    if threshold.target_rate_id == threshold.source_rate_id:
        raise ConfigurationError(
            f"Threshold {threshold.id}: target rate is the source rate {threshold.source_rate_id}"
        )
    if threshold.threshold_amount < 0:
        raise ConfigurationError(
            f"Threshold {threshold.id}: negative amount {threshold.threshold_amount}"
        )


def exceeded_thresholds(
    amount: Decimal,
    rate_id: str,
    thresholds: list[Threshold],
    issues: list[str] | None = None,
) -> list[Threshold]:
    """Thresholds of this rate that the amount exceeds, tightest first.

    Ties on the threshold amount keep their creation order.
    """
    if issues is None:
        issues = []

    exceeded = []
    for threshold in thresholds:
        if threshold.source_rate_id != rate_id:
            continue
        try:
            check_threshold(threshold)
        except ConfigurationError as e:
            logger.warning("Skipping threshold: %s", e)
            issues.append(str(e))
            continue
        if amount > threshold.threshold_amount:
            exceeded.append(threshold)

    return sorted(exceeded, key=lambda t: (t.threshold_amount, t.sequence))


def advise(
    amount: Decimal,
    rate: Rate,
    thresholds: list[Threshold],
    book: TariffBook | None,
    price_target: Callable[[Rate], Decimal],
    issues: list[str] | None = None,
) -> Advice | None:
    """Pick the tightest exceeded threshold whose target rate can be priced.

    `price_target` prices the stay under a target rate with that rate's own
    windows and rules.
    """
    if issues is None:
        issues = []

    for threshold in exceeded_thresholds(amount, rate.id, thresholds, issues):
        target = book.get_rate(threshold.target_rate_id) if book else None
        if target is None:
            message = (
                f"Threshold {threshold.id}: target rate {threshold.target_rate_id} not found"
            )
            logger.warning(message)
            issues.append(message)
            continue

        advice = Advice(threshold=threshold, target_rate=target, target_amount=price_target(target))
        if advice.substitutes:
            logger.info(
                "Threshold %s: %s exceeds %s, billing %s at %s instead",
                threshold.id,
                amount,
                threshold.threshold_amount,
                target.id,
                advice.target_amount,
            )
        return advice

    return None
