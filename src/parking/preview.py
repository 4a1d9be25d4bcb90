"""Preview the effect of candidate pricing rules on sample stays."""

from dataclasses import replace
from decimal import Decimal

from .models import FeeResult, PricingRule, StayInterval, TariffBook
from .pricing.calculator import compute_fee_for_rate


def preview_rules(
    book: TariffBook,
    rate_id: str,
    candidates: list[PricingRule],
    samples: list[StayInterval],
) -> list[dict]:
    """Price each sample with the current rules and with the candidates added.

    Candidates replace stored rules with the same id. Nothing is persisted.
    """
    candidate_ids = {rule.id for rule in candidates}
    trial_book = replace(
        book,
        rules=[r for r in book.rules if r.id not in candidate_ids]
        + [replace(rule, rate_id=rate_id) for rule in candidates],
    )

    results = []
    for stay in samples:
        current: FeeResult = compute_fee_for_rate(stay, rate_id, book)
        trial: FeeResult = compute_fee_for_rate(stay, rate_id, trial_book)
        results.append(
            {
                "entry": stay.entry,
                "exit": stay.exit,
                "elapsed_minutes": current.elapsed_minutes,
                "current": current.amount,
                "candidate": trial.amount,
                "difference": trial.amount - current.amount,
                "applied_rule_ids": trial.applied_rule_ids,
                "issues": trial.issues,
            }
        )
    return results


def total_difference(rows: list[dict]) -> Decimal:
    return sum((row["difference"] for row in rows), Decimal("0"))
