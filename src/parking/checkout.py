"""Check-out recording: price a stay and keep what was charged."""

import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from .db import get_connection
from .models import FeeResult, StayInterval
from .pricing.calculator import compute_fee_for_rate
from .tariffs import load_tariffs_from_db


def record_checkout(
    plate: str, stay: StayInterval, rate_id: str, db_path: Path | None = None
) -> FeeResult:
    """Compute the fee for a stay and store it as a check-out.

    Raises UnresolvedRate for an unknown rate and InvalidInterval for an exit
    before the entry; nothing is stored in either case.
    """
    book = load_tariffs_from_db(db_path)
    result = compute_fee_for_rate(stay, rate_id, book)

    with get_connection(db_path) as conn:
        conn.execute(
            """INSERT INTO checkouts
               (plate, vehicle_category, rate_id, entry_time, exit_time, elapsed_minutes,
                amount, substituted_rate_id, breakdown)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                plate.upper(),
                stay.vehicle_category,
                rate_id,
                stay.entry.isoformat(),
                stay.exit.isoformat(),
                result.elapsed_minutes,
                str(result.amount),
                result.substituted_rate_id,
                json.dumps([line.to_dict() for line in result.breakdown]),
            ),
        )
        conn.commit()

    return result


def list_checkouts(start: datetime, end: datetime, db_path: Path | None = None) -> list[dict]:
    """Get all check-outs whose exit falls within a period."""
    with get_connection(db_path) as conn:
        rows = conn.execute(
            """SELECT id, plate, vehicle_category, rate_id, entry_time, exit_time,
                      elapsed_minutes, amount, substituted_rate_id, breakdown
               FROM checkouts
               WHERE exit_time >= ? AND exit_time <= ?
               ORDER BY exit_time""",
            (start.isoformat(), end.isoformat()),
        ).fetchall()

    return [
        {
            "id": row["id"],
            "plate": row["plate"],
            "vehicle_category": row["vehicle_category"],
            "rate_id": row["rate_id"],
            "entry": datetime.fromisoformat(row["entry_time"]),
            "exit": datetime.fromisoformat(row["exit_time"]),
            "elapsed_minutes": row["elapsed_minutes"],
            "amount": Decimal(row["amount"]),
            "substituted_rate_id": row["substituted_rate_id"],
            "breakdown": json.loads(row["breakdown"] or "[]"),
        }
        for row in rows
    ]


def get_period_summary(start: datetime, end: datetime, db_path: Path | None = None) -> dict:
    """Totals of check-outs for a period, overall and per rate billed."""
    checkouts = list_checkouts(start, end, db_path)

    by_rate: dict[str, dict] = {}
    for c in checkouts:
        billed = c["substituted_rate_id"] or c["rate_id"]
        entry = by_rate.setdefault(billed, {"count": 0, "amount": Decimal("0")})
        entry["count"] += 1
        entry["amount"] += c["amount"]

    total = sum((c["amount"] for c in checkouts), Decimal("0"))
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "checkouts": len(checkouts),
        "total_amount": str(total),
        "substituted": sum(1 for c in checkouts if c["substituted_rate_id"]),
        "by_rate": {
            rate_id: {"count": v["count"], "amount": str(v["amount"])}
            for rate_id, v in sorted(by_rate.items())
        },
    }
