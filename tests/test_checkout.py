"""Tests for check-out recording."""

from datetime import datetime
from decimal import Decimal

import pytest
from parking.checkout import get_period_summary, list_checkouts, record_checkout
from parking.db import get_stats, init_db
from parking.models import Rate, RateType, StayInterval, TariffBook, Threshold
from parking.pricing.errors import InvalidInterval, UnresolvedRate
from parking.tariffs import save_tariffs_to_db


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "parking.db"
    init_db(path)
    book = TariffBook(
        rates=[
            Rate("car-hourly", "car", RateType.HOURLY, Decimal("5.00"), courtesy_minutes=10),
            Rate("car-daily", "car", RateType.DAILY, Decimal("30.00")),
        ],
        thresholds=[
            Threshold(
                id="to-daily",
                source_rate_id="car-hourly",
                target_rate_id="car-daily",
                threshold_amount=Decimal("30"),
                auto_apply=True,
            )
        ],
    )
    save_tariffs_to_db(book, path)
    return path


def stay(entry, exit):
    return StayInterval(entry=entry, exit=exit, vehicle_category="car")


def test_record_and_list(db_path):
    result = record_checkout(
        "abc1234", stay(datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 12)), "car-hourly", db_path
    )
    assert result.amount == Decimal("10.00")

    rows = list_checkouts(datetime(2026, 3, 2), datetime(2026, 3, 3), db_path)
    assert len(rows) == 1
    row = rows[0]
    assert row["plate"] == "ABC1234"
    assert row["amount"] == Decimal("10.00")
    assert row["exit"] == datetime(2026, 3, 2, 12)
    assert row["breakdown"][0]["kind"] == "hourly"


def test_substituted_rate_recorded(db_path):
    """Eight hours on the hourly rate (40) is billed at the daily rate."""
    record_checkout(
        "XYZ9876", stay(datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 17)), "car-hourly", db_path
    )
    row = list_checkouts(datetime(2026, 3, 2), datetime(2026, 3, 3), db_path)[0]
    assert row["amount"] == Decimal("30.00")
    assert row["substituted_rate_id"] == "car-daily"


def test_unknown_rate_not_recorded(db_path):
    with pytest.raises(UnresolvedRate):
        record_checkout(
            "ABC1234", stay(datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 12)), "bike", db_path
        )
    assert get_stats(db_path)["checkouts"]["count"] == 0


def test_invalid_interval_not_recorded(db_path):
    with pytest.raises(InvalidInterval):
        record_checkout(
            "ABC1234", stay(datetime(2026, 3, 2, 12), datetime(2026, 3, 2, 10)), "car-hourly", db_path
        )
    assert get_stats(db_path)["checkouts"]["count"] == 0


def test_period_summary(db_path):
    record_checkout(
        "AAA1111", stay(datetime(2026, 3, 2, 10), datetime(2026, 3, 2, 11)), "car-hourly", db_path
    )
    record_checkout(
        "BBB2222", stay(datetime(2026, 3, 2, 9), datetime(2026, 3, 2, 17)), "car-hourly", db_path
    )
    record_checkout(
        "CCC3333", stay(datetime(2026, 3, 4, 9), datetime(2026, 3, 4, 10)), "car-hourly", db_path
    )

    summary = get_period_summary(datetime(2026, 3, 2), datetime(2026, 3, 3), db_path)
    assert summary["checkouts"] == 2
    assert summary["total_amount"] == "35.00"
    assert summary["substituted"] == 1
    assert summary["by_rate"] == {
        "car-daily": {"count": 1, "amount": "30.00"},
        "car-hourly": {"count": 1, "amount": "5.00"},
    }


def test_stats(db_path):
    stats = get_stats(db_path)
    assert stats["rates"]["count"] == 2
    assert stats["rates_by_type"] == {"daily": 1, "hourly": 1}
    assert stats["rate_thresholds"]["count"] == 1
