"""Tests for the Postgres REST tariff source."""

import json
from datetime import time
from decimal import Decimal

import httpx
import pytest
from parking.models import RateType, RuleType, Unit
from parking.pricing.errors import UnresolvedRate
from parking.sources import postgrest

TABLES = {
    "rates": [
        {
            "id": "car-hourly",
            "name": "Carro hora",
            "vehicle_type": "car",
            "rate_type": "Hora/Fração",
            "value": 5,
            "unit": "hora",
            "is_active": True,
            "config": {"courtesyMinutes": 10},
        },
        {
            "id": "car-daily",
            "name": "Carro diária",
            "vehicle_type": "car",
            "rate_type": "diária",
            "value": "30.00",
            "unit": "dia",
            "is_active": True,
            "config": None,
        },
    ],
    "rate_time_windows": [
        {
            "id": "business",
            "rate_id": "car-daily",
            "window_type": "daily",
            "start_time": "08:00:00",
            "end_time": "18:00:00",
            "start_day": 1,
            "end_day": 5,
            "extra_rate_id": None,
            "is_active": True,
        },
    ],
    "pricing_rules": [
        {
            "id": "cap",
            "rate_id": "car-hourly",
            "rule_type": "daily_max",
            "conditions": {},
            "value_adjustment": {"type": "cap", "value": 40},
            "priority": 0,
            "is_active": True,
        },
        {
            "id": "orphan",
            "rate_id": "deleted-rate",
            "rule_type": "daily_max",
            "value_adjustment": {"type": "cap", "value": 10},
        },
    ],
    "rate_thresholds": [
        {
            "id": "to-daily",
            "source_rate_id": "car-hourly",
            "target_rate_id": "car-daily",
            "threshold_amount": 30,
            "auto_apply": False,
        },
    ],
}


@pytest.fixture
def seen():
    return []


@pytest.fixture
def client(seen):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        if table not in TABLES:
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(200, content=json.dumps(TABLES[table]))

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_fetch_tariff_book(client, seen):
    book = postgrest.fetch_tariff_book("https://example.test/", "secret", client)

    hourly = book.get_rate("car-hourly")
    assert hourly.rate_type == RateType.HOURLY
    assert hourly.unit == Unit.HOUR
    assert hourly.unit_price == Decimal("5")
    assert hourly.courtesy_minutes == 10

    assert book.get_rate("car-daily").rate_type == RateType.DAILY
    assert book.windows_for("car-daily")[0].start_time == time(8, 0)
    assert [r.id for r in book.rules] == ["cap"]
    assert book.rules[0].rule_type == RuleType.DAILY_MAX
    assert book.thresholds_for("car-hourly")[0].threshold_amount == Decimal("30")

    assert len(seen) == 4
    assert seen[0].url.path == "/rest/v1/rates"
    assert seen[0].headers["apikey"] == "secret"
    assert seen[0].headers["authorization"] == "Bearer secret"


def test_fetch_rate_config_unknown(client):
    with pytest.raises(UnresolvedRate):
        postgrest.fetch_rate_config("bike", "https://example.test", "secret", client)


def test_http_error_raises_remote_source_error():
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    with pytest.raises(postgrest.RemoteSourceError, match="404"):
        postgrest.fetch_tariff_book("https://example.test", "secret", client)


def test_unexpected_payload():
    client = httpx.Client(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"rows": []}))
    )
    with pytest.raises(postgrest.RemoteSourceError):
        postgrest.fetch_tariff_book("https://example.test", "secret", client)


def test_missing_url(monkeypatch):
    monkeypatch.delenv("PARKING_REST_URL", raising=False)
    with pytest.raises(ValueError, match="PARKING_REST_URL"):
        postgrest.get_base_url()


def test_normalize_rate_unknown_unit_falls_back_to_default():
    data = postgrest.normalize_rate({"id": "x", "rate_type": "mensal", "value": 100, "unit": "ano"})
    assert data["rate_type"] == RateType.MONTHLY
    assert data["unit"] is None
