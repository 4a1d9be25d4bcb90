"""Managed Postgres REST source for tariff configuration.

Reads the rates, rate_time_windows, pricing_rules and rate_thresholds tables
through the PostgREST endpoint of the hosted database. Read-only: the
calculator never writes tariff configuration back.

Requires PARKING_REST_URL and PARKING_REST_KEY (service or anon key).
"""

import os
from typing import Any

import httpx
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from ..models import RateType, TariffBook, Unit
from ..pricing.errors import UnresolvedRate
from ..tariffs import build_tariff_book

# Rate type and unit labels as stored by the operator screens
RATE_TYPE_LABELS = {
    "hora/fração": RateType.HOURLY,
    "hora/fracao": RateType.HOURLY,
    "diária": RateType.DAILY,
    "diaria": RateType.DAILY,
    "pernoite": RateType.OVERNIGHT,
    "semanal": RateType.WEEKLY,
    "quinzenal": RateType.BIWEEKLY,
    "mensal": RateType.MONTHLY,
}

UNIT_LABELS = {
    "hora": Unit.HOUR,
    "dia": Unit.DAY,
    "pernoite": Unit.NIGHT,
    "semana": Unit.WEEK,
    "quinzena": Unit.FORTNIGHT,
    "mês": Unit.MONTH,
    "mes": Unit.MONTH,
}


class RemoteSourceError(Exception):
    """Base exception for REST tariff source errors."""
    pass


def get_base_url() -> str:
    """Get the REST endpoint from environment."""
    url = os.environ.get("PARKING_REST_URL")
    if not url:
        raise ValueError(
            "PARKING_REST_URL environment variable not set.\n"
            "Set it to the project URL, e.g. export PARKING_REST_URL='https://<project>.supabase.co'"
        )
    return url.rstrip("/")


def get_api_key() -> str:
    """Get the REST API key from environment."""
    key = os.environ.get("PARKING_REST_KEY")
    if not key:
        raise ValueError("PARKING_REST_KEY environment variable not set.")
    return key


def _fetch_table(
    client: httpx.Client, base_url: str, api_key: str, table: str, params: dict[str, str]
) -> list[dict[str, Any]]:
    url = f"{base_url}/rest/v1/{table}"
    headers = {
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
    }
    try:
        response = client.get(url, params=params, headers=headers, timeout=30.0)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise RemoteSourceError(f"HTTP error reading {table}: {e.response.status_code}")
    except httpx.RequestError as e:
        raise RemoteSourceError(f"Network error reading {table}: {e}")

    data = response.json()
    if not isinstance(data, list):
        raise RemoteSourceError(f"Unexpected response for {table}: {data!r}")
    return data


def normalize_rate(row: dict[str, Any]) -> dict[str, Any]:
    """Map a stored rate row onto the tariff mapping shape."""
    rate_type = str(row.get("rate_type") or "")
    rate_type = RATE_TYPE_LABELS.get(rate_type.lower(), rate_type)
    unit = str(row.get("unit") or "").lower()
    config = row.get("config") or {}

    return {
        "id": row["id"],
        "name": row.get("name") or "",
        "vehicle_category": row.get("vehicle_type") or row.get("vehicle_category") or "",
        "rate_type": rate_type,
        "unit_price": row.get("value", row.get("unit_price", 0)),
        "unit": UNIT_LABELS.get(unit, unit if unit in {u.value for u in Unit} else None),
        "courtesy_minutes": row.get("courtesy_minutes") or config.get("courtesyMinutes") or 0,
        "is_active": row.get("is_active", True),
        "config": config,
        "windows": [],
        "rules": [],
        "thresholds": [],
    }


def nest_rows(
    rate_rows: list[dict],
    window_rows: list[dict],
    rule_rows: list[dict],
    threshold_rows: list[dict],
) -> list[dict]:
    """Attach window, rule and threshold rows to their rates.

    Rows arrive ordered by creation, which becomes each rule's and
    threshold's sequence.
    """
    rates = {row["id"]: normalize_rate(row) for row in rate_rows}

    for row in window_rows:
        if row.get("rate_id") in rates:
            rates[row["rate_id"]]["windows"].append(row)

    for seq, row in enumerate(rule_rows):
        if row.get("rate_id") in rates:
            rates[row["rate_id"]]["rules"].append({**row, "sequence": seq})

    for seq, row in enumerate(threshold_rows):
        if row.get("source_rate_id") in rates:
            rates[row["source_rate_id"]]["thresholds"].append({**row, "sequence": seq})

    return list(rates.values())


def fetch_tariff_book(
    base_url: str | None = None,
    api_key: str | None = None,
    client: httpx.Client | None = None,
) -> TariffBook:
    """Fetch every rate with its windows, rules and thresholds."""
    base_url = (base_url or get_base_url()).rstrip("/")
    api_key = api_key or get_api_key()

    owns_client = client is None
    client = client or httpx.Client()
    try:
        rates = _fetch_table(client, base_url, api_key, "rates", {"select": "*"})
        windows = _fetch_table(
            client, base_url, api_key, "rate_time_windows",
            {"select": "*", "order": "window_type.asc,start_time.asc"},
        )
        rules = _fetch_table(
            client, base_url, api_key, "pricing_rules",
            {"select": "*", "order": "created_at.asc"},
        )
        thresholds = _fetch_table(
            client, base_url, api_key, "rate_thresholds",
            {"select": "*", "order": "created_at.asc"},
        )
    finally:
        if owns_client:
            client.close()

    return build_tariff_book(nest_rows(rates, windows, rules, thresholds))


def fetch_rate_config(
    rate_id: str,
    base_url: str | None = None,
    api_key: str | None = None,
    client: httpx.Client | None = None,
) -> TariffBook:
    """Fetch the book needed to price one rate.

    Raises:
        UnresolvedRate: no rate with this id exists.
    """
    book = fetch_tariff_book(base_url, api_key, client)
    if book.get_rate(rate_id) is None:
        raise UnresolvedRate(f"Rate {rate_id} not found")
    return book
