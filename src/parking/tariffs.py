"""Tariff loading: YAML config and stored rows into a TariffBook."""

import json
import logging
from datetime import time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from .db import get_connection
from .models import (
    Adjustment,
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
    TariffBook,
    Threshold,
    TimeWindow,
    Unit,
    WindowType,
)
from .pricing.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "rates.yaml"


def parse_time(time_str: str) -> time:
    """Parse HH:MM (or HH:MM:SS) string to time object."""
    parts = time_str.split(":")
    return time(int(parts[0]), int(parts[1]))


def parse_money(value: Any) -> Decimal:
    """Parse a monetary value exactly, going through its string form."""
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"Invalid amount: {value!r}")


def _enum(enum_cls, value, what: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ConfigurationError(f"Unknown {what}: {value!r}")


def parse_adjustment(raw: dict | None) -> Adjustment:
    """Parse a {type, value|ranges} mapping into its adjustment shape."""
    if not raw or not isinstance(raw, dict):
        raise ConfigurationError(f"Missing adjustment: {raw!r}")

    kind = raw.get("type")
    if kind == "progressive":
        ranges = raw.get("ranges")
        if not ranges:
            raise ConfigurationError("Progressive adjustment without ranges")
        if not isinstance(ranges, list) or not all(isinstance(r, dict) for r in ranges):
            raise ConfigurationError(f"Progressive ranges must be mappings: {ranges!r}")
        return Progressive(
            ranges=tuple(
                ProgressiveRange(
                    start=int(r.get("from") or 0),
                    end=int(r["to"]) if r.get("to") is not None else None,
                    value=parse_money(r.get("value", 0)),
                )
                for r in ranges
            )
        )

    shapes = {"override": Override, "cap": Cap, "multiplier": Multiplier}
    if kind not in shapes:
        raise ConfigurationError(f"Unknown adjustment type: {kind!r}")
    if raw.get("value") is None:
        raise ConfigurationError(f"{kind} adjustment without a value")
    return shapes[kind](value=parse_money(raw["value"]))


def adjustment_to_dict(adjustment: Adjustment | None) -> dict:
    """Inverse of parse_adjustment, for storage."""
    if adjustment is None:
        return {}
    if isinstance(adjustment, Progressive):
        return {
            "type": "progressive",
            "ranges": [
                {"from": r.start, "to": r.end, "value": str(r.value)} for r in adjustment.ranges
            ],
        }
    kind = {Override: "override", Cap: "cap", Multiplier: "multiplier"}[type(adjustment)]
    return {"type": kind, "value": str(adjustment.value)}


def rate_from_dict(data: dict) -> Rate:
    try:
        return Rate(
            id=str(data["id"]),
            name=data.get("name") or "",
            vehicle_category=data.get("vehicle_category") or "",
            rate_type=_enum(RateType, data.get("rate_type"), "rate type"),
            unit_price=parse_money(data.get("unit_price", 0)),
            unit=_enum(Unit, data["unit"], "unit") if data.get("unit") else None,
            courtesy_minutes=int(data.get("courtesy_minutes") or 0),
            is_active=bool(data.get("is_active", True)),
            config=data.get("config") or {},
        )
    except ConfigurationError:
        raise
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Invalid rate {data.get('id')!r}: {e}")


def window_from_dict(data: dict, rate_id: str) -> TimeWindow:
    try:
        return TimeWindow(
            id=str(data["id"]),
            rate_id=rate_id,
            window_type=_enum(WindowType, data.get("window_type"), "window type"),
            start_time=parse_time(data["start_time"]) if data.get("start_time") else None,
            end_time=parse_time(data["end_time"]) if data.get("end_time") else None,
            start_day=data.get("start_day"),
            end_day=data.get("end_day"),
            duration_limit_minutes=data.get("duration_limit_minutes"),
            extra_rate_id=data.get("extra_rate_id"),
            is_active=bool(data.get("is_active", True)),
            metadata=data.get("metadata") or {},
        )
    except ConfigurationError:
        raise
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Invalid time window {data.get('id')!r}: {e}")


def rule_from_dict(data: dict, rate_id: str, sequence: int = 0) -> PricingRule:
    """Build a pricing rule; an unparseable adjustment is kept as None.

    The calculator skips and reports such rules, so a bad adjustment never
    stops the rest of a rate's configuration from loading.
    """
    rule_id = str(data.get("id") or f"{rate_id}-rule-{sequence}")
    rule_type = _enum(RuleType, data.get("rule_type"), "rule type")

    try:
        adjustment = parse_adjustment(data.get("adjustment") or data.get("value_adjustment"))
    except (ConfigurationError, KeyError, TypeError, ValueError) as e:
        logger.warning("Rule %s has an invalid adjustment: %s", rule_id, e)
        adjustment = None

    conditions = data.get("conditions") or {}
    days = conditions.get("days_of_week")
    return PricingRule(
        id=rule_id,
        rate_id=rate_id,
        rule_type=rule_type,
        adjustment=adjustment,
        priority=int(data.get("priority") or 0),
        sequence=sequence,
        conditions=RuleConditions(
            hour_start=conditions.get("hour_start"),
            hour_end=conditions.get("hour_end"),
            days_of_week=tuple(days) if days is not None else None,
        ),
        is_active=bool(data.get("is_active", True)),
        description=data.get("description") or "",
    )


def threshold_from_dict(data: dict, source_rate_id: str, sequence: int = 0) -> Threshold:
    try:
        return Threshold(
            id=str(data.get("id") or f"{source_rate_id}-threshold-{sequence}"),
            source_rate_id=source_rate_id,
            target_rate_id=str(data["target_rate_id"]),
            threshold_amount=parse_money(data["threshold_amount"]),
            auto_apply=bool(data.get("auto_apply", False)),
            sequence=sequence,
        )
    except KeyError as e:
        raise ConfigurationError(f"Threshold of {source_rate_id} is missing {e}")


def build_tariff_book(rates: list[dict]) -> TariffBook:
    """Build a book from nested rate mappings (rates with windows/rules/thresholds).

    Items that cannot be built are logged and left out.
    """
    book = TariffBook()
    rule_seq = 0
    threshold_seq = 0

    for data in rates:
        try:
            rate = rate_from_dict(data)
        except ConfigurationError as e:
            logger.warning("Skipping rate: %s", e)
            continue
        book.rates.append(rate)

        for w in data.get("windows") or []:
            try:
                book.windows.append(window_from_dict(w, rate.id))
            except ConfigurationError as e:
                logger.warning("Skipping time window of %s: %s", rate.id, e)

        for r in data.get("rules") or []:
            try:
                book.rules.append(rule_from_dict(r, rate.id, r.get("sequence", rule_seq)))
            except ConfigurationError as e:
                logger.warning("Skipping pricing rule of %s: %s", rate.id, e)
            rule_seq += 1

        for t in data.get("thresholds") or []:
            try:
                book.thresholds.append(
                    threshold_from_dict(t, rate.id, t.get("sequence", threshold_seq))
                )
            except ConfigurationError as e:
                logger.warning("Skipping threshold of %s: %s", rate.id, e)
            threshold_seq += 1

    return book


def load_tariffs_from_yaml(config_path: Path | None = None) -> TariffBook:
    """Load rate definitions from YAML config file."""
    path = config_path or DEFAULT_CONFIG_PATH
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return build_tariff_book(data.get("rates", []))


def load_rules_from_yaml(path: Path, rate_id: str) -> list[PricingRule]:
    """Load candidate rules for one rate (a list, or a mapping with `rules`)."""
    with open(path) as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("rules", [data])
    return [rule_from_dict(r, rate_id, sequence=10_000 + i) for i, r in enumerate(data)]


def _delete_missing(conn, table: str, column: str, rate_id: str, keep_ids: list[str]) -> None:
    placeholders = ", ".join("?" for _ in keep_ids)
    query = f"DELETE FROM {table} WHERE {column} = ?"
    if keep_ids:
        query += f" AND id NOT IN ({placeholders})"
    conn.execute(query, (rate_id, *keep_ids))


def save_tariffs_to_db(book: TariffBook, db_path: Path | None = None) -> int:
    """Save a tariff book to the database. Returns number of rates saved.

    A saved rate's windows, rules and thresholds are replaced by the book's:
    rows no longer in the book are deleted. Rules and thresholds still present
    keep their creation order across re-loads.
    """
    count = 0
    with get_connection(db_path) as conn:
        for rate in book.rates:
            conn.execute(
                """INSERT INTO rates
                   (id, name, vehicle_category, rate_type, unit_price, unit,
                    courtesy_minutes, is_active, config)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                     name = excluded.name,
                     vehicle_category = excluded.vehicle_category,
                     rate_type = excluded.rate_type,
                     unit_price = excluded.unit_price,
                     unit = excluded.unit,
                     courtesy_minutes = excluded.courtesy_minutes,
                     is_active = excluded.is_active,
                     config = excluded.config""",
                (
                    rate.id,
                    rate.name,
                    rate.vehicle_category,
                    rate.rate_type.value,
                    str(rate.unit_price),
                    rate.unit.value,
                    rate.courtesy_minutes,
                    int(rate.is_active),
                    json.dumps(rate.config),
                ),
            )
            count += 1

            # Drop configuration removed from the source; kept rows keep their seq
            _delete_missing(conn, "rate_time_windows", "rate_id", rate.id,
                            [w.id for w in book.windows_for(rate.id)])
            _delete_missing(conn, "pricing_rules", "rate_id", rate.id,
                            [r.id for r in book.rules_for(rate.id)])
            _delete_missing(conn, "rate_thresholds", "source_rate_id", rate.id,
                            [t.id for t in book.thresholds_for(rate.id)])

        for window in book.windows:
            conn.execute(
                """INSERT OR REPLACE INTO rate_time_windows
                   (id, rate_id, window_type, start_time, end_time, start_day, end_day,
                    duration_limit_minutes, extra_rate_id, is_active, metadata)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    window.id,
                    window.rate_id,
                    window.window_type.value,
                    window.start_time.strftime("%H:%M") if window.start_time else None,
                    window.end_time.strftime("%H:%M") if window.end_time else None,
                    window.start_day,
                    window.end_day,
                    window.duration_limit_minutes,
                    window.extra_rate_id,
                    int(window.is_active),
                    json.dumps(window.metadata),
                ),
            )

        for rule in book.rules:
            conditions = {
                "hour_start": rule.conditions.hour_start,
                "hour_end": rule.conditions.hour_end,
                "days_of_week": (
                    list(rule.conditions.days_of_week)
                    if rule.conditions.days_of_week is not None
                    else None
                ),
            }
            conn.execute(
                """INSERT INTO pricing_rules
                   (id, rate_id, rule_type, conditions, value_adjustment, priority,
                    is_active, description)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                     rate_id = excluded.rate_id,
                     rule_type = excluded.rule_type,
                     conditions = excluded.conditions,
                     value_adjustment = excluded.value_adjustment,
                     priority = excluded.priority,
                     is_active = excluded.is_active,
                     description = excluded.description""",
                (
                    rule.id,
                    rule.rate_id,
                    rule.rule_type.value,
                    json.dumps(conditions),
                    json.dumps(adjustment_to_dict(rule.adjustment)),
                    rule.priority,
                    int(rule.is_active),
                    rule.description,
                ),
            )

        for threshold in book.thresholds:
            conn.execute(
                """INSERT INTO rate_thresholds
                   (id, source_rate_id, target_rate_id, threshold_amount, auto_apply)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                     source_rate_id = excluded.source_rate_id,
                     target_rate_id = excluded.target_rate_id,
                     threshold_amount = excluded.threshold_amount,
                     auto_apply = excluded.auto_apply""",
                (
                    threshold.id,
                    threshold.source_rate_id,
                    threshold.target_rate_id,
                    str(threshold.threshold_amount),
                    int(threshold.auto_apply),
                ),
            )

        conn.commit()
    return count


def load_tariffs_from_db(db_path: Path | None = None) -> TariffBook:
    """Load every rate with its windows, rules and thresholds from the database."""
    with get_connection(db_path) as conn:
        rate_rows = conn.execute("SELECT * FROM rates ORDER BY id").fetchall()
        window_rows = conn.execute(
            "SELECT * FROM rate_time_windows ORDER BY rate_id, window_type, start_time, id"
        ).fetchall()
        rule_rows = conn.execute("SELECT * FROM pricing_rules ORDER BY seq").fetchall()
        threshold_rows = conn.execute("SELECT * FROM rate_thresholds ORDER BY seq").fetchall()

    nested = {}
    for row in rate_rows:
        data = dict(row)
        data["config"] = json.loads(data["config"] or "{}")
        data["windows"], data["rules"], data["thresholds"] = [], [], []
        nested[data["id"]] = data

    for row in window_rows:
        if row["rate_id"] in nested:
            data = dict(row)
            data["metadata"] = json.loads(data["metadata"] or "{}")
            nested[row["rate_id"]]["windows"].append(data)

    for row in rule_rows:
        if row["rate_id"] in nested:
            data = dict(row)
            data["conditions"] = json.loads(data["conditions"] or "{}")
            data["value_adjustment"] = json.loads(data["value_adjustment"] or "{}")
            data["sequence"] = row["seq"]
            nested[row["rate_id"]]["rules"].append(data)

    for row in threshold_rows:
        if row["source_rate_id"] in nested:
            data = dict(row)
            data["sequence"] = row["seq"]
            nested[row["source_rate_id"]]["thresholds"].append(data)

    return build_tariff_book(list(nested.values()))
