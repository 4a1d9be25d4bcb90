"""Command-line interface for parking tariffs and check-out pricing."""

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import checkout, db
from .models import FeeResult, StayInterval
from .preview import preview_rules, total_difference
from .pricing.calculator import compute_fee_for_rate
from .pricing.errors import ConfigurationError, InvalidInterval, UnresolvedRate
from .sources import postgrest
from .tariffs import (
    adjustment_to_dict,
    load_rules_from_yaml,
    load_tariffs_from_db,
    load_tariffs_from_yaml,
    save_tariffs_to_db,
)

console = Console()


def parse_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"Expected an ISO timestamp (YYYY-MM-DDTHH:MM), got {value!r}")


def print_fee(result: FeeResult, title: str) -> None:
    """Print a fee breakdown as a receipt-style table."""
    table = Table(title=title)
    table.add_column("Item", style="cyan")
    table.add_column("Description")
    table.add_column("Minutes", justify="right")
    table.add_column("Amount", justify="right")

    for line in result.breakdown:
        table.add_row(
            line.kind,
            line.description,
            str(line.minutes) if line.minutes is not None else "",
            f"{line.amount:.2f}",
        )
    table.add_row("[bold]total[/bold]", "", str(result.elapsed_minutes), f"[bold]{result.amount}[/bold]")
    console.print(table)

    if result.substituted_rate_id:
        console.print(f"[yellow]Billed at rate {result.substituted_rate_id} (threshold)[/yellow]")
    if result.suggestion:
        console.print(
            f"[cyan]Suggestion: rate {result.suggestion.target_rate_id} "
            f"would charge {result.suggestion.target_amount}[/cyan]"
        )
    for issue in result.issues:
        console.print(f"[yellow]Config: {issue}[/yellow]")


@click.group()
@click.option("--db-path", type=click.Path(), help="Path to SQLite database")
@click.option("--verbose", "-v", is_flag=True, help="Log pricing decisions")
@click.pass_context
def cli(ctx, db_path, verbose):
    """Parking tariffs - configure rates and price vehicle stays."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = Path(db_path) if db_path else None
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


# Database commands
@cli.group()
def database():
    """Database management commands."""
    pass


@database.command("init")
@click.pass_context
def db_init(ctx):
    """Initialize the database schema."""
    db.init_db(ctx.obj["db_path"])
    console.print("[green]Database initialized successfully[/green]")


@database.command("stats")
@click.pass_context
def db_stats(ctx):
    """Show database statistics."""
    stats = db.get_stats(ctx.obj["db_path"])

    table = Table(title="Database Statistics")
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Range")

    table.add_row("Rates", str(stats["rates"]["count"]), "")
    for rate_type, count in stats.get("rates_by_type", {}).items():
        table.add_row(f"  └ {rate_type}", str(count), "")
    table.add_row("Time windows", str(stats["rate_time_windows"]["count"]), "")
    table.add_row("Pricing rules", str(stats["pricing_rules"]["count"]), "")
    table.add_row("Thresholds", str(stats["rate_thresholds"]["count"]), "")

    checkouts = stats["checkouts"]
    table.add_row(
        "Check-outs",
        str(checkouts["count"]),
        f"{checkouts['earliest'] or 'N/A'} → {checkouts['latest'] or 'N/A'}",
    )

    console.print(table)


# Rate commands
@cli.group()
def rates():
    """Rate configuration commands."""
    pass


@rates.command("load")
@click.option("--config", type=click.Path(exists=True), help="Path to rates.yaml")
@click.pass_context
def rates_load(ctx, config):
    """Load rates, windows, rules and thresholds from YAML config."""
    config_path = Path(config) if config else None
    book = load_tariffs_from_yaml(config_path)
    count = save_tariffs_to_db(book, ctx.obj["db_path"])
    console.print(f"[green]Loaded {count} rate(s)[/green]")


@rates.command("pull")
@click.pass_context
def rates_pull(ctx):
    """Copy tariff configuration from the managed Postgres REST API.

    Requires PARKING_REST_URL and PARKING_REST_KEY environment variables.
    """
    try:
        book = postgrest.fetch_tariff_book()
        count = save_tariffs_to_db(book, ctx.obj["db_path"])
        console.print(
            f"[green]Pulled {count} rate(s), {len(book.windows)} window(s), "
            f"{len(book.rules)} rule(s), {len(book.thresholds)} threshold(s)[/green]"
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
    except postgrest.RemoteSourceError as e:
        console.print(f"[red]Failed to pull rates: {e}[/red]")


@rates.command("list")
@click.pass_context
def rates_list(ctx):
    """List configured rates."""
    book = load_tariffs_from_db(ctx.obj["db_path"])
    if not book.rates:
        console.print("[yellow]No rates found[/yellow]")
        return

    table = Table(title="Rates")
    table.add_column("ID", style="cyan")
    table.add_column("Category")
    table.add_column("Type")
    table.add_column("Price", justify="right")
    table.add_column("Courtesy", justify="right")
    table.add_column("Windows/Rules/Thresholds", justify="center")
    table.add_column("Status")

    for rate in book.rates:
        table.add_row(
            rate.id,
            rate.vehicle_category,
            rate.rate_type.value,
            f"{rate.unit_price} / {rate.unit.value}",
            f"{rate.courtesy_minutes} min",
            f"{len(book.windows_for(rate.id))}/{len(book.rules_for(rate.id))}"
            f"/{len(book.thresholds_for(rate.id))}",
            "[green]Active[/green]" if rate.is_active else "[red]Inactive[/red]",
        )

    console.print(table)


@rates.command("show")
@click.argument("rate_id")
@click.pass_context
def rates_show(ctx, rate_id):
    """Show a rate's windows, rules and thresholds."""
    book = load_tariffs_from_db(ctx.obj["db_path"])
    rate = book.get_rate(rate_id)
    if rate is None:
        console.print(f"[red]Rate {rate_id} not found[/red]")
        return

    console.print(
        f"[cyan]{rate.id}[/cyan] {rate.name} - {rate.vehicle_category}, {rate.rate_type.value}, "
        f"{rate.unit_price} per {rate.unit.value}, {rate.courtesy_minutes} courtesy min"
    )

    windows = book.windows_for(rate_id)
    if windows:
        table = Table(title="Time windows")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Time")
        table.add_column("Days")
        table.add_column("Limit", justify="right")
        table.add_column("Extra rate")
        for w in windows:
            times = (
                f"{w.start_time:%H:%M}-{w.end_time:%H:%M}" if w.start_time and w.end_time else ""
            )
            days = f"{w.start_day}-{w.end_day}" if w.start_day is not None else ""
            table.add_row(
                w.id,
                w.window_type.value,
                times,
                days,
                f"{w.duration_limit_minutes} min" if w.duration_limit_minutes else "",
                w.extra_rate_id or "(hourly)",
            )
        console.print(table)

    rules = sorted(book.rules_for(rate_id), key=lambda r: r.sort_key)
    if rules:
        table = Table(title="Pricing rules")
        table.add_column("Priority", justify="right")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Adjustment")
        table.add_column("Description")
        for r in rules:
            adjustment = str(adjustment_to_dict(r.adjustment)) if r.adjustment else "[red]invalid[/red]"
            if not r.is_active:
                adjustment += " [dim](inactive)[/dim]"
            table.add_row(str(r.priority), r.id, r.rule_type.value, adjustment, r.description)
        console.print(table)

    for t in book.thresholds_for(rate_id):
        mode = "switch" if t.auto_apply else "suggest"
        console.print(f"Above {t.threshold_amount}: {mode} to {t.target_rate_id}")


# Pricing commands
@cli.command()
@click.argument("rate_id")
@click.option("--entry", required=True, help="Entry time (YYYY-MM-DDTHH:MM)")
@click.option("--exit", "exit_", required=True, help="Exit time (YYYY-MM-DDTHH:MM)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def fee(ctx, rate_id, entry, exit_, as_json):
    """Price a stay under a rate without recording it."""
    book = load_tariffs_from_db(ctx.obj["db_path"])
    rate = book.get_rate(rate_id)
    stay = StayInterval(
        entry=parse_timestamp(entry),
        exit=parse_timestamp(exit_),
        vehicle_category=rate.vehicle_category if rate else "",
    )

    try:
        result = compute_fee_for_rate(stay, rate_id, book)
    except (InvalidInterval, UnresolvedRate) as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    if as_json:
        console.print(json.dumps(result.to_dict(), indent=2))
    else:
        print_fee(result, f"Fee for {rate_id}")


@cli.command()
@click.argument("rate_id")
@click.option("--rule", "rule_file", type=click.Path(exists=True), required=True,
              help="YAML file with the candidate rule(s)")
@click.option("--sample", "samples", multiple=True, required=True,
              help="Sample stay as ENTRY/EXIT, repeatable")
@click.pass_context
def preview(ctx, rate_id, rule_file, samples):
    """Preview candidate pricing rules on sample stays (nothing is saved)."""
    book = load_tariffs_from_db(ctx.obj["db_path"])
    rate = book.get_rate(rate_id)
    if rate is None:
        console.print(f"[red]Rate {rate_id} not found[/red]")
        ctx.exit(1)

    stays = []
    for sample in samples:
        entry, _, exit_ = sample.partition("/")
        stays.append(
            StayInterval(
                entry=parse_timestamp(entry),
                exit=parse_timestamp(exit_),
                vehicle_category=rate.vehicle_category,
            )
        )

    try:
        candidates = load_rules_from_yaml(Path(rule_file), rate_id)
        rows = preview_rules(book, rate_id, candidates, stays)
    except (ConfigurationError, InvalidInterval) as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    table = Table(title=f"Rule preview for {rate_id}")
    table.add_column("Stay", style="cyan")
    table.add_column("Minutes", justify="right")
    table.add_column("Current", justify="right")
    table.add_column("Candidate", justify="right")
    table.add_column("Difference", justify="right")

    for row in rows:
        diff = row["difference"]
        style = "green" if diff < 0 else "red" if diff > 0 else "dim"
        table.add_row(
            f"{row['entry']:%Y-%m-%d %H:%M} → {row['exit']:%Y-%m-%d %H:%M}",
            str(row["elapsed_minutes"]),
            str(row["current"]),
            str(row["candidate"]),
            f"[{style}]{diff:+}[/{style}]",
        )
    console.print(table)
    console.print(f"Total difference: {total_difference(rows):+}")

    for issue in {i for row in rows for i in row["issues"]}:
        console.print(f"[yellow]Config: {issue}[/yellow]")


# Check-out commands
@cli.command("checkout")
@click.argument("plate")
@click.argument("rate_id")
@click.option("--entry", required=True, help="Entry time (YYYY-MM-DDTHH:MM)")
@click.option("--exit", "exit_", help="Exit time (default: now)")
@click.pass_context
def checkout_cmd(ctx, plate, rate_id, entry, exit_):
    """Price a stay and record the check-out."""
    book = load_tariffs_from_db(ctx.obj["db_path"])
    rate = book.get_rate(rate_id)
    stay = StayInterval(
        entry=parse_timestamp(entry),
        exit=parse_timestamp(exit_) if exit_ else datetime.now().replace(second=0, microsecond=0),
        vehicle_category=rate.vehicle_category if rate else "",
    )

    try:
        result = checkout.record_checkout(plate, stay, rate_id, ctx.obj["db_path"])
    except (InvalidInterval, UnresolvedRate) as e:
        console.print(f"[red]Error: {e}[/red]")
        ctx.exit(1)

    print_fee(result, f"Check-out {plate.upper()}")
    console.print(f"[green]Recorded {plate.upper()}: {result.amount}[/green]")


@cli.group()
def checkouts():
    """Recorded check-out commands."""
    pass


@checkouts.command("list")
@click.option("--days", default=1, help="Number of days to show")
@click.option("--json", "as_json", is_flag=True, help="Output the period summary as JSON")
@click.pass_context
def checkouts_list(ctx, days, as_json):
    """List recent check-outs."""
    end = datetime.now()
    start = end - timedelta(days=days)

    if as_json:
        data = checkout.get_period_summary(start, end, ctx.obj["db_path"])
        console.print(json.dumps(data, indent=2))
        return

    rows = checkout.list_checkouts(start, end, ctx.obj["db_path"])
    if not rows:
        console.print("[yellow]No check-outs found[/yellow]")
        return

    table = Table(title=f"Check-outs (last {days} days)")
    table.add_column("Plate", style="cyan")
    table.add_column("Rate")
    table.add_column("Entry")
    table.add_column("Exit")
    table.add_column("Minutes", justify="right")
    table.add_column("Amount", justify="right")

    for row in rows:
        rate = row["rate_id"]
        if row["substituted_rate_id"]:
            rate += f" → {row['substituted_rate_id']}"
        table.add_row(
            row["plate"],
            rate,
            row["entry"].strftime("%Y-%m-%d %H:%M"),
            row["exit"].strftime("%Y-%m-%d %H:%M"),
            str(row["elapsed_minutes"]),
            str(row["amount"]),
        )

    console.print(table)
    console.print(f"Total: {sum(r['amount'] for r in rows)}")


if __name__ == "__main__":
    cli()
