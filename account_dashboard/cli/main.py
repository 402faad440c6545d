"""
CLI interface for the account dashboard.

Provides command-line access to pricing lookups, cost calculation and
account cost aggregation.
"""

import asyncio
import logging
import sys
from decimal import Decimal
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from account_dashboard.config.loader import DashboardConfig, load_dashboard_config
from account_dashboard.core.aggregation import AccountCostAggregator
from account_dashboard.core.calculator import CostBreakdown, CostCalculator
from account_dashboard.core.catalog import PricingCatalog
from account_dashboard.core.formatting import format_cost
from account_dashboard.core.token_counter import EphemeralCacheSplit, UsageRecord
from account_dashboard.demo.seed_demo_data import seed_demo_data
from account_dashboard.storage.db import initialize_schema
from account_dashboard.storage.repository import UsageRepository, format_date
from account_dashboard.storage.store import SqliteKeyValueStore

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

PER_MILLION = Decimal("1000000")


def setup_logging(level: str = "INFO", verbose: bool = False, debug: bool = False):
    """Configure logging for CLI commands."""
    log_level = getattr(logging, level, logging.INFO)
    if verbose:
        log_level = min(log_level, logging.INFO)
    if debug:
        log_level = logging.DEBUG

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show info logs"),
    debug: bool = typer.Option(False, "--debug", help="Show debug logs"),
):
    """Account dashboard CLI."""
    try:
        config = load_dashboard_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    setup_logging(config.logging.level, verbose=verbose, debug=debug)
    ctx.obj = config

    if ctx.invoked_subcommand is None:
        console.print("Account Dashboard - Use --help to see available commands")


def _run_with_catalog(config: DashboardConfig, command, force_refresh: bool = False):
    """Initialize a catalog for one command and shut it down afterwards."""
    async def runner():
        catalog = PricingCatalog(config.pricing)
        await catalog.initialize(start_background=False)
        try:
            if force_refresh:
                await catalog.refresh(force=True)
            return command(catalog)
        finally:
            await catalog.shutdown()

    return asyncio.run(runner())


@app.command()
def init(ctx: typer.Context):
    """Initialize the key-value store database."""
    config: DashboardConfig = ctx.obj
    try:
        initialize_schema(config.store.path)
        console.print("[green]✓[/] Store initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing store:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show pricing catalog status."""
    config: DashboardConfig = ctx.obj
    catalog_status = _run_with_catalog(config, lambda catalog: catalog.get_status())
    _display_status(catalog_status)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def refresh(ctx: typer.Context):
    """Force a pricing feed download (falls back to bundled pricing on failure)."""
    config: DashboardConfig = ctx.obj
    catalog_status = _run_with_catalog(
        config, lambda catalog: catalog.get_status(), force_refresh=True
    )
    _display_status(catalog_status)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def lookup(
    ctx: typer.Context,
    model: str = typer.Argument(..., help="Model identifier"),
):
    """Show the per-token prices resolved for a model."""
    config: DashboardConfig = ctx.obj
    pricing = _run_with_catalog(config, lambda catalog: catalog.get_model_pricing(model))

    if pricing is None:
        console.print(f"[yellow]No pricing found for model:[/] {model}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Pricing for {model}")
    table.add_column("Component")
    table.add_column("Per token", justify="right")
    table.add_column("Per 1M tokens", justify="right")
    for label, price in (
        ("Input", pricing.input_price_per_token),
        ("Output", pricing.output_price_per_token),
        ("Cache write", pricing.cache_write_price_per_token),
        ("Cache read", pricing.cache_read_price_per_token),
    ):
        table.add_row(label, f"{price:f}", format_cost(price * PER_MILLION))
    console.print(table)
    if pricing.provider_tag:
        console.print(f"Provider: {pricing.provider_tag}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def cost(
    ctx: typer.Context,
    model: str = typer.Argument(..., help="Model identifier"),
    input_tokens: int = typer.Option(0, "--input", "-i", min=0, help="Input tokens"),
    output_tokens: int = typer.Option(0, "--output", "-o", min=0, help="Output tokens"),
    cache_read: int = typer.Option(0, "--cache-read", min=0, help="Cache read tokens"),
    cache_write: int = typer.Option(
        0, "--cache-write", min=0, help="Cache creation tokens (single tier)"
    ),
    ephemeral_5m: Optional[int] = typer.Option(
        None, "--ephemeral-5m", min=0, help="5-minute ephemeral cache tokens"
    ),
    ephemeral_1h: Optional[int] = typer.Option(
        None, "--ephemeral-1h", min=0, help="1-hour ephemeral cache tokens"
    ),
):
    """Calculate the cost of a usage record."""
    config: DashboardConfig = ctx.obj

    split = None
    if ephemeral_5m is not None or ephemeral_1h is not None:
        split = EphemeralCacheSplit(
            ephemeral_5m_tokens=ephemeral_5m or 0,
            ephemeral_1h_tokens=ephemeral_1h or 0,
        )
    usage = UsageRecord(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_creation_tokens=cache_write,
        cache_read_tokens=cache_read,
        cache_split=split,
    )

    breakdown = _run_with_catalog(
        config, lambda catalog: CostCalculator(catalog).calculate_cost(usage, model)
    )
    _display_breakdown(model, breakdown)
    sys.exit(EXIT_CODE_PASS)


@app.command("account-cost")
def account_cost(
    ctx: typer.Context,
    account: str = typer.Argument(..., help="Account identifier"),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Date (YYYY-MM-DD), default today"),
):
    """Resolve an account's daily cost from the store."""
    config: DashboardConfig = ctx.obj
    date = date or format_date()
    repository = UsageRepository(SqliteKeyValueStore(config.store.path))

    try:
        result = _run_with_catalog(
            config,
            lambda catalog: AccountCostAggregator(
                repository, CostCalculator(catalog)
            ).calculate_account_daily_cost(account, date),
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Account:[/bold] {result.account_id}")
    console.print(f"Date: {result.date}")
    console.print(f"Cost: {format_cost(result.cost)}")
    console.print(f"Source: {result.source.value}")
    sys.exit(EXIT_CODE_PASS)


@app.command("seed-demo")
def seed_demo(
    ctx: typer.Context,
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Date (YYYY-MM-DD), default today"),
):
    """Write sample API key and usage records to the store."""
    config: DashboardConfig = ctx.obj
    try:
        initialize_schema(config.store.path)
        count = seed_demo_data(SqliteKeyValueStore(config.store.path), date or format_date())
        console.print(f"[green]✓[/] Inserted {count} demo records")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _display_status(catalog_status):
    """Display catalog status as a table."""
    table = Table(title="Pricing Catalog")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Initialized", "yes" if catalog_status.initialized else "no")
    table.add_row("Models", str(catalog_status.model_count))
    table.add_row("Last updated", str(catalog_status.last_updated or "-"))
    table.add_row("Next update", str(catalog_status.next_update_eta or "-"))
    console.print(table)


def _display_breakdown(model: str, breakdown: CostBreakdown):
    """Display a cost breakdown in a clean, financial format."""
    console.print(f"\n[bold]Cost for {model}[/bold]")
    console.print("-" * 40)

    if not breakdown.has_pricing:
        console.print("[yellow]No pricing available for this model; costs not computed[/]")
        return

    table = Table()
    table.add_column("Component")
    table.add_column("Cost", justify="right")
    table.add_row("Input", format_cost(breakdown.input_cost))
    table.add_row("Output", format_cost(breakdown.output_cost))
    table.add_row("Cache write", format_cost(breakdown.cache_write_cost))
    table.add_row("  ephemeral 5m", format_cost(breakdown.ephemeral_5m_cost))
    table.add_row("  ephemeral 1h", format_cost(breakdown.ephemeral_1h_cost))
    table.add_row("Cache read", format_cost(breakdown.cache_read_cost))
    table.add_row("[bold]Total[/bold]", f"[bold]{format_cost(breakdown.total_cost)}[/bold]")
    console.print(table)

    if breakdown.is_long_context_request:
        console.print("[cyan]Long-context request[/]")


if __name__ == "__main__":
    app()
