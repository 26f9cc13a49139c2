"""
CLI interface for the cash-settlement engine.

Gives cashiers and back-office staff command-line access to change-making,
commission quotes, limit checks, settlement and reconciliation.
"""

import sys
from datetime import date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Union

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cash_settlement.config.loader import (
    SettlementConfig,
    default_settlement_config,
    load_settlement_config,
)
from cash_settlement.core.change_making import BoundedChangeMaker, GreedyChangeMaker
from cash_settlement.core.commission import compute_commission, format_commission
from cash_settlement.core.credit_limit import check_limit
from cash_settlement.core.denominations import DenominationEntry, DenominationInventory, entries_total
from cash_settlement.core.errors import InsufficientInventory, SettlementError
from cash_settlement.core.money import format_money, to_decimal
from cash_settlement.core.reconciliation import MatchStatus, ReconciliationReport, reconcile
from cash_settlement.core.settlement import CashPaymentRequest, SettlementOrchestrator, parse_cash_count
from cash_settlement.observability.logging import setup_logging
from cash_settlement.storage.db import DEFAULT_DB_PATH
from cash_settlement.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CONFIG_ENVVAR = "CASH_SETTLEMENT_CONFIG"
DB_ENVVAR = "CASH_SETTLEMENT_DB"

# Errors reported to the user as a one-line message
HANDLED_ERRORS = (SettlementError, ValueError, OSError, yaml.YAMLError)

ConfigOption = typer.Option(None, "--config", "-c", envvar=CONFIG_ENVVAR, help="Settlement YAML config")
DbOption = typer.Option(DEFAULT_DB_PATH, "--db", envvar=DB_ENVVAR, help="SQLite ledger path")


def _load_config(path: Optional[str]) -> SettlementConfig:
    if path is None:
        return default_settlement_config()
    return load_settlement_config(path)


def _parse_amount(value: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError:
        console.print(f"[red]Error:[/] not a valid amount: {value}")
        sys.exit(EXIT_CODE_FAIL)


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {escape(str(error))}")
    sys.exit(EXIT_CODE_FAIL)


def _end_bound(end: Optional[datetime]) -> Optional[Union[date, datetime]]:
    """--end given as a bare date parses to midnight; widen it to the whole day."""
    if end is not None and end.time() == time.min:
        return end.date()
    return end


def _entries_table(title: str, entries: List[DenominationEntry]) -> Table:
    table = Table(title=title)
    table.add_column("Denomination", justify="right")
    table.add_column("Quantity", justify="right")
    table.add_column("Amount", justify="right")
    for entry in entries:
        table.add_row(format_money(entry.denomination), str(entry.quantity), format_money(entry.amount))
    table.add_row("[bold]Total[/]", "", f"[bold]{format_money(entries_total(entries))}[/]")
    return table


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
):
    """Cash settlement CLI."""
    setup_logging(log_level)
    if ctx.invoked_subcommand is None:
        console.print("Cash Settlement - Use --help to see available commands")


@app.command()
def init(db: str = DbOption):
    """Initialize the settlement ledger database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("open-drawer")
def open_drawer(
    drawer_id: str = typer.Argument(..., help="Drawer (till) identifier"),
    count: List[str] = typer.Option(..., "--count", "-n", help="Opening count as DENOMINATIONxQUANTITY"),
    config: Optional[str] = ConfigOption,
    db: str = DbOption,
):
    """Set a drawer's opening denomination counts."""
    try:
        settings = _load_config(config)
        entries = parse_cash_count(count)
        for entry in entries:
            if not settings.catalog.is_legal(entry.denomination):
                raise ValueError(f"{entry.denomination} is not a legal {settings.catalog.currency} denomination")
        get_repository(db).set_inventory(drawer_id, DenominationInventory().deposit(entries))
        console.print(_entries_table(f"Drawer {drawer_id}", entries))
    except HANDLED_ERRORS as e:
        _fail(e)


@app.command()
def drawer(
    drawer_id: str = typer.Argument(..., help="Drawer (till) identifier"),
    db: str = DbOption,
):
    """Show a drawer's current denomination counts."""
    inventory = get_repository(db).load_inventory(drawer_id)
    if not inventory.entries():
        console.print(f"[yellow]Drawer {drawer_id} is empty[/]")
        return
    console.print(_entries_table(f"Drawer {drawer_id}", inventory.entries()))


@app.command()
def change(
    amount: str = typer.Argument(..., help="Change amount to dispense"),
    drawer_id: str = typer.Option(..., "--drawer", "-d", help="Drawer to dispense from"),
    strategy: str = typer.Option("greedy", "--strategy", "-s", help="greedy or bounded"),
    config: Optional[str] = ConfigOption,
    db: str = DbOption,
):
    """Compute a change breakdown from a drawer without dispensing it."""
    target = _parse_amount(amount)
    try:
        settings = _load_config(config)
        engines = {"greedy": GreedyChangeMaker, "bounded": BoundedChangeMaker}
        if strategy not in engines:
            raise ValueError(f"Unknown strategy {strategy!r}, expected one of: {sorted(engines)}")
        engine = engines[strategy](settings.catalog)
        inventory = get_repository(db).load_inventory(drawer_id)
        breakdown = engine.make_change(target, inventory)
    except InsufficientInventory as e:
        console.print(f"[red]Insufficient change:[/] {escape(str(e))}")
        console.print("Request more change for the drawer or ask for a different amount.")
        sys.exit(EXIT_CODE_FAIL)
    except HANDLED_ERRORS as e:
        _fail(e)

    console.print(_entries_table(f"Change for {format_money(target)}", breakdown))


@app.command()
def commission(
    service: str = typer.Argument(..., help="Service code"),
    amount: str = typer.Argument(..., help="Payment amount"),
    waiver: bool = typer.Option(False, "--waiver", "-w", help="Customer holds a fee waiver account"),
    config: Optional[str] = ConfigOption,
):
    """Quote the commission and total payable for a service payment."""
    payment_amount = _parse_amount(amount)
    try:
        settings = _load_config(config)
        result = compute_commission(payment_amount, settings.get_service(service).commission, waiver)
    except HANDLED_ERRORS as e:
        _fail(e)

    display = format_commission(result)
    console.print(f"\n[bold]Commission Quote[/bold] ({service.upper()})")
    console.print("-" * 40)
    console.print(display.tooltip)


@app.command()
def credit(
    service: str = typer.Argument(..., help="Limited-line service code"),
    amount: str = typer.Argument(..., help="Requested payment amount"),
    config: Optional[str] = ConfigOption,
    db: str = DbOption,
):
    """Check a requested amount against a service's credit and daily limits."""
    requested = _parse_amount(amount)
    try:
        settings = _load_config(config)
        service_config = settings.get_service(service)
        if service_config.credit_line is None:
            raise ValueError(f"Service {service_config.code} has no credit line")
        usage = get_repository(db).get_credit_usage(service_config.code, datetime.now().date())
        status = check_limit(
            total_credit_used=usage.total_credit_used,
            credit_limit=service_config.credit_line.credit_limit,
            daily_used=usage.daily_used,
            daily_limit=service_config.credit_line.daily_limit,
            requested_amount=requested,
        )
    except HANDLED_ERRORS as e:
        _fail(e)

    table = Table(title=f"Credit status ({service_config.code})")
    table.add_column("Ceiling")
    table.add_column("Limit", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_row("Total credit", format_money(status.credit_limit),
                  format_money(status.total_credit_used), format_money(status.remaining_credit))
    table.add_row("Daily", format_money(status.daily_limit),
                  format_money(status.daily_used), format_money(status.remaining_daily_limit))
    console.print(table)

    if status.can_process:
        console.print(f"[green]✓[/] {format_money(requested)} can be processed")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗[/] {status.message}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def settle(
    service: str = typer.Argument(..., help="Service code"),
    reference: str = typer.Argument(..., help="Biller reference number"),
    amount: str = typer.Argument(..., help="Payment amount before commission"),
    drawer_id: str = typer.Option(..., "--drawer", "-d", help="Drawer receiving the cash"),
    received: List[str] = typer.Option(..., "--received", "-r", help="Cash received as DENOMINATIONxQUANTITY"),
    waiver: bool = typer.Option(False, "--waiver", "-w", help="Customer holds a fee waiver account"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Compute the settlement without committing"),
    config: Optional[str] = ConfigOption,
    db: str = DbOption,
):
    """Settle a cash payment: commission, limits, cash received and change."""
    payment_amount = _parse_amount(amount)
    try:
        settings = _load_config(config)
        entries = parse_cash_count(received)
        orchestrator = SettlementOrchestrator(settings, get_repository(db))
        request = CashPaymentRequest(
            drawer_id=drawer_id,
            service_code=service,
            reference_number=reference,
            payment_amount=payment_amount,
            received=entries,
            amount_received=entries_total(entries),
            has_fee_waiver_account=waiver,
        )
        result = orchestrator.prepare(request)
        if not dry_run:
            orchestrator.commit(result)
    except HANDLED_ERRORS as e:
        _fail(e)

    console.print(f"\n[bold]Settlement[/bold] {result.plan.payment.transaction_id}")
    console.print("-" * 40)
    console.print(format_commission(result.commission).tooltip)
    console.print(f"Cash received: {format_money(result.amount_received)}")
    console.print(f"Change due: {format_money(result.change_amount)}")
    if result.change:
        console.print(_entries_table("Change to dispense", result.change))
    if dry_run:
        console.print("[yellow]Dry run - nothing committed[/]")
    else:
        console.print("[green]✓[/] Settlement committed")


@app.command("reconcile")
def reconcile_command(
    feed_file: Path = typer.Argument(..., help="Settlement feed file"),
    service: str = typer.Option("DIESTEL", "--service", help="Service the feed belongs to"),
    start: Optional[datetime] = typer.Option(None, "--start", help="Only payments on or after"),
    end: Optional[datetime] = typer.Option(None, "--end", help="Only payments on or before; a bare date covers the whole day"),
    enforced: bool = typer.Option(False, "--enforced", "-e", help="Exit with error code on discrepancies"),
    config: Optional[str] = ConfigOption,
    db: str = DbOption,
):
    """Reconcile a settlement feed against recorded payments."""
    try:
        settings = _load_config(config)
        content = feed_file.read_bytes()
        payments = get_repository(db).list_payments(service.upper(), start=start, end=_end_bound(end))
        report = reconcile(
            content,
            payments,
            rule=settings.reconciliation.reference_rule,
            header_marker=settings.reconciliation.header_marker,
            tolerance=settings.reconciliation.tolerance,
        )
    except HANDLED_ERRORS as e:
        _fail(e)

    _display_reconciliation(report)

    has_problems = report.summary.discrepancy_transactions or report.summary.not_found_transactions
    if enforced and has_problems:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


def _display_reconciliation(report: ReconciliationReport) -> None:
    """Display reconciliation results in a clean, financial format."""
    summary = report.summary
    console.print("\n[bold]Reconciliation Result[/bold]")
    console.print("-" * 40)
    console.print(f"Transactions: {summary.total_transactions}")
    console.print(f"Matched: {summary.matched_transactions} ({format_money(summary.matched_amount)})")
    console.print(f"Pending: {summary.pending_transactions}")
    console.print(f"Discrepancies: {summary.discrepancy_transactions} ({format_money(summary.discrepancy_amount)})")
    console.print(f"Not found: {summary.not_found_transactions}")
    console.print(f"Reconciliation rate: {summary.reconciliation_rate:.1f}%")

    flagged = [r for r in report.records if r.match_status in (MatchStatus.DISCREPANCY, MatchStatus.NOT_FOUND)]
    if flagged:
        table = Table(title="Needs review")
        table.add_column("Reference")
        table.add_column("Status")
        table.add_column("Notes")
        for record in flagged:
            table.add_row(record.reference_number, record.match_status.value, record.notes)
        console.print(table)

    if report.parse_errors:
        console.print(f"\n[yellow]{len(report.parse_errors)} line(s) skipped:[/]")
        for error in report.parse_errors:
            console.print(f"  {error}")


if __name__ == "__main__":
    app()
