"""
CLI interface for Entitlement Guard.

Provides command-line access to accounts, entitlements, usage and
platform connections.
"""

import logging
import sqlite3
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from entitlement_guard.config.loader import EngineConfig, load_engine_config
from entitlement_guard.core.connections import PLATFORM_CREDENTIAL_SCHEMAS, coerce_platform
from entitlement_guard.core.engine import EntitlementEngine
from entitlement_guard.core.errors import EntitlementDenied, EntitlementError
from entitlement_guard.core.plans import DISABLED, UNLIMITED
from entitlement_guard.storage.db import DEFAULT_DB_PATH
from entitlement_guard.storage.models import SubscriptionStatus
from entitlement_guard.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1  # Denied or error


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: str = typer.Option(
        DEFAULT_DB_PATH,
        "--db",
        envvar="ENTITLEMENT_GUARD_DB",
        help="Path to the SQLite database"
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="ENTITLEMENT_GUARD_CONFIG",
        help="Path to a YAML engine configuration"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output"
    )
):
    """Entitlement Guard CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    ctx.obj = {"db": db, "config": config}
    if ctx.invoked_subcommand is None:
        console.print("Entitlement Guard - Use --help to see available commands")


def _engine(ctx: typer.Context) -> EntitlementEngine:
    settings = ctx.obj or {"db": DEFAULT_DB_PATH, "config": None}
    config = load_engine_config(settings["config"]) if settings["config"] else EngineConfig()
    return EntitlementEngine.from_config(config, get_repository(settings["db"]))


def _fail(error: Exception) -> None:
    """Print an error and exit with the failure code."""
    if isinstance(error, sqlite3.OperationalError) and "no such table" in str(error).lower():
        console.print("[bold yellow]Database is not initialized.[/] Run `entitlement-guard init` first.")
    elif isinstance(error, EntitlementDenied):
        console.print(
            f"[red]Denied ({error.reason_code}):[/] {error} "
            f"(remaining: {error.remaining})"
        )
    else:
        console.print(f"[red]Error:[/] {str(error)}")
    sys.exit(EXIT_CODE_FAIL)


def _format_quota(quota: int) -> str:
    if quota == UNLIMITED:
        return "unlimited"
    if quota == DISABLED:
        return "disabled"
    return str(quota)


@app.command()
def init(ctx: typer.Context):
    """Initialize the Entitlement Guard database."""
    try:
        initialize_schema(ctx.obj["db"])
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("create-account")
def create_account(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    plan: Optional[str] = typer.Option(None, "--plan", "-p", help="Plan identifier"),
    status: SubscriptionStatus = typer.Option(
        SubscriptionStatus.ACTIVE, "--status", "-s", help="Subscription status"
    )
):
    """Create an account with zero usage and no connected platforms."""
    try:
        account = _engine(ctx).open_account(account_id, plan=plan, status=status)
    except (EntitlementError, ValueError, sqlite3.Error) as e:
        _fail(e)
    console.print(
        f"[green]✓[/] Created account {account.account_id} "
        f"({account.subscription.plan or 'no plan'}, {account.subscription.status.value})"
    )


@app.command("set-plan")
def set_plan(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    plan: Optional[str] = typer.Option(None, "--plan", "-p", help="New plan identifier"),
    status: Optional[SubscriptionStatus] = typer.Option(None, "--status", "-s", help="New status")
):
    """Change an account's plan or subscription status."""
    if plan is None and status is None:
        console.print("[yellow]Nothing to change:[/] pass --plan and/or --status")
        sys.exit(EXIT_CODE_FAIL)
    try:
        account = _engine(ctx).change_subscription(account_id, plan=plan, status=status)
    except (EntitlementError, ValueError, sqlite3.Error) as e:
        _fail(e)
    console.print(
        f"[green]✓[/] {account.account_id} is on "
        f"{account.subscription.plan or 'no plan'} ({account.subscription.status.value})"
    )


@app.command()
def summary(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier")
):
    """Show plan limits, usage and remaining units for an account."""
    try:
        plan_summary = _engine(ctx).evaluator.plan_summary(account_id)
    except (EntitlementError, sqlite3.Error) as e:
        _fail(e)

    console.print(f"\n[bold]Plan:[/bold] {plan_summary.plan} ({plan_summary.status.value})")
    table = Table(title=f"Usage for {account_id}")
    table.add_column("Feature")
    table.add_column("Limit", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    for feature, quota in plan_summary.quotas.items():
        table.add_row(
            feature,
            _format_quota(quota),
            str(plan_summary.usage[feature]),
            str(plan_summary.remaining[feature].to_display()),
        )
    console.print(table)


@app.command()
def check(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    feature: str = typer.Argument(..., help="Feature identifier, e.g. aiContent")
):
    """Check whether an account may use a feature now."""
    try:
        decision = _engine(ctx).evaluator.check(account_id, feature)
    except (EntitlementError, sqlite3.Error) as e:
        _fail(e)

    remaining = decision.remaining.to_display()
    if decision.allowed:
        console.print(f"[green]✓ Allowed[/] {feature} (remaining: {remaining})")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[red]✗ Denied[/] {feature}: {decision.reason.value} (remaining: {remaining})")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def record(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    feature: str = typer.Argument(..., help="Feature identifier, e.g. socialPosts"),
    enforce: bool = typer.Option(
        False,
        "--enforce",
        "-e",
        help="Refuse to record when the account is not entitled"
    )
):
    """Record one unit of usage for a feature."""
    engine = _engine(ctx)
    try:
        if enforce:
            engine.gate.require(account_id, feature)
        count = engine.ledger.record_usage(account_id, feature)
    except (EntitlementError, sqlite3.Error) as e:
        _fail(e)
    console.print(f"[green]✓[/] Recorded {feature} for {account_id} (count: {count})")


@app.command()
def connect(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    platform: str = typer.Argument(..., help="Platform identifier, e.g. linkedin"),
    token: str = typer.Option(..., "--token", "-t", help="Access token"),
    identifier: str = typer.Option(
        ..., "--id", "-i", help="Platform account identifier (profile, page, user...)"
    ),
    expiry: Optional[str] = typer.Option(None, "--expiry", help="Token expiry (ISO timestamp)"),
    refresh_token: Optional[str] = typer.Option(None, "--refresh-token", help="Refresh token")
):
    """Connect a platform, replacing any existing credential."""
    try:
        schema = PLATFORM_CREDENTIAL_SCHEMAS[coerce_platform(platform)]
        bundle = {
            "access_token": token,
            schema.identifier_field: identifier,
            "expiry": expiry,
            "refresh_token": refresh_token,
        }
        _engine(ctx).connections.connect(account_id, platform, bundle)
    except (EntitlementError, sqlite3.Error) as e:
        _fail(e)
    console.print(f"[green]✓[/] Connected {platform} for {account_id}")


@app.command()
def disconnect(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier"),
    platform: str = typer.Argument(..., help="Platform identifier")
):
    """Disconnect a platform; succeeds if it is already disconnected."""
    try:
        _engine(ctx).connections.disconnect(account_id, platform)
    except (EntitlementError, sqlite3.Error) as e:
        _fail(e)
    console.print(f"[green]✓[/] Disconnected {platform} for {account_id}")


@app.command()
def platforms(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Account identifier")
):
    """List connection state for every platform."""
    try:
        status = _engine(ctx).connections.connection_status(account_id)
    except (EntitlementError, sqlite3.Error) as e:
        _fail(e)

    table = Table(title=f"Platforms for {account_id}")
    table.add_column("Platform")
    table.add_column("Connected")
    for name, connected in status.items():
        table.add_row(name, "[green]yes[/]" if connected else "[dim]no[/]")
    console.print(table)


@app.command()
def adapt(
    ctx: typer.Context,
    content: str = typer.Argument(..., help="Content to shape"),
    platform: List[str] = typer.Option(..., "--platform", "-p", help="Target platform (repeatable)")
):
    """Preview per-platform payloads for a piece of content."""
    try:
        payloads = _engine(ctx).adapter.adapt(content, platform)
    except EntitlementError as e:
        _fail(e)

    for name, payload in payloads.items():
        console.print(f"\n[bold]{name}[/bold]{' (truncated)' if payload.truncated else ''}")
        console.print(payload.content, markup=False)
        if payload.tracks_hashtags:
            console.print(f"Hashtags: {', '.join(payload.hashtags) or '-'}", markup=False)


if __name__ == "__main__":
    app()
