import asyncio
import enum
import logging
import sys
if sys.platform == "win32":
    # asyncpg не работает с ProactorEventLoop, который в Windows стоит по умолчанию.
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

import typer
from rich.table import Table

from billing_backoffice import build_engine, create_billing_client
from billing_backoffice.config import get_settings
from billing_backoffice.db.base import Base
from billing_backoffice.exceptions import BillingError
from billing_backoffice.logging import configure
from billing_backoffice.services.scheduler import build_default_scheduler
from billing_backoffice.utils.cli_utils import format_money, get_rich_console

app = typer.Typer(help="CLI for billing back office management.")
logger = logging.getLogger(__name__)
console = get_rich_console()


class JobName(str, enum.Enum):
    aging = "aging"
    reminders = "reminders"
    prune_tokens = "prune-tokens"


@app.callback()
def main(log_level: str = typer.Option(None, "--log-level", help="Overrides LOG_LEVEL from the environment.")):
    configure(log_level)


@app.command()
def init():
    """Creates all database tables."""
    console.rule("[bold cyan]Database Initialization[/bold cyan]")

    async def _create_tables():
        engine = build_engine(get_settings().postgres)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        finally:
            await engine.dispose()

    with console.status("Creating database tables...", spinner="dots"):
        try:
            asyncio.run(_create_tables())
        except Exception as e:
            console.log(f"[bold red]✖[/bold red] Database initialization FAILED: {e}")
            raise typer.Exit(code=1)
    console.print("[bold green]✔[/bold green] Database tables created successfully.")


@app.command()
def check():
    """Checks database connectivity."""
    console.rule("[bold cyan]Connection Check[/bold cyan]")

    async def _check():
        client = create_billing_client()
        try:
            await client.check_connection()
        finally:
            await client.aclose()

    try:
        asyncio.run(_check())
    except BillingError as e:
        console.print(f"[bold red]✖[/bold red] Database connection: FAILED ({e})")
        raise typer.Exit(code=1)
    console.print("[bold green]✔[/bold green] Database connection: OK")


@app.command("run-job")
def run_job(job: JobName = typer.Argument(..., help="Job to run once.")):
    """Runs one scheduled job immediately and prints its outcome."""

    async def _run():
        client = create_billing_client()
        try:
            if job is JobName.aging:
                moved = await client.jobs.age_pending_charges()
                return f"{moved} charges marked OVERDUE"
            if job is JobName.reminders:
                upcoming = await client.jobs.remind_upcoming_charges()
                return f"{len(upcoming)} charges due soon"
            removed = await client.jobs.prune_token_blacklist()
            return f"{removed} expired tokens pruned"
        finally:
            await client.aclose()

    outcome = asyncio.run(_run())
    console.print(f"[bold green]✔[/bold green] Job '{job.value}': {outcome}")


@app.command()
def scheduler():
    """Runs the daily scheduler until interrupted (Ctrl+C)."""
    settings = get_settings()
    if not settings.scheduler.enabled:
        console.print("[yellow]Scheduler is disabled (SCHEDULER_ENABLED=false).[/yellow]")
        raise typer.Exit(code=0)

    async def _serve():
        client = create_billing_client()
        daily = build_default_scheduler(client.jobs, settings.scheduler)
        await daily.start()
        try:
            await asyncio.Event().wait()
        finally:
            await daily.stop()
            await client.aclose()

    console.rule("[bold cyan]Scheduler[/bold cyan]")
    console.print(
        f"aging at {settings.scheduler.aging_at}, reminders at {settings.scheduler.reminder_at}, "
        f"token pruning at {settings.scheduler.prune_at} (UTC)"
    )
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        console.print("\n[bold]Scheduler stopped.[/bold]")


@app.command()
def dashboard():
    """Prints the dashboard metrics."""

    async def _metrics():
        client = create_billing_client()
        try:
            return await client.dashboard_metrics()
        finally:
            await client.aclose()

    try:
        metrics = asyncio.run(_metrics())
    except BillingError as e:
        console.print(f"[bold red]✖[/bold red] Dashboard FAILED: {e}")
        raise typer.Exit(code=1)

    table = Table(title="Billing dashboard")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Subscriptions", str(metrics.total_subscriptions))
    for status, count in metrics.subscriptions_by_status.items():
        table.add_row(f"  {status.value}", str(count))
    table.add_row("Revenue this month", format_money(metrics.current_month_revenue))
    table.add_row("Pending", f"{metrics.pending.count} / {format_money(metrics.pending.amount)}")
    table.add_row("Overdue", f"{metrics.overdue.count} / {format_money(metrics.overdue.amount)}")
    table.add_row("Open total", format_money(metrics.total_open_amount))
    for periodicity, count in metrics.by_periodicity.items():
        table.add_row(f"  {periodicity.label}", str(count))
    console.print(table)


if __name__ == "__main__":
    app()
