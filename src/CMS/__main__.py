# CMS/__main__.py
# ================================================================================================
# Entry point for the CMS command line:
#   python -m CMS serve
#   python -m CMS initdb
#   python -m CMS jobs reminders | digest
#   python -m CMS outbox drain | status
# ================================================================================================
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import func, select

from CMS.app_logger import get_logger
from CMS.core.config import settings

app = typer.Typer(help="Conference management service")
jobs_app = typer.Typer(help="Run scheduled jobs once")
outbox_app = typer.Typer(help="Inspect and deliver queued email")
app.add_typer(jobs_app, name="jobs")
app.add_typer(outbox_app, name="outbox")

console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG")):
    logging.basicConfig(format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    if verbose:
        get_logger().setLevel(logging.DEBUG)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", envvar="HOST"),
    port: int = typer.Option(8000, envvar="PORT"),
    reload: bool = typer.Option(False, help="Auto-reload on code changes"),
):
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run("CMS.main:create_app", factory=True, host=host, port=port, reload=reload)


@app.command()
def initdb():
    """Create all tables directly from the models (dev/test; production uses alembic)."""
    from CMS.db.models import Base
    from CMS.db.session import dispose_engine, get_engine

    async def _run():
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await dispose_engine()

    asyncio.run(_run())
    console.print("[green]tables created[/green]")


def _print_report(title: str, report) -> None:
    table = Table(title=title)
    table.add_column("conference")
    table.add_column("result")
    for row in report.details:
        result = row.get("error") or row.get("stats") or f"{row.get('emails', 0)} email(s)"
        table.add_row(row.get("conference_id", "-"), str(result))
    console.print(table)
    console.print(f"conferences={report.conferences} emails={report.emails} errors={report.errors}")


async def _drain(limit: Optional[int] = None) -> dict:
    from CMS.db.session import get_sessionmaker
    from CMS.services.email.service import EmailService
    from CMS.services.outbox import OutboxDispatcher

    dispatcher = OutboxDispatcher(
        get_sessionmaker(),
        EmailService(settings.email_config()),
        max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
        backoff_seconds=settings.OUTBOX_BACKOFF_SECONDS,
    )
    totals = {"sent": 0, "retried": 0, "failed": 0}
    while True:
        counts = await dispatcher.process_pending(limit or settings.OUTBOX_BATCH_SIZE)
        for k, v in counts.items():
            totals[k] += v
        if not any(counts.values()) or limit:
            return totals


def _run_job(name: str, drain: bool) -> None:
    from CMS.db.session import dispose_engine, get_sessionmaker
    from CMS.services.scheduler import build_scheduler

    async def _run():
        scheduler = build_scheduler(get_sessionmaker(), settings)
        report = await scheduler.run_job(scheduler.get(name))
        totals = await _drain() if drain else None
        await dispose_engine()
        return report, totals

    report, totals = asyncio.run(_run())
    _print_report(name, report)
    if totals is not None:
        console.print(f"outbox: {totals}")


@jobs_app.command("reminders")
def run_reminders(drain: bool = typer.Option(True, help="Deliver queued email right away")):
    """Queue review reminders for conferences starting soon."""
    _run_job("review_reminders", drain)


@jobs_app.command("digest")
def run_digest(drain: bool = typer.Option(True, help="Deliver queued email right away")):
    """Queue the weekly organizer digest."""
    _run_job("weekly_digest", drain)


@outbox_app.command("drain")
def outbox_drain(limit: Optional[int] = typer.Option(None, help="Stop after one batch of this size")):
    """Deliver pending email now."""
    from CMS.db.session import dispose_engine

    async def _run():
        totals = await _drain(limit)
        await dispose_engine()
        return totals

    console.print(asyncio.run(_run()))


@outbox_app.command("status")
def outbox_status():
    """Show queued email counts by status."""
    from CMS.db.models import OutboundEmail
    from CMS.db.session import dispose_engine, get_sessionmaker

    async def _run():
        async with get_sessionmaker()() as session:
            rows = (await session.execute(
                select(OutboundEmail.status, func.count(OutboundEmail.id)).group_by(OutboundEmail.status)
            )).all()
        await dispose_engine()
        return rows

    table = Table(title="outbox")
    table.add_column("status")
    table.add_column("count", justify="right")
    for status, count in asyncio.run(_run()):
        table.add_row(status, str(count))
    console.print(table)


if __name__ == "__main__":
    app()
