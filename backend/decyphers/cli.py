"""Scheduled jobs and maintenance commands.

Run from cron, for example::

    * * * * *  decyphers schedule-analysis
    0 0 * * *  decyphers process-renewals
    0 0 1 * *  decyphers add-monthly-tokens
    0 6 * * *  decyphers add-forex-news
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

import click

from decyphers.config import settings
from decyphers.database import session_scope
from decyphers.services.forex_service import fetch_calendar, import_forex_news
from decyphers.services.schedule_service import dispatch_due_tasks
from decyphers.services.subscription_service import process_due_renewals
from decyphers.services.telegram_service import remove_webhook, set_webhook
from decyphers.services.token_service import grant_monthly_tokens

logger = logging.getLogger("decyphers.cli")

T = TypeVar("T")


def _run(job: Awaitable[T], name: str) -> T:
    """Run ``job`` to completion; any exception exits with status 1."""
    try:
        return asyncio.run(job)
    except Exception as e:
        logger.exception("%s failed", name)
        raise click.ClickException(f"{name} failed: {e}") from e


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
def cli(verbose: bool) -> None:
    """Decyphers background jobs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("process-renewals")
def process_renewals() -> None:
    """Renew subscriptions whose billing date has arrived."""

    async def _job():
        async with session_scope() as db:
            return await process_due_renewals(db)

    result = _run(_job(), "process-renewals")
    click.echo(f"Renewed {len(result.renewed)} subscriptions, {len(result.failed)} failed")
    if result.failed:
        raise SystemExit(1)


@cli.command("add-monthly-tokens")
@click.argument("amount", type=int, required=False)
def add_monthly_tokens(amount: int | None) -> None:
    """Reset every user's monthly allowance (default from MONTHLY_TOKEN_AMOUNT)."""
    amount = settings.monthly_token_amount if amount is None else amount

    async def _job():
        async with session_scope() as db:
            return await grant_monthly_tokens(db, amount)

    result = _run(_job(), "add-monthly-tokens")
    click.echo(
        f"Granted {amount} tokens to {result.total} users "
        f"({result.subscribed_users} subscribed, {result.free_users} free)"
    )


@cli.command("schedule-analysis")
def schedule_analysis() -> None:
    """Run scheduled analysis tasks due in the last minute."""

    async def _job():
        async with session_scope() as db:
            return await dispatch_due_tasks(db)

    result = _run(_job(), "schedule-analysis")
    click.echo(
        f"{result.completed} completed, {result.not_rearmed} not rearmed, {result.failed} failed"
    )


@cli.command("add-forex-news")
def add_forex_news() -> None:
    """Import this week's forex calendar."""

    async def _job() -> int:
        items = await fetch_calendar()
        async with session_scope() as db:
            return await import_forex_news(db, items)

    added = _run(_job(), "add-forex-news")
    click.echo(f"Imported {added} forex news items")


@cli.command("telegram-webhook")
@click.option("--remove", is_flag=True, help="Delete the webhook instead of setting it.")
@click.option("--url", default=None, help="Webhook URL (defaults to TELEGRAM_WEBHOOK_URL).")
def telegram_webhook(remove: bool, url: str | None) -> None:
    """Register or remove the Telegram bot webhook."""
    if remove:
        _run(remove_webhook(), "telegram-webhook")
        click.echo("Webhook removed")
        return

    info = _run(set_webhook(url), "telegram-webhook")
    click.echo(f"Webhook set: {info.get('url')} (pending updates: {info.get('pending_update_count', 0)})")


if __name__ == "__main__":
    cli()
