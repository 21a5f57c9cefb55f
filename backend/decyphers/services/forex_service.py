"""Import the weekly forex economic calendar."""

import logging
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.config import settings
from decyphers.models.forex_news import ForexNews

logger = logging.getLogger(__name__)


async def fetch_calendar(client: httpx.AsyncClient | None = None) -> list[dict[str, Any]]:
    """Download the feed. HTTP errors propagate to the caller."""
    if client is not None:
        response = await client.get(settings.forex_feed_url)
    else:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as owned:
            response = await owned.get(settings.forex_feed_url)
    response.raise_for_status()
    items = response.json()
    if not isinstance(items, list):
        raise ValueError("Forex feed did not return a list")
    return items


def _as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


async def import_forex_news(db: AsyncSession, items: list[dict[str, Any]]) -> int:
    """Insert items whose title is not stored yet; returns how many were added."""
    existing = set((await db.execute(select(ForexNews.title))).scalars())
    added = 0
    for item in items:
        title = item.get("title")
        if not title or title in existing:
            continue
        db.add(
            ForexNews(
                title=title,
                country=_as_text(item.get("country")),
                impact=_as_text(item.get("impact")),
                forecast=_as_text(item.get("forecast")),
                previous=_as_text(item.get("previous")),
                date=_as_text(item.get("date")),
            )
        )
        existing.add(title)
        added += 1
    await db.flush()
    logger.info("Imported %d forex news items (%d in feed)", added, len(items))
    return added


async def list_forex_news(db: AsyncSession, limit: int = 100) -> list[ForexNews]:
    result = await db.execute(select(ForexNews).order_by(ForexNews.date.desc()).limit(limit))
    return list(result.scalars().all())
