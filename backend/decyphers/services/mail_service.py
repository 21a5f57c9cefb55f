"""Outbound mail through the default SMTP configuration row."""

import asyncio
import logging
import smtplib
import uuid
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.analysis.charts import ChartImage
from decyphers.exceptions import BusinessRuleError, NotFoundError
from decyphers.models.smtp_configuration import SmtpConfiguration

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30


async def get_default_smtp_configuration(db: AsyncSession) -> SmtpConfiguration | None:
    result = await db.execute(
        select(SmtpConfiguration)
        .where(SmtpConfiguration.is_default.is_(True))
        .order_by(SmtpConfiguration.updated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Admin management
# ---------------------------------------------------------------------------


async def list_smtp_configurations(db: AsyncSession) -> list[SmtpConfiguration]:
    result = await db.execute(select(SmtpConfiguration).order_by(SmtpConfiguration.created_at))
    return list(result.scalars().all())


async def get_smtp_configuration(db: AsyncSession, config_id: uuid.UUID) -> SmtpConfiguration:
    config = await db.get(SmtpConfiguration, config_id)
    if config is None:
        raise NotFoundError("SMTP configuration not found")
    return config


async def _clear_defaults(db: AsyncSession, keep_id: uuid.UUID | None = None) -> None:
    query = update(SmtpConfiguration).where(SmtpConfiguration.is_default.is_(True))
    if keep_id is not None:
        query = query.where(SmtpConfiguration.id != keep_id)
    await db.execute(query.values(is_default=False).execution_options(synchronize_session="fetch"))


async def create_smtp_configuration(db: AsyncSession, data: dict[str, Any]) -> SmtpConfiguration:
    """Insert a configuration; ``is_default`` demotes every other row."""
    async with db.begin_nested():
        if data.get("is_default"):
            await _clear_defaults(db)
        config = SmtpConfiguration(**data)
        db.add(config)
        await db.flush()
    logger.info("Created SMTP configuration %s (%s:%s)", config.name, config.host, config.port)
    return config


async def update_smtp_configuration(
    db: AsyncSession, config_id: uuid.UUID, changes: dict[str, Any]
) -> SmtpConfiguration:
    """Partial update. Omitted ``is_default`` keeps the current flag."""
    config = await get_smtp_configuration(db, config_id)
    async with db.begin_nested():
        if changes.get("is_default"):
            await _clear_defaults(db, keep_id=config.id)
        for key, value in changes.items():
            setattr(config, key, value)
        await db.flush()
    logger.info("Updated SMTP configuration %s", config.id)
    return config


async def set_default_smtp_configuration(db: AsyncSession, config_id: uuid.UUID) -> SmtpConfiguration:
    config = await get_smtp_configuration(db, config_id)
    async with db.begin_nested():
        await _clear_defaults(db, keep_id=config.id)
        config.is_default = True
        await db.flush()
    logger.info("SMTP configuration %s is now the default", config.id)
    return config


async def delete_smtp_configuration(db: AsyncSession, config_id: uuid.UUID) -> None:
    config = await get_smtp_configuration(db, config_id)
    if config.is_default:
        raise BusinessRuleError("Cannot delete the default SMTP configuration")
    await db.delete(config)
    await db.flush()
    logger.info("Deleted SMTP configuration %s", config_id)


def build_analysis_email(
    config: SmtpConfiguration,
    to_address: str,
    symbol: str,
    analysis: str,
    images: list[ChartImage],
) -> EmailMessage:
    """Plain-text report with each chart attached."""
    message = EmailMessage()
    message["Subject"] = f"Your scheduled {symbol} analysis"
    message["From"] = formataddr((config.from_name or "", config.from_address))
    message["To"] = to_address
    message.set_content(analysis)

    for index, image in enumerate(images, start=1):
        maintype, _, subtype = image.content_type.partition("/")
        message.add_attachment(
            image.data,
            maintype=maintype or "image",
            subtype=subtype or "png",
            filename=f"{symbol}-{image.interval}-{index}.{subtype or 'png'}",
        )
    return message


def _deliver(config: SmtpConfiguration, message: EmailMessage) -> None:
    encryption = (config.encryption or "").lower()
    if encryption == "ssl":
        server = smtplib.SMTP_SSL(config.host, config.port, timeout=SMTP_TIMEOUT_SECONDS)
    else:
        server = smtplib.SMTP(config.host, config.port, timeout=SMTP_TIMEOUT_SECONDS)
    try:
        if encryption == "tls":
            server.starttls()
        if config.username and config.password:
            server.login(config.username, config.password)
        server.send_message(message)
    finally:
        server.quit()


async def send_email(config: SmtpConfiguration, message: EmailMessage) -> None:
    """Send ``message`` without blocking the event loop. SMTP errors propagate."""
    await asyncio.to_thread(_deliver, config, message)
    logger.info("Sent mail '%s' to %s via %s", message["Subject"], message["To"], config.host)


async def send_analysis_report(
    db: AsyncSession,
    to_address: str,
    symbol: str,
    analysis: str,
    images: list[ChartImage],
) -> bool:
    """Mail a report through the default SMTP row.

    Returns False (and sends nothing) when no default configuration exists.
    """
    config = await get_default_smtp_configuration(db)
    if config is None:
        logger.warning("No default SMTP configuration found")
        return False

    message = build_analysis_email(config, to_address, symbol, analysis, images)
    await send_email(config, message)
    return True
