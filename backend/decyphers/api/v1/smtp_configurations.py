"""Admin management of outbound SMTP servers."""

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_db, require_admin
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.smtp import (
    SmtpConfigurationCreate,
    SmtpConfigurationResponse,
    SmtpConfigurationUpdate,
)
from decyphers.services import mail_service

router = APIRouter(prefix="/api/v1/system/smtp-configuration", tags=["smtp-configuration"])


@router.get("", response_model=Envelope[list[SmtpConfigurationResponse]])
async def list_configurations(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[list[SmtpConfigurationResponse]]:
    configs = await mail_service.list_smtp_configurations(db)
    return ok([SmtpConfigurationResponse.model_validate(c) for c in configs])


@router.post(
    "",
    response_model=Envelope[SmtpConfigurationResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_configuration(
    body: SmtpConfigurationCreate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[SmtpConfigurationResponse]:
    config = await mail_service.create_smtp_configuration(db, body.model_dump())
    await db.refresh(config)
    return ok(SmtpConfigurationResponse.model_validate(config), "SMTP configuration created successfully")


@router.put("/{config_id}", response_model=Envelope[SmtpConfigurationResponse])
async def update_configuration(
    config_id: uuid.UUID,
    body: SmtpConfigurationUpdate,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[SmtpConfigurationResponse]:
    config = await mail_service.update_smtp_configuration(
        db, config_id, body.model_dump(exclude_unset=True)
    )
    await db.refresh(config)
    return ok(SmtpConfigurationResponse.model_validate(config), "SMTP configuration updated successfully")


@router.patch("/{config_id}", response_model=Envelope[SmtpConfigurationResponse])
async def set_default_configuration(
    config_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[SmtpConfigurationResponse]:
    """Make this row the default sender; every other row is demoted."""
    config = await mail_service.set_default_smtp_configuration(db, config_id)
    await db.refresh(config)
    return ok(
        SmtpConfigurationResponse.model_validate(config),
        "SMTP configuration set as default successfully",
    )


@router.delete("/{config_id}", response_model=Envelope[None])
async def delete_configuration(
    config_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(require_admin),
) -> Envelope[None]:
    await mail_service.delete_smtp_configuration(db, config_id)
    return ok(message="SMTP configuration deleted successfully")
