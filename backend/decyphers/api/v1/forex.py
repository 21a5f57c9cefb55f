"""Forex calendar items imported by the daily job."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.forex import ForexNewsResponse
from decyphers.services.forex_service import list_forex_news

router = APIRouter(prefix="/api/v1/forex-news", tags=["forex"])


@router.get("", response_model=Envelope[list[ForexNewsResponse]])
async def get_forex_news(
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_active_user),
) -> Envelope[list[ForexNewsResponse]]:
    items = await list_forex_news(db, limit=limit)
    return ok([ForexNewsResponse.model_validate(item) for item in items])
