"""Analysis reports generated for the current user."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from decyphers.api.deps import get_current_active_user, get_db
from decyphers.models.user import User
from decyphers.schemas.common import Envelope, ok
from decyphers.schemas.schedule import AnalysisHistoryResponse
from decyphers.services import schedule_service

router = APIRouter(prefix="/api/v1/history", tags=["history"])


@router.get("", response_model=Envelope[list[AnalysisHistoryResponse]])
async def list_history(
    symbol: str | None = Query(None, max_length=50),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[list[AnalysisHistoryResponse]]:
    entries = await schedule_service.list_history(db, current_user, symbol=symbol)
    return ok([AnalysisHistoryResponse.model_validate(e) for e in entries])


@router.get("/{history_id}", response_model=Envelope[AnalysisHistoryResponse])
async def get_history(
    history_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[AnalysisHistoryResponse]:
    entry = await schedule_service.get_history(db, current_user, history_id)
    return ok(AnalysisHistoryResponse.model_validate(entry))


@router.delete("/{history_id}", response_model=Envelope[None])
async def delete_history(
    history_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> Envelope[None]:
    await schedule_service.delete_history(db, current_user, history_id)
    return ok(message="Analysis deleted successfully")
