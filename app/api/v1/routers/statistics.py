from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models import User
from app.schemas.statistics import AdminStatistics, ApplicantStatistics, DsaStatistics
from app.services import statistics as statistics_service

router = APIRouter(prefix="/statistics", tags=["statistics"])


@router.get("", response_model=AdminStatistics | DsaStatistics | ApplicantStatistics)
async def get_statistics(
    role: str | None = Query(default=None, pattern="^(admin|dsa|user)$"),
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await statistics_service.get_statistics(db, current_user, role)
