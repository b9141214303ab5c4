from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models import User
from app.schemas.auth import UserOut
from app.schemas.users import ProfileUpdate
from app.services import users as user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}/profile", response_model=UserOut)
async def get_profile(
    user_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    user = await user_service.get_profile(db, current_user, user_id)
    return UserOut.model_validate(user)


@router.put("/{user_id}/profile", response_model=UserOut)
async def update_profile(
    user_id: UUID,
    payload: ProfileUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    user = await user_service.update_profile(db, current_user, user_id, payload)
    return UserOut.model_validate(user)
