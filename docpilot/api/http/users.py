from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.core.auth import get_current_user
from docpilot.core.db import get_db
from docpilot.db.change_feed import InMemoryChangeFeed, get_change_feed
from docpilot.domains.identity.entities import User
from docpilot.domains.identity.schemas import UserResponse, UserUpdate
from docpilot.domains.identity.services import IdentityService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Текущий пользователь"""
    return UserResponse.model_validate(current_user)


@router.patch("/me", response_model=UserResponse)
async def update_me(
    update_data: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Обновление профиля"""
    user = await IdentityService(db, feed).update_profile(current_user.uuid, update_data.display_name)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserResponse.model_validate(user)
