from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserResponse(BaseModel):
    """Схема для ответа с данными пользователя"""
    uuid: uuid.UUID
    email: EmailStr
    display_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserUpdate(BaseModel):
    """Схема для обновления профиля"""
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
