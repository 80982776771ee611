from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from docpilot.domains.access.entities import Role


class WorkspaceCreate(BaseModel):
    """Схема для создания пространства"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Name cannot be empty')
        return v.strip()


class WorkspaceResponse(BaseModel):
    """Схема для ответа с данными пространства"""
    uuid: uuid.UUID
    name: str
    owner_id: uuid.UUID
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkspaceListResponse(BaseModel):
    workspaces: List[WorkspaceResponse]
    total: int


class CollaboratorAdd(BaseModel):
    """Прямое добавление зарегистрированного пользователя"""
    email: EmailStr
    role: Role = Role.EDITOR


class RoleChange(BaseModel):
    role: Role


class CollaboratorResponse(BaseModel):
    uuid: uuid.UUID
    workspace_id: uuid.UUID
    user_id: uuid.UUID
    role: Role
    email: Optional[str] = None
    display_name: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActivityResponse(BaseModel):
    workspace_id: uuid.UUID
    user_id: uuid.UUID
    action: str
    target_user_id: Optional[uuid.UUID] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatMessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)


class ChatMessageResponse(BaseModel):
    uuid: uuid.UUID
    workspace_id: uuid.UUID
    sender_id: uuid.UUID
    content: str
    is_ai: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeletionResponse(BaseModel):
    deleted: int = 0
    message: str = ""
