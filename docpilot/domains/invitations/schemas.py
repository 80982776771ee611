from datetime import datetime
from typing import List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, EmailStr

from docpilot.domains.access.entities import Role
from docpilot.domains.invitations.entities import InvitationStatus


class InvitationCreate(BaseModel):
    """Схема для создания приглашения"""
    email: EmailStr
    role: Role = Role.EDITOR


class InvitationResponse(BaseModel):
    """Приглашение без токена"""
    uuid: uuid.UUID
    workspace_id: uuid.UUID
    inviter_id: uuid.UUID
    invitee_email: str
    invitee_id: Optional[uuid.UUID] = None
    role: Role
    status: InvitationStatus
    expires_at: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvitationCreatedResponse(BaseModel):
    invitation: InvitationResponse
    link: str
    email_sent: bool
    warnings: List[str] = []


class InvitationAccepted(BaseModel):
    workspace_id: uuid.UUID
    role: Role
    message: str = ""
