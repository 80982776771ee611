from typing import List
import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.api.http.errors import unwrap
from docpilot.core.auth import get_current_user
from docpilot.core.db import get_db
from docpilot.db.change_feed import InMemoryChangeFeed, get_change_feed
from docpilot.domains.identity.entities import User
from docpilot.domains.invitations.email import ResendEmailSender, get_email_sender
from docpilot.domains.invitations.schemas import (
    InvitationAccepted, InvitationCreate, InvitationCreatedResponse, InvitationResponse
)
from docpilot.domains.invitations.services import InvitationService

router = APIRouter(tags=["invitations"])


def get_invitation_service(
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed),
    email_sender: ResendEmailSender = Depends(get_email_sender)
) -> InvitationService:
    return InvitationService(db, feed, email_sender)


@router.post(
    "/workspaces/{workspace_id}/invitations",
    response_model=InvitationCreatedResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_invitation(
    workspace_id: uuid.UUID,
    invitation_data: InvitationCreate,
    current_user: User = Depends(get_current_user),
    invitation_service: InvitationService = Depends(get_invitation_service)
):
    """Приглашение по email; ошибка отправки письма приходит как предупреждение"""
    result = await invitation_service.create_invitation(
        current_user.uuid, workspace_id, invitation_data.email, invitation_data.role
    )
    created = unwrap(result)
    return InvitationCreatedResponse(
        invitation=InvitationResponse.model_validate(created.invitation),
        link=created.link,
        email_sent=created.email_sent,
        warnings=result.warnings
    )


@router.get("/workspaces/{workspace_id}/invitations", response_model=List[InvitationResponse])
async def list_workspace_invitations(
    workspace_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    invitation_service: InvitationService = Depends(get_invitation_service)
):
    invitations = unwrap(await invitation_service.list_workspace_invitations(current_user.uuid, workspace_id))
    return [InvitationResponse.model_validate(invitation) for invitation in invitations]


@router.get("/invitations/pending", response_model=List[InvitationResponse])
async def list_pending_invitations(
    current_user: User = Depends(get_current_user),
    invitation_service: InvitationService = Depends(get_invitation_service)
):
    """Входящие приглашения текущего пользователя"""
    invitations = unwrap(await invitation_service.list_pending_for_email(current_user.email))
    return [InvitationResponse.model_validate(invitation) for invitation in invitations]


@router.get("/invite/{token}", response_model=InvitationResponse)
async def resolve_invitation(
    token: str,
    invitation_service: InvitationService = Depends(get_invitation_service)
):
    """Открытие приглашения по ссылке"""
    invitation = unwrap(await invitation_service.resolve_by_token(token))
    return InvitationResponse.model_validate(invitation)


@router.post("/invite/{token}/accept", response_model=InvitationAccepted)
async def accept_invitation_by_token(
    token: str,
    current_user: User = Depends(get_current_user),
    invitation_service: InvitationService = Depends(get_invitation_service)
):
    invitation = unwrap(await invitation_service.resolve_by_token(token))
    result = await invitation_service.accept(invitation.uuid, current_user.uuid)
    collaborator = unwrap(result)
    return InvitationAccepted(workspace_id=collaborator.workspace_id, role=collaborator.role, message=result.message)


@router.post("/invitations/{invitation_id}/accept", response_model=InvitationAccepted)
async def accept_invitation(
    invitation_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    invitation_service: InvitationService = Depends(get_invitation_service)
):
    result = await invitation_service.accept(invitation_id, current_user.uuid)
    collaborator = unwrap(result)
    return InvitationAccepted(workspace_id=collaborator.workspace_id, role=collaborator.role, message=result.message)


@router.post("/invitations/{invitation_id}/decline", response_model=InvitationResponse)
async def decline_invitation(
    invitation_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    invitation_service: InvitationService = Depends(get_invitation_service)
):
    invitation = unwrap(await invitation_service.decline(invitation_id, current_user.uuid))
    return InvitationResponse.model_validate(invitation)
