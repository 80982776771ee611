from typing import List
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.api.http.errors import unwrap
from docpilot.core.auth import get_current_user
from docpilot.core.db import get_db
from docpilot.db.change_feed import InMemoryChangeFeed, get_change_feed
from docpilot.domains.identity.entities import User
from docpilot.domains.workspaces.schemas import (
    ActivityResponse, ChatMessageCreate, ChatMessageResponse, CollaboratorAdd, CollaboratorResponse,
    DeletionResponse, RoleChange, WorkspaceCreate, WorkspaceListResponse, WorkspaceResponse
)
from docpilot.domains.workspaces.services import ChatService, WorkspaceService

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


@router.post("/", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
async def create_workspace(
    workspace_data: WorkspaceCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Создание нового пространства"""
    workspace_service = WorkspaceService(db, feed)
    workspace = unwrap(await workspace_service.create_workspace(
        current_user.uuid, workspace_data.name, workspace_data.description
    ))
    return WorkspaceResponse.model_validate(workspace)


@router.get("/", response_model=WorkspaceListResponse)
async def list_workspaces(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Пространства, где пользователь владелец или соавтор"""
    workspaces = await WorkspaceService(db, feed).list_workspaces(current_user.uuid)
    return WorkspaceListResponse(
        workspaces=[WorkspaceResponse.model_validate(workspace) for workspace in workspaces],
        total=len(workspaces)
    )


@router.get("/{workspace_id}", response_model=WorkspaceResponse)
async def load_workspace(
    workspace_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    workspace = unwrap(await WorkspaceService(db, feed).load_workspace(current_user.uuid, workspace_id))
    return WorkspaceResponse.model_validate(workspace)


@router.delete("/{workspace_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workspace(
    workspace_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Удаление пространства со всем содержимым"""
    unwrap(await WorkspaceService(db, feed).delete_workspace(current_user.uuid, workspace_id))


@router.get("/{workspace_id}/collaborators", response_model=List[CollaboratorResponse])
async def list_collaborators(
    workspace_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    collaborators = unwrap(await WorkspaceService(db, feed).list_collaborators(current_user.uuid, workspace_id))
    return [CollaboratorResponse.model_validate(collaborator) for collaborator in collaborators]


@router.post(
    "/{workspace_id}/collaborators",
    response_model=CollaboratorResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_collaborator(
    workspace_id: uuid.UUID,
    collaborator_data: CollaboratorAdd,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    collaborator = unwrap(await WorkspaceService(db, feed).add_collaborator(
        current_user.uuid, workspace_id, collaborator_data.email, collaborator_data.role
    ))
    return CollaboratorResponse.model_validate(collaborator)


@router.patch("/{workspace_id}/collaborators/{user_id}", response_model=CollaboratorResponse)
async def change_role(
    workspace_id: uuid.UUID,
    user_id: uuid.UUID,
    role_data: RoleChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    collaborator = unwrap(await WorkspaceService(db, feed).change_role(
        current_user.uuid, workspace_id, user_id, role_data.role
    ))
    return CollaboratorResponse.model_validate(collaborator)


@router.delete("/{workspace_id}/collaborators/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_collaborator(
    workspace_id: uuid.UUID,
    user_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    unwrap(await WorkspaceService(db, feed).remove_collaborator(current_user.uuid, workspace_id, user_id))


@router.post("/{workspace_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_workspace(
    workspace_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    unwrap(await WorkspaceService(db, feed).leave_workspace(current_user.uuid, workspace_id))


@router.get("/{workspace_id}/activity", response_model=List[ActivityResponse])
async def list_activity(
    workspace_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    entries = unwrap(await WorkspaceService(db, feed).list_activity(current_user.uuid, workspace_id))
    return [ActivityResponse.model_validate(entry) for entry in entries]


@router.get("/{workspace_id}/messages", response_model=List[ChatMessageResponse])
async def list_messages(
    workspace_id: uuid.UUID,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Сообщения чата пространства"""
    offset = (page - 1) * per_page
    messages = unwrap(await ChatService(db, feed).list_messages(
        current_user.uuid, workspace_id, limit=per_page, offset=offset
    ))
    return [ChatMessageResponse.model_validate(message) for message in messages]


@router.post(
    "/{workspace_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED
)
async def send_message(
    workspace_id: uuid.UUID,
    message_data: ChatMessageCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    message = unwrap(await ChatService(db, feed).send_message(current_user.uuid, workspace_id, message_data.content))
    return ChatMessageResponse.model_validate(message)


@router.delete("/{workspace_id}/messages", response_model=DeletionResponse)
async def clear_chat_history(
    workspace_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    deleted = unwrap(await ChatService(db, feed).clear_history(current_user.uuid, workspace_id))
    return DeletionResponse(deleted=deleted, message="Chat history cleared")
