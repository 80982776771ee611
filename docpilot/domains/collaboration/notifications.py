"""Типизированные уведомления ленты изменений.

Сырые события ``{operation, table, row}`` декодируются на границе в
закрытое объединение по таблице; дальше по коду нетипизированные строки
не передаются.
"""
import logging
from datetime import datetime
from typing import Annotated, Any, AsyncIterator, Dict, Literal, Optional, Union
import uuid

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from docpilot.db.change_feed import InMemoryChangeFeed, Subscription, change_feed
from docpilot.domains.access.entities import Role
from docpilot.domains.documents.entities import File
from docpilot.domains.identity.entities import User
from docpilot.domains.invitations.entities import Invitation, InvitationStatus
from docpilot.domains.workspaces.entities import Collaborator

logger = logging.getLogger(__name__)

ChangeOperation = Literal["insert", "update", "delete"]


class FileRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uuid: uuid.UUID
    workspace_id: uuid.UUID
    filename: str
    content: str = ""
    file_type: str = "markdown"
    created_by: uuid.UUID
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InvitationRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uuid: uuid.UUID
    workspace_id: uuid.UUID
    inviter_id: uuid.UUID
    invitee_email: str
    invitee_id: Optional[uuid.UUID] = None
    role: Role
    status: InvitationStatus
    token: str
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CollaboratorRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uuid: uuid.UUID
    workspace_id: uuid.UUID
    user_id: uuid.UUID
    role: Role
    created_at: Optional[datetime] = None


class FileChange(BaseModel):
    table: Literal["files"]
    operation: ChangeOperation
    row: FileRow

    def to_entity(self) -> File:
        return File(**self.row.model_dump())


class InvitationChange(BaseModel):
    table: Literal["workspace_invitations"]
    operation: ChangeOperation
    row: InvitationRow

    def to_entity(self) -> Invitation:
        return Invitation(**self.row.model_dump())


class CollaboratorChange(BaseModel):
    table: Literal["collaborators"]
    operation: ChangeOperation
    row: CollaboratorRow

    def to_entity(self) -> Collaborator:
        return Collaborator(**self.row.model_dump())


ChangeNotification = Annotated[
    Union[FileChange, InvitationChange, CollaboratorChange],
    Field(discriminator="table")
]

_notification_adapter = TypeAdapter(ChangeNotification)


class ChangeNotificationAdapter:
    """Подписки на ленту и декодирование событий в типы домена"""

    def __init__(self, feed: Optional[InMemoryChangeFeed] = None):
        self.feed = feed if feed is not None else change_feed

    def subscribe(self, table: str, column: Optional[str] = None, value: Any = None) -> Subscription:
        return self.feed.subscribe(table, column, value)

    def unsubscribe(self, subscription: Optional[Subscription]) -> None:
        if subscription is not None:
            self.feed.unsubscribe(subscription)

    def subscribe_file(self, file_id: uuid.UUID) -> Subscription:
        return self.subscribe("files", "uuid", file_id)

    def subscribe_workspace_files(self, workspace_id: uuid.UUID) -> Subscription:
        return self.subscribe("files", "workspace_id", workspace_id)

    def subscribe_invitations(self, email: str) -> Subscription:
        return self.subscribe("workspace_invitations", "invitee_email", User.normalize_email(email))

    def subscribe_collaborators(self, workspace_id: uuid.UUID) -> Subscription:
        return self.subscribe("collaborators", "workspace_id", workspace_id)

    @staticmethod
    def decode(event: Dict[str, Any]):
        """Событие ленты в типизированное уведомление; None если разобрать нельзя"""
        try:
            return _notification_adapter.validate_python(event)
        except ValidationError as e:
            table = event.get("table") if isinstance(event, dict) else None
            logger.warning(f"Dropping undecodable change notification for table {table}: {e.error_count()} error(s)")
            return None

    def drain(self, subscription: Subscription) -> list:
        """Накопленные уведомления подписки без ожидания"""
        notifications = []
        for event in subscription.drain():
            notification = self.decode(event)
            if notification is not None:
                notifications.append(notification)
        return notifications

    async def stream(self, subscription: Subscription) -> AsyncIterator:
        """Уведомления подписки до ее закрытия"""
        async for event in subscription:
            notification = self.decode(event)
            if notification is not None:
                yield notification
