import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from docpilot.domains.access.entities import Role


class Workspace:
    """Сущность рабочего пространства"""

    def __init__(
        self,
        uuid: uuid.UUID,
        name: str,
        owner_id: uuid.UUID,
        description: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.uuid = uuid
        self.name = name
        self.owner_id = owner_id
        self.description = description
        self.created_at = created_at or datetime.utcnow()
        self.updated_at = updated_at or datetime.utcnow()

    def is_owner(self, user_id: uuid.UUID) -> bool:
        return user_id == self.owner_id

    @classmethod
    def create_workspace(cls, name: str, owner_id: uuid.UUID, description: Optional[str] = None) -> "Workspace":
        """Создание нового пространства"""
        return cls(
            uuid=uuid.uuid4(),
            name=name.strip(),
            owner_id=owner_id,
            description=description
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Workspace):
            return False
        return self.uuid == other.uuid

    def __repr__(self) -> str:
        return f"Workspace(uuid={self.uuid}, name={self.name}, owner_id={self.owner_id})"


class Collaborator:
    """Членство пользователя в пространстве"""

    def __init__(
        self,
        uuid: uuid.UUID,
        workspace_id: uuid.UUID,
        user_id: uuid.UUID,
        role: Role,
        created_at: Optional[datetime] = None,
        email: Optional[str] = None,
        display_name: Optional[str] = None
    ):
        self.uuid = uuid
        self.workspace_id = workspace_id
        self.user_id = user_id
        self.role = Role(role)
        self.created_at = created_at or datetime.utcnow()
        self.email = email
        self.display_name = display_name

    @classmethod
    def create_collaborator(cls, workspace_id: uuid.UUID, user_id: uuid.UUID, role: Role) -> "Collaborator":
        return cls(
            uuid=uuid.uuid4(),
            workspace_id=workspace_id,
            user_id=user_id,
            role=role
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Collaborator):
            return False
        return self.uuid == other.uuid

    def __repr__(self) -> str:
        return f"Collaborator(workspace_id={self.workspace_id}, user_id={self.user_id}, role={self.role.value})"


class ChatMessage:
    """Сообщение чата пространства"""

    def __init__(
        self,
        uuid: uuid.UUID,
        workspace_id: uuid.UUID,
        sender_id: uuid.UUID,
        content: str,
        is_ai: bool = False,
        created_at: Optional[datetime] = None
    ):
        self.uuid = uuid
        self.workspace_id = workspace_id
        self.sender_id = sender_id
        self.content = content
        self.is_ai = is_ai
        self.created_at = created_at or datetime.utcnow()

    @classmethod
    def create_message(cls, workspace_id: uuid.UUID, sender_id: uuid.UUID, content: str) -> "ChatMessage":
        return cls(
            uuid=uuid.uuid4(),
            workspace_id=workspace_id,
            sender_id=sender_id,
            content=content
        )

    def __repr__(self) -> str:
        return f"ChatMessage(uuid={self.uuid}, workspace_id={self.workspace_id})"


class ActivityEntry:
    """Запись журнала активности"""

    INVITED = "invited"
    JOINED = "joined"
    LEFT = "left"
    REMOVED = "removed"
    ROLE_CHANGED = "role_changed"

    def __init__(
        self,
        workspace_id: uuid.UUID,
        user_id: uuid.UUID,
        action: str,
        target_user_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None
    ):
        self.workspace_id = workspace_id
        self.user_id = user_id
        self.action = action
        self.target_user_id = target_user_id
        self.details = details or {}
        self.created_at = created_at or datetime.utcnow()

    def __repr__(self) -> str:
        return f"ActivityEntry(workspace_id={self.workspace_id}, action={self.action})"
