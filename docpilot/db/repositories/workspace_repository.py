from typing import Dict, List, Optional
import uuid

from sqlalchemy import and_, delete, or_, select

from docpilot.db.models.user import User as UserModel
from docpilot.db.models.workspace import (
    ChatMessage as ChatMessageModel,
    Collaborator as CollaboratorModel,
    Workspace as WorkspaceModel,
    WorkspaceActivity as WorkspaceActivityModel,
    WorkspaceRequest as WorkspaceRequestModel
)
from docpilot.db.repositories.base import Repository
from docpilot.domains.access.entities import Role
from docpilot.domains.identity.entities import User
from docpilot.domains.workspaces.entities import ActivityEntry, ChatMessage, Collaborator, Workspace


class WorkspaceRepository(Repository):
    """Репозиторий для работы с рабочими пространствами"""

    model = WorkspaceModel

    async def create(self, workspace: Workspace) -> Workspace:
        """Создание нового пространства"""
        db_workspace = WorkspaceModel(
            uuid=workspace.uuid,
            name=workspace.name,
            owner_id=workspace.owner_id,
            description=workspace.description
        )
        db_workspace = await self._insert(db_workspace, "Invalid owner_id")
        return self._to_domain(db_workspace)

    async def get_by_uuid(self, workspace_uuid: uuid.UUID) -> Optional[Workspace]:
        """Получение пространства по UUID"""
        result = await self.session.execute(
            select(WorkspaceModel).where(WorkspaceModel.uuid == workspace_uuid)
        )
        db_workspace = result.scalar_one_or_none()
        return self._to_domain(db_workspace) if db_workspace else None

    async def get_visible(self, user_id: uuid.UUID) -> List[Workspace]:
        """Пространства, где пользователь владелец или соавтор"""
        member_of = select(CollaboratorModel.workspace_id).where(CollaboratorModel.user_id == user_id)
        result = await self.session.execute(
            select(WorkspaceModel)
            .where(or_(WorkspaceModel.owner_id == user_id, WorkspaceModel.uuid.in_(member_of)))
            .order_by(WorkspaceModel.created_at.desc())
        )
        return [self._to_domain(db_workspace) for db_workspace in result.scalars().all()]

    async def delete(self, workspace_uuid: uuid.UUID, owner_id: uuid.UUID) -> bool:
        """Удаление строки пространства с повторной проверкой владельца"""
        deleted = await self._delete_where(
            WorkspaceModel.uuid == workspace_uuid,
            WorkspaceModel.owner_id == owner_id
        )
        return deleted > 0

    def _to_domain(self, db_workspace: WorkspaceModel) -> Workspace:
        """Преобразование модели БД в доменную сущность"""
        return Workspace(
            uuid=db_workspace.uuid,
            name=db_workspace.name,
            owner_id=db_workspace.owner_id,
            description=db_workspace.description,
            created_at=db_workspace.created_at,
            updated_at=db_workspace.updated_at
        )


class CollaboratorRepository(Repository):
    """Репозиторий для работы с соавторами"""

    model = CollaboratorModel

    async def create(self, collaborator: Collaborator) -> Collaborator:
        """Добавление соавтора; пара (workspace, user) уникальна"""
        db_collaborator = CollaboratorModel(
            uuid=collaborator.uuid,
            workspace_id=collaborator.workspace_id,
            user_id=collaborator.user_id,
            role=collaborator.role.value
        )
        db_collaborator = await self._insert(db_collaborator, "User is already a collaborator of this workspace")
        return self._to_domain(db_collaborator)

    async def get(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Collaborator]:
        result = await self.session.execute(
            select(CollaboratorModel).where(
                and_(
                    CollaboratorModel.workspace_id == workspace_id,
                    CollaboratorModel.user_id == user_id
                )
            )
        )
        db_collaborator = result.scalar_one_or_none()
        return self._to_domain(db_collaborator) if db_collaborator else None

    async def get_by_email(self, workspace_id: uuid.UUID, email: str) -> Optional[Collaborator]:
        """Соавтор пространства по email пользователя"""
        result = await self.session.execute(
            select(CollaboratorModel, UserModel)
            .join(UserModel, UserModel.uuid == CollaboratorModel.user_id)
            .where(
                and_(
                    CollaboratorModel.workspace_id == workspace_id,
                    UserModel.email == User.normalize_email(email)
                )
            )
        )
        row = result.first()
        return self._to_domain(row[0], row[1]) if row else None

    async def get_by_workspace(self, workspace_id: uuid.UUID) -> List[Collaborator]:
        """Соавторы пространства вместе с email"""
        result = await self.session.execute(
            select(CollaboratorModel, UserModel)
            .outerjoin(UserModel, UserModel.uuid == CollaboratorModel.user_id)
            .where(CollaboratorModel.workspace_id == workspace_id)
            .order_by(CollaboratorModel.created_at.asc())
        )
        return [self._to_domain(db_collaborator, db_user) for db_collaborator, db_user in result.all()]

    async def get_roles(self, workspace_id: uuid.UUID) -> Dict[uuid.UUID, Role]:
        """Роли соавторов для снимка доступа"""
        result = await self.session.execute(
            select(CollaboratorModel.user_id, CollaboratorModel.role)
            .where(CollaboratorModel.workspace_id == workspace_id)
        )
        return {user_id: Role(role) for user_id, role in result.all()}

    async def update_role(self, workspace_id: uuid.UUID, user_id: uuid.UUID, role: Role) -> Optional[Collaborator]:
        result = await self.session.execute(
            select(CollaboratorModel).where(
                and_(
                    CollaboratorModel.workspace_id == workspace_id,
                    CollaboratorModel.user_id == user_id
                )
            )
        )
        db_collaborator = result.scalar_one_or_none()
        if db_collaborator is None:
            return None

        db_collaborator.role = Role(role).value
        return self._to_domain(await self._save(db_collaborator))

    async def delete(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        deleted = await self._delete_where(
            CollaboratorModel.workspace_id == workspace_id,
            CollaboratorModel.user_id == user_id
        )
        return deleted > 0

    async def delete_by_workspace(self, workspace_id: uuid.UUID) -> int:
        return await self._delete_where(CollaboratorModel.workspace_id == workspace_id)

    def _to_domain(self, db_collaborator: CollaboratorModel, db_user: Optional[UserModel] = None) -> Collaborator:
        """Преобразование модели БД в доменную сущность"""
        return Collaborator(
            uuid=db_collaborator.uuid,
            workspace_id=db_collaborator.workspace_id,
            user_id=db_collaborator.user_id,
            role=Role(db_collaborator.role),
            created_at=db_collaborator.created_at,
            email=db_user.email if db_user else None,
            display_name=db_user.display_name if db_user else None
        )


class ChatMessageRepository(Repository):
    """Репозиторий сообщений чата"""

    model = ChatMessageModel

    async def create(self, message: ChatMessage) -> ChatMessage:
        db_message = ChatMessageModel(
            uuid=message.uuid,
            workspace_id=message.workspace_id,
            sender_id=message.sender_id,
            content=message.content,
            is_ai=message.is_ai
        )
        db_message = await self._insert(db_message, "Message already exists")
        return self._to_domain(db_message)

    async def get_by_workspace(self, workspace_id: uuid.UUID, limit: int = 100, offset: int = 0) -> List[ChatMessage]:
        result = await self.session.execute(
            select(ChatMessageModel)
            .where(ChatMessageModel.workspace_id == workspace_id)
            .order_by(ChatMessageModel.created_at.asc())
            .offset(offset)
            .limit(limit)
        )
        return [self._to_domain(db_message) for db_message in result.scalars().all()]

    async def delete_by_workspace(self, workspace_id: uuid.UUID) -> int:
        return await self._delete_where(ChatMessageModel.workspace_id == workspace_id)

    def _to_domain(self, db_message: ChatMessageModel) -> ChatMessage:
        return ChatMessage(
            uuid=db_message.uuid,
            workspace_id=db_message.workspace_id,
            sender_id=db_message.sender_id,
            content=db_message.content,
            is_ai=db_message.is_ai,
            created_at=db_message.created_at
        )


class ActivityRepository(Repository):
    """Журнал активности пространства"""

    model = WorkspaceActivityModel

    async def record(self, entry: ActivityEntry) -> None:
        db_entry = WorkspaceActivityModel(
            workspace_id=entry.workspace_id,
            user_id=entry.user_id,
            action=entry.action,
            target_user_id=entry.target_user_id,
            details={key: str(value) for key, value in entry.details.items()}
        )
        await self._insert(db_entry, "Activity entry already exists")

    async def get_by_workspace(self, workspace_id: uuid.UUID, limit: int = 100) -> List[ActivityEntry]:
        result = await self.session.execute(
            select(WorkspaceActivityModel)
            .where(WorkspaceActivityModel.workspace_id == workspace_id)
            .order_by(WorkspaceActivityModel.created_at.desc())
            .limit(limit)
        )
        return [
            ActivityEntry(
                workspace_id=db_entry.workspace_id,
                user_id=db_entry.user_id,
                action=db_entry.action,
                target_user_id=db_entry.target_user_id,
                details=db_entry.details,
                created_at=db_entry.created_at
            )
            for db_entry in result.scalars().all()
        ]

    async def delete_by_workspace(self, workspace_id: uuid.UUID) -> int:
        return await self._delete_where(WorkspaceActivityModel.workspace_id == workspace_id)


class WorkspaceRequestRepository(Repository):
    """Запросы на вступление в пространство"""

    model = WorkspaceRequestModel

    async def delete_by_workspace(self, workspace_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(WorkspaceRequestModel).where(WorkspaceRequestModel.workspace_id == workspace_id)
        )
        await self.session.commit()
        return result.rowcount
