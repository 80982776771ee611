import logging
from typing import List, Optional
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.core.results import DEPENDENCY_ERRORS, OperationResult, ResultStatus, guard_dependencies
from docpilot.db.change_feed import InMemoryChangeFeed
from docpilot.db.repositories.base import DuplicateRowError
from docpilot.db.repositories.document_repository import FileRepository, FileVersionRepository
from docpilot.db.repositories.invitation_repository import InvitationRepository
from docpilot.db.repositories.user_repository import UserRepository
from docpilot.db.repositories.workspace_repository import (
    ActivityRepository, ChatMessageRepository, CollaboratorRepository,
    WorkspaceRepository, WorkspaceRequestRepository
)
from docpilot.domains.access.entities import Action, Role
from docpilot.domains.access.services import AccessControlService
from docpilot.domains.invitations.services import InvitationService
from docpilot.domains.workspaces.entities import ActivityEntry, ChatMessage, Collaborator, Workspace

logger = logging.getLogger(__name__)


class WorkspaceService:
    """Сервис рабочих пространств и их участников"""

    def __init__(self, session: AsyncSession, feed: Optional[InMemoryChangeFeed] = None):
        self.session = session
        self.feed = feed
        self.workspace_repository = WorkspaceRepository(session, feed)
        self.collaborator_repository = CollaboratorRepository(session, feed)
        self.user_repository = UserRepository(session, feed)
        self.activity_repository = ActivityRepository(session, feed)
        self.access = AccessControlService(session, feed)
        self.invitations = InvitationService(session, feed)

    @guard_dependencies
    async def create_workspace(
        self,
        owner_id: uuid.UUID,
        name: str,
        description: Optional[str] = None
    ) -> OperationResult[Workspace]:
        """Создание пространства вместе со строкой соавтора-владельца"""
        if not name or not name.strip():
            return OperationResult.failure(ResultStatus.INVALID, "Workspace name cannot be empty")

        try:
            workspace = await self.workspace_repository.create(
                Workspace.create_workspace(name=name, owner_id=owner_id, description=description)
            )
        except DuplicateRowError as e:
            return OperationResult.failure(ResultStatus.INVALID, str(e))

        try:
            await self.collaborator_repository.create(
                Collaborator.create_collaborator(workspace.uuid, owner_id, Role.OWNER)
            )
        except (DuplicateRowError, *DEPENDENCY_ERRORS) as e:
            # Без строки владельца пространство не создается
            logger.error(f"Owner collaborator for workspace {workspace.uuid} not created, rolling back: {e}")
            await self.session.rollback()
            await self.workspace_repository.delete(workspace.uuid, owner_id)
            return OperationResult.failure(ResultStatus.CONFLICT, "Failed to create workspace membership")

        logger.info(f"Workspace {workspace.uuid} created by {owner_id}")
        return OperationResult.success(workspace)

    async def list_workspaces(self, user_id: uuid.UUID) -> List[Workspace]:
        """Пространства, видимые пользователю"""
        return await self.workspace_repository.get_visible(user_id)

    @guard_dependencies
    async def load_workspace(self, actor_id: uuid.UUID, workspace_id: uuid.UUID) -> OperationResult[Workspace]:
        """Открытие пространства с восстановлением строки владельца"""
        if not await self.access.is_visible(actor_id, workspace_id):
            return OperationResult.not_found("Workspace not found")

        await self.access.ensure_owner_collaborator(workspace_id)
        return OperationResult.success(await self.workspace_repository.get_by_uuid(workspace_id))

    @guard_dependencies
    async def list_collaborators(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID
    ) -> OperationResult[List[Collaborator]]:
        if not await self.access.can_perform(actor_id, workspace_id, Action.READ_COLLABORATORS):
            return OperationResult.not_found("Workspace not found")
        return OperationResult.success(await self.collaborator_repository.get_by_workspace(workspace_id))

    @guard_dependencies
    async def add_collaborator(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID,
        email: str,
        role: Role = Role.EDITOR
    ) -> OperationResult[Collaborator]:
        """Прямое добавление зарегистрированного пользователя"""
        if not await self.access.can_perform(actor_id, workspace_id, Action.MANAGE_COLLABORATORS):
            return OperationResult.permission_denied("Only the workspace owner can manage collaborators")

        user = await self.user_repository.get_by_email(email)
        if user is None:
            return OperationResult.not_found(f"No user with email {email}; send an invitation instead")

        if await self.collaborator_repository.get(workspace_id, user.uuid):
            return OperationResult.failure(ResultStatus.ALREADY_MEMBER, f"{user.email} is already a member")

        try:
            collaborator = await self.collaborator_repository.create(
                Collaborator.create_collaborator(workspace_id, user.uuid, role)
            )
        except DuplicateRowError:
            return OperationResult.failure(ResultStatus.ALREADY_MEMBER, f"{user.email} is already a member")

        await self.invitations.retire_pending_for(workspace_id, user.email, user.uuid)
        await self._record(workspace_id, actor_id, ActivityEntry.JOINED, user.uuid, {"role": Role(role).value})
        logger.info(f"User {user.uuid} added to workspace {workspace_id} as {Role(role).value}")
        return OperationResult.success(collaborator)

    @guard_dependencies
    async def change_role(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID,
        user_id: uuid.UUID,
        role: Role
    ) -> OperationResult[Collaborator]:
        if not await self.access.can_perform(actor_id, workspace_id, Action.MANAGE_COLLABORATORS):
            return OperationResult.permission_denied("Only the workspace owner can manage collaborators")

        workspace = await self.workspace_repository.get_by_uuid(workspace_id)
        if workspace.is_owner(user_id):
            return OperationResult.failure(ResultStatus.CONFLICT, "The workspace owner's role cannot be changed")

        collaborator = await self.collaborator_repository.update_role(workspace_id, user_id, role)
        if collaborator is None:
            return OperationResult.not_found("Collaborator not found")

        await self._record(workspace_id, actor_id, ActivityEntry.ROLE_CHANGED, user_id, {"role": Role(role).value})
        return OperationResult.success(collaborator)

    @guard_dependencies
    async def remove_collaborator(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID,
        user_id: uuid.UUID
    ) -> OperationResult[None]:
        if not await self.access.can_perform(actor_id, workspace_id, Action.MANAGE_COLLABORATORS):
            return OperationResult.permission_denied("Only the workspace owner can manage collaborators")

        workspace = await self.workspace_repository.get_by_uuid(workspace_id)
        if workspace.is_owner(user_id):
            return OperationResult.failure(ResultStatus.CONFLICT, "The workspace owner cannot be removed")

        if not await self.collaborator_repository.delete(workspace_id, user_id):
            return OperationResult.not_found("Collaborator not found")

        await self.invitations.on_collaborator_removed(workspace_id, user_id)
        await self._record(workspace_id, actor_id, ActivityEntry.REMOVED, user_id)
        logger.info(f"User {user_id} removed from workspace {workspace_id}")
        return OperationResult.success()

    @guard_dependencies
    async def leave_workspace(self, actor_id: uuid.UUID, workspace_id: uuid.UUID) -> OperationResult[None]:
        workspace = await self.workspace_repository.get_by_uuid(workspace_id)
        if workspace is None:
            return OperationResult.not_found("Workspace not found")
        if workspace.is_owner(actor_id):
            return OperationResult.failure(ResultStatus.CONFLICT, "The owner cannot leave; delete the workspace instead")

        if not await self.collaborator_repository.delete(workspace_id, actor_id):
            return OperationResult.not_found("Workspace not found")

        await self.invitations.on_collaborator_removed(workspace_id, actor_id)
        await self._record(workspace_id, actor_id, ActivityEntry.LEFT)
        return OperationResult.success()

    @guard_dependencies
    async def list_activity(self, actor_id: uuid.UUID, workspace_id: uuid.UUID) -> OperationResult[List[ActivityEntry]]:
        if not await self.access.can_perform(actor_id, workspace_id, Action.READ_COLLABORATORS):
            return OperationResult.not_found("Workspace not found")
        return OperationResult.success(await self.activity_repository.get_by_workspace(workspace_id))

    async def delete_workspace(self, actor_id: uuid.UUID, workspace_id: uuid.UUID) -> OperationResult[None]:
        """Удаление пространства и всех зависимых строк по порядку.

        Каждый шаг удаляет по идентификатору родителя, поэтому после сбоя
        операцию можно безопасно повторить.
        """
        try:
            snapshot = await self.access.snapshot(workspace_id)
        except DEPENDENCY_ERRORS as e:
            logger.error(f"Workspace {workspace_id} deletion: dependency unavailable: {e}")
            return OperationResult.failure(ResultStatus.DEPENDENCY_UNAVAILABLE, "Backing store is unavailable")

        if snapshot is None or not snapshot.is_visible_to(actor_id):
            return OperationResult.not_found("Workspace not found")
        if snapshot.owner_id != actor_id:
            return OperationResult.permission_denied("Only the workspace owner can delete it")

        file_repository = FileRepository(self.session, self.feed)
        version_repository = FileVersionRepository(self.session, self.feed)
        chat_repository = ChatMessageRepository(self.session, self.feed)
        invitation_repository = InvitationRepository(self.session, self.feed)
        request_repository = WorkspaceRequestRepository(self.session, self.feed)

        async def delete_versions():
            return await version_repository.delete_by_files(
                await file_repository.get_ids_by_workspace(workspace_id)
            )

        steps = [
            ("file_versions", delete_versions),
            ("files", lambda: file_repository.delete_by_workspace(workspace_id)),
            ("chat_messages", lambda: chat_repository.delete_by_workspace(workspace_id)),
            ("workspace_activity", lambda: self.activity_repository.delete_by_workspace(workspace_id)),
            ("workspace_invitations", lambda: invitation_repository.delete_by_workspace(workspace_id)),
            ("workspace_requests", lambda: request_repository.delete_by_workspace(workspace_id)),
            ("collaborators", lambda: self.collaborator_repository.delete_by_workspace(workspace_id)),
            ("workspace", lambda: self.workspace_repository.delete(workspace_id, actor_id)),
        ]

        for step, run in steps:
            try:
                deleted = await run()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error(f"Workspace {workspace_id} deletion failed at step '{step}': {e}")
                return OperationResult.failure(
                    ResultStatus.DEPENDENCY_UNAVAILABLE,
                    f"Deletion failed while removing {step}; retry is safe",
                    failed_step=step
                )
            logger.debug(f"Workspace {workspace_id} deletion: {step} -> {deleted}")

            if step == "workspace" and not deleted:
                return OperationResult.failure(
                    ResultStatus.CONFLICT, "Workspace ownership changed during deletion", failed_step=step
                )

        logger.info(f"Workspace {workspace_id} deleted by {actor_id}")
        return OperationResult.success()

    async def _record(self, workspace_id, user_id, action, target_user_id=None, details=None) -> None:
        """Журнал активности ведется по возможности"""
        try:
            await self.activity_repository.record(
                ActivityEntry(workspace_id, user_id, action, target_user_id=target_user_id, details=details)
            )
        except (SQLAlchemyError, DuplicateRowError) as e:
            await self.session.rollback()
            logger.warning(f"Activity '{action}' for workspace {workspace_id} not recorded: {e}")


class ChatService:
    """Сообщения чата пространства"""

    def __init__(self, session: AsyncSession, feed: Optional[InMemoryChangeFeed] = None):
        self.session = session
        self.message_repository = ChatMessageRepository(session, feed)
        self.access = AccessControlService(session, feed)

    @guard_dependencies
    async def send_message(
        self,
        sender_id: uuid.UUID,
        workspace_id: uuid.UUID,
        content: str
    ) -> OperationResult[ChatMessage]:
        if not await self.access.can_perform(sender_id, workspace_id, Action.SEND_MESSAGE):
            return OperationResult.permission_denied("Viewers cannot send messages")
        if not content or not content.strip():
            return OperationResult.failure(ResultStatus.INVALID, "Message cannot be empty")

        message = ChatMessage.create_message(workspace_id, sender_id, content)
        return OperationResult.success(await self.message_repository.create(message))

    @guard_dependencies
    async def list_messages(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID,
        limit: int = 100,
        offset: int = 0
    ) -> OperationResult[List[ChatMessage]]:
        if not await self.access.can_perform(actor_id, workspace_id, Action.READ_MESSAGES):
            return OperationResult.not_found("Workspace not found")
        return OperationResult.success(await self.message_repository.get_by_workspace(workspace_id, limit, offset))

    @guard_dependencies
    async def clear_history(self, actor_id: uuid.UUID, workspace_id: uuid.UUID) -> OperationResult[int]:
        if not await self.access.can_perform(actor_id, workspace_id, Action.CLEAR_CHAT_HISTORY):
            return OperationResult.permission_denied("Only the workspace owner can clear chat history")

        deleted = await self.message_repository.delete_by_workspace(workspace_id)
        logger.info(f"Chat history of workspace {workspace_id} cleared ({deleted} messages)")
        return OperationResult.success(deleted)
