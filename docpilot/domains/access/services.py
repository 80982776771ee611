import logging
from typing import Optional, Union
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.db.change_feed import InMemoryChangeFeed
from docpilot.db.repositories.base import DuplicateRowError
from docpilot.db.repositories.workspace_repository import CollaboratorRepository, WorkspaceRepository
from docpilot.domains.access.entities import AccessSnapshot, Action, Role, can_perform
from docpilot.domains.workspaces.entities import Collaborator

logger = logging.getLogger(__name__)


class AccessControlService:
    """Проверка прав по свежему снимку ролей пространства"""

    def __init__(self, session: AsyncSession, feed: Optional[InMemoryChangeFeed] = None):
        self.session = session
        self.workspace_repository = WorkspaceRepository(session, feed)
        self.collaborator_repository = CollaboratorRepository(session, feed)

    async def snapshot(self, workspace_id: uuid.UUID) -> Optional[AccessSnapshot]:
        """Снимок читается заново при каждом вызове"""
        workspace = await self.workspace_repository.get_by_uuid(workspace_id)
        if workspace is None:
            return None

        roles = await self.collaborator_repository.get_roles(workspace_id)
        return AccessSnapshot(workspace_id=workspace.uuid, owner_id=workspace.owner_id, roles=roles)

    async def can_perform(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID,
        action: Union[Action, str]
    ) -> bool:
        allowed = can_perform(await self.snapshot(workspace_id), actor_id, action)
        if not allowed:
            logger.debug(f"Denied {action} for {actor_id} in workspace {workspace_id}")
        return allowed

    async def is_visible(self, actor_id: uuid.UUID, workspace_id: uuid.UUID) -> bool:
        snapshot = await self.snapshot(workspace_id)
        return snapshot is not None and snapshot.is_visible_to(actor_id)

    async def ensure_owner_collaborator(self, workspace_id: uuid.UUID) -> bool:
        """Восстановление строки соавтора-владельца; True если она была создана"""
        workspace = await self.workspace_repository.get_by_uuid(workspace_id)
        if workspace is None:
            return False

        existing = await self.collaborator_repository.get(workspace_id, workspace.owner_id)
        if existing is not None:
            if existing.role is not Role.OWNER:
                await self.collaborator_repository.update_role(workspace_id, workspace.owner_id, Role.OWNER)
                logger.warning(f"Owner of workspace {workspace_id} had role {existing.role.value}, repaired")
            return False

        try:
            await self.collaborator_repository.create(
                Collaborator.create_collaborator(workspace_id, workspace.owner_id, Role.OWNER)
            )
        except DuplicateRowError:
            return False

        logger.warning(f"Owner collaborator row for workspace {workspace_id} was missing, repaired")
        return True
