import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.core.config import settings
from docpilot.core.results import OperationResult, ResultStatus, guard_dependencies
from docpilot.db.change_feed import InMemoryChangeFeed
from docpilot.db.repositories.base import DuplicateRowError
from docpilot.db.repositories.invitation_repository import InvitationRepository
from docpilot.db.repositories.user_repository import UserRepository
from docpilot.db.repositories.workspace_repository import (
    ActivityRepository, CollaboratorRepository, WorkspaceRepository
)
from docpilot.domains.access.entities import Action, Role
from docpilot.domains.access.services import AccessControlService
from docpilot.domains.identity.entities import User
from docpilot.domains.invitations.email import ResendEmailSender, build_invitation_email
from docpilot.domains.invitations.entities import Invitation, InvitationStatus, PendingInvitationBoard
from docpilot.domains.workspaces.entities import ActivityEntry, Collaborator

logger = logging.getLogger(__name__)


@dataclass
class InvitationCreated:
    invitation: Invitation
    link: str
    email_sent: bool = False


@dataclass
class SweepReport:
    expired: int = 0
    purged: int = 0
    details: List[str] = field(default_factory=list)


class InvitationService:
    """Жизненный цикл приглашений: создание, принятие, отклонение, истечение"""

    def __init__(
        self,
        session: AsyncSession,
        feed: Optional[InMemoryChangeFeed] = None,
        email_sender: Optional[ResendEmailSender] = None
    ):
        self.session = session
        self.invitation_repository = InvitationRepository(session, feed)
        self.workspace_repository = WorkspaceRepository(session, feed)
        self.collaborator_repository = CollaboratorRepository(session, feed)
        self.user_repository = UserRepository(session, feed)
        self.activity_repository = ActivityRepository(session, feed)
        self.access = AccessControlService(session, feed)
        self.email_sender = email_sender or ResendEmailSender()
        self.ttl_days = settings.invitation_ttl_days

    @guard_dependencies
    async def create_invitation(
        self,
        inviter_id: uuid.UUID,
        workspace_id: uuid.UUID,
        invitee_email: str,
        role: Role = Role.EDITOR,
        now: Optional[datetime] = None
    ) -> OperationResult[InvitationCreated]:
        """Создание приглашения и попытка отправить письмо"""
        now = now or datetime.utcnow()

        if not await self.access.can_perform(inviter_id, workspace_id, Action.MANAGE_COLLABORATORS):
            return OperationResult.permission_denied("Only the workspace owner can invite members")

        email = User.normalize_email(invitee_email)
        if "@" not in email:
            return OperationResult.failure(ResultStatus.INVALID, "Invalid email address")
        try:
            role = Role(role)
        except ValueError:
            return OperationResult.failure(ResultStatus.INVALID, f"Unknown role: {role}")

        workspace = await self.workspace_repository.get_by_uuid(workspace_id)
        if workspace is None:
            return OperationResult.not_found("Workspace not found")
        owner = await self.user_repository.get_by_uuid(workspace.owner_id)
        if (owner and owner.email == email) or await self.collaborator_repository.get_by_email(workspace_id, email):
            return OperationResult.failure(ResultStatus.ALREADY_MEMBER, f"{email} is already a member of this workspace")

        for existing in await self.invitation_repository.get_for_email(workspace_id, email):
            if existing.is_active(now):
                return OperationResult.failure(
                    ResultStatus.DUPLICATE_INVITATION,
                    f"A pending invitation for {email} already exists"
                )
            # Завершенные строки не должны мешать новому приглашению
            await self.invitation_repository.delete(existing.uuid)

        invitation = Invitation.create_invitation(
            workspace_id=workspace_id,
            inviter_id=inviter_id,
            invitee_email=email,
            role=role,
            ttl_days=self.ttl_days,
            now=now
        )
        invitee = await self.user_repository.get_by_email(email)
        if invitee:
            invitation.invitee_id = invitee.uuid

        try:
            invitation = await self.invitation_repository.create(invitation)
        except DuplicateRowError:
            logger.warning(f"Lost race creating invitation for {email} in workspace {workspace_id}")
            return OperationResult.failure(
                ResultStatus.DUPLICATE_INVITATION,
                f"A pending invitation for {email} already exists"
            )

        logger.info(f"Invitation {invitation.uuid} created for {email} in workspace {workspace_id}")
        await self._record(workspace_id, inviter_id, ActivityEntry.INVITED, invitee.uuid if invitee else None,
                           {"email": email, "role": role.value})

        link = invitation.link(settings.app_origin)
        created = InvitationCreated(invitation=invitation, link=link)
        warnings = []

        inviter = await self.user_repository.get_by_uuid(inviter_id)
        message = build_invitation_email(
            invitee_email=email,
            inviter_name=inviter.name if inviter else "A DocPilot user",
            workspace_name=workspace.name,
            role=role.value,
            link=link,
            ttl_days=self.ttl_days
        )
        try:
            delivery = await self.email_sender.send(message)
        except Exception as e:
            logger.warning(f"Email sender failed for invitation {invitation.uuid}: {e}")
            warnings.append(f"Invitation email was not sent: {e}")
        else:
            created.email_sent = delivery.success
            if not delivery.success:
                warnings.append(f"Invitation email was not sent: {delivery.error}")

        return OperationResult.success(created, warnings=warnings)

    @guard_dependencies
    async def resolve_by_token(self, token: str, now: Optional[datetime] = None) -> OperationResult[Invitation]:
        """Поиск действующего приглашения по токену из ссылки"""
        now = now or datetime.utcnow()

        invitation = await self.invitation_repository.get_by_token(token)
        if invitation is None:
            return OperationResult.not_found("Invitation not found")

        if invitation.is_expired(now):
            await self._mark_expired(invitation, now)
            return OperationResult.failure(ResultStatus.EXPIRED, "Invitation has expired")

        # Завершенные приглашения по токену не раскрываются
        if not invitation.is_pending:
            return OperationResult.not_found("Invitation not found")

        return OperationResult.success(invitation)

    @guard_dependencies
    async def accept(
        self,
        invitation_id: uuid.UUID,
        user_id: uuid.UUID,
        now: Optional[datetime] = None
    ) -> OperationResult[Collaborator]:
        """Принятие приглашения; повторный вызов тем же пользователем безопасен"""
        now = now or datetime.utcnow()

        invitation = await self.invitation_repository.get_by_uuid(invitation_id)
        if invitation is None:
            return OperationResult.not_found("Invitation not found")

        if invitation.status is InvitationStatus.ACCEPTED:
            if invitation.invitee_id != user_id:
                return OperationResult.failure(ResultStatus.CONFLICT, "Invitation was accepted by another user")
            collaborator = await self.collaborator_repository.get(invitation.workspace_id, user_id)
            if collaborator is None:
                return OperationResult.not_found("Membership no longer exists")
            return OperationResult.success(collaborator, message="Invitation already accepted")

        if invitation.status is InvitationStatus.DECLINED:
            return OperationResult.failure(ResultStatus.CONFLICT, "Invitation was declined")
        if invitation.status is InvitationStatus.EXPIRED:
            return OperationResult.failure(ResultStatus.EXPIRED, "Invitation has expired")
        if invitation.is_expired(now):
            await self._mark_expired(invitation, now)
            return OperationResult.failure(ResultStatus.EXPIRED, "Invitation has expired")

        if invitation.invitee_id is not None and invitation.invitee_id != user_id:
            return OperationResult.permission_denied("Invitation belongs to another account")

        if await self.workspace_repository.get_by_uuid(invitation.workspace_id) is None:
            return OperationResult.not_found("Workspace not found")

        joined = False
        collaborator = await self.collaborator_repository.get(invitation.workspace_id, user_id)
        if collaborator is None:
            try:
                collaborator = await self.collaborator_repository.create(
                    Collaborator.create_collaborator(invitation.workspace_id, user_id, invitation.role)
                )
                joined = True
            except DuplicateRowError:
                # Параллельное принятие уже добавило соавтора
                logger.warning(f"Concurrent accept of invitation {invitation.uuid}, treating as idempotent")
                collaborator = await self.collaborator_repository.get(invitation.workspace_id, user_id)

        invitation.accept(user_id, now)
        await self.invitation_repository.update(invitation)
        logger.info(f"Invitation {invitation.uuid} accepted by {user_id}")

        if joined:
            await self._record(invitation.workspace_id, user_id, ActivityEntry.JOINED, None,
                               {"role": invitation.role.value, "invitation_id": invitation.uuid})
        return OperationResult.success(collaborator)

    @guard_dependencies
    async def decline(
        self,
        invitation_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None
    ) -> OperationResult[Invitation]:
        """Отклонение приглашения; повторное отклонение ничего не меняет"""
        now = now or datetime.utcnow()

        invitation = await self.invitation_repository.get_by_uuid(invitation_id)
        if invitation is None:
            return OperationResult.not_found("Invitation not found")
        if user_id is not None and invitation.invitee_id is not None and invitation.invitee_id != user_id:
            return OperationResult.permission_denied("Invitation belongs to another account")

        if invitation.status is InvitationStatus.DECLINED:
            return OperationResult.success(invitation, message="Invitation already declined")
        if invitation.status is InvitationStatus.ACCEPTED:
            return OperationResult.failure(ResultStatus.CONFLICT, "Invitation was already accepted")
        if invitation.status is InvitationStatus.EXPIRED:
            return OperationResult.failure(ResultStatus.EXPIRED, "Invitation has expired")
        if invitation.is_expired(now):
            await self._mark_expired(invitation, now)
            return OperationResult.failure(ResultStatus.EXPIRED, "Invitation has expired")

        invitation.decline(now)
        invitation = await self.invitation_repository.update(invitation)
        logger.info(f"Invitation {invitation.uuid} declined")
        return OperationResult.success(invitation)

    @guard_dependencies
    async def expire_sweep(self, now: Optional[datetime] = None) -> OperationResult[SweepReport]:
        """Массовое истечение pending-приглашений и очистка старых expired"""
        now = now or datetime.utcnow()

        report = SweepReport()
        report.expired = await self.invitation_repository.expire_pending(now)
        retention = timedelta(days=settings.expired_invitation_retention_days)
        report.purged = await self.invitation_repository.purge_expired(now - retention)

        if report.expired or report.purged:
            logger.info(f"Invitation sweep: {report.expired} expired, {report.purged} purged")
        return OperationResult.success(report)

    async def on_collaborator_removed(self, workspace_id: uuid.UUID, user_id: uuid.UUID) -> int:
        """Удаление приглашений бывшего соавтора, чтобы его можно было пригласить снова"""
        user = await self.user_repository.get_by_uuid(user_id)
        deleted = await self.invitation_repository.delete_for_member(
            workspace_id, user_id, user.email if user else None
        )
        if deleted:
            logger.info(f"Removed {deleted} invitation(s) of {user_id} in workspace {workspace_id}")
        return deleted

    async def on_user_first_seen(self, user_id: uuid.UUID, email: str) -> int:
        """Привязка ожидающих приглашений к новому пользователю без вступления"""
        linked = await self.invitation_repository.link_invitee(email, user_id)
        if linked:
            logger.info(f"Linked {linked} pending invitation(s) to new user {user_id}")
        return linked

    async def retire_pending_for(self, workspace_id: uuid.UUID, email: str, user_id: uuid.UUID) -> int:
        """Пользователь добавлен напрямую: его pending-приглашение считается принятым"""
        retired = 0
        for invitation in await self.invitation_repository.get_for_email(workspace_id, email):
            if not invitation.is_pending:
                continue
            invitation.status = InvitationStatus.ACCEPTED
            invitation.invitee_id = user_id
            invitation.updated_at = datetime.utcnow()
            await self.invitation_repository.update(invitation)
            retired += 1
        return retired

    @guard_dependencies
    async def list_pending_for_email(self, email: str, now: Optional[datetime] = None) -> OperationResult[List[Invitation]]:
        """Входящие приглашения; просроченные попутно переводятся в expired"""
        now = now or datetime.utcnow()
        await self.invitation_repository.expire_pending(now)
        return OperationResult.success(await self.invitation_repository.get_pending_for_email(email, now))

    @guard_dependencies
    async def list_workspace_invitations(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID
    ) -> OperationResult[List[Invitation]]:
        if not await self.access.can_perform(actor_id, workspace_id, Action.INVITE_MEMBERS):
            return OperationResult.permission_denied("Only the workspace owner can view invitations")
        return OperationResult.success(await self.invitation_repository.get_by_workspace(workspace_id))

    async def refresh_board(self, board: PendingInvitationBoard, now: Optional[datetime] = None) -> PendingInvitationBoard:
        """Повторная загрузка входящих как синтетические уведомления"""
        board.load(await self.invitation_repository.get_pending_for_email(board.email, now))
        return board

    async def _mark_expired(self, invitation: Invitation, now: datetime) -> None:
        invitation.expire(now)
        await self.invitation_repository.update(invitation)
        logger.info(f"Invitation {invitation.uuid} expired")

    async def _record(self, workspace_id, user_id, action, target_user_id=None, details=None) -> None:
        """Журнал активности ведется по возможности"""
        try:
            await self.activity_repository.record(
                ActivityEntry(workspace_id, user_id, action, target_user_id=target_user_id, details=details)
            )
        except (SQLAlchemyError, DuplicateRowError) as e:
            await self.session.rollback()
            logger.warning(f"Activity '{action}' for workspace {workspace_id} not recorded: {e}")
