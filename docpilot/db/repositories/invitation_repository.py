from datetime import datetime
from typing import List, Optional
import uuid

from sqlalchemy import and_, or_, select

from docpilot.db.models.invitation import Invitation as InvitationModel
from docpilot.db.repositories.base import Repository
from docpilot.domains.access.entities import Role
from docpilot.domains.identity.entities import User
from docpilot.domains.invitations.entities import Invitation, InvitationStatus


class InvitationRepository(Repository):
    """Репозиторий для работы с приглашениями"""

    model = InvitationModel

    async def create(self, invitation: Invitation) -> Invitation:
        """Вставка приглашения; второй pending на тот же email отклоняется индексом"""
        db_invitation = InvitationModel(
            uuid=invitation.uuid,
            workspace_id=invitation.workspace_id,
            inviter_id=invitation.inviter_id,
            invitee_email=invitation.invitee_email,
            invitee_id=invitation.invitee_id,
            role=invitation.role.value,
            status=invitation.status.value,
            token=invitation.token,
            expires_at=invitation.expires_at,
            created_at=invitation.created_at,
            updated_at=invitation.updated_at
        )
        db_invitation = await self._insert(db_invitation, "A pending invitation already exists for this email")
        return self._to_domain(db_invitation)

    async def get_by_uuid(self, invitation_uuid: uuid.UUID) -> Optional[Invitation]:
        result = await self.session.execute(
            select(InvitationModel).where(InvitationModel.uuid == invitation_uuid)
        )
        db_invitation = result.scalar_one_or_none()
        return self._to_domain(db_invitation) if db_invitation else None

    async def get_by_token(self, token: str) -> Optional[Invitation]:
        result = await self.session.execute(
            select(InvitationModel).where(InvitationModel.token == token)
        )
        db_invitation = result.scalar_one_or_none()
        return self._to_domain(db_invitation) if db_invitation else None

    async def get_for_email(self, workspace_id: uuid.UUID, email: str) -> List[Invitation]:
        """Все приглашения адреса в пространство, в любом статусе"""
        result = await self.session.execute(
            select(InvitationModel)
            .where(
                and_(
                    InvitationModel.workspace_id == workspace_id,
                    InvitationModel.invitee_email == User.normalize_email(email)
                )
            )
            .order_by(InvitationModel.created_at.desc())
        )
        return [self._to_domain(db_invitation) for db_invitation in result.scalars().all()]

    async def get_by_workspace(self, workspace_id: uuid.UUID, limit: int = 100) -> List[Invitation]:
        result = await self.session.execute(
            select(InvitationModel)
            .where(InvitationModel.workspace_id == workspace_id)
            .order_by(InvitationModel.created_at.desc())
            .limit(limit)
        )
        return [self._to_domain(db_invitation) for db_invitation in result.scalars().all()]

    async def get_pending_for_email(self, email: str, now: Optional[datetime] = None) -> List[Invitation]:
        """Действующие входящие приглашения адреса"""
        now = now or datetime.utcnow()
        result = await self.session.execute(
            select(InvitationModel)
            .where(
                and_(
                    InvitationModel.invitee_email == User.normalize_email(email),
                    InvitationModel.status == InvitationStatus.PENDING.value,
                    InvitationModel.expires_at > now
                )
            )
            .order_by(InvitationModel.created_at.desc())
        )
        return [self._to_domain(db_invitation) for db_invitation in result.scalars().all()]

    async def update(self, invitation: Invitation) -> Invitation:
        """Сохранение статуса и привязки приглашенного"""
        result = await self.session.execute(
            select(InvitationModel).where(InvitationModel.uuid == invitation.uuid)
        )
        db_invitation = result.scalar_one()
        db_invitation.status = invitation.status.value
        db_invitation.invitee_id = invitation.invitee_id
        db_invitation.updated_at = invitation.updated_at
        return self._to_domain(await self._save(db_invitation))

    async def delete(self, invitation_uuid: uuid.UUID) -> bool:
        deleted = await self._delete_where(InvitationModel.uuid == invitation_uuid)
        return deleted > 0

    async def delete_for_member(self, workspace_id: uuid.UUID, user_id: uuid.UUID, email: Optional[str]) -> int:
        """Удаление приглашений пользователя в пространство в любом статусе"""
        match = InvitationModel.invitee_id == user_id
        if email:
            match = or_(match, InvitationModel.invitee_email == User.normalize_email(email))
        return await self._delete_where(InvitationModel.workspace_id == workspace_id, match)

    async def delete_by_workspace(self, workspace_id: uuid.UUID) -> int:
        return await self._delete_where(InvitationModel.workspace_id == workspace_id)

    async def expire_pending(self, now: datetime) -> int:
        """Перевод просроченных pending-приглашений в expired"""
        result = await self.session.execute(
            select(InvitationModel).where(
                and_(
                    InvitationModel.status == InvitationStatus.PENDING.value,
                    InvitationModel.expires_at < now
                )
            )
        )
        db_invitations = result.scalars().all()
        if not db_invitations:
            return 0

        for db_invitation in db_invitations:
            db_invitation.status = InvitationStatus.EXPIRED.value
            db_invitation.updated_at = now

        rows = [self._row(db_invitation) for db_invitation in db_invitations]
        await self.session.commit()
        await self._publish("update", rows)
        return len(db_invitations)

    async def purge_expired(self, before: datetime) -> int:
        """Удаление давно истекших приглашений"""
        return await self._delete_where(
            InvitationModel.status == InvitationStatus.EXPIRED.value,
            InvitationModel.updated_at < before
        )

    async def link_invitee(self, email: str, user_id: uuid.UUID) -> int:
        """Привязка pending-приглашений адреса к появившемуся пользователю"""
        result = await self.session.execute(
            select(InvitationModel).where(
                and_(
                    InvitationModel.invitee_email == User.normalize_email(email),
                    InvitationModel.invitee_id.is_(None),
                    InvitationModel.status == InvitationStatus.PENDING.value
                )
            )
        )
        db_invitations = result.scalars().all()
        if not db_invitations:
            return 0

        now = datetime.utcnow()
        for db_invitation in db_invitations:
            db_invitation.invitee_id = user_id
            db_invitation.updated_at = now

        rows = [self._row(db_invitation) for db_invitation in db_invitations]
        await self.session.commit()
        await self._publish("update", rows)
        return len(db_invitations)

    def _to_domain(self, db_invitation: InvitationModel) -> Invitation:
        """Преобразование модели БД в доменную сущность"""
        return Invitation(
            uuid=db_invitation.uuid,
            workspace_id=db_invitation.workspace_id,
            inviter_id=db_invitation.inviter_id,
            invitee_email=db_invitation.invitee_email,
            invitee_id=db_invitation.invitee_id,
            role=Role(db_invitation.role),
            status=InvitationStatus(db_invitation.status),
            token=db_invitation.token,
            expires_at=db_invitation.expires_at,
            created_at=db_invitation.created_at,
            updated_at=db_invitation.updated_at
        )
