import secrets
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional

from docpilot.domains.access.entities import Role
from docpilot.domains.identity.entities import User


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not InvitationStatus.PENDING


class InvalidTransition(ValueError):
    """Переход из терминального состояния приглашения"""


class Invitation:
    """Приглашение в пространство по email.

    Состояния меняются только вперед: pending -> accepted | declined | expired.
    """

    def __init__(
        self,
        uuid: uuid.UUID,
        workspace_id: uuid.UUID,
        inviter_id: uuid.UUID,
        invitee_email: str,
        role: Role,
        token: str,
        expires_at: datetime,
        status: InvitationStatus = InvitationStatus.PENDING,
        invitee_id: Optional[uuid.UUID] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.uuid = uuid
        self.workspace_id = workspace_id
        self.inviter_id = inviter_id
        self.invitee_email = User.normalize_email(invitee_email)
        self.invitee_id = invitee_id
        self.role = Role(role)
        self.status = InvitationStatus(status)
        self.token = token
        self.expires_at = expires_at
        self.created_at = created_at or datetime.utcnow()
        self.updated_at = updated_at or datetime.utcnow()

    @property
    def is_pending(self) -> bool:
        return self.status is InvitationStatus.PENDING

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Pending-приглашение, срок которого истек"""
        now = now or datetime.utcnow()
        return self.is_pending and self.expires_at < now

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.is_pending and not self.is_expired(now)

    def _transition(self, target: InvitationStatus, now: Optional[datetime] = None) -> None:
        if self.status.is_terminal:
            raise InvalidTransition(f"Invitation is already {self.status.value}")
        self.status = target
        self.updated_at = now or datetime.utcnow()

    def accept(self, user_id: uuid.UUID, now: Optional[datetime] = None) -> None:
        if self.is_expired(now):
            raise InvalidTransition("Invitation has expired")
        self._transition(InvitationStatus.ACCEPTED, now)
        self.invitee_id = user_id

    def decline(self, now: Optional[datetime] = None) -> None:
        if self.is_expired(now):
            raise InvalidTransition("Invitation has expired")
        self._transition(InvitationStatus.DECLINED, now)

    def expire(self, now: Optional[datetime] = None) -> None:
        self._transition(InvitationStatus.EXPIRED, now)

    def link(self, app_origin: str) -> str:
        """Ссылка, по которой приглашение открывается без email"""
        return f"{app_origin.rstrip('/')}/invite/{self.token}"

    @staticmethod
    def generate_token() -> str:
        return secrets.token_urlsafe(32)

    @classmethod
    def create_invitation(
        cls,
        workspace_id: uuid.UUID,
        inviter_id: uuid.UUID,
        invitee_email: str,
        role: Role,
        ttl_days: int = 7,
        now: Optional[datetime] = None
    ) -> "Invitation":
        """Создание нового pending-приглашения"""
        now = now or datetime.utcnow()
        return cls(
            uuid=uuid.uuid4(),
            workspace_id=workspace_id,
            inviter_id=inviter_id,
            invitee_email=invitee_email,
            role=role,
            token=cls.generate_token(),
            expires_at=now + timedelta(days=ttl_days),
            created_at=now,
            updated_at=now
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, Invitation):
            return False
        return self.uuid == other.uuid

    def __repr__(self) -> str:
        return (
            f"Invitation(uuid={self.uuid}, workspace_id={self.workspace_id}, "
            f"email={self.invitee_email}, status={self.status.value})"
        )


class PendingInvitationBoard:
    """Входящие приглашения пользователя в памяти сессии.

    Единственный путь обновления - ``apply``: и уведомления ленты, и
    повторная загрузка из хранилища проходят через него.
    """

    def __init__(self, email: str):
        self.email = User.normalize_email(email)
        self._invitations: Dict[uuid.UUID, Invitation] = {}

    def apply(self, operation: str, invitation: Invitation) -> bool:
        """Применение изменения строки; True если состав изменился"""
        if invitation.invitee_email != self.email:
            return False

        known = invitation.uuid in self._invitations
        if operation == "delete" or not invitation.is_pending:
            if known:
                del self._invitations[invitation.uuid]
            return known

        self._invitations[invitation.uuid] = invitation
        return not known

    def load(self, invitations: Iterable[Invitation]) -> None:
        """Повторная загрузка как набор синтетических уведомлений"""
        invitations = list(invitations)
        fresh = {invitation.uuid for invitation in invitations if invitation.invitee_email == self.email}
        for invitation_uuid in list(self._invitations):
            if invitation_uuid not in fresh:
                del self._invitations[invitation_uuid]
        for invitation in invitations:
            self.apply("update", invitation)

    def active(self, now: Optional[datetime] = None) -> List[Invitation]:
        invitations = [
            invitation for invitation in self._invitations.values()
            if invitation.is_active(now)
        ]
        return sorted(invitations, key=lambda invitation: invitation.created_at, reverse=True)

    def __len__(self) -> int:
        return len(self._invitations)
