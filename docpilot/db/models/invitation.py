from sqlalchemy import UUID, Column, DateTime, ForeignKey, Index, String, text

from docpilot.db.base import BaseModel


class Invitation(BaseModel):
    __tablename__ = "workspace_invitations"
    __table_args__ = (
        # Не более одного pending-приглашения на пару (workspace, email)
        Index(
            "uq_workspace_invitations_pending",
            "workspace_id",
            "invitee_email",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.uuid"), nullable=False, index=True)
    inviter_id = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=False)
    invitee_email = Column(String(255), nullable=False, index=True)
    invitee_id = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=True)
    role = Column(String(20), nullable=False, default="editor")
    status = Column(String(20), nullable=False, default="pending", index=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime, nullable=False)
