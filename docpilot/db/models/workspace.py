from sqlalchemy import JSON, UUID, Boolean, Column, ForeignKey, String, Text, UniqueConstraint

from docpilot.db.base import BaseModel


class Workspace(BaseModel):
    __tablename__ = "workspaces"

    name = Column(String(255), nullable=False)
    owner_id = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=False, index=True)
    description = Column(Text, nullable=True)


class Collaborator(BaseModel):
    __tablename__ = "collaborators"
    __table_args__ = (UniqueConstraint("workspace_id", "user_id", name="uq_collaborators_workspace_user"),)

    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.uuid"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="editor")


class WorkspaceRequest(BaseModel):
    __tablename__ = "workspace_requests"
    __table_args__ = (UniqueConstraint("workspace_id", "requester_id", name="uq_workspace_requests_requester"),)

    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.uuid"), nullable=False, index=True)
    requester_id = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=False)
    message = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending")


class WorkspaceActivity(BaseModel):
    __tablename__ = "workspace_activity"

    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.uuid"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=False)
    action = Column(String(50), nullable=False)  # invited, joined, left, removed, role_changed
    target_user_id = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=True)
    details = Column(JSON, nullable=True)


class ChatMessage(BaseModel):
    __tablename__ = "chat_messages"

    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.uuid"), nullable=False, index=True)
    sender_id = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=False)
    content = Column(Text, nullable=False)
    is_ai = Column(Boolean, default=False, nullable=False)
