from docpilot.db.repositories.base import DuplicateRowError, Repository
from docpilot.db.repositories.user_repository import UserRepository
from docpilot.db.repositories.workspace_repository import (
    WorkspaceRepository, CollaboratorRepository, ChatMessageRepository,
    ActivityRepository, WorkspaceRequestRepository
)
from docpilot.db.repositories.invitation_repository import InvitationRepository
from docpilot.db.repositories.document_repository import FileRepository, FileVersionRepository

__all__ = [
    "DuplicateRowError",
    "Repository",
    "UserRepository",
    "WorkspaceRepository",
    "CollaboratorRepository",
    "ChatMessageRepository",
    "ActivityRepository",
    "WorkspaceRequestRepository",
    "InvitationRepository",
    "FileRepository",
    "FileVersionRepository"
]
