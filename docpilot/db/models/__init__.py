from docpilot.db.models.user import User
from docpilot.db.models.workspace import (
    Workspace, Collaborator, WorkspaceRequest, WorkspaceActivity, ChatMessage
)
from docpilot.db.models.invitation import Invitation
from docpilot.db.models.document import File, FileVersion

__all__ = [
    "User",
    "Workspace",
    "Collaborator",
    "WorkspaceRequest",
    "WorkspaceActivity",
    "ChatMessage",
    "Invitation",
    "File",
    "FileVersion"
]
