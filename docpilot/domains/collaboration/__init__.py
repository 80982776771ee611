from docpilot.domains.collaboration.entities import (
    EditSession, ExternalChange, ReconcileOutcome, SessionState
)
from docpilot.domains.collaboration.notifications import (
    ChangeNotification, ChangeNotificationAdapter, CollaboratorChange, FileChange, InvitationChange
)

__all__ = [
    "EditSession", "ExternalChange", "ReconcileOutcome", "SessionState",
    "ChangeNotification", "ChangeNotificationAdapter", "CollaboratorChange", "FileChange", "InvitationChange"
]
