from docpilot.domains.invitations.entities import (
    Invitation, InvitationStatus, InvalidTransition, PendingInvitationBoard
)
from docpilot.domains.invitations.schemas import (
    InvitationCreate, InvitationResponse, InvitationCreatedResponse, InvitationAccepted
)

__all__ = [
    "Invitation", "InvitationStatus", "InvalidTransition", "PendingInvitationBoard",
    "InvitationCreate", "InvitationResponse", "InvitationCreatedResponse", "InvitationAccepted"
]
