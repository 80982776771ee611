from docpilot.api.http.users import router as users_router
from docpilot.api.http.workspaces import router as workspaces_router
from docpilot.api.http.invitations import router as invitations_router
from docpilot.api.http.documents import router as documents_router

__all__ = [
    "users_router",
    "workspaces_router",
    "invitations_router",
    "documents_router"
]
