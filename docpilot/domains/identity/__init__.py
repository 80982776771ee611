from docpilot.domains.identity.entities import User
from docpilot.domains.identity.schemas import UserResponse, UserUpdate

__all__ = ["User", "UserResponse", "UserUpdate"]
