import logging
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.core.db import get_db
from docpilot.core.security import verify_token
from docpilot.domains.identity.entities import User
from docpilot.domains.identity.services import EmailInUseError, IdentityService
from docpilot.domains.invitations.services import InvitationService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def authenticate(token: str, db: AsyncSession) -> User:
    """Пользователь из токена провайдера; новый пользователь создается"""
    payload = verify_token(token) if token else None
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    email = payload.get("email")
    if not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no email claim")

    try:
        user, created = await IdentityService(db).ensure_user(user_id, email, payload.get("name"))
    except EmailInUseError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if created:
        await InvitationService(db).on_user_first_seen(user.uuid, user.email)
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return await authenticate(credentials.credentials, db)
