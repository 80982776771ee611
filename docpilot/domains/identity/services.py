import logging
from typing import Optional, Tuple
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.db.change_feed import InMemoryChangeFeed
from docpilot.db.repositories.base import DuplicateRowError
from docpilot.db.repositories.user_repository import UserRepository
from docpilot.domains.identity.entities import User

logger = logging.getLogger(__name__)


class EmailInUseError(ValueError):
    """Email уже принадлежит другому пользователю"""


class IdentityService:
    """Пользователи, пришедшие от внешнего провайдера аутентификации"""

    def __init__(self, session: AsyncSession, feed: Optional[InMemoryChangeFeed] = None):
        self.session = session
        self.user_repository = UserRepository(session, feed)

    async def ensure_user(
        self,
        user_id: uuid.UUID,
        email: str,
        display_name: Optional[str] = None
    ) -> Tuple[User, bool]:
        """Возвращает пользователя и признак того, что он создан сейчас"""
        user = await self.user_repository.get_by_uuid(user_id)
        if user:
            return user, False

        try:
            user = await self.user_repository.create(
                User.create_user(email=email, display_name=display_name, user_uuid=user_id)
            )
        except DuplicateRowError:
            # Параллельный первый запрос того же пользователя
            user = await self.user_repository.get_by_uuid(user_id)
            if user is None:
                logger.warning(f"Email {email} of new user {user_id} is already taken by another account")
                raise EmailInUseError(f"Email {email} is already used by another account")
            return user, False

        logger.info(f"User {user.uuid} ({user.email}) seen for the first time")
        return user, True

    async def update_profile(self, user_uuid: uuid.UUID, display_name: Optional[str]) -> Optional[User]:
        """Обновление профиля пользователя"""
        user = await self.user_repository.get_by_uuid(user_uuid)
        if not user:
            return None

        user.update_profile(display_name=display_name)
        return await self.user_repository.update(user)
