from typing import Optional
import uuid

from sqlalchemy import select

from docpilot.db.models.user import User as UserModel
from docpilot.db.repositories.base import Repository
from docpilot.domains.identity.entities import User


class UserRepository(Repository):
    """Репозиторий для работы с пользователями"""

    model = UserModel

    async def create(self, user: User) -> User:
        """Создание нового пользователя"""
        db_user = UserModel(
            uuid=user.uuid,
            email=user.email,
            display_name=user.display_name
        )
        db_user = await self._insert(db_user, "User with this id or email already exists")
        return self._to_domain(db_user)

    async def get_by_uuid(self, user_uuid: uuid.UUID) -> Optional[User]:
        """Получение пользователя по UUID"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.uuid == user_uuid)
        )
        db_user = result.scalar_one_or_none()
        return self._to_domain(db_user) if db_user else None

    async def get_by_email(self, email: str) -> Optional[User]:
        """Получение пользователя по email"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.email == User.normalize_email(email))
        )
        db_user = result.scalar_one_or_none()
        return self._to_domain(db_user) if db_user else None

    async def update(self, user: User) -> User:
        """Обновление профиля; идентичность не меняется"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.uuid == user.uuid)
        )
        db_user = result.scalar_one()
        db_user.display_name = user.display_name
        db_user.updated_at = user.updated_at
        return self._to_domain(await self._save(db_user))

    def _to_domain(self, db_user: UserModel) -> User:
        """Преобразование модели БД в доменную сущность"""
        return User(
            uuid=db_user.uuid,
            email=db_user.email,
            display_name=db_user.display_name,
            created_at=db_user.created_at,
            updated_at=db_user.updated_at
        )
