import uuid
from datetime import datetime
from typing import Optional


class User:
    """Сущность пользователя домена Identity"""

    def __init__(
        self,
        uuid: uuid.UUID,
        email: str,
        display_name: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.uuid = uuid
        self.email = self.normalize_email(email)
        self.display_name = display_name
        self.created_at = created_at or datetime.utcnow()
        self.updated_at = updated_at or datetime.utcnow()

    @staticmethod
    def normalize_email(email: str) -> str:
        """Адреса сравниваются без учета регистра"""
        return (email or "").strip().lower()

    @property
    def name(self) -> str:
        return self.display_name or self.email.split("@")[0]

    def update_profile(self, display_name: Optional[str] = None) -> None:
        """Обновление профиля пользователя"""
        if display_name:
            self.display_name = display_name
        self.updated_at = datetime.utcnow()

    @classmethod
    def create_user(
        cls,
        email: str,
        display_name: Optional[str] = None,
        user_uuid: Optional[uuid.UUID] = None
    ) -> "User":
        """Создание пользователя при первой аутентификации"""
        return cls(
            uuid=user_uuid or uuid.uuid4(),
            email=email,
            display_name=display_name
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, User):
            return False
        return self.uuid == other.uuid

    def __repr__(self) -> str:
        return f"User(uuid={self.uuid}, email={self.email})"
