"""Типизированные результаты операций.

Мутирующие операции сервисов не бросают исключения на нарушения доступа
и состояний: они возвращают ``OperationResult`` со статусом, который
HTTP-слой однозначно переводит в код ответа.
"""
import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError

from docpilot.db.change_feed import ChangeFeedUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResultStatus(str, Enum):
    OK = "ok"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_MEMBER = "already_member"
    DUPLICATE_INVITATION = "duplicate_invitation"
    CONFLICT = "conflict"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"
    INVALID = "invalid"


@dataclass
class OperationResult(Generic[T]):
    status: ResultStatus
    value: Optional[T] = None
    message: str = ""
    warnings: List[str] = field(default_factory=list)
    failed_step: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.OK

    @classmethod
    def success(cls, value: Optional[T] = None, message: str = "", warnings: Optional[List[str]] = None):
        return cls(ResultStatus.OK, value=value, message=message, warnings=list(warnings or []))

    @classmethod
    def failure(cls, status: ResultStatus, message: str, failed_step: Optional[str] = None):
        return cls(status, message=message, failed_step=failed_step)

    @classmethod
    def permission_denied(cls, message: str = "Insufficient role for this action"):
        return cls.failure(ResultStatus.PERMISSION_DENIED, message)

    @classmethod
    def not_found(cls, message: str = "Not found"):
        return cls.failure(ResultStatus.NOT_FOUND, message)


DEPENDENCY_ERRORS = (OperationalError, InterfaceError, ChangeFeedUnavailable, ConnectionError)


def guard_dependencies(func):
    """Недоступность хранилища или ленты превращается в dependency_unavailable"""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DEPENDENCY_ERRORS as e:
            logger.error(f"{func.__qualname__}: dependency unavailable: {e}")
            return OperationResult.failure(
                ResultStatus.DEPENDENCY_UNAVAILABLE,
                "Backing store or change feed is unavailable"
            )

    return wrapper
