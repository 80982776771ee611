import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.db.change_feed import ChangeFeedUnavailable, InMemoryChangeFeed, change_feed

logger = logging.getLogger(__name__)


class DuplicateRowError(ValueError):
    """Нарушение ограничения уникальности"""


class Repository:
    """Общая часть репозиториев: коммит по строке и публикация в ленту"""

    model = None

    def __init__(self, session: AsyncSession, feed: Optional[InMemoryChangeFeed] = None):
        self.session = session
        self.feed = feed if feed is not None else change_feed

    @staticmethod
    def _row(db_obj) -> Dict[str, Any]:
        return {column.name: getattr(db_obj, column.name) for column in db_obj.__table__.columns}

    async def _publish(self, operation: str, rows: List[Dict[str, Any]]) -> None:
        # Запись уже зафиксирована, недоступность ленты ее не отменяет
        try:
            for row in rows:
                await self.feed.publish(operation, self.model.__tablename__, row)
        except ChangeFeedUnavailable as e:
            logger.warning(f"Change feed unavailable, {operation} on {self.model.__tablename__} not published: {e}")

    async def _insert(self, db_obj, duplicate_message: str):
        self.session.add(db_obj)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise DuplicateRowError(duplicate_message)

        await self.session.refresh(db_obj)
        await self._publish("insert", [self._row(db_obj)])
        return db_obj

    async def _save(self, db_obj):
        """Коммит изменений уже загруженной строки"""
        await self.session.commit()
        await self.session.refresh(db_obj)
        await self._publish("update", [self._row(db_obj)])
        return db_obj

    async def _delete_where(self, *conditions) -> int:
        """Удаление по условию с публикацией удаленных строк"""
        result = await self.session.execute(select(self.model).where(*conditions))
        rows = [self._row(db_obj) for db_obj in result.scalars().all()]
        if not rows:
            return 0

        await self.session.execute(delete(self.model).where(*conditions))
        await self.session.commit()
        await self._publish("delete", rows)
        return len(rows)
