from typing import List, Optional
import uuid

from sqlalchemy import and_, func, select, update

from docpilot.db.models.document import File as FileModel, FileVersion as FileVersionModel
from docpilot.db.repositories.base import Repository
from docpilot.domains.documents.entities import File, FileVersion


class FileRepository(Repository):
    """Репозиторий для работы с файлами"""

    model = FileModel

    async def create(self, file: File) -> File:
        """Создание нового файла"""
        db_file = FileModel(
            uuid=file.uuid,
            workspace_id=file.workspace_id,
            filename=file.filename,
            content=file.content,
            file_type=file.file_type,
            created_by=file.created_by
        )
        db_file = await self._insert(db_file, "File already exists")
        return self._to_domain(db_file)

    async def get_by_uuid(self, file_uuid: uuid.UUID) -> Optional[File]:
        """Получение файла по UUID"""
        result = await self.session.execute(
            select(FileModel).where(FileModel.uuid == file_uuid)
        )
        db_file = result.scalar_one_or_none()
        return self._to_domain(db_file) if db_file else None

    async def get_by_workspace(self, workspace_id: uuid.UUID) -> List[File]:
        """Файлы пространства, последние измененные первыми"""
        result = await self.session.execute(
            select(FileModel)
            .where(FileModel.workspace_id == workspace_id)
            .order_by(FileModel.updated_at.desc())
        )
        return [self._to_domain(db_file) for db_file in result.scalars().all()]

    async def get_ids_by_workspace(self, workspace_id: uuid.UUID) -> List[uuid.UUID]:
        result = await self.session.execute(
            select(FileModel.uuid).where(FileModel.workspace_id == workspace_id)
        )
        return list(result.scalars().all())

    async def update_content(self, file_uuid: uuid.UUID, content: str) -> Optional[File]:
        """Запись содержимого; побеждает последняя запись"""
        result = await self.session.execute(
            select(FileModel).where(FileModel.uuid == file_uuid)
        )
        db_file = result.scalar_one_or_none()
        if db_file is None:
            return None

        db_file.content = content
        return self._to_domain(await self._save(db_file))

    async def delete(self, file_uuid: uuid.UUID, workspace_id: uuid.UUID) -> bool:
        """Удаление файла с повторной проверкой пространства"""
        deleted = await self._delete_where(
            FileModel.uuid == file_uuid,
            FileModel.workspace_id == workspace_id
        )
        return deleted > 0

    async def delete_by_workspace(self, workspace_id: uuid.UUID) -> int:
        return await self._delete_where(FileModel.workspace_id == workspace_id)

    def _to_domain(self, db_file: FileModel) -> File:
        """Преобразование модели БД в доменную сущность"""
        return File(
            uuid=db_file.uuid,
            workspace_id=db_file.workspace_id,
            filename=db_file.filename,
            content=db_file.content,
            file_type=db_file.file_type,
            created_by=db_file.created_by,
            created_at=db_file.created_at,
            updated_at=db_file.updated_at
        )


class FileVersionRepository(Repository):
    """Репозиторий версий файлов, только добавление"""

    model = FileVersionModel

    async def _max_version_number(self, file_id: uuid.UUID) -> Optional[int]:
        result = await self.session.execute(
            select(func.max(FileVersionModel.version_number)).where(FileVersionModel.file_id == file_id)
        )
        return result.scalar_one_or_none()

    async def next_version_number(self, file_id: uuid.UUID) -> int:
        """Следующий номер; номера удаленных версий повторно не выдаются"""
        result = await self.session.execute(
            select(FileModel.last_version_number).where(FileModel.uuid == file_id)
        )
        retired = result.scalar_one_or_none()
        current = await self._max_version_number(file_id)
        return max(current or 0, retired or 0) + 1

    async def create(self, version: FileVersion) -> FileVersion:
        """Вставка версии; номер уникален в пределах файла"""
        db_version = FileVersionModel(
            uuid=version.uuid,
            file_id=version.file_id,
            content=version.content,
            version_number=version.version_number,
            change_summary=version.change_summary,
            created_by=version.created_by,
            created_at=version.created_at
        )
        db_version = await self._insert(db_version, "Version number is already taken")
        return self._to_domain(db_version)

    async def get_by_file(
        self,
        file_id: uuid.UUID,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[FileVersion]:
        """Версии файла, новые первыми; без limit возвращаются все"""
        query = (
            select(FileVersionModel)
            .where(FileVersionModel.file_id == file_id)
            .order_by(FileVersionModel.version_number.desc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [self._to_domain(db_version) for db_version in result.scalars().all()]

    async def count_by_file(self, file_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(FileVersionModel.uuid)).where(FileVersionModel.file_id == file_id)
        )
        return result.scalar_one()

    async def delete_by_file(self, file_id: uuid.UUID) -> int:
        return await self._delete_where(FileVersionModel.file_id == file_id)

    async def clear_history(self, file_id: uuid.UUID) -> int:
        """Удаление версий файла с сохранением наибольшего номера в файле"""
        current = await self._max_version_number(file_id)
        if current is None:
            return 0
        await self.session.execute(
            update(FileModel)
            .where(FileModel.uuid == file_id, FileModel.last_version_number < current)
            .values(last_version_number=current)
        )
        return await self._delete_where(FileVersionModel.file_id == file_id)

    async def delete_by_files(self, file_ids: List[uuid.UUID]) -> int:
        if not file_ids:
            return 0
        return await self._delete_where(FileVersionModel.file_id.in_(file_ids))

    async def get_for_file(self, file_id: uuid.UUID, version_uuid: uuid.UUID) -> Optional[FileVersion]:
        """Версия, только если она принадлежит указанному файлу"""
        result = await self.session.execute(
            select(FileVersionModel).where(
                and_(
                    FileVersionModel.uuid == version_uuid,
                    FileVersionModel.file_id == file_id
                )
            )
        )
        db_version = result.scalar_one_or_none()
        return self._to_domain(db_version) if db_version else None

    def _to_domain(self, db_version: FileVersionModel) -> FileVersion:
        """Преобразование модели БД в доменную сущность"""
        return FileVersion(
            uuid=db_version.uuid,
            file_id=db_version.file_id,
            content=db_version.content,
            version_number=db_version.version_number,
            created_by=db_version.created_by,
            change_summary=db_version.change_summary,
            created_at=db_version.created_at
        )
