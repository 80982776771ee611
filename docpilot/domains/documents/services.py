import logging
from typing import List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.core.results import OperationResult, ResultStatus, guard_dependencies
from docpilot.db.change_feed import InMemoryChangeFeed
from docpilot.db.repositories.base import DuplicateRowError
from docpilot.db.repositories.document_repository import FileRepository, FileVersionRepository
from docpilot.domains.access.entities import Action, can_perform
from docpilot.domains.access.services import AccessControlService
from docpilot.domains.documents.entities import DiffLine, File, FileVersion, compute_line_diff

logger = logging.getLogger(__name__)

# Попытки занять следующий номер версии при параллельных сохранениях
VERSION_NUMBER_ATTEMPTS = 5


class FileService:
    """Сервис для работы с файлами пространства"""

    def __init__(self, session: AsyncSession, feed: Optional[InMemoryChangeFeed] = None):
        self.session = session
        self.file_repository = FileRepository(session, feed)
        self.version_repository = FileVersionRepository(session, feed)
        self.access = AccessControlService(session, feed)

    @guard_dependencies
    async def create_file(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID,
        filename: str,
        content: str = "",
        file_type: str = "markdown"
    ) -> OperationResult[File]:
        """Создание нового файла"""
        if not await self.access.can_perform(actor_id, workspace_id, Action.CREATE_FILE):
            return OperationResult.permission_denied("Editor role required to create files")
        if not filename or not filename.strip():
            return OperationResult.failure(ResultStatus.INVALID, "Filename cannot be empty")

        file = File.create_file(
            workspace_id=workspace_id,
            filename=filename,
            created_by=actor_id,
            content=content,
            file_type=file_type
        )
        file = await self.file_repository.create(file)
        logger.info(f"File {file.uuid} created in workspace {workspace_id}")
        return OperationResult.success(file)

    @guard_dependencies
    async def get_file(self, actor_id: uuid.UUID, file_id: uuid.UUID) -> OperationResult[File]:
        """Получение файла, видимого пользователю"""
        file = await self.file_repository.get_by_uuid(file_id)
        if file is None or not await self.access.can_perform(actor_id, file.workspace_id, Action.READ_FILES):
            return OperationResult.not_found("File not found")
        return OperationResult.success(file)

    @guard_dependencies
    async def list_files(self, actor_id: uuid.UUID, workspace_id: uuid.UUID) -> OperationResult[List[File]]:
        if not await self.access.can_perform(actor_id, workspace_id, Action.READ_FILES):
            return OperationResult.not_found("Workspace not found")
        return OperationResult.success(await self.file_repository.get_by_workspace(workspace_id))

    @guard_dependencies
    async def update_content(
        self,
        actor_id: uuid.UUID,
        file_id: uuid.UUID,
        content: str,
        workspace_id: Optional[uuid.UUID] = None
    ) -> OperationResult[File]:
        """Запись содержимого файла"""
        file = await self.file_repository.get_by_uuid(file_id)
        # Файл должен лежать в том пространстве, которое назвал клиент
        if file is None or (workspace_id is not None and file.workspace_id != workspace_id):
            return OperationResult.not_found("File not found")
        if not await self.access.can_perform(actor_id, file.workspace_id, Action.UPDATE_FILE):
            return OperationResult.permission_denied("Editor role required to edit files")

        updated = await self.file_repository.update_content(file_id, content)
        if updated is None:
            return OperationResult.not_found("File not found")
        return OperationResult.success(updated)

    @guard_dependencies
    async def delete_file(
        self,
        actor_id: uuid.UUID,
        workspace_id: uuid.UUID,
        file_id: uuid.UUID
    ) -> OperationResult[None]:
        """Удаление файла вместе с его версиями"""
        file = await self.file_repository.get_by_uuid(file_id)
        if file is None or file.workspace_id != workspace_id:
            return OperationResult.not_found("File not found")
        if not await self.access.can_perform(actor_id, workspace_id, Action.DELETE_FILE):
            return OperationResult.permission_denied("Editor role required to delete files")

        await self.version_repository.delete_by_file(file_id)
        if not await self.file_repository.delete(file_id, workspace_id):
            return OperationResult.not_found("File not found")

        logger.info(f"File {file_id} deleted from workspace {workspace_id}")
        return OperationResult.success()


class VersionService:
    """Журнал версий файла: только добавление, восстановление, сравнение"""

    def __init__(self, session: AsyncSession, feed: Optional[InMemoryChangeFeed] = None):
        self.session = session
        self.file_repository = FileRepository(session, feed)
        self.version_repository = FileVersionRepository(session, feed)
        self.access = AccessControlService(session, feed)

    async def _file_for(self, actor_id: uuid.UUID, file_id: uuid.UUID, action: Action):
        """Файл и признак наличия права; None если файл не виден"""
        file = await self.file_repository.get_by_uuid(file_id)
        if file is None:
            return None, False
        snapshot = await self.access.snapshot(file.workspace_id)
        if snapshot is None or not snapshot.is_visible_to(actor_id):
            return None, False
        return file, can_perform(snapshot, actor_id, action)

    @guard_dependencies
    async def create_version(
        self,
        actor_id: uuid.UUID,
        file_id: uuid.UUID,
        content: str,
        change_summary: Optional[str] = None
    ) -> OperationResult[FileVersion]:
        """Добавление версии со следующим номером файла"""
        file, allowed = await self._file_for(actor_id, file_id, Action.CREATE_VERSION)
        if file is None:
            return OperationResult.not_found("File not found")
        if not allowed:
            return OperationResult.permission_denied("Editor role required to create versions")

        for _ in range(VERSION_NUMBER_ATTEMPTS):
            version = FileVersion.create_version(
                file_id=file_id,
                content=content,
                version_number=await self.version_repository.next_version_number(file_id),
                created_by=actor_id,
                change_summary=change_summary
            )
            try:
                version = await self.version_repository.create(version)
            except DuplicateRowError:
                logger.warning(f"Version number {version.version_number} of file {file_id} taken, retrying")
                continue

            logger.info(f"Version {version.version_number} of file {file_id} created by {actor_id}")
            return OperationResult.success(version)

        return OperationResult.failure(ResultStatus.CONFLICT, "Could not allocate a version number, retry later")

    @guard_dependencies
    async def list_versions(
        self,
        actor_id: uuid.UUID,
        file_id: uuid.UUID,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> OperationResult[List[FileVersion]]:
        """Версии файла, новые первыми; по умолчанию все"""
        file, allowed = await self._file_for(actor_id, file_id, Action.READ_VERSIONS)
        if file is None or not allowed:
            return OperationResult.not_found("File not found")
        return OperationResult.success(
            await self.version_repository.get_by_file(file_id, limit=limit, offset=offset)
        )

    @guard_dependencies
    async def restore(
        self,
        actor_id: uuid.UUID,
        file_id: uuid.UUID,
        version_id: uuid.UUID
    ) -> OperationResult[File]:
        """Копирование содержимого версии в файл; версии не удаляются"""
        file, allowed = await self._file_for(actor_id, file_id, Action.RESTORE_VERSION)
        if file is None:
            return OperationResult.not_found("File not found")
        if not allowed:
            return OperationResult.permission_denied("Only the workspace owner can restore versions")

        version = await self.version_repository.get_for_file(file_id, version_id)
        if version is None:
            return OperationResult.not_found("Version not found")

        restored = await self.file_repository.update_content(file_id, version.content)
        logger.info(f"File {file_id} restored to version {version.version_number} by {actor_id}")
        return OperationResult.success(restored)

    @guard_dependencies
    async def clear_history(
        self,
        actor_id: uuid.UUID,
        file_id: uuid.UUID,
        confirm: bool = False
    ) -> OperationResult[int]:
        """Безвозвратное удаление всех версий файла; нумерация продолжается с прежнего максимума"""
        if confirm is not True:
            return OperationResult.failure(ResultStatus.INVALID, "Clearing history must be explicitly confirmed")

        file, allowed = await self._file_for(actor_id, file_id, Action.CLEAR_VERSION_HISTORY)
        if file is None:
            return OperationResult.not_found("File not found")
        if not allowed:
            return OperationResult.permission_denied("Only the workspace owner can clear version history")

        deleted = await self.version_repository.clear_history(file_id)
        logger.info(f"Version history of file {file_id} cleared ({deleted} versions)")
        return OperationResult.success(deleted)

    @staticmethod
    def diff(old_content: str, new_content: str) -> List[DiffLine]:
        return compute_line_diff(old_content, new_content)

    @guard_dependencies
    async def diff_version(
        self,
        actor_id: uuid.UUID,
        file_id: uuid.UUID,
        version_id: uuid.UUID,
        against_version_id: Optional[uuid.UUID] = None
    ) -> OperationResult[List[DiffLine]]:
        """Разница между версией и другой версией или текущим содержимым"""
        file, allowed = await self._file_for(actor_id, file_id, Action.READ_VERSIONS)
        if file is None or not allowed:
            return OperationResult.not_found("File not found")

        version = await self.version_repository.get_for_file(file_id, version_id)
        if version is None:
            return OperationResult.not_found("Version not found")

        if against_version_id is None:
            return OperationResult.success(version.diff_against(file.content))

        other = await self.version_repository.get_for_file(file_id, against_version_id)
        if other is None:
            return OperationResult.not_found("Version not found")
        return OperationResult.success(version.diff_against(other.content))
