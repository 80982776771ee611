import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.core.config import settings
from docpilot.core.results import OperationResult, ResultStatus, guard_dependencies
from docpilot.db.change_feed import InMemoryChangeFeed, Subscription
from docpilot.domains.collaboration.entities import EditSession, ReconcileOutcome, SessionState
from docpilot.domains.collaboration.notifications import ChangeNotificationAdapter, FileChange, FileRow
from docpilot.domains.documents.entities import FileVersion
from docpilot.domains.documents.services import FileService, VersionService

logger = logging.getLogger(__name__)


class DocumentSessionService:
    """Открытый файл одного пользователя: правки, уведомления, сохранение.

    Все пути сходимости состояния (push-уведомления, ручное обновление,
    подтверждение собственного сохранения) проходят через
    ``handle_notification``.
    """

    def __init__(
        self,
        session: AsyncSession,
        user_id: uuid.UUID,
        feed: Optional[InMemoryChangeFeed] = None,
        autosave_interval: Optional[float] = None
    ):
        self.session = session
        self.user_id = user_id
        self.files = FileService(session, feed)
        self.versions = VersionService(session, feed)
        self.notifications = ChangeNotificationAdapter(feed)
        self.autosave_interval = autosave_interval or settings.autosave_interval_seconds
        self.edit_session: Optional[EditSession] = None
        self.subscription: Optional[Subscription] = None

    @property
    def file_id(self) -> Optional[uuid.UUID]:
        return self.edit_session.file_id if self.edit_session else None

    @guard_dependencies
    async def open(self, file_id: uuid.UUID) -> OperationResult[EditSession]:
        """Открытие файла и подписка на его изменения"""
        self.close()

        result = await self.files.get_file(self.user_id, file_id)
        if not result.ok:
            return result

        self.subscription = self.notifications.subscribe_file(file_id)
        self.edit_session = EditSession(file_id, result.value.content)
        logger.debug(f"User {self.user_id} opened file {file_id}")
        return OperationResult.success(self.edit_session)

    async def switch_file(self, file_id: uuid.UUID) -> OperationResult[EditSession]:
        """Смена файла: подписка на старый файл снимается до открытия нового"""
        return await self.open(file_id)

    def close(self) -> None:
        self.notifications.unsubscribe(self.subscription)
        self.subscription = None
        self.edit_session = None

    def edit(self, content: str) -> SessionState:
        if self.edit_session is None:
            raise RuntimeError("No file is open")
        return self.edit_session.edit(content)

    def handle_notification(self, notification) -> ReconcileOutcome:
        """Применение типизированного уведомления к открытому файлу"""
        if self.edit_session is None or not isinstance(notification, FileChange):
            return ReconcileOutcome.IGNORED
        if notification.row.uuid != self.edit_session.file_id:
            return ReconcileOutcome.IGNORED

        if notification.operation == "delete":
            logger.info(f"File {self.edit_session.file_id} was deleted while open by {self.user_id}")
            return self.edit_session.mark_deleted()

        outcome = self.edit_session.reconcile(notification.row.content)
        if outcome is ReconcileOutcome.EXTERNAL:
            change = self.edit_session.external_change
            logger.info(
                f"External change to file {self.edit_session.file_id} for {self.user_id}"
                f"{' (conflicting with local edits)' if change.conflicting else ''}"
            )
        return outcome

    def handle_event(self, event: Dict[str, Any]) -> ReconcileOutcome:
        """Сырое событие ленты; неразбираемое событие отбрасывается"""
        notification = self.notifications.decode(event)
        if notification is None:
            return ReconcileOutcome.IGNORED
        return self.handle_notification(notification)

    def process_pending(self) -> List[ReconcileOutcome]:
        """Применение всех накопленных уведомлений подписки"""
        if self.subscription is None:
            return []
        return [self.handle_notification(notification) for notification in self.notifications.drain(self.subscription)]

    async def listen(self) -> AsyncIterator[Tuple[FileChange, ReconcileOutcome]]:
        """Поток уведомлений открытого файла вместе с результатом сверки"""
        if self.subscription is None:
            return
        async for notification in self.notifications.stream(self.subscription):
            yield notification, self.handle_notification(notification)

    async def save(self, change_summary: Optional[str] = None, autosave: bool = False) -> OperationResult[Optional[FileVersion]]:
        """Запись буфера и новая версия; без изменений ничего не пишется"""
        if self.edit_session is None:
            return OperationResult.failure(ResultStatus.INVALID, "No file is open")

        edit_session = self.edit_session
        content = edit_session.begin_save()
        if content is None:
            return OperationResult.success(None, message="Nothing to save")

        write = await self.files.update_content(self.user_id, edit_session.file_id, content)
        if not write.ok:
            edit_session.fail_save()
            logger.warning(f"Saving file {edit_session.file_id} failed: {write.status.value} {write.message}")
            return OperationResult.failure(write.status, write.message)

        edit_session.complete_save(content)
        summary = change_summary or ("Autosave" if autosave else None)
        version = await self.versions.create_version(self.user_id, edit_session.file_id, content, summary)
        if not version.ok:
            return OperationResult.success(None, warnings=[f"File saved but version was not recorded: {version.message}"])
        return OperationResult.success(version.value)

    async def accept_external_changes(self) -> OperationResult[Optional[FileVersion]]:
        """Подтверждение просмотренного внешнего изменения через сохранение"""
        return await self.save(change_summary="Reviewed external changes")

    async def refetch(self) -> ReconcileOutcome:
        """Ручное обновление как синтетическое уведомление"""
        if self.edit_session is None:
            return ReconcileOutcome.IGNORED

        result = await self.files.get_file(self.user_id, self.edit_session.file_id)
        if result.status is ResultStatus.NOT_FOUND:
            return self.handle_notification(self._synthetic("delete", self.edit_session.file_id))
        if not result.ok:
            return ReconcileOutcome.IGNORED

        file = result.value
        return self.handle_notification(FileChange(table="files", operation="update", row=FileRow.model_validate(vars(file))))

    def _synthetic(self, operation: str, file_id: uuid.UUID) -> FileChange:
        row = FileRow(
            uuid=file_id,
            workspace_id=uuid.UUID(int=0),
            filename="",
            created_by=self.user_id
        )
        return FileChange(table="files", operation=operation, row=row)

    async def run_autosave(self, stop: asyncio.Event) -> None:
        """Периодическое сохранение грязного буфера до сигнала остановки"""
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.autosave_interval)
            except asyncio.TimeoutError:
                pass
            if stop.is_set():
                break

            self.process_pending()
            if self.edit_session is not None and self.edit_session.state is SessionState.DIRTY:
                result = await self.save(autosave=True)
                if not result.ok:
                    logger.warning(f"Autosave of file {self.file_id} failed: {result.message}")
