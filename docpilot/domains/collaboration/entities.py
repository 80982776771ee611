"""Сессия редактирования одного открытого файла.

Сессия хранит две строки: ``last_known_content`` (что пользователь видел
и принял) и ``live_content`` (редактируемый буфер), и классифицирует
входящие уведомления об изменении файла как собственное эхо или как
внешнее изменение. Слияния нет: внешнее содержимое заменяет буфер, а
разница с прежним буфером показывается пользователю.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from docpilot.domains.documents.entities import DiffLine, compute_line_diff


class SessionState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    EXTERNALLY_CHANGED = "externally_changed"
    SAVING = "saving"


class ReconcileOutcome(str, Enum):
    ECHO = "echo"
    NO_CHANGE = "no_change"
    EXTERNAL = "external"
    DELETED = "deleted"
    IGNORED = "ignored"


@dataclass
class ExternalChange:
    previous_content: str
    incoming_content: str
    diff: List[DiffLine]
    conflicting: bool
    received_at: datetime = field(default_factory=datetime.utcnow)


class EditSession:
    """Состояние одного открытого файла в одной пользовательской сессии"""

    def __init__(self, file_id: uuid.UUID, content: str):
        self.file_id = file_id
        self.last_known_content = content
        self.live_content = content
        self.state = SessionState.CLEAN
        self.external_change: Optional[ExternalChange] = None
        self.file_deleted = False
        self.last_saved_at: Optional[datetime] = None
        self._saving_content: Optional[str] = None
        self._state_before_save: Optional[SessionState] = None

    @property
    def has_unsaved_changes(self) -> bool:
        return self.live_content != self.last_known_content

    def edit(self, content: str) -> SessionState:
        """Локальное изменение буфера"""
        self.live_content = content
        if self.state is SessionState.CLEAN and self.has_unsaved_changes:
            self.state = SessionState.DIRTY
        elif self.state is SessionState.DIRTY and not self.has_unsaved_changes:
            self.state = SessionState.CLEAN
        return self.state

    def reconcile(self, incoming: str) -> ReconcileOutcome:
        """Классификация содержимого из уведомления"""
        if incoming == self.live_content:
            return ReconcileOutcome.ECHO
        if incoming == self.last_known_content:
            return ReconcileOutcome.NO_CHANGE
        # Эхо записи, которая еще не завершилась
        if self.state is SessionState.SAVING and incoming == self._saving_content:
            return ReconcileOutcome.ECHO

        previous = self.live_content
        self.external_change = ExternalChange(
            previous_content=previous,
            incoming_content=incoming,
            diff=compute_line_diff(previous, incoming),
            conflicting=self.has_unsaved_changes
        )
        self.live_content = incoming
        self.last_known_content = incoming
        if self.state is SessionState.SAVING:
            self._state_before_save = SessionState.EXTERNALLY_CHANGED
        self.state = SessionState.EXTERNALLY_CHANGED
        return ReconcileOutcome.EXTERNAL

    def mark_deleted(self) -> ReconcileOutcome:
        self.file_deleted = True
        return ReconcileOutcome.DELETED

    def begin_save(self) -> Optional[str]:
        """Содержимое для записи или None, если писать нечего"""
        if self.state is SessionState.SAVING or self.file_deleted:
            return None
        if not self.has_unsaved_changes:
            if self.state is SessionState.EXTERNALLY_CHANGED:
                self.accept_external()
            return None

        self._state_before_save = self.state
        self._saving_content = self.live_content
        self.state = SessionState.SAVING
        return self._saving_content

    def complete_save(self, saved_content: str, saved_at: Optional[datetime] = None) -> None:
        self._saving_content = None
        self.last_saved_at = saved_at or datetime.utcnow()

        if self._state_before_save is SessionState.EXTERNALLY_CHANGED and self.state is SessionState.EXTERNALLY_CHANGED:
            # Внешнее изменение пришло во время записи, его еще нужно просмотреть
            self._state_before_save = None
            return

        self._state_before_save = None
        self.last_known_content = saved_content
        self.external_change = None
        self.state = SessionState.DIRTY if self.has_unsaved_changes else SessionState.CLEAN

    def fail_save(self) -> None:
        self._saving_content = None
        if self.state is SessionState.SAVING:
            self.state = self._state_before_save or SessionState.DIRTY
        self._state_before_save = None

    def accept_external(self) -> SessionState:
        """Пользователь просмотрел внешнее изменение"""
        self.external_change = None
        if self.state is SessionState.EXTERNALLY_CHANGED:
            self.state = SessionState.DIRTY if self.has_unsaved_changes else SessionState.CLEAN
        return self.state

    def __repr__(self) -> str:
        return f"EditSession(file_id={self.file_id}, state={self.state.value})"
