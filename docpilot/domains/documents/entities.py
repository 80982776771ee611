import difflib
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class File:
    """Сущность файла пространства"""

    def __init__(
        self,
        uuid: uuid.UUID,
        workspace_id: uuid.UUID,
        filename: str,
        created_by: uuid.UUID,
        content: str = "",
        file_type: str = "markdown",
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.uuid = uuid
        self.workspace_id = workspace_id
        self.filename = filename
        self.content = content or ""
        self.file_type = file_type
        self.created_by = created_by
        self.created_at = created_at or datetime.utcnow()
        self.updated_at = updated_at or datetime.utcnow()

    def update_content(self, new_content: str) -> None:
        """Обновление содержимого файла"""
        self.content = new_content
        self.updated_at = datetime.utcnow()

    def get_word_count(self) -> int:
        """Подсчет количества слов в файле"""
        if not self.content.strip():
            return 0
        return len(self.content.split())

    @classmethod
    def create_file(
        cls,
        workspace_id: uuid.UUID,
        filename: str,
        created_by: uuid.UUID,
        content: str = "",
        file_type: str = "markdown"
    ) -> "File":
        """Создание нового файла"""
        return cls(
            uuid=uuid.uuid4(),
            workspace_id=workspace_id,
            filename=filename.strip(),
            created_by=created_by,
            content=content,
            file_type=file_type
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, File):
            return False
        return self.uuid == other.uuid

    def __repr__(self) -> str:
        return f"File(uuid={self.uuid}, filename={self.filename}, workspace_id={self.workspace_id})"


class FileVersion:
    """Неизменяемый снимок содержимого файла"""

    def __init__(
        self,
        uuid: uuid.UUID,
        file_id: uuid.UUID,
        content: str,
        version_number: int,
        created_by: uuid.UUID,
        change_summary: Optional[str] = None,
        created_at: Optional[datetime] = None
    ):
        self.uuid = uuid
        self.file_id = file_id
        self.content = content
        self.version_number = version_number
        self.created_by = created_by
        self.change_summary = change_summary
        self.created_at = created_at or datetime.utcnow()

    def diff_against(self, other_content: str) -> List["DiffLine"]:
        """Построчная разница между этой версией и другим содержимым"""
        return compute_line_diff(self.content, other_content)

    @classmethod
    def create_version(
        cls,
        file_id: uuid.UUID,
        content: str,
        version_number: int,
        created_by: uuid.UUID,
        change_summary: Optional[str] = None
    ) -> "FileVersion":
        """Создание новой версии файла"""
        return cls(
            uuid=uuid.uuid4(),
            file_id=file_id,
            content=content,
            version_number=version_number,
            created_by=created_by,
            change_summary=change_summary
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, FileVersion):
            return False
        return self.uuid == other.uuid

    def __repr__(self) -> str:
        return f"FileVersion(uuid={self.uuid}, file_id={self.file_id}, version={self.version_number})"


class DiffLineType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    UNCHANGED = "unchanged"


@dataclass
class DiffLine:
    type: DiffLineType
    content: str
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None


def compute_line_diff(old_content: str, new_content: str) -> List[DiffLine]:
    """Построчный diff для просмотра человеком.

    Неизмененные строки несут оба номера, измененная строка выводится как
    удаленная, за которой следует добавленная. Перемещения не распознаются.
    """
    old_lines = old_content.split("\n")
    new_lines = new_content.split("\n")
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)

    diff: List[DiffLine] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            for offset in range(i2 - i1):
                diff.append(DiffLine(
                    type=DiffLineType.UNCHANGED,
                    content=old_lines[i1 + offset],
                    old_line_number=i1 + offset + 1,
                    new_line_number=j1 + offset + 1
                ))
            continue

        # replace/delete/insert: попарно удаленная строка, затем добавленная
        for offset in range(max(i2 - i1, j2 - j1)):
            if i1 + offset < i2:
                diff.append(DiffLine(
                    type=DiffLineType.REMOVED,
                    content=old_lines[i1 + offset],
                    old_line_number=i1 + offset + 1
                ))
            if j1 + offset < j2:
                diff.append(DiffLine(
                    type=DiffLineType.ADDED,
                    content=new_lines[j1 + offset],
                    new_line_number=j1 + offset + 1
                ))
    return diff


def diff_stats(diff: List[DiffLine]) -> Tuple[int, int]:
    """Количество добавленных и удаленных строк"""
    added = sum(1 for line in diff if line.type is DiffLineType.ADDED)
    removed = sum(1 for line in diff if line.type is DiffLineType.REMOVED)
    return added, removed
