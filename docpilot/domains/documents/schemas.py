from datetime import datetime
from typing import List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docpilot.domains.documents.entities import DiffLineType


class FileCreate(BaseModel):
    """Схема для создания файла"""
    filename: str = Field(..., min_length=1, max_length=255)
    content: str = Field(default="", max_length=1000000)  # 1MB max content
    file_type: str = Field(default="markdown", max_length=50)

    @field_validator('filename')
    @classmethod
    def validate_filename(cls, v):
        if not v.strip():
            raise ValueError('Filename cannot be empty')
        return v.strip()


class FileUpdate(BaseModel):
    """Схема для сохранения содержимого"""
    content: str = Field(..., max_length=1000000)
    change_summary: Optional[str] = Field(None, max_length=500)
    create_version: bool = True


class FileResponse(BaseModel):
    """Схема для ответа с данными файла"""
    uuid: uuid.UUID
    workspace_id: uuid.UUID
    filename: str
    content: str
    file_type: str
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime
    word_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class FileVersionResponse(BaseModel):
    """Схема для ответа с данными версии файла"""
    uuid: uuid.UUID
    file_id: uuid.UUID
    content: str
    version_number: int
    change_summary: Optional[str] = None
    created_by: uuid.UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClearHistoryRequest(BaseModel):
    confirm: bool = False


class DiffRequest(BaseModel):
    old_content: str = Field(..., max_length=1000000)
    new_content: str = Field(..., max_length=1000000)


class DiffLineResponse(BaseModel):
    type: DiffLineType
    content: str
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class DiffResponse(BaseModel):
    """Схема для ответа с разницей содержимого"""
    lines: List[DiffLineResponse]
    added: int
    removed: int
