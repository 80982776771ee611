from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from docpilot.api.http.errors import unwrap
from docpilot.core.auth import get_current_user
from docpilot.core.db import get_db
from docpilot.db.change_feed import InMemoryChangeFeed, get_change_feed
from docpilot.domains.documents.entities import DiffLine, File, diff_stats
from docpilot.domains.documents.schemas import (
    ClearHistoryRequest, DiffLineResponse, DiffRequest, DiffResponse, FileCreate,
    FileResponse, FileUpdate, FileVersionResponse
)
from docpilot.domains.documents.services import FileService, VersionService
from docpilot.domains.identity.entities import User
from docpilot.domains.workspaces.schemas import DeletionResponse

router = APIRouter(tags=["documents"])


def _file_response(file: File) -> FileResponse:
    response = FileResponse.model_validate(file)
    response.word_count = file.get_word_count()
    return response


def _diff_response(diff: List[DiffLine]) -> DiffResponse:
    added, removed = diff_stats(diff)
    return DiffResponse(
        lines=[DiffLineResponse.model_validate(line) for line in diff],
        added=added,
        removed=removed
    )


@router.post(
    "/workspaces/{workspace_id}/files",
    response_model=FileResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_file(
    workspace_id: uuid.UUID,
    file_data: FileCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Создание нового файла"""
    file = unwrap(await FileService(db, feed).create_file(
        current_user.uuid, workspace_id, file_data.filename, file_data.content, file_data.file_type
    ))
    return _file_response(file)


@router.get("/workspaces/{workspace_id}/files", response_model=List[FileResponse])
async def list_files(
    workspace_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    files = unwrap(await FileService(db, feed).list_files(current_user.uuid, workspace_id))
    return [_file_response(file) for file in files]


@router.delete("/workspaces/{workspace_id}/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    workspace_id: uuid.UUID,
    file_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    unwrap(await FileService(db, feed).delete_file(current_user.uuid, workspace_id, file_id))


@router.get("/files/{file_id}", response_model=FileResponse)
async def get_file(
    file_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Получение файла по UUID"""
    return _file_response(unwrap(await FileService(db, feed).get_file(current_user.uuid, file_id)))


@router.put("/files/{file_id}", response_model=FileResponse)
async def update_file(
    file_id: uuid.UUID,
    update_data: FileUpdate,
    workspace_id: Optional[uuid.UUID] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Сохранение содержимого; по умолчанию с новой версией"""
    file = unwrap(await FileService(db, feed).update_content(
        current_user.uuid, file_id, update_data.content, workspace_id
    ))
    if update_data.create_version:
        unwrap(await VersionService(db, feed).create_version(
            current_user.uuid, file_id, update_data.content, update_data.change_summary
        ))
    return _file_response(file)


@router.get("/files/{file_id}/versions", response_model=List[FileVersionResponse])
async def list_versions(
    file_id: uuid.UUID,
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Версии файла, новые первыми"""
    versions = unwrap(await VersionService(db, feed).list_versions(
        current_user.uuid, file_id, limit=limit, offset=offset
    ))
    return [FileVersionResponse.model_validate(version) for version in versions]


@router.post(
    "/files/{file_id}/versions/{version_id}/restore",
    response_model=FileResponse
)
async def restore_version(
    file_id: uuid.UUID,
    version_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    file = unwrap(await VersionService(db, feed).restore(current_user.uuid, file_id, version_id))
    return _file_response(file)


@router.post("/files/{file_id}/versions/clear", response_model=DeletionResponse)
async def clear_version_history(
    file_id: uuid.UUID,
    request: ClearHistoryRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Удаление всех версий файла; требует confirm=true"""
    deleted = unwrap(await VersionService(db, feed).clear_history(current_user.uuid, file_id, request.confirm))
    return DeletionResponse(deleted=deleted, message="Version history cleared")


@router.get("/files/{file_id}/versions/{version_id}/diff", response_model=DiffResponse)
async def diff_version(
    file_id: uuid.UUID,
    version_id: uuid.UUID,
    against: Optional[uuid.UUID] = Query(None),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    feed: InMemoryChangeFeed = Depends(get_change_feed)
):
    """Разница версии с другой версией или с текущим содержимым"""
    diff = unwrap(await VersionService(db, feed).diff_version(current_user.uuid, file_id, version_id, against))
    return _diff_response(diff)


@router.post("/diff", response_model=DiffResponse)
async def diff_content(
    request: DiffRequest,
    current_user: User = Depends(get_current_user)
):
    return _diff_response(VersionService.diff(request.old_content, request.new_content))
