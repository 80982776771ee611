from sqlalchemy import UUID, Column, ForeignKey, Integer, String, Text, UniqueConstraint

from docpilot.db.base import BaseModel


class File(BaseModel):
    __tablename__ = "files"

    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.uuid"), nullable=False, index=True)
    filename = Column(String(255), nullable=False)
    content = Column(Text, default="", nullable=False)
    file_type = Column(String(50), default="markdown", nullable=False)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=False)
    # Наибольший выданный номер версии, переживает очистку истории
    last_version_number = Column(Integer, default=0, nullable=False)


class FileVersion(BaseModel):
    __tablename__ = "file_versions"
    __table_args__ = (UniqueConstraint("file_id", "version_number", name="uq_file_versions_number"),)

    file_id = Column(UUID(as_uuid=True), ForeignKey("files.uuid"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    version_number = Column(Integer, nullable=False)
    change_summary = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.uuid"), nullable=False)
