from docpilot.domains.documents.entities import (
    File, FileVersion, DiffLine, DiffLineType, compute_line_diff, diff_stats
)
from docpilot.domains.documents.schemas import (
    FileCreate, FileUpdate, FileResponse, FileVersionResponse, ClearHistoryRequest,
    DiffRequest, DiffLineResponse, DiffResponse
)

__all__ = [
    "File", "FileVersion", "DiffLine", "DiffLineType", "compute_line_diff", "diff_stats",
    "FileCreate", "FileUpdate", "FileResponse", "FileVersionResponse", "ClearHistoryRequest",
    "DiffRequest", "DiffLineResponse", "DiffResponse"
]
