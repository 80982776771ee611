from fastapi import HTTPException, status

from docpilot.core.results import OperationResult, ResultStatus

STATUS_CODES = {
    ResultStatus.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    ResultStatus.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ResultStatus.EXPIRED: status.HTTP_410_GONE,
    ResultStatus.ALREADY_MEMBER: status.HTTP_409_CONFLICT,
    ResultStatus.DUPLICATE_INVITATION: status.HTTP_409_CONFLICT,
    ResultStatus.CONFLICT: status.HTTP_409_CONFLICT,
    ResultStatus.DEPENDENCY_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ResultStatus.INVALID: status.HTTP_400_BAD_REQUEST,
}


def unwrap(result: OperationResult):
    """Значение успешного результата или HTTP-ошибка по его статусу"""
    if result.ok:
        return result.value

    detail = {"status": result.status.value, "message": result.message}
    if result.failed_step:
        detail["failed_step"] = result.failed_step
    raise HTTPException(status_code=STATUS_CODES[result.status], detail=detail)
