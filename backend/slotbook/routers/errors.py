from typing import Any, TypeVar

from fastapi import HTTPException, status

from ..domain.errors import DomainError
from ..domain.results import Ok, Result
from ..utils.audit_log import emit_audit_log

T = TypeVar("T")

_STATUS_BY_CATEGORY = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "state": status.HTTP_409_CONFLICT,
}


def http_error(error: DomainError) -> HTTPException:
    if error.category == "authorization":
        if error.code == "unauthorized":
            return HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": error.code, "message": error.message},
                headers={"WWW-Authenticate": "Bearer"},
            )
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": error.code, "message": error.message},
        )
    return HTTPException(
        status_code=_STATUS_BY_CATEGORY.get(error.category, status.HTTP_400_BAD_REQUEST),
        detail={"code": error.code, "message": error.message},
    )


def unwrap(result: Result[T]) -> T:
    if isinstance(result, Ok):
        return result.value
    raise http_error(result.error)


def audit(**fields: Any) -> None:
    try:
        emit_audit_log(**fields)
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="failed to record audit log",
        ) from exc
