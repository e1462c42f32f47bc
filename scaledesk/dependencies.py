from fastapi import Header, HTTPException, status

from scaledesk.errors import (
    NotFound,
    OutOfOrderTransition,
    PreconditionFailed,
    UniquenessConflict,
    ValidationError,
    WorkflowError,
)
from scaledesk.services.entities import OperatorContext


def get_operator(
    x_operator: str | None = Header(default=None),
    x_operator_role: str | None = Header(default=None),
) -> OperatorContext:
    name = (x_operator or '').strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='X-Operator header is required')
    return OperatorContext(name=name, role=(x_operator_role or 'USER').strip().upper() or 'USER')


def require_admin(operator: OperatorContext) -> None:
    if operator.role != 'ADMIN':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)


def http_error(exc: WorkflowError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={'field': exc.field, 'message': exc.message},
        )
    if isinstance(exc, (UniquenessConflict, OutOfOrderTransition, PreconditionFailed)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
