"""Typed failures raised by the job workflow core.

Every error subclasses ``ValueError`` so callers that already guard service
calls with ``except ValueError`` keep working; the HTTP layer maps the
concrete classes onto status codes.
"""

from __future__ import annotations


class WorkflowError(ValueError):
    pass


class ValidationError(WorkflowError):
    """A malformed or out-of-range entity field."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f'{field}: {message}')
        self.field = field
        self.message = message


class InvalidLineItem(ValidationError):
    """A spare-part line with a bad quantity or unit price."""


class PreconditionFailed(WorkflowError):
    """A lifecycle guard did not hold."""

    def __init__(self, precondition: str) -> None:
        super().__init__(precondition)
        self.precondition = precondition


class UniquenessConflict(PreconditionFailed):
    def __init__(self, field: str, value: str) -> None:
        super().__init__(f'{field} {value!r} is already in use')
        self.field = field
        self.value = value


class OutOfOrderTransition(WorkflowError):
    def __init__(self, current: str, stage: str) -> None:
        super().__init__(f'Cannot record {stage} while job is {current}')
        self.current = current
        self.stage = stage


class NotFound(WorkflowError):
    def __init__(self, entity: str, key: object) -> None:
        super().__init__(f'{entity} {key} not found')
        self.entity = entity
        self.key = key
