"""Job lifecycle state machine.

``intake -> inspected -> quoted -> approved -> invoiced -> delivered``, with
``cancelled`` reachable from any non-terminal state. Every function here is a
pure predicate over supplied data; callers hold the row lock (or version
token) while they check and then write.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from scaledesk.errors import OutOfOrderTransition, PreconditionFailed, UniquenessConflict
from scaledesk.models import JobStatus, WorkflowStage
from scaledesk.services.entities import Approval, Delivery, Inspection, Invoice, Quotation

STATUS_ORDER: tuple[JobStatus, ...] = (
    JobStatus.INTAKE,
    JobStatus.INSPECTED,
    JobStatus.QUOTED,
    JobStatus.APPROVED,
    JobStatus.INVOICED,
    JobStatus.DELIVERED,
)

TERMINAL_STATUSES = frozenset({JobStatus.DELIVERED, JobStatus.CANCELLED})

STAGE_ORDER: tuple[WorkflowStage, ...] = (
    WorkflowStage.INSPECTION,
    WorkflowStage.QUOTATION,
    WorkflowStage.APPROVAL,
    WorkflowStage.INVOICE,
    WorkflowStage.DELIVERY,
)

# Status a job reaches once the stage record is on file.
STAGE_RESULT: dict[WorkflowStage, JobStatus] = {
    stage: status for stage, status in zip(STAGE_ORDER, STATUS_ORDER[1:])
}

STAGE_RECORD_TYPES = {
    WorkflowStage.INSPECTION: Inspection,
    WorkflowStage.QUOTATION: Quotation,
    WorkflowStage.APPROVAL: Approval,
    WorkflowStage.INVOICE: Invoice,
    WorkflowStage.DELIVERY: Delivery,
}


@dataclass(frozen=True)
class TransitionContext:
    today: date
    quotation_number_in_use: bool = False
    invoice_number_in_use: bool = False


@dataclass(frozen=True)
class TransitionDecision:
    stage: WorkflowStage
    previous_status: JobStatus
    status: JobStatus
    advanced: bool


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def current_stage(status: JobStatus) -> WorkflowStage | None:
    """Stage whose record put the job in ``status`` (None for intake/cancelled)."""
    for stage, result in STAGE_RESULT.items():
        if result == status:
            return stage
    return None


def next_stage(status: JobStatus) -> WorkflowStage | None:
    if is_terminal(status):
        return None
    return STAGE_ORDER[STATUS_ORDER.index(status)]


def _guard_inspection(record: Inspection, context: TransitionContext) -> None:
    if not record.problems_found and not record.spare_parts:
        raise PreconditionFailed('Inspection needs problems_found or at least one spare part')


def _guard_quotation(record: Quotation, context: TransitionContext) -> None:
    if record.amount < Decimal('0'):
        raise PreconditionFailed('Quotation amount must be zero or greater')
    if context.quotation_number_in_use:
        raise UniquenessConflict('quotation_number', record.quotation_number)


def _guard_approval(record: Approval, context: TransitionContext) -> None:
    if not record.lpo_number and not record.reference_number:
        raise PreconditionFailed('Approval needs an lpo_number or reference_number')


def _guard_invoice(record: Invoice, context: TransitionContext) -> None:
    if record.amount <= Decimal('0'):
        raise PreconditionFailed('Invoice amount must be greater than zero')
    if context.invoice_number_in_use:
        raise UniquenessConflict('invoice_number', record.invoice_number)


def _guard_delivery(record: Delivery, context: TransitionContext) -> None:
    if record.delivery_date > context.today:
        raise PreconditionFailed('Delivery date cannot be in the future')


GUARDS = {
    WorkflowStage.INSPECTION: _guard_inspection,
    WorkflowStage.QUOTATION: _guard_quotation,
    WorkflowStage.APPROVAL: _guard_approval,
    WorkflowStage.INVOICE: _guard_invoice,
    WorkflowStage.DELIVERY: _guard_delivery,
}


def ensure_stage_writable(status: JobStatus, stage: WorkflowStage) -> bool:
    """Check ``stage`` may be written at all; True when the write is an edit.

    Needs only the status, so callers run it before parsing a payload whose
    defaults depend on earlier stage records.
    """
    if status == JobStatus.CANCELLED:
        raise PreconditionFailed('Job is cancelled; no further changes are allowed')
    if current_stage(status) == stage:
        return True
    if next_stage(status) != stage:
        raise OutOfOrderTransition(status.value, stage.value)
    return False


def check_stage_record(
    status: JobStatus,
    stage: WorkflowStage,
    record: object,
    context: TransitionContext,
) -> TransitionDecision:
    """Decide what writing ``record`` for ``stage`` does to a job in ``status``.

    Writing the record of the job's current stage is an edit: the status stays
    put and the transition guard is not re-run. Writing the next stage's record
    runs its guard and advances the job. Anything else is out of order.
    """
    expected_type = STAGE_RECORD_TYPES[stage]
    if not isinstance(record, expected_type):
        raise TypeError(f'{stage.value} expects {expected_type.__name__}, got {type(record).__name__}')

    if ensure_stage_writable(status, stage):
        return TransitionDecision(stage=stage, previous_status=status, status=status, advanced=False)

    GUARDS[stage](record, context)
    return TransitionDecision(stage=stage, previous_status=status, status=STAGE_RESULT[stage], advanced=True)


def cancel(status: JobStatus) -> JobStatus:
    if is_terminal(status):
        raise PreconditionFailed(f'Job is already {status.value} and cannot be cancelled')
    return JobStatus.CANCELLED


def expected_status(stages_present: Iterable[WorkflowStage]) -> JobStatus:
    """Status implied by the stage records on file; gaps are out of order."""
    present = set(stages_present)
    status = JobStatus.INTAKE
    for stage in STAGE_ORDER:
        if stage not in present:
            break
        status = STAGE_RESULT[stage]
    later = [stage for stage in STAGE_ORDER[STATUS_ORDER.index(status):] if stage in present]
    if later:
        raise OutOfOrderTransition(status.value, later[0].value)
    return status


def assert_consistent(status: JobStatus, stages_present: Iterable[WorkflowStage]) -> None:
    """Raise when the stored status disagrees with the stage records on file.

    Stage writers run this under the job row lock before changing anything.
    """
    implied = expected_status(stages_present)
    if status == JobStatus.CANCELLED:
        return
    if implied != status:
        raise PreconditionFailed(f'Job status {status.value} does not match stage records ({implied.value})')
