from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from scaledesk.config import settings
from scaledesk.errors import NotFound, PreconditionFailed, UniquenessConflict
from scaledesk.models import Approval as ApprovalModel
from scaledesk.models import Customer as CustomerModel
from scaledesk.models import Delivery as DeliveryModel
from scaledesk.models import Inspection as InspectionModel
from scaledesk.models import InspectionSparePart
from scaledesk.models import Invoice as InvoiceModel
from scaledesk.models import Job as JobModel
from scaledesk.models import JobStatus, WorkflowStage
from scaledesk.models import Quotation as QuotationModel
from scaledesk.services.audit_service import log_audit
from scaledesk.services.cost_math_service import line_total
from scaledesk.services.customer_service import to_customer
from scaledesk.services.document_service import (
    PreviewDoc,
    QuotationDoc,
    QuotationFields,
    compose_preview,
    compose_quotation,
)
from scaledesk.services.entities import (
    Approval,
    Customer,
    Delivery,
    Inspection,
    Invoice,
    Job,
    OperatorContext,
    Quotation,
    SparePart,
    default_quotation_number,
    parse_approval,
    parse_delivery,
    parse_inspection,
    parse_invoice,
    parse_job,
    parse_quotation,
)
from scaledesk.services.job_lifecycle_service import (
    TransitionContext,
    TransitionDecision,
    assert_consistent,
    cancel,
    check_stage_record,
    ensure_stage_writable,
)

logger = logging.getLogger(__name__)

JOB_NUMBER_ATTEMPTS = 10

STAGE_MODELS = {
    WorkflowStage.INSPECTION: InspectionModel,
    WorkflowStage.QUOTATION: QuotationModel,
    WorkflowStage.APPROVAL: ApprovalModel,
    WorkflowStage.INVOICE: InvoiceModel,
    WorkflowStage.DELIVERY: DeliveryModel,
}


@dataclass(frozen=True)
class JobBundle:
    job: Job
    customer: Customer
    inspection: Inspection | None = None
    quotation: Quotation | None = None
    approval: Approval | None = None
    invoice: Invoice | None = None
    delivery: Delivery | None = None

    @property
    def stages_present(self) -> set[WorkflowStage]:
        records = {
            WorkflowStage.INSPECTION: self.inspection,
            WorkflowStage.QUOTATION: self.quotation,
            WorkflowStage.APPROVAL: self.approval,
            WorkflowStage.INVOICE: self.invoice,
            WorkflowStage.DELIVERY: self.delivery,
        }
        return {stage for stage, record in records.items() if record is not None}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _today() -> date:
    return _now().date()


def generate_job_number(now: datetime, *, prefix: str | None = None) -> str:
    prefix = settings.job_number_prefix if prefix is None else prefix
    return f'{prefix}{now:%Y%m}{1000 + secrets.randbelow(9000)}'


def to_job(row: JobModel) -> Job:
    return Job(
        id=row.id,
        job_number=row.job_number,
        customer_id=row.customer_id,
        taken_by=row.taken_by,
        status=row.status,
        make=row.scale_make,
        model=row.scale_model,
        serial_number=row.scale_serial,
        remark=row.remark,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def to_inspection(row: InspectionModel, parts: list[InspectionSparePart]) -> Inspection:
    return Inspection(
        id=row.id,
        job_id=row.job_id,
        inspected_by=row.inspected_by,
        inspection_date=row.inspection_date,
        problems_found=row.problems_found,
        notes=row.notes,
        spare_parts=tuple(
            SparePart(id=part.id, part_name=part.part_name, quantity=part.quantity, unit_price=Decimal(part.unit_price))
            for part in parts
        ),
    )


def to_quotation(row: QuotationModel) -> Quotation:
    return Quotation(
        id=row.id,
        job_id=row.job_id,
        quotation_number=row.quotation_number,
        quotation_date=row.quotation_date,
        amount=Decimal(row.amount),
    )


def to_approval(row: ApprovalModel) -> Approval:
    return Approval(
        id=row.id,
        job_id=row.job_id,
        approval_date=row.approval_date,
        prepared_by=row.prepared_by,
        lpo_number=row.lpo_number,
        reference_number=row.reference_number,
        approved_by=row.approved_by,
        notes=row.notes,
    )


def to_invoice(row: InvoiceModel) -> Invoice:
    return Invoice(
        id=row.id,
        job_id=row.job_id,
        invoice_number=row.invoice_number,
        invoice_date=row.invoice_date,
        amount=Decimal(row.amount),
    )


def to_delivery(row: DeliveryModel) -> Delivery:
    return Delivery(
        id=row.id,
        job_id=row.job_id,
        delivery_date=row.delivery_date,
        delivered_by=row.delivered_by,
        received_by=row.received_by,
    )


def _lock_job(db: Session, job_id: int) -> JobModel:
    row = db.execute(select(JobModel).where(JobModel.id == job_id).with_for_update()).scalar_one_or_none()
    if not row:
        raise NotFound('Job', job_id)
    return row


def _stage_row(db: Session, model, job_id: int):
    return db.execute(select(model).where(model.job_id == job_id)).scalar_one_or_none()


def _stages_present(db: Session, job_id: int) -> set[WorkflowStage]:
    return {
        stage
        for stage, model in STAGE_MODELS.items()
        if db.execute(select(model.id).where(model.job_id == job_id).limit(1)).first() is not None
    }


def _lock_for_stage(db: Session, job_id: int, stage: WorkflowStage) -> JobModel:
    # Ordering is settled from the locked row before the payload is parsed,
    # since payload defaults are read from earlier stage records.
    row = _lock_job(db, job_id)
    ensure_stage_writable(row.status, stage)
    assert_consistent(row.status, _stages_present(db, job_id))
    return row


def _spare_part_rows(db: Session, inspection_id: int) -> list[InspectionSparePart]:
    return db.execute(
        select(InspectionSparePart)
        .where(InspectionSparePart.inspection_id == inspection_id)
        .order_by(InspectionSparePart.position.asc(), InspectionSparePart.id.asc())
    ).scalars().all()


def _flush(db: Session, *, unique_field: str | None = None, unique_value: str | None = None) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        if unique_field is None:
            raise
        raise UniquenessConflict(unique_field, unique_value or '') from exc
    except StaleDataError as exc:
        raise PreconditionFailed('Job was changed by another request; reload and try again') from exc


def _number_in_use(db: Session, column, number: str, job_id: int) -> bool:
    model = column.class_
    found = db.execute(select(model.id).where(column == number, model.job_id != job_id).limit(1)).first()
    return found is not None


def _apply_decision(
    db: Session,
    job_row: JobModel,
    decision: TransitionDecision,
    operator: OperatorContext,
    metadata: dict,
) -> None:
    # Touching the row bumps its version even for plain edits.
    job_row.updated_at = _now()
    if decision.advanced:
        job_row.status = decision.status
        action = f'JOB_{decision.stage.name}_RECORDED'
        logger.info(
            'Job %s moved %s -> %s by %s',
            job_row.job_number,
            decision.previous_status.value,
            decision.status.value,
            operator.name,
        )
    else:
        action = f'JOB_{decision.stage.name}_UPDATED'
        logger.info('Job %s %s record updated by %s', job_row.job_number, decision.stage.value, operator.name)

    log_audit(
        db,
        actor=operator.name,
        action=action,
        job_id=job_row.id,
        metadata={
            'from_status': decision.previous_status.value,
            'to_status': decision.status.value,
            **metadata,
        },
    )


def create_job(
    db: Session,
    *,
    operator: OperatorContext,
    payload: Mapping[str, Any],
    now: datetime | None = None,
) -> Job:
    now = now or _now()
    fields = {key: value for key, value in payload.items() if key not in {'id', 'status'}}

    customer_id = fields.get('customer_id')
    requested_number = fields.get('job_number')
    job = parse_job({**fields, 'job_number': requested_number or 'pending'}, operator=operator)

    exists = db.execute(select(CustomerModel.id).where(CustomerModel.id == job.customer_id)).scalar_one_or_none()
    if not exists:
        raise NotFound('Customer', customer_id)

    if requested_number:
        job_number = job.job_number
        if db.execute(select(JobModel.id).where(JobModel.job_number == job_number)).first():
            raise UniquenessConflict('job_number', job_number)
    else:
        for _ in range(JOB_NUMBER_ATTEMPTS):
            job_number = generate_job_number(now)
            if not db.execute(select(JobModel.id).where(JobModel.job_number == job_number)).first():
                break
        else:
            raise UniquenessConflict('job_number', job_number)

    row = JobModel(
        job_number=job_number,
        customer_id=job.customer_id,
        taken_by=job.taken_by,
        scale_make=job.make,
        scale_model=job.model,
        scale_serial=job.serial_number,
        remark=job.remark,
        status=JobStatus.INTAKE,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    _flush(db, unique_field='job_number', unique_value=job_number)
    log_audit(db, actor=operator.name, action='JOB_CREATED', job_id=row.id, metadata={'job_number': job_number})
    _flush(db)
    logger.info('Job %s created for customer %s by %s', job_number, job.customer_id, operator.name)
    return to_job(row)


def update_job_equipment(
    db: Session,
    *,
    job_id: int,
    operator: OperatorContext,
    make: str | None,
    model: str | None,
    serial_number: str | None,
    remark: str | None,
) -> Job:
    row = _lock_job(db, job_id)
    if row.status == JobStatus.CANCELLED:
        raise PreconditionFailed('Job is cancelled; no further changes are allowed')

    row.scale_make = make.strip() if make and make.strip() else None
    row.scale_model = model.strip() if model and model.strip() else None
    row.scale_serial = serial_number.strip() if serial_number and serial_number.strip() else None
    row.remark = remark.strip() if remark and remark.strip() else None
    row.updated_at = _now()
    log_audit(db, actor=operator.name, action='JOB_EQUIPMENT_UPDATED', job_id=row.id)
    _flush(db)
    return to_job(row)


def get_job(db: Session, *, job_id: int) -> Job:
    row = db.execute(select(JobModel).where(JobModel.id == job_id)).scalar_one_or_none()
    if not row:
        raise NotFound('Job', job_id)
    return to_job(row)


def list_jobs(db: Session, *, status: JobStatus | None = None) -> list[dict]:
    query = (
        select(
            JobModel.id,
            JobModel.job_number,
            JobModel.status,
            JobModel.scale_make,
            JobModel.scale_model,
            JobModel.scale_serial,
            JobModel.taken_by,
            JobModel.created_at,
            CustomerModel.id.label('customer_id'),
            CustomerModel.name.label('customer_name'),
        )
        .join(CustomerModel, CustomerModel.id == JobModel.customer_id)
        .order_by(JobModel.created_at.desc(), JobModel.id.desc())
    )
    if status is not None:
        query = query.where(JobModel.status == status)

    return [
        {
            'id': row.id,
            'job_number': row.job_number,
            'status': row.status.value,
            'make': row.scale_make,
            'model': row.scale_model,
            'serial_number': row.scale_serial,
            'taken_by': row.taken_by,
            'created_at': row.created_at,
            'customer_id': row.customer_id,
            'customer_name': row.customer_name,
        }
        for row in db.execute(query).all()
    ]


def status_counts(db: Session) -> dict[str, int]:
    counts = {status.value: 0 for status in JobStatus}
    rows = db.execute(select(JobModel.status, func.count(JobModel.id)).group_by(JobModel.status)).all()
    for status, count in rows:
        counts[status.value] = count
    return counts


def load_job_bundle(db: Session, *, job_id: int) -> JobBundle:
    row = db.execute(
        select(JobModel, CustomerModel)
        .join(CustomerModel, CustomerModel.id == JobModel.customer_id)
        .where(JobModel.id == job_id)
    ).one_or_none()
    if not row:
        raise NotFound('Job', job_id)
    job_row, customer_row = row

    inspection_row = _stage_row(db, InspectionModel, job_id)
    quotation_row = _stage_row(db, QuotationModel, job_id)
    approval_row = _stage_row(db, ApprovalModel, job_id)
    invoice_row = _stage_row(db, InvoiceModel, job_id)
    delivery_row = _stage_row(db, DeliveryModel, job_id)

    return JobBundle(
        job=to_job(job_row),
        customer=to_customer(customer_row),
        inspection=to_inspection(inspection_row, _spare_part_rows(db, inspection_row.id)) if inspection_row else None,
        quotation=to_quotation(quotation_row) if quotation_row else None,
        approval=to_approval(approval_row) if approval_row else None,
        invoice=to_invoice(invoice_row) if invoice_row else None,
        delivery=to_delivery(delivery_row) if delivery_row else None,
    )


def record_inspection(
    db: Session,
    *,
    job_id: int,
    operator: OperatorContext,
    payload: Mapping[str, Any],
    today: date | None = None,
) -> TransitionDecision:
    today = today or _today()
    job_row = _lock_for_stage(db, job_id, WorkflowStage.INSPECTION)
    inspection = parse_inspection(
        {'inspection_date': today, **payload, 'job_id': job_id},
        operator=operator,
    )
    decision = check_stage_record(
        job_row.status, WorkflowStage.INSPECTION, inspection, TransitionContext(today=today)
    )

    row = _stage_row(db, InspectionModel, job_id)
    if row is None:
        row = InspectionModel(job_id=job_id, created_at=_now())
        db.add(row)
    row.problems_found = inspection.problems_found
    row.inspected_by = inspection.inspected_by
    row.inspection_date = inspection.inspection_date
    row.notes = inspection.notes
    row.total_cost = inspection.total_cost
    row.updated_at = _now()
    _flush(db)

    # The parts list is replaced wholesale so total_cost always matches the stored lines.
    db.execute(delete(InspectionSparePart).where(InspectionSparePart.inspection_id == row.id))
    for position, part in enumerate(inspection.spare_parts):
        db.add(
            InspectionSparePart(
                inspection_id=row.id,
                position=position,
                part_name=part.part_name,
                quantity=part.quantity,
                unit_price=part.unit_price,
                line_total=line_total(part),
            )
        )

    _apply_decision(
        db,
        job_row,
        decision,
        operator,
        {'total_cost': str(inspection.total_cost), 'spare_parts': len(inspection.spare_parts)},
    )
    _flush(db)
    return decision


def _quotation_defaults(
    job_row: JobModel,
    inspection_row: InspectionModel,
    existing: QuotationModel | None,
    today: date,
) -> dict[str, Any]:
    if existing is not None:
        return {
            'quotation_number': existing.quotation_number,
            'quotation_date': existing.quotation_date,
            'amount': existing.amount,
        }
    return {
        'quotation_number': default_quotation_number(job_row.job_number, today.year),
        'quotation_date': today,
        # Seeded from the stored inspection, never from a client-side placeholder.
        'amount': inspection_row.total_cost,
    }


def record_quotation(
    db: Session,
    *,
    job_id: int,
    operator: OperatorContext,
    payload: Mapping[str, Any],
    today: date | None = None,
) -> TransitionDecision:
    today = today or _today()
    job_row = _lock_for_stage(db, job_id, WorkflowStage.QUOTATION)
    inspection_row = _stage_row(db, InspectionModel, job_id)
    existing = _stage_row(db, QuotationModel, job_id)

    provided = {key: value for key, value in payload.items() if value is not None}
    quotation = parse_quotation(
        {**_quotation_defaults(job_row, inspection_row, existing, today), **provided, 'job_id': job_id}
    )
    in_use = _number_in_use(db, QuotationModel.quotation_number, quotation.quotation_number, job_id)
    decision = check_stage_record(
        job_row.status,
        WorkflowStage.QUOTATION,
        quotation,
        TransitionContext(today=today, quotation_number_in_use=in_use),
    )
    if in_use:
        raise UniquenessConflict('quotation_number', quotation.quotation_number)

    row = existing
    if row is None:
        row = QuotationModel(job_id=job_id, created_at=_now())
        db.add(row)
    row.quotation_number = quotation.quotation_number
    row.quotation_date = quotation.quotation_date
    row.amount = quotation.amount
    row.updated_at = _now()
    _flush(db, unique_field='quotation_number', unique_value=quotation.quotation_number)

    _apply_decision(
        db,
        job_row,
        decision,
        operator,
        {
            'quotation_number': quotation.quotation_number,
            'amount': str(quotation.amount),
            'inspection_total_cost': str(inspection_row.total_cost),
        },
    )
    _flush(db)
    return decision


def record_approval(
    db: Session,
    *,
    job_id: int,
    operator: OperatorContext,
    payload: Mapping[str, Any],
    today: date | None = None,
) -> TransitionDecision:
    today = today or _today()
    job_row = _lock_for_stage(db, job_id, WorkflowStage.APPROVAL)
    approval = parse_approval({'approval_date': today, **payload, 'job_id': job_id}, operator=operator)
    decision = check_stage_record(job_row.status, WorkflowStage.APPROVAL, approval, TransitionContext(today=today))

    row = _stage_row(db, ApprovalModel, job_id)
    if row is None:
        row = ApprovalModel(job_id=job_id, created_at=_now())
        db.add(row)
    row.lpo_number = approval.lpo_number
    row.reference_number = approval.reference_number
    row.approval_date = approval.approval_date
    row.approved_by = approval.approved_by
    row.prepared_by = approval.prepared_by
    row.notes = approval.notes
    _flush(db)

    _apply_decision(
        db,
        job_row,
        decision,
        operator,
        {'lpo_number': approval.lpo_number, 'reference_number': approval.reference_number},
    )
    _flush(db)
    return decision


def record_invoice(
    db: Session,
    *,
    job_id: int,
    operator: OperatorContext,
    payload: Mapping[str, Any],
    today: date | None = None,
) -> TransitionDecision:
    today = today or _today()
    job_row = _lock_for_stage(db, job_id, WorkflowStage.INVOICE)
    quotation_row = _stage_row(db, QuotationModel, job_id)

    defaults: dict[str, Any] = {'invoice_date': today}
    if quotation_row is not None:
        defaults['amount'] = quotation_row.amount
    provided = {key: value for key, value in payload.items() if value is not None}
    invoice = parse_invoice({**defaults, **provided, 'job_id': job_id})

    in_use = _number_in_use(db, InvoiceModel.invoice_number, invoice.invoice_number, job_id)
    decision = check_stage_record(
        job_row.status,
        WorkflowStage.INVOICE,
        invoice,
        TransitionContext(today=today, invoice_number_in_use=in_use),
    )
    if in_use:
        raise UniquenessConflict('invoice_number', invoice.invoice_number)

    row = _stage_row(db, InvoiceModel, job_id)
    if row is None:
        row = InvoiceModel(job_id=job_id, created_at=_now())
        db.add(row)
    row.invoice_number = invoice.invoice_number
    row.invoice_date = invoice.invoice_date
    row.amount = invoice.amount
    _flush(db, unique_field='invoice_number', unique_value=invoice.invoice_number)

    _apply_decision(
        db,
        job_row,
        decision,
        operator,
        {'invoice_number': invoice.invoice_number, 'amount': str(invoice.amount)},
    )
    _flush(db)
    return decision


def record_delivery(
    db: Session,
    *,
    job_id: int,
    operator: OperatorContext,
    payload: Mapping[str, Any],
    today: date | None = None,
) -> TransitionDecision:
    today = today or _today()
    job_row = _lock_for_stage(db, job_id, WorkflowStage.DELIVERY)
    delivery = parse_delivery({'delivery_date': today, **payload, 'job_id': job_id}, operator=operator)
    decision = check_stage_record(job_row.status, WorkflowStage.DELIVERY, delivery, TransitionContext(today=today))

    row = _stage_row(db, DeliveryModel, job_id)
    if row is None:
        row = DeliveryModel(job_id=job_id, created_at=_now())
        db.add(row)
    row.delivery_date = delivery.delivery_date
    row.delivered_by = delivery.delivered_by
    row.received_by = delivery.received_by
    _flush(db)

    _apply_decision(
        db,
        job_row,
        decision,
        operator,
        {'delivery_date': delivery.delivery_date.isoformat(), 'delivered_by': delivery.delivered_by},
    )
    _flush(db)
    return decision


def cancel_job(db: Session, *, job_id: int, operator: OperatorContext, reason: str | None = None) -> Job:
    job_row = _lock_job(db, job_id)
    previous = job_row.status
    job_row.status = cancel(previous)
    job_row.cancel_reason = reason.strip() if reason and reason.strip() else None
    job_row.updated_at = _now()
    log_audit(
        db,
        actor=operator.name,
        action='JOB_CANCELLED',
        job_id=job_row.id,
        metadata={'from_status': previous.value, 'reason': job_row.cancel_reason},
    )
    _flush(db)
    logger.info('Job %s cancelled from %s by %s', job_row.job_number, previous.value, operator.name)
    return to_job(job_row)


def delete_job(db: Session, *, job_id: int, operator: OperatorContext) -> None:
    """Remove a job aggregate and every stage record it owns."""
    job_row = _lock_job(db, job_id)
    inspection_ids = select(InspectionModel.id).where(InspectionModel.job_id == job_id)
    db.execute(delete(InspectionSparePart).where(InspectionSparePart.inspection_id.in_(inspection_ids)))
    for model in STAGE_MODELS.values():
        db.execute(delete(model).where(model.job_id == job_id))
    log_audit(
        db,
        actor=operator.name,
        action='JOB_DELETED',
        job_id=job_row.id,
        metadata={'job_number': job_row.job_number, 'status': job_row.status.value},
    )
    db.delete(job_row)
    _flush(db)
    logger.warning('Job %s deleted by %s', job_row.job_number, operator.name)


def preview_document(
    db: Session,
    *,
    job_id: int,
    currency_code: str | None = None,
    tax_rate: Decimal | None = None,
) -> PreviewDoc:
    bundle = load_job_bundle(db, job_id=job_id)
    return compose_preview(
        bundle.job,
        bundle.inspection,
        customer=bundle.customer,
        quotation=bundle.quotation,
        currency_code=currency_code or settings.currency_code,
        tax_rate=settings.tax_rate if tax_rate is None else tax_rate,
    )


def quotation_document(
    db: Session,
    *,
    job_id: int,
    quotation_number: str | None = None,
    quotation_date: date | str | None = None,
    amount: Decimal | str | None = None,
    today: date | None = None,
) -> QuotationDoc:
    today = today or _today()
    bundle = load_job_bundle(db, job_id=job_id)
    if bundle.inspection is None:
        raise PreconditionFailed('Inspection must be recorded before a quotation can be drafted')

    if bundle.quotation is not None:
        number = bundle.quotation.quotation_number
        issued = bundle.quotation.quotation_date
        value = bundle.quotation.amount
    else:
        number = default_quotation_number(bundle.job.job_number, today.year)
        issued = today
        value = bundle.inspection.total_cost

    draft = parse_quotation(
        {
            'job_id': job_id,
            'quotation_number': (quotation_number or '').strip() or number,
            'quotation_date': quotation_date if quotation_date is not None else issued,
            'amount': amount if amount is not None else value,
        }
    )
    fields = QuotationFields(
        quotation_number=draft.quotation_number,
        quotation_date=draft.quotation_date,
        amount=draft.amount,
    )
    return compose_quotation(
        bundle.job,
        bundle.inspection,
        fields,
        customer=bundle.customer,
        currency_code=settings.currency_code,
        tax_rate=settings.tax_rate,
        validity_days=settings.quotation_validity_days,
        terms=settings.quotation_terms,
    )
