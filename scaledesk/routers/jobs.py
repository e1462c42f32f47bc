from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.orm import Session

from scaledesk.db import get_db
from scaledesk.dependencies import get_operator, http_error, require_admin
from scaledesk.errors import WorkflowError
from scaledesk.models import JobStatus
from scaledesk.services.audit_service import list_job_audit
from scaledesk.services.entities import OperatorContext
from scaledesk.services.job_workflow_service import (
    cancel_job,
    create_job,
    delete_job,
    list_jobs,
    load_job_bundle,
    preview_document,
    quotation_document,
    record_approval,
    record_delivery,
    record_inspection,
    record_invoice,
    record_quotation,
    status_counts,
    update_job_equipment,
)
from scaledesk.services.job_lifecycle_service import TransitionDecision

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/jobs', tags=['jobs'])


class JobCreate(BaseModel):
    customer_id: int
    taken_by: str | None = None
    job_number: str | None = None
    make: str | None = None
    model: str | None = None
    serial_number: str | None = None
    remark: str | None = None


class JobEquipmentUpdate(BaseModel):
    make: str | None = None
    model: str | None = None
    serial_number: str | None = None
    remark: str | None = None


class SparePartIn(BaseModel):
    part_name: str
    quantity: int
    unit_price: Decimal


class InspectionIn(BaseModel):
    problems_found: str | None = None
    inspected_by: str | None = None
    inspection_date: date | None = None
    notes: str | None = None
    spare_parts: list[SparePartIn] = []


class QuotationIn(BaseModel):
    quotation_number: str | None = None
    quotation_date: date | None = None
    amount: Decimal | None = None


class ApprovalIn(BaseModel):
    lpo_number: str | None = None
    reference_number: str | None = None
    approval_date: date | None = None
    approved_by: str | None = None
    notes: str | None = None


class InvoiceIn(BaseModel):
    invoice_number: str
    invoice_date: date | None = None
    amount: Decimal | None = None


class DeliveryIn(BaseModel):
    delivery_date: date | None = None
    delivered_by: str | None = None
    received_by: str | None = None


class CancelIn(BaseModel):
    reason: str | None = None


def encode(value: Any) -> Any:
    # Amounts leave the API as decimal strings, never floats.
    return jsonable_encoder(value, custom_encoder={Decimal: str})


def _record_stage(
    record: Callable[..., TransitionDecision],
    db: Session,
    *,
    job_id: int,
    operator: OperatorContext,
    payload: dict[str, Any],
) -> dict:
    try:
        decision = record(db, job_id=job_id, operator=operator, payload=payload)
    except WorkflowError as exc:
        logger.info('Rejected %s for job %s: %s', record.__name__, job_id, exc)
        raise http_error(exc) from exc
    db.commit()
    return encode(
        {
            'job_id': job_id,
            'stage': decision.stage.value,
            'previous_status': decision.previous_status.value,
            'status': decision.status.value,
            'advanced': decision.advanced,
        }
    )


@router.post('', status_code=status.HTTP_201_CREATED)
def create_job_endpoint(
    body: JobCreate,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    try:
        job = create_job(db, operator=operator, payload=body.model_dump(exclude_none=True))
    except WorkflowError as exc:
        raise http_error(exc) from exc
    db.commit()
    return encode(job)


@router.get('')
def list_jobs_endpoint(
    status_filter: JobStatus | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
):
    jobs = list_jobs(db, status=status_filter)
    return encode({'data': jobs, 'count': len(jobs)})


@router.get('/stats')
def job_stats(db: Session = Depends(get_db)):
    return {'data': status_counts(db)}


@router.get('/{job_id}')
def job_detail(job_id: int, db: Session = Depends(get_db)):
    try:
        bundle = load_job_bundle(db, job_id=job_id)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    payload = encode(bundle)
    if bundle.inspection is not None:
        payload['inspection']['total_cost'] = str(bundle.inspection.total_cost)
    return payload


@router.put('/{job_id}')
def update_job(
    job_id: int,
    body: JobEquipmentUpdate,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    try:
        job = update_job_equipment(
            db,
            job_id=job_id,
            operator=operator,
            make=body.make,
            model=body.model,
            serial_number=body.serial_number,
            remark=body.remark,
        )
    except WorkflowError as exc:
        raise http_error(exc) from exc
    db.commit()
    return encode(job)


@router.delete('/{job_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_job_endpoint(
    job_id: int,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    require_admin(operator)
    try:
        delete_job(db, job_id=job_id, operator=operator)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    db.commit()


@router.post('/{job_id}/inspection')
def submit_inspection(
    job_id: int,
    body: InspectionIn,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    payload = body.model_dump(exclude_none=True)
    return _record_stage(record_inspection, db, job_id=job_id, operator=operator, payload=payload)


@router.post('/{job_id}/quotation')
def submit_quotation(
    job_id: int,
    body: QuotationIn,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    payload = body.model_dump(exclude_none=True)
    return _record_stage(record_quotation, db, job_id=job_id, operator=operator, payload=payload)


@router.post('/{job_id}/approval')
def submit_approval(
    job_id: int,
    body: ApprovalIn,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    payload = body.model_dump(exclude_none=True)
    return _record_stage(record_approval, db, job_id=job_id, operator=operator, payload=payload)


@router.post('/{job_id}/invoice')
def submit_invoice(
    job_id: int,
    body: InvoiceIn,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    payload = body.model_dump(exclude_none=True)
    return _record_stage(record_invoice, db, job_id=job_id, operator=operator, payload=payload)


@router.post('/{job_id}/delivery')
def submit_delivery(
    job_id: int,
    body: DeliveryIn,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    payload = body.model_dump(exclude_none=True)
    return _record_stage(record_delivery, db, job_id=job_id, operator=operator, payload=payload)


@router.post('/{job_id}/cancel')
def cancel_job_endpoint(
    job_id: int,
    body: CancelIn,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    try:
        job = cancel_job(db, job_id=job_id, operator=operator, reason=body.reason)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    db.commit()
    return encode(job)


@router.get('/{job_id}/preview')
def job_preview(job_id: int, db: Session = Depends(get_db)):
    try:
        document = preview_document(db, job_id=job_id)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return encode(document)


@router.get('/{job_id}/quotation-document')
def job_quotation_document(
    job_id: int,
    quotation_number: str | None = None,
    quotation_date: date | None = None,
    amount: Decimal | None = None,
    db: Session = Depends(get_db),
):
    try:
        document = quotation_document(
            db,
            job_id=job_id,
            quotation_number=quotation_number,
            quotation_date=quotation_date,
            amount=amount,
        )
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return encode(document)


@router.get('/{job_id}/audit')
def job_audit(job_id: int, db: Session = Depends(get_db)):
    return encode({'data': list_job_audit(db, job_id=job_id)})
