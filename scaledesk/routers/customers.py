from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.orm import Session

from scaledesk.db import get_db
from scaledesk.dependencies import get_operator, http_error
from scaledesk.errors import WorkflowError
from scaledesk.services.audit_service import log_audit
from scaledesk.services.customer_service import (
    create_customer,
    get_customer,
    list_customers,
    update_customer_contact,
)
from scaledesk.services.entities import OperatorContext

router = APIRouter(prefix='/api/customers', tags=['customers'])


class CustomerCreate(BaseModel):
    name: str
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None


class CustomerContactUpdate(BaseModel):
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None


@router.get('')
def customers(db: Session = Depends(get_db)):
    return jsonable_encoder({'data': list_customers(db)})


@router.get('/{customer_id}')
def customer_detail(customer_id: int, db: Session = Depends(get_db)):
    try:
        customer = get_customer(db, customer_id=customer_id)
    except WorkflowError as exc:
        raise http_error(exc) from exc
    return jsonable_encoder(customer)


@router.post('', status_code=status.HTTP_201_CREATED)
def create_customer_endpoint(
    body: CustomerCreate,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    try:
        customer = create_customer(db, payload=body.model_dump())
    except WorkflowError as exc:
        raise http_error(exc) from exc
    log_audit(db, actor=operator.name, action='CUSTOMER_CREATED', job_id=None, metadata={'customer_id': customer.id})
    db.commit()
    return jsonable_encoder(customer)


@router.patch('/{customer_id}')
def update_customer_endpoint(
    customer_id: int,
    body: CustomerContactUpdate,
    operator: OperatorContext = Depends(get_operator),
    db: Session = Depends(get_db),
):
    try:
        customer = update_customer_contact(db, customer_id=customer_id, **body.model_dump())
    except WorkflowError as exc:
        raise http_error(exc) from exc
    log_audit(db, actor=operator.name, action='CUSTOMER_CONTACT_UPDATED', job_id=None, metadata={'customer_id': customer_id})
    db.commit()
    return jsonable_encoder(customer)
