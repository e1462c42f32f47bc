from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from scaledesk.errors import NotFound
from scaledesk.models import Customer as CustomerModel
from scaledesk.services.entities import Customer, parse_customer


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_customer(row: CustomerModel) -> Customer:
    return Customer(
        id=row.id,
        name=row.name,
        contact_person=row.contact_person,
        phone=row.phone,
        email=row.email,
        address=row.address,
    )


def _get_row(db: Session, customer_id: int) -> CustomerModel:
    row = db.execute(select(CustomerModel).where(CustomerModel.id == customer_id)).scalar_one_or_none()
    if not row:
        raise NotFound('Customer', customer_id)
    return row


def get_customer(db: Session, *, customer_id: int) -> Customer:
    return to_customer(_get_row(db, customer_id))


def list_customers(db: Session) -> list[Customer]:
    rows = db.execute(select(CustomerModel).order_by(CustomerModel.name.asc(), CustomerModel.id.asc())).scalars().all()
    return [to_customer(row) for row in rows]


def create_customer(db: Session, *, payload: Mapping[str, Any]) -> Customer:
    customer = parse_customer({key: value for key, value in payload.items() if key != 'id'})
    row = CustomerModel(
        name=customer.name,
        contact_person=customer.contact_person,
        phone=customer.phone,
        email=customer.email,
        address=customer.address,
    )
    db.add(row)
    db.flush()
    return to_customer(row)


def update_customer_contact(
    db: Session,
    *,
    customer_id: int,
    contact_person: str | None = None,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
) -> Customer:
    row = _get_row(db, customer_id)
    updated = to_customer(row).with_contact(
        contact_person=contact_person,
        phone=phone,
        email=email,
        address=address,
    )
    # Re-run field validation on the merged record.
    updated = parse_customer(
        {
            'id': updated.id,
            'name': updated.name,
            'contact_person': updated.contact_person,
            'phone': updated.phone,
            'email': updated.email,
            'address': updated.address,
        }
    )
    row.contact_person = updated.contact_person
    row.phone = updated.phone
    row.email = updated.email
    row.address = updated.address
    row.updated_at = _now()
    db.flush()
    return updated
