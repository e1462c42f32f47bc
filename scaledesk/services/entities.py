from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from scaledesk.errors import InvalidLineItem, ValidationError
from scaledesk.models import JobStatus
from scaledesk.services.cost_math_service import aggregate, line_total, round_money

# Largest values the Numeric(14, 2) money columns and Integer quantity column hold.
MAX_AMOUNT = Decimal('999999999999.99')
MAX_QUANTITY = 2**31 - 1


@dataclass(frozen=True)
class OperatorContext:
    """Who is performing a workflow action; passed explicitly into every write."""

    name: str
    role: str = 'USER'


@dataclass(frozen=True)
class Customer:
    name: str
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    id: int | None = None

    def with_contact(
        self,
        *,
        contact_person: str | None = None,
        phone: str | None = None,
        email: str | None = None,
        address: str | None = None,
    ) -> Customer:
        # The customer name stays fixed once a job references it.
        return replace(
            self,
            contact_person=contact_person if contact_person is not None else self.contact_person,
            phone=phone if phone is not None else self.phone,
            email=email if email is not None else self.email,
            address=address if address is not None else self.address,
        )


@dataclass(frozen=True)
class Job:
    job_number: str
    customer_id: int
    taken_by: str
    status: JobStatus = JobStatus.INTAKE
    make: str | None = None
    model: str | None = None
    serial_number: str | None = None
    remark: str | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class SparePart:
    part_name: str
    quantity: int
    unit_price: Decimal
    id: int | None = None


@dataclass(frozen=True)
class Inspection:
    job_id: int
    inspected_by: str
    inspection_date: date
    problems_found: str | None = None
    notes: str | None = None
    spare_parts: tuple[SparePart, ...] = ()
    id: int | None = None

    @property
    def total_cost(self) -> Decimal:
        return aggregate(self.spare_parts).subtotal


@dataclass(frozen=True)
class Quotation:
    job_id: int
    quotation_number: str
    quotation_date: date
    amount: Decimal
    id: int | None = None


@dataclass(frozen=True)
class Approval:
    job_id: int
    approval_date: date
    prepared_by: str
    lpo_number: str | None = None
    reference_number: str | None = None
    approved_by: str | None = None
    notes: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class Invoice:
    job_id: int
    invoice_number: str
    invoice_date: date
    amount: Decimal
    id: int | None = None


@dataclass(frozen=True)
class Delivery:
    job_id: int
    delivery_date: date
    delivered_by: str
    received_by: str | None = None
    id: int | None = None


def default_quotation_number(job_number: str, year: int) -> str:
    return f'QT-{job_number}-{year}'


def _clean_text(raw: Mapping[str, Any], field: str, *, required: bool = False) -> str | None:
    value = raw.get(field)
    if value is None:
        if required:
            raise ValidationError(field, 'is required')
        return None
    if not isinstance(value, str):
        raise ValidationError(field, 'must be text')
    value = value.strip()
    if not value:
        if required:
            raise ValidationError(field, 'is required')
        return None
    return value


def _required_text(raw: Mapping[str, Any], field: str) -> str:
    value = _clean_text(raw, field, required=True)
    if value is None:
        raise ValidationError(field, 'is required')
    return value


def _identifier(raw: Mapping[str, Any], field: str, *, required: bool = True) -> int | None:
    value = raw.get(field)
    if value is None:
        if required:
            raise ValidationError(field, 'is required')
        return None
    if isinstance(value, bool):
        raise ValidationError(field, 'must be an integer id')
    try:
        parsed = int(str(value).strip())
    except ValueError as exc:
        raise ValidationError(field, 'must be an integer id') from exc
    if parsed <= 0:
        raise ValidationError(field, 'must be a positive id')
    return parsed


def parse_decimal(value: Any, field: str, *, error: type[ValidationError] = ValidationError) -> Decimal:
    if value is None:
        raise error(field, 'is required')
    if isinstance(value, bool):
        raise error(field, 'must be a number')
    if isinstance(value, Decimal):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            raise error(field, 'is required')
        try:
            parsed = Decimal(raw)
        except InvalidOperation as exc:
            raise error(field, 'must be a number') from exc
    if not parsed.is_finite():
        raise error(field, 'must be a finite number')
    return parsed


def parse_date(value: Any, field: str) -> date:
    if value is None:
        raise ValidationError(field, 'is required')
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError as exc:
        raise ValidationError(field, 'must be a date in YYYY-MM-DD format') from exc


def _money(raw: Mapping[str, Any], field: str) -> Decimal:
    amount = parse_decimal(raw.get(field), field)
    if amount < 0:
        raise ValidationError(field, 'cannot be negative')
    if round_money(amount) > MAX_AMOUNT:
        raise ValidationError(field, f'cannot exceed {MAX_AMOUNT}')
    return amount


def parse_customer(raw: Mapping[str, Any]) -> Customer:
    email = _clean_text(raw, 'email')
    if email is not None and '@' not in email:
        raise ValidationError('email', 'must be an email address')
    return Customer(
        id=_identifier(raw, 'id', required=False),
        name=_required_text(raw, 'name'),
        contact_person=_clean_text(raw, 'contact_person'),
        phone=_clean_text(raw, 'phone'),
        email=email,
        address=_clean_text(raw, 'address'),
    )


def parse_job(raw: Mapping[str, Any], *, operator: OperatorContext | None = None) -> Job:
    taken_by = _clean_text(raw, 'taken_by') or (operator.name if operator else None)
    if not taken_by:
        raise ValidationError('taken_by', 'is required')

    status = raw.get('status', JobStatus.INTAKE)
    try:
        status = JobStatus(status)
    except ValueError as exc:
        raise ValidationError('status', f'unknown status {status!r}') from exc

    return Job(
        id=_identifier(raw, 'id', required=False),
        job_number=_required_text(raw, 'job_number'),
        customer_id=_identifier(raw, 'customer_id'),
        taken_by=taken_by,
        status=status,
        make=_clean_text(raw, 'make'),
        model=_clean_text(raw, 'model'),
        serial_number=_clean_text(raw, 'serial_number'),
        remark=_clean_text(raw, 'remark'),
        created_at=raw.get('created_at'),
        updated_at=raw.get('updated_at'),
    )


def parse_spare_part(raw: Mapping[str, Any], *, index: int = 0) -> SparePart:
    prefix = f'spare_parts[{index}]'

    name = raw.get('part_name')
    if not isinstance(name, str) or not name.strip():
        raise InvalidLineItem(f'{prefix}.part_name', 'is required')

    quantity = parse_decimal(raw.get('quantity'), f'{prefix}.quantity', error=InvalidLineItem)
    if quantity != quantity.to_integral_value():
        raise InvalidLineItem(f'{prefix}.quantity', 'must be a whole number')
    if quantity <= 0:
        raise InvalidLineItem(f'{prefix}.quantity', 'must be greater than zero')
    if quantity > MAX_QUANTITY:
        raise InvalidLineItem(f'{prefix}.quantity', f'cannot exceed {MAX_QUANTITY}')

    unit_price = parse_decimal(raw.get('unit_price'), f'{prefix}.unit_price', error=InvalidLineItem)
    if unit_price < 0:
        raise InvalidLineItem(f'{prefix}.unit_price', 'cannot be negative')
    if round_money(unit_price) > MAX_AMOUNT:
        raise InvalidLineItem(f'{prefix}.unit_price', f'cannot exceed {MAX_AMOUNT}')

    part = SparePart(
        id=_identifier(raw, 'id', required=False),
        part_name=name.strip(),
        quantity=int(quantity),
        unit_price=unit_price,
    )
    if line_total(part) > MAX_AMOUNT:
        raise InvalidLineItem(f'{prefix}.unit_price', f'line total cannot exceed {MAX_AMOUNT}')
    return part


def parse_inspection(raw: Mapping[str, Any], *, operator: OperatorContext | None = None) -> Inspection:
    inspected_by = _clean_text(raw, 'inspected_by') or (operator.name if operator else None)
    if not inspected_by:
        raise ValidationError('inspected_by', 'is required')

    raw_parts = raw.get('spare_parts') or []
    if not isinstance(raw_parts, (list, tuple)):
        raise ValidationError('spare_parts', 'must be a list')
    parts = tuple(parse_spare_part(part, index=idx) for idx, part in enumerate(raw_parts))
    if aggregate(parts).subtotal > MAX_AMOUNT:
        raise ValidationError('spare_parts', f'total cost cannot exceed {MAX_AMOUNT}')

    return Inspection(
        id=_identifier(raw, 'id', required=False),
        job_id=_identifier(raw, 'job_id'),
        inspected_by=inspected_by,
        inspection_date=parse_date(raw.get('inspection_date'), 'inspection_date'),
        problems_found=_clean_text(raw, 'problems_found'),
        notes=_clean_text(raw, 'notes'),
        spare_parts=parts,
    )


def parse_quotation(raw: Mapping[str, Any]) -> Quotation:
    return Quotation(
        id=_identifier(raw, 'id', required=False),
        job_id=_identifier(raw, 'job_id'),
        quotation_number=_required_text(raw, 'quotation_number'),
        quotation_date=parse_date(raw.get('quotation_date'), 'quotation_date'),
        amount=_money(raw, 'amount'),
    )


def parse_approval(raw: Mapping[str, Any], *, operator: OperatorContext | None = None) -> Approval:
    prepared_by = _clean_text(raw, 'prepared_by') or (operator.name if operator else None)
    if not prepared_by:
        raise ValidationError('prepared_by', 'is required')
    return Approval(
        id=_identifier(raw, 'id', required=False),
        job_id=_identifier(raw, 'job_id'),
        approval_date=parse_date(raw.get('approval_date'), 'approval_date'),
        prepared_by=prepared_by,
        lpo_number=_clean_text(raw, 'lpo_number'),
        reference_number=_clean_text(raw, 'reference_number'),
        approved_by=_clean_text(raw, 'approved_by'),
        notes=_clean_text(raw, 'notes'),
    )


def parse_invoice(raw: Mapping[str, Any]) -> Invoice:
    return Invoice(
        id=_identifier(raw, 'id', required=False),
        job_id=_identifier(raw, 'job_id'),
        invoice_number=_required_text(raw, 'invoice_number'),
        invoice_date=parse_date(raw.get('invoice_date'), 'invoice_date'),
        amount=_money(raw, 'amount'),
    )


def parse_delivery(raw: Mapping[str, Any], *, operator: OperatorContext | None = None) -> Delivery:
    delivered_by = _clean_text(raw, 'delivered_by') or (operator.name if operator else None)
    if not delivered_by:
        raise ValidationError('delivered_by', 'is required')
    return Delivery(
        id=_identifier(raw, 'id', required=False),
        job_id=_identifier(raw, 'job_id'),
        delivery_date=parse_date(raw.get('delivery_date'), 'delivery_date'),
        delivered_by=delivered_by,
        received_by=_clean_text(raw, 'received_by'),
    )
