from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Literal, Union

from scaledesk.models import JobStatus
from scaledesk.services.cost_math_service import TAX_RATE, aggregate, format_currency, line_total, round_money
from scaledesk.services.entities import Customer, Inspection, Job, Quotation

QUOTATION_VALIDITY_DAYS = 30


@dataclass(frozen=True)
class Money:
    amount: Decimal
    display: str


@dataclass(frozen=True)
class JobSummary:
    job_number: str
    status: JobStatus
    taken_by: str
    customer_name: str | None
    customer_contact: str | None
    customer_phone: str | None
    customer_email: str | None
    make: str | None
    model: str | None
    serial_number: str | None
    remark: str | None


@dataclass(frozen=True)
class SparePartRow:
    part_name: str
    quantity: int
    unit_price: Money
    line_total: Money


@dataclass(frozen=True)
class InspectionSummary:
    inspected_by: str
    inspection_date: date
    problems_found: str | None
    notes: str | None
    spare_parts: tuple[SparePartRow, ...]
    total_cost: Money


@dataclass(frozen=True)
class FinancialBreakdown:
    subtotal: Money
    tax_rate: Decimal
    tax: Money
    total: Money


@dataclass(frozen=True)
class QuotationSummary:
    quotation_number: str
    quotation_date: date
    amount: Money


@dataclass(frozen=True)
class QuotationFields:
    quotation_number: str
    quotation_date: date
    amount: Decimal


@dataclass(frozen=True)
class PreviewDoc:
    job: JobSummary
    inspection: InspectionSummary | None
    financials: FinancialBreakdown | None
    quotation: QuotationSummary | None
    currency_code: str
    kind: Literal['preview'] = 'preview'


@dataclass(frozen=True)
class QuotationDoc:
    job: JobSummary
    inspection: InspectionSummary | None
    financials: FinancialBreakdown | None
    quotation_number: str
    quotation_date: date
    valid_until: date
    # Operator-entered amount; may differ from financials.total on purpose.
    total: Money
    terms: tuple[str, ...]
    currency_code: str
    kind: Literal['quotation'] = 'quotation'


Document = Union[PreviewDoc, QuotationDoc]


def _money(amount: Decimal, currency_code: str) -> Money:
    rounded = round_money(amount)
    return Money(amount=rounded, display=format_currency(rounded, currency_code))


def _job_summary(job: Job, customer: Customer | None) -> JobSummary:
    return JobSummary(
        job_number=job.job_number,
        status=job.status,
        taken_by=job.taken_by,
        customer_name=customer.name if customer else None,
        customer_contact=customer.contact_person if customer else None,
        customer_phone=customer.phone if customer else None,
        customer_email=customer.email if customer else None,
        make=job.make,
        model=job.model,
        serial_number=job.serial_number,
        remark=job.remark,
    )


def _inspection_summary(inspection: Inspection, currency_code: str) -> InspectionSummary:
    rows = tuple(
        SparePartRow(
            part_name=part.part_name,
            quantity=part.quantity,
            unit_price=_money(part.unit_price, currency_code),
            line_total=_money(line_total(part), currency_code),
        )
        for part in inspection.spare_parts
    )
    return InspectionSummary(
        inspected_by=inspection.inspected_by,
        inspection_date=inspection.inspection_date,
        problems_found=inspection.problems_found,
        notes=inspection.notes,
        spare_parts=rows,
        total_cost=_money(inspection.total_cost, currency_code),
    )


def _financials(inspection: Inspection, currency_code: str, tax_rate: Decimal) -> FinancialBreakdown:
    breakdown = aggregate(inspection.spare_parts, tax_rate=tax_rate)
    return FinancialBreakdown(
        subtotal=_money(breakdown.subtotal, currency_code),
        tax_rate=tax_rate,
        tax=_money(breakdown.tax, currency_code),
        total=_money(breakdown.total, currency_code),
    )


def compose_preview(
    job: Job,
    inspection: Inspection | None = None,
    *,
    customer: Customer | None = None,
    quotation: Quotation | None = None,
    currency_code: str,
    tax_rate: Decimal = TAX_RATE,
) -> PreviewDoc:
    quotation_summary = None
    if quotation is not None:
        quotation_summary = QuotationSummary(
            quotation_number=quotation.quotation_number,
            quotation_date=quotation.quotation_date,
            amount=_money(quotation.amount, currency_code),
        )
    return PreviewDoc(
        job=_job_summary(job, customer),
        inspection=_inspection_summary(inspection, currency_code) if inspection else None,
        financials=_financials(inspection, currency_code, tax_rate) if inspection else None,
        quotation=quotation_summary,
        currency_code=currency_code,
    )


def compose_quotation(
    job: Job,
    inspection: Inspection | None,
    fields: QuotationFields,
    *,
    customer: Customer | None = None,
    currency_code: str,
    tax_rate: Decimal = TAX_RATE,
    validity_days: int = QUOTATION_VALIDITY_DAYS,
    terms: tuple[str, ...] = (),
) -> QuotationDoc:
    if validity_days < 0:
        raise ValueError('Quotation validity days cannot be negative')
    return QuotationDoc(
        job=_job_summary(job, customer),
        inspection=_inspection_summary(inspection, currency_code) if inspection else None,
        financials=_financials(inspection, currency_code, tax_rate) if inspection else None,
        quotation_number=fields.quotation_number,
        quotation_date=fields.quotation_date,
        valid_until=fields.quotation_date + timedelta(days=validity_days),
        total=_money(fields.amount, currency_code),
        terms=tuple(terms),
        currency_code=currency_code,
    )
