from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
IdType = BigInteger().with_variant(Integer, 'sqlite')
Money = Numeric(14, 2)


class Base(DeclarativeBase):
    pass


class JobStatus(str, Enum):
    INTAKE = 'intake'
    INSPECTED = 'inspected'
    QUOTED = 'quoted'
    APPROVED = 'approved'
    INVOICED = 'invoiced'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class WorkflowStage(str, Enum):
    INSPECTION = 'inspection'
    QUOTATION = 'quotation'
    APPROVAL = 'approval'
    INVOICE = 'invoice'
    DELIVERY = 'delivery'


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_person: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(64))
    email: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Job(Base):
    __tablename__ = 'jobs'
    __table_args__ = (
        UniqueConstraint('job_number', name='jobs_job_number_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    job_number: Mapped[str] = mapped_column(String(64), nullable=False)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False)
    scale_make: Mapped[str | None] = mapped_column(Text)
    scale_model: Mapped[str | None] = mapped_column(Text)
    scale_serial: Mapped[str | None] = mapped_column(Text)
    remark: Mapped[str | None] = mapped_column(Text)
    status: Mapped[JobStatus] = mapped_column(
        SQLEnum(JobStatus, name='job_status'), nullable=False, default=JobStatus.INTAKE, server_default='INTAKE'
    )
    taken_by: Mapped[str] = mapped_column(Text, nullable=False)
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Concurrent writers that read the same version cannot both commit a transition.
    __mapper_args__ = {'version_id_col': version}


class Inspection(Base):
    __tablename__ = 'inspections'
    __table_args__ = (
        UniqueConstraint('job_id', name='inspections_job_id_key'),
        CheckConstraint('total_cost >= 0', name='inspections_total_cost_non_negative'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    job_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    problems_found: Mapped[str | None] = mapped_column(Text)
    inspected_by: Mapped[str] = mapped_column(Text, nullable=False)
    inspection_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    total_cost: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0.00'), server_default='0')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InspectionSparePart(Base):
    __tablename__ = 'inspection_spare_parts'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='inspection_spare_parts_quantity_positive'),
        CheckConstraint('unit_price >= 0', name='inspection_spare_parts_unit_price_non_negative'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    inspection_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('inspections.id', ondelete='CASCADE'), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    part_name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Money, nullable=False)


class Quotation(Base):
    __tablename__ = 'quotations'
    __table_args__ = (
        UniqueConstraint('job_id', name='quotations_job_id_key'),
        UniqueConstraint('quotation_number', name='quotations_quotation_number_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    job_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    quotation_number: Mapped[str] = mapped_column(String(64), nullable=False)
    quotation_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Approval(Base):
    __tablename__ = 'approvals'
    __table_args__ = (
        UniqueConstraint('job_id', name='approvals_job_id_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    job_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    lpo_number: Mapped[str | None] = mapped_column(String(64))
    reference_number: Mapped[str | None] = mapped_column(String(64))
    approval_date: Mapped[date] = mapped_column(Date, nullable=False)
    approved_by: Mapped[str | None] = mapped_column(Text)
    prepared_by: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Invoice(Base):
    __tablename__ = 'invoices'
    __table_args__ = (
        UniqueConstraint('job_id', name='invoices_job_id_key'),
        UniqueConstraint('invoice_number', name='invoices_invoice_number_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    job_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Delivery(Base):
    __tablename__ = 'deliveries'
    __table_args__ = (
        UniqueConstraint('job_id', name='deliveries_job_id_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    job_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivered_by: Mapped[str] = mapped_column(Text, nullable=False)
    received_by: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    actor: Mapped[str | None] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    job_id: Mapped[int | None] = mapped_column(BigInteger)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
