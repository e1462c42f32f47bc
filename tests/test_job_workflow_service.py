from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scaledesk.errors import NotFound, OutOfOrderTransition, PreconditionFailed, UniquenessConflict, ValidationError
from scaledesk.models import Base, InspectionSparePart, JobStatus
from scaledesk.models import Job as JobModel
from scaledesk.services.audit_service import list_job_audit
from scaledesk.services.customer_service import create_customer, update_customer_contact
from scaledesk.services.entities import OperatorContext
from scaledesk.services.job_lifecycle_service import assert_consistent
from scaledesk.services.job_workflow_service import (
    cancel_job,
    create_job,
    delete_job,
    get_job,
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

TODAY = date(2026, 1, 31)

INSPECTION = {
    'problems_found': 'Load cell drift, damaged cable',
    'spare_parts': [
        {'part_name': 'Load cell', 'quantity': 2, 'unit_price': '150.00'},
        {'part_name': 'Cable', 'quantity': 1, 'unit_price': '45.50'},
    ],
}


class JobWorkflowServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            'sqlite://',
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.db = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)()
        self.operator = OperatorContext(name='tech1')
        self.customer = create_customer(self.db, payload={'name': 'Acme Scales', 'phone': '555-0101'})
        self.job = create_job(
            self.db,
            operator=self.operator,
            payload={'customer_id': self.customer.id, 'job_number': 'J-1001', 'make': 'Avery'},
        )

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _new_job(self, job_number: str) -> int:
        return create_job(
            self.db,
            operator=self.operator,
            payload={'customer_id': self.customer.id, 'job_number': job_number},
        ).id

    def _advance_to_quoted(self, job_id: int) -> None:
        record_inspection(self.db, job_id=job_id, operator=self.operator, payload=INSPECTION, today=TODAY)
        record_quotation(self.db, job_id=job_id, operator=self.operator, payload={}, today=TODAY)

    def _assert_consistent(self, job_id: int) -> None:
        bundle = load_job_bundle(self.db, job_id=job_id)
        assert_consistent(bundle.job.status, bundle.stages_present)

    def test_create_job_starts_in_intake(self) -> None:
        self.assertEqual(self.job.status, JobStatus.INTAKE)
        self.assertEqual(self.job.taken_by, 'tech1')
        self.assertEqual(list_job_audit(self.db, job_id=self.job.id)[0]['action'], 'JOB_CREATED')

    def test_create_job_generates_number_when_missing(self) -> None:
        job = create_job(
            self.db,
            operator=self.operator,
            payload={'customer_id': self.customer.id},
            now=datetime(2026, 10, 18, tzinfo=timezone.utc),
        )
        self.assertRegex(job.job_number, r'^JB202610\d{4}$')

    def test_generated_job_number_retries_on_collision(self) -> None:
        self._new_job('JB2026101234')
        with patch('scaledesk.services.job_workflow_service.secrets.randbelow', side_effect=[234, 235]):
            job = create_job(
                self.db,
                operator=self.operator,
                payload={'customer_id': self.customer.id},
                now=datetime(2026, 10, 18, tzinfo=timezone.utc),
            )
        self.assertEqual(job.job_number, 'JB2026101235')

    def test_create_job_rejects_duplicate_number_and_unknown_customer(self) -> None:
        with self.assertRaises(UniquenessConflict) as ctx:
            self._new_job('J-1001')
        self.assertEqual(ctx.exception.field, 'job_number')

        with self.assertRaises(NotFound):
            create_job(self.db, operator=self.operator, payload={'customer_id': 999, 'job_number': 'J-2'})

    def test_full_workflow_reaches_delivered(self) -> None:
        job_id = self.job.id

        decision = record_inspection(self.db, job_id=job_id, operator=self.operator, payload=INSPECTION, today=TODAY)
        self.assertEqual(decision.status, JobStatus.INSPECTED)
        self._assert_consistent(job_id)

        record_quotation(self.db, job_id=job_id, operator=self.operator, payload={}, today=TODAY)
        record_approval(
            self.db, job_id=job_id, operator=self.operator, payload={'lpo_number': 'LPO-77'}, today=TODAY
        )
        record_invoice(
            self.db, job_id=job_id, operator=self.operator, payload={'invoice_number': 'INV-1'}, today=TODAY
        )
        decision = record_delivery(
            self.db, job_id=job_id, operator=self.operator, payload={'received_by': 'Rana'}, today=TODAY
        )

        self.assertEqual(decision.status, JobStatus.DELIVERED)
        self.assertEqual(get_job(self.db, job_id=job_id).status, JobStatus.DELIVERED)
        self._assert_consistent(job_id)

        bundle = load_job_bundle(self.db, job_id=job_id)
        self.assertEqual(bundle.invoice.amount, Decimal('345.50'))
        self.assertEqual(bundle.delivery.delivered_by, 'tech1')

        actions = [row['action'] for row in list_job_audit(self.db, job_id=job_id)]
        self.assertEqual(
            actions,
            [
                'JOB_CREATED',
                'JOB_INSPECTION_RECORDED',
                'JOB_QUOTATION_RECORDED',
                'JOB_APPROVAL_RECORDED',
                'JOB_INVOICE_RECORDED',
                'JOB_DELIVERY_RECORDED',
            ],
        )

    def test_inspection_stores_lines_and_derived_total(self) -> None:
        record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)

        bundle = load_job_bundle(self.db, job_id=self.job.id)
        self.assertEqual(bundle.inspection.total_cost, Decimal('345.50'))
        self.assertEqual(bundle.inspection.inspection_date, TODAY)
        line_totals = self.db.execute(
            select(InspectionSparePart.line_total).order_by(InspectionSparePart.position)
        ).scalars().all()
        self.assertEqual(line_totals, [Decimal('300.00'), Decimal('45.50')])

    def test_editing_inspection_replaces_parts_without_advancing(self) -> None:
        record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)
        decision = record_inspection(
            self.db,
            job_id=self.job.id,
            operator=self.operator,
            payload={'spare_parts': [{'part_name': 'Battery', 'quantity': 1, 'unit_price': '20'}]},
            today=TODAY,
        )

        self.assertFalse(decision.advanced)
        bundle = load_job_bundle(self.db, job_id=self.job.id)
        self.assertEqual([part.part_name for part in bundle.inspection.spare_parts], ['Battery'])
        self.assertEqual(bundle.inspection.total_cost, Decimal('20.00'))

    def test_invalid_line_item_leaves_job_untouched(self) -> None:
        with self.assertRaises(ValidationError):
            record_inspection(
                self.db,
                job_id=self.job.id,
                operator=self.operator,
                payload={'spare_parts': [{'part_name': 'Fuse', 'quantity': 0, 'unit_price': '1'}]},
                today=TODAY,
            )
        self.assertEqual(get_job(self.db, job_id=self.job.id).status, JobStatus.INTAKE)

    def test_quotation_before_inspection_is_out_of_order(self) -> None:
        with self.assertRaises(OutOfOrderTransition):
            record_quotation(self.db, job_id=self.job.id, operator=self.operator, payload={}, today=TODAY)

    def test_skipping_ahead_is_out_of_order_for_every_later_stage(self) -> None:
        writers = [
            ('quotation', record_quotation, {}),
            ('approval', record_approval, {'lpo_number': 'LPO-1'}),
            ('invoice', record_invoice, {'invoice_number': 'INV-1'}),
            ('invoice without number', record_invoice, {}),
            ('delivery', record_delivery, {}),
        ]
        for name, record, payload in writers:
            with self.subTest(stage=name):
                with self.assertRaises(OutOfOrderTransition):
                    record(self.db, job_id=self.job.id, operator=self.operator, payload=payload, today=TODAY)
        self.assertEqual(get_job(self.db, job_id=self.job.id).status, JobStatus.INTAKE)

    def test_stage_writes_on_cancelled_job_fail_before_payload_checks(self) -> None:
        cancel_job(self.db, job_id=self.job.id, operator=self.operator)
        writers = [
            ('inspection', record_inspection, INSPECTION),
            ('quotation', record_quotation, {}),
            ('approval', record_approval, {'lpo_number': 'LPO-1'}),
            ('invoice', record_invoice, {'invoice_number': 'INV-1'}),
            ('delivery', record_delivery, {}),
        ]
        for name, record, payload in writers:
            with self.subTest(stage=name):
                with self.assertRaises(PreconditionFailed) as ctx:
                    record(self.db, job_id=self.job.id, operator=self.operator, payload=payload, today=TODAY)
                self.assertNotIsInstance(ctx.exception, UniquenessConflict)

    def test_status_ahead_of_stage_records_blocks_writes(self) -> None:
        record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)
        row = self.db.get(JobModel, self.job.id)
        row.status = JobStatus.QUOTED
        self.db.flush()

        with self.assertRaises(PreconditionFailed):
            record_approval(
                self.db, job_id=self.job.id, operator=self.operator, payload={'lpo_number': 'LPO-1'}, today=TODAY
            )

    def test_quotation_defaults_come_from_stored_inspection(self) -> None:
        self._advance_to_quoted(self.job.id)

        quotation = load_job_bundle(self.db, job_id=self.job.id).quotation
        self.assertEqual(quotation.quotation_number, 'QT-J-1001-2026')
        self.assertEqual(quotation.quotation_date, TODAY)
        self.assertEqual(quotation.amount, Decimal('345.50'))

    def test_quotation_edit_keeps_status(self) -> None:
        self._advance_to_quoted(self.job.id)
        decision = record_quotation(
            self.db, job_id=self.job.id, operator=self.operator, payload={'amount': '400.00'}, today=TODAY
        )

        self.assertFalse(decision.advanced)
        bundle = load_job_bundle(self.db, job_id=self.job.id)
        self.assertEqual(bundle.job.status, JobStatus.QUOTED)
        self.assertEqual(bundle.quotation.amount, Decimal('400.00'))
        self.assertEqual(bundle.quotation.quotation_number, 'QT-J-1001-2026')

    def test_earlier_stage_cannot_be_rewritten_after_advancing(self) -> None:
        self._advance_to_quoted(self.job.id)
        with self.assertRaises(OutOfOrderTransition):
            record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)

    def test_quotation_number_is_unique_across_jobs(self) -> None:
        self._advance_to_quoted(self.job.id)
        other = self._new_job('J-1002')
        record_inspection(self.db, job_id=other, operator=self.operator, payload=INSPECTION, today=TODAY)

        with self.assertRaises(UniquenessConflict):
            record_quotation(
                self.db,
                job_id=other,
                operator=self.operator,
                payload={'quotation_number': 'QT-J-1001-2026'},
                today=TODAY,
            )
        self.assertEqual(get_job(self.db, job_id=other).status, JobStatus.INSPECTED)

    def test_invoice_number_is_unique_and_amount_positive(self) -> None:
        self._advance_to_quoted(self.job.id)
        record_approval(self.db, job_id=self.job.id, operator=self.operator, payload={'reference_number': 'R-1'})

        with self.assertRaises(PreconditionFailed):
            record_invoice(
                self.db,
                job_id=self.job.id,
                operator=self.operator,
                payload={'invoice_number': 'INV-1', 'amount': '0'},
                today=TODAY,
            )

        record_invoice(self.db, job_id=self.job.id, operator=self.operator, payload={'invoice_number': 'INV-1'})

        other = self._new_job('J-1002')
        self._advance_to_quoted(other)
        record_approval(self.db, job_id=other, operator=self.operator, payload={'lpo_number': 'LPO-2'})
        with self.assertRaises(UniquenessConflict):
            record_invoice(self.db, job_id=other, operator=self.operator, payload={'invoice_number': 'INV-1'})

    def test_approval_without_lpo_or_reference_fails(self) -> None:
        self._advance_to_quoted(self.job.id)
        with self.assertRaises(PreconditionFailed):
            record_approval(self.db, job_id=self.job.id, operator=self.operator, payload={'notes': 'ok by phone'})
        self.assertEqual(get_job(self.db, job_id=self.job.id).status, JobStatus.QUOTED)

    def test_cancelled_job_rejects_every_write(self) -> None:
        record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)
        job = cancel_job(self.db, job_id=self.job.id, operator=self.operator, reason='Customer declined')
        self.assertEqual(job.status, JobStatus.CANCELLED)

        with self.assertRaises(PreconditionFailed):
            record_quotation(self.db, job_id=self.job.id, operator=self.operator, payload={}, today=TODAY)
        with self.assertRaises(PreconditionFailed):
            record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)
        with self.assertRaises(PreconditionFailed):
            update_job_equipment(
                self.db, job_id=self.job.id, operator=self.operator, make='X', model=None, serial_number=None, remark=None
            )
        with self.assertRaises(PreconditionFailed):
            cancel_job(self.db, job_id=self.job.id, operator=self.operator)

    def test_delivery_date_cannot_be_in_future(self) -> None:
        self._advance_to_quoted(self.job.id)
        record_approval(self.db, job_id=self.job.id, operator=self.operator, payload={'lpo_number': 'LPO-1'})
        record_invoice(self.db, job_id=self.job.id, operator=self.operator, payload={'invoice_number': 'INV-9'})

        with self.assertRaises(PreconditionFailed):
            record_delivery(
                self.db,
                job_id=self.job.id,
                operator=self.operator,
                payload={'delivery_date': '2026-02-01'},
                today=TODAY,
            )

    def test_list_jobs_and_status_counts(self) -> None:
        self._new_job('J-1002')
        record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)

        counts = status_counts(self.db)
        self.assertEqual(counts['intake'], 1)
        self.assertEqual(counts['inspected'], 1)
        self.assertEqual(counts['cancelled'], 0)

        inspected = list_jobs(self.db, status=JobStatus.INSPECTED)
        self.assertEqual([row['job_number'] for row in inspected], ['J-1001'])
        self.assertEqual(inspected[0]['customer_name'], 'Acme Scales')
        self.assertEqual(len(list_jobs(self.db)), 2)

    def test_update_equipment(self) -> None:
        job = update_job_equipment(
            self.db,
            job_id=self.job.id,
            operator=self.operator,
            make=' Mettler ',
            model='PS-60',
            serial_number='',
            remark=None,
        )
        self.assertEqual(job.make, 'Mettler')
        self.assertEqual(job.model, 'PS-60')
        self.assertIsNone(job.serial_number)

    def test_delete_job_removes_stage_records(self) -> None:
        self._advance_to_quoted(self.job.id)
        delete_job(self.db, job_id=self.job.id, operator=OperatorContext(name='boss', role='ADMIN'))

        with self.assertRaises(NotFound):
            load_job_bundle(self.db, job_id=self.job.id)
        self.assertEqual(self.db.execute(select(InspectionSparePart)).scalars().all(), [])
        self.assertEqual(list_job_audit(self.db, job_id=self.job.id)[-1]['action'], 'JOB_DELETED')

    def test_preview_document_for_stored_job(self) -> None:
        record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)
        doc = preview_document(self.db, job_id=self.job.id, currency_code='AED', tax_rate=Decimal('0.10'))

        self.assertEqual(doc.job.customer_name, 'Acme Scales')
        self.assertEqual(doc.financials.total.amount, Decimal('380.05'))

    def test_quotation_document_uses_override_total(self) -> None:
        record_inspection(self.db, job_id=self.job.id, operator=self.operator, payload=INSPECTION, today=TODAY)
        doc = quotation_document(self.db, job_id=self.job.id, amount='400.00', today=TODAY)

        self.assertEqual(doc.quotation_number, 'QT-J-1001-2026')
        self.assertEqual(doc.valid_until, date(2026, 3, 2))
        self.assertEqual(doc.total.amount, Decimal('400.00'))
        self.assertEqual(doc.financials.subtotal.amount, Decimal('345.50'))

    def test_quotation_document_needs_inspection(self) -> None:
        with self.assertRaises(PreconditionFailed):
            quotation_document(self.db, job_id=self.job.id, today=TODAY)

    def test_customer_contact_update_revalidates(self) -> None:
        updated = update_customer_contact(self.db, customer_id=self.customer.id, email='desk@acme.example')
        self.assertEqual(updated.email, 'desk@acme.example')
        self.assertEqual(updated.phone, '555-0101')

        with self.assertRaises(ValidationError):
            update_customer_contact(self.db, customer_id=self.customer.id, email='nope')
        with self.assertRaises(NotFound):
            update_customer_contact(self.db, customer_id=999, phone='1')


if __name__ == '__main__':
    unittest.main()
