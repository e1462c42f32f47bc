from sqlalchemy import select

from scaledesk.db import SessionLocal, engine
from scaledesk.models import Base, Customer, Job
from scaledesk.services.entities import OperatorContext
from scaledesk.services.job_workflow_service import create_job, record_inspection


def seed() -> None:
    Base.metadata.create_all(engine)
    operator = OperatorContext(name='seed')

    with SessionLocal() as db:
        customer = db.execute(select(Customer).where(Customer.name == 'Demo Trading LLC')).scalar_one_or_none()
        if not customer:
            customer = Customer(
                name='Demo Trading LLC',
                contact_person='Front Desk',
                phone='+971 4 000 0000',
                email='desk@example.com',
            )
            db.add(customer)
            db.flush()

        job = db.execute(select(Job).where(Job.job_number == 'J-1001')).scalar_one_or_none()
        if not job:
            created = create_job(
                db,
                operator=operator,
                payload={
                    'customer_id': customer.id,
                    'job_number': 'J-1001',
                    'make': 'Avery',
                    'model': 'HL-120',
                    'serial_number': 'SN-0001',
                    'remark': 'Display flickers under load',
                },
            )
            record_inspection(
                db,
                job_id=created.id,
                operator=operator,
                payload={
                    'problems_found': 'Load cell drift, damaged cable',
                    'spare_parts': [
                        {'part_name': 'Load cell', 'quantity': 2, 'unit_price': '150.00'},
                        {'part_name': 'Cable', 'quantity': 1, 'unit_price': '45.50'},
                    ],
                },
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
