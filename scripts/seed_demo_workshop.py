"""
Seed a development database with a few customers and jobs.

Everything goes through the record store, so the seeded data carries a
normal audit history and the shadow audit monitor stays quiet.
"""
import asyncio
import os
import sys
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import async_session_maker, close_db, init_db
from app.services.record_store import VersionedRecordStore

ACTOR = "seed-script"

CUSTOMERS = [
    {"name": "Margaret Hill", "phone": "0412 555 101", "email": "margaret@example.com"},
    {"name": "Greenway Landscaping", "customer_type": "commercial", "is_account": True, "phone": "03 9555 0199"},
    {"name": "Tom Nguyen", "phone": "0433 555 872"},
]

JOBS = [
    (0, {
        "machine_category": "Lawn Mower",
        "machine_brand": "Victa",
        "problem_description": "Hard to start",
        "line_items": [{"description": "Spark plug", "quantity": Decimal("1"), "unit_price": Decimal("12.50")}],
        "labour_hours": Decimal("1"),
        "labour_rate": Decimal("89.00"),
    }),
    (1, {
        "machine_category": "Chainsaw",
        "machine_brand": "Stihl",
        "problem_description": "Chain sharpen and service",
        "sharpen_total_charge": Decimal("25.00"),
        "labour_hours": Decimal("0.5"),
        "labour_rate": Decimal("89.00"),
    }),
    (2, {
        "machine_category": "Brushcutter",
        "problem_description": "Line head worn",
        "line_items": [{"description": "Trimmer head", "quantity": Decimal("1"), "unit_price": Decimal("38.00")}],
        "transport_total_charge": Decimal("15.00"),
    }),
]


async def seed():
    await init_db()
    async with async_session_maker() as db:
        store = VersionedRecordStore(db)

        customers = []
        for data in CUSTOMERS:
            customer = await store.create_customer(data, actor=ACTOR)
            customers.append(customer)
            print(f"Customer: {customer.name}")

        for index, data in JOBS:
            job = await store.create_job(
                {"customer_id": customers[index].id, **data},
                actor=ACTOR,
            )
            print(f"Job {job.job_number}: {job.machine_category} for {customers[index].name} ({job.grand_total})")

    await close_db()


if __name__ == "__main__":
    asyncio.run(seed())
