"""
Workshop Ledger - Versioned Record Store

The only sanctioned write path for jobs and customers.

Every mutation:
1. Reads the current row and rejects a stale expected_version early
2. Applies the change with a single conditional UPDATE
   (WHERE id = ? AND version = ? AND deleted_at IS NULL), checking rowcount
3. Recalculates derived totals when a money input changed
4. Appends exactly one audit entry in the same transaction

Step 2 is what guarantees no lost update; step 1 only produces a friendlier
error. Each unit of work is bounded by `store_call_timeout_seconds`; a timed
out call has an unknown outcome and the caller must re-read before retrying.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel as PydanticModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.audit import AuditLog, AuditOperation
from app.models.customer import Customer
from app.models.job import (
    DiscountType,
    Job,
    JobLineItem,
    JobNumberSequence,
    JobPayment,
    JobStatus,
)
from app.schemas.customer import CustomerCreateRequest, CustomerPatch
from app.schemas.job import JobCreateRequest, JobPatch, LineItemInput
from app.services.audit_service import AuditService, json_value
from app.services.recalculation import (
    MONEY_INPUT_FIELDS,
    JobTotals,
    calculate_job_totals,
    line_total,
    to_money,
)
from app.utils.error_handling import (
    InvalidAmountException,
    RecordNotFoundException,
    StoreTimeoutException,
    ValidationException,
    VersionConflictException,
)


logger = logging.getLogger(__name__)


# Source tags written by the sanctioned write paths
SOURCE_RECORD_STORE = "record_store"
SOURCE_JOBS_API = "jobs_api"
SOURCE_CUSTOMERS_API = "customers_api"
SOURCE_PAYMENTS_API = "payments_api"
SOURCE_RELINK = "reconciliation_relink"

JOBS_TABLE = Job.__tablename__
CUSTOMERS_TABLE = Customer.__tablename__

JOB_SNAPSHOT_FIELDS = (
    "id",
    "job_number",
    "version",
    "customer_id",
    "machine_category",
    "machine_brand",
    "machine_model",
    "machine_serial",
    "problem_description",
    "notes",
    "service_performed",
    "recommendations",
    "additional_notes",
    "labour_hours",
    "labour_rate",
    "transport_total_charge",
    "sharpen_total_charge",
    "small_repair_total",
    "discount_type",
    "discount_value",
    "service_deposit",
    "parts_subtotal",
    "labour_total",
    "subtotal",
    "discount_amount",
    "gst",
    "grand_total",
    "amount_paid",
    "balance_due",
    "status",
    "completed_at",
    "delivered_at",
    "deleted_at",
)

LINE_ITEM_SNAPSHOT_FIELDS = (
    "part_id",
    "description",
    "category",
    "is_custom",
    "quantity",
    "unit_price",
    "total_price",
)

CUSTOMER_SNAPSHOT_FIELDS = (
    "id",
    "version",
    "name",
    "company_name",
    "customer_type",
    "email",
    "phone",
    "address",
    "is_account",
    "notes",
    "deleted_at",
)


@dataclass
class UpdateResult:
    """Outcome of an accepted mutation. Rejections raise instead."""
    updated: bool
    new_version: int
    audit_entry_id: int
    record: Any = None


def snapshot(record: Any, fields) -> Dict[str, Any]:
    """JSON-safe copy of the given columns of an ORM row."""
    return {name: json_value(getattr(record, name)) for name in fields}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(table_name: str, value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise RecordNotFoundException(table_name, value)


def _line_item_values(item: Any) -> Dict[str, Any]:
    """Column values of a line item; total_price is always recomputed."""
    data = item.model_dump() if isinstance(item, PydanticModel) else dict(item)
    quantity = to_money(data.get("quantity"))
    unit_price = to_money(data.get("unit_price"))
    return {
        "part_id": data.get("part_id"),
        "description": data["description"],
        "category": data.get("category"),
        "is_custom": bool(data.get("is_custom", False)),
        "quantity": quantity,
        "unit_price": unit_price,
        "total_price": line_total(quantity, unit_price),
    }


def _validate(model_cls: Type[PydanticModel], data: Any) -> PydanticModel:
    """Validate a raw patch, mapping pydantic errors to ValidationException."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(loc) for loc in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationException(
            f"Invalid {model_cls.__name__}",
            field=errors[0]["field"] if errors else None,
            details={"errors": errors},
        )


def _check_discount(job: Job, values: Dict[str, Any]) -> None:
    """Percent discounts stay within 0..100 once merged with stored values."""
    discount_type = DiscountType(values.get("discount_type", job.discount_type))
    discount_value = values.get("discount_value", job.discount_value)
    if discount_type == DiscountType.PERCENT and to_money(discount_value) > 100:
        raise ValidationException(
            "Percent discount must be between 0 and 100",
            field="discount_value",
        )


def job_patch_from_snapshot(values: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a full job snapshot to the fields a JobPatch accepts."""
    patch = {name: values[name] for name in JobPatch.model_fields if name in values}
    if patch.get("line_items") is not None:
        allowed = LineItemInput.model_fields
        patch["line_items"] = [
            {key: item[key] for key in allowed if key in item}
            for item in patch["line_items"]
        ]
    return patch


def customer_patch_from_snapshot(values: Dict[str, Any]) -> Dict[str, Any]:
    return {name: values[name] for name in CustomerPatch.model_fields if name in values}


class VersionedRecordStore:
    """Optimistic-concurrency write path for jobs and customers."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # ===========================================
    # UNIT OF WORK
    # ===========================================

    async def _unit_of_work(
        self,
        operation: str,
        record_id: Any,
        work: Callable[[], Awaitable[Any]],
        commit: bool,
    ) -> Any:
        """Run one bounded store call; commit on success, roll back on failure."""

        async def _body():
            result = await work()
            if commit:
                await self.db.commit()
            return result

        timeout = settings.store_call_timeout_seconds
        try:
            return await asyncio.wait_for(_body(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"{operation} on {record_id} timed out after {timeout}s; outcome unknown")
            await self.db.rollback()
            raise StoreTimeoutException(operation, str(record_id) if record_id else None, timeout)
        except Exception:
            if commit:
                await self.db.rollback()
            raise

    async def _compare_and_swap(
        self,
        model,
        record_id: uuid.UUID,
        expected_version: int,
        values: Dict[str, Any],
        include_deleted: bool = False,
    ) -> int:
        """Conditional UPDATE that advances the version by one. Returns the new version."""
        stmt = update(model).where(model.id == record_id).where(model.version == expected_version)
        if not include_deleted:
            stmt = stmt.where(model.deleted_at.is_(None))
        stmt = stmt.values(version=model.version + 1, **values).execution_options(
            synchronize_session=False
        )

        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            current = (
                await self.db.execute(
                    select(model.version, model.deleted_at).where(model.id == record_id)
                )
            ).first()
            if current is None or (current.deleted_at is not None and not include_deleted):
                raise RecordNotFoundException(model.__tablename__, record_id)
            self._conflict(model.__tablename__, record_id, expected_version, current.version)

        return expected_version + 1

    def _conflict(self, table_name: str, record_id: Any, expected: int, actual: Optional[int]):
        logger.warning(
            f"Version conflict on {table_name} {record_id}: expected v{expected}, current v{actual}"
        )
        raise VersionConflictException(table_name, record_id, expected, actual)

    async def _load_for_write(self, model, record_id: uuid.UUID, include_deleted: bool = False):
        result = await self.db.execute(
            select(model)
            .where(model.id == record_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None or (record.deleted_at is not None and not include_deleted):
            raise RecordNotFoundException(model.__tablename__, record_id)
        return record

    def _log_accepted(self, table_name: str, record_id: Any, entry: AuditLog, new_version: int):
        logger.info(
            f"{entry.operation.value} {table_name} {record_id} -> v{new_version} "
            f"by {entry.changed_by or 'unknown'} ({entry.source}); audit #{entry.id}"
        )

    # ===========================================
    # JOB READS
    # ===========================================

    def _job_query(self):
        return (
            select(Job)
            .options(selectinload(Job.line_items), selectinload(Job.payments))
            .execution_options(populate_existing=True)
        )

    async def get_job(self, job_id: Any, include_deleted: bool = False) -> Job:
        """Load a job with line items and payments, or raise RecordNotFound."""
        job_id = _as_uuid(JOBS_TABLE, job_id)
        result = await self.db.execute(self._job_query().where(Job.id == job_id))
        job = result.scalar_one_or_none()
        if job is None or (job.deleted_at is not None and not include_deleted):
            raise RecordNotFoundException(JOBS_TABLE, job_id)
        return job

    async def get_job_by_number(self, job_number: str, include_deleted: bool = False) -> Job:
        result = await self.db.execute(
            self._job_query().where(Job.job_number == job_number.strip().upper())
        )
        job = result.scalar_one_or_none()
        if job is None or (job.deleted_at is not None and not include_deleted):
            raise RecordNotFoundException(
                JOBS_TABLE, job_number, message=f"Job {job_number} not found"
            )
        return job

    async def line_item_snapshots(self, job_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Stored line items in position order, as snapshot dicts."""
        columns = [getattr(JobLineItem, name) for name in LINE_ITEM_SNAPSHOT_FIELDS]
        result = await self.db.execute(
            select(*columns).where(JobLineItem.job_id == job_id).order_by(JobLineItem.position)
        )
        return [
            {name: json_value(value) for name, value in row._mapping.items()}
            for row in result
        ]

    async def job_snapshot(self, job: Job) -> Dict[str, Any]:
        """Full JSON-safe state of a job, as written to audit snapshots."""
        values = snapshot(job, JOB_SNAPSHOT_FIELDS)
        values["line_items"] = await self.line_item_snapshots(job.id)
        return values

    async def payments_total(self, job_id: uuid.UUID) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(JobPayment.amount), 0)).where(JobPayment.job_id == job_id)
        )
        return to_money(result.scalar())

    async def _require_customer(self, customer_id: Any) -> None:
        result = await self.db.execute(
            select(Customer.id)
            .where(Customer.id == customer_id)
            .where(Customer.deleted_at.is_(None))
        )
        if result.scalar_one_or_none() is None:
            raise ValidationException(
                f"Customer {customer_id} does not exist",
                field="customer_id",
            )

    # ===========================================
    # JOB NUMBERS
    # ===========================================

    async def _next_job_number(self, year: Optional[int] = None) -> str:
        """Allocate the next JB<year>-<seq> number with one atomic upsert."""
        year = year or _utcnow().year
        table = JobNumberSequence.__table__

        dialect = self.db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        stmt = (
            insert(table)
            .values(year=year, last_value=1)
            .on_conflict_do_update(
                index_elements=[table.c.year],
                set_={"last_value": table.c.last_value + 1},
            )
            .returning(table.c.last_value)
        )
        sequence = (await self.db.execute(stmt)).scalar_one()
        prefix = settings.job_number_prefix.strip().upper()
        return f"{prefix}{year}-{sequence:04d}"

    # ===========================================
    # JOB WRITES
    # ===========================================

    async def create_job(
        self,
        data: Union[JobCreateRequest, Dict[str, Any]],
        actor: Optional[str] = None,
        source: str = SOURCE_JOBS_API,
    ) -> Job:
        """Book in a new job at version 1 with an INSERT audit entry."""
        data = _validate(JobCreateRequest, data)

        async def work():
            await self._require_customer(data.customer_id)
            job_number = await self._next_job_number()

            items = [_line_item_values(item) for item in data.line_items]
            fields = data.model_dump(exclude={"line_items"})
            totals = calculate_job_totals(
                items,
                labour_hours=fields["labour_hours"],
                labour_rate=fields["labour_rate"],
                transport_total_charge=fields["transport_total_charge"],
                sharpen_total_charge=fields["sharpen_total_charge"],
                small_repair_total=fields["small_repair_total"],
                discount_type=fields["discount_type"],
                discount_value=fields["discount_value"],
                service_deposit=fields["service_deposit"],
            )

            now = _utcnow()
            status = fields["status"]
            values = {
                "id": uuid.uuid4(),
                "job_number": job_number,
                "version": 1,
                "service_performed": None,
                "recommendations": None,
                "additional_notes": None,
                **fields,
                **totals.as_dict(),
                "completed_at": now if status == JobStatus.COMPLETED else None,
                "delivered_at": now if status == JobStatus.DELIVERED else None,
                "deleted_at": None,
            }

            job = Job(**values)
            job.line_items = [
                JobLineItem(position=index, **item) for index, item in enumerate(items)
            ]
            self.db.add(job)
            await self.db.flush()

            after = {name: json_value(values[name]) for name in JOB_SNAPSHOT_FIELDS}
            after["line_items"] = [json_value(item) for item in items]

            entry = await self.audit.capture(
                JOBS_TABLE,
                values["id"],
                AuditOperation.INSERT,
                None,
                after,
                actor,
                source,
                record_label=job_number,
            )
            self._log_accepted(JOBS_TABLE, job_number, entry, 1)
            return values["id"]

        job_id = await self._unit_of_work("create_job", None, work, commit=True)
        return await self.get_job(job_id)

    async def _recalculate(
        self,
        job: Job,
        values: Dict[str, Any],
        line_items: Optional[List[Dict[str, Any]]],
        before: Dict[str, Any],
        payments_total: Optional[Decimal] = None,
    ) -> JobTotals:
        def current(name):
            return values[name] if name in values else getattr(job, name)

        if payments_total is None:
            payments_total = await self.payments_total(job.id)

        return calculate_job_totals(
            line_items if line_items is not None else before["line_items"],
            labour_hours=current("labour_hours"),
            labour_rate=current("labour_rate"),
            transport_total_charge=current("transport_total_charge"),
            sharpen_total_charge=current("sharpen_total_charge"),
            small_repair_total=current("small_repair_total"),
            discount_type=current("discount_type"),
            discount_value=current("discount_value"),
            service_deposit=current("service_deposit"),
            payments_total=payments_total,
        )

    async def _replace_line_items(self, job_id: uuid.UUID, items: List[Dict[str, Any]]) -> None:
        await self.db.execute(
            delete(JobLineItem)
            .where(JobLineItem.job_id == job_id)
            .execution_options(synchronize_session=False)
        )
        self.db.add_all(
            JobLineItem(job_id=job_id, position=index, **item) for index, item in enumerate(items)
        )

    @staticmethod
    def _after_snapshot(
        before: Dict[str, Any],
        values: Dict[str, Any],
        new_version: int,
        line_items: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        after = dict(before)
        for name, value in values.items():
            if name in before:
                after[name] = json_value(value)
        after["version"] = new_version
        if line_items is not None:
            after["line_items"] = [json_value(item) for item in line_items]
        return after

    async def update_job(
        self,
        job_id: Any,
        expected_version: int,
        patch: Union[JobPatch, Dict[str, Any]],
        actor: Optional[str] = None,
        source: str = SOURCE_RECORD_STORE,
        operation: AuditOperation = AuditOperation.UPDATE,
        allow_terminal_exit: bool = False,
        commit: bool = True,
    ) -> UpdateResult:
        """
        Apply a partial update if `expected_version` is still current.

        Raises:
            ValidationException: patch is malformed or breaks a field rule
            RecordNotFoundException: job missing or soft-deleted
            VersionConflictException: someone else changed the job first
            StoreTimeoutException: outcome unknown, re-read before retrying
        """
        job_id = _as_uuid(JOBS_TABLE, job_id)
        patch = _validate(JobPatch, patch)
        changes = patch.to_changes()
        if not changes:
            raise ValidationException("Patch contains no fields", field="patch")

        async def work():
            job = await self._load_for_write(Job, job_id)
            if job.version != expected_version:
                self._conflict(JOBS_TABLE, job_id, expected_version, job.version)

            before = await self.job_snapshot(job)
            values = {name: value for name, value in changes.items() if name != "line_items"}

            if "customer_id" in values and values["customer_id"] != job.customer_id:
                await self._require_customer(values["customer_id"])

            new_status = values.get("status")
            if new_status is not None:
                if (
                    job.status == JobStatus.WRITE_OFF
                    and new_status != JobStatus.WRITE_OFF
                    and not allow_terminal_exit
                ):
                    raise ValidationException(
                        "A written-off job cannot be moved to another status",
                        field="status",
                    )
                # Set on first entry only, never cleared
                if new_status == JobStatus.COMPLETED and job.completed_at is None:
                    values["completed_at"] = _utcnow()
                if new_status == JobStatus.DELIVERED and job.delivered_at is None:
                    values["delivered_at"] = _utcnow()

            _check_discount(job, values)

            line_items = None
            if "line_items" in changes:
                line_items = [_line_item_values(item) for item in changes["line_items"]]

            if MONEY_INPUT_FIELDS & changes.keys():
                totals = await self._recalculate(job, values, line_items, before)
                values.update(totals.as_dict())

            new_version = await self._compare_and_swap(Job, job_id, expected_version, values)
            if line_items is not None:
                await self._replace_line_items(job_id, line_items)

            after = self._after_snapshot(before, values, new_version, line_items)
            entry = await self.audit.capture(
                JOBS_TABLE,
                job_id,
                operation,
                before,
                after,
                actor,
                source,
                record_label=job.job_number,
            )
            self._log_accepted(JOBS_TABLE, job.job_number, entry, new_version)
            return UpdateResult(updated=True, new_version=new_version, audit_entry_id=entry.id)

        result = await self._unit_of_work("update_job", job_id, work, commit)
        result.record = await self.get_job(job_id, include_deleted=True)
        return result

    async def apply_job_snapshot(
        self,
        job_id: Any,
        expected_version: int,
        values: Dict[str, Any],
        actor: Optional[str],
        source: str,
        operation: AuditOperation = AuditOperation.UPDATE,
        commit: bool = True,
    ) -> UpdateResult:
        """Write the patchable part of a stored snapshot back onto a job."""
        return await self.update_job(
            job_id,
            expected_version,
            job_patch_from_snapshot(values),
            actor=actor,
            source=source,
            operation=operation,
            allow_terminal_exit=True,
            commit=commit,
        )

    async def delete_job(
        self,
        job_id: Any,
        expected_version: int,
        actor: Optional[str] = None,
        source: str = SOURCE_JOBS_API,
        commit: bool = True,
    ) -> UpdateResult:
        """Soft delete: set deleted_at through the same conditional write."""
        job_id = _as_uuid(JOBS_TABLE, job_id)

        async def work():
            job = await self._load_for_write(Job, job_id)
            if job.version != expected_version:
                self._conflict(JOBS_TABLE, job_id, expected_version, job.version)

            before = await self.job_snapshot(job)
            values = {"deleted_at": _utcnow()}
            new_version = await self._compare_and_swap(Job, job_id, expected_version, values)

            after = self._after_snapshot(before, values, new_version)
            entry = await self.audit.capture(
                JOBS_TABLE,
                job_id,
                AuditOperation.DELETE,
                before,
                after,
                actor,
                source,
                record_label=job.job_number,
            )
            self._log_accepted(JOBS_TABLE, job.job_number, entry, new_version)
            return UpdateResult(updated=True, new_version=new_version, audit_entry_id=entry.id)

        result = await self._unit_of_work("delete_job", job_id, work, commit)
        result.record = await self.get_job(job_id, include_deleted=True)
        return result

    async def undelete_job(
        self,
        job_id: Any,
        expected_version: int,
        actor: Optional[str] = None,
        source: str = SOURCE_RECORD_STORE,
        commit: bool = True,
    ) -> UpdateResult:
        """Clear a soft delete. Audited as an UPDATE of deleted_at."""
        job_id = _as_uuid(JOBS_TABLE, job_id)

        async def work():
            job = await self._load_for_write(Job, job_id, include_deleted=True)
            if job.deleted_at is None:
                raise ValidationException(f"Job {job.job_number} is not deleted", field="deleted_at")
            if job.version != expected_version:
                self._conflict(JOBS_TABLE, job_id, expected_version, job.version)

            before = await self.job_snapshot(job)
            values = {"deleted_at": None}
            new_version = await self._compare_and_swap(
                Job, job_id, expected_version, values, include_deleted=True
            )

            after = self._after_snapshot(before, values, new_version)
            entry = await self.audit.capture(
                JOBS_TABLE,
                job_id,
                AuditOperation.UPDATE,
                before,
                after,
                actor,
                source,
                record_label=job.job_number,
            )
            self._log_accepted(JOBS_TABLE, job.job_number, entry, new_version)
            return UpdateResult(updated=True, new_version=new_version, audit_entry_id=entry.id)

        result = await self._unit_of_work("undelete_job", job_id, work, commit)
        result.record = await self.get_job(job_id)
        return result

    async def record_payment(
        self,
        job_id: Any,
        expected_version: int,
        amount: Decimal,
        method: str = "cash",
        reference: Optional[str] = None,
        actor: Optional[str] = None,
        source: str = SOURCE_PAYMENTS_API,
    ) -> UpdateResult:
        """Apply a payment and re-derive the balance, as one audited UPDATE."""
        job_id = _as_uuid(JOBS_TABLE, job_id)
        amount = to_money(amount)
        if amount <= 0:
            raise InvalidAmountException(amount, reason="Payment amount must be positive")

        async def work():
            job = await self._load_for_write(Job, job_id)
            if job.version != expected_version:
                self._conflict(JOBS_TABLE, job_id, expected_version, job.version)
            if amount > to_money(job.balance_due):
                raise InvalidAmountException(
                    amount,
                    reason=f"Payment of {amount} exceeds balance due of {to_money(job.balance_due)}",
                )

            before = await self.job_snapshot(job)
            paid = await self.payments_total(job_id) + amount
            totals = await self._recalculate(job, {}, None, before, payments_total=paid)
            values = totals.as_dict()

            new_version = await self._compare_and_swap(Job, job_id, expected_version, values)

            after = self._after_snapshot(before, values, new_version)
            entry = await self.audit.capture(
                JOBS_TABLE,
                job_id,
                AuditOperation.UPDATE,
                before,
                after,
                actor,
                source,
                record_label=job.job_number,
            )
            # Linked to its entry so rejecting the entry can take the payment back out
            self.db.add(
                JobPayment(
                    job_id=job_id,
                    amount=amount,
                    method=method,
                    reference=reference,
                    paid_at=_utcnow(),
                    recorded_by=actor,
                    audit_entry_id=entry.id,
                )
            )
            self._log_accepted(JOBS_TABLE, job.job_number, entry, new_version)
            return UpdateResult(updated=True, new_version=new_version, audit_entry_id=entry.id)

        result = await self._unit_of_work("record_payment", job_id, work, commit=True)
        result.record = await self.get_job(job_id)
        return result

    async def remove_payment(self, audit_entry_id: int) -> Optional[JobPayment]:
        """
        Delete the payment recorded by an audit entry. Does not commit.

        The job's totals are left alone; the caller follows up with a write
        that recalculates them from the remaining payments.
        """
        result = await self.db.execute(
            select(JobPayment).where(JobPayment.audit_entry_id == audit_entry_id)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            return None

        await self.db.delete(payment)
        await self.db.flush()
        logger.info(f"Removed payment of {payment.amount} on job {payment.job_id} (audit #{audit_entry_id})")
        return payment

    async def append_line_items(
        self,
        job_id: Any,
        expected_version: int,
        items: List[Any],
        actor: Optional[str],
        source: str,
        operation: AuditOperation,
        overrides: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> UpdateResult:
        """
        Insert new line items after the existing ones and recalculate.

        `overrides` may replace other money inputs (labour, discount,
        deposit) in the same write.
        """
        job_id = _as_uuid(JOBS_TABLE, job_id)
        overrides = {name: value for name, value in (overrides or {}).items() if value is not None}
        unknown = set(overrides) - MONEY_INPUT_FIELDS
        if unknown:
            raise ValidationException(f"Cannot override {', '.join(sorted(unknown))}")
        if "discount_type" in overrides:
            overrides["discount_type"] = DiscountType(overrides["discount_type"])
        items = [_validate(LineItemInput, item) for item in items]

        async def work():
            job = await self._load_for_write(Job, job_id)
            if job.version != expected_version:
                self._conflict(JOBS_TABLE, job_id, expected_version, job.version)

            before = await self.job_snapshot(job)
            new_items = [_line_item_values(item) for item in items]
            all_items = before["line_items"] + [json_value(item) for item in new_items]

            values = dict(overrides)
            _check_discount(job, values)
            totals = await self._recalculate(job, values, all_items, before)
            values.update(totals.as_dict())

            new_version = await self._compare_and_swap(Job, job_id, expected_version, values)
            offset = len(before["line_items"])
            self.db.add_all(
                JobLineItem(job_id=job_id, position=offset + index, **item)
                for index, item in enumerate(new_items)
            )

            after = self._after_snapshot(before, values, new_version, all_items)
            entry = await self.audit.capture(
                JOBS_TABLE,
                job_id,
                operation,
                before,
                after,
                actor,
                source,
                record_label=job.job_number,
            )
            self._log_accepted(JOBS_TABLE, job.job_number, entry, new_version)
            return UpdateResult(updated=True, new_version=new_version, audit_entry_id=entry.id)

        result = await self._unit_of_work("append_line_items", job_id, work, commit)
        result.record = await self.get_job(job_id)
        return result

    # ===========================================
    # CUSTOMERS
    # ===========================================

    async def get_customer(self, customer_id: Any, include_deleted: bool = False) -> Customer:
        customer_id = _as_uuid(CUSTOMERS_TABLE, customer_id)
        result = await self.db.execute(
            select(Customer)
            .where(Customer.id == customer_id)
            .execution_options(populate_existing=True)
        )
        customer = result.scalar_one_or_none()
        if customer is None or (customer.deleted_at is not None and not include_deleted):
            raise RecordNotFoundException(CUSTOMERS_TABLE, customer_id)
        return customer

    async def create_customer(
        self,
        data: Union[CustomerCreateRequest, Dict[str, Any]],
        actor: Optional[str] = None,
        source: str = SOURCE_CUSTOMERS_API,
    ) -> Customer:
        data = _validate(CustomerCreateRequest, data)

        async def work():
            values = {
                "id": uuid.uuid4(),
                "version": 1,
                **data.model_dump(),
                "deleted_at": None,
            }
            self.db.add(Customer(**values))
            await self.db.flush()

            after = {name: json_value(values[name]) for name in CUSTOMER_SNAPSHOT_FIELDS}
            entry = await self.audit.capture(
                CUSTOMERS_TABLE,
                values["id"],
                AuditOperation.INSERT,
                None,
                after,
                actor,
                source,
                record_label=values["name"][:50],
            )
            self._log_accepted(CUSTOMERS_TABLE, values["id"], entry, 1)
            return values["id"]

        customer_id = await self._unit_of_work("create_customer", None, work, commit=True)
        return await self.get_customer(customer_id)

    async def update_customer(
        self,
        customer_id: Any,
        expected_version: int,
        patch: Union[CustomerPatch, Dict[str, Any]],
        actor: Optional[str] = None,
        source: str = SOURCE_CUSTOMERS_API,
        operation: AuditOperation = AuditOperation.UPDATE,
        commit: bool = True,
    ) -> UpdateResult:
        customer_id = _as_uuid(CUSTOMERS_TABLE, customer_id)
        patch = _validate(CustomerPatch, patch)
        changes = patch.to_changes()
        if not changes:
            raise ValidationException("Patch contains no fields", field="patch")

        async def work():
            customer = await self._load_for_write(Customer, customer_id)
            if customer.version != expected_version:
                self._conflict(CUSTOMERS_TABLE, customer_id, expected_version, customer.version)

            before = snapshot(customer, CUSTOMER_SNAPSHOT_FIELDS)
            new_version = await self._compare_and_swap(
                Customer, customer_id, expected_version, changes
            )

            after = self._after_snapshot(before, changes, new_version)
            entry = await self.audit.capture(
                CUSTOMERS_TABLE,
                customer_id,
                operation,
                before,
                after,
                actor,
                source,
                record_label=after["name"][:50],
            )
            self._log_accepted(CUSTOMERS_TABLE, customer_id, entry, new_version)
            return UpdateResult(updated=True, new_version=new_version, audit_entry_id=entry.id)

        result = await self._unit_of_work("update_customer", customer_id, work, commit)
        result.record = await self.get_customer(customer_id, include_deleted=True)
        return result

    async def apply_customer_snapshot(
        self,
        customer_id: Any,
        expected_version: int,
        values: Dict[str, Any],
        actor: Optional[str],
        source: str,
        operation: AuditOperation = AuditOperation.UPDATE,
        commit: bool = True,
    ) -> UpdateResult:
        return await self.update_customer(
            customer_id,
            expected_version,
            customer_patch_from_snapshot(values),
            actor=actor,
            source=source,
            operation=operation,
            commit=commit,
        )
