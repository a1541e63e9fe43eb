"""
PayDesk - Payroll Batch Service

Bulk "run payroll for a department (or everyone) for a month".

- The period and the deduction catalog are validated once up front; an
  invalid period or a broken catalog rejects the whole run before any
  employee is touched.
- Only employees without an entry, or with a pending one, are calculated, so
  an interrupted run can simply be started again. Pending entries move to
  processing first; one whose recalculation fails is rejected.
- Employees are calculated concurrently, each in its own session. A failure
  for one employee is recorded and the run carries on.
- Period totals are written by a single aggregation pass at the end.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paydesk.config import settings
from paydesk.database import async_session_factory
from paydesk.models.employee import Employee
from paydesk.models.payroll import BatchOutcome, EntryStatus, PayrollBatchSummary, PayrollEntry
from paydesk.services.notification_service import PayrollNotifier
from paydesk.services.payroll_aggregator import PayrollAggregator, PayrollSummary
from paydesk.services.payroll_lifecycle import apply_transition
from paydesk.services.payroll_service import CallerContext, PayrollService, SYSTEM_CALLER
from paydesk.utils.error_handling import (
    AppException,
    CalculationInProgressError,
    CatalogIntegrityError,
    DepartmentScopeError,
    ErrorCode,
    ValidationException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Entry statuses a batch run (re)calculates
BATCH_ELIGIBLE = frozenset({EntryStatus.PENDING})


@dataclass
class EmployeeOutcome:
    employee_id: uuid.UUID
    status: str  # processed | skipped | failed
    entry_id: Optional[uuid.UUID] = None
    gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_pay: Decimal = ZERO
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "employeeId": str(self.employee_id),
            "status": self.status,
            "entryId": str(self.entry_id) if self.entry_id else None,
            "netPay": str(self.net_pay),
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
        }


@dataclass
class BatchResult:
    batch_id: str
    month: int
    year: int
    department_id: Optional[uuid.UUID]
    outcome: BatchOutcome
    period_id: Optional[uuid.UUID] = None
    error: Optional[Dict[str, Any]] = None
    results: List[EmployeeOutcome] = field(default_factory=list)
    summary: Optional[PayrollSummary] = None
    processing_seconds: float = 0.0
    
    def _count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)
    
    @property
    def processed_count(self) -> int:
        return self._count("processed")
    
    @property
    def skipped_count(self) -> int:
        return self._count("skipped")
    
    @property
    def failed_count(self) -> int:
        return self._count("failed")
    
    @property
    def attempted_count(self) -> int:
        return self.processed_count + self.failed_count
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "month": self.month,
            "year": self.year,
            "departmentId": str(self.department_id) if self.department_id else None,
            "periodId": str(self.period_id) if self.period_id else None,
            "outcome": self.outcome.value,
            "error": self.error,
            "attempted": self.attempted_count,
            "processed": self.processed_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "processingSeconds": round(self.processing_seconds, 3),
            "results": [r.to_dict() for r in self.results],
        }


class PayrollBatchService:
    """Runs payroll for many employees of one period."""
    
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = async_session_factory,
        notifier: Optional[PayrollNotifier] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.max_concurrency = max(1, max_concurrency or settings.batch_max_concurrency)
    
    async def run(
        self,
        month: int,
        year: int,
        department_id: Optional[uuid.UUID] = None,
        caller: Optional[CallerContext] = None,
    ) -> BatchResult:
        caller = caller or SYSTEM_CALLER
        if caller.department_scope is not None:
            if department_id is None:
                department_id = caller.department_scope
            elif department_id != caller.department_scope:
                raise DepartmentScopeError(f"Department '{department_id}'", caller.department_scope)
        
        started = time.monotonic()
        result = BatchResult(
            batch_id=f"PAY-{year}{month:02d}-{uuid.uuid4().hex[:8].upper()}",
            month=month,
            year=year,
            department_id=department_id,
            outcome=BatchOutcome.SUCCEEDED,
        )
        logger.info("Starting payroll batch %s for %s/%s", result.batch_id, month, year)
        
        async with self.session_factory() as db:
            service = PayrollService(db)
            try:
                period = await service.get_or_create_period(month, year)
                result.period_id = period.id
                await service.load_catalog_snapshot(period.processing_date)
            except (ValidationException, CatalogIntegrityError) as exc:
                result.outcome = BatchOutcome.REJECTED
                result.error = exc.to_dict()
                result.processing_seconds = time.monotonic() - started
                logger.error("Payroll batch %s rejected: %s", result.batch_id, exc.message)
                await self._save_summary(db, result, caller)
                return result
            
            to_process, pending, skipped = await self._select_employees(db, period.id, department_id)
            await self._start_processing(db, pending, result.batch_id, caller)
        
        result.results.extend(skipped)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        
        async def guarded(employee_id: uuid.UUID) -> EmployeeOutcome:
            async with semaphore:
                return await self._process_employee(employee_id, month, year, caller)
        
        result.results.extend(await asyncio.gather(*(guarded(e) for e in to_process)))
        
        async with self.session_factory() as db:
            result.summary = await PayrollAggregator(db).aggregate(result.period_id)
            result.outcome = BatchOutcome.PARTIAL if result.failed_count else BatchOutcome.SUCCEEDED
            result.processing_seconds = time.monotonic() - started
            await self._save_summary(db, result, caller)
        
        logger.info(
            "Payroll batch %s finished %s: %s processed, %s skipped, %s failed",
            result.batch_id, result.outcome.value,
            result.processed_count, result.skipped_count, result.failed_count,
        )
        return result
    
    async def _select_employees(
        self,
        db: AsyncSession,
        period_id: uuid.UUID,
        department_id: Optional[uuid.UUID],
    ):
        query = select(Employee.id).where(Employee.is_active == True)  # noqa: E712
        if department_id is not None:
            query = query.where(Employee.department_id == department_id)
        employee_ids = list((await db.execute(query.order_by(Employee.staff_number))).scalars().all())
        
        existing = await db.execute(
            select(PayrollEntry.employee_id, PayrollEntry.id, PayrollEntry.status).where(
                and_(
                    PayrollEntry.period_id == period_id,
                    PayrollEntry.employee_id.in_(employee_ids),
                )
            )
        )
        statuses = {row.employee_id: (row.id, row.status) for row in existing}
        
        to_process, pending, skipped = [], [], []
        for employee_id in employee_ids:
            current = statuses.get(employee_id)
            if current is None or current[1] in BATCH_ELIGIBLE:
                to_process.append(employee_id)
                if current is not None:
                    pending.append(current[0])
            else:
                skipped.append(EmployeeOutcome(
                    employee_id=employee_id,
                    status="skipped",
                    entry_id=current[0],
                    error_message=f"entry already {current[1].value}",
                ))
        return to_process, pending, skipped
    
    async def _start_processing(
        self,
        db: AsyncSession,
        entry_ids: List[uuid.UUID],
        batch_id: str,
        caller: CallerContext,
    ) -> None:
        """Move the run's pending entries to processing before they are recalculated."""
        if not entry_ids:
            return
        result = await db.execute(select(PayrollEntry).where(PayrollEntry.id.in_(entry_ids)))
        for entry in result.scalars().all():
            db.add(apply_transition(entry, EntryStatus.PROCESSING, actor_id=caller.employee_id, reason=batch_id))
        await db.commit()
    
    async def _process_employee(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        caller: CallerContext,
    ) -> EmployeeOutcome:
        async with self.session_factory() as db:
            service = PayrollService(db, self.notifier)
            try:
                entry = await service.calculate_payroll(
                    employee_id, month, year,
                    caller=caller,
                    in_batch=True,
                    aggregate=False,
                )
            except AppException as exc:
                logger.warning(
                    "Payroll batch: employee %s failed with %s: %s",
                    employee_id, exc.code.value, exc.message,
                )
                if not isinstance(exc, CalculationInProgressError):
                    await self._reject_processing_entry(service, employee_id, month, year, exc.message)
                return EmployeeOutcome(
                    employee_id=employee_id,
                    status="failed",
                    error_code=exc.code.value,
                    error_message=exc.message,
                )
            except SQLAlchemyError as exc:
                logger.exception("Payroll batch: database error for employee %s", employee_id)
                await db.rollback()
                return EmployeeOutcome(
                    employee_id=employee_id,
                    status="failed",
                    error_code=ErrorCode.DATABASE_ERROR.value,
                    error_message=str(exc),
                )
            return EmployeeOutcome(
                employee_id=employee_id,
                status="processed",
                entry_id=entry.id,
                gross_pay=entry.gross_pay,
                total_deductions=entry.total_deductions,
                net_pay=entry.net_pay,
            )
    
    async def _reject_processing_entry(
        self,
        service: PayrollService,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        reason: str,
    ) -> None:
        """A processing entry whose recalculation failed moves to rejected."""
        period = await service.get_period(month, year)
        if period is None:
            return
        entry = await service.get_entry_for(employee_id, period.id)
        if entry is not None and entry.status == EntryStatus.PROCESSING:
            await service.reject_entry(entry.id, reason, aggregate=False)
    
    async def _save_summary(self, db: AsyncSession, result: BatchResult, caller: CallerContext) -> None:
        processed = [r for r in result.results if r.status == "processed"]
        db.add(PayrollBatchSummary(
            batch_id=result.batch_id,
            period_id=result.period_id,
            department_id=result.department_id,
            month=result.month,
            year=result.year,
            outcome=result.outcome,
            error_message=result.error["message"] if result.error else None,
            processing_seconds=result.processing_seconds,
            attempted_count=result.attempted_count,
            processed_count=result.processed_count,
            skipped_count=result.skipped_count,
            failed_count=result.failed_count,
            total_gross_pay=sum((r.gross_pay for r in processed), ZERO),
            total_deductions=sum((r.total_deductions for r in processed), ZERO),
            total_net_pay=sum((r.net_pay for r in processed), ZERO),
            employee_results=[r.to_dict() for r in result.results],
            created_by_id=caller.employee_id,
        ))
        await db.commit()
    
    async def get_batch_summaries(self, month: int, year: int) -> List[PayrollBatchSummary]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PayrollBatchSummary)
                .where(and_(PayrollBatchSummary.month == month, PayrollBatchSummary.year == year))
                .order_by(PayrollBatchSummary.created_at.desc())
            )
            return list(result.scalars().all())
