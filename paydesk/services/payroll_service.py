"""
PayDesk - Payroll Service

Database-facing payroll operations:
- calculate_payroll: compute and persist one employee's entry for a period
- entry lifecycle actions (process, approve, reject, pay, cancel)
- period reads, summaries and the tax-report flag

Every status change commits first and then emits a payroll event; a failing
notifier is logged and never undoes the change.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from paydesk.config import settings
from paydesk.models.base import utcnow
from paydesk.models.catalog import ApprovalStatus, Bonus, Deduction, SalaryGrade
from paydesk.models.employee import Employee, OvertimeRecord
from paydesk.models.payroll import (
    EntryStatus,
    PayrollCalculationClaim,
    PayrollEntry,
    PayrollEntryEvent,
    PayrollPeriod,
)
from paydesk.services.deduction_rules import DeductionDefinition, build_rule
from paydesk.services.notification_service import PayrollNotifier, build_payroll_event
from paydesk.services.payroll_aggregator import PayrollAggregator, PayrollSummary
from paydesk.services.payroll_calculator import (
    BonusRecord,
    CatalogSnapshot,
    EmployeeSnapshot,
    GradeComponent,
    GradeSnapshot,
    PayPeriod,
    PayrollCalculation,
    calculate,
    resolve_salary_grade,
    select_effective,
    validate_catalog,
)
from paydesk.services.payroll_lifecycle import apply_transition, ensure_transition, recalculation_status
from paydesk.utils.error_handling import (
    AlreadyPaidError,
    BusinessRuleException,
    CalculationInProgressError,
    CatalogIntegrityError,
    DepartmentScopeError,
    EntryNotFoundError,
    InvalidPeriodError,
    MissingEmployeeError,
    MissingGradeError,
    PayrollComplianceError,
    PeriodNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerContext:
    """
    Who is asking. department_scope=None means organization-wide access;
    otherwise the caller may only act on employees of that department.
    """
    employee_id: Optional[uuid.UUID] = None
    department_scope: Optional[uuid.UUID] = None
    
    def ensure_can_access(self, employee: Employee) -> None:
        if self.department_scope is not None and employee.department_id != self.department_scope:
            raise DepartmentScopeError(f"Employee '{employee.id}'", self.department_scope)


SYSTEM_CALLER = CallerContext()


def period_end(month: int, year: int) -> date:
    return PayPeriod(month, year).end


# ===========================================
# SNAPSHOT BUILDERS
# ===========================================

def employee_snapshot(employee: Employee) -> EmployeeSnapshot:
    return EmployeeSnapshot(
        id=employee.id,
        full_name=employee.full_name,
        department_id=employee.department_id,
        department_name=employee.department.name if employee.department else None,
        grade_level=employee.grade_level,
    )


def grade_snapshot(grade: SalaryGrade) -> GradeSnapshot:
    return GradeSnapshot(
        id=grade.id,
        level=grade.level,
        basic_salary=Decimal(grade.basic_salary),
        components=tuple(
            GradeComponent(c.name, c.kind, Decimal(c.value), c.is_active)
            for c in grade.components
        ),
        department_id=grade.department_id,
        effective_date=grade.effective_date,
        is_active=grade.is_active,
    )


def deduction_definition(row: Deduction) -> DeductionDefinition:
    """Build the calculator view of a deduction row; malformed rows raise CatalogIntegrityError."""
    return DeductionDefinition(
        name=row.name,
        category=row.category,
        code=row.code,
        rule=build_rule(row.calculation_method, row.value, row.tax_brackets, deduction=row.name),
        is_active=row.is_active,
        effective_date=row.effective_date,
        scope=row.scope,
        department_id=row.department_id,
        assigned_employee_ids=tuple(uuid.UUID(str(i)) for i in (row.assigned_employee_ids or [])),
        priority=row.priority,
        depends_on=tuple(row.depends_on or []),
    )


def write_calculation(entry: PayrollEntry, calc: PayrollCalculation) -> bool:
    """Copy computed fields onto an entry row. Returns False when nothing changed."""
    values = {
        "salary_grade_id": calc.grade_id,
        "department_id": calc.department_id,
        "basic_salary": calc.basic_salary,
        "allowance_lines": [line.to_dict() for line in calc.allowance_lines],
        "total_allowances": calc.total_allowances,
        "overtime_hours": calc.overtime_hours,
        "overtime_amount": calc.overtime_amount,
        "taxable_bonuses": calc.taxable_bonuses,
        "total_bonuses": calc.total_bonuses,
        "gross_pay": calc.gross_pay,
        "tax_amount": calc.tax_amount,
        "pension_amount": calc.pension_amount,
        "nhf_amount": calc.nhf_amount,
        "other_deductions": [
            {"name": line.name, "amount": str(line.amount)} for line in calc.other_deductions
        ],
        "deduction_lines": [line.to_dict() for line in calc.deduction_lines],
        "total_deductions": calc.total_deductions,
        "net_pay": calc.net_pay,
    }
    changed = [name for name, value in values.items() if getattr(entry, name) != value]
    for name in changed:
        setattr(entry, name, values[name])
    if changed:
        entry.calculated_at = utcnow()
    return bool(changed)


class PayrollService:
    """Service for payroll calculation and entry lifecycle."""
    
    def __init__(self, db: AsyncSession, notifier: Optional[PayrollNotifier] = None):
        self.db = db
        self.notifier = notifier
    
    # ===========================================
    # PERIODS
    # ===========================================
    
    async def get_period(self, month: int, year: int) -> Optional[PayrollPeriod]:
        result = await self.db.execute(
            select(PayrollPeriod).where(
                and_(PayrollPeriod.month == month, PayrollPeriod.year == year)
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
    
    async def get_or_create_period(
        self,
        month: int,
        year: int,
        processing_date: Optional[date] = None,
    ) -> PayrollPeriod:
        """Period for (month, year); processing date defaults to the last day of the month."""
        if not 1 <= month <= 12 or year < 1900:
            raise InvalidPeriodError(month, year)
        
        period = await self.get_period(month, year)
        if period is not None:
            return period
        
        period = PayrollPeriod(
            id=uuid.uuid4(),
            month=month,
            year=year,
            processing_date=processing_date or period_end(month, year),
        )
        self.db.add(period)
        try:
            await self.db.commit()
        except IntegrityError:
            # Created concurrently by another request
            await self.db.rollback()
            period = await self.get_period(month, year)
            if period is None:
                raise
        return period
    
    async def get_payroll_periods(self) -> List[PayrollPeriod]:
        result = await self.db.execute(
            select(PayrollPeriod)
            .order_by(PayrollPeriod.year.desc(), PayrollPeriod.month.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
    
    async def get_period_by_id(self, period_id: uuid.UUID) -> PayrollPeriod:
        period = await self.db.get(PayrollPeriod, period_id, populate_existing=True)
        if period is None:
            raise PeriodNotFoundError(period_id)
        return period
    
    async def get_period_summary(self, period_id: uuid.UUID) -> PayrollSummary:
        await self.get_period_by_id(period_id)
        return await PayrollAggregator(self.db).aggregate(period_id)
    
    async def mark_tax_report_generated(self, period_id: uuid.UUID) -> PayrollPeriod:
        period = await self.get_period_by_id(period_id)
        period.tax_report_generated = True
        await self.db.commit()
        await self.db.refresh(period)
        logger.info("Tax report flagged as generated for period %s/%s", period.month, period.year)
        return period
    
    # ===========================================
    # CATALOG SNAPSHOTS
    # ===========================================
    
    async def load_catalog_snapshot(self, on_date: date) -> CatalogSnapshot:
        """Deduction versions effective on `on_date`, validated as a whole."""
        result = await self.db.execute(
            select(Deduction)
            .where(Deduction.effective_date <= on_date)
            .execution_options(populate_existing=True)
        )
        rows = select_effective(
            result.scalars().all(),
            on_date,
            key=lambda d: d.name,
            effective=lambda d: d.effective_date,
        )
        definitions = tuple(
            deduction_definition(row)
            for row in sorted(rows, key=lambda r: r.name)
        )
        validate_catalog(definitions)
        return CatalogSnapshot(deductions=definitions, as_of=on_date)
    
    async def resolve_grade(
        self,
        employee: Employee,
        on_date: date,
        salary_grade_id: Optional[uuid.UUID] = None,
    ) -> GradeSnapshot:
        if salary_grade_id is not None:
            result = await self.db.execute(
                select(SalaryGrade)
                .options(selectinload(SalaryGrade.components))
                .where(SalaryGrade.id == salary_grade_id)
                .execution_options(populate_existing=True)
            )
            grade = result.scalar_one_or_none()
            if grade is None:
                raise MissingGradeError(employee.id, grade_id=salary_grade_id)
            return grade_snapshot(grade)
        
        if not employee.grade_level:
            raise MissingGradeError(employee.id)
        
        result = await self.db.execute(
            select(SalaryGrade)
            .options(selectinload(SalaryGrade.components))
            .where(
                and_(
                    SalaryGrade.level == employee.grade_level,
                    SalaryGrade.effective_date <= on_date,
                )
            )
            .execution_options(populate_existing=True)
        )
        versions = select_effective(
            [grade_snapshot(g) for g in result.scalars().all()],
            on_date,
            key=lambda g: g.department_id,
            effective=lambda g: g.effective_date,
        )
        grade = resolve_salary_grade(versions, employee.grade_level, employee.department_id)
        if grade is None:
            raise MissingGradeError(employee.id, level=employee.grade_level)
        return grade
    
    async def _load_bonuses(self, employee_id: uuid.UUID, period: PayPeriod) -> List[BonusRecord]:
        result = await self.db.execute(
            select(Bonus).where(
                and_(
                    Bonus.employee_id == employee_id,
                    Bonus.approval_status == ApprovalStatus.APPROVED,
                    Bonus.payment_date >= period.start,
                    Bonus.payment_date <= period.end,
                )
            )
        )
        return [
            BonusRecord(
                id=b.id,
                amount=Decimal(b.amount),
                payment_date=b.payment_date,
                approval_status=b.approval_status,
                taxable=b.taxable,
            )
            for b in result.scalars().all()
        ]
    
    async def _load_overtime_hours(self, employee_id: uuid.UUID, month: int, year: int) -> Decimal:
        result = await self.db.execute(
            select(OvertimeRecord.hours_worked).where(
                and_(
                    OvertimeRecord.employee_id == employee_id,
                    OvertimeRecord.month == month,
                    OvertimeRecord.year == year,
                )
            )
        )
        hours = result.scalar_one_or_none()
        return Decimal(hours) if hours is not None else Decimal("0")
    
    # ===========================================
    # CONCURRENCY GUARD
    # ===========================================
    
    async def _claim(self, employee_id: uuid.UUID, period: PayrollPeriod) -> str:
        period_id, month, year = period.id, period.month, period.year
        stale_before = utcnow() - timedelta(seconds=settings.calculation_claim_ttl_seconds)
        await self.db.execute(
            delete(PayrollCalculationClaim).where(
                and_(
                    PayrollCalculationClaim.employee_id == employee_id,
                    PayrollCalculationClaim.period_id == period_id,
                    PayrollCalculationClaim.claimed_at < stale_before,
                )
            )
        )
        token = uuid.uuid4().hex
        self.db.add(PayrollCalculationClaim(
            employee_id=employee_id,
            period_id=period_id,
            claim_token=token,
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise CalculationInProgressError(employee_id, month, year)
        return token
    
    async def _release(self, token: str) -> None:
        await self.db.execute(
            delete(PayrollCalculationClaim).where(PayrollCalculationClaim.claim_token == token)
        )
        await self.db.commit()
    
    # ===========================================
    # CALCULATION
    # ===========================================
    
    async def _load_employee(self, employee_id: uuid.UUID) -> Optional[Employee]:
        result = await self.db.execute(
            select(Employee)
            .options(joinedload(Employee.department))
            .where(Employee.id == employee_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
    
    async def get_employee(self, employee_id: uuid.UUID) -> Employee:
        employee = await self._load_employee(employee_id)
        if employee is None or not employee.is_active:
            raise MissingEmployeeError(employee_id)
        return employee
    
    async def get_entry_for(self, employee_id: uuid.UUID, period_id: uuid.UUID) -> Optional[PayrollEntry]:
        result = await self.db.execute(
            select(PayrollEntry).where(
                and_(
                    PayrollEntry.employee_id == employee_id,
                    PayrollEntry.period_id == period_id,
                )
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
    
    async def calculate_payroll(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        salary_grade_id: Optional[uuid.UUID] = None,
        caller: Optional[CallerContext] = None,
        in_batch: bool = False,
        aggregate: bool = True,
    ) -> PayrollEntry:
        """
        Calculate and store the payroll entry for (employee, month/year).
        
        A pending or processing entry is recomputed in place, and an unchanged
        result leaves the row as it was. Approved, rejected and cancelled
        entries raise InvalidTransitionError; a paid one raises AlreadyPaidError.
        The catalog used is the one effective on the period's processing date.
        """
        caller = caller or SYSTEM_CALLER
        employee = await self.get_employee(employee_id)
        caller.ensure_can_access(employee)
        period = await self.get_or_create_period(month, year)
        
        token = await self._claim(employee.id, period)
        try:
            entry = await self._calculate_claimed(employee, period, salary_grade_id, caller, in_batch)
        except Exception:
            await self.db.rollback()
            raise
        finally:
            await self._release(token)
        
        if aggregate:
            await PayrollAggregator(self.db).aggregate(period.id)
        await self.db.refresh(entry)
        await self._emit(entry, employee)
        return entry
    
    async def _calculate_claimed(
        self,
        employee: Employee,
        period: PayrollPeriod,
        salary_grade_id: Optional[uuid.UUID],
        caller: CallerContext,
        in_batch: bool,
    ) -> PayrollEntry:
        entry = await self.get_entry_for(employee.id, period.id)
        if entry is not None:
            if entry.status == EntryStatus.PAID:
                raise AlreadyPaidError(entry.id)
            target_status = recalculation_status(entry.status, in_batch)
        
        pay_period = PayPeriod(period.month, period.year, period.processing_date)
        grade = await self.resolve_grade(employee, pay_period.effective_date, salary_grade_id)
        catalog = await self.load_catalog_snapshot(pay_period.effective_date)
        calc = calculate(
            employee_snapshot(employee),
            grade,
            catalog,
            pay_period,
            bonuses=await self._load_bonuses(employee.id, pay_period),
            overtime_hours=await self._load_overtime_hours(employee.id, period.month, period.year),
            in_batch=in_batch,
        )
        
        if entry is None:
            entry = PayrollEntry(
                id=uuid.uuid4(),
                employee_id=employee.id,
                period_id=period.id,
                month=period.month,
                year=period.year,
                status=calc.status,
                processed_at=utcnow() if calc.status == EntryStatus.PROCESSING else None,
                created_by_id=caller.employee_id,
            )
            write_calculation(entry, calc)
            self.db.add(entry)
            self.db.add(PayrollEntryEvent(
                entry_id=entry.id,
                from_status=None,
                to_status=calc.status,
                actor_id=caller.employee_id,
                remarks="calculated",
            ))
        else:
            changed = write_calculation(entry, calc)
            if entry.status != target_status:
                self.db.add(apply_transition(
                    entry, target_status, actor_id=caller.employee_id, reason="recalculated",
                ))
            elif changed:
                self.db.add(PayrollEntryEvent(
                    entry_id=entry.id,
                    from_status=entry.status,
                    to_status=entry.status,
                    actor_id=caller.employee_id,
                    remarks="recalculated",
                ))
            if changed:
                entry.updated_by_id = caller.employee_id
        
        await self.db.commit()
        logger.info(
            "Calculated payroll for employee %s %s/%s: gross %s, deductions %s, net %s",
            employee.id, period.month, period.year,
            calc.gross_pay, calc.total_deductions, calc.net_pay,
        )
        return entry
    
    # ===========================================
    # READS
    # ===========================================
    
    async def get_payroll_by_id(self, entry_id: uuid.UUID) -> PayrollEntry:
        entry = await self.db.get(PayrollEntry, entry_id, populate_existing=True)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry
    
    async def get_employee_payroll_history(self, employee_id: uuid.UUID) -> List[PayrollEntry]:
        result = await self.db.execute(
            select(PayrollEntry)
            .where(PayrollEntry.employee_id == employee_id)
            .order_by(PayrollEntry.year.desc(), PayrollEntry.month.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
    
    async def get_period_entries(
        self,
        period_id: uuid.UUID,
        status: Optional[EntryStatus] = None,
    ) -> List[PayrollEntry]:
        query = select(PayrollEntry).where(PayrollEntry.period_id == period_id)
        if status is not None:
            query = query.where(PayrollEntry.status == status)
        result = await self.db.execute(
            query.order_by(PayrollEntry.created_at).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
    
    async def get_entry_events(self, entry_id: uuid.UUID) -> List[PayrollEntryEvent]:
        await self.get_payroll_by_id(entry_id)
        result = await self.db.execute(
            select(PayrollEntryEvent)
            .where(PayrollEntryEvent.entry_id == entry_id)
            .order_by(PayrollEntryEvent.occurred_at)
        )
        return list(result.scalars().all())
    
    # ===========================================
    # LIFECYCLE
    # ===========================================
    
    async def _transition(
        self,
        entry_id: uuid.UUID,
        requested: EntryStatus,
        caller: Optional[CallerContext] = None,
        aggregate: bool = True,
        **kwargs: Any,
    ) -> PayrollEntry:
        caller = caller or SYSTEM_CALLER
        entry = await self.get_payroll_by_id(entry_id)
        employee = await self._load_employee(entry.employee_id)
        if employee is not None:
            caller.ensure_can_access(employee)
        
        if requested == EntryStatus.APPROVED:
            ensure_transition(entry.status, requested)
            await self._check_approval_compliance(entry)
        
        event = apply_transition(entry, requested, actor_id=caller.employee_id, **kwargs)
        self.db.add(event)
        await self.db.commit()
        
        if aggregate:
            await PayrollAggregator(self.db).aggregate(entry.period_id)
        await self.db.refresh(entry)
        await self._emit(entry, employee)
        return entry
    
    async def _check_approval_compliance(self, entry: PayrollEntry) -> None:
        """Catalog integrity on the processing date and a non-negative net pay."""
        failures = []
        period = await self.get_period_by_id(entry.period_id)
        try:
            await self.load_catalog_snapshot(period.processing_date)
        except CatalogIntegrityError as exc:
            failures.append(f"deduction catalog integrity ({exc.message})")
        if entry.net_pay < 0:
            failures.append("negative net pay")
        if entry.total_deductions > entry.gross_pay:
            failures.append("deductions exceed gross pay")
        if failures:
            raise PayrollComplianceError(entry.id, failures)
    
    async def start_processing(self, entry_id: uuid.UUID, caller: Optional[CallerContext] = None) -> PayrollEntry:
        return await self._transition(entry_id, EntryStatus.PROCESSING, caller)
    
    async def approve_entry(self, entry_id: uuid.UUID, caller: Optional[CallerContext] = None) -> PayrollEntry:
        return await self._transition(entry_id, EntryStatus.APPROVED, caller)
    
    async def reject_entry(
        self,
        entry_id: uuid.UUID,
        reason: str,
        caller: Optional[CallerContext] = None,
        aggregate: bool = True,
    ) -> PayrollEntry:
        return await self._transition(entry_id, EntryStatus.REJECTED, caller, aggregate=aggregate, reason=reason)
    
    async def mark_paid(
        self,
        entry_id: uuid.UUID,
        payment_reference: Optional[str] = None,
        payment_date: Optional[date] = None,
        caller: Optional[CallerContext] = None,
    ) -> PayrollEntry:
        return await self._transition(
            entry_id,
            EntryStatus.PAID,
            caller,
            payment_reference=payment_reference,
            payment_date=payment_date,
        )
    
    async def cancel_entry(
        self,
        entry_id: uuid.UUID,
        reason: Optional[str] = None,
        caller: Optional[CallerContext] = None,
    ) -> PayrollEntry:
        return await self._transition(entry_id, EntryStatus.CANCELLED, caller, reason=reason)
    
    async def attach_payment_reference(
        self,
        entry_id: uuid.UUID,
        payment_reference: str,
        caller: Optional[CallerContext] = None,
    ) -> PayrollEntry:
        """The one change still allowed on a paid entry."""
        caller = caller or SYSTEM_CALLER
        entry = await self.get_payroll_by_id(entry_id)
        if entry.status not in (EntryStatus.APPROVED, EntryStatus.PAID):
            raise BusinessRuleException(
                f"Payment reference can only be attached to approved or paid entries, not '{entry.status.value}'",
                rule="PAYMENT_REFERENCE",
            )
        entry.payment_reference = payment_reference
        entry.updated_by_id = caller.employee_id
        await self.db.commit()
        await self.db.refresh(entry)
        return entry
    
    async def approve_period(
        self,
        period_id: uuid.UUID,
        caller: Optional[CallerContext] = None,
    ) -> Dict[str, Any]:
        """Approve every processing entry of a period; failures are reported, not raised."""
        await self.get_period_by_id(period_id)
        approved, failed = [], []
        entry_ids = [e.id for e in await self.get_period_entries(period_id, EntryStatus.PROCESSING)]
        for entry_id in entry_ids:
            try:
                await self._transition(entry_id, EntryStatus.APPROVED, caller, aggregate=False)
                approved.append(str(entry_id))
            except (PayrollComplianceError, DepartmentScopeError) as exc:
                failed.append({"entryId": str(entry_id), "code": exc.code.value, "message": exc.message})
        summary = await PayrollAggregator(self.db).aggregate(period_id)
        return {"approved": approved, "failed": failed, "periodStatus": summary.status.value}
    
    # ===========================================
    # EVENTS
    # ===========================================
    
    async def _emit(self, entry: PayrollEntry, employee: Optional[Employee]) -> None:
        if self.notifier is None:
            return
        event = build_payroll_event(
            entry,
            employee.full_name if employee else "",
            employee.department.name if employee and employee.department else None,
        )
        try:
            await self.notifier.publish(event)
        except Exception:
            logger.warning(
                "Failed to publish payroll event for entry %s (status %s)",
                entry.id, entry.status.value,
                exc_info=True,
            )
