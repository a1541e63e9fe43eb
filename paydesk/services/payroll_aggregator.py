"""
PayDesk - Payroll Period Aggregator

Recomputes a period's totals, department breakdown and compliance flags from
its entries. Cancelled entries are excluded everywhere. Entries are only read;
the period row is the only thing written.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from paydesk.models.base import utcnow
from paydesk.models.employee import Department
from paydesk.models.payroll import EntryStatus, PayrollEntry, PayrollPeriod, PeriodStatus
from paydesk.services.payroll_lifecycle import derive_period_status
from paydesk.utils.error_handling import PeriodNotFoundError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class DepartmentBreakdown:
    department_id: Optional[uuid.UUID]
    department_name: Optional[str]
    employee_count: int = 0
    total_cost: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    
    def to_dict(self) -> Dict[str, object]:
        return {
            "departmentId": str(self.department_id) if self.department_id else None,
            "departmentName": self.department_name,
            "employeeCount": self.employee_count,
            "totalCost": str(self.total_cost),
            "totalNetPay": str(self.total_net_pay),
        }


@dataclass
class PayrollSummary:
    month: int
    year: int
    status: PeriodStatus
    total_employees: int = 0
    total_basic_salary: Decimal = ZERO
    total_allowances: Decimal = ZERO
    total_overtime: Decimal = ZERO
    total_bonuses: Decimal = ZERO
    total_gross_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net_salary: Decimal = ZERO
    department_breakdown: List[DepartmentBreakdown] = field(default_factory=list)
    compliance_checks: Dict[str, bool] = field(default_factory=dict)
    compliance_issues: Dict[str, List[str]] = field(default_factory=dict)


def _line_present(amount: Optional[Decimal]) -> bool:
    return amount is not None and amount >= 0


def summarize_entries(
    entries: Sequence[PayrollEntry],
    month: int,
    year: int,
    department_names: Optional[Dict[uuid.UUID, str]] = None,
    tax_report_generated: bool = False,
) -> PayrollSummary:
    """
    Pure summary of a period's entries.
    
    A compliance flag is true only when every live entry carries that
    deduction line; a missing line is reported by entry id, never read as 0.
    """
    department_names = department_names or {}
    live = [e for e in entries if e.status != EntryStatus.CANCELLED]
    summary = PayrollSummary(
        month=month,
        year=year,
        status=derive_period_status(e.status for e in entries),
        total_employees=len({e.employee_id for e in live}),
    )
    
    departments: Dict[Optional[uuid.UUID], DepartmentBreakdown] = {}
    missing: Dict[str, List[str]] = {"payeCalculated": [], "pensionDeducted": [], "nhfDeducted": []}
    
    for entry in live:
        summary.total_basic_salary += entry.basic_salary
        summary.total_allowances += entry.total_allowances
        summary.total_overtime += entry.overtime_amount
        summary.total_bonuses += entry.total_bonuses
        summary.total_gross_pay += entry.gross_pay
        summary.total_deductions += entry.total_deductions
        summary.total_net_salary += entry.net_pay
        
        bucket = departments.get(entry.department_id)
        if bucket is None:
            bucket = DepartmentBreakdown(
                department_id=entry.department_id,
                department_name=department_names.get(entry.department_id) if entry.department_id else None,
            )
            departments[entry.department_id] = bucket
        bucket.employee_count += 1
        bucket.total_cost += entry.net_pay + entry.total_deductions
        bucket.total_net_pay += entry.net_pay
        
        if not _line_present(entry.tax_amount):
            missing["payeCalculated"].append(str(entry.id))
        if not _line_present(entry.pension_amount):
            missing["pensionDeducted"].append(str(entry.id))
        if not _line_present(entry.nhf_amount):
            missing["nhfDeducted"].append(str(entry.id))
    
    summary.department_breakdown = sorted(
        departments.values(),
        key=lambda b: (b.department_name is None, b.department_name or ""),
    )
    summary.compliance_checks = {
        flag: bool(live) and not ids for flag, ids in missing.items()
    }
    summary.compliance_checks["taxReportGenerated"] = tax_report_generated
    summary.compliance_issues = {flag: ids for flag, ids in missing.items() if ids}
    return summary


def locked_period(period_id: uuid.UUID) -> Select:
    """Period row selected FOR UPDATE; the lock serializes writes to its totals."""
    return (
        select(PayrollPeriod)
        .where(PayrollPeriod.id == period_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class PayrollAggregator:
    """Writes period aggregates back to the period row."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def _department_names(self, ids: List[uuid.UUID]) -> Dict[uuid.UUID, str]:
        if not ids:
            return {}
        result = await self.db.execute(
            select(Department.id, Department.name).where(Department.id.in_(ids))
        )
        return {row.id: row.name for row in result}
    
    async def aggregate(self, period_id: uuid.UUID, commit: bool = True) -> PayrollSummary:
        """
        Recompute and store the aggregates of one period. Safe to repeat.
        
        The period row is locked first, so concurrent aggregations of one
        period run one after another and each reads the entries committed
        before it.
        """
        result = await self.db.execute(locked_period(period_id))
        period = result.scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(period_id)
        
        result = await self.db.execute(
            select(PayrollEntry)
            .where(PayrollEntry.period_id == period_id)
            .execution_options(populate_existing=True)
        )
        entries = list(result.scalars().all())
        names = await self._department_names(
            list({e.department_id for e in entries if e.department_id is not None})
        )
        summary = summarize_entries(
            entries,
            period.month,
            period.year,
            department_names=names,
            tax_report_generated=period.tax_report_generated,
        )
        
        period.status = summary.status
        period.total_employees = summary.total_employees
        period.total_basic_salary = summary.total_basic_salary
        period.total_allowances = summary.total_allowances
        period.total_overtime = summary.total_overtime
        period.total_bonuses = summary.total_bonuses
        period.total_gross_pay = summary.total_gross_pay
        period.total_deductions = summary.total_deductions
        period.total_net_salary = summary.total_net_salary
        period.department_breakdown = [b.to_dict() for b in summary.department_breakdown]
        period.paye_calculated = summary.compliance_checks["payeCalculated"]
        period.pension_deducted = summary.compliance_checks["pensionDeducted"]
        period.nhf_deducted = summary.compliance_checks["nhfDeducted"]
        period.compliance_issues = summary.compliance_issues
        period.last_aggregated_at = utcnow()
        
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        
        logger.info(
            "Aggregated payroll period %s/%s: %s employees, net %s, status %s",
            period.month, period.year, summary.total_employees,
            summary.total_net_salary, summary.status.value,
        )
        return summary
