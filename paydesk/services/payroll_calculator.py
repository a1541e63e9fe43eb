"""
PayDesk - Payroll Calculator

Pure calculation of one employee's payroll for one period. Nothing here
touches the database: callers load an employee snapshot, the effective salary
grade and a catalog snapshot, and get back a PayrollCalculation.

Order of work:
1. basic salary from the grade
2. grade allowances (fixed or percentage of basic)
3. overtime = hours * basic / standard monthly hours
4. approved bonuses paid inside the period window (taxable ones join gross)
5. deductions, statutory first, in declared dependency/priority order, each
   against gross pay less the deductions it depends on
6. deductions capped at gross pay, truncating the last-applied lines first
"""

import calendar
import heapq
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from paydesk.config import settings
from paydesk.models.catalog import ApprovalStatus, ComponentKind, DeductionCode
from paydesk.models.payroll import EntryStatus
from paydesk.services.deduction_rules import (
    DeductionDefinition,
    HUNDRED,
    ZERO,
    resolve_deduction_amount,
    round_money,
)
from paydesk.utils.error_handling import CatalogIntegrityError


T = TypeVar("T")


# ===========================================
# INPUT SNAPSHOTS
# ===========================================

@dataclass(frozen=True)
class PayPeriod:
    """Calendar month being paid."""
    month: int
    year: int
    processing_date: Optional[date] = None
    
    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)
    
    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])
    
    @property
    def effective_date(self) -> date:
        """Date whose catalog state governs this period."""
        return self.processing_date or self.end
    
    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class EmployeeSnapshot:
    id: uuid.UUID
    full_name: str
    department_id: Optional[uuid.UUID] = None
    department_name: Optional[str] = None
    grade_level: Optional[str] = None


@dataclass(frozen=True)
class GradeComponent:
    name: str
    kind: ComponentKind
    value: Decimal
    is_active: bool = True


@dataclass(frozen=True)
class GradeSnapshot:
    id: Optional[uuid.UUID]
    level: str
    basic_salary: Decimal
    components: Tuple[GradeComponent, ...] = ()
    department_id: Optional[uuid.UUID] = None
    effective_date: Optional[date] = None
    is_active: bool = True


@dataclass(frozen=True)
class BonusRecord:
    amount: Decimal
    payment_date: date
    approval_status: ApprovalStatus
    taxable: bool = True
    id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class CatalogSnapshot:
    """Deductions effective on a period's processing date."""
    deductions: Tuple[DeductionDefinition, ...] = ()
    as_of: Optional[date] = None


# ===========================================
# RESULT
# ===========================================

@dataclass(frozen=True)
class AllowanceLine:
    name: str
    kind: ComponentKind
    value: Decimal
    amount: Decimal
    
    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "kind": self.kind.value, "value": str(self.value), "amount": str(self.amount)}


@dataclass(frozen=True)
class DeductionLine:
    name: str
    code: DeductionCode
    statutory: bool
    base: Decimal
    computed_amount: Decimal
    amount: Decimal
    
    @property
    def capped(self) -> bool:
        return self.amount < self.computed_amount
    
    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "code": self.code.value,
            "statutory": self.statutory,
            "base": str(self.base),
            "computedAmount": str(self.computed_amount),
            "amount": str(self.amount),
        }


@dataclass
class PayrollCalculation:
    employee_id: uuid.UUID
    month: int
    year: int
    grade_id: Optional[uuid.UUID]
    department_id: Optional[uuid.UUID]
    basic_salary: Decimal
    allowance_lines: List[AllowanceLine]
    total_allowances: Decimal
    overtime_hours: Decimal
    overtime_amount: Decimal
    taxable_bonuses: Decimal
    total_bonuses: Decimal
    gross_pay: Decimal
    deduction_lines: List[DeductionLine]
    total_deductions: Decimal
    net_pay: Decimal
    status: EntryStatus = EntryStatus.PENDING
    
    def _code_total(self, code: DeductionCode) -> Optional[Decimal]:
        lines = [line.amount for line in self.deduction_lines if line.code == code]
        if not lines:
            return None
        return sum(lines, ZERO)
    
    @property
    def tax_amount(self) -> Optional[Decimal]:
        return self._code_total(DeductionCode.PAYE)
    
    @property
    def pension_amount(self) -> Optional[Decimal]:
        return self._code_total(DeductionCode.PENSION)
    
    @property
    def nhf_amount(self) -> Optional[Decimal]:
        return self._code_total(DeductionCode.NHF)
    
    @property
    def other_deductions(self) -> List[DeductionLine]:
        return [line for line in self.deduction_lines if line.code == DeductionCode.OTHER]


# ===========================================
# CATALOG SELECTION
# ===========================================

def select_effective(
    items: Iterable[T],
    on: date,
    key: Callable[[T], object],
    effective: Callable[[T], date],
) -> List[T]:
    """Newest version per key whose effective date is on or before `on`."""
    chosen: Dict[object, T] = {}
    for item in items:
        when = effective(item)
        if when > on:
            continue
        k = key(item)
        current = chosen.get(k)
        if current is None or effective(current) < when:
            chosen[k] = item
    return list(chosen.values())


def resolve_salary_grade(
    grades: Sequence[GradeSnapshot],
    level: Optional[str],
    department_id: Optional[uuid.UUID],
) -> Optional[GradeSnapshot]:
    """
    Pick the grade for an employee's level.
    
    A grade scoped to the employee's department wins over a global grade of
    the same level; grades scoped to other departments never match.
    """
    if not level:
        return None
    candidates = [g for g in grades if g.level == level and g.is_active]
    
    def newest(pool: List[GradeSnapshot]) -> Optional[GradeSnapshot]:
        if not pool:
            return None
        return max(pool, key=lambda g: g.effective_date or date.min)
    
    if department_id is not None:
        scoped = newest([g for g in candidates if g.department_id == department_id])
        if scoped is not None:
            return scoped
    return newest([g for g in candidates if g.department_id is None])


def validate_catalog(deductions: Sequence[DeductionDefinition]) -> None:
    """Reject unknown dependencies and dependency cycles."""
    names = {d.name for d in deductions}
    problems = []
    for definition in deductions:
        for dependency in definition.depends_on:
            if dependency not in names:
                problems.append(f"{definition.name} depends on unknown deduction '{dependency}'")
    if problems:
        raise CatalogIntegrityError("Deduction dependencies reference unknown deductions", problems=problems)
    evaluation_order(deductions)


def evaluation_order(deductions: Sequence[DeductionDefinition]) -> List[DeductionDefinition]:
    """
    Topological order over depends_on; ties go statutory first, then by
    priority, then by name. Dependencies outside the given set are ignored.
    """
    by_name = {d.name: d for d in deductions}
    remaining_deps = {
        d.name: {dep for dep in d.depends_on if dep in by_name}
        for d in deductions
    }
    dependants: Dict[str, List[str]] = {name: [] for name in by_name}
    for name, deps in remaining_deps.items():
        for dep in deps:
            dependants[dep].append(name)
    
    def rank(definition: DeductionDefinition):
        return (0 if definition.is_statutory else 1, definition.priority, definition.name)
    
    ready = [rank(by_name[name]) for name, deps in remaining_deps.items() if not deps]
    heapq.heapify(ready)
    ordered = []
    while ready:
        _, _, name = heapq.heappop(ready)
        ordered.append(by_name[name])
        for dependant in dependants[name]:
            remaining_deps[dependant].discard(name)
            if not remaining_deps[dependant]:
                heapq.heappush(ready, rank(by_name[dependant]))
    
    if len(ordered) != len(deductions):
        cyclic = sorted(name for name, deps in remaining_deps.items() if deps)
        raise CatalogIntegrityError(
            "Deduction dependencies form a cycle",
            problems=[f"cycle involving {', '.join(cyclic)}"],
        )
    return ordered


# ===========================================
# CALCULATION
# ===========================================

def component_amount(component: GradeComponent, basic_salary: Decimal) -> Decimal:
    if component.kind == ComponentKind.PERCENTAGE:
        if component.value < 0 or component.value > HUNDRED:
            raise CatalogIntegrityError(
                f"Percentage component '{component.name}' must be between 0 and 100",
            )
        return round_money(basic_salary * component.value / HUNDRED)
    if component.value < 0:
        raise CatalogIntegrityError(f"Fixed component '{component.name}' must not be negative")
    return round_money(component.value)


def overtime_amount(hours: Decimal, basic_salary: Decimal, standard_hours: Decimal) -> Decimal:
    if hours <= 0:
        return ZERO
    if standard_hours <= 0:
        raise CatalogIntegrityError("Standard monthly hours must be positive")
    return round_money(hours * basic_salary / standard_hours)


def apply_deduction_cap(lines: List[DeductionLine], gross_pay: Decimal) -> List[DeductionLine]:
    """Truncate lines in evaluation order so their sum never exceeds gross pay."""
    remaining = gross_pay
    capped = []
    for line in lines:
        amount = min(line.computed_amount, max(remaining, ZERO))
        remaining -= amount
        capped.append(DeductionLine(
            name=line.name,
            code=line.code,
            statutory=line.statutory,
            base=line.base,
            computed_amount=line.computed_amount,
            amount=amount,
        ))
    return capped


def calculate(
    employee: EmployeeSnapshot,
    grade: GradeSnapshot,
    catalog: CatalogSnapshot,
    period: PayPeriod,
    bonuses: Sequence[BonusRecord] = (),
    overtime_hours: Decimal = ZERO,
    in_batch: bool = False,
    standard_monthly_hours: Optional[Decimal] = None,
) -> PayrollCalculation:
    """Compute one payroll entry. Same inputs always give the same result."""
    basic_salary = round_money(grade.basic_salary)
    if basic_salary < 0:
        raise CatalogIntegrityError(f"Salary grade '{grade.level}' has a negative basic salary")
    
    allowance_lines = [
        AllowanceLine(c.name, c.kind, c.value, component_amount(c, basic_salary))
        for c in grade.components
        if c.is_active
    ]
    total_allowances = sum((line.amount for line in allowance_lines), ZERO)
    
    hours = Decimal(overtime_hours or 0)
    overtime = overtime_amount(
        hours,
        basic_salary,
        standard_monthly_hours if standard_monthly_hours is not None else settings.standard_monthly_hours,
    )
    
    paid_bonuses = [
        b for b in bonuses
        if b.approval_status == ApprovalStatus.APPROVED and period.contains(b.payment_date)
    ]
    taxable_bonuses = round_money(sum((b.amount for b in paid_bonuses if b.taxable), ZERO))
    total_bonuses = round_money(sum((b.amount for b in paid_bonuses), ZERO))
    
    gross_pay = basic_salary + total_allowances + overtime + taxable_bonuses
    
    applicable = [
        d for d in catalog.deductions
        if d.is_active and d.applies_to(employee.id, employee.department_id)
    ]
    computed: Dict[str, Decimal] = {}
    lines = []
    for definition in evaluation_order(applicable):
        base = gross_pay - sum((computed.get(dep, ZERO) for dep in definition.depends_on), ZERO)
        amount = resolve_deduction_amount(definition, base)
        computed[definition.name] = amount
        lines.append(DeductionLine(
            name=definition.name,
            code=definition.code,
            statutory=definition.is_statutory,
            base=max(base, ZERO),
            computed_amount=amount,
            amount=amount,
        ))
    
    lines = apply_deduction_cap(lines, gross_pay)
    total_deductions = sum((line.amount for line in lines), ZERO)
    net_pay = gross_pay + (total_bonuses - taxable_bonuses) - total_deductions
    
    return PayrollCalculation(
        employee_id=employee.id,
        month=period.month,
        year=period.year,
        grade_id=grade.id,
        department_id=employee.department_id,
        basic_salary=basic_salary,
        allowance_lines=allowance_lines,
        total_allowances=total_allowances,
        overtime_hours=hours,
        overtime_amount=overtime,
        taxable_bonuses=taxable_bonuses,
        total_bonuses=total_bonuses,
        gross_pay=gross_pay,
        deduction_lines=lines,
        total_deductions=total_deductions,
        net_pay=net_pay,
        status=EntryStatus.PROCESSING if in_batch else EntryStatus.PENDING,
    )
