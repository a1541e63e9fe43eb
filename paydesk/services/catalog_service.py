"""
PayDesk - Compensation Catalog Service

Administration of the inputs the payroll engine reads: salary grades and
their components, deductions, bonuses and overtime. Grades and deductions
are never edited in place for a new rate; a new version with a later
effective_date is created instead, so past periods recalculate the same way.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from paydesk.config import settings
from paydesk.models.catalog import (
    ApprovalStatus,
    Bonus,
    BonusType,
    CalculationMethod,
    ComponentKind,
    Deduction,
    DeductionCategory,
    DeductionCode,
    DeductionScope,
    SalaryComponent,
    SalaryGrade,
)
from paydesk.models.employee import Department, Employee, OvertimeRecord
from paydesk.services.deduction_rules import build_rule
from paydesk.utils.error_handling import (
    BusinessRuleException,
    CatalogValidationError,
    ConflictException,
    ErrorCode,
    MissingEmployeeError,
    NotFoundException,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


# Nigerian statutory defaults (monthly PAYE table)
DEFAULT_TAX_BRACKETS = [
    {"min": "0", "max": "300000", "rate": "7"},
    {"min": "300000", "max": "600000", "rate": "11"},
    {"min": "600000", "max": "1100000", "rate": "15"},
    {"min": "1100000", "max": "1600000", "rate": "19"},
    {"min": "1600000", "max": "3200000", "rate": "21"},
    {"min": "3200000", "max": None, "rate": "24"},
]

STATUTORY_DEFAULTS = [
    {
        "name": "PAYE Tax",
        "description": "Progressive income tax",
        "code": DeductionCode.PAYE,
        "calculation_method": CalculationMethod.PROGRESSIVE,
        "value": Decimal("0"),
        "tax_brackets": DEFAULT_TAX_BRACKETS,
        "priority": 10,
    },
    {
        "name": "Pension",
        "description": "Employee pension contribution",
        "code": DeductionCode.PENSION,
        "calculation_method": CalculationMethod.PERCENTAGE,
        "value": Decimal("8"),
        "priority": 20,
    },
    {
        "name": "NHF",
        "description": "National Housing Fund",
        "code": DeductionCode.NHF,
        "calculation_method": CalculationMethod.PERCENTAGE,
        "value": Decimal("2.5"),
        "priority": 30,
    },
]


def validate_component(name: str, kind: ComponentKind, value: Decimal) -> None:
    if kind == ComponentKind.PERCENTAGE and not (0 <= value <= HUNDRED):
        raise CatalogValidationError(
            f"Percentage component '{name}' must be between 0 and 100",
            field="components",
            details={"name": name, "value": str(value)},
        )
    if kind == ComponentKind.FIXED and value < 0:
        raise CatalogValidationError(
            f"Fixed component '{name}' must not be negative",
            field="components",
            details={"name": name, "value": str(value)},
        )


class CatalogService:
    """Service for grades, deductions, bonuses and overtime."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def _commit_or_conflict(self, message: str, resource_type: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictException(message, resource_type=resource_type, code=ErrorCode.DUPLICATE_ENTRY)
    
    # ===========================================
    # DEPARTMENTS & EMPLOYEES
    # ===========================================
    
    async def create_department(self, name: str, code: Optional[str] = None) -> Department:
        department = Department(name=name, code=code)
        self.db.add(department)
        await self._commit_or_conflict(f"Department '{name}' already exists", "Department")
        await self.db.refresh(department)
        return department
    
    async def create_employee(
        self,
        staff_number: str,
        first_name: str,
        last_name: str,
        grade_level: Optional[str] = None,
        department_id: Optional[uuid.UUID] = None,
        email: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> Employee:
        """Minimal employee record; HR CRUD beyond payroll fields lives elsewhere."""
        employee = Employee(
            staff_number=staff_number,
            first_name=first_name,
            last_name=last_name,
            grade_level=grade_level,
            department_id=department_id,
            email=email,
            created_by_id=created_by_id,
        )
        self.db.add(employee)
        await self._commit_or_conflict(f"Employee '{staff_number}' already exists", "Employee")
        await self.db.refresh(employee)
        return employee
    
    # ===========================================
    # SALARY GRADES
    # ===========================================
    
    async def create_salary_grade(
        self,
        level: str,
        basic_salary: Decimal,
        effective_date: date,
        components: Sequence[Dict[str, Any]] = (),
        department_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> SalaryGrade:
        """Create a grade version; components are {"name", "kind", "value"} dicts."""
        basic_salary = Decimal(basic_salary)
        if basic_salary < settings.minimum_basic_salary or basic_salary < 0:
            raise CatalogValidationError(
                f"Basic salary {basic_salary} is below the minimum {settings.minimum_basic_salary}",
                field="basic_salary",
            )
        
        # NULL department ids never collide in the unique constraint
        same_scope = (
            SalaryGrade.department_id == department_id
            if department_id is not None
            else SalaryGrade.department_id.is_(None)
        )
        duplicate = await self.db.execute(
            select(SalaryGrade.id).where(
                and_(
                    SalaryGrade.level == level,
                    SalaryGrade.effective_date == effective_date,
                    same_scope,
                )
            )
        )
        if duplicate.first() is not None:
            raise ConflictException(
                f"Salary grade '{level}' already has a version effective {effective_date}",
                resource_type="SalaryGrade",
                code=ErrorCode.DUPLICATE_ENTRY,
            )
        
        grade = SalaryGrade(
            level=level,
            basic_salary=basic_salary,
            effective_date=effective_date,
            department_id=department_id,
            description=description,
            created_by_id=created_by_id,
        )
        for position, item in enumerate(components):
            kind = ComponentKind(item["kind"])
            value = Decimal(str(item["value"]))
            validate_component(item["name"], kind, value)
            grade.components.append(SalaryComponent(
                name=item["name"],
                kind=kind,
                value=value,
                position=position,
                is_active=item.get("is_active", True),
            ))
        
        self.db.add(grade)
        await self._commit_or_conflict(
            f"Salary grade '{level}' already has a version effective {effective_date}",
            "SalaryGrade",
        )
        await self.db.refresh(grade)
        logger.info("Created salary grade %s effective %s", level, effective_date)
        return grade
    
    async def list_salary_grades(self, level: Optional[str] = None) -> List[SalaryGrade]:
        query = select(SalaryGrade)
        if level:
            query = query.where(SalaryGrade.level == level)
        result = await self.db.execute(query.order_by(SalaryGrade.level, SalaryGrade.effective_date))
        return list(result.scalars().all())
    
    # ===========================================
    # DEDUCTIONS
    # ===========================================
    
    async def create_deduction(
        self,
        name: str,
        category: DeductionCategory,
        calculation_method: CalculationMethod,
        effective_date: date,
        value: Decimal = Decimal("0"),
        tax_brackets: Optional[List[Dict[str, Any]]] = None,
        code: DeductionCode = DeductionCode.OTHER,
        scope: DeductionScope = DeductionScope.COMPANY_WIDE,
        department_id: Optional[uuid.UUID] = None,
        assigned_employee_ids: Sequence[uuid.UUID] = (),
        priority: int = 100,
        depends_on: Sequence[str] = (),
        is_active: bool = True,
        description: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> Deduction:
        """Create a deduction version. Bracket tables are validated before saving."""
        if category == DeductionCategory.STATUTORY and scope != DeductionScope.COMPANY_WIDE:
            raise CatalogValidationError("Statutory deductions apply company-wide", field="scope")
        if scope == DeductionScope.DEPARTMENT and department_id is None:
            raise CatalogValidationError("Department-scoped deduction needs a department", field="department_id")
        if scope == DeductionScope.INDIVIDUAL and not assigned_employee_ids:
            raise CatalogValidationError("Individual deduction needs assigned employees", field="assigned_employee_ids")
        if name in depends_on:
            raise CatalogValidationError(f"Deduction '{name}' cannot depend on itself", field="depends_on")
        
        value = Decimal(str(value))
        # Raises CatalogIntegrityError on a malformed bracket table
        build_rule(calculation_method, value, tax_brackets, deduction=name)
        
        deduction = Deduction(
            name=name,
            description=description,
            category=category,
            code=code,
            calculation_method=calculation_method,
            value=value,
            tax_brackets=tax_brackets or None,
            is_active=is_active,
            effective_date=effective_date,
            scope=scope,
            department_id=department_id if scope == DeductionScope.DEPARTMENT else None,
            assigned_employee_ids=[str(i) for i in assigned_employee_ids],
            priority=priority,
            depends_on=list(depends_on),
            created_by_id=created_by_id,
        )
        self.db.add(deduction)
        await self._commit_or_conflict(
            f"Deduction '{name}' already has a version effective {effective_date}",
            "Deduction",
        )
        await self.db.refresh(deduction)
        logger.info("Created deduction %s (%s) effective %s", name, calculation_method.value, effective_date)
        return deduction
    
    async def get_deduction(self, deduction_id: uuid.UUID) -> Deduction:
        deduction = await self.db.get(Deduction, deduction_id)
        if deduction is None:
            raise NotFoundException("Deduction", deduction_id)
        return deduction
    
    async def set_deduction_active(
        self,
        deduction_id: uuid.UUID,
        is_active: bool,
        updated_by_id: Optional[uuid.UUID] = None,
    ) -> Deduction:
        deduction = await self.get_deduction(deduction_id)
        deduction.is_active = is_active
        deduction.updated_by_id = updated_by_id
        await self.db.commit()
        await self.db.refresh(deduction)
        logger.info("Deduction %s %s", deduction.name, "activated" if is_active else "deactivated")
        return deduction
    
    async def list_deductions(
        self,
        category: Optional[DeductionCategory] = None,
        active_only: bool = False,
    ) -> List[Deduction]:
        query = select(Deduction)
        if category is not None:
            query = query.where(Deduction.category == category)
        if active_only:
            query = query.where(Deduction.is_active == True)  # noqa: E712
        result = await self.db.execute(query.order_by(Deduction.name, Deduction.effective_date))
        return list(result.scalars().all())
    
    async def seed_statutory_deductions(
        self,
        effective_date: date,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> List[Deduction]:
        """Create PAYE, Pension and NHF unless a version already exists."""
        result = await self.db.execute(
            select(Deduction.name).where(Deduction.category == DeductionCategory.STATUTORY)
        )
        existing = set(result.scalars().all())
        created = []
        for template in STATUTORY_DEFAULTS:
            if template["name"] in existing:
                continue
            created.append(await self.create_deduction(
                category=DeductionCategory.STATUTORY,
                effective_date=effective_date,
                created_by_id=created_by_id,
                **template,
            ))
        return created
    
    # ===========================================
    # BONUSES
    # ===========================================
    
    async def create_bonus(
        self,
        employee_id: uuid.UUID,
        bonus_type: BonusType,
        amount: Decimal,
        payment_date: date,
        taxable: bool = True,
        description: Optional[str] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> Bonus:
        if await self.db.get(Employee, employee_id) is None:
            raise MissingEmployeeError(employee_id)
        amount = Decimal(str(amount))
        if amount < 0:
            raise CatalogValidationError("Bonus amount must not be negative", field="amount")
        bonus = Bonus(
            employee_id=employee_id,
            bonus_type=bonus_type,
            amount=amount,
            payment_date=payment_date,
            taxable=taxable,
            description=description,
            created_by_id=created_by_id,
        )
        self.db.add(bonus)
        await self.db.commit()
        await self.db.refresh(bonus)
        return bonus
    
    async def _pending_bonus(self, bonus_id: uuid.UUID) -> Bonus:
        bonus = await self.db.get(Bonus, bonus_id)
        if bonus is None:
            raise NotFoundException("Bonus", bonus_id)
        if bonus.approval_status != ApprovalStatus.PENDING:
            raise BusinessRuleException(
                f"Bonus is already {bonus.approval_status.value}",
                rule="BONUS_APPROVAL",
            )
        return bonus
    
    async def approve_bonus(self, bonus_id: uuid.UUID, approved_by_id: Optional[uuid.UUID] = None) -> Bonus:
        bonus = await self._pending_bonus(bonus_id)
        bonus.approval_status = ApprovalStatus.APPROVED
        bonus.approved_by_id = approved_by_id
        await self.db.commit()
        await self.db.refresh(bonus)
        return bonus
    
    async def reject_bonus(self, bonus_id: uuid.UUID, reason: str) -> Bonus:
        bonus = await self._pending_bonus(bonus_id)
        bonus.approval_status = ApprovalStatus.REJECTED
        bonus.rejection_reason = reason
        await self.db.commit()
        await self.db.refresh(bonus)
        return bonus
    
    # ===========================================
    # OVERTIME
    # ===========================================
    
    async def record_overtime(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        hours_worked: Decimal,
    ) -> OvertimeRecord:
        """Set (not add to) the overtime hours of an employee for a month."""
        hours_worked = Decimal(str(hours_worked))
        if hours_worked < 0:
            raise CatalogValidationError("Overtime hours must not be negative", field="hours_worked")
        if await self.db.get(Employee, employee_id) is None:
            raise MissingEmployeeError(employee_id)
        
        result = await self.db.execute(
            select(OvertimeRecord).where(
                and_(
                    OvertimeRecord.employee_id == employee_id,
                    OvertimeRecord.month == month,
                    OvertimeRecord.year == year,
                )
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = OvertimeRecord(employee_id=employee_id, month=month, year=year, hours_worked=hours_worked)
            self.db.add(record)
        else:
            record.hours_worked = hours_worked
        await self.db.commit()
        await self.db.refresh(record)
        return record
