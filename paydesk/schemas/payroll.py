"""
PayDesk - Payroll Schemas

Pydantic schemas for payroll requests and responses. Entry responses use the
camelCase document layout shared with the document consumers; everything
else is snake_case.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


# ===========================================
# ENUMS AS LITERALS
# ===========================================

ComponentKindEnum = Literal["fixed", "percentage"]
DeductionCategoryEnum = Literal["statutory", "voluntary"]
DeductionCodeEnum = Literal["paye", "pension", "nhf", "other"]
CalculationMethodEnum = Literal["fixed", "percentage", "progressive"]
DeductionScopeEnum = Literal["company_wide", "department", "individual"]
BonusTypeEnum = Literal[
    "performance", "thirteenth_month", "special", "achievement", "retention", "project"
]


# ===========================================
# CALCULATION
# ===========================================

class CalculatePayrollRequest(BaseModel):
    """Calculate (or recalculate) one employee's payroll."""
    employee_id: UUID
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    salary_grade_id: Optional[UUID] = None


# ===========================================
# ENTRY DOCUMENT
# ===========================================

class AmountLine(BaseModel):
    amount: Decimal


class GradeAllowanceLine(BaseModel):
    name: str
    type: ComponentKindEnum
    value: Decimal
    amount: Decimal


class AllowancesBlock(BaseModel):
    gradeAllowances: List[GradeAllowanceLine]
    totalAllowances: Decimal


class OtherDeductionLine(BaseModel):
    name: str
    amount: Decimal


class DeductionsBlock(BaseModel):
    tax: Optional[AmountLine] = None
    pension: Optional[AmountLine] = None
    nhf: Optional[AmountLine] = None
    others: List[OtherDeductionLine]
    totalDeductions: Decimal


class BonusesBlock(BaseModel):
    totalBonuses: Decimal


class OvertimeBlock(BaseModel):
    hours: Decimal
    amount: Decimal


class TotalsBlock(BaseModel):
    grossPay: Decimal
    netPay: Decimal


class PayrollEntryDocument(BaseModel):
    """Persisted entry layout."""
    id: UUID
    employeeId: UUID
    month: int
    year: int
    basicSalary: Decimal
    allowances: AllowancesBlock
    deductions: DeductionsBlock
    bonuses: BonusesBlock
    overtime: OvertimeBlock
    totals: TotalsBlock
    status: str
    paymentReference: Optional[str] = None
    createdAt: datetime


class EntryEventResponse(BaseModel):
    id: UUID
    from_status: Optional[str] = None
    to_status: str
    actor_id: Optional[UUID] = None
    remarks: Optional[str] = None
    occurred_at: datetime
    
    class Config:
        from_attributes = True


# ===========================================
# LIFECYCLE REQUESTS
# ===========================================

class RejectEntryRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class CancelEntryRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class MarkPaidRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=100)
    payment_date: Optional[date] = None


class PaymentReferenceRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=100)


# ===========================================
# PERIODS & SUMMARIES
# ===========================================

class PayrollPeriodResponse(BaseModel):
    id: UUID
    month: int
    year: int
    processing_date: date
    status: str
    total_employees: int
    total_basic_salary: Decimal
    total_allowances: Decimal
    total_overtime: Decimal
    total_bonuses: Decimal
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_salary: Decimal
    department_breakdown: List[Dict[str, Any]]
    compliance_checks: Dict[str, bool]
    compliance_issues: Dict[str, List[str]]
    last_aggregated_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True


class DepartmentBreakdownResponse(BaseModel):
    department_id: Optional[UUID] = None
    department_name: Optional[str] = None
    employee_count: int
    total_cost: Decimal
    total_net_pay: Decimal
    
    class Config:
        from_attributes = True


class PayrollSummaryResponse(BaseModel):
    month: int
    year: int
    status: str
    total_employees: int
    total_basic_salary: Decimal
    total_allowances: Decimal
    total_overtime: Decimal
    total_bonuses: Decimal
    total_gross_pay: Decimal
    total_deductions: Decimal
    total_net_salary: Decimal
    department_breakdown: List[DepartmentBreakdownResponse]
    compliance_checks: Dict[str, bool]
    compliance_issues: Dict[str, List[str]]
    
    class Config:
        from_attributes = True


# ===========================================
# BATCH RUNS
# ===========================================

class BatchRunRequest(BaseModel):
    """Run payroll for a department, or everyone when department_id is omitted."""
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    department_id: Optional[UUID] = None
    run_async: bool = False


# ===========================================
# CATALOG
# ===========================================

class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    code: Optional[str] = Field(None, max_length=20)


class DepartmentResponse(DepartmentCreate):
    id: UUID
    is_active: bool
    
    class Config:
        from_attributes = True


class EmployeeCreate(BaseModel):
    staff_number: str = Field(..., min_length=1, max_length=50)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = None
    grade_level: Optional[str] = Field(None, max_length=20)
    department_id: Optional[UUID] = None


class EmployeeResponse(EmployeeCreate):
    id: UUID
    is_active: bool
    
    class Config:
        from_attributes = True


class ComponentCreate(BaseModel):
    """Allowance attached to a grade."""
    name: str = Field(..., min_length=1, max_length=100)
    kind: ComponentKindEnum
    value: Decimal = Field(..., ge=0)
    is_active: bool = True
    
    @model_validator(mode='after')
    def validate_percentage(self):
        if self.kind == "percentage" and self.value > 100:
            raise ValueError("Percentage components must be between 0 and 100")
        return self


class ComponentResponse(BaseModel):
    name: str
    kind: str
    value: Decimal
    is_active: bool
    
    class Config:
        from_attributes = True


class SalaryGradeCreate(BaseModel):
    level: str = Field(..., min_length=1, max_length=20)
    basic_salary: Decimal = Field(..., ge=0)
    effective_date: date
    department_id: Optional[UUID] = None
    description: Optional[str] = None
    components: List[ComponentCreate] = []


class SalaryGradeResponse(BaseModel):
    id: UUID
    level: str
    basic_salary: Decimal
    effective_date: date
    department_id: Optional[UUID] = None
    description: Optional[str] = None
    is_active: bool
    components: List[ComponentResponse]
    
    class Config:
        from_attributes = True


class TaxBracketIn(BaseModel):
    min: Decimal = Field(..., ge=0)
    max: Optional[Decimal] = None
    rate: Decimal = Field(..., ge=0, le=100)


class DeductionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: DeductionCategoryEnum
    calculation_method: CalculationMethodEnum
    effective_date: date
    value: Decimal = Field(default=Decimal("0"), ge=0)
    tax_brackets: Optional[List[TaxBracketIn]] = None
    code: DeductionCodeEnum = "other"
    scope: DeductionScopeEnum = "company_wide"
    department_id: Optional[UUID] = None
    assigned_employee_ids: List[UUID] = []
    priority: int = 100
    depends_on: List[str] = []
    is_active: bool = True
    description: Optional[str] = None
    
    def brackets_as_json(self) -> Optional[List[Dict[str, Optional[str]]]]:
        if not self.tax_brackets:
            return None
        return [
            {"min": str(b.min), "max": None if b.max is None else str(b.max), "rate": str(b.rate)}
            for b in self.tax_brackets
        ]


class DeductionResponse(BaseModel):
    id: UUID
    name: str
    category: str
    code: str
    calculation_method: str
    value: Decimal
    tax_brackets: Optional[List[Dict[str, Any]]] = None
    is_active: bool
    effective_date: date
    scope: str
    department_id: Optional[UUID] = None
    assigned_employee_ids: List[str]
    priority: int
    depends_on: List[str]
    
    class Config:
        from_attributes = True


class DeductionToggle(BaseModel):
    is_active: bool


class BonusCreate(BaseModel):
    employee_id: UUID
    bonus_type: BonusTypeEnum
    amount: Decimal = Field(..., ge=0)
    payment_date: date
    taxable: bool = True
    description: Optional[str] = None


class BonusResponse(BaseModel):
    id: UUID
    employee_id: UUID
    bonus_type: str
    amount: Decimal
    payment_date: date
    approval_status: str
    taxable: bool
    
    class Config:
        from_attributes = True


class BonusReject(BaseModel):
    reason: str = Field(..., min_length=1)


class OvertimeCreate(BaseModel):
    employee_id: UUID
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    hours_worked: Decimal = Field(..., ge=0)


class OvertimeResponse(BaseModel):
    id: UUID
    employee_id: UUID
    month: int
    year: int
    hours_worked: Decimal
    
    class Config:
        from_attributes = True
