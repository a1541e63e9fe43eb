"""
PayDesk - Compensation Catalog Models

Salary grades with their allowance components, deduction definitions and
bonus records. Grades and deductions are versioned by effective_date: a new
version is a new row, and the payroll engine picks the newest version that is
effective on a period's processing date.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paydesk.models.base import BaseModel, AuditMixin


# ===========================================
# ENUMS
# ===========================================

class ComponentKind(str, Enum):
    """How a grade component contributes to pay."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class DeductionCategory(str, Enum):
    """Deduction category."""
    STATUTORY = "statutory"
    VOLUNTARY = "voluntary"


class DeductionCode(str, Enum):
    """Which payslip line a deduction fills."""
    PAYE = "paye"
    PENSION = "pension"
    NHF = "nhf"
    OTHER = "other"


class CalculationMethod(str, Enum):
    """Deduction calculation method."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    PROGRESSIVE = "progressive"


class DeductionScope(str, Enum):
    """Who a deduction applies to."""
    COMPANY_WIDE = "company_wide"
    DEPARTMENT = "department"
    INDIVIDUAL = "individual"


class BonusType(str, Enum):
    """Bonus classification."""
    PERFORMANCE = "performance"
    THIRTEENTH_MONTH = "thirteenth_month"
    SPECIAL = "special"
    ACHIEVEMENT = "achievement"
    RETENTION = "retention"
    PROJECT = "project"


class ApprovalStatus(str, Enum):
    """Bonus approval status."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ===========================================
# SALARY GRADE
# ===========================================

class SalaryGrade(BaseModel, AuditMixin):
    """
    Named compensation tier.
    
    A grade without department_id is global; a grade with one overrides the
    global grade of the same level for employees in that department.
    """
    
    __tablename__ = "salary_grades"
    
    level: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    basic_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    components: Mapped[List["SalaryComponent"]] = relationship(
        "SalaryComponent",
        back_populates="grade",
        cascade="all, delete-orphan",
        order_by="SalaryComponent.position",
        lazy="selectin",
    )
    
    __table_args__ = (
        UniqueConstraint("level", "department_id", "effective_date", name="uq_salary_grade_version"),
        CheckConstraint("basic_salary >= 0", name="basic_salary_non_negative"),
    )
    
    def __repr__(self) -> str:
        return f"<SalaryGrade(level={self.level}, basic={self.basic_salary})>"


class SalaryComponent(BaseModel):
    """Allowance attached to a salary grade."""
    
    __tablename__ = "salary_components"
    
    grade_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_grades.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[ComponentKind] = mapped_column(SQLEnum(ComponentKind), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    grade: Mapped["SalaryGrade"] = relationship("SalaryGrade", back_populates="components")


# ===========================================
# DEDUCTION
# ===========================================

class Deduction(BaseModel, AuditMixin):
    """
    Deduction catalog entry.
    
    tax_brackets holds [{"min": "0", "max": "300000", "rate": "7"}, ...] with
    amounts stored as strings; when present it is authoritative and value is
    ignored.
    """
    
    __tablename__ = "deductions"
    
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[DeductionCategory] = mapped_column(
        SQLEnum(DeductionCategory), nullable=False,
    )
    code: Mapped[DeductionCode] = mapped_column(
        SQLEnum(DeductionCode), default=DeductionCode.OTHER, nullable=False,
    )
    calculation_method: Mapped[CalculationMethod] = mapped_column(
        SQLEnum(CalculationMethod), nullable=False,
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0"), nullable=False,
    )
    tax_brackets: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    
    scope: Mapped[DeductionScope] = mapped_column(
        SQLEnum(DeductionScope), default=DeductionScope.COMPANY_WIDE, nullable=False,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="CASCADE"),
        nullable=True,
    )
    assigned_employee_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    
    # Explicit evaluation order
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    depends_on: Mapped[list] = mapped_column(
        JSON, default=list, nullable=False,
        comment="Names of deductions subtracted from the base before this one",
    )
    
    __table_args__ = (
        UniqueConstraint("name", "effective_date", name="uq_deduction_version"),
    )
    
    def __repr__(self) -> str:
        return f"<Deduction(name={self.name}, method={self.calculation_method})>"


# ===========================================
# BONUS
# ===========================================

class Bonus(BaseModel, AuditMixin):
    """Standalone bonus record for one employee."""
    
    __tablename__ = "bonuses"
    
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    bonus_type: Mapped[BonusType] = mapped_column(SQLEnum(BonusType), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        SQLEnum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False,
    )
    taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    __table_args__ = (
        CheckConstraint("amount >= 0", name="bonus_amount_non_negative"),
    )
