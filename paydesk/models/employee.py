"""
PayDesk - Employee Models

Departments, employees and the monthly overtime records consumed by the
payroll engine. Employee CRUD beyond these fields is owned by the HR side.
"""

import uuid
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean, ForeignKey, Integer, Numeric, String, Uuid,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paydesk.models.base import BaseModel, AuditMixin


# ===========================================
# DEPARTMENT
# ===========================================

class Department(BaseModel):
    """Organizational department used to scope grades and deductions."""
    
    __tablename__ = "departments"
    
    name: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    employees: Mapped[List["Employee"]] = relationship(
        "Employee", back_populates="department",
    )
    
    def __repr__(self) -> str:
        return f"<Department(name={self.name})>"


# ===========================================
# EMPLOYEE
# ===========================================

class Employee(BaseModel, AuditMixin):
    """
    Employee record as seen by payroll.
    
    grade_level is the salary grade label (e.g. "GL-07"); the concrete
    SalaryGrade is resolved per period, preferring a grade scoped to the
    employee's department.
    """
    
    __tablename__ = "employees"
    
    staff_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True,
        comment="Internal employee ID/staff number",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    grade_level: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True,
        comment="Salary grade level label",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    department: Mapped[Optional["Department"]] = relationship(
        "Department", back_populates="employees", lazy="joined",
    )
    
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
    
    def __repr__(self) -> str:
        return f"<Employee(staff_number={self.staff_number}, name={self.full_name})>"


# ===========================================
# OVERTIME
# ===========================================

class OvertimeRecord(BaseModel):
    """Overtime hours worked by an employee in a given month."""
    
    __tablename__ = "overtime_records"
    
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    hours_worked: Mapped[Decimal] = mapped_column(
        Numeric(8, 2), nullable=False, default=Decimal("0"),
    )
    
    __table_args__ = (
        UniqueConstraint("employee_id", "month", "year", name="uq_overtime_employee_period"),
        CheckConstraint("hours_worked >= 0", name="hours_non_negative"),
    )
