"""
PayDesk - Payroll Models

Periods, entries and their supporting records:
- PayrollPeriod: (month, year) aggregate with derived status and compliance flags
- PayrollEntry: one employee's computed payroll for one period
- PayrollEntryEvent: append-only transition history of an entry
- PayrollCalculationClaim: in-progress guard per (employee, period)
- PayrollBatchSummary: outcome of a bulk payroll run
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, JSON, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paydesk.models.base import BaseModel, AuditMixin, utcnow


# ===========================================
# ENUMS
# ===========================================

class EntryStatus(str, Enum):
    """Payroll entry lifecycle status."""
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PeriodStatus(str, Enum):
    """Payroll period status, derived from its entries."""
    DRAFT = "draft"
    PROCESSING = "processing"
    APPROVED = "approved"
    PAID = "paid"


class BatchOutcome(str, Enum):
    """Result of a bulk payroll run."""
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    REJECTED = "rejected"


# ===========================================
# PAYROLL PERIOD
# ===========================================

class PayrollPeriod(BaseModel):
    """
    Payroll period identified by (month, year).
    
    Totals and compliance flags are written only by the period aggregator.
    """
    
    __tablename__ = "payroll_periods"
    
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    processing_date: Mapped[date] = mapped_column(
        Date, nullable=False,
        comment="Catalog versions effective on this date are used",
    )
    status: Mapped[PeriodStatus] = mapped_column(
        SQLEnum(PeriodStatus), default=PeriodStatus.DRAFT, nullable=False,
    )
    
    # Aggregates
    total_employees: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_basic_salary: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    total_allowances: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    total_overtime: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    total_bonuses: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    total_gross_pay: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    total_net_salary: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    department_breakdown: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    
    # Compliance checks
    paye_calculated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pension_deducted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    nhf_deducted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tax_report_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    compliance_issues: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    
    last_aggregated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    
    entries: Mapped[List["PayrollEntry"]] = relationship(
        "PayrollEntry", back_populates="period",
    )
    
    __table_args__ = (
        UniqueConstraint("month", "year", name="uq_payroll_period_month_year"),
        CheckConstraint("month >= 1 AND month <= 12", name="month_range"),
    )
    
    @property
    def compliance_checks(self) -> Dict[str, bool]:
        return {
            "payeCalculated": self.paye_calculated,
            "pensionDeducted": self.pension_deducted,
            "nhfDeducted": self.nhf_deducted,
            "taxReportGenerated": self.tax_report_generated,
        }
    
    def __repr__(self) -> str:
        return f"<PayrollPeriod({self.month}/{self.year}, status={self.status})>"


# ===========================================
# PAYROLL ENTRY
# ===========================================

class PayrollEntry(BaseModel, AuditMixin):
    """
    One employee's payroll for one period.
    
    (employee_id, period_id) is the idempotency key: recalculation replaces
    the computed fields in place. A missing tax/pension/nhf amount (NULL)
    means the line was not produced, which is different from a zero amount.
    """
    
    __tablename__ = "payroll_entries"
    
    employee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    period_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_periods.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    salary_grade_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    
    # Earnings
    basic_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    allowance_lines: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    total_allowances: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    overtime_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"), nullable=False)
    overtime_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    taxable_bonuses: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    total_bonuses: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    gross_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    
    # Deductions
    tax_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    pension_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    nhf_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    other_deductions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    deduction_lines: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    
    net_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    
    # Lifecycle
    status: Mapped[EntryStatus] = mapped_column(
        SQLEnum(EntryStatus), default=EntryStatus.PENDING, nullable=False, index=True,
    )
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    
    period: Mapped["PayrollPeriod"] = relationship("PayrollPeriod", back_populates="entries")
    events: Mapped[List["PayrollEntryEvent"]] = relationship(
        "PayrollEntryEvent",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="PayrollEntryEvent.occurred_at",
    )
    
    __table_args__ = (
        UniqueConstraint("employee_id", "period_id", name="uq_payroll_entry_employee_period"),
    )
    
    def to_document(self) -> Dict[str, Any]:
        """Persisted entry layout shared with the external document consumers."""
        def line(amount: Optional[Decimal]) -> Optional[Dict[str, Any]]:
            return None if amount is None else {"amount": amount}
        
        return {
            "id": str(self.id),
            "employeeId": str(self.employee_id),
            "month": self.month,
            "year": self.year,
            "basicSalary": self.basic_salary,
            "allowances": {
                "gradeAllowances": [
                    {"name": a["name"], "type": a["kind"], "value": Decimal(a["value"]), "amount": Decimal(a["amount"])}
                    for a in self.allowance_lines
                ],
                "totalAllowances": self.total_allowances,
            },
            "deductions": {
                "tax": line(self.tax_amount),
                "pension": line(self.pension_amount),
                "nhf": line(self.nhf_amount),
                "others": [
                    {"name": d["name"], "amount": Decimal(d["amount"])}
                    for d in self.other_deductions
                ],
                "totalDeductions": self.total_deductions,
            },
            "bonuses": {"totalBonuses": self.total_bonuses},
            "overtime": {"hours": self.overtime_hours, "amount": self.overtime_amount},
            "totals": {"grossPay": self.gross_pay, "netPay": self.net_pay},
            "status": self.status.value,
            "paymentReference": self.payment_reference,
            "createdAt": self.created_at,
        }
    
    def __repr__(self) -> str:
        return f"<PayrollEntry(employee_id={self.employee_id}, {self.month}/{self.year}, status={self.status})>"


class PayrollEntryEvent(BaseModel):
    """Transition history row for a payroll entry."""
    
    __tablename__ = "payroll_entry_events"
    
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[Optional[EntryStatus]] = mapped_column(SQLEnum(EntryStatus), nullable=True)
    to_status: Mapped[EntryStatus] = mapped_column(SQLEnum(EntryStatus), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    
    entry: Mapped["PayrollEntry"] = relationship("PayrollEntry", back_populates="events")


# ===========================================
# CONCURRENCY GUARD
# ===========================================

class PayrollCalculationClaim(BaseModel):
    """
    Row held while a calculation for (employee, period) is running.
    
    The unique constraint makes a second concurrent claim fail at insert time.
    """
    
    __tablename__ = "payroll_calculation_claims"
    
    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    period_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_periods.id", ondelete="CASCADE"),
        nullable=False,
    )
    claim_token: Mapped[str] = mapped_column(String(64), nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    
    __table_args__ = (
        UniqueConstraint("employee_id", "period_id", name="uq_payroll_claim_employee_period"),
    )


# ===========================================
# BATCH SUMMARY
# ===========================================

class PayrollBatchSummary(BaseModel, AuditMixin):
    """Outcome of a bulk payroll run for a department or the whole organization."""
    
    __tablename__ = "payroll_batch_summaries"
    
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    period_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_periods.id", ondelete="SET NULL"),
        nullable=True,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    
    outcome: Mapped[BatchOutcome] = mapped_column(SQLEnum(BatchOutcome), nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    
    attempted_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    
    total_gross_pay: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    total_net_pay: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0"), nullable=False)
    
    employee_results: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
