"""
PayDesk - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from paydesk.models.base import BaseModel, TimestampMixin, AuditMixin
from paydesk.models.employee import Department, Employee, OvertimeRecord
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
from paydesk.models.payroll import (
    BatchOutcome,
    EntryStatus,
    PayrollBatchSummary,
    PayrollCalculationClaim,
    PayrollEntry,
    PayrollEntryEvent,
    PayrollPeriod,
    PeriodStatus,
)
from paydesk.models.notification import Notification, NotificationType

__all__ = [
    "BaseModel", "TimestampMixin", "AuditMixin",
    "Department", "Employee", "OvertimeRecord",
    "ApprovalStatus", "Bonus", "BonusType", "CalculationMethod", "ComponentKind",
    "Deduction", "DeductionCategory", "DeductionCode", "DeductionScope",
    "SalaryComponent", "SalaryGrade",
    "BatchOutcome", "EntryStatus", "PayrollBatchSummary", "PayrollCalculationClaim",
    "PayrollEntry", "PayrollEntryEvent", "PayrollPeriod", "PeriodStatus",
    "Notification", "NotificationType",
]
