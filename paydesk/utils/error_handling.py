"""
Error Handling Module for PayDesk

This module provides centralized error handling with:
- Custom exception hierarchy for the payroll engine
- Standardized error responses
- Error logging
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("paydesk.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""
    
    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_CATALOG_ENTRY = "INVALID_CATALOG_ENTRY"
    
    # Authorization Errors (403)
    FORBIDDEN = "FORBIDDEN"
    DEPARTMENT_SCOPE_VIOLATION = "DEPARTMENT_SCOPE_VIOLATION"
    
    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    GRADE_NOT_FOUND = "GRADE_NOT_FOUND"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    PERIOD_NOT_FOUND = "PERIOD_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    CALCULATION_IN_PROGRESS = "CALCULATION_IN_PROGRESS"
    
    # Business Logic Errors (422)
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    CATALOG_INTEGRITY = "CATALOG_INTEGRITY"
    ALREADY_PAID = "ALREADY_PAID"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    COMPLIANCE_CHECK_FAILED = "COMPLIANCE_CHECK_FAILED"
    PAYMENT_CONFIRMATION_REQUIRED = "PAYMENT_CONFIRMATION_REQUIRED"
    
    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"
    
    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""
    
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""
    
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidPeriodError(ValidationException):
    """Month/year outside the accepted range"""
    
    def __init__(self, month: int, year: int):
        super().__init__(
            message=f"Invalid payroll period {month}/{year}. Month must be 1-12.",
            field="month",
            code=ErrorCode.INVALID_PERIOD,
            details={"month": month, "year": year},
        )


class CatalogValidationError(ValidationException):
    """Rejected catalog input (grade component, deduction, bonus)"""
    
    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            field=field,
            details=details,
            code=ErrorCode.INVALID_CATALOG_ENTRY,
        )


# ============================================================================
# Authorization Exceptions
# ============================================================================

class DepartmentScopeError(AppException):
    """Caller acted on an employee or department outside its department scope"""
    
    def __init__(self, target: str, department_scope: Union[str, UUID, None]):
        super().__init__(
            code=ErrorCode.DEPARTMENT_SCOPE_VIOLATION,
            message=f"{target} is outside the caller's department scope",
            status_code=status.HTTP_403_FORBIDDEN,
            details={"target": target, "department_scope": str(department_scope)},
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""
    
    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
        details: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        _details = {"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None}
        _details.update(details or {})
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=_details,
        )


class MissingEmployeeError(NotFoundException):
    """Employee referenced by a calculation does not exist or is inactive"""
    
    def __init__(self, employee_id: Union[str, UUID]):
        super().__init__(
            resource_type="Employee",
            resource_id=employee_id,
            code=ErrorCode.EMPLOYEE_NOT_FOUND,
        )


class MissingGradeError(NotFoundException):
    """No salary grade resolves for the employee on the processing date"""
    
    def __init__(
        self,
        employee_id: Union[str, UUID],
        level: Optional[str] = None,
        grade_id: Optional[Union[str, UUID]] = None,
    ):
        if grade_id:
            message = f"Salary grade '{grade_id}' not found"
        elif level:
            message = f"No salary grade '{level}' is effective for employee '{employee_id}'"
        else:
            message = f"Employee '{employee_id}' has no salary grade assigned"
        super().__init__(
            resource_type="SalaryGrade",
            resource_id=grade_id,
            message=message,
            code=ErrorCode.GRADE_NOT_FOUND,
            details={"employee_id": str(employee_id), "level": level},
        )


class EntryNotFoundError(NotFoundException):
    """Payroll entry not found"""
    
    def __init__(self, entry_id: Union[str, UUID]):
        super().__init__(
            resource_type="PayrollEntry",
            resource_id=entry_id,
            code=ErrorCode.ENTRY_NOT_FOUND,
        )


class PeriodNotFoundError(NotFoundException):
    """Payroll period not found"""
    
    def __init__(self, period_id: Union[str, UUID]):
        super().__init__(
            resource_type="PayrollPeriod",
            resource_id=period_id,
            code=ErrorCode.PERIOD_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""
    
    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


class CalculationInProgressError(ConflictException):
    """Another calculation for the same employee and period is running; retry later"""
    
    def __init__(self, employee_id: Union[str, UUID], month: int, year: int):
        super().__init__(
            message=f"A payroll calculation for employee '{employee_id}' in {month}/{year} is already in progress",
            resource_type="PayrollEntry",
            code=ErrorCode.CALCULATION_IN_PROGRESS,
            details={"employee_id": str(employee_id), "month": month, "year": year, "retryable": True},
        )


class AlreadyPaidError(ConflictException):
    """Recalculation attempted on a paid entry"""
    
    def __init__(self, entry_id: Union[str, UUID]):
        super().__init__(
            message=f"Payroll entry '{entry_id}' is already paid and cannot be recalculated; reverse it first",
            resource_type="PayrollEntry",
            code=ErrorCode.ALREADY_PAID,
            details={"entry_id": str(entry_id)},
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""
    
    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=_details,
        )


class CatalogIntegrityError(BusinessRuleException):
    """Malformed deduction catalog; calculation must not proceed"""
    
    def __init__(self, message: str, deduction: Optional[str] = None, problems: Optional[List[str]] = None):
        details: Dict[str, Any] = {}
        if deduction:
            details["deduction"] = deduction
        if problems:
            details["problems"] = problems
        super().__init__(
            message=message,
            rule="CATALOG_INTEGRITY",
            code=ErrorCode.CATALOG_INTEGRITY,
            details=details,
        )


class InvalidTransitionError(BusinessRuleException):
    """Lifecycle transition not permitted from the current status"""
    
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            message=f"Cannot move payroll entry from '{current}' to '{requested}'",
            rule="ENTRY_LIFECYCLE",
            code=ErrorCode.INVALID_TRANSITION,
            details={"current_status": current, "requested_status": requested},
        )


class PayrollComplianceError(BusinessRuleException):
    """Entry failed the compliance checks required for approval"""
    
    def __init__(self, entry_id: Union[str, UUID], failures: List[str]):
        super().__init__(
            message=f"Payroll entry '{entry_id}' failed compliance checks: {', '.join(failures)}",
            rule="APPROVAL_COMPLIANCE",
            code=ErrorCode.COMPLIANCE_CHECK_FAILED,
            details={"entry_id": str(entry_id), "failures": failures},
        )


class PaymentConfirmationRequiredError(BusinessRuleException):
    """Marking an entry paid requires a payment reference"""
    
    def __init__(self, entry_id: Union[str, UUID]):
        super().__init__(
            message=f"Payroll entry '{entry_id}' cannot be marked paid without a payment reference",
            rule="PAYMENT_CONFIRMATION",
            code=ErrorCode.PAYMENT_CONFIRMATION_REQUIRED,
            details={"entry_id": str(entry_id)},
        )


# ============================================================================
# Exception Handlers
# ============================================================================

HTTP_STATUS_CODES = {
    400: ErrorCode.INVALID_INPUT,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.RESOURCE_CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
}


def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Error body shared by every handler: {"detail": {"code", "message", "timestamp", ...}}"""
    body: Dict[str, Any] = {
        "code": code.value,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if field:
        body["field"] = field
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"detail": body})


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "%s %s failed with %s: %s",
        request.method, request.url.path, exc.code.value, exc.message,
        exc_info=exc.original_error,
    )
    body = exc.to_dict()
    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=body.get("details"),
        field=body.get("field"),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.warning("%s %s returned %s: %s", request.method, request.url.path, exc.status_code, message)
    return create_error_response(
        code=HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Pydantic request errors, one entry per offending field."""
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("%s %s rejected: %d validation errors", request.method, request.url.path, len(errors))
    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database failures that escaped the services; unique violations become 409."""
    code, message, status_code = (
        ErrorCode.DATABASE_ERROR,
        "A database error occurred",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if isinstance(exc, IntegrityError):
        reason = str(exc.orig).lower() if exc.orig else ""
        if "unique" in reason or "duplicate" in reason:
            code, message, status_code = (
                ErrorCode.DUPLICATE_ENTRY,
                "A record with this value already exists",
                status.HTTP_409_CONFLICT,
            )
        elif "foreign key" in reason:
            code, message, status_code = (
                ErrorCode.DATA_INTEGRITY_ERROR,
                "Referenced record does not exist",
                status.HTTP_422_UNPROCESSABLE_ENTITY,
            )
        else:
            code, message = ErrorCode.DATA_INTEGRITY_ERROR, "Data integrity constraint violated"
    elif isinstance(exc, OperationalError):
        code, message = ErrorCode.CONNECTION_ERROR, "Database operation failed"

    logger.error("%s %s hit %s", request.method, request.url.path, type(exc).__name__, exc_info=exc)
    return create_error_response(code=code, message=message, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path, exc_info=exc)
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
