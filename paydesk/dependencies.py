"""
PayDesk - FastAPI Dependencies

Authentication happens upstream; the gateway forwards who the caller is in
X-Employee-Id and, for department-limited roles, X-Department-Scope.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from paydesk.database import async_session_factory, get_async_session
from paydesk.services.catalog_service import CatalogService
from paydesk.services.payroll_batch_service import PayrollBatchService
from paydesk.services.notification_service import CeleryPayrollNotifier, PayrollNotifier
from paydesk.services.payroll_service import CallerContext, PayrollService
from paydesk.utils.error_handling import ValidationException


def _parse_uuid(value: Optional[str], header: str) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        raise ValidationException(f"Header {header} must be a UUID", field=header)


async def get_caller_context(
    x_employee_id: Optional[str] = Header(None),
    x_department_scope: Optional[str] = Header(None),
) -> CallerContext:
    return CallerContext(
        employee_id=_parse_uuid(x_employee_id, "X-Employee-Id"),
        department_scope=_parse_uuid(x_department_scope, "X-Department-Scope"),
    )


def get_payroll_notifier() -> PayrollNotifier:
    return CeleryPayrollNotifier()


async def get_payroll_service(
    db: AsyncSession = Depends(get_async_session),
    notifier: PayrollNotifier = Depends(get_payroll_notifier),
) -> PayrollService:
    return PayrollService(db, notifier)


async def get_catalog_service(
    db: AsyncSession = Depends(get_async_session),
) -> CatalogService:
    return CatalogService(db)


def get_batch_service(
    notifier: PayrollNotifier = Depends(get_payroll_notifier),
) -> PayrollBatchService:
    return PayrollBatchService(async_session_factory, notifier)
