"""
PayDesk - Celery Tasks

Background payroll work: bulk runs, the automated monthly run and delivery
of payroll status notifications.
"""

import asyncio
import logging
import uuid
from datetime import date
from typing import Any, Dict, Optional

from celery import shared_task

from paydesk.celery_app import celery_app  # noqa: F401  (binds shared tasks to the configured app)
from paydesk.database import async_session_factory

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _uuid_or_none(value: Optional[str]) -> Optional[uuid.UUID]:
    return uuid.UUID(value) if value else None


# ===========================================
# NOTIFICATIONS
# ===========================================

@shared_task(
    name='paydesk.tasks.celery_tasks.deliver_payroll_event_task',
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    max_retries=3,
)
def deliver_payroll_event_task(event: Dict[str, Any]) -> Dict[str, Any]:
    """Store an in-app notification for a payroll status event."""
    return run_async(_deliver_payroll_event(event))


async def _deliver_payroll_event(event: Dict[str, Any]) -> Dict[str, Any]:
    from paydesk.services.notification_service import NotificationService
    
    async with async_session_factory() as db:
        notification = await NotificationService(db).create_payroll_notification(event)
    logger.info("Stored payroll notification %s for entry %s", notification.id, event.get("payrollId"))
    return {"notification_id": str(notification.id)}


# ===========================================
# PAYROLL RUNS
# ===========================================

@shared_task(name='paydesk.tasks.celery_tasks.run_payroll_batch_task')
def run_payroll_batch_task(
    month: int,
    year: int,
    department_id: Optional[str] = None,
    caller_employee_id: Optional[str] = None,
    caller_department_scope: Optional[str] = None,
) -> Dict[str, Any]:
    """Run a payroll batch outside the request cycle."""
    return run_async(_run_payroll_batch(
        month, year, department_id, caller_employee_id, caller_department_scope,
    ))


async def _run_payroll_batch(
    month: int,
    year: int,
    department_id: Optional[str],
    caller_employee_id: Optional[str],
    caller_department_scope: Optional[str],
) -> Dict[str, Any]:
    from paydesk.services.notification_service import CeleryPayrollNotifier
    from paydesk.services.payroll_batch_service import PayrollBatchService
    from paydesk.services.payroll_service import CallerContext
    
    caller = CallerContext(
        employee_id=_uuid_or_none(caller_employee_id),
        department_scope=_uuid_or_none(caller_department_scope),
    )
    service = PayrollBatchService(async_session_factory, CeleryPayrollNotifier())
    result = await service.run(month, year, _uuid_or_none(department_id), caller)
    return result.to_dict()


@shared_task(name='paydesk.tasks.celery_tasks.automated_payroll_task')
def automated_payroll_task() -> Dict[str, Any]:
    """Monthly scheduled run for the whole organization (current month)."""
    today = date.today()
    logger.info("Automated payroll run for %s/%s", today.month, today.year)
    return run_async(_run_payroll_batch(today.month, today.year, None, None, None))
