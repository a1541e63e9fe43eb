"""
PayDesk - Notification Service

Payroll status events leave the engine through a PayrollNotifier. Delivery is
fire-and-forget: the default notifier hands the event to Celery, and the
worker stores an in-app notification for the employee.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paydesk.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


STATUS_MESSAGES = {
    "pending": "Your payroll for {period} has been calculated.",
    "processing": "Your payroll for {period} is being processed.",
    "approved": "Your payroll for {period} has been approved.",
    "paid": "Your salary for {period} has been paid.",
    "rejected": "Your payroll for {period} was rejected and will be reviewed.",
    "cancelled": "Your payroll for {period} was cancelled.",
}


def build_payroll_event(entry, employee_name: str, department_name: Optional[str]) -> Dict[str, Any]:
    """Event payload for one entry status change."""
    return {
        "type": "payroll",
        "payrollId": str(entry.id),
        "employeeId": str(entry.employee_id),
        "month": entry.month,
        "year": entry.year,
        "status": entry.status.value,
        "employeeName": employee_name,
        "departmentName": department_name,
    }


class PayrollNotifier:
    """Outbound port for payroll events."""
    
    async def publish(self, event: Dict[str, Any]) -> None:
        raise NotImplementedError


class CeleryPayrollNotifier(PayrollNotifier):
    """Queues events for the notification worker."""
    
    async def publish(self, event: Dict[str, Any]) -> None:
        from paydesk.tasks.celery_tasks import deliver_payroll_event_task
        
        # delay() blocks while kombu retries an unreachable broker
        await asyncio.to_thread(deliver_payroll_event_task.delay, event)


class NotificationService:
    """Stores and reads in-app notifications."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def create_notification(
        self,
        employee_id: Optional[uuid.UUID],
        title: str,
        message: str,
        notification_type: NotificationType = NotificationType.INFO,
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            employee_id=employee_id,
            title=title,
            message=message,
            notification_type=notification_type,
            extra_data=extra_data,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)
        return notification
    
    async def create_payroll_notification(self, event: Dict[str, Any]) -> Notification:
        """Turn a payroll event into an in-app notification."""
        period = f"{event['month']:02d}/{event['year']}"
        status = event.get("status", "pending")
        message = STATUS_MESSAGES.get(status, "Your payroll for {period} was updated.").format(period=period)
        employee_id = event.get("employeeId")
        return await self.create_notification(
            employee_id=uuid.UUID(employee_id) if employee_id else None,
            title=f"Payroll {status.title()}",
            message=message,
            notification_type=NotificationType.PAYROLL,
            extra_data=event,
        )
    
    async def get_employee_notifications(
        self,
        employee_id: uuid.UUID,
        unread_only: bool = False,
    ) -> List[Notification]:
        query = select(Notification).where(Notification.employee_id == employee_id)
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        result = await self.db.execute(query.order_by(Notification.created_at.desc()))
        return list(result.scalars().all())
