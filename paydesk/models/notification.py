"""
PayDesk - Notification Model

In-app notifications produced from payroll status events.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, Uuid, Enum as SQLEnum, JSON
from sqlalchemy.orm import Mapped, mapped_column

from paydesk.models.base import BaseModel, utcnow


class NotificationType(str, Enum):
    """Types of notifications."""
    PAYROLL = "payroll"
    INFO = "info"
    WARNING = "warning"


class Notification(BaseModel):
    """Notification addressed to an employee."""
    
    __tablename__ = "notifications"
    
    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        SQLEnum(NotificationType),
        default=NotificationType.INFO,
        nullable=False,
        index=True,
    )
    extra_data: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Event payload",
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    
    def mark_as_read(self) -> None:
        """Mark notification as read."""
        if not self.is_read:
            self.is_read = True
            self.read_at = utcnow()
    
    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, type={self.notification_type}, employee={self.employee_id})>"
