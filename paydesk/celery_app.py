"""
PayDesk - Celery Configuration

Celery configuration for background payroll work.
Uses Redis as the message broker and result backend.
"""

from celery import Celery
from celery.schedules import crontab

from paydesk.config import settings


celery_app = Celery(
    'paydesk',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['paydesk.tasks.celery_tasks'],
)

celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    
    # Timezone
    timezone='Africa/Lagos',
    enable_utc=True,
    
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=1800,  # bulk runs over large departments
    task_soft_time_limit=1500,
    
    # Worker settings
    worker_prefetch_multiplier=1,
    
    # Result backend settings
    result_expires=86400,  # 24 hours
    
    # Retry settings
    task_default_retry_delay=60,
)

if settings.automated_payroll_enabled:
    celery_app.conf.beat_schedule = {
        'automated-monthly-payroll': {
            'task': 'paydesk.tasks.celery_tasks.automated_payroll_task',
            'schedule': crontab(
                day_of_month=settings.automated_payroll_day,
                hour=settings.automated_payroll_hour,
                minute=0,
            ),
        },
    }
