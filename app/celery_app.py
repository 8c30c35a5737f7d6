"""
Workshop Ledger - Celery Configuration

Celery configuration for background task processing.
Uses Redis as the message broker and result backend.
"""

from datetime import timedelta

from celery import Celery

from app.config import settings


# Create Celery app
celery_app = Celery(
    'workshop_ledger',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks.celery_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes (warning before hard limit)

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=86400,  # 24 hours
)

# Beat schedule for periodic tasks
if settings.shadow_audit_enabled:
    celery_app.conf.beat_schedule = {
        'shadow-audit-scan': {
            'task': 'app.tasks.celery_tasks.shadow_audit_scan_task',
            'schedule': timedelta(seconds=settings.shadow_audit_poll_seconds),
            # A scan older than one interval is superseded by the next
            'options': {'expires': settings.shadow_audit_poll_seconds},
        },
    }


celery_app.conf.task_routes = {
    'app.tasks.celery_tasks.shadow_audit_*': {'queue': 'shadow_audit'},
    'app.tasks.celery_tasks.*': {'queue': 'default'},
}
