"""
Workshop Ledger - Background Tasks Package

Celery background tasks.
"""

from app.tasks.scheduled_tasks import (
    run_shadow_audit_scan,
    TaskRunner,
)

__all__ = [
    "run_shadow_audit_scan",
    "TaskRunner",
]
