"""
Workshop Ledger - Background Tasks

Task definitions that can be run either directly against a session
(development, tests) or via Celery (production).
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.shadow_audit import ShadowSeverity

logger = logging.getLogger(__name__)


# ===========================================
# SCHEDULED TASK: SHADOW AUDIT SCAN
# ===========================================

async def run_shadow_audit_scan(db: AsyncSession) -> dict:
    """
    Look for writes that bypassed the record store and record new detections.
    Should run every shadow_audit_poll_seconds.
    """
    from app.services.shadow_audit_service import ShadowAuditService

    service = ShadowAuditService(db)
    stored = await service.scan()
    summary = await service.summary()

    critical = sum(1 for entry in stored if entry.severity == ShadowSeverity.CRITICAL)
    if critical:
        logger.error(f"Shadow audit found {critical} new critical detections")

    return {
        "new_detections": len(stored),
        "new_critical": critical,
        "unresolved": summary["unresolved"],
    }


# ===========================================
# TASK RUNNER (Development)
# ===========================================

class TaskRunner:
    """
    Simple task runner for development.
    In production, replace with Celery.
    """

    def __init__(self, db_session_factory):
        self.db_session_factory = db_session_factory

    async def run_task(self, task_func, *args, **kwargs):
        """Run a single task with a new database session."""
        async with self.db_session_factory() as db:
            try:
                result = await task_func(db, *args, **kwargs)
                logger.info(f"Task {task_func.__name__} completed: {result}")
                return result
            except Exception as e:
                logger.error(f"Task {task_func.__name__} failed: {e}")
                raise

    async def run_scheduled_tasks(self):
        """Run all scheduled tasks once (for development/testing)."""
        results = {}

        tasks = [
            ("run_shadow_audit_scan", run_shadow_audit_scan),
        ]

        for name, task_func in tasks:
            try:
                result = await self.run_task(task_func)
                results[name] = {"status": "success", "result": result}
            except Exception as e:
                results[name] = {"status": "error", "error": str(e)}

        return results
