"""
Workshop Ledger - Celery Tasks

Background tasks for scheduled operations.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from app.database import async_session_factory
from app.tasks.scheduled_tasks import run_shadow_audit_scan

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ===========================================
# SHADOW AUDIT TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.shadow_audit_scan_task')
def shadow_audit_scan_task() -> Dict[str, Any]:
    """Scan for writes that bypassed the record store."""
    return run_async(_shadow_audit_scan())


async def _shadow_audit_scan() -> Dict[str, Any]:
    async with async_session_factory() as db:
        return await run_shadow_audit_scan(db)
