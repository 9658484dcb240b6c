import logging
from typing import Any

from arq import cron

from changeflow.core.config import settings
from changeflow.core.database import SessionLocal
from changeflow.services.audit_service import AuditService
from changeflow.tasks import redis_settings

logger = logging.getLogger(__name__)


async def cleanup_old_logs_task(ctx: dict[str, Any], retention_days: int | None = None) -> int:
    """Background task: delete audit and activity logs past the retention window.

    Runs daily across all tenants.
    """
    db = SessionLocal()
    try:
        service = AuditService(db)
        result = service.cleanup_old_logs(retention_days or settings.AUDIT_RETENTION_DAYS)
        deleted = int(result["audit_logs"]) + int(result["user_activity"])
        if deleted > 0:
            logger.info("Retention sweep removed %d log rows", deleted)
        return deleted
    finally:
        db.close()


class WorkerSettings:
    functions = [cleanup_old_logs_task]
    cron_jobs = [
        cron(cleanup_old_logs_task, hour=3, minute=0),  # daily at 03:00
    ]
    redis_settings = redis_settings
