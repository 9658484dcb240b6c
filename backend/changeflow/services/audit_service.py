"""Audit trail and user activity recording.

Writes are best-effort: a failure to persist an audit or activity row is
logged and swallowed so it never aborts the business operation that
triggered it. The most recent audit entries per entity are mirrored into
a short-lived cache list for "recent activity" widgets.
"""

import logging
from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from changeflow.core.cache import RedisCache, activity_counter_key, get_cache, recent_audit_key
from changeflow.core.config import settings
from changeflow.models.audit_log import AuditLog
from changeflow.models.shared import ensure_utc
from changeflow.models.user_activity_log import UserActivityLog
from changeflow.repositories.audit_log_repository import AuditLogRepository
from changeflow.repositories.user_activity_repository import UserActivityRepository

logger = logging.getLogger(__name__)


def audit_log_payload(log: AuditLog) -> dict[str, Any]:
    return {
        "id": str(log.id),
        "action": log.action,
        "entity_type": log.entity_type,
        "entity_id": log.entity_id,
        "user_id": log.user_id,
        "changes": log.changes,
        "context": log.context,
        "created_at": ensure_utc(log.created_at).isoformat() if log.created_at else None,
    }


class AuditService:
    """Service for recording and querying the audit trail."""

    def __init__(self, db: Session, cache: RedisCache | None = None):
        self.db = db
        self.repo = AuditLogRepository(db)
        self.activity_repo = UserActivityRepository(db)
        self.cache = cache if cache is not None else get_cache()

    def create_audit_log(
        self,
        *,
        tenant_id: UUID,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        user_id: str | None = None,
        changes: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
        in_transaction: bool = False,
    ) -> AuditLog | None:
        """Append an audit entry, returning None if it could not be written.

        With ``in_transaction`` the row joins the caller's open unit of work
        inside a savepoint and is not mirrored to the cache; the caller
        mirrors it with ``mirror_recent`` once its transaction commits.
        """
        try:
            if in_transaction:
                with self.db.begin_nested():
                    audit_log = self.repo.create(
                        tenant_id=tenant_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        user_id=user_id,
                        changes=changes,
                        context=context,
                        commit=False,
                    )
            else:
                audit_log = self.repo.create(
                    tenant_id=tenant_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    user_id=user_id,
                    changes=changes,
                    context=context,
                )
        except Exception:
            logger.exception(
                "Failed to write audit log %s for %s %s", action, entity_type, entity_id
            )
            if not in_transaction:
                self.db.rollback()
            return None

        if not in_transaction:
            self.mirror_recent(audit_log)
        return audit_log

    def mirror_recent(self, audit_log: AuditLog) -> None:
        """Push an entry onto the capped recent-activity list of its entity."""
        if audit_log.entity_id is None:
            return
        key = recent_audit_key(
            audit_log.tenant_id, str(audit_log.entity_type), str(audit_log.entity_id)
        )
        self.cache.push_capped(
            key,
            audit_log_payload(audit_log),
            limit=settings.AUDIT_RECENT_LIMIT,
            ttl=settings.AUDIT_RECENT_TTL_SECONDS,
        )

    def create_user_activity(
        self,
        *,
        tenant_id: UUID,
        user_id: str,
        action: str,
        metadata: dict[str, Any] | None = None,
        method: str | None = None,
        path: str | None = None,
        params: dict[str, Any] | None = None,
        session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> UserActivityLog | None:
        """Record a user action and bump that user's counter for today."""
        try:
            activity = self.activity_repo.create(
                tenant_id=tenant_id,
                user_id=user_id,
                action=action,
                metadata=metadata,
                method=method,
                path=path,
                params=params,
                session_id=session_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except Exception:
            logger.exception("Failed to write user activity %s for user %s", action, user_id)
            self.db.rollback()
            return None

        today = datetime.now(UTC).date().isoformat()
        self.cache.incr(
            activity_counter_key(tenant_id, user_id, today),
            ttl=settings.ACTIVITY_COUNTER_TTL_SECONDS,
        )
        return activity

    def get_audit_log(self, audit_log_id: UUID, tenant_id: UUID) -> AuditLog | None:
        return self.repo.get_by_id(audit_log_id, tenant_id)

    def get_audit_logs(
        self,
        tenant_id: UUID,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        user_id: str | None = None,
        action: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str | None = None,
    ) -> dict[str, Any]:
        filters: dict[str, Any] = {
            "tenant_id": tenant_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "user_id": user_id,
            "action": action,
            "start_date": start_date,
            "end_date": end_date,
            "search": search,
        }
        items = self.repo.get_all(skip=offset, limit=limit, order_by=order_by, **filters)
        return {
            "items": items,
            "total": self.repo.count(**filters),
            "limit": limit,
            "offset": offset,
        }

    def get_user_activity(
        self,
        tenant_id: UUID,
        *,
        user_id: str | None = None,
        action: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str | None = None,
    ) -> dict[str, Any]:
        filters: dict[str, Any] = {
            "tenant_id": tenant_id,
            "user_id": user_id,
            "action": action,
            "start_date": start_date,
            "end_date": end_date,
        }
        items = self.activity_repo.get_all(skip=offset, limit=limit, order_by=order_by, **filters)
        return {
            "items": items,
            "total": self.activity_repo.count(**filters),
            "limit": limit,
            "offset": offset,
        }

    def get_recent_audit_logs(
        self, tenant_id: UUID, entity_type: str, entity_id: str
    ) -> list[dict[str, Any]]:
        """Latest entries for one entity, served from the cache mirror when warm."""
        key = recent_audit_key(tenant_id, entity_type, entity_id)
        cached = self.cache.list_range(key, 0, settings.AUDIT_RECENT_LIMIT - 1)
        if cached:
            return cached

        rows = self.repo.get_by_entity(
            tenant_id, entity_type, entity_id, limit=settings.AUDIT_RECENT_LIMIT
        )
        items = [audit_log_payload(row) for row in rows]
        # Oldest first so the newest ends up at the head of the list.
        for item in reversed(items):
            self.cache.push_capped(
                key,
                item,
                limit=settings.AUDIT_RECENT_LIMIT,
                ttl=settings.AUDIT_RECENT_TTL_SECONDS,
            )
        return items

    def get_daily_activity_count(
        self, tenant_id: UUID, user_id: str, day: date | None = None
    ) -> int:
        day = day or datetime.now(UTC).date()
        return self.cache.get_int(activity_counter_key(tenant_id, user_id, day.isoformat()))

    def get_audit_summary(self, tenant_id: UUID, **filters: Any) -> dict[str, Any]:
        filters["tenant_id"] = tenant_id
        return {
            "total_logs": self.repo.count(**filters),
            "unique_users": self.repo.count_unique_users(**filters),
            "action_breakdown": self.repo.action_breakdown(**filters),
        }

    def get_activity_stats(self, tenant_id: UUID, days: int = 30) -> dict[str, Any]:
        """Activity per day, top 10 users and top 10 actions over the trailing window."""
        since = datetime.now(UTC) - timedelta(days=days)
        return {
            "days": days,
            "activity_by_day": [
                {"date": day, "count": count}
                for day, count in self.activity_repo.activity_by_day(tenant_id, since)
            ],
            "top_users": [
                {"user_id": user_id, "count": count}
                for user_id, count in self.activity_repo.top_users(tenant_id, since)
            ],
            "top_actions": [
                {"action": action, "count": count}
                for action, count in self.activity_repo.top_actions(tenant_id, since)
            ],
        }

    def cleanup_old_logs(
        self,
        retention_days: int,
        *,
        tenant_id: UUID | None = None,
        dry_run: bool = False,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Delete audit and activity rows older than the retention window.

        A dry run only counts what would be deleted. A real cleanup scoped
        to a tenant leaves an ``audit_cleanup`` entry behind in that tenant.
        """
        if retention_days < 1:
            raise ValueError("retention_days must be at least 1")

        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        if dry_run:
            return {
                "audit_logs": self.repo.count_older_than(cutoff, tenant_id),
                "user_activity": self.activity_repo.count_older_than(cutoff, tenant_id),
                "dry_run": True,
                "oldest_remaining": None,
            }

        audit_count = self.repo.delete_older_than(cutoff, tenant_id, commit=False)
        activity_count = self.activity_repo.delete_older_than(cutoff, tenant_id, commit=False)
        self.db.commit()
        logger.info(
            "Deleted %d audit logs and %d activity logs older than %d days",
            audit_count,
            activity_count,
            retention_days,
        )

        if tenant_id is not None:
            self.create_audit_log(
                tenant_id=tenant_id,
                action="audit_cleanup",
                entity_type="audit_log",
                user_id=user_id,
                context={
                    "deleted_audit_logs": audit_count,
                    "deleted_user_activity": activity_count,
                    "retention_days": retention_days,
                    "cutoff": cutoff.isoformat(),
                },
            )

        return {
            "audit_logs": audit_count,
            "user_activity": activity_count,
            "dry_run": False,
            "oldest_remaining": self.repo.oldest_created_at(tenant_id),
        }
