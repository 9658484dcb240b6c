"""Repository for AuditLog CRUD operations."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from changeflow.core.sorting import apply_order_by
from changeflow.models.audit_log import AuditLog
from changeflow.models.shared import generate_uuid


class AuditLogRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        tenant_id: UUID,
        action: str,
        entity_type: str,
        entity_id: str | None = None,
        user_id: str | None = None,
        changes: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> AuditLog:
        audit_log = AuditLog(
            id=generate_uuid(),
            tenant_id=tenant_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            changes=changes,
            context=context,
        )
        self.db.add(audit_log)
        if commit:
            self.db.commit()
            self.db.refresh(audit_log)
        else:
            self.db.flush()
        return audit_log

    def get_by_id(self, audit_log_id: UUID, tenant_id: UUID | None = None) -> AuditLog | None:
        query = self.db.query(AuditLog).filter(AuditLog.id == audit_log_id)
        if tenant_id is not None:
            query = query.filter(AuditLog.tenant_id == tenant_id)
        return query.first()

    def get_by_entity(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> list[AuditLog]:
        return (
            self.db.query(AuditLog)
            .filter(
                AuditLog.tenant_id == tenant_id,
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == entity_id,
            )
            .order_by(AuditLog.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def _filtered(
        self,
        tenant_id: UUID | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        user_id: str | None = None,
        action: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        search: str | None = None,
    ):  # type: ignore[no-untyped-def]
        query = self.db.query(AuditLog)
        if tenant_id is not None:
            query = query.filter(AuditLog.tenant_id == tenant_id)
        if entity_type is not None:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)
        if user_id is not None:
            query = query.filter(AuditLog.user_id == user_id)
        if action is not None:
            query = query.filter(AuditLog.action == action)
        if start_date is not None:
            query = query.filter(AuditLog.created_at >= start_date)
        if end_date is not None:
            query = query.filter(AuditLog.created_at <= end_date)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    AuditLog.action.ilike(pattern),
                    AuditLog.entity_type.ilike(pattern),
                    AuditLog.entity_id.ilike(pattern),
                )
            )
        return query

    def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        order_by: str | None = None,
        **filters: Any,
    ) -> list[AuditLog]:
        query = apply_order_by(self._filtered(**filters), AuditLog, order_by)
        return query.offset(skip).limit(limit).all()

    def count(self, **filters: Any) -> int:
        return int(self._filtered(**filters).count())

    def action_breakdown(self, **filters: Any) -> dict[str, int]:
        rows = (
            self._filtered(**filters)
            .with_entities(AuditLog.action, func.count(AuditLog.id))
            .group_by(AuditLog.action)
            .all()
        )
        return {action: int(count) for action, count in rows}

    def count_unique_users(self, **filters: Any) -> int:
        return int(
            self._filtered(**filters)
            .filter(AuditLog.user_id.isnot(None))
            .with_entities(func.count(func.distinct(AuditLog.user_id)))
            .scalar()
            or 0
        )

    def count_older_than(self, cutoff: datetime, tenant_id: UUID | None = None) -> int:
        query = self.db.query(AuditLog).filter(AuditLog.created_at < cutoff)
        if tenant_id is not None:
            query = query.filter(AuditLog.tenant_id == tenant_id)
        return int(query.count())

    def delete_older_than(
        self, cutoff: datetime, tenant_id: UUID | None = None, *, commit: bool = True
    ) -> int:
        query = self.db.query(AuditLog).filter(AuditLog.created_at < cutoff)
        if tenant_id is not None:
            query = query.filter(AuditLog.tenant_id == tenant_id)
        count = query.delete(synchronize_session=False)
        if commit:
            self.db.commit()
        return int(count)

    def oldest_created_at(self, tenant_id: UUID | None = None) -> datetime | None:
        query = self.db.query(func.min(AuditLog.created_at))
        if tenant_id is not None:
            query = query.filter(AuditLog.tenant_id == tenant_id)
        return query.scalar()
