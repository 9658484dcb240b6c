"""Repository for UserActivityLog writes, listings and aggregates."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from changeflow.core.sorting import apply_order_by
from changeflow.models.shared import generate_uuid
from changeflow.models.user_activity_log import UserActivityLog


class UserActivityRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
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
    ) -> UserActivityLog:
        activity = UserActivityLog(
            id=generate_uuid(),
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            metadata_=metadata,
            method=method,
            path=path,
            params=params,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(activity)
        self.db.commit()
        self.db.refresh(activity)
        return activity

    def _filtered(
        self,
        tenant_id: UUID | None = None,
        user_id: str | None = None,
        action: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ):  # type: ignore[no-untyped-def]
        query = self.db.query(UserActivityLog)
        if tenant_id is not None:
            query = query.filter(UserActivityLog.tenant_id == tenant_id)
        if user_id is not None:
            query = query.filter(UserActivityLog.user_id == user_id)
        if action is not None:
            query = query.filter(UserActivityLog.action == action)
        if start_date is not None:
            query = query.filter(UserActivityLog.created_at >= start_date)
        if end_date is not None:
            query = query.filter(UserActivityLog.created_at <= end_date)
        return query

    def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        order_by: str | None = None,
        **filters: Any,
    ) -> list[UserActivityLog]:
        query = apply_order_by(self._filtered(**filters), UserActivityLog, order_by)
        return query.offset(skip).limit(limit).all()

    def count(self, **filters: Any) -> int:
        return int(self._filtered(**filters).count())

    def activity_by_day(self, tenant_id: UUID, since: datetime) -> list[tuple[str, int]]:
        day = func.date(UserActivityLog.created_at)
        rows = (
            self.db.query(day, func.count(UserActivityLog.id))
            .filter(
                UserActivityLog.tenant_id == tenant_id,
                UserActivityLog.created_at >= since,
            )
            .group_by(day)
            .order_by(day.asc())
            .all()
        )
        return [(str(date), int(count)) for date, count in rows]

    def top_users(self, tenant_id: UUID, since: datetime, limit: int = 10) -> list[tuple[str, int]]:
        activity_count = func.count(UserActivityLog.id)
        rows = (
            self.db.query(UserActivityLog.user_id, activity_count)
            .filter(
                UserActivityLog.tenant_id == tenant_id,
                UserActivityLog.created_at >= since,
            )
            .group_by(UserActivityLog.user_id)
            .order_by(activity_count.desc(), UserActivityLog.user_id.asc())
            .limit(limit)
            .all()
        )
        return [(user_id, int(count)) for user_id, count in rows]

    def top_actions(
        self, tenant_id: UUID, since: datetime, limit: int = 10
    ) -> list[tuple[str, int]]:
        action_count = func.count(UserActivityLog.id)
        rows = (
            self.db.query(UserActivityLog.action, action_count)
            .filter(
                UserActivityLog.tenant_id == tenant_id,
                UserActivityLog.created_at >= since,
            )
            .group_by(UserActivityLog.action)
            .order_by(action_count.desc(), UserActivityLog.action.asc())
            .limit(limit)
            .all()
        )
        return [(action, int(count)) for action, count in rows]

    def count_older_than(self, cutoff: datetime, tenant_id: UUID | None = None) -> int:
        query = self.db.query(UserActivityLog).filter(UserActivityLog.created_at < cutoff)
        if tenant_id is not None:
            query = query.filter(UserActivityLog.tenant_id == tenant_id)
        return int(query.count())

    def delete_older_than(
        self, cutoff: datetime, tenant_id: UUID | None = None, *, commit: bool = True
    ) -> int:
        query = self.db.query(UserActivityLog).filter(UserActivityLog.created_at < cutoff)
        if tenant_id is not None:
            query = query.filter(UserActivityLog.tenant_id == tenant_id)
        count = query.delete(synchronize_session=False)
        if commit:
            self.db.commit()
        return int(count)
