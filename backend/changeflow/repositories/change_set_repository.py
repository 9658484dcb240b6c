"""Repository for ChangeSet persistence and lookups."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from changeflow.core.sorting import apply_order_by
from changeflow.models.change_set import ChangeLevel, ChangeSet, ChangeSetStatus
from changeflow.models.shared import generate_uuid


class ChangeSetRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        tenant_id: UUID,
        entity_type: str,
        entity_id: str,
        changes: dict[str, Any],
        user_id: str,
        level: str = ChangeLevel.OPTIMISTIC.value,
        metadata: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> ChangeSet:
        change_set = ChangeSet(
            id=generate_uuid(),
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes,
            user_id=user_id,
            level=level,
            status=ChangeSetStatus.PENDING.value,
            conflict_ids=[],
            metadata_=metadata,
        )
        self.db.add(change_set)
        self._save(change_set, commit)
        return change_set

    def get_by_id(self, change_set_id: UUID, tenant_id: UUID | None = None) -> ChangeSet | None:
        query = self.db.query(ChangeSet).filter(ChangeSet.id == change_set_id)
        if tenant_id is not None:
            query = query.filter(ChangeSet.tenant_id == tenant_id)
        return query.first()

    def update(self, change_set: ChangeSet, *, commit: bool = True, **fields: Any) -> ChangeSet:
        for key, value in fields.items():
            setattr(change_set, key, value)
        self._save(change_set, commit)
        return change_set

    def add_conflict_ids(
        self, change_set: ChangeSet, conflict_ids: list[UUID], *, commit: bool = True
    ) -> ChangeSet:
        # JSON columns are not mutation-tracked, assign a new list.
        existing = list(change_set.conflict_ids or [])
        change_set.conflict_ids = existing + [str(cid) for cid in conflict_ids]  # type: ignore[assignment]
        self._save(change_set, commit)
        return change_set

    def find_in_flight(
        self,
        *,
        entity_type: str,
        entity_id: str,
        since: datetime,
        exclude_user_id: str,
        exclude_change_set_id: UUID | None = None,
    ) -> list[ChangeSet]:
        """Changesets on the same entity that another user is processing right now."""
        query = self.db.query(ChangeSet).filter(
            ChangeSet.entity_type == entity_type,
            ChangeSet.entity_id == entity_id,
            ChangeSet.status == ChangeSetStatus.PROCESSING.value,
            ChangeSet.created_at >= since,
            ChangeSet.user_id != exclude_user_id,
        )
        if exclude_change_set_id is not None:
            query = query.filter(ChangeSet.id != exclude_change_set_id)
        return query.order_by(ChangeSet.created_at.desc()).all()

    def _history_query(
        self,
        entity_type: str,
        entity_id: str,
        statuses: list[str],
        tenant_id: UUID | None,
    ):  # type: ignore[no-untyped-def]
        query = self.db.query(ChangeSet).filter(
            ChangeSet.entity_type == entity_type,
            ChangeSet.entity_id == entity_id,
            ChangeSet.status.in_(statuses),
        )
        if tenant_id is not None:
            query = query.filter(ChangeSet.tenant_id == tenant_id)
        return query

    def get_history(
        self,
        entity_type: str,
        entity_id: str,
        statuses: list[str],
        tenant_id: UUID | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[ChangeSet]:
        return (
            self._history_query(entity_type, entity_id, statuses, tenant_id)
            .order_by(ChangeSet.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count_history(
        self,
        entity_type: str,
        entity_id: str,
        statuses: list[str],
        tenant_id: UUID | None = None,
    ) -> int:
        return int(self._history_query(entity_type, entity_id, statuses, tenant_id).count())

    def _filtered(
        self,
        tenant_id: UUID,
        status: str | None,
        entity_type: str | None,
        entity_id: str | None,
        user_id: str | None,
    ):  # type: ignore[no-untyped-def]
        query = self.db.query(ChangeSet).filter(ChangeSet.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(ChangeSet.status == status)
        if entity_type is not None:
            query = query.filter(ChangeSet.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(ChangeSet.entity_id == entity_id)
        if user_id is not None:
            query = query.filter(ChangeSet.user_id == user_id)
        return query

    def get_all(
        self,
        tenant_id: UUID,
        skip: int = 0,
        limit: int = 100,
        status: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        user_id: str | None = None,
        order_by: str | None = None,
    ) -> list[ChangeSet]:
        query = self._filtered(tenant_id, status, entity_type, entity_id, user_id)
        query = apply_order_by(query, ChangeSet, order_by)
        return query.offset(skip).limit(limit).all()

    def count(
        self,
        tenant_id: UUID,
        status: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        user_id: str | None = None,
    ) -> int:
        return int(self._filtered(tenant_id, status, entity_type, entity_id, user_id).count())

    def _save(self, change_set: ChangeSet, commit: bool) -> None:
        if commit:
            self.db.commit()
            self.db.refresh(change_set)
        else:
            self.db.flush()
