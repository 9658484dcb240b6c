from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from changeflow.models.change_conflict import ChangeConflict
from changeflow.models.shared import generate_uuid


class ChangeConflictRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        tenant_id: UUID,
        change_set_id: UUID,
        conflict_type: str,
        conflict_data: dict[str, Any],
        commit: bool = True,
    ) -> ChangeConflict:
        conflict = ChangeConflict(
            id=generate_uuid(),
            tenant_id=tenant_id,
            change_set_id=change_set_id,
            conflict_type=conflict_type,
            conflict_data=conflict_data,
        )
        self.db.add(conflict)
        if commit:
            self.db.commit()
            self.db.refresh(conflict)
        else:
            self.db.flush()
        return conflict

    def get_by_id(self, conflict_id: UUID, tenant_id: UUID | None = None) -> ChangeConflict | None:
        query = self.db.query(ChangeConflict).filter(ChangeConflict.id == conflict_id)
        if tenant_id is not None:
            query = query.filter(ChangeConflict.tenant_id == tenant_id)
        return query.first()

    def get_by_change_set(self, change_set_id: UUID) -> list[ChangeConflict]:
        return (
            self.db.query(ChangeConflict)
            .filter(ChangeConflict.change_set_id == change_set_id)
            .order_by(ChangeConflict.created_at.asc())
            .all()
        )

    def get_unresolved(self, change_set_id: UUID) -> list[ChangeConflict]:
        return (
            self.db.query(ChangeConflict)
            .filter(
                ChangeConflict.change_set_id == change_set_id,
                ChangeConflict.resolution.is_(None),
            )
            .all()
        )

    def resolve(
        self,
        conflict: ChangeConflict,
        resolution: str,
        resolved_by: str,
    ) -> ChangeConflict:
        conflict.resolution = resolution  # type: ignore[assignment]
        conflict.resolved_by = resolved_by  # type: ignore[assignment]
        conflict.resolved_at = datetime.now(UTC)  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(conflict)
        return conflict
