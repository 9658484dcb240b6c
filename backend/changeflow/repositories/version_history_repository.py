from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from changeflow.models.shared import generate_uuid
from changeflow.models.version_history import VersionHistory


class VersionHistoryRepository:
    def __init__(self, db: Session):
        self.db = db

    def count_for_entity(self, entity_type: str, entity_id: str) -> int:
        return int(
            self.db.query(VersionHistory)
            .filter(
                VersionHistory.entity_type == entity_type,
                VersionHistory.entity_id == entity_id,
            )
            .count()
        )

    def create(
        self,
        *,
        tenant_id: UUID,
        entity_type: str,
        entity_id: str,
        version_number: int,
        data: dict[str, Any],
        change_set_id: UUID | None,
        created_by: str | None,
        commit: bool = True,
    ) -> VersionHistory:
        version = VersionHistory(
            id=generate_uuid(),
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            version_number=version_number,
            data=data,
            change_set_id=change_set_id,
            created_by=created_by,
        )
        self.db.add(version)
        if commit:
            self.db.commit()
            self.db.refresh(version)
        else:
            self.db.flush()
        return version

    def get_by_change_set_ids(self, change_set_ids: list[UUID]) -> dict[UUID, VersionHistory]:
        if not change_set_ids:
            return {}
        rows = (
            self.db.query(VersionHistory)
            .filter(VersionHistory.change_set_id.in_(change_set_ids))
            .all()
        )
        return {row.change_set_id: row for row in rows}  # type: ignore[misc]

    def get_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        tenant_id: UUID | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[VersionHistory]:
        query = self.db.query(VersionHistory).filter(
            VersionHistory.entity_type == entity_type,
            VersionHistory.entity_id == entity_id,
        )
        if tenant_id is not None:
            query = query.filter(VersionHistory.tenant_id == tenant_id)
        return (
            query.order_by(VersionHistory.version_number.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def get_version(
        self,
        entity_type: str,
        entity_id: str,
        version_number: int,
        tenant_id: UUID | None = None,
    ) -> VersionHistory | None:
        query = self.db.query(VersionHistory).filter(
            VersionHistory.entity_type == entity_type,
            VersionHistory.entity_id == entity_id,
            VersionHistory.version_number == version_number,
        )
        if tenant_id is not None:
            query = query.filter(VersionHistory.tenant_id == tenant_id)
        return query.first()
