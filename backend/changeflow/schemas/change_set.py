"""Pydantic schemas for ChangeSet, its conflicts and its version rows."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from changeflow.models.change_conflict import ConflictResolution
from changeflow.models.change_set import ChangeLevel


class ChangeSetCreate(BaseModel):
    entity_type: str = Field(..., min_length=1, max_length=50)
    entity_id: str = Field(..., min_length=1, max_length=255)
    changes: dict[str, Any]
    level: ChangeLevel = ChangeLevel.OPTIMISTIC
    metadata: dict[str, Any] | None = None


class ProcessChangeRequest(BaseModel):
    """Materialize a delta, either for an existing changeset or ad hoc."""

    change_set_id: UUID | None = None
    entity_type: str = Field(..., min_length=1, max_length=50)
    entity_id: str = Field(..., min_length=1, max_length=255)
    changes: dict[str, Any]


class ApproveChangeRequest(BaseModel):
    apply_immediately: bool = False


class RejectChangeRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class ResolveConflictRequest(BaseModel):
    resolution: ConflictResolution
    merged_changes: dict[str, Any] | None = None


class ChangeSetResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    entity_type: str
    entity_id: str
    changes: dict[str, Any]
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    level: str
    status: str
    user_id: str
    approved_by: str | None
    approved_at: datetime | None
    rejected_by: str | None
    rejected_at: datetime | None
    rejection_reason: str | None
    applied_at: datetime | None
    conflict_ids: list[str]
    metadata_: dict[str, Any] | None = Field(
        default=None, validation_alias="metadata_", serialization_alias="metadata"
    )

    model_config = {"from_attributes": True, "populate_by_name": True}

    created_at: datetime
    updated_at: datetime | None


class ChangeConflictResponse(BaseModel):
    id: UUID
    change_set_id: UUID
    conflict_type: str
    conflict_data: dict[str, Any]
    resolution: str | None
    resolved_by: str | None
    resolved_at: datetime | None

    model_config = {"from_attributes": True}

    created_at: datetime


class VersionHistoryResponse(BaseModel):
    id: UUID
    entity_type: str
    entity_id: str
    version_number: int
    data: dict[str, Any]
    change_set_id: UUID | None
    created_by: str | None

    model_config = {"from_attributes": True}

    created_at: datetime


class ProcessChangeResponse(BaseModel):
    success: bool
    data: dict[str, Any]
    version_number: int


class ChangeHistoryEntry(BaseModel):
    change: ChangeSetResponse
    diff: dict[str, Any]
    version: VersionHistoryResponse | None


class ChangeHistoryResponse(BaseModel):
    changes: list[ChangeHistoryEntry]
    total: int
