"""Pydantic schemas for AuditLog and UserActivityLog."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class AuditLogCreate(BaseModel):
    action: str = Field(..., min_length=1, max_length=100)
    entity_type: str = Field(..., min_length=1, max_length=100)
    entity_id: str | None = Field(default=None, max_length=255)
    changes: dict[str, Any] | None = None
    context: dict[str, Any] | None = None


class AuditLogResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    action: str
    entity_type: str
    entity_id: str | None
    user_id: str | None
    changes: dict[str, Any] | None
    context: dict[str, Any] | None

    model_config = {"from_attributes": True}

    created_at: datetime


class AuditLogPage(BaseModel):
    items: list[AuditLogResponse]
    total: int
    limit: int
    offset: int


class AuditLogSummary(BaseModel):
    total_logs: int
    unique_users: int
    action_breakdown: dict[str, int]


class AuditCleanupRequest(BaseModel):
    retention_days: int = Field(..., ge=1, le=3650)
    dry_run: bool = False


class AuditCleanupResponse(BaseModel):
    audit_logs: int
    user_activity: int
    dry_run: bool
    oldest_remaining: datetime | None = None


class UserActivityResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    user_id: str
    action: str
    metadata_: dict[str, Any] | None = Field(
        default=None, validation_alias="metadata_", serialization_alias="metadata"
    )
    method: str | None
    path: str | None
    params: dict[str, Any] | None
    session_id: str | None
    ip_address: str | None
    user_agent: str | None

    model_config = {"from_attributes": True, "populate_by_name": True}

    created_at: datetime


class UserActivityPage(BaseModel):
    items: list[UserActivityResponse]
    total: int
    limit: int
    offset: int


class DailyActivity(BaseModel):
    date: str
    count: int


class UserActivityCount(BaseModel):
    user_id: str
    count: int


class ActionCount(BaseModel):
    action: str
    count: int


class ActivityStats(BaseModel):
    days: int
    activity_by_day: list[DailyActivity]
    top_users: list[UserActivityCount]
    top_actions: list[ActionCount]


class UserActivityCreate(BaseModel):
    action: str = Field(..., min_length=1, max_length=100)
    metadata: dict[str, Any] | None = None
    session_id: str | None = Field(default=None, max_length=255)


class DailyActivityCount(BaseModel):
    user_id: str
    day: date
    count: int
