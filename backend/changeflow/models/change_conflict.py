"""ChangeConflict model - advisory record of a concurrent edit or stale read."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String

from changeflow.core.database import Base
from changeflow.models.shared import DEFAULT_TENANT_ID, UUIDType, generate_uuid, utc_now


class ConflictType(str, Enum):
    CONCURRENT_EDIT = "concurrent_edit"
    STALE_DATA = "stale_data"


class ConflictResolution(str, Enum):
    ACCEPT_CURRENT = "accept_current"
    ACCEPT_INCOMING = "accept_incoming"
    MERGE = "merge"


class ChangeConflict(Base):
    __tablename__ = "change_conflicts"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    tenant_id = Column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        default=DEFAULT_TENANT_ID,
    )
    change_set_id = Column(
        UUIDType,
        ForeignKey("change_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    conflict_type = Column(String(30), nullable=False)
    conflict_data = Column(JSON, nullable=False, default=dict)
    resolution = Column(String(30), nullable=True)
    resolved_by = Column(String(255), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
