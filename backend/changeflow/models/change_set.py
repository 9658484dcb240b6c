"""ChangeSet model - a proposed or applied mutation of a versioned entity."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text

from changeflow.core.database import Base
from changeflow.models.shared import DEFAULT_TENANT_ID, UUIDType, generate_uuid, utc_now


class ChangeSetStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    APPLIED = "applied"
    REJECTED = "rejected"
    CONFLICTED = "conflicted"
    ROLLED_BACK = "rolled_back"


class ChangeLevel(str, Enum):
    """How far a change has travelled towards being final."""

    OPTIMISTIC = "optimistic"
    PROCESSING = "processing"
    COMMITTED = "committed"


class ChangeSet(Base):
    __tablename__ = "change_sets"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    tenant_id = Column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        default=DEFAULT_TENANT_ID,
    )
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(255), nullable=False, index=True)
    changes = Column(JSON, nullable=False, default=dict)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    level = Column(String(20), nullable=False, default=ChangeLevel.OPTIMISTIC.value)
    status = Column(String(20), nullable=False, default=ChangeSetStatus.PENDING.value, index=True)
    user_id = Column(String(255), nullable=False)
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(255), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    applied_at = Column(DateTime(timezone=True), nullable=True)
    conflict_ids = Column(JSON, nullable=False, default=list)
    metadata_ = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
