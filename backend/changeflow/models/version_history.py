from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from changeflow.core.database import Base
from changeflow.models.shared import DEFAULT_TENANT_ID, UUIDType, generate_uuid, utc_now


class VersionHistory(Base):
    """Append-only full snapshot of an entity, one row per applied changeset."""

    __tablename__ = "version_history"
    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "version_number", name="uq_version_history_entity_version"
        ),
    )

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
    version_number = Column(Integer, nullable=False)
    data = Column(JSON, nullable=False)
    change_set_id = Column(
        UUIDType,
        ForeignKey("change_sets.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_by = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
