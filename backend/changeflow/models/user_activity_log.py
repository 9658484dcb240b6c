"""UserActivityLog model - request-level record of what a user did."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String

from changeflow.core.database import Base
from changeflow.models.shared import DEFAULT_TENANT_ID, UUIDType, generate_uuid, utc_now


class UserActivityLog(Base):
    __tablename__ = "user_activity_logs"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    tenant_id = Column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        default=DEFAULT_TENANT_ID,
    )
    user_id = Column(String(255), nullable=False, index=True)
    action = Column(String(100), nullable=False, index=True)
    metadata_ = Column("metadata", JSON, nullable=True)

    # Request context
    method = Column(String(10), nullable=True)
    path = Column(String(2048), nullable=True)
    params = Column(JSON, nullable=True)
    session_id = Column(String(255), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
