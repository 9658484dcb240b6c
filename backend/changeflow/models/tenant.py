from sqlalchemy import Column, DateTime, String

from changeflow.core.database import Base
from changeflow.models.shared import UUIDType, generate_uuid, utc_now


class Tenant(Base):
    """Isolation boundary: every changeset, version and log row belongs to one tenant."""

    __tablename__ = "tenants"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
