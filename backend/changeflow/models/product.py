"""Product model - a catalogue entity whose edits go through changesets."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text

from changeflow.core.database import Base
from changeflow.models.shared import DEFAULT_TENANT_ID, UUIDType, utc_now


class Product(Base):
    __tablename__ = "products"

    id = Column(String(255), primary_key=True)
    tenant_id = Column(
        UUIDType,
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        default=DEFAULT_TENANT_ID,
    )
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    stock = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active")

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
