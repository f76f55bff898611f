from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index, text, func
from sqlalchemy.orm import relationship
from core.db import Base

class UserVehicle(Base):
    """A tenant's private view of a canonical vehicle for one ownership span."""
    __tablename__ = "user_vehicles"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    canonical_vehicle_id = Column(
        Integer, ForeignKey("canonical_vehicles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    nickname = Column(String, nullable=True)
    current_mileage = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    released_at = Column(DateTime(timezone=True), nullable=True)

    canonical_vehicle = relationship("CanonicalVehicle", back_populates="instances")

    # At most one active instance per (tenant, vehicle); released spans are kept
    __table_args__ = (
        Index(
            "uq_user_vehicles_active_instance",
            "tenant_id",
            "canonical_vehicle_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )
