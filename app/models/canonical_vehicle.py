from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint, func
from sqlalchemy.orm import relationship
from core.db import Base

class CanonicalVehicle(Base):
    """One row per physical vehicle, shared by every tenant. Never deleted; the VIN never changes."""
    __tablename__ = "canonical_vehicles"
    __table_args__ = (
        CheckConstraint("decode_confidence BETWEEN 0 AND 100", name="ck_canonical_vehicles_confidence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    vin = Column(String(17), unique=True, nullable=False)
    year = Column(Integer, nullable=True)
    make = Column(String, nullable=True)
    model = Column(String, nullable=True)
    trim = Column(String, nullable=True)
    body_class = Column(String, nullable=True)
    year_range_start = Column(Integer, nullable=True)  # fallback decodes: both model-year candidates
    year_range_end = Column(Integer, nullable=True)
    decode_confidence = Column(Integer, nullable=False, default=0)
    decode_source = Column(String, nullable=False, default="fallback")  # 'oracle' | 'fallback' | 'manual'
    total_owners = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    instances = relationship("UserVehicle", back_populates="canonical_vehicle", passive_deletes=True)

    @property
    def display_name(self):
        if self.year or self.model:
            return " ".join(str(p) for p in (self.year, self.make, self.model, self.trim) if p) or None
        if self.make and self.year_range_start and self.year_range_end:
            return f"{self.make} ({self.year_range_start}–{self.year_range_end})"
        return self.make
