from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint, text, func
from core.db import Base

GRANT_SCOPES = ("read_only", "full_history")
GRANT_STATUSES = ("pending", "active", "revoked")

class SharedAccessGrant(Base):
    __tablename__ = "shared_access_grants"

    id = Column(Integer, primary_key=True, index=True)
    canonical_vehicle_id = Column(
        Integer, ForeignKey("canonical_vehicles.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    granting_tenant_id = Column(String(64), nullable=False, index=True)
    grantee_tenant_id = Column(String(64), nullable=False, index=True)
    scope = Column(String, nullable=False, default="read_only")  # 'read_only' | 'full_history'
    status = Column(String, nullable=False, default="pending")  # 'pending' | 'active' | 'revoked'
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    responded_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("granting_tenant_id <> grantee_tenant_id", name="ck_grants_distinct_tenants"),
        CheckConstraint("scope IN ('read_only', 'full_history')", name="ck_grants_scope"),
        CheckConstraint("status IN ('pending', 'active', 'revoked')", name="ck_grants_status"),
        # One live (pending or active) grant per vehicle and grantee
        Index(
            "uq_grants_live_per_grantee",
            "canonical_vehicle_id",
            "grantee_tenant_id",
            unique=True,
            postgresql_where=text("status <> 'revoked'"),
            sqlite_where=text("status <> 'revoked'"),
        ),
    )
