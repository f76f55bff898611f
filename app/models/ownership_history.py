from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint, DDL, event
from core.db import Base

EVENT_TYPES = ("acquired", "released", "transferred")


def _utcnow():
    return datetime.now(timezone.utc)


class AppendOnlyViolation(Exception):
    """Raised when code tries to update or delete a ledger entry."""


class OwnershipHistoryEntry(Base):
    """Append-only ownership ledger, one row per ownership transition."""
    __tablename__ = "ownership_history"

    id = Column(Integer, primary_key=True, index=True)
    canonical_vehicle_id = Column(
        Integer, ForeignKey("canonical_vehicles.id", ondelete="RESTRICT"), nullable=False
    )
    tenant_id = Column(String(64), nullable=False, index=True)
    user_vehicle_id = Column(Integer, ForeignKey("user_vehicles.id", ondelete="RESTRICT"), nullable=True)
    event_type = Column(String, nullable=False)  # 'acquired' | 'released' | 'transferred'
    mileage_at_event = Column(Integer, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('acquired', 'released', 'transferred')", name="ck_ownership_event_type"
        ),
        Index("ix_ownership_history_vehicle_order", "canonical_vehicle_id", "occurred_at", "id"),
    )


@event.listens_for(OwnershipHistoryEntry, "before_update")
def _refuse_update(mapper, connection, target):
    raise AppendOnlyViolation(f"ownership_history entry {target.id} is append-only")


@event.listens_for(OwnershipHistoryEntry, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"ownership_history entry {target.id} cannot be deleted")


# Storage-level guard for writers that bypass the ORM
_table = OwnershipHistoryEntry.__table__

for _op in ("UPDATE", "DELETE"):
    event.listen(
        _table,
        "after_create",
        DDL(
            f"CREATE TRIGGER ownership_history_no_{_op.lower()} "
            f"BEFORE {_op} ON ownership_history "
            f"BEGIN SELECT RAISE(ABORT, 'ownership_history is append-only'); END"
        ).execute_if(dialect="sqlite"),
    )

event.listen(
    _table,
    "after_create",
    DDL(
        "CREATE OR REPLACE FUNCTION ownership_history_append_only() RETURNS trigger AS $$ "
        "BEGIN RAISE EXCEPTION 'ownership_history is append-only'; END; "
        "$$ LANGUAGE plpgsql"
    ).execute_if(dialect="postgresql"),
)
event.listen(
    _table,
    "after_create",
    DDL(
        "CREATE TRIGGER ownership_history_no_mutation "
        "BEFORE UPDATE OR DELETE ON ownership_history "
        "FOR EACH ROW EXECUTE FUNCTION ownership_history_append_only()"
    ).execute_if(dialect="postgresql"),
)
