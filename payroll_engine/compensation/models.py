from sqlalchemy import (
    Column, String, Boolean, DateTime, Date, ForeignKey, Integer, Numeric, Text, JSON, Uuid,
    UniqueConstraint, event
)
from sqlalchemy.orm import Session, relationship
from sqlalchemy.orm.attributes import get_history
from sqlalchemy.sql import func
import enum
from payroll_engine.core.database import Base, generate_uuid
from payroll_engine.core.exceptions import SnapshotImmutableError


class SnapshotReason(str, enum.Enum):
    JOINING = "JOINING"
    INCREMENT = "INCREMENT"
    REVISION = "REVISION"
    PROMOTION = "PROMOTION"


class RevisionStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CompensationTemplate(Base):
    __tablename__ = "compensation_templates"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_template_tenant_name"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    name = Column(String(150), nullable=False)
    description = Column(Text)
    annual_ctc = Column(Numeric(14, 2), nullable=False)
    monthly_ctc = Column(Numeric(14, 2), nullable=False)
    overrides = Column(JSON, nullable=False, default=dict)  # basic fraction, PF wage cap, custom components
    earnings = Column(JSON, nullable=False, default=list)
    employer_benefits = Column(JSON, nullable=False, default=list)
    employee_deductions = Column(JSON, nullable=False, default=list)
    totals = Column(JSON, nullable=False, default=dict)
    is_locked = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class CompensationSnapshot(Base):
    """Immutable, versioned compensation record for one employee or applicant."""

    __tablename__ = "compensation_snapshots"
    __table_args__ = (
        UniqueConstraint("employee_id", "version", name="uq_snapshot_employee_version"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=True, index=True)
    applicant_id = Column(Uuid, ForeignKey("applicants.id"), nullable=True, index=True)
    template_id = Column(Uuid, ForeignKey("compensation_templates.id"), nullable=True)
    version = Column(Integer, nullable=False)
    reason = Column(String(20), nullable=False, default=SnapshotReason.JOINING.value)
    annual_ctc = Column(Numeric(14, 2), nullable=False)
    monthly_ctc = Column(Numeric(14, 2), nullable=False)
    earnings = Column(JSON, nullable=False)
    employer_benefits = Column(JSON, nullable=False)
    employee_deductions = Column(JSON, nullable=False)
    totals = Column(JSON, nullable=False)
    effective_from = Column(Date, nullable=False)
    locked = Column(Boolean, default=True, nullable=False)
    locked_at = Column(DateTime(timezone=True))
    locked_by = Column(String(100))
    revision_id = Column(Uuid, nullable=True)
    previous_snapshot_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Revision(Base):
    __tablename__ = "compensation_revisions"

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=False, index=True)
    revision_type = Column(String(20), nullable=False)  # INCREMENT, REVISION, PROMOTION
    status = Column(String(20), nullable=False, default=RevisionStatus.DRAFT.value)
    template_id = Column(Uuid, ForeignKey("compensation_templates.id"), nullable=False)
    effective_from = Column(Date, nullable=False)
    reason = Column(Text)

    # Optimistic concurrency: the snapshot this revision was drafted against
    baseline_snapshot_id = Column(Uuid, ForeignKey("compensation_snapshots.id"), nullable=False)
    baseline_version = Column(Integer, nullable=False)

    old_snapshot = Column(JSON, nullable=False)
    new_snapshot = Column(JSON, nullable=False)
    change_summary = Column(JSON, nullable=False)
    promotion_details = Column(JSON)

    created_by = Column(String(100))
    submitted_by = Column(String(100))
    submitted_at = Column(DateTime(timezone=True))
    approved_by = Column(String(100))
    approved_at = Column(DateTime(timezone=True))
    rejected_by = Column(String(100))
    rejected_at = Column(DateTime(timezone=True))
    rejection_reason = Column(Text)
    applied_snapshot_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    baseline_snapshot = relationship("CompensationSnapshot", foreign_keys=[baseline_snapshot_id])


@event.listens_for(Session, "before_flush")
def _protect_snapshots(session, flush_context, instances):
    """Locked snapshots are append-only history: no updates, no deletes."""
    for obj in list(session.deleted):
        if isinstance(obj, CompensationSnapshot):
            raise SnapshotImmutableError(snapshot_id=obj.id, operation="delete")

    for obj in list(session.dirty):
        if not isinstance(obj, CompensationSnapshot) or not session.is_modified(obj):
            continue
        locked_history = get_history(obj, "locked")
        if locked_history.deleted:
            was_locked = bool(locked_history.deleted[0])
        else:
            with session.no_autoflush:
                was_locked = bool(obj.locked)
        if was_locked:
            raise SnapshotImmutableError(snapshot_id=obj.id, operation="update")
