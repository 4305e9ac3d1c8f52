"""
Snapshot & revision ledger.

Compensation history is append-only: assignments mint version 1, approved
revisions mint the next version, and nothing here ever updates or deletes a
snapshot. The employee's ``current_snapshot_id`` is the only pointer that
moves.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID
from sqlalchemy.orm import Session

from payroll_engine.compensation.models import (
    CompensationSnapshot,
    CompensationTemplate,
    Revision,
    RevisionStatus,
    SnapshotReason,
)
from payroll_engine.compensation.resolver import Breakdown, CompensationResolver
from payroll_engine.compensation.schemas import (
    CompensationOverrides,
    RevisionCreate,
    RevisionType,
    TemplateCreate,
    TemplateUpdate,
)
from payroll_engine.core.database import generate_uuid
from payroll_engine.core.exceptions import (
    CompensationAlreadyAssignedError,
    NoBaselineError,
    StaleRevisionError,
    StatusTransitionError,
    TemplateLockedError,
    ValidationError,
)
from payroll_engine.core.logging_config import PayrollOperationLogger
from payroll_engine.core.money import percentage_change, round_currency, to_decimal
from payroll_engine.core.redis_service import RedisCacheService, get_cache_service
from payroll_engine.core.service_base import BaseService
from payroll_engine.employees.models import Applicant, Employee

logger = logging.getLogger(__name__)

OPEN_REVISION_STATUSES = (RevisionStatus.DRAFT.value, RevisionStatus.PENDING_APPROVAL.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def snapshot_breakdown(snapshot: CompensationSnapshot) -> Breakdown:
    """Rebuild the value object stored in a snapshot row."""
    return Breakdown.from_dict({
        "annual_ctc": snapshot.annual_ctc,
        "monthly_ctc": snapshot.monthly_ctc,
        "earnings": snapshot.earnings,
        "employer_benefits": snapshot.employer_benefits,
        "employee_deductions": snapshot.employee_deductions,
        **snapshot.totals,
    })


def _snapshot_copy(snapshot: CompensationSnapshot) -> Dict[str, Any]:
    return {
        "snapshot_id": str(snapshot.id),
        "version": snapshot.version,
        "effective_from": snapshot.effective_from.isoformat(),
        "template_id": str(snapshot.template_id) if snapshot.template_id else None,
        **snapshot_breakdown(snapshot).to_dict(),
    }


class CompensationLedger(BaseService):
    """Templates, assignments, revisions and the snapshot history they produce."""

    def __init__(self, db: Session, resolver: Optional[CompensationResolver] = None,
                 cache: Optional[RedisCacheService] = None):
        super().__init__(db)
        self.resolver = resolver or CompensationResolver()
        self.cache = cache if cache is not None else get_cache_service()

    # Preview

    def preview_compensation(
        self,
        tenant_id: UUID,
        annual_ctc: Any = None,
        template_id: Optional[UUID] = None,
        overrides: Optional[CompensationOverrides] = None
    ) -> Breakdown:
        """Resolve a breakdown by CTC or from a stored template, without persisting it."""
        if template_id is not None:
            template = self.get_template(tenant_id, template_id)
            annual_ctc = template.annual_ctc
            if overrides is None:
                overrides = CompensationOverrides.model_validate(template.overrides or {})
        elif annual_ctc is None:
            raise ValidationError(detail="annual_ctc or template_id is required", field="annual_ctc")

        cache_key = self.cache.preview_key({
            "annual_ctc": str(annual_ctc),
            "overrides": overrides.model_dump(mode="json") if overrides else None,
            "defaults": self.resolver.defaults.model_dump(mode="json"),
        })
        cached = self.cache.get_preview(cache_key)
        if cached is not None:
            return Breakdown.from_dict(cached)

        breakdown = self.resolver.resolve(annual_ctc, overrides)
        self.cache.cache_preview(cache_key, breakdown.to_dict())
        return breakdown

    # Templates

    def _apply_breakdown(self, template: CompensationTemplate, breakdown: Breakdown):
        template.annual_ctc = breakdown.annual_ctc
        template.monthly_ctc = breakdown.monthly_ctc
        template.earnings = [c.to_dict() for c in breakdown.earnings]
        template.employer_benefits = [c.to_dict() for c in breakdown.employer_benefits]
        template.employee_deductions = [c.to_dict() for c in breakdown.employee_deductions]
        template.totals = breakdown.totals_dict()

    def resolve_template(self, template: CompensationTemplate) -> Breakdown:
        overrides = CompensationOverrides.model_validate(template.overrides or {})
        return self.resolver.resolve(template.annual_ctc, overrides)

    def create_template(self, tenant_id: UUID, template_data: TemplateCreate, created_by: Optional[str] = None) -> CompensationTemplate:
        self.check_unique_constraint(
            CompensationTemplate,
            {"tenant_id": tenant_id, "name": template_data.name},
            resource_type="CompensationTemplate"
        )
        overrides = template_data.overrides or CompensationOverrides()
        breakdown = self.resolver.resolve(template_data.annual_ctc, overrides)

        template = CompensationTemplate(
            tenant_id=tenant_id,
            name=template_data.name,
            description=template_data.description,
            overrides=overrides.model_dump(mode="json", exclude_none=True),
            created_by=created_by,
        )
        self._apply_breakdown(template, breakdown)

        self.db.add(template)
        self.safe_commit("Error creating compensation template")
        self.db.refresh(template)

        self.log_service_action("create_template", "CompensationTemplate", template.id,
                                {"annual_ctc": str(template.annual_ctc)})
        return template

    def update_template(self, tenant_id: UUID, template_id: UUID, template_data: TemplateUpdate) -> CompensationTemplate:
        """Update a template; locked templates accept description changes only."""
        template = self.get_template(tenant_id, template_id)
        changes = template_data.model_dump(exclude_unset=True)

        if template.is_locked:
            blocked = sorted(field for field in changes if field != "description")
            if blocked:
                raise TemplateLockedError(template.id, blocked)

        if "name" in changes and changes["name"] != template.name:
            self.check_unique_constraint(
                CompensationTemplate,
                {"tenant_id": tenant_id, "name": changes["name"]},
                resource_type="CompensationTemplate",
                exclude_id=template.id
            )
            template.name = changes["name"]
        if "description" in changes:
            template.description = changes["description"]
        if "is_active" in changes:
            template.is_active = changes["is_active"]

        if "annual_ctc" in changes or "overrides" in changes:
            annual_ctc = template_data.annual_ctc if template_data.annual_ctc is not None else template.annual_ctc
            overrides = template_data.overrides
            if overrides is None:
                overrides = CompensationOverrides.model_validate(template.overrides or {})
            breakdown = self.resolver.resolve(annual_ctc, overrides)
            template.overrides = overrides.model_dump(mode="json", exclude_none=True)
            self._apply_breakdown(template, breakdown)

        self.safe_commit("Error updating compensation template")
        self.db.refresh(template)
        return template

    def get_template(self, tenant_id: UUID, template_id: UUID) -> CompensationTemplate:
        return self.get_or_404(CompensationTemplate, template_id, "CompensationTemplate", tenant_id=tenant_id)

    def list_templates(self, tenant_id: UUID, active_only: bool = True, skip: int = 0, limit: int = 100) -> List[CompensationTemplate]:
        query = self.db.query(CompensationTemplate).filter(CompensationTemplate.tenant_id == tenant_id)
        if active_only:
            query = query.filter(CompensationTemplate.is_active == True)
        return self.paginate_query(query.order_by(CompensationTemplate.name), skip, limit).all()

    def _active_template(self, tenant_id: UUID, template_id: UUID) -> CompensationTemplate:
        template = self.get_template(tenant_id, template_id)
        if not template.is_active:
            raise ValidationError(detail="Compensation template is inactive", field="template_id", value=template_id)
        return template

    # Snapshots

    def _new_snapshot(
        self,
        tenant_id: UUID,
        breakdown: Breakdown,
        version: int,
        reason: SnapshotReason,
        effective_from: date,
        template_id: Optional[UUID],
        locked_by: Optional[str],
        employee_id: Optional[UUID] = None,
        applicant_id: Optional[UUID] = None,
        revision_id: Optional[UUID] = None,
        previous_snapshot_id: Optional[UUID] = None
    ) -> CompensationSnapshot:
        snapshot = CompensationSnapshot(
            id=generate_uuid(),
            tenant_id=tenant_id,
            employee_id=employee_id,
            applicant_id=applicant_id,
            template_id=template_id,
            version=version,
            reason=reason.value,
            annual_ctc=breakdown.annual_ctc,
            monthly_ctc=breakdown.monthly_ctc,
            earnings=[c.to_dict() for c in breakdown.earnings],
            employer_benefits=[c.to_dict() for c in breakdown.employer_benefits],
            employee_deductions=[c.to_dict() for c in breakdown.employee_deductions],
            totals=breakdown.totals_dict(),
            effective_from=effective_from,
            locked=True,
            locked_at=_now(),
            locked_by=locked_by,
            revision_id=revision_id,
            previous_snapshot_id=previous_snapshot_id,
        )
        self.db.add(snapshot)
        return snapshot

    def assign_compensation(
        self,
        tenant_id: UUID,
        template_id: UUID,
        effective_from: date,
        employee_id: Optional[UUID] = None,
        applicant_id: Optional[UUID] = None,
        assigned_by: Optional[str] = None
    ) -> CompensationSnapshot:
        """First assignment for an employee or applicant: locked snapshot version 1."""
        if (employee_id is None) == (applicant_id is None):
            raise ValidationError(detail="Provide exactly one of employee_id or applicant_id")

        if employee_id is not None:
            holder = self.get_or_404(Employee, employee_id, "Employee", tenant_id=tenant_id)
            holder_type = "Employee"
            existing = self.db.query(CompensationSnapshot.id).filter(
                CompensationSnapshot.employee_id == holder.id
            ).first()
        else:
            holder = self.get_or_404(Applicant, applicant_id, "Applicant", tenant_id=tenant_id)
            holder_type = "Applicant"
            existing = self.db.query(CompensationSnapshot.id).filter(
                CompensationSnapshot.applicant_id == holder.id
            ).first()

        if holder.current_snapshot_id is not None or existing is not None:
            raise CompensationAlreadyAssignedError(holder_type, holder.id)

        template = self._active_template(tenant_id, template_id)
        breakdown = self.resolve_template(template)

        snapshot = self._new_snapshot(
            tenant_id,
            breakdown,
            version=1,
            reason=SnapshotReason.JOINING,
            effective_from=effective_from,
            template_id=template.id,
            locked_by=assigned_by,
            employee_id=employee_id,
            applicant_id=applicant_id,
        )
        holder.current_snapshot_id = snapshot.id
        template.is_locked = True

        self.safe_commit("Error assigning compensation")
        self.db.refresh(snapshot)

        self.log_service_action("assign_compensation", "CompensationSnapshot", snapshot.id, {
            "holder_type": holder_type,
            "holder_id": str(holder.id),
            "annual_ctc": str(snapshot.annual_ctc),
        })
        return snapshot

    def get_current_snapshot(self, tenant_id: UUID, employee_id: UUID) -> Optional[CompensationSnapshot]:
        employee = self.get_or_404(Employee, employee_id, "Employee", tenant_id=tenant_id)
        if employee.current_snapshot_id is None:
            return None
        return self.db.query(CompensationSnapshot).filter(
            CompensationSnapshot.id == employee.current_snapshot_id
        ).first()

    def get_effective_snapshot(self, tenant_id: UUID, employee_id: UUID, as_of: date) -> Optional[CompensationSnapshot]:
        """Latest locked snapshot already in effect on ``as_of``."""
        return self.db.query(CompensationSnapshot).filter(
            CompensationSnapshot.tenant_id == tenant_id,
            CompensationSnapshot.employee_id == employee_id,
            CompensationSnapshot.locked == True,
            CompensationSnapshot.effective_from <= as_of
        ).order_by(
            CompensationSnapshot.effective_from.desc(),
            CompensationSnapshot.version.desc()
        ).first()

    def get_history(self, tenant_id: UUID, employee_id: UUID) -> List[CompensationSnapshot]:
        self.get_or_404(Employee, employee_id, "Employee", tenant_id=tenant_id)
        return self.db.query(CompensationSnapshot).filter(
            CompensationSnapshot.tenant_id == tenant_id,
            CompensationSnapshot.employee_id == employee_id
        ).order_by(CompensationSnapshot.version).all()

    # Revisions

    def create_revision(self, tenant_id: UUID, revision_data: RevisionCreate, created_by: Optional[str] = None) -> Revision:
        """Draft a change against the employee's current snapshot."""
        employee = self.get_or_404(Employee, revision_data.employee_id, "Employee", tenant_id=tenant_id)
        baseline = self.get_current_snapshot(tenant_id, employee.id)
        if baseline is None:
            raise NoBaselineError(employee.id)

        if revision_data.revision_type == RevisionType.PROMOTION and revision_data.promotion_details is None:
            raise ValidationError(detail="Promotion revisions require promotion details", field="promotion_details")

        if revision_data.effective_from <= baseline.effective_from:
            raise ValidationError(
                detail="Revision must take effect after the current compensation",
                field="effective_from",
                value=revision_data.effective_from.isoformat(),
                error_data={"current_effective_from": baseline.effective_from.isoformat()}
            )

        template = self._active_template(tenant_id, revision_data.template_id)
        breakdown = self.resolve_template(template)

        old_ctc = to_decimal(baseline.annual_ctc)
        new_ctc = breakdown.annual_ctc
        change_summary = {
            "old_ctc": str(round_currency(old_ctc)),
            "new_ctc": str(new_ctc),
            "absolute_change": str(round_currency(new_ctc - old_ctc)),
            "percentage_change": str(percentage_change(old_ctc, new_ctc)),
            "reason": revision_data.reason,
        }

        promotion_details = None
        if revision_data.promotion_details is not None:
            promotion_details = {
                "old_designation": employee.designation,
                "old_department": employee.department,
                "old_grade": employee.grade,
                **revision_data.promotion_details.model_dump(),
            }

        revision = Revision(
            tenant_id=tenant_id,
            employee_id=employee.id,
            revision_type=revision_data.revision_type.value,
            status=RevisionStatus.DRAFT.value,
            template_id=template.id,
            effective_from=revision_data.effective_from,
            reason=revision_data.reason,
            baseline_snapshot_id=baseline.id,
            baseline_version=baseline.version,
            old_snapshot=_snapshot_copy(baseline),
            new_snapshot={
                "effective_from": revision_data.effective_from.isoformat(),
                "template_id": str(template.id),
                **breakdown.to_dict(),
            },
            change_summary=change_summary,
            promotion_details=promotion_details,
            created_by=created_by,
        )
        self.db.add(revision)
        self.safe_commit("Error creating revision")
        self.db.refresh(revision)

        self.log_service_action("create_revision", "Revision", revision.id, {
            "employee_id": str(employee.id),
            "revision_type": revision.revision_type,
            "percentage_change": change_summary["percentage_change"],
        })
        return revision

    def get_revision(self, tenant_id: UUID, revision_id: UUID) -> Revision:
        return self.get_or_404(Revision, revision_id, "Revision", tenant_id=tenant_id)

    def list_revisions(self, tenant_id: UUID, employee_id: Optional[UUID] = None, status: Optional[str] = None) -> List[Revision]:
        query = self.db.query(Revision).filter(Revision.tenant_id == tenant_id)
        if employee_id is not None:
            query = query.filter(Revision.employee_id == employee_id)
        if status is not None:
            query = query.filter(Revision.status == status)
        return query.order_by(Revision.effective_from.desc()).all()

    def list_pending_revisions(self, tenant_id: UUID) -> List[Revision]:
        return self.list_revisions(tenant_id, status=RevisionStatus.PENDING_APPROVAL.value)

    def submit_revision(self, tenant_id: UUID, revision_id: UUID, submitted_by: Optional[str] = None) -> Revision:
        revision = self.get_revision(tenant_id, revision_id)
        if revision.status != RevisionStatus.DRAFT.value:
            raise StatusTransitionError("Revision", revision.status, "submit")

        revision.status = RevisionStatus.PENDING_APPROVAL.value
        revision.submitted_by = submitted_by
        revision.submitted_at = _now()
        self.safe_commit("Error submitting revision")
        self.db.refresh(revision)
        return revision

    def approve_revision(self, tenant_id: UUID, revision_id: UUID, approved_by: Optional[str] = None) -> Revision:
        """Mint the next snapshot version and move the employee's pointer in one commit."""
        revision = self.get_revision(tenant_id, revision_id)
        if revision.status not in OPEN_REVISION_STATUSES:
            raise StatusTransitionError("Revision", revision.status, "approve")

        with PayrollOperationLogger("approve_revision", str(tenant_id), str(revision.id), logger=logger) as op:
            employee = self.db.query(Employee).filter(
                Employee.id == revision.employee_id,
                Employee.tenant_id == tenant_id
            ).with_for_update().first()

            current = None
            if employee.current_snapshot_id is not None:
                current = self.db.query(CompensationSnapshot).filter(
                    CompensationSnapshot.id == employee.current_snapshot_id
                ).first()
            current_version = current.version if current else 0
            if current is None or current_version != revision.baseline_version:
                raise StaleRevisionError(revision.id, revision.baseline_version, current_version)

            breakdown = Breakdown.from_dict(revision.new_snapshot)
            snapshot = self._new_snapshot(
                tenant_id,
                breakdown,
                version=current.version + 1,
                reason=SnapshotReason(revision.revision_type),
                effective_from=revision.effective_from,
                template_id=revision.template_id,
                locked_by=approved_by,
                employee_id=employee.id,
                revision_id=revision.id,
                previous_snapshot_id=current.id,
            )

            employee.current_snapshot_id = snapshot.id
            if revision.revision_type == RevisionType.INCREMENT.value:
                employee.last_increment_date = revision.effective_from
            elif revision.revision_type == RevisionType.REVISION.value:
                employee.last_revision_date = revision.effective_from
            else:
                employee.last_promotion_date = revision.effective_from
                details = revision.promotion_details or {}
                if details.get("new_designation"):
                    employee.designation = details["new_designation"]
                if details.get("new_department"):
                    employee.department = details["new_department"]
                if details.get("new_grade"):
                    employee.grade = details["new_grade"]

            template = self.db.query(CompensationTemplate).filter(
                CompensationTemplate.id == revision.template_id
            ).first()
            if template is not None:
                template.is_locked = True

            revision.status = RevisionStatus.APPROVED.value
            revision.approved_by = approved_by
            revision.approved_at = _now()
            revision.applied_snapshot_id = snapshot.id

            self.safe_commit("Error approving revision")
            op.add_detail("version", snapshot.version)

        self.db.refresh(revision)
        return revision

    def reject_revision(self, tenant_id: UUID, revision_id: UUID, reason: str, rejected_by: Optional[str] = None) -> Revision:
        revision = self.get_revision(tenant_id, revision_id)
        if revision.status not in OPEN_REVISION_STATUSES:
            raise StatusTransitionError("Revision", revision.status, "reject")
        if not reason or not reason.strip():
            raise ValidationError(detail="A rejection reason is required", field="reason")

        revision.status = RevisionStatus.REJECTED.value
        revision.rejected_by = rejected_by
        revision.rejected_at = _now()
        revision.rejection_reason = reason.strip()
        self.safe_commit("Error rejecting revision")
        self.db.refresh(revision)

        self.log_service_action("reject_revision", "Revision", revision.id)
        return revision

    def delete_revision(self, tenant_id: UUID, revision_id: UUID):
        revision = self.get_revision(tenant_id, revision_id)
        if revision.status != RevisionStatus.DRAFT.value:
            raise StatusTransitionError("Revision", revision.status, "delete")

        self.db.delete(revision)
        self.safe_commit("Error deleting revision")
        self.log_service_action("delete_revision", "Revision", revision_id)

    def get_timeline(self, tenant_id: UUID, employee_id: UUID) -> List[Dict[str, Any]]:
        """Joining snapshot plus every revision, newest effective date first."""
        self.get_or_404(Employee, employee_id, "Employee", tenant_id=tenant_id)
        entries = []

        joining = self.db.query(CompensationSnapshot).filter(
            CompensationSnapshot.tenant_id == tenant_id,
            CompensationSnapshot.employee_id == employee_id,
            CompensationSnapshot.reason == SnapshotReason.JOINING.value
        ).order_by(CompensationSnapshot.version).first()
        if joining is not None:
            entries.append({
                "entry_type": SnapshotReason.JOINING.value,
                "effective_from": joining.effective_from,
                "status": RevisionStatus.APPROVED.value,
                "annual_ctc": round_currency(joining.annual_ctc),
                "snapshot_id": joining.id,
                "version": joining.version,
                "_order": (joining.effective_from, 0),
            })

        for index, revision in enumerate(self.list_revisions(tenant_id, employee_id=employee_id), start=1):
            summary = revision.change_summary or {}
            entries.append({
                "entry_type": revision.revision_type,
                "effective_from": revision.effective_from,
                "status": revision.status,
                "annual_ctc": round_currency(summary.get("new_ctc", "0")),
                "previous_ctc": round_currency(summary.get("old_ctc", "0")),
                "percentage_change": round_currency(summary.get("percentage_change", "0")),
                "snapshot_id": revision.applied_snapshot_id,
                "revision_id": revision.id,
                "reason": revision.reason,
                "_order": (revision.effective_from, revision.baseline_version + 1),
            })

        entries.sort(key=lambda entry: entry["_order"], reverse=True)
        for entry in entries:
            entry.pop("_order")
        return entries
