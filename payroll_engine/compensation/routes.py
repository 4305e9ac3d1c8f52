from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date
from uuid import UUID
from payroll_engine.core.database import get_db
from payroll_engine.core.dependencies import RequestContext, get_request_context
from payroll_engine.core.exceptions import ResourceNotFoundError
from payroll_engine.compensation.adapters import to_legacy_payload
from payroll_engine.compensation.ledger import CompensationLedger
from payroll_engine.compensation.models import RevisionStatus
from payroll_engine.compensation.schemas import (
    AssignmentCreate,
    BreakdownResponse,
    PreviewRequest,
    RevisionCreate,
    RevisionReject,
    RevisionResponse,
    SnapshotResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
    TimelineEntry,
)

router = APIRouter(prefix="/compensation", tags=["compensation"])


@router.post("/preview", response_model=BreakdownResponse)
async def preview_compensation(
    preview_request: PreviewRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Resolve a salary breakdown without saving anything."""
    ledger = CompensationLedger(db)
    breakdown = ledger.preview_compensation(
        ctx.tenant_id,
        annual_ctc=preview_request.annual_ctc,
        template_id=preview_request.template_id,
        overrides=preview_request.overrides
    )
    return breakdown.to_dict()


@router.post("/preview/legacy")
async def preview_compensation_legacy(
    preview_request: PreviewRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Preview rendered in the legacy camel-cased layout."""
    ledger = CompensationLedger(db)
    breakdown = ledger.preview_compensation(
        ctx.tenant_id,
        annual_ctc=preview_request.annual_ctc,
        template_id=preview_request.template_id,
        overrides=preview_request.overrides
    )
    return to_legacy_payload(breakdown)


# Templates

@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    template_data: TemplateCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.create_template(ctx.tenant_id, template_data, created_by=ctx.user_id)


@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(
    active_only: bool = Query(True),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.list_templates(ctx.tenant_id, active_only=active_only, skip=skip, limit=limit)


@router.get("/templates/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.get_template(ctx.tenant_id, template_id)


@router.patch("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: UUID,
    template_data: TemplateUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Update a template. Once assigned, only the description can change."""
    ledger = CompensationLedger(db)
    return ledger.update_template(ctx.tenant_id, template_id, template_data)


# Assignments and history

@router.post("/assignments", response_model=SnapshotResponse, status_code=status.HTTP_201_CREATED)
async def assign_compensation(
    assignment: AssignmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Assign a template to a new employee or applicant as snapshot version 1."""
    ledger = CompensationLedger(db)
    return ledger.assign_compensation(
        ctx.tenant_id,
        template_id=assignment.template_id,
        effective_from=assignment.effective_from,
        employee_id=assignment.employee_id,
        applicant_id=assignment.applicant_id,
        assigned_by=ctx.user_id
    )


@router.get("/employees/{employee_id}/current", response_model=SnapshotResponse)
async def get_current_snapshot(
    employee_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    snapshot = ledger.get_current_snapshot(ctx.tenant_id, employee_id)
    if snapshot is None:
        raise ResourceNotFoundError("CompensationSnapshot", str(employee_id))
    return snapshot


@router.get("/employees/{employee_id}/effective", response_model=SnapshotResponse)
async def get_effective_snapshot(
    employee_id: UUID,
    as_of: date = Query(...),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Snapshot in force on a given date."""
    ledger = CompensationLedger(db)
    snapshot = ledger.get_effective_snapshot(ctx.tenant_id, employee_id, as_of)
    if snapshot is None:
        raise ResourceNotFoundError("CompensationSnapshot", str(employee_id))
    return snapshot


@router.get("/employees/{employee_id}/history", response_model=List[SnapshotResponse])
async def get_history(
    employee_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.get_history(ctx.tenant_id, employee_id)


@router.get("/employees/{employee_id}/timeline", response_model=List[TimelineEntry])
async def get_timeline(
    employee_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.get_timeline(ctx.tenant_id, employee_id)


# Revisions

@router.post("/revisions", response_model=RevisionResponse, status_code=status.HTTP_201_CREATED)
async def create_revision(
    revision_data: RevisionCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.create_revision(ctx.tenant_id, revision_data, created_by=ctx.user_id)


@router.get("/revisions", response_model=List[RevisionResponse])
async def list_revisions(
    employee_id: Optional[UUID] = Query(None),
    revision_status: Optional[RevisionStatus] = Query(None, alias="status"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.list_revisions(
        ctx.tenant_id,
        employee_id=employee_id,
        status=revision_status.value if revision_status else None
    )


@router.get("/revisions/pending", response_model=List[RevisionResponse])
async def list_pending_revisions(
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.list_pending_revisions(ctx.tenant_id)


@router.get("/revisions/{revision_id}", response_model=RevisionResponse)
async def get_revision(
    revision_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.get_revision(ctx.tenant_id, revision_id)


@router.post("/revisions/{revision_id}/submit", response_model=RevisionResponse)
async def submit_revision(
    revision_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.submit_revision(ctx.tenant_id, revision_id, submitted_by=ctx.user_id)


@router.post("/revisions/{revision_id}/approve", response_model=RevisionResponse)
async def approve_revision(
    revision_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Approve a revision and mint the employee's next compensation snapshot."""
    ledger = CompensationLedger(db)
    return ledger.approve_revision(ctx.tenant_id, revision_id, approved_by=ctx.user_id)


@router.post("/revisions/{revision_id}/reject", response_model=RevisionResponse)
async def reject_revision(
    revision_id: UUID,
    rejection: RevisionReject,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    ledger = CompensationLedger(db)
    return ledger.reject_revision(ctx.tenant_id, revision_id, rejection.reason, rejected_by=ctx.user_id)


@router.delete("/revisions/{revision_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_revision(
    revision_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Delete a draft revision."""
    ledger = CompensationLedger(db)
    ledger.delete_revision(ctx.tenant_id, revision_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
