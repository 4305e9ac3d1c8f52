from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from payroll_engine.core.database import get_db
from payroll_engine.core.dependencies import RequestContext, get_request_context
from payroll_engine.payrolls.models import PayslipStatus
from payroll_engine.payrolls.schemas import (
    PayrollRunCalculate,
    PayrollRunCreate,
    PayrollRunResponse,
    PayslipItemResponse,
)
from payroll_engine.payrolls.service import PayrollRunService

router = APIRouter(prefix="/payroll", tags=["payroll"])


@router.post("/runs", response_model=PayrollRunResponse, status_code=status.HTTP_201_CREATED)
async def initiate_run(
    run_data: PayrollRunCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Initiate (or restart) the payroll run for a month."""
    payroll_service = PayrollRunService(db)
    return payroll_service.initiate_run(ctx.tenant_id, run_data.month, run_data.year, initiated_by=ctx.user_id)


@router.get("/runs", response_model=List[PayrollRunResponse])
async def list_runs(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    payroll_service = PayrollRunService(db)
    return payroll_service.list_runs(ctx.tenant_id, year=year, skip=skip, limit=limit)


@router.get("/runs/{run_id}", response_model=PayrollRunResponse)
async def get_run(
    run_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    payroll_service = PayrollRunService(db)
    return payroll_service.get_run(ctx.tenant_id, run_id)


@router.post("/runs/{run_id}/calculate", response_model=PayrollRunResponse)
async def calculate_run(
    run_id: UUID,
    calculate_data: Optional[PayrollRunCalculate] = None,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Compute payslips for every active employee, or only the ones listed."""
    payroll_service = PayrollRunService(db)
    employee_ids = calculate_data.employee_ids if calculate_data else None
    return payroll_service.calculate_run(ctx.tenant_id, run_id, employee_ids=employee_ids, calculated_by=ctx.user_id)


@router.post("/runs/{run_id}/approve", response_model=PayrollRunResponse)
async def approve_run(
    run_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    payroll_service = PayrollRunService(db)
    return payroll_service.approve_run(ctx.tenant_id, run_id, approved_by=ctx.user_id)


@router.post("/runs/{run_id}/pay", response_model=PayrollRunResponse)
async def mark_run_paid(
    run_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    payroll_service = PayrollRunService(db)
    return payroll_service.mark_run_paid(ctx.tenant_id, run_id, paid_by=ctx.user_id)


@router.post("/runs/{run_id}/cancel", response_model=PayrollRunResponse)
async def cancel_run(
    run_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    payroll_service = PayrollRunService(db)
    return payroll_service.cancel_run(ctx.tenant_id, run_id, cancelled_by=ctx.user_id)


@router.get("/runs/{run_id}/payslips", response_model=List[PayslipItemResponse])
async def get_payslips(
    run_id: UUID,
    payslip_status: Optional[PayslipStatus] = Query(None, alias="status"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    payroll_service = PayrollRunService(db)
    return payroll_service.get_payslips(
        ctx.tenant_id,
        run_id,
        status=payslip_status.value if payslip_status else None
    )


@router.get("/runs/{run_id}/export/csv")
async def export_payslips_csv(
    run_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Export a run's payslips to a CSV file."""
    payroll_service = PayrollRunService(db)
    filename, csv_content = payroll_service.export_payslips_csv(ctx.tenant_id, run_id)

    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )
