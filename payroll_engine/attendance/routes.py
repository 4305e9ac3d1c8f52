from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List
from datetime import date
from uuid import UUID
from payroll_engine.core.database import get_db
from payroll_engine.core.dependencies import RequestContext, get_request_context
from payroll_engine.attendance.schemas import (
    AttendanceBulkCreate,
    AttendanceRecordResponse,
    AttendanceSnapshotResponse,
    FreezeRequest,
)
from payroll_engine.attendance.service import AttendanceService

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.post("/records", response_model=List[AttendanceRecordResponse], status_code=status.HTTP_201_CREATED)
async def record_attendance(
    attendance_data: AttendanceBulkCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Store daily attendance; an existing record for the same day is replaced."""
    attendance_service = AttendanceService(db)
    return attendance_service.record_attendance(ctx.tenant_id, attendance_data.records)


@router.get("/records", response_model=List[AttendanceRecordResponse])
async def get_records(
    employee_id: UUID = Query(...),
    start_date: date = Query(...),
    end_date: date = Query(...),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    attendance_service = AttendanceService(db)
    return attendance_service.get_records(ctx.tenant_id, employee_id, start_date, end_date)


@router.post("/freeze", response_model=List[AttendanceSnapshotResponse])
async def freeze_attendance(
    freeze_request: FreezeRequest,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Freeze a month's attendance into per-employee snapshots for payroll."""
    attendance_service = AttendanceService(db)
    return attendance_service.freeze_attendance(ctx.tenant_id, freeze_request.period, frozen_by=ctx.user_id)


@router.get("/snapshots", response_model=List[AttendanceSnapshotResponse])
async def list_snapshots(
    period: str = Query(..., pattern=r"^\d{4}-\d{2}$"),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    attendance_service = AttendanceService(db)
    return attendance_service.list_snapshots(ctx.tenant_id, period)
