from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from payroll_engine.attendance.models import AttendanceStatus


class AttendanceRecordCreate(BaseModel):
    employee_id: UUID
    date: date
    status: AttendanceStatus
    leave_type: Optional[str] = None
    is_late: bool = False


class AttendanceBulkCreate(BaseModel):
    records: List[AttendanceRecordCreate] = Field(..., min_length=1)


class AttendanceRecordResponse(BaseModel):
    id: UUID
    employee_id: UUID
    date: date
    status: AttendanceStatus
    leave_type: Optional[str]
    is_late: bool

    class Config:
        from_attributes = True


class FreezeRequest(BaseModel):
    period: str = Field(..., pattern=r"^\d{4}-\d{2}$")


class AttendanceSnapshotResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    employee_id: UUID
    period: str
    total_days: int
    present_days: Decimal
    absent_days: Decimal
    paid_leave_days: Decimal
    lop_days: Decimal
    holiday_days: int
    weekly_off_days: int
    half_days: int
    late_marks: int
    frozen_by: Optional[str]
    frozen_at: Optional[datetime]

    class Config:
        from_attributes = True
