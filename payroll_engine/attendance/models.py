from sqlalchemy import (
    Column, String, Boolean, DateTime, Date, ForeignKey, Integer, Numeric, Enum, Uuid, UniqueConstraint
)
from sqlalchemy.sql import func
import enum
from payroll_engine.core.database import Base, generate_uuid


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    HALF_DAY = "HALF_DAY"
    ABSENT = "ABSENT"
    LEAVE = "LEAVE"
    LOP = "LOP"
    HOLIDAY = "HOLIDAY"
    WEEKLY_OFF = "WEEKLY_OFF"


class AttendanceRecord(Base):
    """Raw daily attendance as recorded by the attendance system."""

    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "date", name="uq_attendance_employee_date"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(Enum(AttendanceStatus), nullable=False)
    leave_type = Column(String(50))  # e.g. casual, sick, lop
    is_late = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class AttendanceSnapshot(Base):
    """Frozen per-period attendance summary consumed by payroll runs."""

    __tablename__ = "attendance_snapshots"
    __table_args__ = (
        UniqueConstraint("employee_id", "period", name="uq_attendance_snapshot_employee_period"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=False, index=True)
    period = Column(String(7), nullable=False, index=True)  # YYYY-MM
    total_days = Column(Integer, nullable=False)
    present_days = Column(Numeric(5, 1), nullable=False, default=0)
    absent_days = Column(Numeric(5, 1), nullable=False, default=0)
    paid_leave_days = Column(Numeric(5, 1), nullable=False, default=0)
    lop_days = Column(Numeric(5, 1), nullable=False, default=0)
    holiday_days = Column(Integer, nullable=False, default=0)
    weekly_off_days = Column(Integer, nullable=False, default=0)
    half_days = Column(Integer, nullable=False, default=0)
    late_marks = Column(Integer, nullable=False, default=0)
    frozen_by = Column(String(100))
    frozen_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
