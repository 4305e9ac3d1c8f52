from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Integer, Numeric, Text, JSON, Uuid, UniqueConstraint
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from payroll_engine.core.database import Base, generate_uuid


class PayrollRunStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    CALCULATED = "CALCULATED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PayslipStatus(str, enum.Enum):
    PROCESSED = "Processed"
    FAILED = "Failed"


class SkipReason(str, enum.Enum):
    SALARY_TEMPLATE_MISSING = "SALARY_TEMPLATE_MISSING"
    NO_PAYABLE_ATTENDANCE = "NO_PAYABLE_ATTENDANCE"
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    ATTENDANCE_NOT_FROZEN = "ATTENDANCE_NOT_FROZEN"


# Attendance for a period is frozen once its run reaches one of these
ATTENDANCE_LOCKING_STATUSES = (
    PayrollRunStatus.CALCULATED.value,
    PayrollRunStatus.APPROVED.value,
    PayrollRunStatus.PAID.value,
)


class PayrollRun(Base):
    __tablename__ = "payroll_runs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "month", "year", name="uq_payroll_run_tenant_period"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    month = Column(Integer, nullable=False)  # 1-12
    year = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=PayrollRunStatus.INITIATED.value)

    initiated_by = Column(String(100))
    initiated_at = Column(DateTime(timezone=True))
    calculated_by = Column(String(100))
    calculated_at = Column(DateTime(timezone=True))
    approved_by = Column(String(100))
    approved_at = Column(DateTime(timezone=True))
    paid_by = Column(String(100))
    paid_at = Column(DateTime(timezone=True))
    cancelled_by = Column(String(100))
    cancelled_at = Column(DateTime(timezone=True))

    total_gross = Column(Numeric(16, 2), nullable=False, default=0)
    total_deductions = Column(Numeric(16, 2), nullable=False, default=0)
    total_net_pay = Column(Numeric(16, 2), nullable=False, default=0)
    total_employees = Column(Integer, nullable=False, default=0)
    processed_employees = Column(Integer, nullable=False, default=0)
    failed_employees = Column(Integer, nullable=False, default=0)
    skipped_employees = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)  # [{employee_id, message}]
    skipped = Column(JSON, nullable=False, default=list)  # [{employee_id, reason}]

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    items = relationship("PayslipItem", back_populates="payroll_run", cascade="all, delete-orphan",
                         order_by="PayslipItem.created_at")

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class PayslipItem(Base):
    __tablename__ = "payslip_items"
    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="uq_payslip_run_employee"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    payroll_run_id = Column(Uuid, ForeignKey("payroll_runs.id"), nullable=False, index=True)
    employee_id = Column(Uuid, ForeignKey("employees.id"), nullable=False, index=True)
    compensation_snapshot_id = Column(Uuid, ForeignKey("compensation_snapshots.id"), nullable=True)
    attendance_snapshot_id = Column(Uuid, ForeignKey("attendance_snapshots.id"), nullable=True)
    status = Column(String(20), nullable=False)
    attendance = Column(JSON, nullable=False, default=dict)
    earnings = Column(JSON, nullable=False, default=list)
    deductions = Column(JSON, nullable=False, default=list)

    # NULL for failed items, never zero-filled
    gross_earnings = Column(Numeric(14, 2), nullable=True)
    total_deductions = Column(Numeric(14, 2), nullable=True)
    net_pay = Column(Numeric(14, 2), nullable=True)
    error = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    payroll_run = relationship("PayrollRun", back_populates="items")
