import logging
from datetime import date, datetime, timezone
from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session
from payroll_engine.attendance.models import AttendanceRecord, AttendanceSnapshot
from payroll_engine.attendance.proration import summarize
from payroll_engine.attendance.schemas import AttendanceRecordCreate
from payroll_engine.core.exceptions import AttendanceFrozenError, ResourceNotFoundError
from payroll_engine.core.logging_config import PayrollOperationLogger
from payroll_engine.core.service_base import BaseService
from payroll_engine.core.validators import format_period, period_bounds, validate_date_range, validate_period
from payroll_engine.employees.models import Employee
from payroll_engine.payrolls.models import ATTENDANCE_LOCKING_STATUSES, PayrollRun

logger = logging.getLogger(__name__)


class AttendanceService(BaseService):
    """Raw attendance ingestion and per-period freezing."""

    def __init__(self, db: Session):
        super().__init__(db)

    def ensure_period_open(self, tenant_id: UUID, month: int, year: int):
        """Reject changes once a run for the period has gone past INITIATED."""
        run = self.db.query(PayrollRun).filter(
            PayrollRun.tenant_id == tenant_id,
            PayrollRun.month == month,
            PayrollRun.year == year,
            PayrollRun.status.in_(ATTENDANCE_LOCKING_STATUSES)
        ).first()
        if run:
            raise AttendanceFrozenError(format_period(month, year), run.status, error_data={"payroll_run_id": str(run.id)})

    def record_attendance(self, tenant_id: UUID, entries: List[AttendanceRecordCreate]) -> List[AttendanceRecord]:
        """Insert or replace daily records; one record per employee per date."""
        open_periods = set()
        employee_ids = {entry.employee_id for entry in entries}
        known = {
            row.id for row in self.db.query(Employee.id).filter(
                Employee.tenant_id == tenant_id,
                Employee.id.in_(employee_ids)
            )
        }

        saved = {}
        for entry in entries:
            if entry.employee_id not in known:
                raise ResourceNotFoundError("Employee", str(entry.employee_id))

            period_key = (entry.date.month, entry.date.year)
            if period_key not in open_periods:
                self.ensure_period_open(tenant_id, *period_key)
                open_periods.add(period_key)

            key = (entry.employee_id, entry.date)
            record = saved.get(key) or self.db.query(AttendanceRecord).filter(
                AttendanceRecord.employee_id == entry.employee_id,
                AttendanceRecord.date == entry.date
            ).first()
            if record is None:
                record = AttendanceRecord(
                    tenant_id=tenant_id,
                    employee_id=entry.employee_id,
                    date=entry.date,
                )
                self.db.add(record)

            record.status = entry.status
            record.leave_type = entry.leave_type
            record.is_late = entry.is_late
            saved[key] = record

        self.safe_commit("Error recording attendance")
        for record in saved.values():
            self.db.refresh(record)

        self.log_service_action("record_attendance", "AttendanceRecord", extra_data={"count": len(saved)})
        return list(saved.values())

    def get_records(self, tenant_id: UUID, employee_id: UUID, start_date: date, end_date: date) -> List[AttendanceRecord]:
        validate_date_range(start_date, end_date)
        return self.db.query(AttendanceRecord).filter(
            AttendanceRecord.tenant_id == tenant_id,
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.date >= start_date,
            AttendanceRecord.date <= end_date
        ).order_by(AttendanceRecord.date).all()

    def freeze_attendance(self, tenant_id: UUID, period: str, frozen_by: Optional[str] = None) -> List[AttendanceSnapshot]:
        """Summarize the period for every active employee and store the snapshots.

        Re-freezing overwrites the existing snapshots while the period's run is
        still open.
        """
        month, year = validate_period(period)
        period = format_period(month, year)
        self.ensure_period_open(tenant_id, month, year)
        period_start, period_end = period_bounds(month, year)

        with PayrollOperationLogger("freeze_attendance", str(tenant_id), period, logger=logger) as op:
            employees = self.db.query(Employee).filter(
                Employee.tenant_id == tenant_id,
                Employee.is_active == True,
                Employee.joining_date <= period_end
            ).order_by(Employee.employee_code).all()

            existing = {
                snapshot.employee_id: snapshot
                for snapshot in self.db.query(AttendanceSnapshot).filter(
                    AttendanceSnapshot.tenant_id == tenant_id,
                    AttendanceSnapshot.period == period
                )
            }

            frozen_at = datetime.now(timezone.utc)
            snapshots = []
            for employee in employees:
                records = self.get_records(tenant_id, employee.id, period_start, period_end)
                summary = summarize(records, period_start, period_end, employee.joining_date)

                snapshot = existing.get(employee.id)
                if snapshot is None:
                    snapshot = AttendanceSnapshot(
                        tenant_id=tenant_id,
                        employee_id=employee.id,
                        period=period,
                    )
                    self.db.add(snapshot)

                snapshot.total_days = summary.total_days
                snapshot.present_days = summary.present_days
                snapshot.absent_days = summary.absent_days
                snapshot.paid_leave_days = summary.paid_leave_days
                snapshot.lop_days = summary.lop_days
                snapshot.holiday_days = summary.holiday_days
                snapshot.weekly_off_days = summary.weekly_off_days
                snapshot.half_days = summary.half_days
                snapshot.late_marks = summary.late_marks
                snapshot.frozen_by = frozen_by
                snapshot.frozen_at = frozen_at
                snapshots.append(snapshot)

            self.safe_commit("Error freezing attendance")
            for snapshot in snapshots:
                self.db.refresh(snapshot)
            op.add_detail("employees", len(snapshots))

        return snapshots

    def get_snapshot(self, tenant_id: UUID, employee_id: UUID, period: str) -> Optional[AttendanceSnapshot]:
        return self.db.query(AttendanceSnapshot).filter(
            AttendanceSnapshot.tenant_id == tenant_id,
            AttendanceSnapshot.employee_id == employee_id,
            AttendanceSnapshot.period == period
        ).first()

    def list_snapshots(self, tenant_id: UUID, period: str) -> List[AttendanceSnapshot]:
        month, year = validate_period(period)
        return self.db.query(AttendanceSnapshot).filter(
            AttendanceSnapshot.tenant_id == tenant_id,
            AttendanceSnapshot.period == format_period(month, year)
        ).all()
