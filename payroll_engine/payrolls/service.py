import csv
import io
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID
from sqlalchemy.orm import Session

from payroll_engine.attendance.models import AttendanceSnapshot
from payroll_engine.attendance.proration import AttendanceSummary
from payroll_engine.compensation.ledger import CompensationLedger, snapshot_breakdown
from payroll_engine.core.config import CompensationDefaults, settings
from payroll_engine.core.exceptions import StatusTransitionError
from payroll_engine.core.logging_config import PayrollOperationLogger
from payroll_engine.core.money import ZERO, round_currency, sum_currency
from payroll_engine.core.service_base import BaseService
from payroll_engine.core.validators import format_period, period_bounds, validate_month_year
from payroll_engine.employees.models import Employee
from payroll_engine.payrolls.calculator import compute_payslip
from payroll_engine.payrolls.models import (
    PayrollRun,
    PayrollRunStatus,
    PayslipItem,
    PayslipStatus,
    SkipReason,
)

logger = logging.getLogger(__name__)

RESTARTABLE_STATUSES = (
    PayrollRunStatus.INITIATED.value,
    PayrollRunStatus.CALCULATED.value,
    PayrollRunStatus.CANCELLED.value,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PayrollRunService(BaseService):
    """Monthly payroll runs: INITIATED -> CALCULATED -> APPROVED -> PAID."""

    def __init__(self, db: Session, defaults: Optional[CompensationDefaults] = None,
                 max_workers: Optional[int] = None):
        super().__init__(db)
        self.defaults = defaults or settings.compensation
        self.max_workers = max_workers or settings.payroll_max_workers
        self.ledger = CompensationLedger(db)

    def _reset(self, run: PayrollRun):
        run.items.clear()
        run.total_gross = ZERO
        run.total_deductions = ZERO
        run.total_net_pay = ZERO
        run.total_employees = 0
        run.processed_employees = 0
        run.failed_employees = 0
        run.skipped_employees = 0
        run.errors = []
        run.skipped = []

    def initiate_run(self, tenant_id: UUID, month: int, year: int, initiated_by: Optional[str] = None) -> PayrollRun:
        """Create the period's run, or restart an existing one that has not been approved."""
        validate_month_year(month, year)

        run = self.db.query(PayrollRun).filter(
            PayrollRun.tenant_id == tenant_id,
            PayrollRun.month == month,
            PayrollRun.year == year
        ).first()

        if run is None:
            run = PayrollRun(tenant_id=tenant_id, month=month, year=year, errors=[], skipped=[])
            self.db.add(run)
        elif run.status not in RESTARTABLE_STATUSES:
            raise StatusTransitionError("PayrollRun", run.status, "initiate")
        else:
            logger.info(f"Restarting payroll run {run.id} for {run.period} from {run.status}")
            self._reset(run)
            run.calculated_by = None
            run.calculated_at = None
            run.cancelled_by = None
            run.cancelled_at = None

        run.status = PayrollRunStatus.INITIATED.value
        run.initiated_by = initiated_by
        run.initiated_at = _now()

        self.safe_commit("Error initiating payroll run")
        self.db.refresh(run)

        self.log_service_action("initiate_run", "PayrollRun", run.id, {"period": run.period})
        return run

    def get_run(self, tenant_id: UUID, run_id: UUID) -> PayrollRun:
        return self.get_or_404(PayrollRun, run_id, "PayrollRun", tenant_id=tenant_id)

    def list_runs(self, tenant_id: UUID, year: Optional[int] = None, skip: int = 0, limit: int = 100) -> List[PayrollRun]:
        query = self.db.query(PayrollRun).filter(PayrollRun.tenant_id == tenant_id)
        if year is not None:
            query = query.filter(PayrollRun.year == year)
        query = query.order_by(PayrollRun.year.desc(), PayrollRun.month.desc())
        return self.paginate_query(query, skip, limit).all()

    def _select_employees(self, tenant_id: UUID, employee_ids: Optional[List[UUID]]) -> Tuple[List[Employee], List[UUID]]:
        """Employees to process in order, plus requested ids that do not exist."""
        if employee_ids is None:
            employees = self.db.query(Employee).filter(
                Employee.tenant_id == tenant_id,
                Employee.is_active == True
            ).order_by(Employee.employee_code).all()
            return employees, []

        requested = list(dict.fromkeys(employee_ids))
        found = {
            employee.id: employee
            for employee in self.db.query(Employee).filter(
                Employee.tenant_id == tenant_id,
                Employee.id.in_(requested)
            )
        }
        employees = [found[employee_id] for employee_id in requested if employee_id in found]
        missing = [employee_id for employee_id in requested if employee_id not in found]
        return employees, missing

    def calculate_run(self, tenant_id: UUID, run_id: UUID, employee_ids: Optional[List[UUID]] = None,
                      calculated_by: Optional[str] = None) -> PayrollRun:
        """Compute payslips for the run's period.

        Reads happen up front, the pure payslip computation is spread over a
        thread pool, and outcomes are folded into the run in employee order.
        One employee failing never aborts the others.
        """
        run = self.get_run(tenant_id, run_id)
        if run.status != PayrollRunStatus.INITIATED.value:
            raise StatusTransitionError("PayrollRun", run.status, "calculate")

        period = format_period(run.month, run.year)
        _, period_end = period_bounds(run.month, run.year)

        with PayrollOperationLogger("calculate_run", str(tenant_id), period, logger=logger) as op:
            employees, missing = self._select_employees(tenant_id, employee_ids)
            skipped = [
                {"employee_id": str(employee_id), "reason": SkipReason.EMPLOYEE_NOT_FOUND.value}
                for employee_id in missing
            ]

            attendance = {
                snapshot.employee_id: snapshot
                for snapshot in self.db.query(AttendanceSnapshot).filter(
                    AttendanceSnapshot.tenant_id == tenant_id,
                    AttendanceSnapshot.period == period
                )
            }

            # (employee, compensation, attendance snapshot, summary, breakdown, preparation error)
            plan = []
            for employee in employees:
                compensation = attendance_snapshot = summary = None
                try:
                    compensation = self.ledger.get_effective_snapshot(tenant_id, employee.id, period_end)
                    if compensation is None:
                        skipped.append({"employee_id": str(employee.id), "reason": SkipReason.SALARY_TEMPLATE_MISSING.value})
                        continue

                    attendance_snapshot = attendance.get(employee.id)
                    if attendance_snapshot is None:
                        skipped.append({"employee_id": str(employee.id), "reason": SkipReason.ATTENDANCE_NOT_FROZEN.value})
                        continue

                    summary = AttendanceSummary.from_snapshot(attendance_snapshot)
                    if not summary.has_payable_attendance:
                        skipped.append({"employee_id": str(employee.id), "reason": SkipReason.NO_PAYABLE_ATTENDANCE.value})
                        continue

                    breakdown = snapshot_breakdown(compensation)
                except Exception as e:
                    plan.append((employee, compensation, attendance_snapshot, summary, None, e))
                    continue
                plan.append((employee, compensation, attendance_snapshot, summary, breakdown, None))

            for entry in skipped:
                logger.warning(f"Skipping employee {entry['employee_id']} in run {run.id}: {entry['reason']}")

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [
                    None if error is not None else executor.submit(compute_payslip, breakdown, summary, self.defaults, employee.id)
                    for employee, _, _, summary, breakdown, error in plan
                ]

                items = []
                errors = []
                for (employee, compensation, attendance_snapshot, summary, _, error), future in zip(plan, futures):
                    item = PayslipItem(
                        tenant_id=tenant_id,
                        employee_id=employee.id,
                        compensation_snapshot_id=compensation.id if compensation is not None else None,
                        attendance_snapshot_id=attendance_snapshot.id if attendance_snapshot is not None else None,
                        attendance=summary.to_dict() if summary is not None else {},
                    )
                    result = None
                    if error is None:
                        try:
                            result = future.result()
                        except Exception as e:
                            error = e

                    if error is not None:
                        logger.warning(f"Payslip failed for employee {employee.id} in run {run.id}: {error}")
                        item.status = PayslipStatus.FAILED.value
                        item.earnings = []
                        item.deductions = []
                        item.error = str(error)
                        errors.append({"employee_id": str(employee.id), "message": str(error)})
                    else:
                        item.status = PayslipStatus.PROCESSED.value
                        item.earnings = [line.to_dict() for line in result.earnings]
                        item.deductions = [line.to_dict() for line in result.deductions]
                        item.gross_earnings = result.gross_earnings
                        item.total_deductions = result.total_deductions
                        item.net_pay = result.net_pay
                    items.append(item)

            self._reset(run)
            self.db.flush()
            run.items.extend(items)
            processed = [item for item in items if item.status == PayslipStatus.PROCESSED.value]
            run.total_gross = sum_currency(item.gross_earnings for item in processed)
            run.total_deductions = sum_currency(item.total_deductions for item in processed)
            run.total_net_pay = sum_currency(item.net_pay for item in processed)
            run.total_employees = len(items) + len(skipped)
            run.processed_employees = len(processed)
            run.failed_employees = len(errors)
            run.skipped_employees = len(skipped)
            run.errors = errors
            run.skipped = skipped
            run.status = PayrollRunStatus.CALCULATED.value
            run.calculated_by = calculated_by
            run.calculated_at = _now()

            self.safe_commit("Error saving payroll run results")
            op.add_detail("processed", run.processed_employees)
            op.add_detail("failed", run.failed_employees)
            op.add_detail("skipped", run.skipped_employees)

        self.db.refresh(run)
        return run

    def approve_run(self, tenant_id: UUID, run_id: UUID, approved_by: Optional[str] = None) -> PayrollRun:
        run = self.get_run(tenant_id, run_id)
        if run.status != PayrollRunStatus.CALCULATED.value:
            raise StatusTransitionError("PayrollRun", run.status, "approve")

        run.status = PayrollRunStatus.APPROVED.value
        run.approved_by = approved_by
        run.approved_at = _now()
        self.safe_commit("Error approving payroll run")
        self.db.refresh(run)

        self.log_service_action("approve_run", "PayrollRun", run.id, {"total_net_pay": str(run.total_net_pay)})
        return run

    def mark_run_paid(self, tenant_id: UUID, run_id: UUID, paid_by: Optional[str] = None) -> PayrollRun:
        run = self.get_run(tenant_id, run_id)
        if run.status != PayrollRunStatus.APPROVED.value:
            raise StatusTransitionError("PayrollRun", run.status, "pay")

        run.status = PayrollRunStatus.PAID.value
        run.paid_by = paid_by
        run.paid_at = _now()
        self.safe_commit("Error marking payroll run as paid")
        self.db.refresh(run)

        self.log_service_action("mark_run_paid", "PayrollRun", run.id)
        return run

    def cancel_run(self, tenant_id: UUID, run_id: UUID, cancelled_by: Optional[str] = None) -> PayrollRun:
        """Cancel any run that has not been paid; computed payslips are discarded."""
        run = self.get_run(tenant_id, run_id)
        if run.status in (PayrollRunStatus.PAID.value, PayrollRunStatus.CANCELLED.value):
            raise StatusTransitionError("PayrollRun", run.status, "cancel")

        if run.status in (PayrollRunStatus.CALCULATED.value, PayrollRunStatus.APPROVED.value):
            self._reset(run)

        run.status = PayrollRunStatus.CANCELLED.value
        run.cancelled_by = cancelled_by
        run.cancelled_at = _now()
        self.safe_commit("Error cancelling payroll run")
        self.db.refresh(run)

        self.log_service_action("cancel_run", "PayrollRun", run.id)
        return run

    def get_payslips(self, tenant_id: UUID, run_id: UUID, status: Optional[str] = None) -> List[PayslipItem]:
        run = self.get_run(tenant_id, run_id)
        query = self.db.query(PayslipItem).join(
            Employee, Employee.id == PayslipItem.employee_id
        ).filter(PayslipItem.payroll_run_id == run.id)
        if status is not None:
            query = query.filter(PayslipItem.status == status)
        return query.order_by(Employee.employee_code).all()

    def export_payslips_csv(self, tenant_id: UUID, run_id: UUID) -> Tuple[str, str]:
        """Render a run's payslips as CSV; returns (filename, content)."""
        run = self.get_run(tenant_id, run_id)
        rows = self.db.query(PayslipItem, Employee).join(
            Employee, Employee.id == PayslipItem.employee_id
        ).filter(
            PayslipItem.payroll_run_id == run.id
        ).order_by(Employee.employee_code).all()

        output = io.StringIO()
        writer = csv.writer(output)

        writer.writerow([
            'Employee Code', 'Employee Name', 'Period', 'Status', 'Total Days',
            'Present Days', 'LOP Days', 'Gross Earnings', 'Total Deductions',
            'Net Pay', 'Error'
        ])

        for item, employee in rows:
            attendance = item.attendance or {}
            writer.writerow([
                employee.employee_code,
                employee.name,
                run.period,
                item.status,
                attendance.get("total_days", ""),
                attendance.get("present_days", ""),
                attendance.get("lop_days", ""),
                round_currency(item.gross_earnings) if item.gross_earnings is not None else "",
                round_currency(item.total_deductions) if item.total_deductions is not None else "",
                round_currency(item.net_pay) if item.net_pay is not None else "",
                item.error or ""
            ])

        csv_content = output.getvalue()
        output.close()

        filename = f"payslips_{run.year}_{run.month:02d}.csv"
        return filename, csv_content
