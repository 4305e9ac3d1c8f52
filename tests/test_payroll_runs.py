"""
Tests for the payroll run orchestrator.

Validates:
- End-to-end June run: effective snapshots x frozen attendance
- Skip reasons and partial-failure isolation
- Idempotent re-initiation without duplicated payslips
- The run state machine and the attendance freeze barrier
- Effective-dated compensation across months
- CSV export
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from payroll_engine.attendance.models import AttendanceStatus
from payroll_engine.attendance.schemas import AttendanceRecordCreate
from payroll_engine.compensation.models import CompensationSnapshot
from payroll_engine.compensation.schemas import CompensationOverrides, RevisionCreate, RevisionType
from payroll_engine.core.exceptions import (
    AttendanceFrozenError,
    ResourceNotFoundError,
    StatusTransitionError,
    ValidationError,
)
from payroll_engine.payrolls.models import PayrollRunStatus, PayslipItem, PayslipStatus, SkipReason

JOINING = date(2024, 1, 1)
FOUR_ABSENCES = {day: AttendanceStatus.ABSENT for day in (3, 4, 5, 6)}


@pytest.fixture
def hire(make_employee, make_template, ledger, tenant_id):
    """Hire an employee on the 6 LPA template (or a given one) from joining."""
    standard = make_template(Decimal("600000"), name="Standard")

    def _hire(template=None, **fields):
        employee = make_employee(joining_date=fields.pop("joining_date", JOINING), **fields)
        ledger.assign_compensation(tenant_id, (template or standard).id, JOINING, employee_id=employee.id)
        return employee

    return _hire


@pytest.fixture
def june_run(hire, record_month, attendance_service, payroll_service, tenant_id):
    """Two employees with frozen June attendance and an initiated run."""
    full = hire()
    partial = hire()
    record_month(full, 2024, 6)
    record_month(partial, 2024, 6, FOUR_ABSENCES)
    attendance_service.freeze_attendance(tenant_id, "2024-06", frozen_by="hr-admin")
    run = payroll_service.initiate_run(tenant_id, 6, 2024, initiated_by="payroll-admin")
    return run, full, partial


def items_for(db_session, run):
    return db_session.query(PayslipItem).filter(PayslipItem.payroll_run_id == run.id).all()


class TestCalculation:

    def test_june_run(self, june_run, payroll_service, tenant_id):
        run, full, partial = june_run
        run = payroll_service.calculate_run(tenant_id, run.id, calculated_by="payroll-admin")

        assert run.status == PayrollRunStatus.CALCULATED.value
        assert run.calculated_by == "payroll-admin"
        assert run.total_employees == 2
        assert run.processed_employees == 2
        assert run.failed_employees == 0
        assert run.skipped_employees == 0
        assert run.total_gross == Decimal("87824.26")
        assert run.total_deductions == Decimal("4880.00")
        assert run.total_net_pay == Decimal("82944.26")

        payslips = payroll_service.get_payslips(tenant_id, run.id)
        assert [p.employee_id for p in payslips] == [full.id, partial.id]
        assert payslips[0].net_pay == Decimal("44238.00")
        assert payslips[1].net_pay == Decimal("38706.26")
        assert all(p.status == PayslipStatus.PROCESSED.value for p in payslips)

        basic = next(line for line in payslips[1].earnings if line["code"] == "BASIC")
        assert basic == {
            "code": "BASIC",
            "name": "Basic Salary",
            "full_amount": "20000.00",
            "amount": "17333.33",
            "prorated": True,
        }

    def test_payslips_reference_the_snapshots_used(self, june_run, payroll_service, ledger, attendance_service, tenant_id):
        run, full, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        payslip = payroll_service.get_payslips(tenant_id, run.id)[0]
        assert payslip.compensation_snapshot_id == ledger.get_current_snapshot(tenant_id, full.id).id
        assert payslip.attendance_snapshot_id == attendance_service.get_snapshot(tenant_id, full.id, "2024-06").id

    def test_skip_reasons(self, june_run, make_employee, record_month, hire, payroll_service, attendance_service, tenant_id):
        run, _, _ = june_run
        # Re-freeze after adding these so they have attendance snapshots
        uncompensated = make_employee(joining_date=JOINING)
        absent_all_month = hire()
        record_month(uncompensated, 2024, 6)
        record_month(absent_all_month, 2024, 6, {day: AttendanceStatus.ABSENT for day in range(1, 31)})
        attendance_service.freeze_attendance(tenant_id, "2024-06")
        # Hired after the freeze
        not_frozen = hire()

        run = payroll_service.calculate_run(tenant_id, run.id)

        reasons = {entry["employee_id"]: entry["reason"] for entry in run.skipped}
        assert reasons == {
            str(uncompensated.id): SkipReason.SALARY_TEMPLATE_MISSING.value,
            str(absent_all_month.id): SkipReason.NO_PAYABLE_ATTENDANCE.value,
            str(not_frozen.id): SkipReason.ATTENDANCE_NOT_FROZEN.value,
        }
        assert run.processed_employees == 2
        assert run.skipped_employees == 3
        assert run.total_employees == 5

    def test_requested_subset_and_unknown_ids(self, june_run, payroll_service, tenant_id):
        from uuid import uuid4

        run, _, partial = june_run
        ghost = uuid4()
        run = payroll_service.calculate_run(tenant_id, run.id, employee_ids=[partial.id, ghost, partial.id])

        assert run.processed_employees == 1
        assert run.skipped == [{"employee_id": str(ghost), "reason": SkipReason.EMPLOYEE_NOT_FOUND.value}]
        assert run.total_net_pay == Decimal("38706.26")

    def test_one_failure_does_not_abort_the_run(self, june_run, hire, make_template, record_month,
                                                attendance_service, payroll_service, tenant_id):
        run, _, _ = june_run
        heavy = make_template(Decimal("600000"), name="Loan recovery", overrides=CompensationOverrides(
            additional_deductions=[{"code": "LOAN", "calculation": "FLAT", "value": 50000}],
        ))
        indebted = hire(template=heavy)
        record_month(indebted, 2024, 6)
        attendance_service.freeze_attendance(tenant_id, "2024-06")

        run = payroll_service.calculate_run(tenant_id, run.id)

        assert run.status == PayrollRunStatus.CALCULATED.value
        assert run.processed_employees == 2
        assert run.failed_employees == 1
        assert run.errors[0]["employee_id"] == str(indebted.id)
        assert "negative" in run.errors[0]["message"]
        # Failed employees never contribute to totals
        assert run.total_net_pay == Decimal("82944.26")

        failed = payroll_service.get_payslips(tenant_id, run.id, status=PayslipStatus.FAILED.value)
        assert len(failed) == 1
        assert failed[0].net_pay is None
        assert failed[0].gross_earnings is None
        assert failed[0].error

    def test_unreadable_snapshot_fails_only_that_employee(self, june_run, payroll_service, ledger, db_session, tenant_id):
        run, full, partial = june_run
        snapshot_id = ledger.get_current_snapshot(tenant_id, full.id).id
        db_session.execute(
            update(CompensationSnapshot.__table__)
            .where(CompensationSnapshot.__table__.c.id == snapshot_id)
            .values(earnings=[{"code": "BASIC"}])
        )
        db_session.commit()
        db_session.expire_all()

        run = payroll_service.calculate_run(tenant_id, run.id)

        assert run.status == PayrollRunStatus.CALCULATED.value
        assert run.processed_employees == 1
        assert run.failed_employees == 1
        assert [entry["employee_id"] for entry in run.errors] == [str(full.id)]
        assert run.total_net_pay == Decimal("38706.26")

        payslips = payroll_service.get_payslips(tenant_id, run.id)
        assert [p.employee_id for p in payslips] == [full.id, partial.id]
        assert payslips[0].status == PayslipStatus.FAILED.value
        assert payslips[0].compensation_snapshot_id == snapshot_id
        assert payslips[0].net_pay is None
        assert payslips[1].status == PayslipStatus.PROCESSED.value

    def test_effective_snapshot_follows_the_period(self, hire, make_template, ledger, record_month,
                                                   attendance_service, payroll_service, tenant_id):
        employee = hire()
        revision = ledger.create_revision(tenant_id, RevisionCreate(
            employee_id=employee.id,
            revision_type=RevisionType.INCREMENT,
            template_id=make_template(Decimal("720000")).id,
            effective_from=date(2024, 7, 1),
        ))
        ledger.approve_revision(tenant_id, revision.id)

        for month in (6, 7):
            record_month(employee, 2024, month)
            attendance_service.freeze_attendance(tenant_id, f"2024-{month:02d}")

        june = payroll_service.initiate_run(tenant_id, 6, 2024)
        july = payroll_service.initiate_run(tenant_id, 7, 2024)
        june = payroll_service.calculate_run(tenant_id, june.id)
        july = payroll_service.calculate_run(tenant_id, july.id)

        assert june.total_gross == Decimal("46838.00")
        assert july.total_gross > june.total_gross
        july_slip = payroll_service.get_payslips(tenant_id, july.id)[0]
        assert july_slip.compensation_snapshot_id == revision.applied_snapshot_id


class TestIdempotency:

    def test_initiate_twice_returns_same_run(self, june_run, payroll_service, tenant_id):
        run, _, _ = june_run
        again = payroll_service.initiate_run(tenant_id, 6, 2024)
        assert again.id == run.id
        assert again.status == PayrollRunStatus.INITIATED.value
        assert len(payroll_service.list_runs(tenant_id)) == 1

    def test_restart_after_calculation(self, june_run, payroll_service, db_session, tenant_id):
        run, _, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        assert len(items_for(db_session, run)) == 2

        restarted = payroll_service.initiate_run(tenant_id, 6, 2024)
        assert restarted.id == run.id
        assert restarted.status == PayrollRunStatus.INITIATED.value
        assert restarted.processed_employees == 0
        assert restarted.total_net_pay == Decimal("0.00")
        assert items_for(db_session, run) == []

        recalculated = payroll_service.calculate_run(tenant_id, run.id)
        assert len(items_for(db_session, run)) == 2
        assert recalculated.total_net_pay == Decimal("82944.26")

    def test_invalid_period(self, payroll_service, tenant_id):
        with pytest.raises(ValidationError):
            payroll_service.initiate_run(tenant_id, 13, 2024)


class TestStateMachine:

    def test_happy_path(self, june_run, payroll_service, tenant_id):
        run, _, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        run = payroll_service.approve_run(tenant_id, run.id, approved_by="cfo")
        assert run.status == PayrollRunStatus.APPROVED.value
        assert run.approved_by == "cfo"
        run = payroll_service.mark_run_paid(tenant_id, run.id, paid_by="treasury")
        assert run.status == PayrollRunStatus.PAID.value
        assert run.paid_at is not None

    def test_approve_requires_calculation(self, june_run, payroll_service, tenant_id):
        run, _, _ = june_run
        with pytest.raises(StatusTransitionError):
            payroll_service.approve_run(tenant_id, run.id)

    def test_calculate_only_once(self, june_run, payroll_service, tenant_id):
        run, _, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        with pytest.raises(StatusTransitionError):
            payroll_service.calculate_run(tenant_id, run.id)

    def test_pay_requires_approval(self, june_run, payroll_service, tenant_id):
        run, _, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        with pytest.raises(StatusTransitionError):
            payroll_service.mark_run_paid(tenant_id, run.id)

    def test_paid_run_is_final(self, june_run, payroll_service, tenant_id):
        run, _, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        payroll_service.approve_run(tenant_id, run.id)
        payroll_service.mark_run_paid(tenant_id, run.id)

        with pytest.raises(StatusTransitionError):
            payroll_service.cancel_run(tenant_id, run.id)
        with pytest.raises(StatusTransitionError):
            payroll_service.initiate_run(tenant_id, 6, 2024)

    def test_approved_run_cannot_restart(self, june_run, payroll_service, tenant_id):
        run, _, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        payroll_service.approve_run(tenant_id, run.id)
        with pytest.raises(StatusTransitionError):
            payroll_service.initiate_run(tenant_id, 6, 2024)

    def test_cancel_discards_payslips(self, june_run, payroll_service, db_session, tenant_id):
        run, _, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        payroll_service.approve_run(tenant_id, run.id)

        run = payroll_service.cancel_run(tenant_id, run.id, cancelled_by="cfo")
        assert run.status == PayrollRunStatus.CANCELLED.value
        assert run.cancelled_by == "cfo"
        assert items_for(db_session, run) == []

        with pytest.raises(StatusTransitionError):
            payroll_service.cancel_run(tenant_id, run.id)

        restarted = payroll_service.initiate_run(tenant_id, 6, 2024)
        assert restarted.id == run.id
        assert restarted.status == PayrollRunStatus.INITIATED.value

    def test_unknown_run(self, payroll_service, tenant_id):
        from uuid import uuid4

        with pytest.raises(ResourceNotFoundError):
            payroll_service.get_run(tenant_id, uuid4())


class TestAttendanceBarrier:

    def test_calculated_run_freezes_attendance(self, june_run, payroll_service, attendance_service, tenant_id):
        run, full, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)

        with pytest.raises(AttendanceFrozenError):
            attendance_service.record_attendance(tenant_id, [AttendanceRecordCreate(
                employee_id=full.id, date=date(2024, 6, 10), status=AttendanceStatus.ABSENT,
            )])
        with pytest.raises(AttendanceFrozenError):
            attendance_service.freeze_attendance(tenant_id, "2024-06")

    def test_other_periods_stay_open(self, june_run, payroll_service, attendance_service, tenant_id):
        run, full, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        saved = attendance_service.record_attendance(tenant_id, [AttendanceRecordCreate(
            employee_id=full.id, date=date(2024, 7, 1), status=AttendanceStatus.PRESENT,
        )])
        assert len(saved) == 1

    def test_restart_reopens_attendance(self, june_run, payroll_service, attendance_service, tenant_id):
        run, full, _ = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        payroll_service.initiate_run(tenant_id, 6, 2024)

        attendance_service.record_attendance(tenant_id, [AttendanceRecordCreate(
            employee_id=full.id, date=date(2024, 6, 10), status=AttendanceStatus.ABSENT,
        )])
        snapshot = attendance_service.freeze_attendance(tenant_id, "2024-06")[0]
        assert snapshot.absent_days == Decimal("1.0")


class TestExport:

    def test_csv(self, june_run, payroll_service, tenant_id):
        run, full, partial = june_run
        payroll_service.calculate_run(tenant_id, run.id)
        filename, content = payroll_service.export_payslips_csv(tenant_id, run.id)

        assert filename == "payslips_2024_06.csv"
        lines = content.strip().splitlines()
        assert lines[0].startswith("Employee Code,Employee Name,Period,Status")
        assert len(lines) == 3
        assert lines[1].startswith(f"{full.employee_code},{full.name},2024-06,Processed,30,")
        assert lines[1].endswith("46838.00,2600.00,44238.00,")
        assert lines[2].endswith("38706.26,")
