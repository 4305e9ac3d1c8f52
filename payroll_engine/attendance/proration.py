"""
Attendance summarisation and pay proration.

``summarize`` walks every calendar day between the period start (or the
joining date, when later) and the period end, classifying each day from the
latest record for that date. Days without a record are absent and unpaid.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from payroll_engine.attendance.models import AttendanceStatus
from payroll_engine.core.exceptions import ValidationError
from payroll_engine.core.money import ZERO, round_currency, to_decimal
from payroll_engine.core.validators import validate_date_range

HALF = Decimal("0.5")
ONE = Decimal("1")

UNPAID_LEAVE_MARKERS = ("lop", "unpaid", "loss of pay")


@dataclass(frozen=True)
class DailyAttendance:
    date: date
    status: AttendanceStatus
    leave_type: Optional[str] = None
    is_late: bool = False


@dataclass(frozen=True)
class AttendanceSummary:
    total_days: int
    present_days: Decimal = ZERO
    absent_days: Decimal = ZERO
    paid_leave_days: Decimal = ZERO
    lop_days: Decimal = ZERO
    holiday_days: int = 0
    weekly_off_days: int = 0
    half_days: int = 0
    late_marks: int = 0

    @property
    def has_payable_attendance(self) -> bool:
        return self.present_days + self.holiday_days + self.paid_leave_days > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_days": self.total_days,
            "present_days": str(self.present_days),
            "absent_days": str(self.absent_days),
            "paid_leave_days": str(self.paid_leave_days),
            "lop_days": str(self.lop_days),
            "holiday_days": self.holiday_days,
            "weekly_off_days": self.weekly_off_days,
            "half_days": self.half_days,
            "late_marks": self.late_marks,
        }

    @classmethod
    def from_snapshot(cls, snapshot) -> "AttendanceSummary":
        return cls(
            total_days=snapshot.total_days,
            present_days=to_decimal(snapshot.present_days),
            absent_days=to_decimal(snapshot.absent_days),
            paid_leave_days=to_decimal(snapshot.paid_leave_days),
            lop_days=to_decimal(snapshot.lop_days),
            holiday_days=snapshot.holiday_days,
            weekly_off_days=snapshot.weekly_off_days,
            half_days=snapshot.half_days,
            late_marks=snapshot.late_marks,
        )


def is_unpaid_leave(leave_type: Optional[str]) -> bool:
    if not leave_type:
        return False
    lowered = leave_type.lower()
    return any(marker in lowered for marker in UNPAID_LEAVE_MARKERS)


def summarize(
    records: Iterable[Any],
    period_start: date,
    period_end: date,
    joining_date: Optional[date] = None
) -> AttendanceSummary:
    """Summarize daily records (ORM rows or ``DailyAttendance``) for a period."""
    validate_date_range(period_start, period_end)

    start = period_start
    if joining_date and joining_date > period_start:
        start = joining_date
    if start > period_end:
        return AttendanceSummary(total_days=0)

    by_date = {}
    for record in records:
        if start <= record.date <= period_end:
            by_date[record.date] = record

    present = absent = paid_leave = lop = ZERO
    holidays = weekly_offs = half_days = late = 0
    total = 0

    day = start
    while day <= period_end:
        total += 1
        record = by_date.get(day)
        if record is None:
            absent += ONE
            lop += ONE
            day += timedelta(days=1)
            continue

        status = AttendanceStatus(record.status)
        if record.is_late:
            late += 1

        if status == AttendanceStatus.PRESENT:
            present += ONE
        elif status == AttendanceStatus.HALF_DAY:
            half_days += 1
            present += HALF
            absent += HALF
            lop += HALF
        elif status == AttendanceStatus.ABSENT:
            absent += ONE
            lop += ONE
        elif status == AttendanceStatus.LEAVE:
            if is_unpaid_leave(record.leave_type):
                lop += ONE
            else:
                paid_leave += ONE
        elif status == AttendanceStatus.LOP:
            lop += ONE
        elif status == AttendanceStatus.HOLIDAY:
            holidays += 1
        elif status == AttendanceStatus.WEEKLY_OFF:
            weekly_offs += 1

        day += timedelta(days=1)

    return AttendanceSummary(
        total_days=total,
        present_days=present,
        absent_days=absent,
        paid_leave_days=paid_leave,
        lop_days=lop,
        holiday_days=holidays,
        weekly_off_days=weekly_offs,
        half_days=half_days,
        late_marks=late,
    )


def prorate(amount: Any, present_days: Any, total_days: Any) -> Decimal:
    """Scale a monthly amount by present days over total days.

    Holidays, weekly offs and paid leave are not in the numerator; they only
    decide whether an employee has payable attendance at all.
    """
    total_days = to_decimal(total_days)
    if total_days <= 0:
        raise ValidationError(detail="Cannot prorate over a period with no days", field="total_days", value=total_days)
    present_days = to_decimal(present_days)
    if present_days < 0 or present_days > total_days:
        raise ValidationError(detail="Present days must be between 0 and total days", field="present_days", value=present_days)
    return round_currency(to_decimal(amount) * present_days / total_days)
