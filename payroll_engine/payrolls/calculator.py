"""
Per-employee payslip computation.

Everything here is pure: it takes the effective compensation breakdown and the
frozen attendance summary and returns a ``PayslipResult`` without touching the
database, so the run orchestrator can fan it out over a thread pool.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from payroll_engine.attendance.proration import AttendanceSummary, prorate
from payroll_engine.compensation.resolver import BASIC, Breakdown, Component
from payroll_engine.core.config import CompensationDefaults, settings
from payroll_engine.core.exceptions import PayrollCalculationError
from payroll_engine.core.money import ZERO, round_currency, sum_currency


@dataclass(frozen=True)
class PayslipLine:
    code: str
    name: str
    full_amount: Any
    amount: Any
    prorated: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "full_amount": str(self.full_amount),
            "amount": str(self.amount),
            "prorated": self.prorated,
        }


@dataclass(frozen=True)
class PayslipResult:
    attendance: Dict[str, Any]
    earnings: Tuple[PayslipLine, ...]
    deductions: Tuple[PayslipLine, ...]
    gross_earnings: Any
    total_deductions: Any
    net_pay: Any


def _lines(components: Tuple[Component, ...], prorated_codes, summary: AttendanceSummary) -> List[PayslipLine]:
    lines = []
    for component in components:
        scaled = component.prorate or component.code == BASIC or component.code in prorated_codes
        amount = component.monthly
        if scaled:
            amount = prorate(component.monthly, summary.present_days, summary.total_days)
        lines.append(PayslipLine(
            code=component.code,
            name=component.name,
            full_amount=round_currency(component.monthly),
            amount=round_currency(amount),
            prorated=scaled,
        ))
    return lines


def compute_payslip(
    breakdown: Breakdown,
    summary: AttendanceSummary,
    defaults: Optional[CompensationDefaults] = None,
    employee_id: Any = None
) -> PayslipResult:
    """Prorate one month of a breakdown against frozen attendance.

    Prorated earnings and deductions are scaled by days present over total
    days, and basic salary is always prorated. Flat components (professional tax, fixed allowances) are paid in
    full. A negative net pay is a failure, never clamped to zero.
    """
    defaults = defaults or settings.compensation
    if summary.total_days <= 0:
        raise PayrollCalculationError(
            detail="Attendance period has no days to prorate over",
            employee_id=employee_id
        )

    earnings = _lines(breakdown.earnings, set(defaults.prorated_earnings), summary)
    deductions = _lines(breakdown.employee_deductions, set(defaults.prorated_deductions), summary)

    gross = sum_currency(line.amount for line in earnings)
    total_deductions = sum_currency(line.amount for line in deductions)
    net_pay = round_currency(gross - total_deductions)

    if net_pay < ZERO:
        raise PayrollCalculationError(
            detail=f"Net pay would be negative ({net_pay})",
            employee_id=employee_id,
            error_data={
                "gross_earnings": str(gross),
                "total_deductions": str(total_deductions),
            }
        )

    return PayslipResult(
        attendance=summary.to_dict(),
        earnings=tuple(earnings),
        deductions=tuple(deductions),
        gross_earnings=gross,
        total_deductions=total_deductions,
        net_pay=net_pay,
    )
