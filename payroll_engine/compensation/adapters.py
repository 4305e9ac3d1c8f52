"""
Boundary adapters for consumers that still expect the legacy salary layout.

The engine works with ``Breakdown`` only; these helpers render it in the
camel-cased shape used by older letter and export integrations.
"""

from typing import Any, Dict, List

from payroll_engine.compensation.resolver import AmountPair, Breakdown, Component


def _legacy_pair(pair: AmountPair) -> Dict[str, float]:
    return {"monthly": float(pair.monthly), "yearly": float(pair.annual)}


def _legacy_component(component: Component) -> Dict[str, Any]:
    return {
        "name": component.name,
        "code": component.code,
        "calculationType": component.calculation,
        "formula": component.formula,
        "monthlyAmount": float(component.monthly),
        "annualAmount": float(component.annual),
        "proRata": component.prorate,
    }


def to_legacy_payload(breakdown: Breakdown) -> Dict[str, Any]:
    return {
        "annualCTC": float(breakdown.annual_ctc),
        "monthlyCTC": float(breakdown.monthly_ctc),
        "earnings": [_legacy_component(c) for c in breakdown.earnings],
        "benefits": [_legacy_component(c) for c in breakdown.employer_benefits],
        "deductions": [_legacy_component(c) for c in breakdown.employee_deductions],
        "breakdown": {
            "grossA": _legacy_pair(breakdown.gross_a),
            "grossB": _legacy_pair(breakdown.gross_b),
            "grossC": _legacy_pair(breakdown.gross_c),
            "takeHome": _legacy_pair(breakdown.net_pay),
            "totalDeductions": _legacy_pair(breakdown.total_deductions),
            "totalCTC": float(breakdown.calculated_ctc),
        },
    }


def to_rows(breakdown: Breakdown) -> List[Dict[str, Any]]:
    """Flat ``{name, monthly, yearly}`` rows, earnings first, as spreadsheets list them."""
    rows = []
    for component in breakdown.earnings + breakdown.employer_benefits + breakdown.employee_deductions:
        rows.append({
            "name": component.name,
            "monthly": float(component.monthly),
            "yearly": float(component.annual),
        })
    return rows
