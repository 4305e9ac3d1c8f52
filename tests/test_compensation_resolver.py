"""
Tests for compensation structure resolution.

Validates:
- The reference 6 LPA breakdown, component by component
- InsufficientCTCError when fixed components and benefits exceed CTC
- ESIC applicability around the wage ceiling
- Reconciliation, determinism and non-negativity across a CTC range
- Template overrides: fractions, PF wage cap, custom components
- Value-object round trips and the legacy boundary adapter
"""

from decimal import Decimal

import pytest

from payroll_engine.compensation.adapters import to_legacy_payload, to_rows
from payroll_engine.compensation.resolver import (
    Breakdown,
    CompensationResolver,
    resolve,
)
from payroll_engine.compensation.schemas import CompensationOverrides
from payroll_engine.core.config import CompensationDefaults
from payroll_engine.core.exceptions import (
    CircularReferenceError,
    InsufficientCTCError,
    InvalidResultError,
    UnknownComponentError,
    ValidationError,
)

DEFAULTS = CompensationDefaults()


def monthly(breakdown, code):
    return breakdown.component(code).monthly


@pytest.fixture
def resolver():
    return CompensationResolver(DEFAULTS)


class TestReferenceBreakdown:
    """Annual CTC of 6,00,000 with the default policy."""

    @pytest.fixture
    def breakdown(self, resolver):
        return resolver.resolve(600000)

    def test_monthly_ctc(self, breakdown):
        assert breakdown.monthly_ctc == Decimal("50000.00")

    def test_basic_and_hra(self, breakdown):
        assert monthly(breakdown, "BASIC") == Decimal("20000.00")
        assert monthly(breakdown, "HRA") == Decimal("8000.00")

    def test_fixed_allowances(self, breakdown):
        assert monthly(breakdown, "MEDICAL") == Decimal("1250.00")
        assert monthly(breakdown, "CONVEYANCE") == Decimal("1600.00")
        assert monthly(breakdown, "EDUCATION") == Decimal("100.00")
        # Zero-valued allowances are omitted unless required
        assert breakdown.component("BOOKS") is None

    def test_employer_benefits(self, breakdown):
        assert monthly(breakdown, "EMPLOYER_PF") == Decimal("2200.00")
        assert monthly(breakdown, "GRATUITY") == Decimal("962.00")
        assert breakdown.component("EMPLOYER_ESIC") is None
        assert breakdown.esic_applicable is False

    def test_special_allowance_balances(self, breakdown):
        special = breakdown.component("SPECIAL_ALLOWANCE")
        assert special.monthly == Decimal("15888.00")
        assert special.annual == Decimal("190656.00")
        assert special.is_balancer is True
        assert breakdown.earnings[-1].code == "SPECIAL_ALLOWANCE"

    def test_deductions(self, breakdown):
        assert monthly(breakdown, "EMPLOYEE_PF") == Decimal("2400.00")
        assert monthly(breakdown, "PROFESSIONAL_TAX") == Decimal("200.00")
        assert breakdown.total_deductions.monthly == Decimal("2600.00")

    def test_totals(self, breakdown):
        assert breakdown.gross_earnings.monthly == Decimal("46838.00")
        assert breakdown.net_pay.monthly == Decimal("44238.00")
        assert breakdown.gross_b.monthly == Decimal("47800.00")
        assert breakdown.gross_c.monthly == Decimal("50000.00")
        assert breakdown.calculated_ctc == Decimal("600000.00")
        assert breakdown.ctc_difference == Decimal("0.00")

    def test_module_level_resolve_uses_given_defaults(self, breakdown):
        assert resolve(600000, defaults=DEFAULTS) == breakdown


class TestInsufficientCTC:

    def test_low_ctc_raises_with_shortfall(self, resolver):
        with pytest.raises(InsufficientCTCError) as exc_info:
            resolver.resolve(100000)
        assert exc_info.value.shortfall == Decimal("675.92")
        assert exc_info.value.error_code == "INSUFFICIENT_CTC"

    def test_same_ctc_without_esic_resolves(self, resolver):
        breakdown = resolver.resolve(100000, CompensationOverrides(esic_enabled=False))
        assert monthly(breakdown, "SPECIAL_ALLOWANCE") == Decimal("189.67")
        assert breakdown.calculated_ctc == Decimal("100000.00")

    @pytest.mark.parametrize("ctc", [0, -1000, "abc"])
    def test_non_positive_or_invalid_ctc(self, resolver, ctc):
        with pytest.raises(ValidationError):
            resolver.resolve(ctc)


class TestESIC:
    """ESIC applies while the monthly gross is within the wage ceiling."""

    @pytest.fixture
    def breakdown(self, resolver):
        return resolver.resolve(240000)

    def test_employer_contribution(self, breakdown):
        assert breakdown.esic_applicable is True
        assert monthly(breakdown, "EMPLOYER_ESIC") == Decimal("590.00")

    def test_employee_contribution_on_final_gross(self, breakdown):
        assert breakdown.gross_earnings.monthly == Decimal("18145.20")
        assert monthly(breakdown, "EMPLOYEE_ESIC") == Decimal("137.00")

    def test_still_reconciles(self, breakdown):
        assert breakdown.calculated_ctc == Decimal("240000.00")
        assert breakdown.net_pay.monthly == Decimal("16848.20")

    def test_disabled_by_override(self, resolver):
        breakdown = resolver.resolve(240000, CompensationOverrides(esic_enabled=False))
        assert breakdown.component("EMPLOYER_ESIC") is None
        assert breakdown.component("EMPLOYEE_ESIC") is None


class TestInvariants:
    """Properties that hold for every resolvable CTC."""

    CTCS = [180000, 240000, 333333, 499999.99, 600000, 750001, 1234567.89, 2500000]

    @pytest.mark.parametrize("ctc", CTCS)
    def test_reconciles_within_one_rupee(self, resolver, ctc):
        breakdown = resolver.resolve(ctc)
        assert abs(breakdown.calculated_ctc - breakdown.annual_ctc) <= Decimal("1")

    @pytest.mark.parametrize("ctc", CTCS)
    def test_deterministic(self, resolver, ctc):
        assert resolver.resolve(ctc) == resolver.resolve(ctc)

    @pytest.mark.parametrize("ctc", CTCS)
    def test_no_negative_components(self, resolver, ctc):
        breakdown = resolver.resolve(ctc)
        for component in breakdown.earnings + breakdown.employer_benefits + breakdown.employee_deductions:
            assert component.monthly >= 0
            assert component.annual >= 0

    @pytest.mark.parametrize("ctc", CTCS)
    def test_amounts_have_two_decimals(self, resolver, ctc):
        breakdown = resolver.resolve(ctc)
        for component in breakdown.earnings + breakdown.employer_benefits + breakdown.employee_deductions:
            assert component.monthly.as_tuple().exponent == -2

    def test_net_pay_identity(self, resolver):
        breakdown = resolver.resolve(900000)
        assert breakdown.net_pay.monthly == breakdown.gross_earnings.monthly - breakdown.total_deductions.monthly


class TestOverrides:

    def test_basic_fraction(self, resolver):
        breakdown = resolver.resolve(600000, CompensationOverrides(basic_fraction=Decimal("0.5")))
        assert monthly(breakdown, "BASIC") == Decimal("25000.00")
        assert monthly(breakdown, "HRA") == Decimal("10000.00")

    def test_pf_wage_cap(self, resolver):
        breakdown = resolver.resolve(600000, CompensationOverrides(pf_wage_cap=Decimal("15000")))
        assert monthly(breakdown, "EMPLOYER_PF") == Decimal("1650.00")
        assert monthly(breakdown, "EMPLOYEE_PF") == Decimal("1800.00")
        assert monthly(breakdown, "GRATUITY") == Decimal("962.00")
        assert monthly(breakdown, "SPECIAL_ALLOWANCE") == Decimal("16438.00")

    def test_required_zero_allowance_is_listed(self, resolver):
        breakdown = resolver.resolve(600000, CompensationOverrides(required_allowances=["BOOKS"]))
        assert monthly(breakdown, "BOOKS") == Decimal("0.00")

    def test_allowance_amount_override(self, resolver):
        breakdown = resolver.resolve(600000, CompensationOverrides(fixed_allowances={"mobile": 500}))
        assert monthly(breakdown, "MOBILE") == Decimal("500.00")
        assert monthly(breakdown, "SPECIAL_ALLOWANCE") == Decimal("15388.00")

    def test_formula_earning_in_annual_terms(self, resolver):
        overrides = CompensationOverrides(additional_earnings=[
            {"code": "bonus", "calculation": "FORMULA", "formula": "BASIC * 0.1"},
        ])
        breakdown = resolver.resolve(600000, overrides)
        assert monthly(breakdown, "BONUS") == Decimal("2000.00")
        assert monthly(breakdown, "SPECIAL_ALLOWANCE") == Decimal("13888.00")
        assert breakdown.gross_earnings.monthly == Decimal("46838.00")

    def test_percent_rules(self, resolver):
        overrides = CompensationOverrides(
            additional_earnings=[{"code": "SHIFT", "calculation": "PERCENT_BASIC", "value": 10}],
            additional_benefits=[{"code": "NPS", "calculation": "PERCENT_CTC", "value": 2}],
        )
        breakdown = resolver.resolve(600000, overrides)
        assert monthly(breakdown, "SHIFT") == Decimal("2000.00")
        assert monthly(breakdown, "NPS") == Decimal("1000.00")
        assert breakdown.calculated_ctc == Decimal("600000.00")

    def test_flat_deduction_reduces_net(self, resolver):
        overrides = CompensationOverrides(additional_deductions=[
            {"code": "LOAN", "calculation": "FLAT", "value": 1000, "name": "Loan Recovery"},
        ])
        breakdown = resolver.resolve(600000, overrides)
        loan = breakdown.component("LOAN")
        assert loan.name == "Loan Recovery"
        assert breakdown.net_pay.monthly == Decimal("43238.00")

    def test_deduction_formula_sees_gross(self, resolver):
        overrides = CompensationOverrides(additional_deductions=[
            {"code": "WELFARE", "calculation": "FORMULA", "formula": "GROSS * 0.01"},
        ])
        breakdown = resolver.resolve(600000, overrides)
        assert monthly(breakdown, "WELFARE") == Decimal("468.38")

    @pytest.mark.parametrize("code", ["BASIC", "GROSS", "SPECIAL_ALLOWANCE", "MEDICAL"])
    def test_reserved_or_duplicate_codes(self, resolver, code):
        overrides = CompensationOverrides(additional_earnings=[
            {"code": code, "calculation": "FLAT", "value": 100},
        ])
        with pytest.raises(ValidationError):
            resolver.resolve(600000, overrides)

    def test_fixed_components_exceeding_ctc(self, resolver):
        overrides = CompensationOverrides(additional_earnings=[
            {"code": "RETENTION", "calculation": "FLAT", "value": 40000},
        ])
        with pytest.raises(InsufficientCTCError):
            resolver.resolve(600000, overrides)


class TestFormulaErrorsSurface:

    def test_circular_custom_components(self, resolver):
        overrides = CompensationOverrides(additional_earnings=[
            {"code": "A", "calculation": "FORMULA", "formula": "B + 1"},
            {"code": "B", "calculation": "FORMULA", "formula": "A + 1"},
        ])
        with pytest.raises(CircularReferenceError):
            resolver.resolve(600000, overrides)

    def test_unknown_reference(self, resolver):
        overrides = CompensationOverrides(additional_earnings=[
            {"code": "A", "calculation": "FORMULA", "formula": "NOPE * 2"},
        ])
        with pytest.raises(UnknownComponentError):
            resolver.resolve(600000, overrides)

    def test_negative_formula(self, resolver):
        overrides = CompensationOverrides(additional_earnings=[
            {"code": "A", "calculation": "FORMULA", "formula": "BASIC - CTC"},
        ])
        with pytest.raises(InvalidResultError):
            resolver.resolve(600000, overrides)


class TestSerialization:

    def test_dict_round_trip(self, resolver):
        breakdown = resolver.resolve(600000)
        assert Breakdown.from_dict(breakdown.to_dict()) == breakdown

    def test_legacy_payload(self, resolver):
        payload = to_legacy_payload(resolver.resolve(600000))
        assert payload["annualCTC"] == 600000.0
        assert payload["breakdown"]["takeHome"]["monthly"] == 44238.0
        assert payload["breakdown"]["grossA"]["yearly"] == 562056.0
        basic = next(e for e in payload["earnings"] if e["code"] == "BASIC")
        assert basic["monthlyAmount"] == 20000.0

    def test_rows(self, resolver):
        rows = to_rows(resolver.resolve(600000))
        assert rows[0]["name"] == "Basic Salary"
        assert {"name", "monthly", "yearly"} <= set(rows[0])
