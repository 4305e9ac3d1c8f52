"""
Compensation structure resolution.

``CompensationResolver.resolve`` turns an annual CTC (and optional template
overrides) into a reconciled ``Breakdown``. The steps run in a fixed order and
every intermediate amount is rounded with ``round_currency`` before anything
depends on it:

1. monthly CTC
2. basic (fraction of monthly CTC)
3. HRA (fraction of basic)
4. fixed allowances and additional earnings
5. employer benefits (PF, gratuity, insurance, ESIC, additional benefits)
6. special allowance, the balancing earning that absorbs the remainder
7. employee deductions (PF, professional tax, ESIC, additional deductions)
8. totals and gross tiers
9. reconciliation against the input CTC

Fixed components carry ``annual = monthly * 12``. The special allowance is the
exact annual residual, so earnings plus benefits always add back up to the CTC.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from payroll_engine.compensation.schemas import CalculationKind, ComponentRule, CompensationOverrides
from payroll_engine.core.config import CompensationDefaults, settings
from payroll_engine.core.exceptions import InsufficientCTCError, ValidationError
from payroll_engine.core.money import (
    ZERO,
    annual_to_monthly,
    monthly_to_annual,
    round_currency,
    round_up_rupee,
    sum_currency,
    to_decimal,
)
from payroll_engine.core.validators import validate_positive_amount
from payroll_engine.formulas.resolver import FormulaResolver

logger = logging.getLogger(__name__)

EARNING = "EARNING"
BENEFIT = "BENEFIT"
DEDUCTION = "DEDUCTION"

BASIC = "BASIC"
HRA = "HRA"
SPECIAL_ALLOWANCE = "SPECIAL_ALLOWANCE"
EMPLOYER_PF = "EMPLOYER_PF"
GRATUITY = "GRATUITY"
INSURANCE = "INSURANCE"
EMPLOYER_ESIC = "EMPLOYER_ESIC"
EMPLOYEE_PF = "EMPLOYEE_PF"
PROFESSIONAL_TAX = "PROFESSIONAL_TAX"
EMPLOYEE_ESIC = "EMPLOYEE_ESIC"

STANDARD_NAMES = {
    BASIC: "Basic Salary",
    HRA: "House Rent Allowance",
    SPECIAL_ALLOWANCE: "Special Allowance",
    EMPLOYER_PF: "Employer PF Contribution",
    GRATUITY: "Gratuity",
    INSURANCE: "Insurance",
    EMPLOYER_ESIC: "Employer ESIC Contribution",
    EMPLOYEE_PF: "Employee PF Contribution",
    PROFESSIONAL_TAX: "Professional Tax",
    EMPLOYEE_ESIC: "Employee ESIC Contribution",
}

# Earnings computed by the resolver itself; custom components may not reuse them
RESERVED_CODES = frozenset(STANDARD_NAMES) | {"CTC", "MONTHLY_CTC", "GROSS"}


def component_name(code: str, category: str = EARNING) -> str:
    if code in STANDARD_NAMES:
        return STANDARD_NAMES[code]
    label = code.replace("_", " ").title()
    if category != EARNING or label.endswith("Allowance"):
        return label
    return f"{label} Allowance"


@dataclass(frozen=True)
class AmountPair:
    monthly: Decimal
    annual: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {"monthly": str(self.monthly), "annual": str(self.annual)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AmountPair":
        return cls(monthly=round_currency(data["monthly"]), annual=round_currency(data["annual"]))


@dataclass(frozen=True)
class Component:
    code: str
    name: str
    category: str
    calculation: str
    monthly: Decimal
    annual: Decimal
    formula: Optional[str] = None
    resolved: bool = True
    prorate: bool = False
    is_balancer: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "calculation": self.calculation,
            "monthly": str(self.monthly),
            "annual": str(self.annual),
            "formula": self.formula,
            "resolved": self.resolved,
            "prorate": self.prorate,
            "is_balancer": self.is_balancer,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Component":
        return cls(
            code=data["code"],
            name=data.get("name") or component_name(data["code"], data["category"]),
            category=data["category"],
            calculation=data.get("calculation", CalculationKind.FLAT.value),
            monthly=round_currency(data["monthly"]),
            annual=round_currency(data["annual"]),
            formula=data.get("formula"),
            resolved=data.get("resolved", True),
            prorate=data.get("prorate", False),
            is_balancer=data.get("is_balancer", False),
        )


def _fixed(code: str, category: str, monthly: Any, calculation: str = CalculationKind.FLAT.value,
           formula: Optional[str] = None, prorate: bool = False, name: Optional[str] = None) -> Component:
    monthly = round_currency(monthly)
    return Component(
        code=code,
        name=name or component_name(code, category),
        category=category,
        calculation=calculation,
        monthly=monthly,
        annual=monthly_to_annual(monthly),
        formula=formula,
        prorate=prorate,
    )


def _totals(components: Iterable[Component]) -> AmountPair:
    components = list(components)
    return AmountPair(
        monthly=sum_currency(c.monthly for c in components),
        annual=sum_currency(c.annual for c in components),
    )


@dataclass(frozen=True)
class Breakdown:
    """Reconciled compensation structure for one annual CTC."""

    annual_ctc: Decimal
    monthly_ctc: Decimal
    earnings: Tuple[Component, ...]
    employer_benefits: Tuple[Component, ...]
    employee_deductions: Tuple[Component, ...]
    gross_earnings: AmountPair
    total_benefits: AmountPair
    total_deductions: AmountPair
    net_pay: AmountPair
    gross_a: AmountPair
    gross_b: AmountPair
    gross_c: AmountPair
    calculated_ctc: Decimal
    ctc_difference: Decimal
    esic_applicable: bool = False

    def component(self, code: str) -> Optional[Component]:
        for item in self.earnings + self.employer_benefits + self.employee_deductions:
            if item.code == code:
                return item
        return None

    def totals_dict(self) -> Dict[str, Any]:
        return {
            "gross_earnings": self.gross_earnings.to_dict(),
            "total_benefits": self.total_benefits.to_dict(),
            "total_deductions": self.total_deductions.to_dict(),
            "net_pay": self.net_pay.to_dict(),
            "gross_a": self.gross_a.to_dict(),
            "gross_b": self.gross_b.to_dict(),
            "gross_c": self.gross_c.to_dict(),
            "calculated_ctc": str(self.calculated_ctc),
            "ctc_difference": str(self.ctc_difference),
            "esic_applicable": self.esic_applicable,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "annual_ctc": str(self.annual_ctc),
            "monthly_ctc": str(self.monthly_ctc),
            "earnings": [c.to_dict() for c in self.earnings],
            "employer_benefits": [c.to_dict() for c in self.employer_benefits],
            "employee_deductions": [c.to_dict() for c in self.employee_deductions],
            **self.totals_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Breakdown":
        return cls(
            annual_ctc=round_currency(data["annual_ctc"]),
            monthly_ctc=round_currency(data["monthly_ctc"]),
            earnings=tuple(Component.from_dict(c) for c in data["earnings"]),
            employer_benefits=tuple(Component.from_dict(c) for c in data["employer_benefits"]),
            employee_deductions=tuple(Component.from_dict(c) for c in data["employee_deductions"]),
            gross_earnings=AmountPair.from_dict(data["gross_earnings"]),
            total_benefits=AmountPair.from_dict(data["total_benefits"]),
            total_deductions=AmountPair.from_dict(data["total_deductions"]),
            net_pay=AmountPair.from_dict(data["net_pay"]),
            gross_a=AmountPair.from_dict(data["gross_a"]),
            gross_b=AmountPair.from_dict(data["gross_b"]),
            gross_c=AmountPair.from_dict(data["gross_c"]),
            calculated_ctc=round_currency(data["calculated_ctc"]),
            ctc_difference=round_currency(data["ctc_difference"]),
            esic_applicable=data.get("esic_applicable", False),
        )


@dataclass
class _Policy:
    """Defaults with a template's overrides applied."""

    basic_fraction: Decimal
    hra_fraction: Decimal
    fixed_allowances: Dict[str, Decimal]
    required_allowances: List[str]
    employer_pf_fraction: Decimal
    gratuity_fraction: Decimal
    insurance_monthly: Decimal
    pf_wage_cap: Optional[Decimal]
    employee_pf_fraction: Decimal
    professional_tax_monthly: Decimal
    esic_enabled: bool
    esic_wage_ceiling: Decimal
    esic_employer_rate: Decimal
    esic_employee_rate: Decimal
    tolerance: Decimal
    prorated_earnings: List[str]
    prorated_deductions: List[str]
    additional_earnings: List[ComponentRule] = field(default_factory=list)
    additional_benefits: List[ComponentRule] = field(default_factory=list)
    additional_deductions: List[ComponentRule] = field(default_factory=list)

    @classmethod
    def merge(cls, defaults: CompensationDefaults, overrides: Optional[CompensationOverrides]) -> "_Policy":
        overrides = overrides or CompensationOverrides()

        def pick(name):
            value = getattr(overrides, name)
            return getattr(defaults, name) if value is None else value

        return cls(
            basic_fraction=to_decimal(pick("basic_fraction")),
            hra_fraction=to_decimal(pick("hra_fraction")),
            fixed_allowances={**defaults.fixed_allowances, **overrides.fixed_allowances},
            required_allowances=list(pick("required_allowances")),
            employer_pf_fraction=to_decimal(pick("employer_pf_fraction")),
            gratuity_fraction=to_decimal(pick("gratuity_fraction")),
            insurance_monthly=to_decimal(pick("insurance_monthly")),
            pf_wage_cap=pick("pf_wage_cap"),
            employee_pf_fraction=to_decimal(pick("employee_pf_fraction")),
            professional_tax_monthly=to_decimal(pick("professional_tax_monthly")),
            esic_enabled=pick("esic_enabled"),
            esic_wage_ceiling=defaults.esic_wage_ceiling,
            esic_employer_rate=defaults.esic_employer_rate,
            esic_employee_rate=defaults.esic_employee_rate,
            tolerance=defaults.reconciliation_tolerance,
            prorated_earnings=list(defaults.prorated_earnings),
            prorated_deductions=list(defaults.prorated_deductions),
            additional_earnings=list(overrides.additional_earnings),
            additional_benefits=list(overrides.additional_benefits),
            additional_deductions=list(overrides.additional_deductions),
        )


class CompensationResolver:
    """Resolves annual CTC into a reconciled breakdown. Stateless and thread-safe."""

    def __init__(self, defaults: Optional[CompensationDefaults] = None):
        self.defaults = defaults or settings.compensation

    def resolve(self, annual_ctc: Any, overrides: Optional[CompensationOverrides] = None) -> Breakdown:
        annual_ctc = round_currency(validate_positive_amount(annual_ctc, "annual_ctc"))
        policy = _Policy.merge(self.defaults, overrides)
        self._check_codes(policy)

        # 1-3. CTC, basic and HRA
        monthly_ctc = annual_to_monthly(annual_ctc)
        basic_monthly = round_currency(monthly_ctc * policy.basic_fraction)
        hra_monthly = round_currency(basic_monthly * policy.hra_fraction)

        earnings: List[Component] = [
            _fixed(BASIC, EARNING, basic_monthly, CalculationKind.PERCENT_CTC.value, prorate=True),
            _fixed(HRA, EARNING, hra_monthly, CalculationKind.PERCENT_BASIC.value,
                   prorate=HRA in policy.prorated_earnings),
        ]

        # 4. Fixed allowances, verbatim; zero amounts only when required
        for code, amount in policy.fixed_allowances.items():
            amount = round_currency(amount)
            if amount == ZERO and code not in policy.required_allowances:
                continue
            earnings.append(_fixed(code, EARNING, amount, prorate=code in policy.prorated_earnings))

        context = {
            "CTC": annual_ctc,
            "MONTHLY_CTC": monthly_ctc,
            **{c.code: c.annual for c in earnings},
        }
        extra_earnings = self._apply_rules(policy.additional_earnings, EARNING, context, basic_monthly, monthly_ctc)
        earnings.extend(extra_earnings)
        context.update({c.code: c.annual for c in extra_earnings})

        # 5. Employer benefits
        pf_wage = basic_monthly
        if policy.pf_wage_cap is not None:
            pf_wage = min(basic_monthly, round_currency(policy.pf_wage_cap))

        benefits: List[Component] = [
            _fixed(EMPLOYER_PF, BENEFIT, pf_wage * policy.employer_pf_fraction,
                   CalculationKind.PERCENT_BASIC.value),
            _fixed(GRATUITY, BENEFIT, basic_monthly * policy.gratuity_fraction,
                   CalculationKind.PERCENT_BASIC.value),
        ]
        if policy.insurance_monthly > 0:
            benefits.append(_fixed(INSURANCE, BENEFIT, policy.insurance_monthly))
        benefits.extend(self._apply_rules(policy.additional_benefits, BENEFIT, context, basic_monthly, monthly_ctc))

        esic_applicable = False
        if policy.esic_enabled:
            preliminary_gross = round_currency(monthly_ctc - sum_currency(b.monthly for b in benefits))
            if ZERO < preliminary_gross <= policy.esic_wage_ceiling:
                # The employer contribution is itself part of CTC, so solve for the gross it leaves
                target_gross = round_currency(preliminary_gross / (1 + policy.esic_employer_rate))
                esic_monthly = round_up_rupee(target_gross * policy.esic_employer_rate)
                benefits.append(_fixed(EMPLOYER_ESIC, BENEFIT, esic_monthly, CalculationKind.PERCENT_CTC.value))
                esic_applicable = True

        # 6. Balancing earning
        fixed_annual = sum_currency(c.annual for c in earnings)
        benefits_annual = sum_currency(b.annual for b in benefits)
        special_annual = round_currency(annual_ctc - fixed_annual - benefits_annual)
        if special_annual < 0:
            shortfall = -special_annual
            logger.info(f"CTC {annual_ctc} short by {shortfall} before special allowance")
            raise InsufficientCTCError(
                annual_ctc,
                shortfall,
                error_data={
                    "fixed_earnings_annual": str(fixed_annual),
                    "benefits_annual": str(benefits_annual),
                }
            )

        earnings.append(Component(
            code=SPECIAL_ALLOWANCE,
            name=component_name(SPECIAL_ALLOWANCE),
            category=EARNING,
            calculation="BALANCE",
            monthly=annual_to_monthly(special_annual),
            annual=special_annual,
            prorate=SPECIAL_ALLOWANCE in policy.prorated_earnings,
            is_balancer=True,
        ))

        gross = _totals(earnings)

        # 7. Employee deductions
        deductions: List[Component] = [
            _fixed(EMPLOYEE_PF, DEDUCTION, pf_wage * policy.employee_pf_fraction,
                   CalculationKind.PERCENT_BASIC.value, prorate=EMPLOYEE_PF in policy.prorated_deductions),
        ]
        if policy.professional_tax_monthly > 0:
            deductions.append(_fixed(PROFESSIONAL_TAX, DEDUCTION, policy.professional_tax_monthly,
                                     prorate=PROFESSIONAL_TAX in policy.prorated_deductions))
        if esic_applicable:
            deductions.append(_fixed(EMPLOYEE_ESIC, DEDUCTION,
                                     round_up_rupee(gross.monthly * policy.esic_employee_rate),
                                     CalculationKind.PERCENT_CTC.value,
                                     prorate=EMPLOYEE_ESIC in policy.prorated_deductions))

        deduction_context = {
            **context,
            SPECIAL_ALLOWANCE: special_annual,
            "GROSS": gross.annual,
        }
        deductions.extend(self._apply_rules(policy.additional_deductions, DEDUCTION, deduction_context,
                                            basic_monthly, monthly_ctc))

        # 8. Totals
        benefit_totals = _totals(benefits)
        deduction_totals = _totals(deductions)
        net_pay = AmountPair(
            monthly=round_currency(gross.monthly - deduction_totals.monthly),
            annual=round_currency(gross.annual - deduction_totals.annual),
        )
        gratuity = next(b for b in benefits if b.code == GRATUITY)
        gross_b = AmountPair(
            monthly=round_currency(gross.monthly + gratuity.monthly),
            annual=round_currency(gross.annual + gratuity.annual),
        )
        gross_c = AmountPair(
            monthly=round_currency(gross.monthly + benefit_totals.monthly),
            annual=round_currency(gross.annual + benefit_totals.annual),
        )

        # 9. Reconciliation
        calculated_ctc = gross_c.annual
        difference = round_currency(calculated_ctc - annual_ctc)
        if abs(difference) > policy.tolerance:
            logger.warning(
                f"CTC reconciliation drift of {difference} for annual CTC {annual_ctc} "
                f"(calculated {calculated_ctc})"
            )

        return Breakdown(
            annual_ctc=annual_ctc,
            monthly_ctc=monthly_ctc,
            earnings=tuple(earnings),
            employer_benefits=tuple(benefits),
            employee_deductions=tuple(deductions),
            gross_earnings=gross,
            total_benefits=benefit_totals,
            total_deductions=deduction_totals,
            net_pay=net_pay,
            gross_a=gross,
            gross_b=gross_b,
            gross_c=gross_c,
            calculated_ctc=calculated_ctc,
            ctc_difference=difference,
            esic_applicable=esic_applicable,
        )

    def _check_codes(self, policy: _Policy):
        seen = {BASIC, HRA}
        for code in policy.fixed_allowances:
            if code in RESERVED_CODES or code in seen:
                raise ValidationError(detail=f"Allowance code {code} is reserved or duplicated", field="fixed_allowances", value=code)
            seen.add(code)

        for rule in policy.additional_earnings + policy.additional_benefits + policy.additional_deductions:
            if rule.code in RESERVED_CODES or rule.code in seen:
                raise ValidationError(detail=f"Component code {rule.code} is reserved or duplicated", field="code", value=rule.code)
            seen.add(rule.code)

    def _apply_rules(self, rules: List[ComponentRule], category: str, context: Dict[str, Decimal],
                     basic_monthly: Decimal, monthly_ctc: Decimal) -> List[Component]:
        if not rules:
            return []

        formulas = {
            rule.code: rule.formula
            for rule in rules
            if rule.calculation == CalculationKind.FORMULA
        }
        session = FormulaResolver(formulas).session(context) if formulas else None

        components = []
        for rule in rules:
            if rule.calculation == CalculationKind.FLAT:
                monthly = rule.value
            elif rule.calculation == CalculationKind.PERCENT_BASIC:
                monthly = basic_monthly * rule.value / 100
            elif rule.calculation == CalculationKind.PERCENT_CTC:
                monthly = monthly_ctc * rule.value / 100
            else:
                # Formulas are written in annual terms
                monthly = annual_to_monthly(session.resolve(rule.code))

            component = _fixed(
                rule.code,
                category,
                monthly,
                rule.calculation.value,
                formula=rule.formula,
                prorate=rule.prorate,
                name=rule.name,
            )
            components.append(component)
        return components


def resolve(annual_ctc: Any, overrides: Optional[CompensationOverrides] = None,
            defaults: Optional[CompensationDefaults] = None) -> Breakdown:
    """Resolve with the configured defaults unless others are given."""
    return CompensationResolver(defaults).resolve(annual_ctc, overrides)
