from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from decimal import Decimal
import enum
import uuid


class CalculationKind(str, enum.Enum):
    FLAT = "FLAT"
    PERCENT_BASIC = "PERCENT_BASIC"
    PERCENT_CTC = "PERCENT_CTC"
    FORMULA = "FORMULA"


class ComponentRule(BaseModel):
    """A custom earning, benefit or deduction added on top of the standard structure.

    ``value`` is a monthly rupee amount for FLAT and a percentage (10 == 10%)
    for PERCENT_BASIC / PERCENT_CTC. FORMULA components are written in annual
    terms and may reference CTC, MONTHLY_CTC, BASIC, HRA, the fixed allowance
    codes and other formula components of the same group.
    """

    code: str = Field(..., min_length=1, max_length=50)
    name: Optional[str] = None
    calculation: CalculationKind = CalculationKind.FLAT
    value: Optional[Decimal] = Field(None, ge=0)
    formula: Optional[str] = None
    prorate: bool = False

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        code = value.strip().upper().replace(" ", "_")
        if not code.replace("_", "").isalnum() or not code.isascii() or code[0].isdigit():
            raise ValueError("code must be an identifier made of letters, digits and underscores")
        return code

    @model_validator(mode="after")
    def check_inputs(self):
        if self.calculation == CalculationKind.FORMULA:
            if not self.formula:
                raise ValueError(f"{self.code}: FORMULA components need a formula")
        elif self.value is None:
            raise ValueError(f"{self.code}: {self.calculation.value} components need a value")
        return self


class CompensationOverrides(BaseModel):
    """Per-template settings merged over the configured compensation defaults."""

    basic_fraction: Optional[Decimal] = Field(None, gt=0, le=1)
    hra_fraction: Optional[Decimal] = Field(None, ge=0, le=1)
    fixed_allowances: Dict[str, Decimal] = Field(default_factory=dict)
    required_allowances: Optional[List[str]] = None
    employer_pf_fraction: Optional[Decimal] = Field(None, ge=0, le=1)
    gratuity_fraction: Optional[Decimal] = Field(None, ge=0, le=1)
    insurance_monthly: Optional[Decimal] = Field(None, ge=0)
    pf_wage_cap: Optional[Decimal] = Field(None, gt=0)
    employee_pf_fraction: Optional[Decimal] = Field(None, ge=0, le=1)
    professional_tax_monthly: Optional[Decimal] = Field(None, ge=0)
    esic_enabled: Optional[bool] = None
    additional_earnings: List[ComponentRule] = Field(default_factory=list)
    additional_benefits: List[ComponentRule] = Field(default_factory=list)
    additional_deductions: List[ComponentRule] = Field(default_factory=list)

    @field_validator("fixed_allowances")
    @classmethod
    def check_allowances(cls, value: Dict[str, Decimal]) -> Dict[str, Decimal]:
        normalized = {}
        for code, amount in value.items():
            if amount < 0:
                raise ValueError(f"allowance {code} cannot be negative")
            normalized[code.strip().upper()] = amount
        return normalized


# Breakdown payloads

class ComponentResponse(BaseModel):
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


class AmountPairResponse(BaseModel):
    monthly: Decimal
    annual: Decimal


class BreakdownResponse(BaseModel):
    annual_ctc: Decimal
    monthly_ctc: Decimal
    earnings: List[ComponentResponse]
    employer_benefits: List[ComponentResponse]
    employee_deductions: List[ComponentResponse]
    gross_earnings: AmountPairResponse
    total_benefits: AmountPairResponse
    total_deductions: AmountPairResponse
    net_pay: AmountPairResponse
    gross_a: AmountPairResponse
    gross_b: AmountPairResponse
    gross_c: AmountPairResponse
    calculated_ctc: Decimal
    ctc_difference: Decimal
    esic_applicable: bool = False


class PreviewRequest(BaseModel):
    annual_ctc: Optional[Decimal] = Field(None, gt=0)
    template_id: Optional[uuid.UUID] = None
    overrides: Optional[CompensationOverrides] = None

    @model_validator(mode="after")
    def check_source(self):
        if (self.annual_ctc is None) == (self.template_id is None):
            raise ValueError("Provide exactly one of annual_ctc or template_id")
        return self


# Templates

class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    annual_ctc: Decimal = Field(..., gt=0)
    overrides: Optional[CompensationOverrides] = None


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    annual_ctc: Optional[Decimal] = Field(None, gt=0)
    overrides: Optional[CompensationOverrides] = None
    is_active: Optional[bool] = None


class TemplateResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    description: Optional[str]
    annual_ctc: Decimal
    monthly_ctc: Decimal
    overrides: Dict[str, Any]
    earnings: List[Dict[str, Any]]
    employer_benefits: List[Dict[str, Any]]
    employee_deductions: List[Dict[str, Any]]
    totals: Dict[str, Any]
    is_locked: bool
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


# Assignments and snapshots

class AssignmentCreate(BaseModel):
    template_id: uuid.UUID
    effective_from: date
    employee_id: Optional[uuid.UUID] = None
    applicant_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def check_holder(self):
        if (self.employee_id is None) == (self.applicant_id is None):
            raise ValueError("Provide exactly one of employee_id or applicant_id")
        return self


class SnapshotResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    employee_id: Optional[uuid.UUID]
    applicant_id: Optional[uuid.UUID]
    template_id: Optional[uuid.UUID]
    version: int
    reason: str
    annual_ctc: Decimal
    monthly_ctc: Decimal
    earnings: List[Dict[str, Any]]
    employer_benefits: List[Dict[str, Any]]
    employee_deductions: List[Dict[str, Any]]
    totals: Dict[str, Any]
    effective_from: date
    locked: bool
    locked_at: Optional[datetime]
    locked_by: Optional[str]
    revision_id: Optional[uuid.UUID]
    previous_snapshot_id: Optional[uuid.UUID]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


# Revisions

class RevisionType(str, enum.Enum):
    INCREMENT = "INCREMENT"
    REVISION = "REVISION"
    PROMOTION = "PROMOTION"


class PromotionDetails(BaseModel):
    new_designation: Optional[str] = None
    new_department: Optional[str] = None
    new_grade: Optional[str] = None

    @model_validator(mode="after")
    def check_any(self):
        if not (self.new_designation or self.new_department or self.new_grade):
            raise ValueError("Promotion details need a new designation, department or grade")
        return self


class RevisionCreate(BaseModel):
    employee_id: uuid.UUID
    revision_type: RevisionType
    template_id: uuid.UUID
    effective_from: date
    reason: Optional[str] = None
    promotion_details: Optional[PromotionDetails] = None


class RevisionReject(BaseModel):
    reason: str = Field(..., min_length=1)


class RevisionResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    employee_id: uuid.UUID
    revision_type: str
    status: str
    template_id: uuid.UUID
    effective_from: date
    reason: Optional[str]
    baseline_snapshot_id: uuid.UUID
    baseline_version: int
    old_snapshot: Dict[str, Any]
    new_snapshot: Dict[str, Any]
    change_summary: Dict[str, Any]
    promotion_details: Optional[Dict[str, Any]]
    created_by: Optional[str]
    submitted_at: Optional[datetime]
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    rejected_by: Optional[str]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    applied_snapshot_id: Optional[uuid.UUID]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class TimelineEntry(BaseModel):
    entry_type: str  # JOINING or the revision type
    effective_from: date
    status: str
    annual_ctc: Decimal
    previous_ctc: Optional[Decimal] = None
    percentage_change: Optional[Decimal] = None
    snapshot_id: Optional[uuid.UUID] = None
    revision_id: Optional[uuid.UUID] = None
    version: Optional[int] = None
    reason: Optional[str] = None
