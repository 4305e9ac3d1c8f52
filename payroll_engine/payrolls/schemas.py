from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from uuid import UUID


class PayrollRunCreate(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=2100)


class PayrollRunCalculate(BaseModel):
    employee_ids: Optional[List[UUID]] = None


class PayrollRunResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    month: int
    year: int
    period: str
    status: str
    initiated_by: Optional[str]
    initiated_at: Optional[datetime]
    calculated_by: Optional[str]
    calculated_at: Optional[datetime]
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    paid_by: Optional[str]
    paid_at: Optional[datetime]
    cancelled_by: Optional[str]
    cancelled_at: Optional[datetime]
    total_gross: Decimal
    total_deductions: Decimal
    total_net_pay: Decimal
    total_employees: int
    processed_employees: int
    failed_employees: int
    skipped_employees: int
    errors: List[Dict[str, Any]]
    skipped: List[Dict[str, Any]]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


class PayslipItemResponse(BaseModel):
    id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    compensation_snapshot_id: Optional[UUID]
    attendance_snapshot_id: Optional[UUID]
    status: str
    attendance: Dict[str, Any]
    earnings: List[Dict[str, Any]]
    deductions: List[Dict[str, Any]]
    gross_earnings: Optional[Decimal]
    total_deductions: Optional[Decimal]
    net_pay: Optional[Decimal]
    error: Optional[str]

    class Config:
        from_attributes = True
