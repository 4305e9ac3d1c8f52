from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import date, datetime
from uuid import UUID


class EmployeeCreate(BaseModel):
    employee_code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    designation: Optional[str] = None
    department: Optional[str] = None
    grade: Optional[str] = None
    joining_date: date


class EmployeeUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    is_active: Optional[bool] = None


class EmployeeResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    employee_code: str
    name: str
    email: Optional[str]
    designation: Optional[str]
    department: Optional[str]
    grade: Optional[str]
    joining_date: date
    is_active: bool
    current_snapshot_id: Optional[UUID]
    last_increment_date: Optional[date]
    last_revision_date: Optional[date]
    last_promotion_date: Optional[date]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class ApplicantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None


class ApplicantResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    email: Optional[str]
    current_snapshot_id: Optional[UUID]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True
