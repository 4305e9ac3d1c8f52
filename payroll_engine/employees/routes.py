from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID
from payroll_engine.core.database import get_db
from payroll_engine.core.dependencies import RequestContext, get_request_context
from payroll_engine.employees.schemas import (
    ApplicantCreate,
    ApplicantResponse,
    EmployeeCreate,
    EmployeeResponse,
    EmployeeUpdate,
)
from payroll_engine.employees.service import EmployeeService

router = APIRouter(prefix="/employees", tags=["employees"])


@router.post("/", response_model=EmployeeResponse, status_code=status.HTTP_201_CREATED)
async def create_employee(
    employee_data: EmployeeCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Create a new employee."""
    employee_service = EmployeeService(db)
    return employee_service.create_employee(ctx.tenant_id, employee_data)


@router.get("/", response_model=List[EmployeeResponse])
async def get_employees(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    active_only: bool = Query(True),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Get all employees."""
    employee_service = EmployeeService(db)
    return employee_service.get_all_employees(ctx.tenant_id, skip=skip, limit=limit, active_only=active_only)


@router.post("/applicants", response_model=ApplicantResponse, status_code=status.HTTP_201_CREATED)
async def create_applicant(
    applicant_data: ApplicantCreate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Register an applicant so an offer can carry a compensation snapshot."""
    employee_service = EmployeeService(db)
    return employee_service.create_applicant(ctx.tenant_id, applicant_data)


@router.get("/applicants/{applicant_id}", response_model=ApplicantResponse)
async def get_applicant(
    applicant_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    employee_service = EmployeeService(db)
    return employee_service.get_applicant(ctx.tenant_id, applicant_id)


@router.get("/{employee_id}", response_model=EmployeeResponse)
async def get_employee(
    employee_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Get employee by ID."""
    employee_service = EmployeeService(db)
    return employee_service.get_employee(ctx.tenant_id, employee_id)


@router.patch("/{employee_id}", response_model=EmployeeResponse)
async def update_employee(
    employee_id: UUID,
    employee_data: EmployeeUpdate,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db)
):
    """Update employee contact details or status."""
    employee_service = EmployeeService(db)
    return employee_service.update_employee(ctx.tenant_id, employee_id, employee_data)
