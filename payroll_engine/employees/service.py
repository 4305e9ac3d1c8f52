import logging
from typing import List
from uuid import UUID
from sqlalchemy.orm import Session
from payroll_engine.core.service_base import BaseService
from payroll_engine.employees.models import Employee, Applicant
from payroll_engine.employees.schemas import EmployeeCreate, EmployeeUpdate, ApplicantCreate

logger = logging.getLogger(__name__)


class EmployeeService(BaseService):
    """Employee and applicant records the payroll engine needs.

    Personal data beyond this lives in the HR core; the engine only keeps what
    payroll, revisions and promotions touch.
    """

    def __init__(self, db: Session):
        super().__init__(db)

    def create_employee(self, tenant_id: UUID, employee_data: EmployeeCreate) -> Employee:
        """Create a new employee."""
        self.check_unique_constraint(
            Employee,
            {"tenant_id": tenant_id, "employee_code": employee_data.employee_code},
            resource_type="Employee"
        )

        db_employee = Employee(
            tenant_id=tenant_id,
            employee_code=employee_data.employee_code,
            name=employee_data.name,
            email=employee_data.email,
            designation=employee_data.designation,
            department=employee_data.department,
            grade=employee_data.grade,
            joining_date=employee_data.joining_date,
        )

        self.db.add(db_employee)
        self.safe_commit("Error creating employee")
        self.db.refresh(db_employee)

        self.log_service_action("create_employee", "Employee", db_employee.id)
        return db_employee

    def get_employee(self, tenant_id: UUID, employee_id: UUID) -> Employee:
        """Get employee by ID."""
        return self.get_or_404(Employee, employee_id, "Employee", tenant_id=tenant_id)

    def get_all_employees(self, tenant_id: UUID, skip: int = 0, limit: int = 100, active_only: bool = True) -> List[Employee]:
        """Get all employees with pagination."""
        query = self.db.query(Employee).filter(Employee.tenant_id == tenant_id)

        if active_only:
            query = query.filter(Employee.is_active == True)

        return self.paginate_query(query.order_by(Employee.employee_code), skip, limit).all()

    def update_employee(self, tenant_id: UUID, employee_id: UUID, employee_data: EmployeeUpdate) -> Employee:
        """Update contact and status fields.

        Designation, department and grade only change through approved promotions.
        """
        employee = self.get_employee(tenant_id, employee_id)

        for field, value in employee_data.model_dump(exclude_unset=True).items():
            setattr(employee, field, value)

        self.safe_commit("Error updating employee")
        self.db.refresh(employee)
        return employee

    def create_applicant(self, tenant_id: UUID, applicant_data: ApplicantCreate) -> Applicant:
        applicant = Applicant(
            tenant_id=tenant_id,
            name=applicant_data.name,
            email=applicant_data.email,
        )
        self.db.add(applicant)
        self.safe_commit("Error creating applicant")
        self.db.refresh(applicant)

        self.log_service_action("create_applicant", "Applicant", applicant.id)
        return applicant

    def get_applicant(self, tenant_id: UUID, applicant_id: UUID) -> Applicant:
        return self.get_or_404(Applicant, applicant_id, "Applicant", tenant_id=tenant_id)
