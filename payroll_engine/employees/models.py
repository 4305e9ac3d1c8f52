from sqlalchemy import Column, String, Boolean, DateTime, Date, Uuid, UniqueConstraint
from sqlalchemy.sql import func
from payroll_engine.core.database import Base, generate_uuid


class Employee(Base):
    __tablename__ = "employees"
    __table_args__ = (
        UniqueConstraint("tenant_id", "employee_code", name="uq_employee_tenant_code"),
    )

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    employee_code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), index=True)
    designation = Column(String(100))
    department = Column(String(100))
    grade = Column(String(50))
    joining_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Points at the latest approved compensation snapshot
    current_snapshot_id = Column(Uuid, nullable=True)
    last_increment_date = Column(Date)
    last_revision_date = Column(Date)
    last_promotion_date = Column(Date)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Applicant(Base):
    """Candidate who may be offered compensation before joining."""

    __tablename__ = "applicants"

    id = Column(Uuid, primary_key=True, default=generate_uuid)
    tenant_id = Column(Uuid, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    current_snapshot_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
