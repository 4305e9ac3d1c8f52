"""
Pytest fixtures for the payroll engine test suite.

Provides:
- An in-memory SQLite engine shared across threads (StaticPool)
- Database sessions and service fixtures bound to it
- Employee / template / attendance builders for end-to-end scenarios
- A FastAPI TestClient with the database dependency overridden
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENABLE_REDIS_CACHE", "false")
os.environ.setdefault("PAYROLL_MAX_WORKERS", "2")

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payroll_engine.core.database import Base, get_db
from payroll_engine.core.redis_service import RedisCacheService
from payroll_engine.attendance.models import AttendanceStatus
from payroll_engine.attendance.schemas import AttendanceRecordCreate
from payroll_engine.attendance.service import AttendanceService
from payroll_engine.compensation.ledger import CompensationLedger
from payroll_engine.compensation.schemas import TemplateCreate
from payroll_engine.employees.schemas import EmployeeCreate
from payroll_engine.employees.service import EmployeeService
from payroll_engine.payrolls.service import PayrollRunService

# Model modules register their tables on Base
import payroll_engine.employees.models  # noqa: F401
import payroll_engine.compensation.models  # noqa: F401
import payroll_engine.attendance.models  # noqa: F401
import payroll_engine.payrolls.models  # noqa: F401


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def employee_service(db_session):
    return EmployeeService(db_session)


@pytest.fixture
def ledger(db_session):
    return CompensationLedger(db_session, cache=RedisCacheService(enabled=False))


@pytest.fixture
def attendance_service(db_session):
    return AttendanceService(db_session)


@pytest.fixture
def payroll_service(db_session):
    return PayrollRunService(db_session, max_workers=2)


@pytest.fixture
def make_employee(employee_service, tenant_id):
    """Create employees with sequential codes."""
    counter = {"n": 0}

    def _make(joining_date=date(2024, 1, 1), **fields):
        counter["n"] += 1
        data = EmployeeCreate(
            employee_code=fields.pop("employee_code", f"EMP{counter['n']:03d}"),
            name=fields.pop("name", f"Employee {counter['n']}"),
            joining_date=joining_date,
            **fields,
        )
        return employee_service.create_employee(tenant_id, data)

    return _make


@pytest.fixture
def make_template(ledger, tenant_id):
    counter = {"n": 0}

    def _make(annual_ctc=Decimal("600000"), overrides=None, name=None):
        counter["n"] += 1
        data = TemplateCreate(
            name=name or f"Template {counter['n']}",
            annual_ctc=annual_ctc,
            overrides=overrides,
        )
        return ledger.create_template(tenant_id, data, created_by="hr-admin")

    return _make


@pytest.fixture
def record_month(attendance_service, tenant_id):
    """Record a month of attendance: ``statuses`` maps day-of-month to a status,
    every other day is PRESENT."""

    def _record(employee, year, month, statuses=None, leave_types=None):
        statuses = statuses or {}
        leave_types = leave_types or {}
        day = date(year, month, 1)
        entries = []
        while day.month == month:
            entries.append(AttendanceRecordCreate(
                employee_id=employee.id,
                date=day,
                status=statuses.get(day.day, AttendanceStatus.PRESENT),
                leave_type=leave_types.get(day.day),
            ))
            day += timedelta(days=1)
        return attendance_service.record_attendance(tenant_id, entries)

    return _record


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient
    from payroll_engine.main import app

    def _get_test_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
