"""
Custom Exception Classes for the Payroll Computation & Snapshot Engine
"""

from typing import Any, Dict, List, Optional
from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception class for API errors with enhanced error details."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        error_data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.error_data = error_data or {}

    def __str__(self) -> str:
        return str(self.detail)


# Resource Exceptions
class ResourceNotFoundError(BaseAPIException):
    """Requested resource not found."""

    def __init__(self, resource_type: str, resource_id: str = None, error_data: Optional[Dict[str, Any]] = None):
        detail = f"{resource_type} not found"
        if resource_id:
            detail += f" (ID: {resource_id})"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="RESOURCE_NOT_FOUND",
            error_data={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None, **(error_data or {})}
        )


class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists."""

    def __init__(self, resource_type: str, field: str = None, value: str = None, error_data: Optional[Dict[str, Any]] = None):
        detail = f"{resource_type} already exists"
        if field and value:
            detail += f" with {field}: {value}"

        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="RESOURCE_ALREADY_EXISTS",
            error_data={"resource_type": resource_type, "field": field, "value": value, **(error_data or {})}
        )


# Validation Exceptions
class ValidationError(BaseAPIException):
    """Data validation failed."""

    def __init__(self, detail: str, field: str = None, value: Any = None, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code="VALIDATION_ERROR",
            error_data={"field": field, "value": None if value is None else str(value), **(error_data or {})}
        )


# Formula Exceptions
class CircularReferenceError(BaseAPIException):
    """A formula depends on itself, directly or through other formulas."""

    def __init__(self, chain: List[str], error_data: Optional[Dict[str, Any]] = None):
        self.chain = list(chain)
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Circular reference detected: {' -> '.join(self.chain)}",
            error_code="CIRCULAR_REFERENCE",
            error_data={"chain": self.chain, **(error_data or {})}
        )


class UnknownComponentError(BaseAPIException):
    """A formula references a name that is neither in the context nor a formula."""

    def __init__(self, code: str, referenced_by: str = None, error_data: Optional[Dict[str, Any]] = None):
        self.code = code
        detail = f"Unknown component '{code}'"
        if referenced_by:
            detail += f" referenced by '{referenced_by}'"

        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code="UNKNOWN_COMPONENT",
            error_data={"code": code, "referenced_by": referenced_by, **(error_data or {})}
        )


class InvalidResultError(BaseAPIException):
    """A formula evaluated to a non-numeric, non-finite or negative value."""

    def __init__(self, code: str, detail: str = None, error_data: Optional[Dict[str, Any]] = None):
        self.code = code
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail or f"Formula for '{code}' produced an invalid result",
            error_code="INVALID_RESULT",
            error_data={"code": code, **(error_data or {})}
        )


class InvalidFormulaError(BaseAPIException):
    """A formula could not be parsed or uses a construct outside the grammar."""

    def __init__(self, code: str, formula: str, reason: str, error_data: Optional[Dict[str, Any]] = None):
        self.code = code
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid formula for '{code}': {reason}",
            error_code="INVALID_FORMULA",
            error_data={"code": code, "formula": formula, "reason": reason, **(error_data or {})}
        )


# Compensation Exceptions
class InsufficientCTCError(BaseAPIException):
    """Fixed components and benefits exceed the annual CTC."""

    def __init__(self, annual_ctc: Any, shortfall: Any, error_data: Optional[Dict[str, Any]] = None):
        self.annual_ctc = annual_ctc
        self.shortfall = shortfall
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Annual CTC {annual_ctc} is insufficient: fixed components and benefits exceed it by {shortfall}",
            error_code="INSUFFICIENT_CTC",
            error_data={"annual_ctc": str(annual_ctc), "shortfall": str(shortfall), **(error_data or {})}
        )


class TemplateLockedError(BaseAPIException):
    """Template is referenced by an assignment and its amounts can no longer change."""

    def __init__(self, template_id: str, fields: List[str] = None, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Compensation template {template_id} is locked; only the description can be changed",
            error_code="TEMPLATE_LOCKED",
            error_data={"template_id": str(template_id), "fields": fields or [], **(error_data or {})}
        )


class CompensationAlreadyAssignedError(BaseAPIException):
    """Holder already has a compensation snapshot; changes go through revisions."""

    def __init__(self, holder_type: str, holder_id: str, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{holder_type} {holder_id} already has compensation assigned; create a revision instead",
            error_code="COMPENSATION_ALREADY_ASSIGNED",
            error_data={"holder_type": holder_type, "holder_id": str(holder_id), **(error_data or {})}
        )


class SnapshotImmutableError(BaseAPIException):
    """Attempt to change or delete a locked compensation snapshot."""

    def __init__(self, snapshot_id: str = None, operation: str = "update", error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Compensation snapshot {snapshot_id} is immutable ({operation} refused)",
            error_code="SNAPSHOT_IMMUTABLE",
            error_data={"snapshot_id": str(snapshot_id) if snapshot_id else None, "operation": operation, **(error_data or {})}
        )


class NoBaselineError(BaseAPIException):
    """Revision requested for an employee without a current snapshot."""

    def __init__(self, employee_id: str, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Employee {employee_id} has no compensation snapshot to revise",
            error_code="NO_BASELINE_SNAPSHOT",
            error_data={"employee_id": str(employee_id), **(error_data or {})}
        )


class StaleRevisionError(BaseAPIException):
    """Revision was drafted against a snapshot version that is no longer current."""

    def __init__(self, revision_id: str, baseline_version: int, current_version: int, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Revision {revision_id} was drafted against version {baseline_version} "
                f"but the current version is {current_version}"
            ),
            error_code="STALE_REVISION",
            error_data={
                "revision_id": str(revision_id),
                "baseline_version": baseline_version,
                "current_version": current_version,
                **(error_data or {})
            }
        )


# Workflow Exceptions
class StatusTransitionError(BaseAPIException):
    """Operation is not allowed from the entity's current status."""

    def __init__(self, resource_type: str, current_status: str, action: str, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {action} {resource_type} in status {current_status}",
            error_code="STATUS_TRANSITION_ERROR",
            error_data={"resource_type": resource_type, "current_status": current_status, "action": action, **(error_data or {})}
        )


class AttendanceFrozenError(BaseAPIException):
    """Attendance for the period was consumed by a payroll run past INITIATED."""

    def __init__(self, period: str, run_status: str, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Attendance for {period} is frozen by a {run_status} payroll run",
            error_code="ATTENDANCE_FROZEN",
            error_data={"period": period, "run_status": run_status, **(error_data or {})}
        )


# Database Exceptions
class DatabaseError(BaseAPIException):
    """Database operation failed."""

    def __init__(self, detail: str = "Database operation failed", operation: str = None, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="DATABASE_ERROR",
            error_data={"operation": operation, **(error_data or {})}
        )


# Payroll Exceptions
class PayrollCalculationError(BaseAPIException):
    """Payroll calculation failed for a single employee."""

    def __init__(self, detail: str = "Payroll calculation failed", employee_id: str = None, error_data: Optional[Dict[str, Any]] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code="PAYROLL_CALCULATION_ERROR",
            error_data={"employee_id": str(employee_id) if employee_id else None, **(error_data or {})}
        )
