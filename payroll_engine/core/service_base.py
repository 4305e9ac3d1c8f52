"""
Shared plumbing for the tenant-scoped payroll services.
"""

import logging
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError

from payroll_engine.core.exceptions import (
    DatabaseError,
    ResourceNotFoundError,
    ResourceAlreadyExistsError,
    ValidationError
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


class BaseService:
    """Services own one Session and translate database failures into API errors."""

    def __init__(self, db: Session):
        self.db = db

    def safe_commit(self, error_message: str = "Database operation failed") -> bool:
        """Commit, rolling back and raising a domain error on failure."""
        try:
            self.db.commit()
            return True
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"Integrity error during commit: {e.orig}")
            raise ResourceAlreadyExistsError(
                resource_type="Resource",
                error_data={"original_error": str(e.orig)}
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{error_message}: {e}")
            raise DatabaseError(detail=error_message, error_data={"original_error": str(e)})

    def scoped(self, model_class, tenant_id: Any = None):
        """Query ``model_class`` restricted to one tenant's rows."""
        query = self.db.query(model_class)
        if tenant_id is not None:
            query = query.filter(model_class.tenant_id == tenant_id)
        return query

    def get_or_404(self, model_class, resource_id: Any, resource_type: Optional[str] = None, tenant_id: Any = None):
        """Fetch by primary key within the tenant; rows of other tenants are reported as missing."""
        resource_type = resource_type or model_class.__name__
        try:
            resource = self.scoped(model_class, tenant_id).filter(model_class.id == resource_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Database error loading {resource_type} {resource_id}: {e}")
            raise DatabaseError(
                detail=f"Error retrieving {resource_type}",
                error_data={"resource_id": str(resource_id), "original_error": str(e)}
            )

        if resource is None:
            raise ResourceNotFoundError(resource_type=resource_type, resource_id=str(resource_id))
        return resource

    def check_unique_constraint(
        self,
        model_class,
        filters: Dict[str, Any],
        resource_type: Optional[str] = None,
        exclude_id: Any = None
    ):
        """Raise ResourceAlreadyExistsError when another row matches every column in ``filters``.

        The last entry of ``filters`` is the field reported back to the caller.
        """
        query = self.db.query(model_class).filter_by(**filters)
        if exclude_id is not None:
            query = query.filter(model_class.id != exclude_id)

        try:
            exists = self.db.query(query.exists()).scalar()
        except SQLAlchemyError as e:
            logger.error(f"Database error in unique constraint check: {e}")
            raise DatabaseError(
                detail=f"Error checking uniqueness for {', '.join(filters)}",
                error_data={"original_error": str(e)}
            )

        if exists:
            field_name, field_value = list(filters.items())[-1]
            raise ResourceAlreadyExistsError(
                resource_type=resource_type or model_class.__name__,
                field=field_name,
                value=str(field_value)
            )

    def paginate_query(self, query, skip: int = 0, limit: int = 100):
        if skip < 0:
            raise ValidationError(detail="Skip parameter cannot be negative", field="skip", value=skip)
        if not 0 < limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                detail=f"Limit parameter must be between 1 and {MAX_PAGE_SIZE}",
                field="limit",
                value=limit
            )
        return query.offset(skip).limit(limit)

    def log_service_action(
        self,
        action: str,
        resource_type: Optional[str] = None,
        resource_id: Any = None,
        extra_data: Optional[Dict[str, Any]] = None
    ):
        """Audit line for a state-changing service call."""
        log_data = {"action": action, "service": self.__class__.__name__}
        if resource_type:
            log_data["resource_type"] = resource_type
        if resource_id:
            log_data["resource_id"] = str(resource_id)
        log_data.update(extra_data or {})

        logger.info(f"{self.__class__.__name__}.{action} {resource_type or ''} {resource_id or ''}".rstrip(), extra=log_data)
