from dataclasses import dataclass
from typing import Optional
import uuid

from fastapi import Header

from payroll_engine.core.exceptions import ValidationError
from payroll_engine.core.validators import validate_uuid


@dataclass(frozen=True)
class RequestContext:
    """Tenant and actor resolved upstream by the platform gateway."""

    tenant_id: uuid.UUID
    user_id: Optional[str] = None


def get_request_context(
    x_tenant_id: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None)
) -> RequestContext:
    """Build the request context from the gateway headers."""
    if not x_tenant_id:
        raise ValidationError(
            detail="X-Tenant-ID header is required",
            field="X-Tenant-ID"
        )

    return RequestContext(tenant_id=validate_uuid(x_tenant_id, "X-Tenant-ID"), user_id=x_user_id)
