"""
Validation Utilities for the Payroll Computation & Snapshot Engine
"""

import calendar
import re
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Tuple

from payroll_engine.core.exceptions import ValidationError
from payroll_engine.core.money import to_decimal

PERIOD_PATTERN = re.compile(r'^(\d{4})-(\d{2})$')


def validate_uuid(value: Any, field_name: str = "id") -> uuid.UUID:
    """Validate UUID format."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise ValidationError(
            detail=f"Invalid UUID format for {field_name}",
            field=field_name,
            value=value
        )


def validate_month_year(month: int, year: int) -> Tuple[int, int]:
    """Validate a payroll month/year pair."""
    errors = {}

    if not isinstance(month, int) or month < 1 or month > 12:
        errors["month"] = "Month must be between 1 and 12"

    if not isinstance(year, int) or year < 2000 or year > 2100:
        errors["year"] = "Year must be between 2000 and 2100"

    if errors:
        raise ValidationError(
            detail="Payroll period validation failed",
            error_data={"validation_errors": errors}
        )

    return month, year


def validate_period(period: str) -> Tuple[int, int]:
    """Validate a ``YYYY-MM`` period string and return ``(month, year)``."""
    match = PERIOD_PATTERN.match(period or "")
    if not match:
        raise ValidationError(
            detail="Period must use the YYYY-MM format",
            field="period",
            value=period
        )
    year, month = int(match.group(1)), int(match.group(2))
    return validate_month_year(month, year)


def format_period(month: int, year: int) -> str:
    return f"{year:04d}-{month:02d}"


def period_bounds(month: int, year: int) -> Tuple[date, date]:
    """First and last calendar day of a payroll month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def validate_positive_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Validate a strictly positive, finite monetary amount."""
    try:
        amount = to_decimal(value)
    except ValueError:
        raise ValidationError(
            detail=f"{field_name} must be numeric",
            field=field_name,
            value=value
        )

    if not amount.is_finite() or amount <= 0:
        raise ValidationError(
            detail=f"{field_name} must be a positive amount",
            field=field_name,
            value=value
        )

    return amount


def validate_date_range(start_date: date, end_date: date):
    """Validate date range."""
    if start_date > end_date:
        raise ValidationError(
            detail="Start date must not be after end date",
            error_data={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat()
            }
        )
