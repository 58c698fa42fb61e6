"""Recurring expense templates, their schedule and the background job."""

from src.recurring.job import RecurringExpenseJob, seconds_until
from src.recurring.recurring_service import RecurringExpenseService
from src.recurring.schedule import (
    next_occurrence,
    normalize_interval,
    should_deactivate,
    validate_interval_fields,
)

__all__ = [
    "RecurringExpenseJob",
    "RecurringExpenseService",
    "next_occurrence",
    "normalize_interval",
    "seconds_until",
    "should_deactivate",
    "validate_interval_fields",
]
