"""
Shared model helpers.

ValidationIssue is the structured description attached to every
validation failure so callers can point at the offending field.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


def _stringify_amount(value: Any) -> Any:
    """Let callers hand over Decimal or int amounts; floats stay rejected."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (Decimal, int)):
        return str(value)
    return value


# Amount exactly as the caller supplied it. Parsing happens in the ledger
# validator so a bad amount surfaces as InvalidAmountError in pipeline order.
RawAmount = Annotated[str, BeforeValidator(_stringify_amount)]
