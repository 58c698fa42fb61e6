"""
Recurring Expense Models

A template describes an expense that repeats on a fixed interval. Each time
it fires, its payment and split lines are copied into a fresh expense and
next_occurrence_date moves forward. Template lines reference registered
accounts only.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.models.common import RawAmount, utcnow
from src.models.ledger import ExpenseWithLines, SplitType


class RepeatInterval(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TemplatePayment(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    template_id: UUID
    user_id: UUID
    amount: Decimal = Field(..., gt=0)
    method: Optional[str] = None


class TemplateSplit(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    template_id: UUID
    user_id: UUID
    amount: Decimal = Field(..., ge=0)
    split_type: SplitType = SplitType.EQUAL
    share_value: Optional[Decimal] = None


class RecurringTemplate(BaseModel):
    """
    Schedule that periodically materializes expenses.

    Lifecycle: active until next_occurrence_date reaches end_date, then
    inactive for good (unless reactivated by an edit).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    currency_code: str = Field(..., min_length=3, max_length=3)
    category_id: Optional[UUID] = None

    repeat_interval: RepeatInterval
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)

    start_date: date
    end_date: Optional[date] = None
    next_occurrence_date: date
    is_active: bool = True

    created_by: UUID
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    updated_by: Optional[UUID] = None

    def is_due(self, as_of: date) -> bool:
        return self.is_active and self.next_occurrence_date <= as_of


class RecurringTemplateWithLines(BaseModel):
    template: RecurringTemplate
    payments: list[TemplatePayment] = Field(default_factory=list)
    splits: list[TemplateSplit] = Field(default_factory=list)


# =============================================================================
# INPUTS
# =============================================================================

class TemplatePaymentInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: UUID
    amount: RawAmount
    method: Optional[str] = None


class TemplateSplitInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: UUID
    amount: RawAmount
    split_type: SplitType = SplitType.EQUAL
    share_value: Optional[Decimal] = None


class CreateRecurringInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    group_id: UUID
    created_by: UUID
    title: str = ""
    notes: Optional[str] = None
    amount: RawAmount
    currency_code: str = ""
    category_id: Optional[UUID] = None
    repeat_interval: str
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    payments: list[TemplatePaymentInput] = Field(default_factory=list)
    splits: list[TemplateSplitInput] = Field(default_factory=list)


class UpdateRecurringInput(BaseModel):
    """
    Partial template update.

    Only fields explicitly set are applied (see ``model_fields_set``), so
    passing ``end_date=None`` clears the end date while omitting it keeps
    the stored one. Lines are replaced only when given.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    template_id: UUID
    updated_by: UUID
    title: Optional[str] = None
    notes: Optional[str] = None
    amount: Optional[RawAmount] = None
    currency_code: Optional[str] = None
    category_id: Optional[UUID] = None
    repeat_interval: Optional[str] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    next_occurrence_date: Optional[date] = None
    is_active: Optional[bool] = None
    payments: Optional[list[TemplatePaymentInput]] = None
    splits: Optional[list[TemplateSplitInput]] = None


# =============================================================================
# GENERATION RESULTS
# =============================================================================

class GenerationStatus(str, Enum):
    GENERATED = "generated"
    SKIPPED = "skipped"
    FAILED = "failed"


class GenerationResult(BaseModel):
    """Outcome of materializing one occurrence."""

    expense: ExpenseWithLines
    template: RecurringTemplate
    occurrence_date: date


class GenerationOutcome(BaseModel):
    """One template's line in a batch report."""

    template_id: UUID
    status: GenerationStatus
    occurrence_date: Optional[date] = None
    expense_id: Optional[UUID] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None


class ProcessingReport(BaseModel):
    """Everything a batch run did, one outcome per due template."""

    run_id: UUID = Field(default_factory=uuid4)
    as_of: date
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    outcomes: list[GenerationOutcome] = Field(default_factory=list)

    def _count(self, status: GenerationStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def generated(self) -> int:
        return self._count(GenerationStatus.GENERATED)

    @property
    def skipped(self) -> int:
        return self._count(GenerationStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(GenerationStatus.FAILED)
