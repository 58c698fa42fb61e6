"""
Ledger Models

Expenses with their payments (who fronted money) and splits (who owes
money), settlements, and the inputs accepted by the ledger services.

DESIGN DECISION: Stored models hold parsed Decimal amounts.
Input models hold amounts exactly as supplied (RawAmount) so the ledger
validator decides what a valid amount is, and reports it in order.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.models.common import RawAmount, utcnow
from src.models.participant import ParticipantRef


# =============================================================================
# ENUMS
# =============================================================================

class ExpenseKind(str, Enum):
    """Group expenses belong to a group; friend expenses to a pair of users."""
    GROUP = "group"
    FRIEND = "friend"


class SplitType(str, Enum):
    """
    How a split amount was derived.

    Informational only: the ledger trusts the precomputed amount and never
    checks it against the tag or share value.
    """
    EQUAL = "equal"
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    SHARES = "shares"
    CUSTOM = "custom"


class SettlementStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# =============================================================================
# STORED LEDGER ROWS
# =============================================================================

class Expense(BaseModel):
    """
    A ledger entry.

    Invariant: sum(payments) == sum(splits) == amount, checked before
    every write by the ledger validator.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: Optional[UUID] = Field(
        default=None,
        description="Owning group; None for a friend expense"
    )
    kind: ExpenseKind = ExpenseKind.GROUP
    title: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    currency_code: str = Field(..., min_length=3, max_length=3)
    expense_date: date
    category_id: Optional[UUID] = None
    tags: list[str] = Field(default_factory=list)

    created_by: UUID
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    updated_by: Optional[UUID] = None


class Payment(BaseModel):
    """Money fronted by one participant towards an expense."""

    id: UUID = Field(default_factory=uuid4)
    expense_id: UUID
    participant: ParticipantRef
    amount: Decimal = Field(..., gt=0)
    method: Optional[str] = None


class Split(BaseModel):
    """Share of an expense owed by one participant."""

    id: UUID = Field(default_factory=uuid4)
    expense_id: UUID
    participant: ParticipantRef
    amount: Decimal = Field(..., ge=0)
    split_type: SplitType = SplitType.EQUAL
    share_value: Optional[Decimal] = Field(
        default=None,
        description="Percentage or share count the amount was derived from"
    )


class ExpenseWithLines(BaseModel):
    """An expense together with its materialized payments and splits."""

    expense: Expense
    payments: list[Payment] = Field(default_factory=list)
    splits: list[Split] = Field(default_factory=list)

    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), Decimal("0"))

    @property
    def total_owed(self) -> Decimal:
        return sum((s.amount for s in self.splits), Decimal("0"))


class Settlement(BaseModel):
    """An out-of-band payment from payer to payee that pays down debt."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: Optional[UUID] = None
    kind: ExpenseKind = ExpenseKind.GROUP
    payer: ParticipantRef
    payee: ParticipantRef
    amount: Decimal = Field(..., gt=0)
    currency_code: str = Field(..., min_length=3, max_length=3)
    status: SettlementStatus = SettlementStatus.PENDING
    method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None

    created_by: UUID
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    updated_by: Optional[UUID] = None


# =============================================================================
# INPUTS
# =============================================================================

class PaymentInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    participant: ParticipantRef
    amount: RawAmount
    method: Optional[str] = None


class SplitInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    participant: ParticipantRef
    amount: RawAmount
    split_type: SplitType = SplitType.EQUAL
    share_value: Optional[Decimal] = None


class CreateExpenseInput(BaseModel):
    """Everything needed to record a group expense."""
    model_config = ConfigDict(str_strip_whitespace=True)

    group_id: UUID
    created_by: UUID
    title: str = ""
    amount: RawAmount
    currency_code: str = Field(
        default="",
        description="Blank means the group's currency"
    )
    expense_date: date
    category_id: Optional[UUID] = None
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payments: list[PaymentInput] = Field(default_factory=list)
    splits: list[SplitInput] = Field(default_factory=list)


class UpdateExpenseInput(BaseModel):
    """
    Full replacement of an expense's values and lines.

    Payments and splits given here replace the stored ones entirely.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    expense_id: UUID
    updated_by: UUID
    title: str = ""
    amount: RawAmount
    currency_code: str = ""
    expense_date: date
    category_id: Optional[UUID] = None
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payments: list[PaymentInput] = Field(default_factory=list)
    splits: list[SplitInput] = Field(default_factory=list)


class FriendExpenseInput(BaseModel):
    """A two-party expense between the creator and one friend."""
    model_config = ConfigDict(str_strip_whitespace=True)

    friend_id: UUID
    created_by: UUID
    title: str = ""
    amount: RawAmount
    currency_code: str = ""
    expense_date: date
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payments: list[PaymentInput] = Field(default_factory=list)
    splits: list[SplitInput] = Field(default_factory=list)


class UpdateFriendExpenseInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    expense_id: UUID
    friend_id: UUID
    updated_by: UUID
    title: str = ""
    amount: RawAmount
    currency_code: str = ""
    expense_date: date
    notes: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payments: list[PaymentInput] = Field(default_factory=list)
    splits: list[SplitInput] = Field(default_factory=list)


class SearchExpensesInput(BaseModel):
    """
    Expense search filters.

    Every filter is optional; the ones given are combined with AND.
    limit <= 0 means the configured default page size.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    group_id: UUID
    query: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    min_amount: Optional[RawAmount] = None
    max_amount: Optional[RawAmount] = None
    payer: Optional[ParticipantRef] = None
    ower: Optional[ParticipantRef] = None
    limit: int = 0
    offset: int = Field(default=0, ge=0)


class CreateSettlementInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    group_id: UUID
    created_by: UUID
    payer: ParticipantRef
    payee: ParticipantRef
    amount: RawAmount
    currency_code: str = ""
    status: str = SettlementStatus.PENDING.value
    method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class UpdateSettlementInput(BaseModel):
    """Partial settlement update; only the fields that were set are applied."""
    model_config = ConfigDict(str_strip_whitespace=True)

    settlement_id: UUID
    updated_by: UUID
    amount: Optional[RawAmount] = None
    currency_code: Optional[str] = None
    status: Optional[str] = None
    method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class FriendSettlementInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    friend_id: UUID
    created_by: UUID
    payer_id: UUID
    payee_id: UUID
    amount: RawAmount
    currency_code: str = ""
    status: str = SettlementStatus.PENDING.value
    method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
