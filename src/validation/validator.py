"""
Two-Stage Ledger Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - PAYLOAD VALIDATION (no storage):
- Total amount parses and is positive
- Payments present, each positive, summing exactly to the total
- Splits present, each non-negative, summing exactly to the total
- Title present after trimming

STAGE 2 - REFERENCE VALIDATION (needs storage):
- Category exists and belongs to the expense's group
- Every participant reference resolves (account or pending participant)

Checks run in that fixed order and the first failure is raised, so a caller
always gets the same error for the same bad payload. Membership is checked
by the services before either stage runs.

IMPORTANT: Validation NEVER silently fixes issues. Split type tags and share
values are carried through untouched: only amounts are checked.
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.amounts import (
    amounts_equal,
    parse_non_negative_amount,
    parse_positive_amount,
    sum_amounts,
)
from src.errors import (
    CategoryNotFoundError,
    CategoryNotInGroupError,
    EmptyPaymentsError,
    EmptySplitsError,
    ParticipantNotFoundError,
    PaymentTotalMismatchError,
    SplitTotalMismatchError,
    TitleRequiredError,
)
from src.models.ledger import PaymentInput, SplitInput, SplitType
from src.models.participant import ParticipantRef
from src.services.storage import DirectoryStorageInterface, IdentityStorageInterface


class ValidatedPayment(BaseModel):
    participant: ParticipantRef
    amount: Decimal
    method: Optional[str] = None


class ValidatedSplit(BaseModel):
    participant: ParticipantRef
    amount: Decimal
    split_type: SplitType = SplitType.EQUAL
    share_value: Optional[Decimal] = None


class ValidatedExpense(BaseModel):
    """Stage 1 output: parsed amounts and a trimmed title."""

    amount: Decimal
    title: str
    payments: list[ValidatedPayment] = Field(default_factory=list)
    splits: list[ValidatedSplit] = Field(default_factory=list)

    def participants(self) -> list[ParticipantRef]:
        seen: dict[ParticipantRef, None] = {}
        for line in [*self.payments, *self.splits]:
            seen.setdefault(line.participant, None)
        return list(seen)


class LedgerValidator:
    """
    Validates expense-shaped payloads through a two-stage pipeline.

    Stage 1: Payload validation (can run without storage)
    Stage 2: Reference validation (needs storage)
    """

    def __init__(
        self,
        directory: Optional[DirectoryStorageInterface] = None,
        identity: Optional[IdentityStorageInterface] = None,
    ):
        """
        Initialize validator.

        Args:
            directory: Used for category and account lookups.
            identity: Used for pending participant lookups.
                      Stage 2 checks are skipped for whichever is None.
        """
        self._directory = directory
        self._identity = identity

    # -------------------------------------------------------------------------
    # Stage 1
    # -------------------------------------------------------------------------

    def validate_payload(
        self,
        amount: str,
        payments: Iterable,
        splits: Iterable,
        title: Optional[str],
    ) -> ValidatedExpense:
        """
        Stage 1: amount, then payments, then splits, then title.

        Raises the first ValidationError found.
        """
        total = parse_positive_amount(amount, field="amount")
        validated_payments = self.validate_payments(total, list(payments))
        validated_splits = self.validate_splits(total, list(splits))

        clean_title = (title or "").strip()
        if not clean_title:
            raise TitleRequiredError()

        return ValidatedExpense(
            amount=total,
            title=clean_title,
            payments=validated_payments,
            splits=validated_splits,
        )

    def validate_payments(self, total: Decimal, payments: list[PaymentInput]) -> list[ValidatedPayment]:
        if not payments:
            raise EmptyPaymentsError()

        validated = []
        for index, payment in enumerate(payments):
            validated.append(ValidatedPayment(
                participant=payment.participant,
                amount=parse_positive_amount(payment.amount, field=f"payments[{index}].amount"),
                method=payment.method,
            ))

        paid = sum_amounts(p.amount for p in validated)
        if not amounts_equal(paid, total):
            raise PaymentTotalMismatchError(expected=total, actual=paid)
        return validated

    def validate_splits(self, total: Decimal, splits: list[SplitInput]) -> list[ValidatedSplit]:
        if not splits:
            raise EmptySplitsError()

        validated = []
        for index, split in enumerate(splits):
            validated.append(ValidatedSplit(
                participant=split.participant,
                amount=parse_non_negative_amount(split.amount, field=f"splits[{index}].amount"),
                split_type=split.split_type,
                share_value=split.share_value,
            ))

        owed = sum_amounts(s.amount for s in validated)
        if not amounts_equal(owed, total):
            raise SplitTotalMismatchError(expected=total, actual=owed)
        return validated

    # -------------------------------------------------------------------------
    # Stage 2
    # -------------------------------------------------------------------------

    async def validate_category(self, category_id: Optional[UUID], group_id: UUID) -> None:
        if category_id is None or self._directory is None:
            return
        category = await self._directory.get_category(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        if category.group_id != group_id:
            raise CategoryNotInGroupError(category_id, group_id)

    async def validate_participants(self, participants: Iterable[ParticipantRef]) -> None:
        for participant in participants:
            if participant.is_pending:
                if self._identity is None:
                    continue
                found = await self._identity.get_pending_participant(participant.id)
            else:
                if self._directory is None:
                    continue
                found = await self._directory.get_user(participant.id)
            if found is None:
                raise ParticipantNotFoundError(str(participant))

    async def validate_references(
        self,
        validated: ValidatedExpense,
        group_id: Optional[UUID],
        category_id: Optional[UUID] = None,
    ) -> None:
        """Stage 2: category first, then participants."""
        if group_id is not None:
            await self.validate_category(category_id, group_id)
        await self.validate_participants(validated.participants())
