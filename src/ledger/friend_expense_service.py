"""
Friend Expense Service

Two-party expenses outside any group. Same amount invariants as group
expenses, plus:
- the two users must have an accepted friendship
- every payment and split must belong to one of the two friends
- currency falls back to the configured friend default
"""

from typing import Optional
from uuid import UUID

from src.audit import ActivityLogger
from src.config import LedgerSettings, get_settings
from src.errors import ExpenseNotFoundError, InvalidParticipantError
from src.ledger.access import AccessGuard, build_lines, resolve_currency
from src.models.common import utcnow
from src.models.ledger import (
    Expense,
    ExpenseKind,
    ExpenseWithLines,
    FriendExpenseInput,
    Payment,
    Split,
    UpdateFriendExpenseInput,
)
from src.services.storage import LedgerStorage
from src.validation import LedgerValidator, ValidatedExpense


class FriendExpenseService:

    def __init__(
        self,
        storage: LedgerStorage,
        activity: Optional[ActivityLogger] = None,
        validator: Optional[LedgerValidator] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._activity = activity or ActivityLogger(storage, storage)
        self._validator = validator or LedgerValidator(storage, storage)
        self._settings = settings or get_settings().ledger
        self._guard = AccessGuard(storage)

    @staticmethod
    def _check_two_party(validated: ValidatedExpense, user_id: UUID, friend_id: UUID) -> None:
        pair = {user_id, friend_id}
        for field, lines in (("payments", validated.payments), ("splits", validated.splits)):
            for line in lines:
                if line.participant.is_pending or line.participant.id not in pair:
                    raise InvalidParticipantError(
                        f"{field.capitalize()} must only involve the two friends",
                        field=field,
                    )

    async def create_friend_expense(self, data: FriendExpenseInput) -> ExpenseWithLines:
        await self._guard.require_user(data.friend_id)
        await self._guard.require_friends(data.created_by, data.friend_id)

        validated = self._validator.validate_payload(
            data.amount, data.payments, data.splits, data.title
        )
        self._check_two_party(validated, data.created_by, data.friend_id)
        currency = resolve_currency(data.currency_code, self._settings.friend_default_currency)

        now = utcnow()
        expense = Expense(
            group_id=None,
            kind=ExpenseKind.FRIEND,
            title=validated.title,
            notes=data.notes or None,
            amount=validated.amount,
            currency_code=currency,
            expense_date=data.expense_date,
            tags=data.tags,
            created_by=data.created_by,
            created_at=now,
            updated_at=now,
        )
        payments, splits = build_lines(expense.id, validated)

        async with self._storage.transaction():
            await self._storage.insert_expense(expense)
            await self._storage.insert_payments(payments)
            await self._storage.insert_splits(splits)

        entry = ExpenseWithLines(expense=expense, payments=payments, splits=splits)
        await self._activity.log_expense_created(entry, data.created_by)
        return entry

    async def update_friend_expense(self, data: UpdateFriendExpenseInput) -> ExpenseWithLines:
        existing = await self.get_friend_expense(data.expense_id, data.updated_by, data.friend_id)

        validated = self._validator.validate_payload(
            data.amount, data.payments, data.splits, data.title
        )
        self._check_two_party(validated, data.updated_by, data.friend_id)
        currency = resolve_currency(data.currency_code, self._settings.friend_default_currency)

        updated = existing.model_copy(update={
            "title": validated.title,
            "notes": data.notes or None,
            "amount": validated.amount,
            "currency_code": currency,
            "expense_date": data.expense_date,
            "tags": data.tags,
            "updated_at": utcnow(),
            "updated_by": data.updated_by,
        })
        payments, splits = build_lines(updated.id, validated)

        async with self._storage.transaction():
            await self._storage.update_expense(updated)
            await self._storage.delete_lines(updated.id)
            await self._storage.insert_payments(payments)
            await self._storage.insert_splits(splits)

        entry = ExpenseWithLines(expense=updated, payments=payments, splits=splits)
        await self._activity.log_expense_updated(entry, existing, data.updated_by)
        return entry

    async def delete_friend_expense(
        self,
        expense_id: UUID,
        requester_id: UUID,
        friend_id: UUID,
    ) -> None:
        expense = await self.get_friend_expense(expense_id, requester_id, friend_id)
        async with self._storage.transaction():
            await self._storage.delete_expense(expense_id)
        await self._activity.log_expense_deleted(expense, requester_id)

    async def list_friend_expenses(self, user_id: UUID, friend_id: UUID) -> list[Expense]:
        await self._guard.require_friends(user_id, friend_id)
        return await self._storage.list_friend_expenses(user_id, friend_id)

    async def get_friend_expense(
        self,
        expense_id: UUID,
        requester_id: UUID,
        friend_id: UUID,
    ) -> Expense:
        """
        A friend expense visible to the requester.

        The pair must still be friends and both must appear on the expense.
        """
        await self._guard.require_friends(requester_id, friend_id)

        expense = await self._storage.get_expense(expense_id)
        if expense is None or expense.kind != ExpenseKind.FRIEND:
            raise ExpenseNotFoundError(expense_id)

        payments = await self._storage.list_payments(expense_id)
        splits = await self._storage.list_splits(expense_id)
        involved = {line.participant.id for line in [*payments, *splits]}
        if requester_id not in involved or friend_id not in involved:
            raise ExpenseNotFoundError(expense_id)
        return expense

    async def get_friend_expense_payments(
        self,
        expense_id: UUID,
        requester_id: UUID,
        friend_id: UUID,
    ) -> list[Payment]:
        await self.get_friend_expense(expense_id, requester_id, friend_id)
        return await self._storage.list_payments(expense_id)

    async def get_friend_expense_splits(
        self,
        expense_id: UUID,
        requester_id: UUID,
        friend_id: UUID,
    ) -> list[Split]:
        await self.get_friend_expense(expense_id, requester_id, friend_id)
        return await self._storage.list_splits(expense_id)
