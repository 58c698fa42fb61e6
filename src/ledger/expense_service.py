"""
Expense Service

Creates, edits, deletes and reads group expenses.

CRITICAL RULES:
1. Membership is checked before anything else
2. The payload is fully validated before the first write
3. An expense and all of its lines are written in ONE transaction
4. Activity logging happens after commit and can never fail the call
"""

from typing import Optional
from uuid import UUID

import structlog

from src.amounts import parse_amount
from src.audit import ActivityLogger
from src.config import LedgerSettings, get_settings
from src.errors import ExpenseNotFoundError
from src.ledger.access import AccessGuard, build_lines, resolve_currency
from src.models.common import utcnow
from src.models.ledger import (
    CreateExpenseInput,
    Expense,
    ExpenseKind,
    ExpenseWithLines,
    Payment,
    SearchExpensesInput,
    Split,
    UpdateExpenseInput,
)
from src.services.storage import ExpenseQuery, LedgerStorage
from src.validation import LedgerValidator


logger = structlog.get_logger(__name__)


class ExpenseService:
    """Group expense ledger."""

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

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create_expense(
        self,
        data: CreateExpenseInput,
        log_activity: bool = True,
    ) -> ExpenseWithLines:
        """
        Record a group expense with its payments and splits.

        Args:
            data: The expense to record
            log_activity: Set False when the caller logs after its own
                          enclosing transaction commits.

        Raises:
            GroupNotFoundError, NotGroupMemberError: access
            ValidationError subclasses: bad payload (nothing is written)
            CategoryNotFoundError, CategoryNotInGroupError, ParticipantNotFoundError
        """
        group = await self._guard.require_group_member(data.group_id, data.created_by)

        validated = self._validator.validate_payload(
            data.amount, data.payments, data.splits, data.title
        )
        currency = resolve_currency(data.currency_code, group.currency_code)
        await self._validator.validate_references(validated, group.id, data.category_id)

        now = utcnow()
        expense = Expense(
            group_id=group.id,
            kind=ExpenseKind.GROUP,
            title=validated.title,
            notes=data.notes or None,
            amount=validated.amount,
            currency_code=currency,
            expense_date=data.expense_date,
            category_id=data.category_id,
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
        logger.info(
            "expense_created",
            expense_id=str(expense.id),
            group_id=str(group.id),
            amount=str(expense.amount),
        )
        if log_activity:
            await self._activity.log_expense_created(entry, data.created_by)
        return entry

    async def update_expense(self, data: UpdateExpenseInput) -> ExpenseWithLines:
        """
        Replace an expense's values and all of its lines.

        Metadata, amount, payments and splits change together or not at all.
        """
        existing = await self._require_group_expense(data.expense_id)
        group = await self._guard.require_group_member(existing.group_id, data.updated_by)

        validated = self._validator.validate_payload(
            data.amount, data.payments, data.splits, data.title
        )
        currency = resolve_currency(data.currency_code, group.currency_code)
        await self._validator.validate_references(validated, group.id, data.category_id)

        updated = existing.model_copy(update={
            "title": validated.title,
            "notes": data.notes or None,
            "amount": validated.amount,
            "currency_code": currency,
            "expense_date": data.expense_date,
            "category_id": data.category_id,
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

    async def delete_expense(self, expense_id: UUID, requester_id: UUID) -> None:
        expense = await self._require_group_expense(expense_id)
        await self._guard.require_group_member(expense.group_id, requester_id)

        async with self._storage.transaction():
            if not await self._storage.delete_expense(expense_id):
                raise ExpenseNotFoundError(expense_id)

        await self._activity.log_expense_deleted(expense, requester_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _require_group_expense(self, expense_id: UUID) -> Expense:
        expense = await self._storage.get_expense(expense_id)
        if expense is None or expense.kind != ExpenseKind.GROUP:
            raise ExpenseNotFoundError(expense_id)
        return expense

    async def get_expense(self, expense_id: UUID, requester_id: UUID) -> Expense:
        expense = await self._require_group_expense(expense_id)
        await self._guard.require_member(expense.group_id, requester_id)
        return expense

    async def get_expense_with_lines(self, expense_id: UUID, requester_id: UUID) -> ExpenseWithLines:
        expense = await self.get_expense(expense_id, requester_id)
        return ExpenseWithLines(
            expense=expense,
            payments=await self._storage.list_payments(expense_id),
            splits=await self._storage.list_splits(expense_id),
        )

    async def get_expense_payments(self, expense_id: UUID, requester_id: UUID) -> list[Payment]:
        await self.get_expense(expense_id, requester_id)
        return await self._storage.list_payments(expense_id)

    async def get_expense_splits(self, expense_id: UUID, requester_id: UUID) -> list[Split]:
        await self.get_expense(expense_id, requester_id)
        return await self._storage.list_splits(expense_id)

    async def list_expenses_by_group(self, group_id: UUID, requester_id: UUID) -> list[Expense]:
        await self._guard.require_group_member(group_id, requester_id)
        return await self._storage.list_expenses_by_group(group_id)

    async def search_expenses(
        self,
        search: SearchExpensesInput,
        requester_id: UUID,
    ) -> list[Expense]:
        """
        Filter a group's expenses. Filters combine with AND.

        Raises:
            InvalidAmountError: if min_amount or max_amount does not parse
        """
        await self._guard.require_group_member(search.group_id, requester_id)

        limit = search.limit
        if limit <= 0:
            limit = self._settings.search_default_limit
        limit = min(limit, self._settings.search_max_limit)

        query = ExpenseQuery(
            group_id=search.group_id,
            text=search.query or None,
            start_date=search.start_date,
            end_date=search.end_date,
            category_id=search.category_id,
            created_by=search.created_by,
            min_amount=(
                parse_amount(search.min_amount, field="min_amount")
                if search.min_amount else None
            ),
            max_amount=(
                parse_amount(search.max_amount, field="max_amount")
                if search.max_amount else None
            ),
            payer=search.payer,
            ower=search.ower,
            limit=limit,
            offset=search.offset,
        )
        return await self._storage.search_expenses(query)

    async def get_expense_history(self, expense_id: UUID, requester_id: UUID):
        """Activity events recorded against one expense, oldest first."""
        expense = await self._storage.get_expense(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(expense_id)
        if expense.group_id is not None:
            await self._guard.require_member(expense.group_id, requester_id)
        else:
            payments = await self._storage.list_payments(expense_id)
            splits = await self._storage.list_splits(expense_id)
            involved = {line.participant.id for line in [*payments, *splits]}
            if requester_id not in involved:
                raise ExpenseNotFoundError(expense_id)
        return await self._activity.get_expense_history(expense_id)
