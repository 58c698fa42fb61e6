"""Tests for two-party friend expenses."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import expense_input, make_friends
from src.errors import (
    ExpenseNotFoundError,
    InvalidParticipantError,
    NotFriendsError,
    SplitTotalMismatchError,
    UserNotFoundError,
)
from src.models import (
    ExpenseKind,
    FriendExpenseInput,
    FriendshipStatus,
    PaymentInput,
    SplitInput,
    UpdateFriendExpenseInput,
    pending_ref,
    user_ref,
)


def _dinner(world, amount="40.00", **extra) -> FriendExpenseInput:
    half = str(Decimal(amount) / 2)
    values = dict(
        friend_id=world.bob.id,
        created_by=world.alice.id,
        title="Dinner",
        amount=amount,
        expense_date=date(2024, 4, 2),
        payments=[PaymentInput(participant=user_ref(world.alice.id), amount=amount)],
        splits=[
            SplitInput(participant=user_ref(world.alice.id), amount=half),
            SplitInput(participant=user_ref(world.bob.id), amount=half),
        ],
    )
    values.update(extra)
    return FriendExpenseInput(**values)


class TestCreateFriendExpense:

    @pytest.mark.asyncio
    async def test_create_between_friends(self, storage, world, friend_expenses):
        """A friend expense has no group and uses the friend default currency."""
        entry = await friend_expenses.create_friend_expense(_dinner(world))

        assert entry.expense.kind == ExpenseKind.FRIEND
        assert entry.expense.group_id is None
        assert entry.expense.currency_code == "USD"
        assert len(await storage.list_splits(entry.expense.id)) == 2

    @pytest.mark.asyncio
    async def test_requires_accepted_friendship(self, storage, world, friend_expenses):
        await make_friends(storage, world.alice, world.carol, status=FriendshipStatus.PENDING)
        data = _dinner(world, friend_id=world.carol.id)
        with pytest.raises(NotFriendsError):
            await friend_expenses.create_friend_expense(data)

    @pytest.mark.asyncio
    async def test_unknown_friend(self, world, friend_expenses):
        with pytest.raises(UserNotFoundError):
            await friend_expenses.create_friend_expense(_dinner(world, friend_id=uuid4()))

    @pytest.mark.asyncio
    async def test_third_party_rejected(self, storage, world, friend_expenses):
        """Only the two friends may pay or owe."""
        data = _dinner(world, splits=[
            SplitInput(participant=user_ref(world.alice.id), amount="20.00"),
            SplitInput(participant=user_ref(world.carol.id), amount="20.00"),
        ])
        with pytest.raises(InvalidParticipantError) as exc_info:
            await friend_expenses.create_friend_expense(data)
        assert exc_info.value.issue.field == "splits"
        assert await storage.list_friend_expenses(world.alice.id, world.bob.id) == []

    @pytest.mark.asyncio
    async def test_pending_participant_rejected(self, world, friend_expenses):
        data = _dinner(world, payments=[PaymentInput(participant=pending_ref(uuid4()), amount="40.00")])
        with pytest.raises(InvalidParticipantError):
            await friend_expenses.create_friend_expense(data)

    @pytest.mark.asyncio
    async def test_amount_invariants_still_apply(self, world, friend_expenses):
        data = _dinner(world, splits=[SplitInput(participant=user_ref(world.bob.id), amount="39.00")])
        with pytest.raises(SplitTotalMismatchError):
            await friend_expenses.create_friend_expense(data)


class TestFriendExpenseAccess:

    @pytest.mark.asyncio
    async def test_both_friends_can_read(self, world, friend_expenses):
        entry = await friend_expenses.create_friend_expense(_dinner(world))

        from_alice = await friend_expenses.get_friend_expense(entry.expense.id, world.alice.id, world.bob.id)
        from_bob = await friend_expenses.get_friend_expense(entry.expense.id, world.bob.id, world.alice.id)
        assert from_alice.id == from_bob.id == entry.expense.id

        listed = await friend_expenses.list_friend_expenses(world.bob.id, world.alice.id)
        assert [e.id for e in listed] == [entry.expense.id]

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, storage, world, friend_expenses):
        entry = await friend_expenses.create_friend_expense(_dinner(world))
        await make_friends(storage, world.carol, world.alice)

        with pytest.raises(ExpenseNotFoundError):
            await friend_expenses.get_friend_expense(entry.expense.id, world.carol.id, world.alice.id)

    @pytest.mark.asyncio
    async def test_group_expense_is_not_a_friend_expense(self, world, expenses, friend_expenses):
        entry = await expenses.create_expense(expense_input(world.group, world.alice))
        with pytest.raises(ExpenseNotFoundError):
            await friend_expenses.get_friend_expense(entry.expense.id, world.alice.id, world.bob.id)


class TestUpdateAndDeleteFriendExpense:

    @pytest.mark.asyncio
    async def test_update_replaces_lines(self, storage, world, friend_expenses):
        entry = await friend_expenses.create_friend_expense(_dinner(world))

        updated = await friend_expenses.update_friend_expense(UpdateFriendExpenseInput(
            expense_id=entry.expense.id,
            friend_id=world.alice.id,
            updated_by=world.bob.id,
            title="Dinner + tip",
            amount="50.00",
            currency_code="eur",
            expense_date=date(2024, 4, 2),
            payments=[PaymentInput(participant=user_ref(world.bob.id), amount="50.00")],
            splits=[
                SplitInput(participant=user_ref(world.alice.id), amount="25.00"),
                SplitInput(participant=user_ref(world.bob.id), amount="25.00"),
            ],
        ))

        assert updated.expense.currency_code == "EUR"
        payments = await storage.list_payments(entry.expense.id)
        assert [p.participant.id for p in payments] == [world.bob.id]

    @pytest.mark.asyncio
    async def test_delete(self, storage, world, friend_expenses):
        entry = await friend_expenses.create_friend_expense(_dinner(world))
        await friend_expenses.delete_friend_expense(entry.expense.id, world.bob.id, world.alice.id)
        assert await storage.get_expense(entry.expense.id) is None
