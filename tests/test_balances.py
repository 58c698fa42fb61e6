"""Tests for balance aggregation, debt simplification and the balance service."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from conftest import expense_input, make_group
from src.balances import BalanceService, aggregate_lines, simplify_debts
from src.errors import NotFriendsError, NotGroupMemberError
from src.models import (
    CreateSettlementInput,
    FriendExpenseInput,
    ParticipantBalance,
    Payment,
    PaymentInput,
    PendingParticipant,
    Split,
    SplitInput,
    pending_ref,
    user_ref,
)


def _balance(ref, paid="0", owed="0", name=None) -> ParticipantBalance:
    return ParticipantBalance(
        participant=ref,
        display_name=name,
        total_paid=Decimal(paid),
        total_owed=Decimal(owed),
    )


def _ref(n: int):
    return user_ref(UUID(int=n))


@pytest.fixture
def balances(storage, ledger_settings) -> BalanceService:
    return BalanceService(storage, ledger_settings)


class TestAggregateLines:

    def test_sums_per_participant(self):
        a, b = _ref(1), _ref(2)
        expense_id = uuid4()
        totals = aggregate_lines(
            [
                Payment(expense_id=expense_id, participant=a, amount=Decimal("60")),
                Payment(expense_id=expense_id, participant=a, amount=Decimal("15")),
            ],
            [
                Split(expense_id=expense_id, participant=a, amount=Decimal("25")),
                Split(expense_id=expense_id, participant=b, amount=Decimal("50")),
            ],
        )
        assert totals == {a: (Decimal("75"), Decimal("25")), b: (Decimal("0"), Decimal("50"))}
        assert list(totals) == [a, b]

    def test_pending_and_user_with_same_id_are_distinct(self):
        shared = uuid4()
        expense_id = uuid4()
        totals = aggregate_lines(
            [Payment(expense_id=expense_id, participant=user_ref(shared), amount=Decimal("10"))],
            [Split(expense_id=expense_id, participant=pending_ref(shared), amount=Decimal("10"))],
        )
        assert len(totals) == 2


class TestSimplifyDebts:

    def test_one_debtor_two_creditors(self):
        """A owes 30; C is owed 20 and B is owed 10. Largest creditor is paid first."""
        a, b, c = _ref(1), _ref(2), _ref(3)
        transfers = simplify_debts([
            _balance(a, owed="30", name="A"),
            _balance(b, paid="10", name="B"),
            _balance(c, paid="20", name="C"),
        ])
        assert [(t.debtor, t.creditor, t.amount) for t in transfers] == [
            (a, c, Decimal("20")),
            (a, b, Decimal("10")),
        ]
        assert transfers[0].debtor_name == "A"
        assert transfers[0].creditor_name == "C"

    def test_all_settled(self):
        assert simplify_debts([_balance(_ref(1)), _balance(_ref(2), paid="5", owed="5")]) == []

    def test_empty_input(self):
        assert simplify_debts([]) == []

    def test_ties_are_ordered_by_participant(self):
        a, b, c = _ref(1), _ref(2), _ref(3)
        transfers = simplify_debts([
            _balance(c, owed="10"),
            _balance(b, owed="10"),
            _balance(a, paid="20"),
        ])
        assert [t.debtor for t in transfers] == [b, c]

    def test_deterministic_for_reordered_input(self):
        refs = [_ref(n) for n in range(1, 6)]
        entries = [
            _balance(refs[0], paid="50"),
            _balance(refs[1], owed="35.50"),
            _balance(refs[2], owed="14.50"),
            _balance(refs[3], paid="12"),
            _balance(refs[4], owed="12"),
        ]
        forward = simplify_debts(entries)
        backward = simplify_debts(list(reversed(entries)))
        assert forward == backward

    def test_transfers_conserve_balances(self):
        refs = [_ref(n) for n in range(1, 5)]
        entries = [
            _balance(refs[0], paid="100", owed="25"),
            _balance(refs[1], owed="25"),
            _balance(refs[2], paid="10", owed="25"),
            _balance(refs[3], owed="35"),
        ]
        transfers = simplify_debts(entries)

        net = {e.participant: e.balance for e in entries}
        for t in transfers:
            assert t.amount > 0
            assert t.debtor != t.creditor
            net[t.debtor] += t.amount
            net[t.creditor] -= t.amount
        assert all(v == 0 for v in net.values())


class TestGroupBalances:

    @pytest.mark.asyncio
    async def test_balances_include_placeholders(self, storage, world, expenses, balances):
        ghost = await storage.insert_pending_participant(PendingParticipant(email="dan@example.com", name="Dan"))
        await expenses.create_expense(expense_input(
            world.group, world.alice, amount="90.00",
            splits=[
                SplitInput(participant=user_ref(world.alice.id), amount="30.00"),
                SplitInput(participant=user_ref(world.bob.id), amount="30.00"),
                SplitInput(participant=pending_ref(ghost.id), amount="30.00"),
            ],
        ))

        result = {b.participant: b for b in await balances.get_group_balances(world.group.id, world.bob.id)}

        assert result[user_ref(world.alice.id)].balance == Decimal("60.00")
        assert result[user_ref(world.bob.id)].balance == Decimal("-30.00")
        assert result[pending_ref(ghost.id)].balance == Decimal("-30.00")
        assert result[pending_ref(ghost.id)].display_name == "Dan"
        assert sum(b.balance for b in result.values()) == 0

    @pytest.mark.asyncio
    async def test_settlements_do_not_move_balances(self, world, expenses, settlements, balances):
        await expenses.create_expense(expense_input(
            world.group, world.alice, amount="20.00",
            splits=[
                SplitInput(participant=user_ref(world.alice.id), amount="10.00"),
                SplitInput(participant=user_ref(world.bob.id), amount="10.00"),
            ],
        ))
        await settlements.create_settlement(CreateSettlementInput(
            group_id=world.group.id,
            created_by=world.bob.id,
            payer=user_ref(world.bob.id),
            payee=user_ref(world.alice.id),
            amount="10.00",
            status="completed",
        ))

        bob = await balances.get_participant_balance(world.group.id, user_ref(world.bob.id), world.alice.id)
        assert bob.balance == Decimal("-10.00")

    @pytest.mark.asyncio
    async def test_unknown_participant_is_zero(self, world, balances):
        entry = await balances.get_participant_balance(world.group.id, user_ref(world.carol.id), world.alice.id)
        assert entry.balance == 0
        assert entry.display_name == "Carol"

    @pytest.mark.asyncio
    async def test_simplified_debts(self, world, expenses, balances):
        await expenses.create_expense(expense_input(
            world.group, world.alice, amount="50.00",
            splits=[SplitInput(participant=user_ref(world.bob.id), amount="50.00")],
        ))

        transfers = await balances.get_simplified_debts(world.group.id, world.alice.id)
        assert len(transfers) == 1
        assert transfers[0].debtor == user_ref(world.bob.id)
        assert transfers[0].creditor == user_ref(world.alice.id)
        assert transfers[0].amount == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_requires_membership(self, world, balances):
        with pytest.raises(NotGroupMemberError):
            await balances.get_group_balances(world.group.id, world.carol.id)


class TestUserBalances:

    @pytest.mark.asyncio
    async def test_overall_balance_per_group_and_friend_currency(
        self, storage, world, expenses, friend_expenses, balances
    ):
        euro_trip = await make_group(storage, world.alice, world.bob, currency="EUR")
        await expenses.create_expense(expense_input(
            world.group, world.alice, amount="40.00",
            splits=[SplitInput(participant=user_ref(world.bob.id), amount="40.00")],
        ))
        await expenses.create_expense(expense_input(
            euro_trip, world.bob, amount="12.00",
            splits=[SplitInput(participant=user_ref(world.alice.id), amount="12.00")],
        ))
        for currency in ("USD", "GBP"):
            await friend_expenses.create_friend_expense(FriendExpenseInput(
                friend_id=world.bob.id,
                created_by=world.alice.id,
                title="Coffee",
                amount="6.00",
                currency_code=currency,
                expense_date=date(2024, 5, 1),
                payments=[PaymentInput(participant=user_ref(world.bob.id), amount="6.00")],
                splits=[SplitInput(participant=user_ref(world.alice.id), amount="6.00")],
            ))

        overall = await balances.get_overall_user_balance(world.alice.id)

        by_group = {g.group_id: g for g in overall.groups if g.group_id is not None}
        assert by_group[world.group.id].balance == Decimal("40.00")
        assert by_group[euro_trip.id].balance == Decimal("-12.00")
        assert by_group[euro_trip.id].currency_code == "EUR"

        friends = [g for g in overall.groups if g.group_id is None]
        assert [f.currency_code for f in friends] == ["GBP", "USD"]
        assert all(f.balance == Decimal("-6.00") for f in friends)

    @pytest.mark.asyncio
    async def test_friend_balance(self, world, friend_expenses, balances):
        await friend_expenses.create_friend_expense(FriendExpenseInput(
            friend_id=world.bob.id,
            created_by=world.alice.id,
            title="Tickets",
            amount="30.00",
            expense_date=date(2024, 5, 1),
            payments=[PaymentInput(participant=user_ref(world.alice.id), amount="30.00")],
            splits=[
                SplitInput(participant=user_ref(world.alice.id), amount="15.00"),
                SplitInput(participant=user_ref(world.bob.id), amount="15.00"),
            ],
        ))

        mine = await balances.get_friend_balance(world.alice.id, world.bob.id)
        theirs = await balances.get_friend_balance(world.bob.id, world.alice.id)
        assert mine.balances == {"USD": Decimal("15.00")}
        assert theirs.balances == {"USD": Decimal("-15.00")}

    @pytest.mark.asyncio
    async def test_friend_balance_requires_friendship(self, world, balances):
        with pytest.raises(NotFriendsError):
            await balances.get_friend_balance(world.alice.id, world.carol.id)
