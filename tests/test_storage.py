"""Tests for the SQLite ledger storage: transactions, constraints and round trips."""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from conftest import make_group, make_user
from src.models import (
    Expense,
    ExpenseKind,
    Payment,
    PendingParticipant,
    Split,
    User,
    pending_ref,
    user_ref,
)
from src.services.storage import (
    DuplicateError,
    SQLiteLedgerStorage,
    StorageConnectionError,
    StorageError,
)


def _expense(group, creator, amount="10.00") -> Expense:
    return Expense(
        group_id=group.id,
        kind=ExpenseKind.GROUP,
        title="Snacks",
        amount=Decimal(amount),
        currency_code="USD",
        expense_date=date(2024, 1, 2),
        created_by=creator.id,
    )


class TestConnection:

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with SQLiteLedgerStorage(path=":memory:", connect_attempts=1) as store:
            assert store.is_connected
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_file_database_is_created(self, tmp_path):
        path = tmp_path / "nested" / "ledger.db"
        store = SQLiteLedgerStorage(path=str(path), connect_attempts=1)
        await store.connect()
        try:
            user = await make_user(store, "Zoe")
            assert (await store.get_user(user.id)).email == "zoe@example.com"
        finally:
            await store.close()
        assert path.exists()

    @pytest.mark.asyncio
    async def test_use_before_connect(self):
        store = SQLiteLedgerStorage(path=":memory:", connect_attempts=1)
        with pytest.raises(StorageConnectionError):
            await store.get_user(uuid4())


class TestTransactions:

    @pytest.mark.asyncio
    async def test_error_rolls_back_everything(self, storage):
        with pytest.raises(RuntimeError):
            async with storage.transaction():
                await storage.create_user(User(name="Temp", email="temp@example.com"))
                raise RuntimeError("boom")
        assert await storage.get_user_by_email("temp@example.com") is None

    @pytest.mark.asyncio
    async def test_failed_line_insert_discards_expense(self, storage):
        """An expense never survives without its lines."""
        alice = await make_user(storage, "Alice")
        group = await make_group(storage, alice)
        expense = _expense(group, alice)

        with pytest.raises(StorageError):
            async with storage.transaction():
                await storage.insert_expense(expense)
                await storage.insert_payments([
                    Payment(expense_id=expense.id, participant=user_ref(uuid4()), amount=Decimal("10.00")),
                ])

        assert await storage.get_expense(expense.id) is None

    @pytest.mark.asyncio
    async def test_nested_transactions_join(self, storage):
        with pytest.raises(RuntimeError):
            async with storage.transaction():
                async with storage.transaction():
                    await storage.create_user(User(name="Inner", email="inner@example.com"))
                raise RuntimeError("outer fails after inner finished")
        assert await storage.get_user_by_email("inner@example.com") is None

    @pytest.mark.asyncio
    async def test_savepoint_rolls_back_only_its_part(self, storage):
        async with storage.transaction():
            await storage.create_user(User(name="Kept", email="kept@example.com"))
            with pytest.raises(RuntimeError):
                async with storage.savepoint("partial"):
                    await storage.create_user(User(name="Dropped", email="dropped@example.com"))
                    raise RuntimeError("undo this part")

        assert await storage.get_user_by_email("kept@example.com") is not None
        assert await storage.get_user_by_email("dropped@example.com") is None

    @pytest.mark.asyncio
    async def test_savepoint_needs_transaction(self, storage):
        with pytest.raises(StorageError):
            async with storage.savepoint("alone"):
                pass

    @pytest.mark.asyncio
    async def test_duplicate_email(self, storage):
        await make_user(storage, "Alice")
        with pytest.raises(DuplicateError):
            await storage.create_user(User(name="Alice Two", email="ALICE@example.com"))


class TestLedgerRows:

    @pytest.mark.asyncio
    async def test_lines_round_trip_with_pending_participants(self, storage):
        alice = await make_user(storage, "Alice")
        group = await make_group(storage, alice)
        ghost = await storage.insert_pending_participant(PendingParticipant(email="ghost@example.com"))
        expense = _expense(group, alice, amount="0.30")

        async with storage.transaction():
            await storage.insert_expense(expense)
            await storage.insert_payments([
                Payment(expense_id=expense.id, participant=user_ref(alice.id), amount=Decimal("0.30")),
            ])
            await storage.insert_splits([
                Split(expense_id=expense.id, participant=user_ref(alice.id), amount=Decimal("0.10")),
                Split(expense_id=expense.id, participant=pending_ref(ghost.id), amount=Decimal("0.20")),
            ])

        stored = await storage.get_expense(expense.id)
        assert stored.amount == Decimal("0.30")
        splits = await storage.list_splits(expense.id)
        assert [s.participant for s in splits] == [user_ref(alice.id), pending_ref(ghost.id)]
        assert sum(s.amount for s in splits) == Decimal("0.30")

    @pytest.mark.asyncio
    async def test_rebind_moves_pending_lines(self, storage):
        alice = await make_user(storage, "Alice")
        group = await make_group(storage, alice)
        ghost = await storage.insert_pending_participant(PendingParticipant(email="ghost@example.com"))
        expense = _expense(group, alice)

        async with storage.transaction():
            await storage.insert_expense(expense)
            await storage.insert_payments([
                Payment(expense_id=expense.id, participant=pending_ref(ghost.id), amount=Decimal("10.00")),
            ])
            await storage.insert_splits([
                Split(expense_id=expense.id, participant=user_ref(alice.id), amount=Decimal("10.00")),
            ])

        ghost_user = await make_user(storage, "Ghost")
        assert await storage.rebind_payments(ghost.id, ghost_user.id) == 1
        assert await storage.rebind_splits(ghost.id, ghost_user.id) == 0

        payments = await storage.list_payments(expense.id)
        assert payments[0].participant == user_ref(ghost_user.id)
        assert await storage.delete_pending_participant(ghost.id) is True

    @pytest.mark.asyncio
    async def test_referenced_placeholder_cannot_be_deleted(self, storage):
        alice = await make_user(storage, "Alice")
        group = await make_group(storage, alice)
        ghost = await storage.insert_pending_participant(PendingParticipant(email="ghost@example.com"))
        expense = _expense(group, alice)

        async with storage.transaction():
            await storage.insert_expense(expense)
            await storage.insert_payments([
                Payment(expense_id=expense.id, participant=user_ref(alice.id), amount=Decimal("10.00")),
            ])
            await storage.insert_splits([
                Split(expense_id=expense.id, participant=pending_ref(ghost.id), amount=Decimal("10.00")),
            ])

        with pytest.raises(StorageError):
            await storage.delete_pending_participant(ghost.id)
        assert await storage.get_pending_participant(ghost.id) is not None
