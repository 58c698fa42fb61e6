"""
Shared fixtures.

Every test gets a fresh in-memory SQLite ledger; nothing touches disk.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional

import pytest
import pytest_asyncio

from src.audit import ActivityLogger
from src.config import LedgerSettings
from src.ledger import (
    ExpenseService,
    FriendExpenseService,
    FriendSettlementService,
    SettlementService,
)
from src.models import (
    Category,
    CreateExpenseInput,
    Friendship,
    FriendshipStatus,
    Group,
    GroupMember,
    PaymentInput,
    SplitInput,
    User,
    user_ref,
)
from src.services.storage import SQLiteLedgerStorage


@dataclass
class World:
    """Alice and Bob share a group and are friends; Carol is an outsider."""

    alice: User
    bob: User
    carol: User
    group: Group
    category: Category


async def make_user(storage, name: str, email: Optional[str] = None) -> User:
    return await storage.create_user(
        User(name=name, email=email or f"{name.lower()}@example.com")
    )


async def make_group(storage, owner: User, *members: User, currency: str = "USD") -> Group:
    group = await storage.create_group(Group(name="Flat 4B", currency_code=currency, created_by=owner.id))
    for user in (owner, *members):
        await storage.add_member(GroupMember(group_id=group.id, user_id=user.id))
    return group


async def make_friends(storage, a: User, b: User, status=FriendshipStatus.ACCEPTED) -> Friendship:
    return await storage.save_friendship(Friendship(user_id=a.id, friend_id=b.id, status=status))


def expense_input(
    group: Group,
    creator: User,
    amount: str = "100.00",
    payments=None,
    splits=None,
    title: str = "Groceries",
    **extra,
) -> CreateExpenseInput:
    """Creator pays everything; split evenly with nobody else unless told."""
    return CreateExpenseInput(
        group_id=group.id,
        created_by=creator.id,
        title=title,
        amount=amount,
        expense_date=extra.pop("expense_date", date(2024, 3, 1)),
        payments=payments if payments is not None else [
            PaymentInput(participant=user_ref(creator.id), amount=amount)
        ],
        splits=splits if splits is not None else [
            SplitInput(participant=user_ref(creator.id), amount=amount)
        ],
        **extra,
    )


@pytest_asyncio.fixture
async def storage():
    store = SQLiteLedgerStorage(path=":memory:", busy_timeout_ms=1000, connect_attempts=1)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    return LedgerSettings(
        friend_default_currency="USD",
        search_default_limit=20,
        search_max_limit=100,
        invitation_ttl_days=7,
        invitation_token_bytes=32,
    )


@pytest.fixture
def activity(storage) -> ActivityLogger:
    return ActivityLogger(storage, storage)


@pytest_asyncio.fixture
async def world(storage) -> World:
    alice = await make_user(storage, "Alice")
    bob = await make_user(storage, "Bob")
    carol = await make_user(storage, "Carol")
    group = await make_group(storage, alice, bob)
    category = await storage.create_category(Category(group_id=group.id, name="Food"))
    await make_friends(storage, alice, bob)
    return World(alice=alice, bob=bob, carol=carol, group=group, category=category)


@pytest.fixture
def expenses(storage, activity, ledger_settings) -> ExpenseService:
    return ExpenseService(storage, activity, settings=ledger_settings)


@pytest.fixture
def friend_expenses(storage, activity, ledger_settings) -> FriendExpenseService:
    return FriendExpenseService(storage, activity, settings=ledger_settings)


@pytest.fixture
def settlements(storage, activity, ledger_settings) -> SettlementService:
    return SettlementService(storage, activity, ledger_settings)


@pytest.fixture
def friend_settlements(storage, ledger_settings) -> FriendSettlementService:
    return FriendSettlementService(storage, ledger_settings)
