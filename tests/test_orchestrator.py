"""Tests for component wiring and the worker entry point."""

import pytest
import pytest_asyncio
from datetime import date

from app.main import parse_args
from conftest import make_group, make_user
from src.config import get_settings, validate_all_settings
from src.models import (
    CreateExpenseInput,
    CreateRecurringInput,
    PaymentInput,
    SplitInput,
    TemplatePaymentInput,
    TemplateSplitInput,
    user_ref,
)
from src.orchestrator import create_app_components
from src.services.storage import SQLiteLedgerStorage


@pytest_asyncio.fixture
async def components():
    storage = SQLiteLedgerStorage(path=":memory:", connect_attempts=1)
    built = create_app_components(get_settings(), storage=storage)
    await built.connect()
    yield built
    await built.close()


class TestComponents:

    @pytest.mark.asyncio
    async def test_services_share_one_storage(self, components):
        """An expense written by one service shows up in another's balances."""
        alice = await make_user(components.storage, "Alice")
        bob = await make_user(components.storage, "Bob")
        group = await make_group(components.storage, alice, bob)

        await components.expenses.create_expense(CreateExpenseInput(
            group_id=group.id,
            created_by=alice.id,
            title="Taxi",
            amount="24.00",
            expense_date=date(2024, 7, 1),
            payments=[PaymentInput(participant=user_ref(alice.id), amount="24.00")],
            splits=[
                SplitInput(participant=user_ref(alice.id), amount="12.00"),
                SplitInput(participant=user_ref(bob.id), amount="12.00"),
            ],
        ))

        transfers = await components.balances.get_simplified_debts(group.id, bob.id)
        assert [(t.debtor, t.creditor) for t in transfers] == [(user_ref(bob.id), user_ref(alice.id))]

        history = await components.activity.list_group_activities(group.id, bob.id)
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_job_processes_due_templates(self, components):
        alice = await make_user(components.storage, "Alice")
        group = await make_group(components.storage, alice)
        await components.recurring.create_template(CreateRecurringInput(
            group_id=group.id,
            created_by=alice.id,
            title="Streaming",
            amount="9.99",
            repeat_interval="monthly",
            day_of_month=5,
            start_date=date(2020, 1, 5),
            payments=[TemplatePaymentInput(user_id=alice.id, amount="9.99")],
            splits=[TemplateSplitInput(user_id=alice.id, amount="9.99")],
        ))

        report = await components.recurring_job.run_once()

        assert report.generated == 1
        assert components.recurring_job.last_report is report
        assert len(await components.storage.list_expenses_by_group(group.id)) == 1


class TestWorkerArgs:

    def test_defaults_to_long_running(self):
        assert parse_args([]).once is False

    def test_once_flag(self):
        assert parse_args(["--once"]).once is True


class TestSettings:

    def test_all_sections_load(self):
        results = validate_all_settings()
        assert all(results[name] for name in ("database", "ledger", "scheduler", "app"))

    def test_defaults(self):
        settings = get_settings()
        assert settings.ledger.search_max_limit == 100
        assert settings.ledger.invitation_ttl_days == 7
        assert settings.scheduler.run_hour == 2
