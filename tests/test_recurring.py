"""Tests for recurring templates, generation and the batch job."""

import asyncio
import pytest
import pytest_asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

from src.config import SchedulerSettings
from src.errors import (
    InvalidDateRangeError,
    InvalidIntervalError,
    NotGroupMemberError,
    OccurrenceNotDueError,
    PaymentTotalMismatchError,
    SplitTotalMismatchError,
    TemplateInactiveError,
    TemplateNotFoundError,
    TitleRequiredError,
)
from src.models import (
    ActivityAction,
    CreateRecurringInput,
    GenerationStatus,
    GroupMember,
    MemberStatus,
    ProcessingReport,
    RepeatInterval,
    TemplatePaymentInput,
    TemplateSplitInput,
    UpdateRecurringInput,
)
from src.recurring import RecurringExpenseJob, RecurringExpenseService
from src.services.storage import StorageError


@pytest.fixture
def recurring(storage, expenses, activity) -> RecurringExpenseService:
    return RecurringExpenseService(storage, expenses=expenses, activity=activity)


def _rent(world, creator=None, **overrides) -> CreateRecurringInput:
    creator = creator or world.alice
    values = dict(
        group_id=world.group.id,
        created_by=creator.id,
        title="Rent",
        amount="1200.00",
        repeat_interval="monthly",
        day_of_month=1,
        start_date=date(2024, 1, 1),
        payments=[TemplatePaymentInput(user_id=creator.id, amount="1200.00")],
        splits=[
            TemplateSplitInput(user_id=world.alice.id, amount="600.00"),
            TemplateSplitInput(user_id=world.bob.id, amount="600.00"),
        ],
    )
    values.update(overrides)
    return CreateRecurringInput(**values)


def _daily(world, **overrides) -> CreateRecurringInput:
    values = dict(
        repeat_interval="daily",
        day_of_month=None,
        title="Coffee",
        amount="4.00",
        start_date=date(2024, 3, 1),
        payments=[TemplatePaymentInput(user_id=world.alice.id, amount="4.00")],
        splits=[TemplateSplitInput(user_id=world.alice.id, amount="4.00")],
    )
    values.update(overrides)
    return _rent(world, **values)


class TestCreateTemplate:

    @pytest.mark.asyncio
    async def test_create(self, storage, world, recurring):
        created = await recurring.create_template(_rent(world))

        template = created.template
        assert template.repeat_interval == RepeatInterval.MONTHLY
        assert template.next_occurrence_date == date(2024, 1, 1)
        assert template.is_active is True
        assert template.currency_code == "USD"
        assert len(await storage.list_template_splits(template.id)) == 2

        events = await storage.list_group_events(world.group.id, limit=5, offset=0)
        assert events[0].action == ActivityAction.RECURRING_CREATED

    @pytest.mark.asyncio
    async def test_interval_is_case_insensitive(self, world, recurring):
        created = await recurring.create_template(_rent(world, repeat_interval=" Monthly "))
        assert created.template.repeat_interval == RepeatInterval.MONTHLY

    @pytest.mark.asyncio
    async def test_weekly_requires_day_of_week(self, world, recurring):
        with pytest.raises(InvalidIntervalError):
            await recurring.create_template(_rent(world, repeat_interval="weekly", day_of_month=None))

    @pytest.mark.asyncio
    async def test_interval_checked_before_amount(self, world, recurring):
        with pytest.raises(InvalidIntervalError):
            await recurring.create_template(_rent(world, repeat_interval="hourly", amount="-1"))

    @pytest.mark.asyncio
    async def test_title_and_date_range(self, world, recurring):
        with pytest.raises(TitleRequiredError):
            await recurring.create_template(_rent(world, title=" "))
        with pytest.raises(InvalidDateRangeError):
            await recurring.create_template(_rent(world, end_date=date(2023, 12, 31)))

    @pytest.mark.asyncio
    async def test_lines_must_add_up(self, storage, world, recurring):
        with pytest.raises(SplitTotalMismatchError):
            await recurring.create_template(_rent(world, splits=[
                TemplateSplitInput(user_id=world.alice.id, amount="600.00"),
            ]))
        assert await storage.list_templates_by_group(world.group.id) == []

    @pytest.mark.asyncio
    async def test_non_member(self, world, recurring):
        with pytest.raises(NotGroupMemberError):
            await recurring.create_template(_rent(world, creator=world.carol))


class TestUpdateTemplate:

    @pytest.mark.asyncio
    async def test_partial_update_keeps_lines(self, world, recurring):
        created = await recurring.create_template(_rent(world))

        updated = await recurring.update_template(UpdateRecurringInput(
            template_id=created.template.id,
            updated_by=world.bob.id,
            title="Rent (new lease)",
            day_of_month=15,
        ))

        assert updated.template.title == "Rent (new lease)"
        assert updated.template.day_of_month == 15
        assert updated.template.amount == Decimal("1200.00")
        assert len(updated.splits) == 2

    @pytest.mark.asyncio
    async def test_amount_change_needs_matching_lines(self, world, recurring):
        created = await recurring.create_template(_rent(world))
        with pytest.raises(PaymentTotalMismatchError):
            await recurring.update_template(UpdateRecurringInput(
                template_id=created.template.id,
                updated_by=world.alice.id,
                amount="1300.00",
            ))

    @pytest.mark.asyncio
    async def test_replace_lines(self, world, recurring):
        created = await recurring.create_template(_rent(world))
        updated = await recurring.update_template(UpdateRecurringInput(
            template_id=created.template.id,
            updated_by=world.alice.id,
            amount="1300.00",
            payments=[TemplatePaymentInput(user_id=world.bob.id, amount="1300.00")],
            splits=[
                TemplateSplitInput(user_id=world.alice.id, amount="650.00"),
                TemplateSplitInput(user_id=world.bob.id, amount="650.00"),
            ],
        ))
        assert [p.user_id for p in updated.payments] == [world.bob.id]
        assert sum(s.amount for s in updated.splits) == Decimal("1300.00")

    @pytest.mark.asyncio
    async def test_explicit_none_clears_end_date(self, world, recurring):
        created = await recurring.create_template(_rent(world, end_date=date(2024, 12, 31)))
        updated = await recurring.update_template(UpdateRecurringInput(
            template_id=created.template.id,
            updated_by=world.alice.id,
            end_date=None,
        ))
        assert updated.template.end_date is None

    @pytest.mark.asyncio
    async def test_delete(self, world, recurring):
        created = await recurring.create_template(_rent(world))
        await recurring.delete_template(created.template.id, world.bob.id)
        with pytest.raises(TemplateNotFoundError):
            await recurring.get_template(created.template.id, world.alice.id)


class TestGenerate:

    @pytest.mark.asyncio
    async def test_generates_expense_and_advances(self, storage, world, recurring):
        created = await recurring.create_template(_rent(world))

        result = await recurring.generate_from_template(
            created.template.id, world.alice.id, as_of=date(2024, 1, 5)
        )

        assert result.occurrence_date == date(2024, 1, 1)
        assert result.expense.expense.expense_date == date(2024, 1, 1)
        assert result.expense.expense.title == "Rent"
        assert result.expense.total_owed == Decimal("1200.00")
        assert result.template.next_occurrence_date == date(2024, 2, 1)

        stored = await storage.get_template(created.template.id)
        assert stored.next_occurrence_date == date(2024, 2, 1)
        assert stored.is_active is True

        actions = [e.action for e in await storage.list_group_events(world.group.id, limit=10, offset=0)]
        assert actions[:2] == [ActivityAction.RECURRING_GENERATED, ActivityAction.EXPENSE_CREATED]

    @pytest.mark.asyncio
    async def test_not_due(self, storage, world, recurring):
        created = await recurring.create_template(_rent(world, start_date=date(2024, 6, 1)))
        with pytest.raises(OccurrenceNotDueError):
            await recurring.generate_from_template(created.template.id, world.alice.id, as_of=date(2024, 5, 31))
        assert await storage.list_expenses_by_group(world.group.id) == []

    @pytest.mark.asyncio
    async def test_daily_template_runs_out(self, storage, world, recurring):
        """The occurrence that would land on the end date is never generated."""
        created = await recurring.create_template(_daily(world, end_date=date(2024, 3, 3)))
        template_id = created.template.id

        first = await recurring.generate_from_template(template_id, world.alice.id, as_of=date(2024, 3, 5))
        assert first.template.is_active is True
        second = await recurring.generate_from_template(template_id, world.alice.id, as_of=date(2024, 3, 5))
        assert second.occurrence_date == date(2024, 3, 2)
        assert second.template.is_active is False

        with pytest.raises(TemplateInactiveError):
            await recurring.generate_from_template(template_id, world.alice.id, as_of=date(2024, 3, 5))
        assert len(await storage.list_expenses_by_group(world.group.id)) == 2

    @pytest.mark.asyncio
    async def test_overlapping_calls_generate_once(self, storage, world, recurring):
        created = await recurring.create_template(_daily(world))
        template_id = created.template.id

        results = await asyncio.gather(
            recurring.generate_from_template(template_id, world.alice.id, as_of=date(2024, 3, 1)),
            recurring.generate_from_template(template_id, world.alice.id, as_of=date(2024, 3, 1)),
            return_exceptions=True,
        )

        assert sorted(type(r).__name__ for r in results) == ["GenerationResult", "OccurrenceNotDueError"]
        assert len(await storage.list_expenses_by_group(world.group.id)) == 1
        assert (await storage.get_template(template_id)).next_occurrence_date == date(2024, 3, 2)

    @pytest.mark.asyncio
    async def test_batch_and_manual_generation_overlap(self, storage, world, recurring):
        created = await recurring.create_template(_daily(world))

        await asyncio.gather(
            recurring.generate_from_template(created.template.id, world.alice.id, as_of=date(2024, 3, 1)),
            recurring.process_due_recurring_expenses(as_of=date(2024, 3, 1)),
            return_exceptions=True,
        )

        expenses = await storage.list_expenses_by_group(world.group.id)
        assert [e.expense_date for e in expenses] == [date(2024, 3, 1)]
        events = await storage.list_group_events(world.group.id, limit=20, offset=0)
        assert [e.action for e in events].count(ActivityAction.RECURRING_GENERATED) == 1

    @pytest.mark.asyncio
    async def test_failed_advance_discards_the_expense(self, storage, world, recurring, monkeypatch):
        created = await recurring.create_template(_rent(world))

        async def broken_advance(*args):
            raise StorageError("schedule row is locked")

        monkeypatch.setattr(storage, "advance_template", broken_advance)

        with pytest.raises(StorageError):
            await recurring.generate_from_template(created.template.id, world.alice.id, as_of=date(2024, 1, 5))

        assert await storage.list_expenses_by_group(world.group.id) == []
        stored = await storage.get_template(created.template.id)
        assert stored.next_occurrence_date == date(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_advance_from_a_stale_date_is_refused(self, storage, world, recurring):
        created = await recurring.create_template(_rent(world))
        await recurring.generate_from_template(created.template.id, world.alice.id, as_of=date(2024, 1, 5))

        moved = await storage.advance_template(
            created.template.id, date(2024, 1, 1), date(2024, 2, 1), True
        )
        assert moved is False

    @pytest.mark.asyncio
    async def test_unknown_template(self, world, recurring):
        with pytest.raises(TemplateNotFoundError):
            await recurring.generate_from_template(uuid4(), world.alice.id)


class TestProcessDue:

    @pytest.mark.asyncio
    async def test_batch_isolates_failures(self, storage, world, recurring):
        """A template whose creator left the group fails alone."""
        healthy = await recurring.create_template(_rent(world))
        orphaned = await recurring.create_template(_daily(world, creator=world.bob, payments=[
            TemplatePaymentInput(user_id=world.bob.id, amount="4.00"),
        ]))
        await storage.add_member(GroupMember(
            group_id=world.group.id, user_id=world.bob.id, status=MemberStatus.INACTIVE
        ))

        report = await recurring.process_due_recurring_expenses(as_of=date(2024, 3, 1))

        by_template = {o.template_id: o for o in report.outcomes}
        assert by_template[healthy.template.id].status == GenerationStatus.GENERATED
        assert by_template[orphaned.template.id].status == GenerationStatus.FAILED
        assert by_template[orphaned.template.id].error_type == "NotGroupMemberError"
        assert report.generated == 1
        assert report.failed == 1
        assert report.finished_at is not None

        stuck = await storage.get_template(orphaned.template.id)
        assert stuck.next_occurrence_date == date(2024, 3, 1)

        actions = [e.action for e in await storage.list_group_events(world.group.id, limit=20, offset=0)]
        assert ActivityAction.RECURRING_GENERATION_FAILED in actions

    @pytest.mark.asyncio
    async def test_one_occurrence_per_run(self, storage, world, recurring):
        """A run catches a template up by one occurrence, not all of them."""
        created = await recurring.create_template(_rent(world))
        await recurring.process_due_recurring_expenses(as_of=date(2024, 3, 15))

        stored = await storage.get_template(created.template.id)
        assert stored.next_occurrence_date == date(2024, 2, 1)

    @pytest.mark.asyncio
    async def test_nothing_due(self, world, recurring):
        await recurring.create_template(_rent(world, start_date=date(2030, 1, 1)))
        report = await recurring.process_due_recurring_expenses(as_of=date(2024, 1, 1))
        assert report.outcomes == []


class FakeRecurringService:

    def __init__(self, report: ProcessingReport):
        self.report = report
        self.calls = 0

    async def process_due_recurring_expenses(self, as_of=None) -> ProcessingReport:
        self.calls += 1
        return self.report


@pytest_asyncio.fixture
async def idle_job():
    service = FakeRecurringService(ProcessingReport(as_of=date(2024, 1, 1)))
    job = RecurringExpenseJob(
        service,
        SchedulerSettings(enabled=True, run_hour=2, run_minute=0, interval_hours=24),
    )
    yield job
    await job.stop()


class TestRecurringExpenseJob:

    @pytest.mark.asyncio
    async def test_run_once_keeps_report(self, idle_job):
        report = await idle_job.run_once()
        assert idle_job.last_report is report
        assert idle_job._service.calls == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, idle_job):
        idle_job.start()
        assert idle_job.running is True
        await idle_job.stop()
        assert idle_job.running is False

    @pytest.mark.asyncio
    async def test_disabled_job_never_starts(self):
        job = RecurringExpenseJob(
            FakeRecurringService(ProcessingReport(as_of=date(2024, 1, 1))),
            SchedulerSettings(enabled=False),
        )
        job.start()
        assert job.running is False
