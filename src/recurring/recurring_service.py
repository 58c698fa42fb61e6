"""
Recurring Expense Service

Templates that periodically turn into real group expenses.

State machine per template:

    ACTIVE --(due, generation succeeds)--> ACTIVE (next date advanced)
    ACTIVE --(next date reaches end date)--> INACTIVE (terminal)

CRITICAL RULES:
1. Generation creates the expense and advances the schedule in ONE
   transaction; if the expense cannot be created the schedule stays put
2. A batch run isolates templates: one failure never stops the rest
3. Every batch outcome is reported, including failures
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from src.amounts import parse_positive_amount
from src.audit import ActivityLogger
from src.errors import (
    InvalidDateRangeError,
    OccurrenceNotDueError,
    TemplateInactiveError,
    TemplateNotFoundError,
    TitleRequiredError,
)
from src.ledger.access import AccessGuard, resolve_currency
from src.ledger.expense_service import ExpenseService
from src.models.audit import ActivityAction
from src.models.common import utcnow
from src.models.ledger import CreateExpenseInput, PaymentInput, SplitInput
from src.models.participant import UserRef
from src.models.recurring import (
    CreateRecurringInput,
    GenerationOutcome,
    GenerationResult,
    GenerationStatus,
    ProcessingReport,
    RecurringTemplate,
    RecurringTemplateWithLines,
    TemplatePayment,
    TemplateSplit,
    UpdateRecurringInput,
)
from src.recurring.schedule import (
    next_occurrence,
    normalize_interval,
    should_deactivate,
    validate_interval_fields,
)
from src.services.storage import LedgerStorage
from src.validation import LedgerValidator, ValidatedPayment, ValidatedSplit


logger = structlog.get_logger(__name__)


def _today() -> date:
    return utcnow().date()


def _payment_inputs(lines) -> list[PaymentInput]:
    """Template payment lines (input or stored) as ledger payment inputs."""
    return [
        PaymentInput(participant=UserRef(user_id=line.user_id), amount=line.amount, method=line.method)
        for line in lines
    ]


def _split_inputs(lines) -> list[SplitInput]:
    return [
        SplitInput(
            participant=UserRef(user_id=line.user_id),
            amount=line.amount,
            split_type=line.split_type,
            share_value=line.share_value,
        )
        for line in lines
    ]


def _template_lines(
    template_id: UUID,
    payments: list[ValidatedPayment],
    splits: list[ValidatedSplit],
) -> tuple[list[TemplatePayment], list[TemplateSplit]]:
    return (
        [
            TemplatePayment(
                template_id=template_id,
                user_id=p.participant.id,
                amount=p.amount,
                method=p.method,
            )
            for p in payments
        ],
        [
            TemplateSplit(
                template_id=template_id,
                user_id=s.participant.id,
                amount=s.amount,
                split_type=s.split_type,
                share_value=s.share_value,
            )
            for s in splits
        ],
    )


class RecurringExpenseService:

    def __init__(
        self,
        storage: LedgerStorage,
        expenses: Optional[ExpenseService] = None,
        activity: Optional[ActivityLogger] = None,
        validator: Optional[LedgerValidator] = None,
    ):
        self._storage = storage
        self._activity = activity or ActivityLogger(storage, storage)
        self._validator = validator or LedgerValidator(storage, storage)
        self._expenses = expenses or ExpenseService(
            storage, activity=self._activity, validator=self._validator
        )
        self._guard = AccessGuard(storage)

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    async def create_template(self, data: CreateRecurringInput) -> RecurringTemplateWithLines:
        """
        Create a template. The first occurrence is the start date.

        Checks, in order: group, membership, interval, interval fields,
        amount, currency, title, date range, payments, splits, then the
        category and the accounts named in the lines.
        """
        group = await self._guard.require_group_member(data.group_id, data.created_by)

        interval = normalize_interval(data.repeat_interval)
        validate_interval_fields(interval, data.day_of_month, data.day_of_week)
        amount = parse_positive_amount(data.amount, field="amount")
        currency = resolve_currency(data.currency_code, group.currency_code)

        title = (data.title or "").strip()
        if not title:
            raise TitleRequiredError()
        if data.end_date is not None and data.end_date < data.start_date:
            raise InvalidDateRangeError()

        payments = self._validator.validate_payments(amount, _payment_inputs(data.payments))
        splits = self._validator.validate_splits(amount, _split_inputs(data.splits))
        await self._validator.validate_category(data.category_id, group.id)
        await self._validator.validate_participants(
            [line.participant for line in [*payments, *splits]]
        )

        now = utcnow()
        template = RecurringTemplate(
            group_id=group.id,
            title=title,
            notes=data.notes or None,
            amount=amount,
            currency_code=currency,
            category_id=data.category_id,
            repeat_interval=interval,
            day_of_week=data.day_of_week,
            day_of_month=data.day_of_month,
            start_date=data.start_date,
            end_date=data.end_date,
            next_occurrence_date=data.start_date,
            is_active=True,
            created_by=data.created_by,
            created_at=now,
            updated_at=now,
        )
        template_payments, template_splits = _template_lines(template.id, payments, splits)

        async with self._storage.transaction():
            await self._storage.insert_template(template)
            await self._storage.insert_template_lines(template_payments, template_splits)

        await self._activity.log_recurring_changed(
            ActivityAction.RECURRING_CREATED, group.id, template.id, title, data.created_by
        )
        return RecurringTemplateWithLines(
            template=template, payments=template_payments, splits=template_splits
        )

    async def _require_template(self, template_id: UUID) -> RecurringTemplate:
        template = await self._storage.get_template(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    async def get_template(self, template_id: UUID, requester_id: UUID) -> RecurringTemplateWithLines:
        template = await self._require_template(template_id)
        await self._guard.require_member(template.group_id, requester_id)
        return RecurringTemplateWithLines(
            template=template,
            payments=await self._storage.list_template_payments(template_id),
            splits=await self._storage.list_template_splits(template_id),
        )

    async def list_templates_by_group(
        self,
        group_id: UUID,
        requester_id: UUID,
    ) -> list[RecurringTemplate]:
        await self._guard.require_group_member(group_id, requester_id)
        return await self._storage.list_templates_by_group(group_id)

    async def update_template(self, data: UpdateRecurringInput) -> RecurringTemplateWithLines:
        """
        Apply the fields that were set.

        The payments and splits that will be stored (new ones if given,
        otherwise the current ones) must still add up to the amount.
        """
        existing = await self._require_template(data.template_id)
        group = await self._guard.require_group_member(existing.group_id, data.updated_by)
        given = data.model_fields_set

        def pick(field):
            return getattr(data, field) if field in given else getattr(existing, field)

        interval = (
            normalize_interval(data.repeat_interval)
            if "repeat_interval" in given and data.repeat_interval is not None
            else existing.repeat_interval
        )
        day_of_month = pick("day_of_month")
        day_of_week = pick("day_of_week")
        validate_interval_fields(interval, day_of_month, day_of_week)

        amount = (
            parse_positive_amount(data.amount, field="amount")
            if "amount" in given and data.amount is not None
            else existing.amount
        )
        currency = (
            resolve_currency(data.currency_code, group.currency_code)
            if "currency_code" in given
            else existing.currency_code
        )

        title = existing.title
        if "title" in given:
            title = (data.title or "").strip()
            if not title:
                raise TitleRequiredError()

        start_date = data.start_date if "start_date" in given and data.start_date else existing.start_date
        end_date = pick("end_date")
        if end_date is not None and end_date < start_date:
            raise InvalidDateRangeError()

        replace_payments = "payments" in given and data.payments is not None
        replace_splits = "splits" in given and data.splits is not None
        payments = self._validator.validate_payments(
            amount,
            _payment_inputs(
                data.payments if replace_payments
                else await self._storage.list_template_payments(existing.id)
            ),
        )
        splits = self._validator.validate_splits(
            amount,
            _split_inputs(
                data.splits if replace_splits
                else await self._storage.list_template_splits(existing.id)
            ),
        )

        category_id = pick("category_id")
        await self._validator.validate_category(category_id, group.id)
        if replace_payments or replace_splits:
            await self._validator.validate_participants(
                [line.participant for line in [*payments, *splits]]
            )

        updated = existing.model_copy(update={
            "title": title,
            "notes": (data.notes or None) if "notes" in given else existing.notes,
            "amount": amount,
            "currency_code": currency,
            "category_id": category_id,
            "repeat_interval": interval,
            "day_of_month": day_of_month,
            "day_of_week": day_of_week,
            "start_date": start_date,
            "end_date": end_date,
            "next_occurrence_date": (
                data.next_occurrence_date
                if "next_occurrence_date" in given and data.next_occurrence_date
                else existing.next_occurrence_date
            ),
            "is_active": (
                data.is_active
                if "is_active" in given and data.is_active is not None
                else existing.is_active
            ),
            "updated_at": utcnow(),
            "updated_by": data.updated_by,
        })
        template_payments, template_splits = _template_lines(updated.id, payments, splits)

        async with self._storage.transaction():
            await self._storage.update_template(updated)
            if replace_payments or replace_splits:
                await self._storage.delete_template_lines(updated.id)
                await self._storage.insert_template_lines(template_payments, template_splits)

        await self._activity.log_recurring_changed(
            ActivityAction.RECURRING_UPDATED, group.id, updated.id, updated.title, data.updated_by
        )
        return RecurringTemplateWithLines(
            template=updated,
            payments=await self._storage.list_template_payments(updated.id),
            splits=await self._storage.list_template_splits(updated.id),
        )

    async def delete_template(self, template_id: UUID, requester_id: UUID) -> None:
        template = await self._require_template(template_id)
        await self._guard.require_group_member(template.group_id, requester_id)

        async with self._storage.transaction():
            if not await self._storage.delete_template(template_id):
                raise TemplateNotFoundError(template_id)

        await self._activity.log_recurring_changed(
            ActivityAction.RECURRING_DELETED,
            template.group_id,
            template.id,
            template.title,
            requester_id,
        )

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate_from_template(
        self,
        template_id: UUID,
        actor_id: UUID,
        as_of: Optional[date] = None,
    ) -> GenerationResult:
        """
        Materialize the template's next occurrence as a group expense.

        The template is re-read inside the transaction and the schedule only
        advances from the occurrence that was generated, so overlapping
        calls for the same template produce at most one expense for it.

        Raises:
            TemplateNotFoundError
            NotGroupMemberError: actor left the group
            TemplateInactiveError: template has been deactivated
            OccurrenceNotDueError: next occurrence is after ``as_of``
            Any ExpenseService error; the schedule is not advanced then
        """
        as_of = as_of or _today()
        template = await self._require_template(template_id)
        await self._guard.require_group_member(template.group_id, actor_id)

        async with self._storage.transaction():
            template = await self._require_template(template_id)
            if not template.is_active:
                raise TemplateInactiveError(template.id)
            if template.next_occurrence_date > as_of:
                raise OccurrenceNotDueError(template.id, template.next_occurrence_date)

            occurrence = template.next_occurrence_date
            expense_input = CreateExpenseInput(
                group_id=template.group_id,
                created_by=actor_id,
                title=template.title,
                notes=template.notes,
                amount=template.amount,
                currency_code=template.currency_code,
                expense_date=occurrence,
                category_id=template.category_id,
                payments=_payment_inputs(await self._storage.list_template_payments(template.id)),
                splits=_split_inputs(await self._storage.list_template_splits(template.id)),
            )
            next_date = next_occurrence(occurrence, template.repeat_interval, template.day_of_month)
            is_active = not should_deactivate(next_date, template.end_date)

            entry = await self._expenses.create_expense(expense_input, log_activity=False)
            if not await self._storage.advance_template(template.id, occurrence, next_date, is_active):
                raise OccurrenceNotDueError(template.id, occurrence)

        advanced = template.model_copy(update={
            "next_occurrence_date": next_date,
            "is_active": is_active,
        })
        logger.info(
            "recurring_expense_generated",
            template_id=str(template.id),
            expense_id=str(entry.expense.id),
            occurrence_date=occurrence.isoformat(),
            next_occurrence_date=next_date.isoformat(),
            is_active=is_active,
        )
        await self._activity.log_expense_created(entry, actor_id)
        await self._activity.log_recurring_generated(
            template.group_id, template.id, entry.expense.id, occurrence, actor_id
        )
        return GenerationResult(expense=entry, template=advanced, occurrence_date=occurrence)

    async def process_due_recurring_expenses(
        self,
        as_of: Optional[date] = None,
    ) -> ProcessingReport:
        """
        Generate every due template, each as its original creator.

        A template that fails is recorded and skipped; the rest still run.
        A template that stopped being due since the query (another run got
        to it first) is reported as skipped.
        """
        as_of = as_of or _today()
        report = ProcessingReport(as_of=as_of)
        due = await self._storage.list_due_templates(as_of)
        logger.info("recurring_run_started", run_id=str(report.run_id), due=len(due))

        for template in due:
            try:
                result = await self.generate_from_template(template.id, template.created_by, as_of)
            except (TemplateInactiveError, OccurrenceNotDueError) as e:
                report.outcomes.append(GenerationOutcome(
                    template_id=template.id,
                    status=GenerationStatus.SKIPPED,
                    error_type=type(e).__name__,
                    error_message=str(e),
                ))
                continue
            except Exception as e:
                logger.warning(
                    "recurring_generation_failed",
                    template_id=str(template.id),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                await self._activity.log_recurring_failed(
                    template.group_id, template.id, type(e).__name__, str(e)
                )
                report.outcomes.append(GenerationOutcome(
                    template_id=template.id,
                    status=GenerationStatus.FAILED,
                    occurrence_date=template.next_occurrence_date,
                    error_type=type(e).__name__,
                    error_message=str(e),
                ))
                continue

            report.outcomes.append(GenerationOutcome(
                template_id=template.id,
                status=GenerationStatus.GENERATED,
                occurrence_date=result.occurrence_date,
                expense_id=result.expense.expense.id,
            ))

        report.finished_at = utcnow()
        logger.info(
            "recurring_run_finished",
            run_id=str(report.run_id),
            generated=report.generated,
            skipped=report.skipped,
            failed=report.failed,
        )
        return report
