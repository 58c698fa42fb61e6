"""
Activity Logger

DESIGN DECISION: Every money-moving action in the ledger is logged.
This provides:
1. A group history members can read
2. Before/after snapshots of edited expenses
3. Debugging capability for the recurring job

The activity logger:
- Runs after the ledger change has committed
- Gracefully handles failures (a failed log never fails the ledger operation)
- Mirrors every event to the structured log, stored or not
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from src.errors import NotGroupMemberError
from src.models.audit import ActivityAction, ActivityEvent, ActivityEventBuilder
from src.models.identity import Invitation, MergeReport
from src.models.ledger import Expense, ExpenseWithLines, Settlement
from src.services.storage import ActivityStorageInterface, DirectoryStorageInterface


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog on top of the standard library logger.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog for local logging
configure_logging()


class ActivityLogger:
    """
    Central activity logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The activity table (for group history)
    """

    def __init__(
        self,
        storage: Optional[ActivityStorageInterface] = None,
        directory: Optional[DirectoryStorageInterface] = None,
    ):
        """
        Initialize activity logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
            directory: Used to check membership on history reads.
        """
        self._storage = storage
        self._directory = directory
        self._logger = structlog.get_logger("splitledger.activity")

    async def log(self, event: ActivityEvent) -> bool:
        """
        Log an activity event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("activity_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("activity_event", **log_dict)
        else:
            self._logger.info("activity_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "activity_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                    action=event.action.value,
                )
                return False

        return True

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def log_expense_created(self, entry: ExpenseWithLines, actor_id: UUID) -> None:
        await self.log(ActivityEventBuilder.expense_created(entry, actor_id))

    async def log_expense_updated(
        self,
        entry: ExpenseWithLines,
        before: Expense,
        actor_id: UUID,
    ) -> None:
        await self.log(ActivityEventBuilder.expense_updated(entry, before, actor_id))

    async def log_expense_deleted(self, expense: Expense, actor_id: UUID) -> None:
        await self.log(ActivityEventBuilder.expense_deleted(expense, actor_id))

    # -------------------------------------------------------------------------
    # Settlements
    # -------------------------------------------------------------------------

    async def log_settlement_created(self, settlement: Settlement, actor_id: UUID) -> None:
        await self.log(ActivityEventBuilder.settlement_created(settlement, actor_id))

    async def log_settlement_updated(self, settlement: Settlement, actor_id: UUID) -> None:
        await self.log(ActivityEventBuilder.settlement_updated(settlement, actor_id))

    async def log_settlement_status_changed(
        self,
        settlement: Settlement,
        old_status: str,
        actor_id: UUID,
    ) -> None:
        """Only logs when the status actually changed."""
        if settlement.status.value == old_status:
            return
        await self.log(
            ActivityEventBuilder.settlement_status_changed(settlement, old_status, actor_id)
        )

    async def log_settlement_deleted(self, settlement: Settlement, actor_id: UUID) -> None:
        await self.log(ActivityEventBuilder.settlement_deleted(settlement, actor_id))

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def log_invitation_created(self, invitation: Invitation) -> None:
        await self.log(ActivityEventBuilder.invitation_created(invitation))

    async def log_invitation_accepted(
        self,
        invitation: Invitation,
        user_id: UUID,
        already_member: bool = False,
    ) -> None:
        await self.log(
            ActivityEventBuilder.invitation_accepted(invitation, user_id, already_member)
        )

    async def log_participant_merged(self, group_id: UUID, report: MergeReport) -> None:
        await self.log(ActivityEventBuilder.participant_merged(group_id, report))

    # -------------------------------------------------------------------------
    # Recurring
    # -------------------------------------------------------------------------

    async def log_recurring_changed(
        self,
        action: ActivityAction,
        group_id: UUID,
        template_id: UUID,
        title: str,
        actor_id: UUID,
    ) -> None:
        await self.log(
            ActivityEventBuilder.recurring_changed(action, group_id, template_id, title, actor_id)
        )

    async def log_recurring_generated(
        self,
        group_id: UUID,
        template_id: UUID,
        expense_id: UUID,
        occurrence_date: date,
        actor_id: UUID,
    ) -> None:
        await self.log(
            ActivityEventBuilder.recurring_generated(
                group_id, template_id, expense_id, occurrence_date, actor_id
            )
        )

    async def log_recurring_failed(
        self,
        group_id: UUID,
        template_id: UUID,
        error_type: str,
        error_message: str,
    ) -> None:
        await self.log(
            ActivityEventBuilder.recurring_failed(group_id, template_id, error_type, error_message)
        )

    # -------------------------------------------------------------------------
    # History reads
    # -------------------------------------------------------------------------

    async def _require_member(self, group_id: UUID, requester_id: Optional[UUID]) -> None:
        if self._directory is None or requester_id is None:
            return
        membership = await self._directory.get_membership(group_id, requester_id)
        if membership is None or not membership.is_active:
            raise NotGroupMemberError(group_id, requester_id)

    async def list_group_activities(
        self,
        group_id: UUID,
        requester_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ActivityEvent]:
        """Newest first. Empty when no storage is configured."""
        await self._require_member(group_id, requester_id)
        if not self._storage:
            return []
        return await self._storage.list_group_events(group_id, limit=limit, offset=max(offset, 0))

    async def get_expense_history(self, expense_id: UUID) -> list[ActivityEvent]:
        """Every event recorded against one expense, oldest first."""
        if not self._storage:
            return []
        return await self._storage.list_entity_events("expense", expense_id)
