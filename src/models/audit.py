"""
Activity Models for Split Ledger

Every money-moving action (expense, settlement, invitation merge, recurring
generation) leaves an activity event. Group members read these as the
group's history; operators read the same events in the structured log.

DESIGN DECISION: Activity logs are append-only. We never delete or modify them.
Recording one is a side effect of a committed change and never part of it.
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from src.models.common import utcnow
from src.models.identity import Invitation, MergeReport
from src.models.ledger import Expense, ExpenseWithLines, Settlement


ACTIVITY_METADATA_VERSION = 1


class ActivityAction(str, Enum):
    """Actions recorded in the activity trail."""
    # Expenses
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # Settlements
    SETTLEMENT_CREATED = "settlement_created"
    SETTLEMENT_UPDATED = "settlement_updated"
    SETTLEMENT_COMPLETED = "settlement_completed"
    SETTLEMENT_STATUS_UPDATED = "settlement_status_updated"
    SETTLEMENT_DELETED = "settlement_deleted"

    # Identity
    INVITATION_CREATED = "invitation_created"
    INVITATION_ACCEPTED = "invitation_accepted"
    PENDING_PARTICIPANT_MERGED = "pending_participant_merged"

    # Recurring
    RECURRING_CREATED = "recurring_created"
    RECURRING_UPDATED = "recurring_updated"
    RECURRING_DELETED = "recurring_deleted"
    RECURRING_GENERATED = "recurring_generated"
    RECURRING_GENERATION_FAILED = "recurring_generation_failed"


class ActivitySeverity(str, Enum):
    """Severity level for activity events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ActivityEvent(BaseModel):
    """
    A single activity event.

    group_id is None for friend expenses and settlements; those only reach
    the structured log and the per-entity history.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    group_id: Optional[UUID] = None
    actor_id: Optional[UUID] = Field(
        default=None,
        description="User who caused the event; None for the system"
    )
    action: ActivityAction
    severity: ActivitySeverity = ActivitySeverity.INFO

    entity_type: str = Field(
        ...,
        description="Type of entity (e.g., 'expense', 'settlement', 'invitation')"
    )
    entity_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "group_id": str(self.group_id) if self.group_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "action": self.action.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "description": self.description,
            "metadata": self.metadata,
        }

    def metadata_json(self) -> str:
        return json.dumps(self.metadata, default=str)


# =============================================================================
# METADATA SNAPSHOTS
# =============================================================================

def _line_ids(participant) -> tuple[str, str]:
    if participant.is_pending:
        return "", str(participant.id)
    return str(participant.id), ""


def expense_metadata(
    entry: ExpenseWithLines,
    before: Optional[Expense] = None,
) -> dict[str, Any]:
    """
    Snapshot of an expense for the activity trail.

    Shape: version, summary, split_type, splits, payments and, for
    updates, before/after summaries.
    """
    expense = entry.expense
    summary = {
        "title": expense.title,
        "amount": str(expense.amount),
        "currency_code": expense.currency_code,
    }

    splits = []
    for split in entry.splits:
        user_id, pending_id = _line_ids(split.participant)
        item = {
            "id": str(split.id),
            "user_id": user_id,
            "pending_user_id": pending_id,
            "amount": str(split.amount),
            "type": split.split_type.value,
        }
        if split.share_value is not None:
            item["share_value"] = str(split.share_value)
        splits.append(item)

    payments = []
    for payment in entry.payments:
        user_id, pending_id = _line_ids(payment.participant)
        item = {
            "id": str(payment.id),
            "user_id": user_id,
            "pending_user_id": pending_id,
            "amount": str(payment.amount),
        }
        if payment.method:
            item["payment_method"] = payment.method
        payments.append(item)

    metadata: dict[str, Any] = {
        "version": ACTIVITY_METADATA_VERSION,
        "summary": summary,
        "split_type": entry.splits[0].split_type.value if entry.splits else "",
        "splits": splits,
        "payments": payments,
    }

    if before is not None:
        metadata["before"] = {
            "title": before.title,
            "amount": str(before.amount),
            "currency_code": before.currency_code,
        }
        metadata["after"] = dict(summary)

    return metadata


class ActivityEventBuilder:
    """
    Helper class to build activity events with common patterns.

    Usage:
        event = ActivityEventBuilder.expense_created(entry, actor_id)
        await activity_logger.log(event)
    """

    @staticmethod
    def expense_created(entry: ExpenseWithLines, actor_id: UUID) -> ActivityEvent:
        expense = entry.expense
        return ActivityEvent(
            group_id=expense.group_id,
            actor_id=actor_id,
            action=ActivityAction.EXPENSE_CREATED,
            entity_type="expense",
            entity_id=expense.id,
            description=f"Expense '{expense.title}' created: {expense.amount} {expense.currency_code}",
            metadata=expense_metadata(entry),
        )

    @staticmethod
    def expense_updated(
        entry: ExpenseWithLines,
        before: Expense,
        actor_id: UUID,
    ) -> ActivityEvent:
        expense = entry.expense
        return ActivityEvent(
            group_id=expense.group_id,
            actor_id=actor_id,
            action=ActivityAction.EXPENSE_UPDATED,
            entity_type="expense",
            entity_id=expense.id,
            description=f"Expense '{expense.title}' updated",
            metadata=expense_metadata(entry, before=before),
        )

    @staticmethod
    def expense_deleted(expense: Expense, actor_id: UUID) -> ActivityEvent:
        return ActivityEvent(
            group_id=expense.group_id,
            actor_id=actor_id,
            action=ActivityAction.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense.id,
            description=f"Expense '{expense.title}' deleted",
            metadata={
                "version": ACTIVITY_METADATA_VERSION,
                "summary": {
                    "title": expense.title,
                    "amount": str(expense.amount),
                    "currency_code": expense.currency_code,
                },
            },
        )

    @staticmethod
    def settlement_created(settlement: Settlement, actor_id: UUID) -> ActivityEvent:
        return ActivityEvent(
            group_id=settlement.group_id,
            actor_id=actor_id,
            action=ActivityAction.SETTLEMENT_CREATED,
            entity_type="settlement",
            entity_id=settlement.id,
            description=f"Settlement of {settlement.amount} {settlement.currency_code} recorded",
            metadata={
                "amount": str(settlement.amount),
                "payer": str(settlement.payer),
                "payee": str(settlement.payee),
            },
        )

    @staticmethod
    def settlement_updated(settlement: Settlement, actor_id: UUID) -> ActivityEvent:
        return ActivityEvent(
            group_id=settlement.group_id,
            actor_id=actor_id,
            action=ActivityAction.SETTLEMENT_UPDATED,
            entity_type="settlement",
            entity_id=settlement.id,
            description="Settlement updated",
            metadata={
                "amount": str(settlement.amount),
                "status": settlement.status.value,
            },
        )

    @staticmethod
    def settlement_status_changed(
        settlement: Settlement,
        old_status: str,
        actor_id: UUID,
    ) -> ActivityEvent:
        """settlement_completed on completion, settlement_status_updated otherwise."""
        new_status = settlement.status.value
        if new_status == "completed":
            action = ActivityAction.SETTLEMENT_COMPLETED
            metadata = {"status": new_status}
        else:
            action = ActivityAction.SETTLEMENT_STATUS_UPDATED
            metadata = {"old_status": old_status, "new_status": new_status}
        return ActivityEvent(
            group_id=settlement.group_id,
            actor_id=actor_id,
            action=action,
            entity_type="settlement",
            entity_id=settlement.id,
            description=f"Settlement {old_status} -> {new_status}",
            metadata=metadata,
        )

    @staticmethod
    def settlement_deleted(settlement: Settlement, actor_id: UUID) -> ActivityEvent:
        return ActivityEvent(
            group_id=settlement.group_id,
            actor_id=actor_id,
            action=ActivityAction.SETTLEMENT_DELETED,
            entity_type="settlement",
            entity_id=settlement.id,
            description="Settlement deleted",
            metadata={"amount": str(settlement.amount)},
        )

    @staticmethod
    def invitation_created(invitation: Invitation) -> ActivityEvent:
        return ActivityEvent(
            group_id=invitation.group_id,
            actor_id=invitation.invited_by,
            action=ActivityAction.INVITATION_CREATED,
            entity_type="invitation",
            entity_id=invitation.id,
            description=f"Invited {invitation.email}",
            metadata={"email": invitation.email, "role": invitation.role.value},
        )

    @staticmethod
    def invitation_accepted(
        invitation: Invitation,
        user_id: UUID,
        already_member: bool,
    ) -> ActivityEvent:
        return ActivityEvent(
            group_id=invitation.group_id,
            actor_id=user_id,
            action=ActivityAction.INVITATION_ACCEPTED,
            entity_type="invitation",
            entity_id=invitation.id,
            description=f"{invitation.email} joined the group",
            metadata={"email": invitation.email, "already_member": already_member},
        )

    @staticmethod
    def participant_merged(group_id: UUID, report: MergeReport) -> ActivityEvent:
        return ActivityEvent(
            group_id=group_id,
            actor_id=report.user_id,
            action=ActivityAction.PENDING_PARTICIPANT_MERGED,
            entity_type="pending_participant",
            entity_id=report.pending_id,
            description=f"Pending participant {report.email} merged into account",
            metadata=report.model_dump(mode="json"),
        )

    @staticmethod
    def recurring_changed(
        action: ActivityAction,
        group_id: UUID,
        template_id: UUID,
        title: str,
        actor_id: UUID,
    ) -> ActivityEvent:
        return ActivityEvent(
            group_id=group_id,
            actor_id=actor_id,
            action=action,
            entity_type="recurring_expense",
            entity_id=template_id,
            description=f"Recurring expense '{title}' {action.value.split('_', 1)[1]}",
        )

    @staticmethod
    def recurring_generated(
        group_id: UUID,
        template_id: UUID,
        expense_id: UUID,
        occurrence_date: date,
        actor_id: UUID,
    ) -> ActivityEvent:
        return ActivityEvent(
            group_id=group_id,
            actor_id=actor_id,
            action=ActivityAction.RECURRING_GENERATED,
            entity_type="recurring_expense",
            entity_id=template_id,
            description=f"Recurring expense generated for {occurrence_date.isoformat()}",
            metadata={
                "expense_id": str(expense_id),
                "occurrence_date": occurrence_date.isoformat(),
            },
        )

    @staticmethod
    def recurring_failed(
        group_id: UUID,
        template_id: UUID,
        error_type: str,
        error_message: str,
    ) -> ActivityEvent:
        return ActivityEvent(
            group_id=group_id,
            action=ActivityAction.RECURRING_GENERATION_FAILED,
            severity=ActivitySeverity.ERROR,
            entity_type="recurring_expense",
            entity_id=template_id,
            description=f"Recurring generation failed: {error_type}",
            metadata={"error_type": error_type, "error_message": error_message},
        )
