"""
Ledger Error Taxonomy

Every failure the ledger reports to a caller is one of these, never a raw
storage or driver error. Families:

- ValidationError: bad payload, reported before any write
- AuthorizationError: caller may not act on the group / friend pair
- NotFoundError: referenced entity is absent or belongs elsewhere
- ConflictError: entity is in the wrong state for the operation

Storage failures surface as src.services.storage.StorageError.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from src.models.common import ValidationIssue


class LedgerError(Exception):
    """Base exception for ledger operations."""

    code = "ledger_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(LedgerError):
    """Payload failed validation. Carries the issue for the offending field."""

    code = "validation_error"

    def __init__(
        self,
        message: str,
        field: str = "",
        issue_type: str = "invalid_value",
        suggested_fix: Optional[str] = None,
    ):
        self.issue = ValidationIssue(
            field=field,
            issue_type=issue_type,
            message=message,
            severity="error",
            suggested_fix=suggested_fix,
        )
        super().__init__(message)


class InvalidAmountError(ValidationError):
    code = "invalid_amount"

    def __init__(self, message: str, field: str = "amount", value: object = None):
        self.value = value
        super().__init__(message, field=field, issue_type="invalid_value")


class EmptyPaymentsError(ValidationError):
    code = "empty_payments"

    def __init__(self, message: str = "At least one payment is required"):
        super().__init__(message, field="payments", issue_type="missing")


class EmptySplitsError(ValidationError):
    code = "empty_splits"

    def __init__(self, message: str = "At least one split is required"):
        super().__init__(message, field="splits", issue_type="missing")


class PaymentTotalMismatchError(ValidationError):
    code = "payment_total_mismatch"

    def __init__(self, expected: Decimal, actual: Decimal):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Payments sum to {actual} but the expense total is {expected}",
            field="payments",
            issue_type="mismatch",
            suggested_fix="Make the payment amounts add up to the total",
        )


class SplitTotalMismatchError(ValidationError):
    code = "split_total_mismatch"

    def __init__(self, expected: Decimal, actual: Decimal):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Splits sum to {actual} but the expense total is {expected}",
            field="splits",
            issue_type="mismatch",
            suggested_fix="Make the split amounts add up to the total",
        )


class TitleRequiredError(ValidationError):
    code = "title_required"

    def __init__(self, message: str = "Title is required"):
        super().__init__(message, field="title", issue_type="missing")


class InvalidParticipantError(ValidationError):
    """A participant is not allowed in this position (outsider, self-transfer)."""

    code = "invalid_participant"

    def __init__(self, message: str, field: str = "participant"):
        super().__init__(message, field=field)


class InvalidIntervalError(ValidationError):
    code = "invalid_interval"

    def __init__(self, message: str, field: str = "repeat_interval"):
        super().__init__(message, field=field)


class InvalidDateRangeError(ValidationError):
    code = "invalid_date_range"

    def __init__(self, message: str = "End date cannot be before start date"):
        super().__init__(message, field="end_date")


class InvalidStatusError(ValidationError):
    code = "invalid_status"

    def __init__(self, status: str, allowed: list[str]):
        self.status = status
        super().__init__(
            f"Invalid status '{status}', expected one of: {', '.join(allowed)}",
            field="status",
        )


class InvalidEmailError(ValidationError):
    code = "invalid_email"

    def __init__(self, email: str):
        super().__init__(f"Invalid email address: '{email}'", field="email")


# =============================================================================
# AUTHORIZATION
# =============================================================================

class AuthorizationError(LedgerError):
    code = "forbidden"


class NotGroupMemberError(AuthorizationError):
    code = "not_group_member"

    def __init__(self, group_id: UUID, user_id: UUID):
        self.group_id = group_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is not a member of group {group_id}")


class NotFriendsError(AuthorizationError):
    code = "not_friends"

    def __init__(self, user_id: UUID, friend_id: UUID):
        self.user_id = user_id
        self.friend_id = friend_id
        super().__init__(f"Users {user_id} and {friend_id} are not friends")


class InvitationEmailMismatchError(AuthorizationError):
    code = "invitation_email_mismatch"

    def __init__(self, message: str = "Invitation was sent to a different email address"):
        super().__init__(message)


class CredentialsRequiredError(AuthorizationError):
    code = "credentials_required"

    def __init__(self, message: str = "Password is required to join without a session"):
        super().__init__(message)


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(LedgerError):
    code = "not_found"
    entity = "entity"

    def __init__(self, entity_id: object = None, message: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message or f"{self.entity.capitalize()} not found: {entity_id}")


class GroupNotFoundError(NotFoundError):
    code = "group_not_found"
    entity = "group"


class UserNotFoundError(NotFoundError):
    code = "user_not_found"
    entity = "user"


class ExpenseNotFoundError(NotFoundError):
    code = "expense_not_found"
    entity = "expense"


class SettlementNotFoundError(NotFoundError):
    code = "settlement_not_found"
    entity = "settlement"


class TemplateNotFoundError(NotFoundError):
    code = "recurring_expense_not_found"
    entity = "recurring expense"


class CategoryNotFoundError(NotFoundError):
    code = "category_not_found"
    entity = "category"


class CategoryNotInGroupError(NotFoundError):
    code = "category_not_in_group"
    entity = "category"

    def __init__(self, category_id: UUID, group_id: UUID):
        self.group_id = group_id
        super().__init__(
            category_id,
            message=f"Category {category_id} does not belong to group {group_id}",
        )


class ParticipantNotFoundError(NotFoundError):
    code = "participant_not_found"
    entity = "participant"


class InvitationNotFoundError(NotFoundError):
    code = "invitation_not_found"
    entity = "invitation"


# =============================================================================
# CONFLICT / STATE
# =============================================================================

class ConflictError(LedgerError):
    code = "conflict"


class TemplateInactiveError(ConflictError):
    code = "recurring_expense_inactive"

    def __init__(self, template_id: UUID):
        self.template_id = template_id
        super().__init__(f"Recurring expense {template_id} is not active")


class OccurrenceNotDueError(ConflictError):
    code = "occurrence_not_due"

    def __init__(self, template_id: UUID, next_date: object):
        self.template_id = template_id
        self.next_date = next_date
        super().__init__(f"Recurring expense {template_id} is not due until {next_date}")


class InvitationExpiredError(ConflictError):
    code = "invitation_expired"

    def __init__(self, message: str = "Invitation has expired"):
        super().__init__(message)


class InvitationNotPendingError(ConflictError):
    code = "invitation_not_pending"

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Invitation is {status}")
