"""
Data Models Package

This package contains all Pydantic models used in the Split Ledger system.
All data flowing through the ledger must conform to these schemas.
"""

from src.models.common import RawAmount, ValidationIssue, utcnow
from src.models.participant import (
    ParticipantRef,
    PendingRef,
    UserRef,
    pending_ref,
    user_ref,
)
from src.models.directory import (
    Category,
    Friendship,
    FriendshipStatus,
    Group,
    GroupMember,
    MemberRole,
    MemberStatus,
    User,
    canonical_pair,
)
from src.models.ledger import (
    CreateExpenseInput,
    CreateSettlementInput,
    Expense,
    ExpenseKind,
    ExpenseWithLines,
    FriendExpenseInput,
    FriendSettlementInput,
    Payment,
    PaymentInput,
    SearchExpensesInput,
    Settlement,
    SettlementStatus,
    Split,
    SplitInput,
    SplitType,
    UpdateExpenseInput,
    UpdateFriendExpenseInput,
    UpdateSettlementInput,
)
from src.models.identity import (
    AcceptInvitationResult,
    Invitation,
    InvitationStatus,
    JoinGroupInput,
    JoinGroupResult,
    MergeReport,
    PendingParticipant,
)
from src.models.recurring import (
    CreateRecurringInput,
    GenerationOutcome,
    GenerationResult,
    GenerationStatus,
    ProcessingReport,
    RecurringTemplate,
    RecurringTemplateWithLines,
    RepeatInterval,
    TemplatePayment,
    TemplatePaymentInput,
    TemplateSplit,
    TemplateSplitInput,
    UpdateRecurringInput,
)
from src.models.balance import (
    FriendBalance,
    GroupBalance,
    OverallBalance,
    ParticipantBalance,
    Transfer,
)
from src.models.audit import (
    ActivityAction,
    ActivityEvent,
    ActivityEventBuilder,
    ActivitySeverity,
    expense_metadata,
)

__all__ = [
    # Shared
    "RawAmount",
    "ValidationIssue",
    "utcnow",
    # Participants
    "ParticipantRef",
    "PendingRef",
    "UserRef",
    "pending_ref",
    "user_ref",
    # Directory
    "Category",
    "Friendship",
    "FriendshipStatus",
    "Group",
    "GroupMember",
    "MemberRole",
    "MemberStatus",
    "User",
    "canonical_pair",
    # Ledger
    "CreateExpenseInput",
    "CreateSettlementInput",
    "Expense",
    "ExpenseKind",
    "ExpenseWithLines",
    "FriendExpenseInput",
    "FriendSettlementInput",
    "Payment",
    "PaymentInput",
    "SearchExpensesInput",
    "Settlement",
    "SettlementStatus",
    "Split",
    "SplitInput",
    "SplitType",
    "UpdateExpenseInput",
    "UpdateFriendExpenseInput",
    "UpdateSettlementInput",
    # Identity
    "AcceptInvitationResult",
    "Invitation",
    "InvitationStatus",
    "JoinGroupInput",
    "JoinGroupResult",
    "MergeReport",
    "PendingParticipant",
    # Recurring
    "CreateRecurringInput",
    "GenerationOutcome",
    "GenerationResult",
    "GenerationStatus",
    "ProcessingReport",
    "RecurringTemplate",
    "RecurringTemplateWithLines",
    "RepeatInterval",
    "TemplatePayment",
    "TemplatePaymentInput",
    "TemplateSplit",
    "TemplateSplitInput",
    "UpdateRecurringInput",
    # Balances
    "FriendBalance",
    "GroupBalance",
    "OverallBalance",
    "ParticipantBalance",
    "Transfer",
    # Activity
    "ActivityAction",
    "ActivityEvent",
    "ActivityEventBuilder",
    "ActivitySeverity",
    "expense_metadata",
]
