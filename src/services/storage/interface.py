"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep ledger rules out of the storage backend
2. Use a throwaway in-memory database for testing
3. Swap SQLite for a server database later
4. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the reads and writes the ledger services need. Validation lives in
the services; storage trusts what it is given.

Every multi-row write happens inside ``transaction()``. Calls made inside an
open transaction join it; calls made outside run in their own.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from src.models.audit import ActivityEvent
from src.models.directory import Category, Friendship, Group, GroupMember, User
from src.models.identity import Invitation, InvitationStatus, PendingParticipant
from src.models.ledger import Expense, Payment, Settlement, SettlementStatus, Split
from src.models.participant import ParticipantRef
from src.models.recurring import RecurringTemplate, TemplatePayment, TemplateSplit


class ExpenseQuery(BaseModel):
    """Parsed, bounded search filters handed to storage."""

    group_id: UUID
    text: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    payer: Optional[ParticipantRef] = None
    ower: Optional[ParticipantRef] = None
    limit: int
    offset: int = 0


class TransactionalStorage(ABC):
    """Unit-of-work support."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """
        Open (or join) a transaction.

        Commits when the block exits normally, rolls back when it raises.
        Nested calls in the same task join the outer transaction.
        """
        pass

    @abstractmethod
    def savepoint(self, name: str) -> AbstractAsyncContextManager[None]:
        """
        Open a savepoint inside the current transaction.

        A failure inside the block rolls back to the savepoint only;
        the exception still propagates to the caller.
        """
        pass


class DirectoryStorageInterface(ABC):
    """
    Users, groups, memberships, friendships and categories.

    The ledger only reads these. The create/save methods exist to seed a
    directory owned by the surrounding application.
    """

    @abstractmethod
    async def create_user(self, user: User) -> User:
        pass

    @abstractmethod
    async def get_user(self, user_id: UUID) -> Optional[User]:
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Lookup by normalized (lowercase) email."""
        pass

    @abstractmethod
    async def create_group(self, group: Group) -> Group:
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[Group]:
        pass

    @abstractmethod
    async def add_member(self, member: GroupMember) -> GroupMember:
        pass

    @abstractmethod
    async def get_membership(self, group_id: UUID, user_id: UUID) -> Optional[GroupMember]:
        pass

    @abstractmethod
    async def list_members(self, group_id: UUID) -> list[GroupMember]:
        pass

    @abstractmethod
    async def save_friendship(self, friendship: Friendship) -> Friendship:
        """Insert or update a friendship row (pair stored in canonical order)."""
        pass

    @abstractmethod
    async def get_friendship(self, user_id: UUID, friend_id: UUID) -> Optional[Friendship]:
        """Order of the two ids does not matter."""
        pass

    @abstractmethod
    async def create_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        pass


class ExpenseStorageInterface(ABC):
    """Expenses and their payment/split lines."""

    @abstractmethod
    async def insert_expense(self, expense: Expense) -> Expense:
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> Expense:
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID) -> bool:
        """Delete an expense; its lines cascade. Returns False if absent."""
        pass

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        pass

    @abstractmethod
    async def insert_payments(self, payments: list[Payment]) -> None:
        pass

    @abstractmethod
    async def insert_splits(self, splits: list[Split]) -> None:
        pass

    @abstractmethod
    async def delete_lines(self, expense_id: UUID) -> None:
        """Remove every payment and split of an expense."""
        pass

    @abstractmethod
    async def list_payments(self, expense_id: UUID) -> list[Payment]:
        pass

    @abstractmethod
    async def list_splits(self, expense_id: UUID) -> list[Split]:
        pass

    @abstractmethod
    async def list_expenses_by_group(self, group_id: UUID) -> list[Expense]:
        """Newest first (expense date, then creation time)."""
        pass

    @abstractmethod
    async def search_expenses(self, query: ExpenseQuery) -> list[Expense]:
        pass

    @abstractmethod
    async def list_group_payments(self, group_id: UUID) -> list[Payment]:
        pass

    @abstractmethod
    async def list_group_splits(self, group_id: UUID) -> list[Split]:
        pass

    @abstractmethod
    async def list_friend_expenses(self, user_id: UUID, friend_id: UUID) -> list[Expense]:
        """Friend expenses with lines involving both users, newest first."""
        pass

    @abstractmethod
    async def list_user_friend_expenses(self, user_id: UUID) -> list[Expense]:
        """Every friend expense with a line involving the user."""
        pass

    @abstractmethod
    async def list_groups_with_user_lines(self, user_id: UUID) -> list[UUID]:
        """Groups in which the user has at least one payment or split."""
        pass


class SettlementStorageInterface(ABC):

    @abstractmethod
    async def insert_settlement(self, settlement: Settlement) -> Settlement:
        pass

    @abstractmethod
    async def update_settlement(self, settlement: Settlement) -> Settlement:
        pass

    @abstractmethod
    async def delete_settlement(self, settlement_id: UUID) -> bool:
        pass

    @abstractmethod
    async def get_settlement(self, settlement_id: UUID) -> Optional[Settlement]:
        pass

    @abstractmethod
    async def list_settlements_by_group(
        self,
        group_id: UUID,
        status: Optional[SettlementStatus] = None,
    ) -> list[Settlement]:
        pass

    @abstractmethod
    async def list_settlements_by_user(self, user_id: UUID) -> list[Settlement]:
        """Settlements where the user is payer or payee, in any group or none."""
        pass

    @abstractmethod
    async def list_friend_settlements(self, user_id: UUID, friend_id: UUID) -> list[Settlement]:
        pass


class IdentityStorageInterface(ABC):
    """Pending participants, invitations and placeholder rebinding."""

    @abstractmethod
    async def insert_pending_participant(self, pending: PendingParticipant) -> PendingParticipant:
        pass

    @abstractmethod
    async def get_pending_participant(self, pending_id: UUID) -> Optional[PendingParticipant]:
        pass

    @abstractmethod
    async def get_pending_participant_by_email(self, email: str) -> Optional[PendingParticipant]:
        pass

    @abstractmethod
    async def delete_pending_participant(self, pending_id: UUID) -> bool:
        """
        Remove a placeholder.

        Raises:
            StorageError: if ledger rows still reference it
        """
        pass

    @abstractmethod
    async def insert_invitation(self, invitation: Invitation) -> Invitation:
        pass

    @abstractmethod
    async def get_invitation_by_token(self, token: str) -> Optional[Invitation]:
        pass

    @abstractmethod
    async def update_invitation_status(
        self,
        invitation_id: UUID,
        status: InvitationStatus,
    ) -> Optional[Invitation]:
        pass

    @abstractmethod
    async def list_pending_invitations(self, email: str) -> list[Invitation]:
        pass

    @abstractmethod
    async def rebind_payments(self, pending_id: UUID, user_id: UUID) -> int:
        """Point every payment on the placeholder at the account. Returns rows changed."""
        pass

    @abstractmethod
    async def rebind_splits(self, pending_id: UUID, user_id: UUID) -> int:
        pass

    @abstractmethod
    async def rebind_settlement_payers(self, pending_id: UUID, user_id: UUID) -> int:
        pass

    @abstractmethod
    async def rebind_settlement_payees(self, pending_id: UUID, user_id: UUID) -> int:
        pass


class RecurringStorageInterface(ABC):

    @abstractmethod
    async def insert_template(self, template: RecurringTemplate) -> RecurringTemplate:
        pass

    @abstractmethod
    async def update_template(self, template: RecurringTemplate) -> RecurringTemplate:
        pass

    @abstractmethod
    async def delete_template(self, template_id: UUID) -> bool:
        pass

    @abstractmethod
    async def get_template(self, template_id: UUID) -> Optional[RecurringTemplate]:
        pass

    @abstractmethod
    async def insert_template_lines(
        self,
        payments: list[TemplatePayment],
        splits: list[TemplateSplit],
    ) -> None:
        pass

    @abstractmethod
    async def delete_template_lines(self, template_id: UUID) -> None:
        pass

    @abstractmethod
    async def list_template_payments(self, template_id: UUID) -> list[TemplatePayment]:
        pass

    @abstractmethod
    async def list_template_splits(self, template_id: UUID) -> list[TemplateSplit]:
        pass

    @abstractmethod
    async def list_templates_by_group(self, group_id: UUID) -> list[RecurringTemplate]:
        pass

    @abstractmethod
    async def list_due_templates(self, as_of: date) -> list[RecurringTemplate]:
        """Active templates whose next occurrence is on or before ``as_of``."""
        pass

    @abstractmethod
    async def advance_template(
        self,
        template_id: UUID,
        occurrence_date: date,
        next_occurrence_date: date,
        is_active: bool,
    ) -> bool:
        """
        Advance only if the template is active and still at ``occurrence_date``.

        Returns False when another run already moved it.
        """
        pass


class ActivityStorageInterface(ABC):
    """
    Abstract interface for activity log storage.

    Activity logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: ActivityEvent) -> bool:
        pass

    @abstractmethod
    async def list_group_events(
        self,
        group_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ActivityEvent]:
        """Newest first."""
        pass

    @abstractmethod
    async def list_entity_events(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[ActivityEvent]:
        """Chronological order."""
        pass


class LedgerStorage(
    TransactionalStorage,
    DirectoryStorageInterface,
    ExpenseStorageInterface,
    SettlementStorageInterface,
    IdentityStorageInterface,
    RecurringStorageInterface,
    ActivityStorageInterface,
):
    """Everything the ledger services need from one backend."""

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
