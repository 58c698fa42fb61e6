"""
Identity Models

Pending participants stand in for invited people who have no account yet.
When the invitee accepts, every ledger reference to the placeholder is
rebound to the real account and the placeholder is reclaimed.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.models.common import utcnow
from src.models.directory import GroupMember, MemberRole, User


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class PendingParticipant(BaseModel):
    """Placeholder identity for an invited, not yet registered person."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    email: str = Field(..., description="Normalized (trimmed, lowercase) email")
    name: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Invitation(BaseModel):
    """An invitation for an email address to join a group."""

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    email: str
    token: str
    role: MemberRole = MemberRole.MEMBER
    status: InvitationStatus = InvitationStatus.PENDING
    invited_by: UUID
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class MergeReport(BaseModel):
    """What a placeholder-to-account merge rewrote."""

    email: str
    user_id: UUID
    pending_id: Optional[UUID] = Field(
        default=None,
        description="Placeholder that was merged; None when none existed"
    )
    payments_rebound: int = 0
    splits_rebound: int = 0
    settlement_payers_rebound: int = 0
    settlement_payees_rebound: int = 0
    placeholder_removed: bool = False

    @property
    def total_rebound(self) -> int:
        return (
            self.payments_rebound
            + self.splits_rebound
            + self.settlement_payers_rebound
            + self.settlement_payees_rebound
        )


class AcceptInvitationResult(BaseModel):
    invitation: Invitation
    membership: Optional[GroupMember] = None
    already_member: bool = False
    merge: Optional[MergeReport] = None


class JoinGroupInput(BaseModel):
    """
    Join a group from an invitation token.

    Either an authenticated user id is given, or the caller supplies a
    password so the invitation email can be logged in or registered.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(..., min_length=1)
    user_id: Optional[UUID] = None
    name: Optional[str] = None
    password: Optional[str] = None


class JoinGroupResult(BaseModel):
    user: User
    account_created: bool = False
    acceptance: AcceptInvitationResult
