"""
Directory Models

Users, groups, memberships, friendships and categories. The ledger only
reads these; creating and editing them belongs to the surrounding
application; the storage layer offers seeding methods for setup and tests.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.common import utcnow


class MemberRole(str, Enum):
    """Role of a user inside a group."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class FriendshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class User(BaseModel):
    """A registered account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    email: str = Field(..., min_length=3, max_length=320)
    name: str = Field(..., min_length=1, max_length=200)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class Group(BaseModel):
    """A group sharing expenses in a single default currency."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    currency_code: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Default currency for the group's expenses"
    )
    created_by: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('currency_code')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class GroupMember(BaseModel):
    """Membership of a user in a group."""

    group_id: UUID
    user_id: UUID
    role: MemberRole = MemberRole.MEMBER
    status: MemberStatus = MemberStatus.ACTIVE
    joined_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE


class Friendship(BaseModel):
    """
    Friendship between two users.

    The pair is stored in canonical order (smaller id first) so a lookup
    for (a, b) and (b, a) lands on the same row.
    """

    user_id: UUID
    friend_id: UUID
    status: FriendshipStatus = FriendshipStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_accepted(self) -> bool:
        return self.status == FriendshipStatus.ACCEPTED

    def involves(self, user_id: UUID) -> bool:
        return user_id in (self.user_id, self.friend_id)


def canonical_pair(a: UUID, b: UUID) -> tuple[UUID, UUID]:
    """Order a friendship pair so the smaller id comes first."""
    return (a, b) if str(a) <= str(b) else (b, a)


class Category(BaseModel):
    """Expense category owned by a group."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    created_at: datetime = Field(default_factory=utcnow)
