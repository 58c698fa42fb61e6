"""
Access checks and line materialization shared by the ledger services.
"""

from typing import Optional
from uuid import UUID

from src.errors import (
    GroupNotFoundError,
    NotFriendsError,
    NotGroupMemberError,
    UserNotFoundError,
    ValidationError,
)
from src.models.directory import Friendship, Group, GroupMember, User
from src.models.ledger import Payment, Split
from src.services.storage import DirectoryStorageInterface
from src.validation import ValidatedExpense


class AccessGuard:
    """Group membership and friendship checks against the directory."""

    def __init__(self, directory: DirectoryStorageInterface):
        self._directory = directory

    async def require_group(self, group_id: UUID) -> Group:
        group = await self._directory.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(group_id)
        return group

    async def require_member(self, group_id: UUID, user_id: UUID) -> GroupMember:
        membership = await self._directory.get_membership(group_id, user_id)
        if membership is None or not membership.is_active:
            raise NotGroupMemberError(group_id, user_id)
        return membership

    async def require_group_member(self, group_id: UUID, user_id: UUID) -> Group:
        """Group must exist and the user must be an active member of it."""
        group = await self.require_group(group_id)
        await self.require_member(group_id, user_id)
        return group

    async def require_user(self, user_id: UUID) -> User:
        user = await self._directory.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def require_friends(self, user_id: UUID, friend_id: UUID) -> Friendship:
        """Both directions share one row; only an accepted friendship counts."""
        if user_id == friend_id:
            raise NotFriendsError(user_id, friend_id)
        friendship = await self._directory.get_friendship(user_id, friend_id)
        if friendship is None or not friendship.is_accepted:
            raise NotFriendsError(user_id, friend_id)
        return friendship


def resolve_currency(given: Optional[str], fallback: str) -> str:
    """Blank means the fallback; otherwise a three-letter code."""
    code = (given or "").strip().upper() or fallback.upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(
            f"Invalid currency code: '{code}'",
            field="currency_code",
            suggested_fix="Use a three-letter ISO 4217 code such as USD",
        )
    return code


def build_lines(expense_id: UUID, validated: ValidatedExpense) -> tuple[list[Payment], list[Split]]:
    """Turn validated lines into rows owned by ``expense_id``."""
    payments = [
        Payment(
            expense_id=expense_id,
            participant=line.participant,
            amount=line.amount,
            method=line.method,
        )
        for line in validated.payments
    ]
    splits = [
        Split(
            expense_id=expense_id,
            participant=line.participant,
            amount=line.amount,
            split_type=line.split_type,
            share_value=line.share_value,
        )
        for line in validated.splits
    ]
    return payments, splits
