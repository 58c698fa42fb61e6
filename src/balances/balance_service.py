"""
Balance Service

Reads group and friend ledgers and turns them into balances and suggested
transfers. Balances come from expense payments and splits only; recorded
settlements are not netted in.
"""

from typing import Optional
from uuid import UUID

from src.amounts import ZERO
from src.balances.engine import aggregate_lines, simplify_debts
from src.config import LedgerSettings, get_settings
from src.ledger.access import AccessGuard
from src.models.balance import (
    FriendBalance,
    GroupBalance,
    OverallBalance,
    ParticipantBalance,
    Transfer,
)
from src.models.participant import ParticipantRef, UserRef
from src.services.storage import LedgerStorage


FRIENDS_BUCKET_NAME = "Friends"


class BalanceService:

    def __init__(self, storage: LedgerStorage, settings: Optional[LedgerSettings] = None):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._guard = AccessGuard(storage)

    async def _describe(self, participant: ParticipantRef) -> tuple[Optional[str], Optional[str]]:
        """Display name and email for a participant, if it still resolves."""
        if participant.is_pending:
            pending = await self._storage.get_pending_participant(participant.id)
            if pending is None:
                return None, None
            return pending.name or pending.email, pending.email
        user = await self._storage.get_user(participant.id)
        if user is None:
            return None, None
        return user.name, user.email

    async def _group_balances(self, group_id: UUID) -> list[ParticipantBalance]:
        totals = aggregate_lines(
            await self._storage.list_group_payments(group_id),
            await self._storage.list_group_splits(group_id),
        )

        participants: dict[ParticipantRef, None] = {}
        for member in await self._storage.list_members(group_id):
            if member.is_active:
                participants.setdefault(UserRef(user_id=member.user_id), None)
        for ref in totals:
            participants.setdefault(ref, None)

        balances = []
        for ref in participants:
            paid, owed = totals.get(ref, (ZERO, ZERO))
            name, email = await self._describe(ref)
            balances.append(ParticipantBalance(
                participant=ref,
                display_name=name,
                email=email,
                total_paid=paid,
                total_owed=owed,
            ))
        return balances

    async def get_group_balances(
        self,
        group_id: UUID,
        requester_id: UUID,
    ) -> list[ParticipantBalance]:
        """
        Paid, owed and net balance for everyone in a group's ledger.

        Active members with no lines show up with zero; placeholders and
        former members show up when they appear in any line.
        """
        await self._guard.require_group_member(group_id, requester_id)
        return await self._group_balances(group_id)

    async def get_participant_balance(
        self,
        group_id: UUID,
        participant: ParticipantRef,
        requester_id: UUID,
    ) -> ParticipantBalance:
        for entry in await self.get_group_balances(group_id, requester_id):
            if entry.participant == participant:
                return entry
        name, email = await self._describe(participant)
        return ParticipantBalance(participant=participant, display_name=name, email=email)

    async def get_simplified_debts(self, group_id: UUID, requester_id: UUID) -> list[Transfer]:
        await self._guard.require_group_member(group_id, requester_id)
        return simplify_debts(await self._group_balances(group_id))

    async def get_overall_user_balance(self, user_id: UUID) -> OverallBalance:
        """
        The user's position in every group they have lines in, plus one
        friend-expense bucket per currency.
        """
        await self._guard.require_user(user_id)
        me = UserRef(user_id=user_id)
        overall = OverallBalance(user_id=user_id)

        for group_id in await self._storage.list_groups_with_user_lines(user_id):
            group = await self._storage.get_group(group_id)
            if group is None:
                continue
            totals = aggregate_lines(
                await self._storage.list_group_payments(group_id),
                await self._storage.list_group_splits(group_id),
            )
            paid, owed = totals.get(me, (ZERO, ZERO))
            overall.groups.append(GroupBalance(
                group_id=group.id,
                group_name=group.name,
                currency_code=group.currency_code,
                total_paid=paid,
                total_owed=owed,
            ))

        buckets: dict[str, GroupBalance] = {}
        for expense in await self._storage.list_user_friend_expenses(user_id):
            totals = aggregate_lines(
                await self._storage.list_payments(expense.id),
                await self._storage.list_splits(expense.id),
            )
            paid, owed = totals.get(me, (ZERO, ZERO))
            bucket = buckets.setdefault(
                expense.currency_code,
                GroupBalance(group_name=FRIENDS_BUCKET_NAME, currency_code=expense.currency_code),
            )
            bucket.total_paid += paid
            bucket.total_owed += owed

        overall.groups.extend(buckets[code] for code in sorted(buckets))
        return overall

    async def get_friend_balance(self, user_id: UUID, friend_id: UUID) -> FriendBalance:
        """
        What the friend owes the user (positive) or the user owes the friend
        (negative), per currency.
        """
        await self._guard.require_friends(user_id, friend_id)
        me = UserRef(user_id=user_id)
        result = FriendBalance(user_id=user_id, friend_id=friend_id)

        for expense in await self._storage.list_friend_expenses(user_id, friend_id):
            totals = aggregate_lines(
                await self._storage.list_payments(expense.id),
                await self._storage.list_splits(expense.id),
            )
            paid, owed = totals.get(me, (ZERO, ZERO))
            code = expense.currency_code
            result.balances[code] = result.balances.get(code, ZERO) + paid - owed

        return result
