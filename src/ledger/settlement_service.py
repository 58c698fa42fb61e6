"""
Settlement Services

Settlements record money handed over outside the expense ledger, either
inside a group or between two friends.

CRITICAL RULES:
1. Checks run in a fixed order: access, payer, payee, amount, status
2. Payer and payee are always different participants
3. completed_at is stamped on the transition into "completed"
4. Settlements do not feed balance computation
"""

from typing import Optional
from uuid import UUID

import structlog

from src.amounts import parse_positive_amount
from src.audit import ActivityLogger
from src.config import LedgerSettings, get_settings
from src.errors import (
    InvalidParticipantError,
    InvalidStatusError,
    ParticipantNotFoundError,
    SettlementNotFoundError,
)
from src.ledger.access import AccessGuard, resolve_currency
from src.models.common import utcnow
from src.models.ledger import (
    CreateSettlementInput,
    ExpenseKind,
    FriendSettlementInput,
    Settlement,
    SettlementStatus,
    UpdateSettlementInput,
)
from src.models.participant import ParticipantRef, UserRef
from src.services.storage import LedgerStorage


logger = structlog.get_logger(__name__)


def parse_status(value: Optional[str]) -> SettlementStatus:
    """Blank means pending; anything else must be a known status."""
    raw = (value or "").strip().lower()
    if not raw:
        return SettlementStatus.PENDING
    try:
        return SettlementStatus(raw)
    except ValueError:
        raise InvalidStatusError(raw, [s.value for s in SettlementStatus])


def _completed_at(status: SettlementStatus, previous: Optional[Settlement] = None):
    if status != SettlementStatus.COMPLETED:
        return None
    if previous is not None and previous.completed_at is not None:
        return previous.completed_at
    return utcnow()


class SettlementService:
    """Group settlements."""

    def __init__(
        self,
        storage: LedgerStorage,
        activity: Optional[ActivityLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._activity = activity or ActivityLogger(storage, storage)
        self._settings = settings or get_settings().ledger
        self._guard = AccessGuard(storage)

    async def _check_party(self, group_id: UUID, party: ParticipantRef, field: str) -> None:
        if party.is_pending:
            if await self._storage.get_pending_participant(party.id) is None:
                raise ParticipantNotFoundError(str(party))
            return
        membership = await self._storage.get_membership(group_id, party.id)
        if membership is None or not membership.is_active:
            raise InvalidParticipantError(
                f"{field.capitalize()} must be a member of the group", field=field
            )

    async def create_settlement(self, data: CreateSettlementInput) -> Settlement:
        """
        Record a settlement between two group participants.

        Raises:
            GroupNotFoundError, NotGroupMemberError: access
            InvalidParticipantError: payer or payee outside the group, or the same
            InvalidAmountError, InvalidStatusError
        """
        group = await self._guard.require_group_member(data.group_id, data.created_by)
        await self._check_party(group.id, data.payer, "payer")
        await self._check_party(group.id, data.payee, "payee")
        if data.payer == data.payee:
            raise InvalidParticipantError("Payer and payee must be different", field="payee")

        amount = parse_positive_amount(data.amount, field="amount")
        status = parse_status(data.status)
        currency = resolve_currency(data.currency_code, group.currency_code)

        now = utcnow()
        settlement = Settlement(
            group_id=group.id,
            kind=ExpenseKind.GROUP,
            payer=data.payer,
            payee=data.payee,
            amount=amount,
            currency_code=currency,
            status=status,
            method=data.method or None,
            reference=data.reference or None,
            notes=data.notes or None,
            completed_at=_completed_at(status),
            created_by=data.created_by,
            created_at=now,
            updated_at=now,
        )
        async with self._storage.transaction():
            await self._storage.insert_settlement(settlement)

        logger.info(
            "settlement_created",
            settlement_id=str(settlement.id),
            group_id=str(group.id),
            amount=str(amount),
        )
        await self._activity.log_settlement_created(settlement, data.created_by)
        return settlement

    async def _require_group_settlement(self, settlement_id: UUID) -> Settlement:
        settlement = await self._storage.get_settlement(settlement_id)
        if settlement is None or settlement.kind != ExpenseKind.GROUP:
            raise SettlementNotFoundError(settlement_id)
        return settlement

    async def get_settlement(self, settlement_id: UUID, requester_id: UUID) -> Settlement:
        settlement = await self._require_group_settlement(settlement_id)
        await self._guard.require_member(settlement.group_id, requester_id)
        return settlement

    async def list_settlements_by_group(
        self,
        group_id: UUID,
        requester_id: UUID,
        status: Optional[str] = None,
    ) -> list[Settlement]:
        await self._guard.require_group_member(group_id, requester_id)
        wanted = parse_status(status) if status else None
        return await self._storage.list_settlements_by_group(group_id, status=wanted)

    async def list_settlements_by_user(self, user_id: UUID) -> list[Settlement]:
        """Every settlement the user paid or received, group or friend."""
        return await self._storage.list_settlements_by_user(user_id)

    async def update_settlement(self, data: UpdateSettlementInput) -> Settlement:
        """Apply the fields that were given; payer and payee never change."""
        existing = await self._require_group_settlement(data.settlement_id)
        group = await self._guard.require_group_member(existing.group_id, data.updated_by)

        changes = {"updated_at": utcnow(), "updated_by": data.updated_by}
        if data.amount is not None:
            changes["amount"] = parse_positive_amount(data.amount, field="amount")
        if data.status is not None:
            changes["status"] = parse_status(data.status)
        if data.currency_code is not None:
            changes["currency_code"] = resolve_currency(data.currency_code, group.currency_code)
        for field in ("method", "reference", "notes"):
            value = getattr(data, field)
            if value is not None:
                changes[field] = value or None

        status = changes.get("status", existing.status)
        changes["completed_at"] = _completed_at(status, existing)
        updated = existing.model_copy(update=changes)

        async with self._storage.transaction():
            await self._storage.update_settlement(updated)

        await self._activity.log_settlement_updated(updated, data.updated_by)
        return updated

    async def update_settlement_status(
        self,
        settlement_id: UUID,
        status: str,
        requester_id: UUID,
    ) -> Settlement:
        existing = await self._require_group_settlement(settlement_id)
        await self._guard.require_group_member(existing.group_id, requester_id)
        new_status = parse_status(status)

        updated = existing.model_copy(update={
            "status": new_status,
            "completed_at": _completed_at(new_status, existing),
            "updated_at": utcnow(),
            "updated_by": requester_id,
        })
        async with self._storage.transaction():
            await self._storage.update_settlement(updated)

        await self._activity.log_settlement_status_changed(
            updated, existing.status.value, requester_id
        )
        return updated

    async def delete_settlement(self, settlement_id: UUID, requester_id: UUID) -> None:
        settlement = await self._require_group_settlement(settlement_id)
        await self._guard.require_group_member(settlement.group_id, requester_id)

        async with self._storage.transaction():
            if not await self._storage.delete_settlement(settlement_id):
                raise SettlementNotFoundError(settlement_id)

        await self._activity.log_settlement_deleted(settlement, requester_id)


class FriendSettlementService:
    """
    Settlements between two friends.

    These carry no group and are not written to the activity trail.
    """

    def __init__(
        self,
        storage: LedgerStorage,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._guard = AccessGuard(storage)

    async def create_friend_settlement(self, data: FriendSettlementInput) -> Settlement:
        await self._guard.require_friends(data.created_by, data.friend_id)

        pair = {data.created_by, data.friend_id}
        if data.payer_id not in pair:
            raise InvalidParticipantError("Payer must be one of the two friends", field="payer")
        if data.payee_id not in pair:
            raise InvalidParticipantError("Payee must be one of the two friends", field="payee")
        if data.payer_id == data.payee_id:
            raise InvalidParticipantError("Payer and payee must be different", field="payee")

        amount = parse_positive_amount(data.amount, field="amount")
        status = parse_status(data.status)
        currency = resolve_currency(data.currency_code, self._settings.friend_default_currency)

        now = utcnow()
        settlement = Settlement(
            group_id=None,
            kind=ExpenseKind.FRIEND,
            payer=UserRef(user_id=data.payer_id),
            payee=UserRef(user_id=data.payee_id),
            amount=amount,
            currency_code=currency,
            status=status,
            method=data.method or None,
            reference=data.reference or None,
            notes=data.notes or None,
            completed_at=_completed_at(status),
            created_by=data.created_by,
            created_at=now,
            updated_at=now,
        )
        async with self._storage.transaction():
            await self._storage.insert_settlement(settlement)
        return settlement

    async def list_friend_settlements(self, user_id: UUID, friend_id: UUID) -> list[Settlement]:
        await self._guard.require_friends(user_id, friend_id)
        return await self._storage.list_friend_settlements(user_id, friend_id)

    async def get_friend_settlement(
        self,
        settlement_id: UUID,
        requester_id: UUID,
        friend_id: UUID,
    ) -> Settlement:
        await self._guard.require_friends(requester_id, friend_id)

        settlement = await self._storage.get_settlement(settlement_id)
        if settlement is None or settlement.kind != ExpenseKind.FRIEND:
            raise SettlementNotFoundError(settlement_id)
        if requester_id not in (settlement.payer.id, settlement.payee.id):
            raise SettlementNotFoundError(settlement_id)
        return settlement

    async def update_friend_settlement_status(
        self,
        settlement_id: UUID,
        status: str,
        requester_id: UUID,
        friend_id: UUID,
    ) -> Settlement:
        existing = await self.get_friend_settlement(settlement_id, requester_id, friend_id)
        new_status = parse_status(status)

        updated = existing.model_copy(update={
            "status": new_status,
            "completed_at": _completed_at(new_status, existing),
            "updated_at": utcnow(),
            "updated_by": requester_id,
        })
        async with self._storage.transaction():
            await self._storage.update_settlement(updated)
        return updated
