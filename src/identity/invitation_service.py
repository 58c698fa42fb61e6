"""
Invitation & Identity Resolution

Invitations are addressed to an email. So that expenses can name the
invitee before they register, each invited email gets a pending
participant (placeholder) that payments, splits and settlements may point
at.

DESIGN DECISION: Merging is a batch pointer rewrite, not a cascade.
On acceptance every ledger row pointing at the placeholder for the email
is rebound to the real account, in every group, inside the acceptance
transaction. Removing the placeholder afterwards is best effort: it runs
in a savepoint and a failure there never aborts the acceptance.
"""

import re
import secrets
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional
from uuid import UUID

import structlog

from src.audit import ActivityLogger
from src.config import LedgerSettings, get_settings
from src.errors import (
    CredentialsRequiredError,
    InvalidEmailError,
    InvitationEmailMismatchError,
    InvitationExpiredError,
    InvitationNotFoundError,
    InvitationNotPendingError,
    UserNotFoundError,
)
from src.ledger.access import AccessGuard
from src.models.common import utcnow
from src.models.directory import GroupMember, MemberRole, MemberStatus, User
from src.models.identity import (
    AcceptInvitationResult,
    Invitation,
    InvitationStatus,
    JoinGroupInput,
    JoinGroupResult,
    MergeReport,
    PendingParticipant,
)
from src.services.storage import DuplicateError, LedgerStorage, StorageError


logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """Trim and lowercase; raises InvalidEmailError when it is not an address."""
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise InvalidEmailError(email)
    return normalized


class AccountGateway(ABC):
    """
    Account authentication and registration, owned outside the ledger.

    Used by join_group when the caller has no session.
    """

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> User:
        """Return the account for valid credentials; raise otherwise."""
        pass

    @abstractmethod
    async def register(self, name: str, email: str, password: str) -> User:
        pass


class InvitationService:
    """
    Invitations, placeholder participants and the placeholder merge.
    """

    def __init__(
        self,
        storage: LedgerStorage,
        activity: Optional[ActivityLogger] = None,
        accounts: Optional[AccountGateway] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._activity = activity or ActivityLogger(storage, storage)
        self._accounts = accounts
        self._settings = settings or get_settings().ledger
        self._guard = AccessGuard(storage)

    # -------------------------------------------------------------------------
    # Placeholders and invitations
    # -------------------------------------------------------------------------

    async def ensure_pending_participant(
        self,
        email: str,
        name: Optional[str] = None,
    ) -> PendingParticipant:
        """The placeholder for an email, created on first use."""
        normalized = normalize_email(email)
        existing = await self._storage.get_pending_participant_by_email(normalized)
        if existing is not None:
            return existing

        try:
            return await self._storage.insert_pending_participant(
                PendingParticipant(email=normalized, name=name or None)
            )
        except DuplicateError:
            # Lost a race with another invitation for the same email.
            existing = await self._storage.get_pending_participant_by_email(normalized)
            if existing is None:
                raise
            return existing

    async def create_invitation(
        self,
        group_id: UUID,
        invited_by: UUID,
        email: str,
        role: MemberRole = MemberRole.MEMBER,
        name: Optional[str] = None,
    ) -> Invitation:
        """
        Invite an email address into a group.

        Raises:
            GroupNotFoundError, NotGroupMemberError: inviter access
            InvalidEmailError: email is not an address
        """
        await self._guard.require_group_member(group_id, invited_by)
        normalized = normalize_email(email)

        now = utcnow()
        invitation = Invitation(
            group_id=group_id,
            email=normalized,
            token=secrets.token_hex(self._settings.invitation_token_bytes),
            role=role,
            status=InvitationStatus.PENDING,
            invited_by=invited_by,
            expires_at=now + timedelta(days=self._settings.invitation_ttl_days),
            created_at=now,
        )

        async with self._storage.transaction():
            await self.ensure_pending_participant(normalized, name)
            await self._storage.insert_invitation(invitation)

        logger.info(
            "invitation_created",
            group_id=str(group_id),
            invitation_id=str(invitation.id),
        )
        await self._activity.log_invitation_created(invitation)
        return invitation

    async def get_invitation(self, token: str) -> Invitation:
        invitation = await self._storage.get_invitation_by_token(token)
        if invitation is None:
            raise InvitationNotFoundError(message="Invitation not found")
        return invitation

    async def list_pending_invitations(self, email: str) -> list[Invitation]:
        """Unexpired pending invitations addressed to the email."""
        normalized = (email or "").strip().lower()
        now = utcnow()
        return [
            inv for inv in await self._storage.list_pending_invitations(normalized)
            if not inv.is_expired(now)
        ]

    # -------------------------------------------------------------------------
    # Merge
    # -------------------------------------------------------------------------

    async def merge_pending_participant(self, email: str, user_id: UUID) -> MergeReport:
        """
        Rebind every reference to the email's placeholder onto ``user_id``.

        Runs inside the caller's transaction when there is one. Covers all
        groups and friend ledgers, not only the group being joined.
        """
        normalized = (email or "").strip().lower()
        report = MergeReport(email=normalized, user_id=user_id)

        async with self._storage.transaction():
            pending = await self._storage.get_pending_participant_by_email(normalized)
            if pending is None:
                return report

            report.pending_id = pending.id
            report.payments_rebound = await self._storage.rebind_payments(pending.id, user_id)
            report.splits_rebound = await self._storage.rebind_splits(pending.id, user_id)
            report.settlement_payers_rebound = await self._storage.rebind_settlement_payers(
                pending.id, user_id
            )
            report.settlement_payees_rebound = await self._storage.rebind_settlement_payees(
                pending.id, user_id
            )

            try:
                async with self._storage.savepoint("reclaim_pending"):
                    report.placeholder_removed = await self._storage.delete_pending_participant(
                        pending.id
                    )
            except StorageError as e:
                logger.warning(
                    "pending_participant_not_removed",
                    pending_id=str(pending.id),
                    error=str(e),
                )

        logger.info(
            "pending_participant_merged",
            user_id=str(user_id),
            pending_id=str(report.pending_id),
            rebound=report.total_rebound,
        )
        return report

    # -------------------------------------------------------------------------
    # Acceptance
    # -------------------------------------------------------------------------

    def _check_acceptable(self, invitation: Invitation) -> None:
        if invitation.status == InvitationStatus.ACCEPTED:
            return
        if invitation.status != InvitationStatus.PENDING:
            raise InvitationNotPendingError(invitation.status.value)
        if invitation.is_expired():
            raise InvitationExpiredError()

    async def accept_invitation(self, token: str, user_id: UUID) -> AcceptInvitationResult:
        """
        Join the invited group as ``user_id`` and claim the placeholder.

        Accepting again once a member is not an error: the invitation is
        marked accepted and nothing is rebound a second time.

        Raises:
            InvitationNotFoundError, InvitationExpiredError, InvitationNotPendingError
            UserNotFoundError
        """
        invitation = await self.get_invitation(token)
        self._check_acceptable(invitation)
        await self._guard.require_user(user_id)

        report = None
        async with self._storage.transaction():
            existing = await self._storage.get_membership(invitation.group_id, user_id)
            already_member = existing is not None and existing.is_active
            if already_member:
                membership = existing
                accepted = invitation
                if invitation.status != InvitationStatus.ACCEPTED:
                    accepted = await self._storage.update_invitation_status(
                        invitation.id, InvitationStatus.ACCEPTED
                    ) or invitation
            else:
                membership = GroupMember(
                    group_id=invitation.group_id,
                    user_id=user_id,
                    role=invitation.role,
                    status=MemberStatus.ACTIVE,
                )
                await self._storage.add_member(membership)
                accepted = await self._storage.update_invitation_status(
                    invitation.id, InvitationStatus.ACCEPTED
                ) or invitation
                report = await self.merge_pending_participant(invitation.email, user_id)

        if already_member:
            await self._activity.log_invitation_accepted(accepted, user_id, already_member=True)
            return AcceptInvitationResult(
                invitation=accepted,
                membership=membership,
                already_member=True,
            )

        await self._activity.log_invitation_accepted(accepted, user_id)
        if report.total_rebound or report.placeholder_removed:
            await self._activity.log_participant_merged(invitation.group_id, report)

        return AcceptInvitationResult(
            invitation=accepted,
            membership=membership,
            already_member=False,
            merge=report,
        )

    async def join_group(self, data: JoinGroupInput) -> JoinGroupResult:
        """
        Accept an invitation, logging in or registering the invitee first
        when there is no session.
        """
        invitation = await self.get_invitation(data.token)
        account_created = False

        if data.user_id is not None:
            user = await self._storage.get_user(data.user_id)
            if user is None:
                raise UserNotFoundError(data.user_id)
            if user.email.lower() != invitation.email.lower():
                raise InvitationEmailMismatchError()
        else:
            if not data.password:
                raise CredentialsRequiredError()
            if self._accounts is None:
                raise CredentialsRequiredError("Joining without a session is not available")

            if await self._storage.get_user_by_email(invitation.email) is not None:
                user = await self._accounts.authenticate(invitation.email, data.password)
            else:
                name = data.name or invitation.email.split("@")[0]
                user = await self._accounts.register(name, invitation.email, data.password)
                account_created = True

        acceptance = await self.accept_invitation(data.token, user.id)
        return JoinGroupResult(user=user, account_created=account_created, acceptance=acceptance)
