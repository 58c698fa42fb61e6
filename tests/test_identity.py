"""Tests for invitations, placeholder participants and the merge on acceptance."""

import asyncio
import pytest
import pytest_asyncio
from datetime import timedelta
from uuid import uuid4

from conftest import expense_input, make_group, make_user
from src.errors import (
    CredentialsRequiredError,
    InvalidEmailError,
    InvitationEmailMismatchError,
    InvitationExpiredError,
    InvitationNotFoundError,
    InvitationNotPendingError,
    NotGroupMemberError,
)
from src.identity import AccountGateway, InvitationService, normalize_email
from src.models import (
    ActivityAction,
    CreateSettlementInput,
    InvitationStatus,
    JoinGroupInput,
    MemberRole,
    SplitInput,
    User,
    pending_ref,
    user_ref,
    utcnow,
)
from src.services.storage import StorageError


class FakeAccounts(AccountGateway):
    """Registers straight into the ledger directory; any password logs in."""

    def __init__(self, storage):
        self.storage = storage
        self.registered = []

    async def authenticate(self, email: str, password: str) -> User:
        return await self.storage.get_user_by_email(email)

    async def register(self, name: str, email: str, password: str) -> User:
        user = await self.storage.create_user(User(name=name, email=email))
        self.registered.append(user)
        return user


@pytest.fixture
def accounts(storage):
    return FakeAccounts(storage)


@pytest.fixture
def invitations(storage, activity, accounts, ledger_settings):
    return InvitationService(storage, activity, accounts=accounts, settings=ledger_settings)


@pytest_asyncio.fixture
async def dan_invited(world, invitations):
    """Dan has no account yet and is invited to the shared group."""
    invitation = await invitations.create_invitation(
        world.group.id, world.alice.id, "  Dan@Example.com ", name="Dan"
    )
    return invitation


class TestNormalizeEmail:

    def test_trims_and_lowercases(self):
        assert normalize_email("  Dan@Example.COM ") == "dan@example.com"

    @pytest.mark.parametrize("value", ["", "dan", "dan@", "dan@example", "a b@example.com"])
    def test_rejects_non_addresses(self, value):
        with pytest.raises(InvalidEmailError):
            normalize_email(value)


class TestCreateInvitation:

    @pytest.mark.asyncio
    async def test_creates_placeholder_and_invitation(self, storage, world, dan_invited):
        assert dan_invited.email == "dan@example.com"
        assert dan_invited.status == InvitationStatus.PENDING
        assert len(dan_invited.token) == 64
        assert dan_invited.expires_at - dan_invited.created_at == timedelta(days=7)

        pending = await storage.get_pending_participant_by_email("dan@example.com")
        assert pending is not None
        assert pending.name == "Dan"

    @pytest.mark.asyncio
    async def test_placeholder_is_reused(self, storage, world, invitations, dan_invited):
        first = await storage.get_pending_participant_by_email("dan@example.com")
        again = await invitations.ensure_pending_participant("DAN@example.com")
        assert again.id == first.id

    @pytest.mark.asyncio
    async def test_inviter_must_be_member(self, world, invitations):
        with pytest.raises(NotGroupMemberError):
            await invitations.create_invitation(world.group.id, world.carol.id, "dan@example.com")

    @pytest.mark.asyncio
    async def test_invalid_email(self, world, invitations):
        with pytest.raises(InvalidEmailError):
            await invitations.create_invitation(world.group.id, world.alice.id, "not-an-email")

    @pytest.mark.asyncio
    async def test_list_pending_skips_expired(self, storage, world, invitations, dan_invited):
        stale = dan_invited.model_copy(update={
            "id": uuid4(),
            "token": "stale-token",
            "expires_at": utcnow() - timedelta(days=1),
        })
        await storage.insert_invitation(stale)

        listed = await invitations.list_pending_invitations("DAN@example.com")
        assert [i.token for i in listed] == [dan_invited.token]

    @pytest.mark.asyncio
    async def test_unknown_token(self, invitations):
        with pytest.raises(InvitationNotFoundError):
            await invitations.get_invitation("nope")


class TestAcceptInvitation:

    async def _dinner_with_dan(self, storage, world, expenses, group=None):
        pending = await storage.get_pending_participant_by_email("dan@example.com")
        return await expenses.create_expense(expense_input(
            group or world.group,
            world.alice,
            amount="40.00",
            splits=[
                SplitInput(participant=user_ref(world.alice.id), amount="20.00"),
                SplitInput(participant=pending_ref(pending.id), amount="20.00"),
            ],
        ))

    @pytest.mark.asyncio
    async def test_accept_rebinds_and_removes_placeholder(
        self, storage, world, expenses, settlements, invitations, dan_invited
    ):
        entry = await self._dinner_with_dan(storage, world, expenses)
        pending = await storage.get_pending_participant_by_email("dan@example.com")
        await settlements.create_settlement(CreateSettlementInput(
            group_id=world.group.id,
            created_by=world.alice.id,
            payer=pending_ref(pending.id),
            payee=user_ref(world.alice.id),
            amount="5.00",
        ))
        dan = await make_user(storage, "Dan")

        result = await invitations.accept_invitation(dan_invited.token, dan.id)

        assert result.already_member is False
        assert result.invitation.status == InvitationStatus.ACCEPTED
        assert result.membership.role == MemberRole.MEMBER
        assert result.merge.splits_rebound == 1
        assert result.merge.settlement_payers_rebound == 1
        assert result.merge.placeholder_removed is True

        splits = await storage.list_splits(entry.expense.id)
        assert {s.participant for s in splits} == {user_ref(world.alice.id), user_ref(dan.id)}
        assert await storage.get_pending_participant_by_email("dan@example.com") is None
        assert (await storage.get_membership(world.group.id, dan.id)).is_active

        actions = [e.action for e in await storage.list_group_events(world.group.id, limit=20, offset=0)]
        assert ActivityAction.INVITATION_ACCEPTED in actions
        assert ActivityAction.PENDING_PARTICIPANT_MERGED in actions

    @pytest.mark.asyncio
    async def test_placeholder_delete_failure_keeps_the_merge(
        self, storage, world, expenses, invitations, dan_invited, monkeypatch
    ):
        """The placeholder lingers but membership and rebound lines commit."""
        entry = await self._dinner_with_dan(storage, world, expenses)
        dan = await make_user(storage, "Dan")

        async def refuse_delete(pending_id):
            raise StorageError("placeholder is locked")

        monkeypatch.setattr(storage, "delete_pending_participant", refuse_delete)

        result = await invitations.accept_invitation(dan_invited.token, dan.id)

        assert result.merge.placeholder_removed is False
        assert result.merge.splits_rebound == 1
        assert (await storage.get_membership(world.group.id, dan.id)).is_active
        assert (await invitations.get_invitation(dan_invited.token)).status == InvitationStatus.ACCEPTED
        owers = {s.participant for s in await storage.list_splits(entry.expense.id)}
        assert owers == {user_ref(world.alice.id), user_ref(dan.id)}
        assert await storage.get_pending_participant_by_email("dan@example.com") is not None

    @pytest.mark.asyncio
    async def test_merge_spans_every_group(self, storage, world, expenses, invitations, dan_invited):
        """Accepting one group's invitation claims the placeholder everywhere."""
        other = await make_group(storage, world.alice)
        second = await invitations.create_invitation(other.id, world.alice.id, "dan@example.com")

        here = await self._dinner_with_dan(storage, world, expenses)
        there = await self._dinner_with_dan(storage, world, expenses, group=other)
        dan = await make_user(storage, "Dan")

        first = await invitations.accept_invitation(dan_invited.token, dan.id)
        assert first.merge.splits_rebound == 2
        for entry in (here, there):
            owers = {s.participant for s in await storage.list_splits(entry.expense.id)}
            assert user_ref(dan.id) in owers

        # Nothing left to rebind when the second group's invitation is accepted
        later = await invitations.accept_invitation(second.token, dan.id)
        assert later.already_member is False
        assert later.merge.pending_id is None
        assert later.merge.total_rebound == 0

    @pytest.mark.asyncio
    async def test_accept_again_is_harmless(self, storage, world, invitations, dan_invited):
        dan = await make_user(storage, "Dan")
        await invitations.accept_invitation(dan_invited.token, dan.id)

        again = await invitations.accept_invitation(dan_invited.token, dan.id)
        assert again.already_member is True
        assert again.merge is None
        assert len(await storage.list_members(world.group.id)) == 3

    @pytest.mark.asyncio
    async def test_simultaneous_accepts_join_once(self, storage, world, invitations, dan_invited):
        dan = await make_user(storage, "Dan")

        results = await asyncio.gather(
            invitations.accept_invitation(dan_invited.token, dan.id),
            invitations.accept_invitation(dan_invited.token, dan.id),
        )

        assert sorted(r.already_member for r in results) == [False, True]
        assert len(await storage.list_members(world.group.id)) == 3

    @pytest.mark.asyncio
    async def test_existing_member_marks_invitation_accepted(self, storage, world, invitations):
        invitation = await invitations.create_invitation(world.group.id, world.alice.id, "bob@example.com")
        result = await invitations.accept_invitation(invitation.token, world.bob.id)
        assert result.already_member is True
        assert (await invitations.get_invitation(invitation.token)).status == InvitationStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_expired_invitation(self, storage, world, invitations, dan_invited):
        expired = dan_invited.model_copy(update={
            "id": uuid4(),
            "token": "expired-token",
            "expires_at": utcnow() - timedelta(minutes=1),
        })
        await storage.insert_invitation(expired)
        dan = await make_user(storage, "Dan")

        with pytest.raises(InvitationExpiredError):
            await invitations.accept_invitation("expired-token", dan.id)
        assert await storage.get_membership(world.group.id, dan.id) is None

    @pytest.mark.asyncio
    async def test_declined_invitation(self, storage, world, invitations, dan_invited):
        await storage.update_invitation_status(dan_invited.id, InvitationStatus.DECLINED)
        dan = await make_user(storage, "Dan")
        with pytest.raises(InvitationNotPendingError):
            await invitations.accept_invitation(dan_invited.token, dan.id)


class TestJoinGroup:

    @pytest.mark.asyncio
    async def test_join_with_session(self, storage, world, invitations, dan_invited):
        dan = await make_user(storage, "Dan", email="DAN@example.com")
        result = await invitations.join_group(JoinGroupInput(token=dan_invited.token, user_id=dan.id))
        assert result.user.id == dan.id
        assert result.account_created is False
        assert result.acceptance.membership.user_id == dan.id

    @pytest.mark.asyncio
    async def test_session_email_must_match(self, world, invitations, dan_invited):
        with pytest.raises(InvitationEmailMismatchError):
            await invitations.join_group(JoinGroupInput(token=dan_invited.token, user_id=world.bob.id))

    @pytest.mark.asyncio
    async def test_join_registers_new_account(self, storage, world, accounts, invitations, dan_invited):
        result = await invitations.join_group(JoinGroupInput(token=dan_invited.token, password="s3cret"))

        assert result.account_created is True
        assert result.user.email == "dan@example.com"
        assert result.user.name == "dan"
        assert accounts.registered == [result.user]

    @pytest.mark.asyncio
    async def test_join_logs_in_existing_account(self, storage, world, accounts, invitations, dan_invited):
        dan = await make_user(storage, "Dan")
        result = await invitations.join_group(
            JoinGroupInput(token=dan_invited.token, password="s3cret", name="Daniel")
        )
        assert result.account_created is False
        assert result.user.id == dan.id
        assert accounts.registered == []

    @pytest.mark.asyncio
    async def test_join_without_session_needs_password(self, invitations, dan_invited):
        with pytest.raises(CredentialsRequiredError):
            await invitations.join_group(JoinGroupInput(token=dan_invited.token))

    @pytest.mark.asyncio
    async def test_join_without_gateway(self, storage, world, ledger_settings, dan_invited):
        service = InvitationService(storage, settings=ledger_settings)
        with pytest.raises(CredentialsRequiredError):
            await service.join_group(JoinGroupInput(token=dan_invited.token, password="pw"))
