"""
Balance Models

balance = total_paid - total_owed. Positive means the participant is owed
money (creditor), negative means they owe money (debtor).
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.models.participant import ParticipantRef


class ParticipantBalance(BaseModel):
    participant: ParticipantRef
    display_name: Optional[str] = None
    email: Optional[str] = None
    total_paid: Decimal = Decimal("0")
    total_owed: Decimal = Decimal("0")

    @property
    def balance(self) -> Decimal:
        return self.total_paid - self.total_owed


class GroupBalance(BaseModel):
    """A user's position inside one group (or across friend expenses)."""

    group_id: Optional[UUID] = Field(
        default=None,
        description="None for the friend-expense bucket"
    )
    group_name: str
    currency_code: str
    total_paid: Decimal = Decimal("0")
    total_owed: Decimal = Decimal("0")

    @property
    def balance(self) -> Decimal:
        return self.total_paid - self.total_owed


class OverallBalance(BaseModel):
    """
    A user's balance in every group they appear in.

    No cross-group total: groups may use different currencies.
    """

    user_id: UUID
    groups: list[GroupBalance] = Field(default_factory=list)


class FriendBalance(BaseModel):
    """
    Net position of ``user_id`` against ``friend_id`` from friend expenses.

    Kept per currency; amounts in different currencies are never netted.
    """

    user_id: UUID
    friend_id: UUID
    balances: dict[str, Decimal] = Field(default_factory=dict)


class Transfer(BaseModel):
    """One suggested payment: debtor pays creditor ``amount``."""

    debtor: ParticipantRef
    creditor: ParticipantRef
    amount: Decimal = Field(..., gt=0)
    debtor_name: Optional[str] = None
    creditor_name: Optional[str] = None
