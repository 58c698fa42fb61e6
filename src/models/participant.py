"""
Participant references.

A ledger line (payment, split, settlement side) points at exactly one of:
- a registered account (UserRef)
- a pending participant known only by email (PendingRef)

DESIGN DECISION: The reference is a discriminated union on ``kind`` rather
than a pair of nullable ids. "Exactly one identity" holds by construction,
and the frozen variants are hashable so they can key balance maps.
"""

from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserRef(BaseModel):
    """Reference to a registered account."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    user_id: UUID

    @property
    def id(self) -> UUID:
        return self.user_id

    @property
    def is_pending(self) -> bool:
        return False

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.kind, str(self.user_id))

    def __str__(self) -> str:
        return f"user:{self.user_id}"


class PendingRef(BaseModel):
    """Reference to a pending (not yet registered) participant."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["pending"] = "pending"
    pending_id: UUID

    @property
    def id(self) -> UUID:
        return self.pending_id

    @property
    def is_pending(self) -> bool:
        return True

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.kind, str(self.pending_id))

    def __str__(self) -> str:
        return f"pending:{self.pending_id}"


ParticipantRef = Annotated[Union[UserRef, PendingRef], Field(discriminator="kind")]


def user_ref(user_id: UUID) -> UserRef:
    return UserRef(user_id=user_id)


def pending_ref(pending_id: UUID) -> PendingRef:
    return PendingRef(pending_id=pending_id)
