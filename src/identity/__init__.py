"""Invitations and placeholder-participant resolution."""

from src.identity.invitation_service import (
    AccountGateway,
    InvitationService,
    normalize_email,
)

__all__ = ["AccountGateway", "InvitationService", "normalize_email"]
