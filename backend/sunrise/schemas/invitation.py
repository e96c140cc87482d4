from typing import Literal

from sunrise.models.role import UserRole
from sunrise.schemas.common import CamelModel
from sunrise.schemas.user import Email, Name

EmailStatus = Literal["sent", "failed", "disabled", "pending"]


class InviteUserRequest(CamelModel):
    name: Name
    email: Email
    role: Literal["USER", "ADMIN"] = "USER"


class InvitationMetadata(CamelModel):
    """What is stored alongside an invitation token."""
    name: str
    role: UserRole = UserRole.USER
    invited_by: str
    invited_at: str


class InvitationDetails(CamelModel):
    email: str
    name: str
    role: str
    invited_at: str
    expires_at: str
    # Only present when a fresh token was issued
    link: str | None = None


class InviteUserResponse(CamelModel):
    message: str
    invitation: InvitationDetails
    email_status: EmailStatus


class InvitationMetadataResponse(CamelModel):
    name: str
    role: str


class PendingInvitation(CamelModel):
    email: str
    name: str
    role: str
    invited_by: str | None = None
    invited_by_name: str | None = None
    invited_at: str
    expires_at: str
