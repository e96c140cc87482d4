from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from sunrise.schemas.common import CamelModel
from sunrise.schemas.user import Email


class OAuthInvitationState(BaseModel):
    """
    Invitation data a client attaches to an OAuth sign-in.

    Round-tripped through the signed OAuth ``state`` and read back by the
    user-creation hooks. Unknown keys are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    invitationToken: str = Field(min_length=1)
    invitationEmail: Email


class SocialSignInRequest(CamelModel):
    provider: Literal["google"]
    callback_url: str | None = Field(None, alias="callbackURL")
    additional_data: OAuthInvitationState | None = None


class SocialSignInResponse(CamelModel):
    url: str
    redirect: bool = True


class OAuthProfile(BaseModel):
    """Normalized identity returned by a provider after the code exchange."""

    provider: str
    account_id: str
    email: str
    name: str
    image: str | None = None
    email_verified: bool = False
