"""Social sign-in: provider code exchange and the signed OAuth ``state``."""

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from sunrise.config import Settings, get_settings
from sunrise.errors import ErrorCodes, ValidationError
from sunrise.schemas.oauth import OAuthInvitationState, OAuthProfile
from sunrise.security import ALGORITHM
from sunrise.utils.time import utcnow

logger = logging.getLogger(__name__)

STATE_AUDIENCE = "oauth-state"


class OAuthError(ValidationError):
    code = ErrorCodes.OAUTH_ERROR
    default_message = "OAuth sign-in failed"


@dataclass
class OAuthState:
    callback_url: str | None
    invitation: OAuthInvitationState | None


def encode_state(callback_url: str | None, invitation: OAuthInvitationState | None, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    payload = {
        "aud": STATE_AUDIENCE,
        "nonce": secrets.token_urlsafe(16),
        "callback_url": callback_url,
        "additional_data": invitation.model_dump(mode="json") if invitation else None,
        "exp": utcnow() + timedelta(minutes=settings.oauth_state_expire_minutes),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_state(state: str, settings: Settings | None = None) -> OAuthState:
    """Verify the signature and expiry of ``state`` and parse its invitation data."""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(state, settings.secret_key, algorithms=[ALGORITHM], audience=STATE_AUDIENCE)
    except JWTError:
        logger.warning("Rejected invalid or expired OAuth state")
        raise OAuthError("Invalid or expired OAuth state")

    invitation = None
    if payload.get("additional_data"):
        try:
            invitation = OAuthInvitationState.model_validate(payload["additional_data"])
        except PydanticValidationError:
            logger.warning("Rejected malformed invitation data in OAuth state")
            raise OAuthError("Malformed invitation data in OAuth state")

    return OAuthState(callback_url=payload.get("callback_url"), invitation=invitation)


class GoogleOAuthProvider:
    name = "google"
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    userinfo_url = "https://openidconnect.googleapis.com/v1/userinfo"

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.settings.google_enabled

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.settings.google_client_id,
            "redirect_uri": redirect_uri,
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def fetch_profile(self, code: str, redirect_uri: str) -> OAuthProfile:
        """Exchange an authorization code for the user's verified identity."""
        data = {
            "code": code,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                resp = await client.post(self.token_url, data=data)
                if resp.status_code != 200:
                    logger.error("Google token exchange failed: %s %s", resp.status_code, resp.text)
                    raise OAuthError("Failed to exchange authorization code")
                access_token = resp.json().get("access_token")

                resp = await client.get(
                    self.userinfo_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                if resp.status_code != 200:
                    logger.error("Google userinfo request failed: %s %s", resp.status_code, resp.text)
                    raise OAuthError("Failed to fetch Google profile")
                info = resp.json()
        except httpx.HTTPError as e:
            logger.error("Google OAuth request error: %s", e)
            raise OAuthError("Could not reach Google")

        if not info.get("email"):
            raise OAuthError("Google account has no email address")

        return OAuthProfile(
            provider=self.name,
            account_id=str(info["sub"]),
            email=info["email"].strip().lower(),
            name=info.get("name") or info["email"].split("@")[0],
            image=info.get("picture"),
            email_verified=bool(info.get("email_verified")),
        )
