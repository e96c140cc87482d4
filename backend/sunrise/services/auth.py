"""
Authentication flows and their lifecycle hooks.

``AuthService`` owns sign-up, sign-in, email verification, password reset and
social sign-in. Every user row is created through ``_create_user`` so the
registered hooks see each signup exactly once:

* ``before_user_create`` runs inside the transaction that inserts the user and
  may change the pending row or abort creation by raising an ``APIError``.
* ``after_user_create`` runs once the row is committed; it is best-effort.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal
from urllib.parse import urlencode

from fastapi import Request
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.config import Settings, get_settings
from sunrise.errors import APIError, EmailTakenError, ErrorCodes, ForbiddenError, UnauthorizedError, ValidationError
from sunrise.models.account import CREDENTIAL_PROVIDER, Account
from sunrise.models.role import UserRole
from sunrise.models.user import User
from sunrise.models.verification import Verification
from sunrise.schemas.oauth import OAuthInvitationState
from sunrise.schemas.user import Token
from sunrise.security import create_access_token, get_password_hash, verify_password
from sunrise.services.email.client import EmailClient
from sunrise.services.invitations import hash_token
from sunrise.services.oauth import GoogleOAuthProvider, OAuthError, decode_state, encode_state
from sunrise.utils.time import utcnow

logger = logging.getLogger(__name__)

EMAIL_VERIFICATION_PREFIX = "email-verification:"
RESET_PASSWORD_PREFIX = "reset-password:"


@dataclass
class SignupContext:
    method: Literal["email", "oauth"]
    invitation: OAuthInvitationState | None = None
    invitation_accepted: bool = False

    @property
    def is_oauth(self) -> bool:
        return self.method == "oauth"


class AuthHooks:
    """No-op lifecycle hooks. Subclass and pass the class to ``AuthService``."""

    def __init__(self, auth: "AuthService"):
        self.auth = auth

    async def before_user_create(self, db: AsyncSession, user: User, ctx: SignupContext) -> None:
        pass

    async def after_user_create(self, db: AsyncSession, user: User, ctx: SignupContext) -> None:
        pass

    async def send_verification_email(self, db: AsyncSession, user: User, url: str) -> None:
        pass

    async def after_email_verification(self, db: AsyncSession, user: User) -> None:
        pass

    async def send_reset_password(self, db: AsyncSession, user: User, url: str) -> None:
        pass


class AuthService:
    def __init__(
        self,
        settings: Settings | None = None,
        email_client: EmailClient | None = None,
        hooks: type[AuthHooks] = AuthHooks,
        oauth_providers: dict | None = None,
    ):
        self.settings = settings or get_settings()
        self.email_client = email_client or EmailClient(self.settings)
        self.hooks = hooks(self)
        if oauth_providers is None:
            oauth_providers = {"google": GoogleOAuthProvider(self.settings)}
        self.oauth_providers = oauth_providers

    # ============== Sessions ==============

    def create_session(self, user: User) -> Token:
        return Token(access_token=create_access_token(data={"sub": str(user.id)}))

    # ============== User creation ==============

    async def _create_user(self, db: AsyncSession, user: User, account: Account, ctx: SignupContext) -> User:
        await self.hooks.before_user_create(db, user, ctx)

        user.accounts.append(account)
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning("Signup rejected, %s is already registered", user.email)
            raise EmailTakenError("User already exists with this email")
        await db.refresh(user)

        logger.info("User %s created via %s (role=%s)", user.id, ctx.method, user.role)
        await self.hooks.after_user_create(db, user, ctx)
        return user

    async def get_user_by_email(self, db: AsyncSession, email: str) -> User | None:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def sign_up_email(
        self,
        db: AsyncSession,
        name: str,
        email: str,
        password: str,
        *,
        role: UserRole = UserRole.USER,
        email_verified: bool = False,
    ) -> User:
        if await self.get_user_by_email(db, email):
            raise EmailTakenError("User already exists with this email")

        user_id = uuid.uuid4()
        user = User(
            id=user_id,
            name=name,
            email=email,
            role=UserRole(role).value,
            email_verified=email_verified,
        )
        account = Account(
            provider_id=CREDENTIAL_PROVIDER,
            account_id=str(user_id),
            password_hash=get_password_hash(password),
        )
        user = await self._create_user(db, user, account, SignupContext(method="email"))

        if self.settings.email_verification_required and not user.email_verified:
            await self.send_verification_email(db, user)
        return user

    # ============== Sign in ==============

    async def sign_in_email(self, db: AsyncSession, email: str, password: str) -> User:
        user = await self.get_user_by_email(db, email)
        account = None
        if user:
            result = await db.execute(
                select(Account).where(
                    Account.user_id == user.id,
                    Account.provider_id == CREDENTIAL_PROVIDER,
                )
            )
            account = result.scalar_one_or_none()

        if not account or not account.password_hash or not verify_password(password, account.password_hash):
            raise UnauthorizedError("Invalid email or password", headers={"WWW-Authenticate": "Bearer"})

        if self.settings.email_verification_required and not user.email_verified:
            raise ForbiddenError("Email not verified", code=ErrorCodes.EMAIL_NOT_VERIFIED)

        user.last_login_at = utcnow()
        await db.commit()
        return user

    # ============== Email verification ==============

    async def send_verification_email(self, db: AsyncSession, user: User) -> None:
        token = secrets.token_urlsafe(32)
        identifier = f"{EMAIL_VERIFICATION_PREFIX}{user.email}"
        await db.execute(delete(Verification).where(Verification.identifier == identifier))
        db.add(Verification(
            identifier=identifier,
            value=hash_token(token),
            expires_at=utcnow() + timedelta(hours=self.settings.email_verification_expiry_hours),
        ))
        await db.commit()

        query = urlencode({"token": token, "callbackURL": "/verify-email/callback"})
        url = f"{self.settings.app_url}/api/auth/verify-email?{query}"
        await self.hooks.send_verification_email(db, user, url)

    async def verify_email(self, db: AsyncSession, token: str) -> User:
        result = await db.execute(
            select(Verification).where(
                Verification.identifier.startswith(EMAIL_VERIFICATION_PREFIX),
                Verification.value == hash_token(token),
                Verification.expires_at > utcnow(),
            )
        )
        row = result.scalars().first()
        if row is None:
            raise ValidationError("Invalid or expired verification token")

        email = row.identifier[len(EMAIL_VERIFICATION_PREFIX):]
        user = await self.get_user_by_email(db, email)
        if user is None:
            raise ValidationError("Invalid or expired verification token")

        already_verified = user.email_verified
        user.email_verified = True
        await db.execute(delete(Verification).where(Verification.identifier == row.identifier))
        await db.commit()

        if not already_verified:
            await self.hooks.after_email_verification(db, user)
        return user

    # ============== Password reset ==============

    async def request_password_reset(self, db: AsyncSession, email: str) -> None:
        """Issue a reset link. Unknown addresses are ignored without telling the caller."""
        user = await self.get_user_by_email(db, email)
        if user is None:
            logger.info("Password reset requested for unknown address")
            return

        token = secrets.token_urlsafe(32)
        db.add(Verification(
            identifier=f"{RESET_PASSWORD_PREFIX}{hash_token(token)}",
            value=str(user.id),
            expires_at=utcnow() + timedelta(hours=self.settings.password_reset_expiry_hours),
        ))
        await db.commit()

        url = f"{self.settings.app_url}/reset-password?{urlencode({'token': token})}"
        await self.hooks.send_reset_password(db, user, url)

    async def reset_password(self, db: AsyncSession, token: str, new_password: str) -> User:
        identifier = f"{RESET_PASSWORD_PREFIX}{hash_token(token)}"
        result = await db.execute(
            select(Verification).where(
                Verification.identifier == identifier,
                Verification.expires_at > utcnow(),
            )
        )
        row = result.scalars().first()
        user = None
        user_id = _parse_uuid(row.value) if row is not None else None
        if user_id is not None:
            user = await db.get(User, user_id)
        if user is None:
            raise ValidationError("Invalid or expired reset token")

        result = await db.execute(
            select(Account).where(
                Account.user_id == user.id,
                Account.provider_id == CREDENTIAL_PROVIDER,
            )
        )
        account = result.scalar_one_or_none()
        if account is None:
            account = Account(user_id=user.id, provider_id=CREDENTIAL_PROVIDER, account_id=str(user.id))
            db.add(account)
        account.password_hash = get_password_hash(new_password)

        await db.execute(delete(Verification).where(Verification.identifier == identifier))
        await db.commit()
        logger.info("Password reset for user %s", user.id)
        return user

    # ============== Social sign-in ==============

    def get_oauth_provider(self, provider: str):
        oauth = self.oauth_providers.get(provider)
        if oauth is None or not oauth.enabled:
            raise OAuthError(f"OAuth provider '{provider}' is not configured")
        return oauth

    def start_social_sign_in(
        self,
        provider: str,
        redirect_uri: str,
        callback_url: str | None = None,
        invitation: OAuthInvitationState | None = None,
    ) -> str:
        oauth = self.get_oauth_provider(provider)
        state = encode_state(callback_url, invitation, self.settings)
        return oauth.get_authorization_url(state, redirect_uri)

    async def handle_oauth_callback(
        self,
        db: AsyncSession,
        provider: str,
        code: str,
        state: str,
        redirect_uri: str,
    ) -> User:
        oauth = self.get_oauth_provider(provider)
        oauth_state = decode_state(state, self.settings)
        profile = await oauth.fetch_profile(code, redirect_uri)

        result = await db.execute(
            select(Account).where(
                Account.provider_id == profile.provider,
                Account.account_id == profile.account_id,
            )
        )
        account = result.scalar_one_or_none()
        if account is not None:
            user = await db.get(User, account.user_id)
            user.last_login_at = utcnow()
            await db.commit()
            return user

        user = await self.get_user_by_email(db, profile.email)
        if user is not None:
            if not profile.email_verified:
                raise OAuthError("Cannot link an unverified provider email to an existing account")
            db.add(Account(user_id=user.id, provider_id=profile.provider, account_id=profile.account_id))
            user.email_verified = True
            user.last_login_at = utcnow()
            await db.commit()
            logger.info("Linked %s account to existing user %s", profile.provider, user.id)
            return user

        user = User(
            name=profile.name,
            email=profile.email,
            image=profile.image,
            email_verified=profile.email_verified,
            role=UserRole.USER.value,
            last_login_at=utcnow(),
        )
        account = Account(provider_id=profile.provider, account_id=profile.account_id)
        ctx = SignupContext(method="oauth", invitation=oauth_state.invitation)
        try:
            return await self._create_user(db, user, account, ctx)
        except APIError:
            await db.rollback()
            raise


def _parse_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def get_auth_service(request: Request) -> AuthService:
    """The service built once in ``create_app``."""
    return request.app.state.auth
