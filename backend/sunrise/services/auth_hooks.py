"""
Lifecycle hooks that tie signups to pending invitations.

OAuth signups carry invitation data in their signed ``state``. The invitation
is consumed and its role applied before the user row is committed, in the
same transaction, so the first session already has the invited role and a
token can never be redeemed twice. Password signups through accept-invite are
recognised afterwards by their still-pending invitation.
"""

import copy
import logging
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.errors import ErrorCodes, ValidationError
from sunrise.models.account import CREDENTIAL_PROVIDER, Account
from sunrise.models.role import UserRole
from sunrise.models.user import User
from sunrise.schemas.user import DEFAULT_USER_PREFERENCES
from sunrise.services.auth import AuthHooks, SignupContext
from sunrise.services.email.templates import (
    render_reset_password_email,
    render_verify_email,
    render_welcome_email,
)
from sunrise.services.invitations import consume_invitation_token, get_valid_invitation
from sunrise.utils.time import utcnow

logger = logging.getLogger(__name__)


class InvitationEmailMismatchError(ValidationError):
    code = ErrorCodes.INVITATION_EMAIL_MISMATCH


class InvitationAuthHooks(AuthHooks):

    @property
    def settings(self):
        return self.auth.settings

    @property
    def email_client(self):
        return self.auth.email_client

    async def before_user_create(self, db: AsyncSession, user: User, ctx: SignupContext) -> None:
        if not ctx.is_oauth or ctx.invitation is None:
            return

        invitation_email = ctx.invitation.invitationEmail
        if user.email != invitation_email:
            logger.warning(
                "OAuth invitation email mismatch, rejecting signup (invited=%s, oauth=%s)",
                invitation_email,
                user.email,
            )
            raise InvitationEmailMismatchError(
                f"This invitation was sent to {invitation_email}. Please use an account "
                "with that email address, or set a password instead."
            )

        try:
            record = await consume_invitation_token(db, invitation_email, ctx.invitation.invitationToken)
        except SQLAlchemyError:
            logger.exception("Error consuming OAuth invitation for %s", invitation_email)
            await db.rollback()
            return

        if record is None:
            logger.warning(
                "OAuth invitation token for %s is invalid or already used, continuing as a regular signup",
                invitation_email,
            )
            return

        ctx.invitation_accepted = True
        if record.metadata.role != UserRole.USER:
            user.role = record.metadata.role.value
            logger.info("Applied invitation role %s to OAuth signup %s", user.role, user.email)

    async def after_user_create(self, db: AsyncSession, user: User, ctx: SignupContext) -> None:
        await self._set_default_preferences(db, user, ctx)

        is_password_invitation = False
        if ctx.is_oauth:
            if ctx.invitation_accepted:
                logger.info("OAuth invitation accepted by user %s", user.id)
        else:
            invitation = await get_valid_invitation(db, user.email)
            if invitation is not None:
                is_password_invitation = True
                logger.info("Detected password invitation acceptance for user %s", user.id)

        if ctx.is_oauth or not self.settings.email_verification_required or is_password_invitation:
            await self.send_welcome_email(user)
        else:
            logger.info("Deferring welcome email for user %s until email is verified", user.id)

    async def send_verification_email(self, db: AsyncSession, user: User, url: str) -> None:
        if await get_valid_invitation(db, user.email) is not None:
            logger.info("Skipping verification email for invited address %s", user.email)
            return

        subject, html = render_verify_email(
            user.name or "User",
            url,
            utcnow() + timedelta(hours=self.settings.email_verification_expiry_hours),
        )
        await self.email_client.send(user.email, subject, html)

    async def after_email_verification(self, db: AsyncSession, user: User) -> None:
        logger.info("Email verification completed for user %s", user.id)
        await self.send_welcome_email(user)

    async def send_reset_password(self, db: AsyncSession, user: User, url: str) -> None:
        result = await db.execute(
            select(Account.id).where(
                Account.user_id == user.id,
                Account.provider_id == CREDENTIAL_PROVIDER,
                Account.password_hash.is_not(None),
            )
        )
        if result.first() is None:
            logger.info("Password reset requested for OAuth-only user %s, not sending", user.id)
            return

        subject, html = render_reset_password_email(
            user.name or "User",
            url,
            utcnow() + timedelta(hours=self.settings.password_reset_expiry_hours),
        )
        await self.email_client.send(user.email, subject, html)

    async def send_welcome_email(self, user: User) -> None:
        subject, html = render_welcome_email(user.name or "User", user.email)
        try:
            result = await self.email_client.send(user.email, subject, html)
        except Exception:
            logger.exception("Failed to send welcome email to user %s", user.id)
            return
        if not result.success:
            logger.warning("Welcome email to user %s not delivered (%s)", user.id, result.status)

    async def _set_default_preferences(self, db: AsyncSession, user: User, ctx: SignupContext) -> None:
        try:
            user.preferences = copy.deepcopy(DEFAULT_USER_PREFERENCES)
            await db.commit()
            logger.info("Default preferences set for user %s (%s signup)", user.id, ctx.method)
        except SQLAlchemyError:
            logger.exception("Failed to set default preferences for user %s", user.id)
            await db.rollback()
