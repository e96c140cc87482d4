"""Authentication endpoints: email/password, verification, password reset, social sign-in and invitation acceptance."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.db.postgres import get_db
from sunrise.errors import NotFoundError, ValidationError
from sunrise.models.user import User
from sunrise.schemas.common import ok
from sunrise.schemas.oauth import SocialSignInRequest, SocialSignInResponse
from sunrise.schemas.user import (
    AcceptInviteRequest,
    EmailRequest,
    ResetPasswordRequest,
    SignInRequest,
    SignUpRequest,
    TokenWithUser,
    UserResponse,
)
from sunrise.security import get_current_user
from sunrise.services.auth import AuthService, get_auth_service
from sunrise.services.invitations import (
    delete_invitation_token,
    get_valid_invitation,
    validate_invitation_token,
)
from sunrise.services.rate_limit import (
    accept_invite_limiter,
    auth_limiter,
    password_reset_limiter,
    rate_limit,
    verification_email_limiter,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def build_user_response(user: User) -> UserResponse:
    return UserResponse.model_validate(user)


def build_session(auth: AuthService, user: User) -> TokenWithUser:
    token = auth.create_session(user)
    return TokenWithUser(
        access_token=token.access_token,
        token_type=token.token_type,
        user=build_user_response(user),
    )


# ============== Email & password ==============

@router.post("/sign-up/email", status_code=status.HTTP_201_CREATED, dependencies=[Depends(rate_limit(auth_limiter))])
async def sign_up(
    data: SignUpRequest,
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    user = await auth.sign_up_email(db, data.name, data.email, data.password)

    if auth.settings.email_verification_required and not user.email_verified:
        return ok({
            "user": build_user_response(user).model_dump(mode="json", by_alias=True),
            "requiresVerification": True,
        })
    return ok(build_session(auth, user))


@router.post("/sign-in/email", dependencies=[Depends(rate_limit(auth_limiter))])
async def sign_in(
    data: SignInRequest,
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    user = await auth.sign_in_email(db, data.email, data.password)
    return ok(build_session(auth, user))


@router.get("/me")
async def get_me(current_user: Annotated[User, Depends(get_current_user)]):
    return ok(build_user_response(current_user))


# ============== Email verification ==============

@router.post("/send-verification-email", dependencies=[Depends(rate_limit(verification_email_limiter))])
async def send_verification_email(
    data: EmailRequest,
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    """Always succeeds so callers cannot probe which addresses are registered."""
    user = await auth.get_user_by_email(db, data.email)
    if user is not None and not user.email_verified:
        await auth.send_verification_email(db, user)
    else:
        logger.info("Verification email not sent (unknown or already verified address)")

    return ok({"message": "If an account exists for this email, a verification link has been sent."})


@router.get("/verify-email")
async def verify_email(
    token: Annotated[str, Query(min_length=1)],
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    user = await auth.verify_email(db, token)
    return ok(build_session(auth, user))


# ============== Password reset ==============

@router.post("/forget-password", dependencies=[Depends(rate_limit(password_reset_limiter))])
async def forget_password(
    data: EmailRequest,
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    await auth.request_password_reset(db, data.email)
    return ok({"message": "If an account exists for this email, a password reset link has been sent."})


@router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    await auth.reset_password(db, data.token, data.password)
    return ok({"message": "Password has been reset"})


# ============== Social sign-in ==============

@router.post("/sign-in/social")
async def sign_in_social(
    data: SocialSignInRequest,
    request: Request,
    auth: AuthService = Depends(get_auth_service),
):
    url = auth.start_social_sign_in(
        data.provider,
        redirect_uri=str(request.url_for("oauth_callback", provider=data.provider)),
        callback_url=data.callback_url,
        invitation=data.additional_data,
    )
    return ok(SocialSignInResponse(url=url))


@router.get("/callback/{provider}", name="oauth_callback")
async def oauth_callback(
    provider: str,
    request: Request,
    code: Annotated[str, Query(min_length=1)],
    state: Annotated[str, Query(min_length=1)],
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    user = await auth.handle_oauth_callback(
        db,
        provider,
        code,
        state,
        redirect_uri=str(request.url_for("oauth_callback", provider=provider)),
    )
    return ok(build_session(auth, user))


# ============== Invitation acceptance ==============

@router.post("/accept-invite", dependencies=[Depends(rate_limit(accept_invite_limiter))])
async def accept_invite(
    data: AcceptInviteRequest,
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    """Create an account from an invitation and sign the new user in."""
    if not await validate_invitation_token(db, data.email, data.token):
        raise ValidationError("Invalid or expired invitation token")

    invitation = await get_valid_invitation(db, data.email)
    if invitation is None:
        raise NotFoundError("Invitation not found")

    user = await auth.sign_up_email(
        db,
        invitation.metadata.name,
        data.email,
        data.password,
        role=invitation.metadata.role,
        email_verified=True,
    )

    await delete_invitation_token(db, data.email)
    logger.info("Invitation accepted by user %s (role=%s)", user.id, user.role)

    return ok(build_session(auth, user))
