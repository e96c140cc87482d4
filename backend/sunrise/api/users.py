"""User endpoints: self-service profile and preferences, admin user management and invitations."""

import copy
import logging
from datetime import timedelta
from typing import Annotated, Literal
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.db.postgres import get_db
from sunrise.errors import APIError, EmailTakenError, ErrorCodes, ForbiddenError, NotFoundError, ValidationError
from sunrise.models.user import User
from sunrise.schemas.common import PaginationMeta, ok
from sunrise.schemas.invitation import (
    InvitationDetails,
    InvitationMetadata,
    InviteUserRequest,
    InviteUserResponse,
)
from sunrise.schemas.user import (
    DEFAULT_USER_PREFERENCES,
    AdminUserUpdate,
    DeleteAccountRequest,
    PreferencesUpdate,
    ProfileUpdate,
    UserListItem,
    UserPreferences,
    UserResponse,
)
from sunrise.security import get_current_user, require_admin
from sunrise.services.auth import AuthService, get_auth_service
from sunrise.services.email.templates import render_invitation_email
from sunrise.services.invitations import (
    generate_invitation_token,
    get_valid_invitation,
    update_invitation_token,
)
from sunrise.services.rate_limit import invite_limiter, rate_limit
from sunrise.utils.time import isoformat, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


def parse_preferences(stored: dict | None) -> UserPreferences:
    """Stored preferences over the defaults; security alerts are always on."""
    email = (stored or {}).get("email") if isinstance(stored, dict) else None
    email = email if isinstance(email, dict) else {}
    defaults = DEFAULT_USER_PREFERENCES["email"]
    return UserPreferences.model_validate({
        "email": {
            "marketing": email.get("marketing") if isinstance(email.get("marketing"), bool) else defaults["marketing"],
            "productUpdates": (
                email.get("productUpdates")
                if isinstance(email.get("productUpdates"), bool)
                else defaults["productUpdates"]
            ),
            "securityAlerts": True,
        }
    })


# ============== Current user ==============

@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)):
    return ok(UserResponse.model_validate(current_user))


@router.patch("/me")
async def update_me(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)

    if changes.get("email") and changes["email"] != current_user.email:
        existing = await db.execute(select(User.id).where(User.email == changes["email"]))
        if existing.first() is not None:
            raise APIError("Email already in use", code=ErrorCodes.EMAIL_TAKEN, status_code=status.HTTP_400_BAD_REQUEST)

    for field, value in changes.items():
        if field in ("name", "email", "timezone") and value is None:
            continue
        setattr(current_user, field, value)

    await db.commit()
    await db.refresh(current_user)
    return ok(UserResponse.model_validate(current_user))


@router.delete("/me")
async def delete_me(
    data: DeleteAccountRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Permanently delete the caller's account and linked credentials."""
    user_id = current_user.id
    logger.info("Account deletion initiated for user %s", user_id)
    await db.delete(current_user)
    await db.commit()
    logger.info("Account deleted for user %s", user_id)
    return ok({"deleted": True, "message": "Account deleted successfully"})


@router.get("/me/preferences")
async def get_preferences(current_user: User = Depends(get_current_user)):
    return ok(parse_preferences(current_user.preferences))


@router.patch("/me/preferences")
async def update_preferences(
    data: PreferencesUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    current = parse_preferences(current_user.preferences).model_dump(by_alias=True)
    if data.email is not None:
        current["email"].update(data.email.model_dump(by_alias=True, exclude_none=True))
    current["email"]["securityAlerts"] = True

    current_user.preferences = copy.deepcopy(current)
    await db.commit()
    return ok(UserPreferences.model_validate(current))


# ============== Invitations ==============

@router.post("/invite")
async def invite_user(
    data: InviteUserRequest,
    response: Response,
    current_user: User = Depends(require_admin()),
    _rate_limit=Depends(rate_limit(invite_limiter)),
    resend: Annotated[str | None, Query()] = None,
    auth: AuthService = Depends(get_auth_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Invite a new user by email.

    Returns 200 without a link when an invitation is already pending (pass
    ``?resend=true`` to issue a new token), 201 when a token was issued.
    Email delivery problems never fail the request; they are reported in
    ``emailStatus``.
    """
    existing_user = await db.execute(select(User.id).where(User.email == data.email))
    if existing_user.first() is not None:
        raise EmailTakenError("User already exists with this email")

    existing = await get_valid_invitation(db, data.email)

    # Only the literal "true" asks for a resend
    if existing is not None and resend != "true":
        logger.info("Invitation already pending for %s, not resending", data.email)
        response.status_code = status.HTTP_200_OK
        return ok(InviteUserResponse(
            message="Invitation already pending. Use ?resend=true to send a new invitation email.",
            invitation=InvitationDetails(
                email=data.email,
                name=existing.metadata.name,
                role=existing.metadata.role.value,
                invited_at=existing.metadata.invited_at,
                expires_at=isoformat(existing.expires_at),
            ),
            email_status="pending",
        ), exclude_none=True)

    settings = auth.settings
    invited_at = utcnow()
    expires_at = invited_at + timedelta(days=settings.invitation_expiry_days)
    metadata = InvitationMetadata(
        name=data.name,
        role=data.role,
        invited_by=str(current_user.id),
        invited_at=isoformat(invited_at),
    )
    if existing is not None:
        token = await update_invitation_token(db, data.email, metadata, expires_at=expires_at)
    else:
        token = await generate_invitation_token(db, data.email, metadata, expires_at=expires_at)

    logger.info(
        "Invitation %s for %s (role=%s, invited_by=%s)",
        "resent" if existing else "created",
        data.email,
        data.role,
        current_user.id,
    )

    link = f"{settings.app_url}/accept-invite?token={token}&email={quote(data.email, safe='')}"

    subject, html = render_invitation_email(
        inviter_name=current_user.name or "Administrator",
        invitee_name=data.name,
        invitation_url=link,
        expires_at=expires_at,
    )
    email_result = await auth.email_client.send(data.email, subject, html)
    if email_result.success:
        logger.info("Invitation email sent to %s (id=%s)", data.email, email_result.id)
    else:
        logger.warning(
            "Invitation email to %s not delivered (%s): %s",
            data.email,
            email_result.status,
            email_result.error,
        )

    action = "resent" if existing else "sent"
    noun = "regenerated" if existing else "created"
    if email_result.status == "sent":
        message = f"Invitation {action} successfully"
    elif email_result.status == "failed":
        message = f"Invitation {noun} but email failed to send"
    else:
        message = f"Invitation {noun} (email service not configured)"

    response.status_code = status.HTTP_201_CREATED
    return ok(InviteUserResponse(
        message=message,
        invitation=InvitationDetails(
            email=data.email,
            name=data.name,
            role=data.role,
            invited_at=metadata.invited_at,
            expires_at=isoformat(expires_at),
            link=link,
        ),
        email_status=email_result.status,
    ), exclude_none=True)


# ============== Admin user management ==============

@router.get("")
async def list_users(
    current_user: User = Depends(require_admin()),
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    search: Annotated[str | None, Query(max_length=200)] = None,
    sort_by: Annotated[Literal["name", "email", "createdAt"], Query(alias="sortBy")] = "createdAt",
    sort_order: Annotated[Literal["asc", "desc"], Query(alias="sortOrder")] = "desc",
    db: AsyncSession = Depends(get_db),
):
    """List all users (admin only)."""
    query = select(User)
    count_query = select(func.count(User.id))
    if search:
        pattern = f"%{search.strip().lower()}%"
        condition = or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern))
        query = query.where(condition)
        count_query = count_query.where(condition)

    column = {"name": User.name, "email": User.email, "createdAt": User.created_at}[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())

    total = (await db.execute(count_query)).scalar() or 0
    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    users = [UserListItem.model_validate(user) for user in result.scalars().all()]

    return ok(users, meta=PaginationMeta.build(page, limit, total))


@router.get("/{user_id}")
async def get_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a user. Non-admins may only read their own record."""
    if user_id != current_user.id and not current_user.is_admin:
        raise ForbiddenError()

    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return ok(UserResponse.model_validate(user))


@router.patch("/{user_id}")
async def update_user(
    user_id: UUID,
    data: AdminUserUpdate,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Update a user's name, role or verification status (admin only)."""
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")

    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    # Prevent changing your own role
    if "role" in changes and user.id == current_user.id and changes["role"].value != user.role:
        raise ValidationError("Cannot change your own role", code=ErrorCodes.SELF_ROLE_CHANGE)

    if "name" in changes:
        user.name = changes["name"]
    if "role" in changes:
        user.role = changes["role"].value
    if "email_verified" in changes:
        user.email_verified = changes["email_verified"]

    await db.commit()
    await db.refresh(user)
    logger.info("User %s updated by admin %s: %s", user.id, current_user.id, sorted(changes))
    return ok(UserResponse.model_validate(user))


@router.delete("/{user_id}")
async def delete_user(
    user_id: UUID,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Delete a user (admin only)."""
    if user_id == current_user.id:
        raise ValidationError("Cannot delete yourself")

    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")

    await db.delete(user)
    await db.commit()
    return ok({"deleted": True, "id": str(user_id)})
