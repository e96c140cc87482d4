"""Admin API endpoints for pending invitations and dashboard statistics."""

import logging
import platform
import time
from datetime import timedelta
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.config import get_settings
from sunrise.db.postgres import check_database, get_db
from sunrise.errors import NotFoundError
from sunrise.models.role import UserRole
from sunrise.models.user import User
from sunrise.schemas.common import CamelModel, PaginationMeta, ok
from sunrise.security import require_admin
from sunrise.services.invitations import (
    delete_invitation_token,
    get_all_pending_invitations,
    get_valid_invitation,
)
from sunrise.utils.time import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()

PROCESS_START_TIME = time.time()


# ============== Schemas ==============

class UserStats(CamelModel):
    total: int
    verified: int
    recent_signups: int
    by_role: dict[str, int]


class SystemInfo(CamelModel):
    python_version: str
    app_version: str
    environment: str
    uptime: int
    database_status: Literal["connected", "error"]


class AdminStats(CamelModel):
    users: UserStats
    pending_invitations: int
    system: SystemInfo


# ============== Invitation Endpoints ==============

@router.get("/invitations")
async def list_invitations(
    current_user: User = Depends(require_admin()),
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    search: Annotated[str | None, Query(max_length=200)] = None,
    sort_by: Annotated[Literal["name", "email", "invitedAt", "expiresAt"], Query(alias="sortBy")] = "invitedAt",
    sort_order: Annotated[Literal["asc", "desc"], Query(alias="sortOrder")] = "desc",
    db: AsyncSession = Depends(get_db),
):
    """List pending (non-expired) invitations."""
    invitations, total = await get_all_pending_invitations(
        db,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    logger.info("Pending invitations listed: %s of %s", len(invitations), total)
    return ok(invitations, meta=PaginationMeta.build(page, limit, total))


@router.delete("/invitations/{email}")
async def delete_invitation(
    email: str,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Revoke a pending invitation."""
    email = email.strip().lower()
    if await get_valid_invitation(db, email) is None:
        raise NotFoundError("Invitation not found or already expired")

    await delete_invitation_token(db, email)
    logger.info("Invitation for %s deleted by admin %s", email, current_user.id)
    return ok({"message": f"Invitation for {email} has been deleted"})


# ============== Stats Endpoint ==============

@router.get("/stats")
async def get_admin_stats(
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    """Get admin dashboard statistics."""
    settings = get_settings()
    since = utcnow() - timedelta(hours=24)

    total_users = (await db.execute(select(func.count(User.id)))).scalar() or 0
    verified_users = (
        await db.execute(select(func.count(User.id)).where(User.email_verified.is_(True)))
    ).scalar() or 0
    recent_signups = (
        await db.execute(select(func.count(User.id)).where(User.created_at >= since))
    ).scalar() or 0

    by_role = {role.value: 0 for role in UserRole}
    rows = await db.execute(select(User.role, func.count(User.id)).group_by(User.role))
    for role, count in rows.all():
        by_role[role] = count

    _, pending_invitations = await get_all_pending_invitations(db, page=1, limit=1)

    stats = AdminStats(
        users=UserStats(
            total=total_users,
            verified=verified_users,
            recent_signups=recent_signups,
            by_role=by_role,
        ),
        pending_invitations=pending_invitations,
        system=SystemInfo(
            python_version=platform.python_version(),
            app_version=settings.app_version,
            environment=settings.environment,
            uptime=int(time.time() - PROCESS_START_TIME),
            database_status="connected" if await check_database(db) else "error",
        ),
    )
    return ok(stats)
