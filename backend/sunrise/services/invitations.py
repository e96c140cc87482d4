"""
Invitation tokens.

Invitations live in the generic ``verification`` table under the identifier
``invitation:{email}``. Only the SHA-256 hash of a token is stored; the plain
token goes out in the invitation email and is never persisted or logged.
"""

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.config import get_settings
from sunrise.models.user import User
from sunrise.models.verification import Verification
from sunrise.schemas.invitation import InvitationMetadata, PendingInvitation
from sunrise.utils.time import isoformat, utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTE_LENGTH = 32
IDENTIFIER_PREFIX = "invitation:"

SortField = Literal["name", "email", "invitedAt", "expiresAt"]


@dataclass
class InvitationRecord:
    email: str
    metadata: InvitationMetadata
    expires_at: datetime
    created_at: datetime


@dataclass
class InvitationMetadataResult:
    valid: bool
    metadata: InvitationMetadata | None = None
    expires_at: datetime | None = None
    reason: Literal["not_found", "expired", "invalid_token"] | None = None


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def invitation_identifier(email: str) -> str:
    return f"{IDENTIFIER_PREFIX}{email}"


def _metadata_from_row(row: Verification) -> InvitationMetadata:
    return InvitationMetadata.model_validate(row.meta or {})


async def _latest_row(db: AsyncSession, email: str, *, live_only: bool) -> Verification | None:
    query = select(Verification).where(Verification.identifier == invitation_identifier(email))
    if live_only:
        query = query.where(Verification.expires_at > utcnow())
    result = await db.execute(query.order_by(Verification.created_at.desc()).limit(1))
    return result.scalar_one_or_none()


async def generate_invitation_token(
    db: AsyncSession,
    email: str,
    metadata: InvitationMetadata,
    *,
    expires_at: datetime | None = None,
    commit: bool = True,
) -> str:
    """Store a new invitation for ``email`` and return the plain token."""
    token = secrets.token_hex(TOKEN_BYTE_LENGTH)
    if expires_at is None:
        expires_at = utcnow() + timedelta(days=get_settings().invitation_expiry_days)

    db.add(Verification(
        identifier=invitation_identifier(email),
        value=hash_token(token),
        meta=metadata.model_dump(mode="json", by_alias=True),
        expires_at=expires_at,
    ))
    if commit:
        await db.commit()

    logger.info("Invitation token generated for %s (expires %s)", email, isoformat(expires_at))
    return token


async def validate_invitation_token(db: AsyncSession, email: str, token: str) -> bool:
    """True if ``token`` matches the most recent live invitation for ``email``."""
    try:
        row = await _latest_row(db, email, live_only=True)
    except SQLAlchemyError:
        logger.exception("Failed to validate invitation token for %s", email)
        return False

    if row is None:
        logger.warning("Invitation token not found or expired for %s", email)
        return False

    if not secrets.compare_digest(row.value, hash_token(token)):
        logger.warning("Invitation token mismatch for %s", email)
        return False

    logger.info("Invitation token validated for %s", email)
    return True


async def delete_invitation_token(db: AsyncSession, email: str, *, commit: bool = True) -> int:
    """Delete every invitation row for ``email``. Returns how many were removed."""
    result = await db.execute(
        delete(Verification).where(Verification.identifier == invitation_identifier(email))
    )
    if commit:
        await db.commit()
    logger.info("Invitation tokens deleted for %s (count=%s)", email, result.rowcount)
    return result.rowcount


async def consume_invitation_token(db: AsyncSession, email: str, token: str) -> InvitationRecord | None:
    """
    Delete the live invitation matching ``token`` without committing.

    Returns the consumed invitation only when this call removed the row, so
    two concurrent consumers of the same token cannot both succeed once their
    transactions commit.
    """
    result = await db.execute(
        select(Verification)
        .where(
            Verification.identifier == invitation_identifier(email),
            Verification.value == hash_token(token),
            Verification.expires_at > utcnow(),
        )
        .with_for_update()
    )
    row = result.scalars().first()
    if row is None:
        return None

    record = InvitationRecord(
        email=email,
        metadata=_metadata_from_row(row),
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
    deleted = await db.execute(delete(Verification).where(Verification.id == row.id))
    if deleted.rowcount == 0:
        return None

    # Older or expired rows for the same address are dead weight now
    await db.execute(
        delete(Verification).where(Verification.identifier == invitation_identifier(email))
    )
    logger.info("Invitation token consumed for %s", email)
    return record


async def get_valid_invitation(db: AsyncSession, email: str) -> InvitationRecord | None:
    try:
        row = await _latest_row(db, email, live_only=True)
    except SQLAlchemyError:
        logger.exception("Failed to get valid invitation for %s", email)
        return None

    if row is None:
        return None

    return InvitationRecord(
        email=email,
        metadata=_metadata_from_row(row),
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


async def update_invitation_token(
    db: AsyncSession,
    email: str,
    metadata: InvitationMetadata,
    *,
    expires_at: datetime | None = None,
) -> str:
    """Replace any existing invitation for ``email`` with a fresh token (resend)."""
    await delete_invitation_token(db, email, commit=False)
    token = await generate_invitation_token(db, email, metadata, expires_at=expires_at, commit=False)
    await db.commit()
    logger.info("Invitation token regenerated for %s", email)
    return token


async def get_invitation_metadata(db: AsyncSession, email: str, token: str) -> InvitationMetadataResult:
    row = await _latest_row(db, email, live_only=False)

    if row is None:
        logger.warning("Invitation not found for metadata lookup: %s", email)
        return InvitationMetadataResult(valid=False, reason="not_found")

    if row.is_expired:
        logger.warning("Invitation for %s expired at %s", email, isoformat(row.expires_at))
        return InvitationMetadataResult(valid=False, reason="expired")

    if not secrets.compare_digest(row.value, hash_token(token)):
        logger.warning("Invitation token mismatch for metadata lookup: %s", email)
        return InvitationMetadataResult(valid=False, reason="invalid_token")

    return InvitationMetadataResult(
        valid=True,
        metadata=_metadata_from_row(row),
        expires_at=row.expires_at,
    )


async def get_all_pending_invitations(
    db: AsyncSession,
    *,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
    sort_by: SortField = "invitedAt",
    sort_order: Literal["asc", "desc"] = "desc",
) -> tuple[list[PendingInvitation], int]:
    """Live invitations, newest row per email, with the inviter's name resolved."""
    result = await db.execute(
        select(Verification)
        .where(
            Verification.identifier.startswith(IDENTIFIER_PREFIX),
            Verification.expires_at > utcnow(),
        )
        .order_by(Verification.created_at.desc())
    )

    latest: dict[str, Verification] = {}
    for row in result.scalars():
        email = row.identifier[len(IDENTIFIER_PREFIX):]
        latest.setdefault(email, row)

    items = []
    for email, row in latest.items():
        metadata = _metadata_from_row(row)
        items.append(PendingInvitation(
            email=email,
            name=metadata.name,
            role=metadata.role.value,
            invited_by=metadata.invited_by,
            invited_at=metadata.invited_at,
            expires_at=isoformat(row.expires_at),
        ))

    if search:
        needle = search.strip().lower()
        items = [i for i in items if needle in i.name.lower() or needle in i.email.lower()]

    sort_keys = {
        "name": lambda i: i.name.lower(),
        "email": lambda i: i.email,
        "invitedAt": lambda i: i.invited_at,
        "expiresAt": lambda i: i.expires_at,
    }
    items.sort(key=sort_keys[sort_by], reverse=sort_order == "desc")

    total = len(items)
    start = (page - 1) * limit
    page_items = items[start:start + limit]

    inviter_ids = set()
    for item in page_items:
        try:
            inviter_ids.add(uuid.UUID(item.invited_by))
        except (TypeError, ValueError):
            continue
    if inviter_ids:
        users = await db.execute(select(User.id, User.name).where(User.id.in_(inviter_ids)))
        names = {str(user_id): name for user_id, name in users.all()}
        for item in page_items:
            item.invited_by_name = names.get(item.invited_by)

    return page_items, total
