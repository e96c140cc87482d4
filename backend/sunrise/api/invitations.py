"""Public invitation lookup used by the accept-invite page."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.db.postgres import get_db
from sunrise.errors import ValidationError
from sunrise.schemas.common import ok
from sunrise.schemas.invitation import InvitationMetadataResponse
from sunrise.services.invitations import get_invitation_metadata

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/metadata")
async def invitation_metadata(
    token: Annotated[str, Query(min_length=1)],
    email: Annotated[EmailStr, Query()],
    db: AsyncSession = Depends(get_db),
):
    """Name and role of a pending invitation, for pre-filling the signup form."""
    email = email.strip().lower()
    result = await get_invitation_metadata(db, email, token)
    if not result.valid:
        raise ValidationError("Invalid or expired invitation token", details={"reason": result.reason})

    return ok(InvitationMetadataResponse(name=result.metadata.name, role=result.metadata.role.value))
