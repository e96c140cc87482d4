"""Generic expiring token rows (invitations, email verification, password reset)."""

import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from sunrise.db.postgres import Base
from sunrise.models.types import JSONType
from sunrise.utils.time import utcnow


class Verification(Base):
    __tablename__ = "verification"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # invitation:{email} | email-verification:{email} | reset-password:{token hash}
    identifier: Mapped[str] = mapped_column(String(320), index=True)
    value: Mapped[str] = mapped_column(String(255))
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= utcnow()
