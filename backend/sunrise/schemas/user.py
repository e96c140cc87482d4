import re
from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from pydantic import AfterValidator, BeforeValidator, EmailStr, Field, StringConstraints, model_validator

from sunrise.models.role import UserRole
from sunrise.schemas.common import CamelModel


def _normalize_email(value):
    if isinstance(value, str):
        value = value.strip()
        if len(value) > 255:
            raise ValueError("Email must be less than 255 characters")
    return value


def _lower(value: str) -> str:
    return value.lower()


def _check_password(value: str) -> str:
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("Password must contain at least one number")
    if not re.search(r"[^A-Za-z0-9]", value):
        raise ValueError("Password must contain at least one special character")
    return value


Email = Annotated[
    EmailStr,
    BeforeValidator(_normalize_email),
    AfterValidator(_lower),
]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Password = Annotated[str, Field(min_length=8, max_length=100), AfterValidator(_check_password)]


class _PasswordConfirmation(CamelModel):
    password: Password
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


# ============== Auth requests ==============

class SignUpRequest(_PasswordConfirmation):
    name: Name
    email: Email


class SignInRequest(CamelModel):
    email: Email
    # Strength is not checked on sign-in
    password: str = Field(min_length=1, max_length=100)


class EmailRequest(CamelModel):
    email: Email


class ResetPasswordRequest(_PasswordConfirmation):
    token: str = Field(min_length=1)


class AcceptInviteRequest(_PasswordConfirmation):
    token: str = Field(min_length=1)
    email: Email


# ============== Profile ==============

class ProfileUpdate(CamelModel):
    name: Name | None = None
    email: Email | None = None
    bio: Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)] | None = None
    phone: Annotated[str, StringConstraints(max_length=20, pattern=r"^[\d\s\-+()]*$")] | None = None
    timezone: Annotated[str, StringConstraints(max_length=50)] | None = None
    location: Annotated[str, StringConstraints(strip_whitespace=True, max_length=100)] | None = None


class DeleteAccountRequest(CamelModel):
    confirmation: Literal["DELETE"]


class EmailPreferences(CamelModel):
    marketing: bool = False
    product_updates: bool = True
    # Security alerts cannot be turned off
    security_alerts: Literal[True] = True


class UserPreferences(CamelModel):
    email: EmailPreferences = Field(default_factory=EmailPreferences)


class EmailPreferencesUpdate(CamelModel):
    marketing: bool | None = None
    product_updates: bool | None = None
    security_alerts: Literal[True] | None = None


class PreferencesUpdate(CamelModel):
    email: EmailPreferencesUpdate | None = None


DEFAULT_USER_PREFERENCES = UserPreferences().model_dump(by_alias=True)


# ============== Admin ==============

class AdminUserUpdate(CamelModel):
    name: Name | None = None
    role: UserRole | None = None
    email_verified: bool | None = None


# ============== Responses ==============

class UserResponse(CamelModel):
    id: UUID
    name: str
    email: str
    email_verified: bool
    image: str | None = None
    role: str
    bio: str | None = None
    phone: str | None = None
    timezone: str | None = None
    location: str | None = None
    preferences: dict | None = None
    created_at: datetime
    updated_at: datetime


class UserListItem(CamelModel):
    id: UUID
    name: str
    email: str
    role: str
    email_verified: bool
    image: str | None = None
    created_at: datetime


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"


class TokenWithUser(Token):
    user: UserResponse
