from datetime import timedelta
from typing import Annotated, Callable
from uuid import UUID

import bcrypt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from sunrise.config import get_settings
from sunrise.db.postgres import get_db
from sunrise.errors import ForbiddenError, UnauthorizedError
from sunrise.models.role import UserRole
from sunrise.models.user import User
from sunrise.utils.time import utcnow

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/sign-in/email", auto_error=False)

ALGORITHM = "HS256"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


async def get_user_from_token(token: str | None, db: AsyncSession) -> User | None:
    """Resolve a bearer token to a user; the role is always read fresh from the database."""
    if not token:
        return None

    payload = decode_token(token)
    if payload is None or payload.get("sub") is None:
        return None

    try:
        user_id = UUID(payload["sub"])
    except ValueError:
        return None

    return await db.get(User, user_id)


async def get_current_user(
    token: Annotated[str | None, Depends(oauth2_scheme)],
    db: AsyncSession = Depends(get_db)
) -> User:
    user = await get_user_from_token(token, db)
    if user is None:
        raise UnauthorizedError(headers={"WWW-Authenticate": "Bearer"})
    return user


def require_role(*roles: UserRole) -> Callable:
    """
    Dependency factory that checks the current user's role.

    Usage:
        @router.delete("/users/{user_id}")
        async def delete_user(
            user_id: UUID,
            current_user: User = Depends(require_role(UserRole.ADMIN))
        ):
            ...
    """
    allowed = {role.value for role in roles}

    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed:
            raise ForbiddenError("Admin access required" if allowed == {UserRole.ADMIN.value} else "Forbidden")
        return current_user
    return role_checker


def require_admin() -> Callable:
    """Dependency that requires admin role."""
    return require_role(UserRole.ADMIN)
