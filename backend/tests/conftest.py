import os
import re
import uuid
from dataclasses import dataclass
from html import unescape
from urllib.parse import parse_qs, urlencode, urlparse

import pytest

# Settings are read once at import time, so point them at sqlite before importing sunrise
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_URL", "http://app.test")
os.environ.setdefault("REQUIRE_EMAIL_VERIFICATION", "false")

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import sunrise.models  # noqa: F401  (registers the tables on Base.metadata)
from sunrise.config import get_settings
from sunrise.db.postgres import Base, get_db
from sunrise.main import create_app
from sunrise.models.account import CREDENTIAL_PROVIDER, Account
from sunrise.models.role import UserRole
from sunrise.models.user import User
from sunrise.schemas.oauth import OAuthProfile
from sunrise.security import create_access_token, get_password_hash
from sunrise.services.auth import AuthService
from sunrise.services.auth_hooks import InvitationAuthHooks
from sunrise.services.email.client import EmailResult
from sunrise.services.rate_limit import ALL_LIMITERS

DEFAULT_PASSWORD = "Sup3r-Secret!"


# ============== Fakes ==============

@dataclass
class SentEmail:
    to: str
    subject: str
    html: str

    @property
    def link(self) -> str | None:
        """The call-to-action URL of the email."""
        match = re.search(r'href="([^"]+)"', self.html)
        return unescape(match.group(1)) if match else None

    @property
    def token(self) -> str | None:
        link = self.link
        if not link:
            return None
        return parse_qs(urlparse(link).query).get("token", [None])[0]


class FakeEmailClient:
    """Records every email instead of calling Resend. Set ``status`` to simulate outages."""

    def __init__(self):
        self.status = "sent"
        self.sent: list[SentEmail] = []

    @property
    def enabled(self) -> bool:
        return self.status != "disabled"

    async def send(self, to: str, subject: str, html: str) -> EmailResult:
        self.sent.append(SentEmail(to, subject, html))
        if self.status == "sent":
            return EmailResult(success=True, status="sent", id=f"email_{len(self.sent)}")
        if self.status == "disabled":
            return EmailResult(success=False, status="disabled", error="Email service not configured")
        return EmailResult(success=False, status="failed", error="Resend is down")

    def subjects_to(self, email: str) -> list[str]:
        return [m.subject for m in self.sent if m.to == email]

    def last_to(self, email: str) -> SentEmail | None:
        matching = [m for m in self.sent if m.to == email]
        return matching[-1] if matching else None


class FakeOAuthProvider:
    """Google stand-in whose code exchange returns ``profile``."""

    name = "google"
    enabled = True

    def __init__(self):
        self.profile = OAuthProfile(
            provider="google",
            account_id="google-sub-1",
            email="oauth.user@example.com",
            name="OAuth User",
            email_verified=True,
        )

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        return "https://accounts.example.com/auth?" + urlencode({"state": state, "redirect_uri": redirect_uri})

    async def fetch_profile(self, code: str, redirect_uri: str) -> OAuthProfile:
        return self.profile


# ============== Database ==============

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ============== Application ==============

@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def email_client():
    return FakeEmailClient()


@pytest.fixture
def oauth_provider():
    return FakeOAuthProvider()


@pytest.fixture
def auth_service(settings, email_client, oauth_provider):
    return AuthService(
        settings,
        email_client=email_client,
        hooks=InvitationAuthHooks,
        oauth_providers={"google": oauth_provider},
    )


@pytest.fixture
def app(auth_service, session_factory):
    app = create_app(auth_service.settings, auth_service)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture(autouse=True)
def reset_rate_limits():
    for limiter in ALL_LIMITERS:
        limiter.clear()
    yield
    for limiter in ALL_LIMITERS:
        limiter.clear()


# ============== Users ==============

@pytest.fixture
def make_user(session_factory):
    async def _make_user(
        email: str = "user@example.com",
        name: str = "Test User",
        role: UserRole = UserRole.USER,
        password: str | None = DEFAULT_PASSWORD,
        email_verified: bool = True,
    ) -> User:
        user_id = uuid.uuid4()
        user = User(id=user_id, name=name, email=email, role=role.value, email_verified=email_verified)
        if password:
            user.accounts.append(Account(
                provider_id=CREDENTIAL_PROVIDER,
                account_id=str(user_id),
                password_hash=get_password_hash(password),
            ))
        async with session_factory() as session:
            session.add(user)
            await session.commit()
            await session.refresh(user)
        return user

    return _make_user


def headers_for(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': str(user.id)})}"}


@pytest.fixture
def auth_headers():
    return headers_for


@pytest.fixture
async def admin(make_user):
    return await make_user(email="admin@example.com", name="Ada Admin", role=UserRole.ADMIN)


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture
def invite(client, admin_headers):
    """POST an invitation as the admin and return the response."""
    async def _invite(email: str, name: str = "Invitee", role: str = "USER", resend: bool = False):
        params = {"resend": "true"} if resend else None
        return await client.post(
            "/api/v1/users/invite",
            json={"name": name, "email": email, "role": role},
            params=params,
            headers=admin_headers,
        )

    return _invite


def token_from_link(link: str) -> str:
    return parse_qs(urlparse(link).query)["token"][0]


@pytest.fixture
def link_token():
    return token_from_link
