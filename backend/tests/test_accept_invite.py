from datetime import timedelta

from sqlalchemy import select, update

from sunrise.models.account import CREDENTIAL_PROVIDER, Account
from sunrise.models.user import User
from sunrise.models.verification import Verification
from sunrise.services.invitations import get_valid_invitation
from sunrise.utils.time import utcnow

PASSWORD = "Sup3r-Secret!"


async def _invite_token(invite, link_token, email, **kwargs):
    resp = await invite(email, **kwargs)
    assert resp.status_code == 201
    return link_token(resp.json()["data"]["invitation"]["link"])


def _accept_body(token, email, password=PASSWORD, confirm=None):
    return {
        "token": token,
        "email": email,
        "password": password,
        "confirmPassword": confirm if confirm is not None else password,
    }


class TestAcceptInvite:
    """Tests for POST /api/auth/accept-invite."""

    async def test_creates_verified_user_with_invited_role(
        self, client, invite, link_token, email_client, session_factory
    ):
        token = await _invite_token(invite, link_token, "alice@example.com", name="Alice", role="ADMIN")

        resp = await client.post("/api/auth/accept-invite", json=_accept_body(token, "alice@example.com"))

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["accessToken"]
        assert data["tokenType"] == "bearer"
        assert data["user"]["name"] == "Alice"
        assert data["user"]["role"] == "ADMIN"
        assert data["user"]["emailVerified"] is True

        async with session_factory() as db:
            assert await get_valid_invitation(db, "alice@example.com") is None
            accounts = (
                await db.execute(select(Account).join(User).where(User.email == "alice@example.com"))
            ).scalars().all()
        assert [a.provider_id for a in accounts] == [CREDENTIAL_PROVIDER]

        assert "Welcome to Sunrise" in email_client.subjects_to("alice@example.com")
        assert "Verify your email address" not in email_client.subjects_to("alice@example.com")

    async def test_session_works(self, client, invite, link_token):
        token = await _invite_token(invite, link_token, "alice@example.com")
        resp = await client.post("/api/auth/accept-invite", json=_accept_body(token, "alice@example.com"))
        access_token = resp.json()["data"]["accessToken"]

        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {access_token}"})
        assert me.status_code == 200
        assert me.json()["data"]["email"] == "alice@example.com"

    async def test_token_is_single_use(self, client, invite, link_token):
        token = await _invite_token(invite, link_token, "alice@example.com")
        first = await client.post("/api/auth/accept-invite", json=_accept_body(token, "alice@example.com"))
        assert first.status_code == 200

        second = await client.post("/api/auth/accept-invite", json=_accept_body(token, "alice@example.com"))
        assert second.status_code == 400
        assert second.json()["error"]["message"] == "Invalid or expired invitation token"

    async def test_wrong_token(self, client, invite, link_token, session_factory):
        await _invite_token(invite, link_token, "alice@example.com")
        resp = await client.post("/api/auth/accept-invite", json=_accept_body("f" * 64, "alice@example.com"))

        assert resp.status_code == 400
        async with session_factory() as db:
            user = (await db.execute(select(User).where(User.email == "alice@example.com"))).scalar_one_or_none()
        assert user is None

    async def test_token_bound_to_email(self, client, invite, link_token):
        token = await _invite_token(invite, link_token, "alice@example.com")
        resp = await client.post("/api/auth/accept-invite", json=_accept_body(token, "mallory@example.com"))
        assert resp.status_code == 400

    async def test_expired_invitation(self, client, invite, link_token, session_factory):
        token = await _invite_token(invite, link_token, "alice@example.com")
        async with session_factory() as db:
            await db.execute(update(Verification).values(expires_at=utcnow() - timedelta(seconds=1)))
            await db.commit()

        resp = await client.post("/api/auth/accept-invite", json=_accept_body(token, "alice@example.com"))
        assert resp.status_code == 400

    async def test_password_rules(self, client, invite, link_token):
        token = await _invite_token(invite, link_token, "alice@example.com")

        weak = await client.post("/api/auth/accept-invite", json=_accept_body(token, "alice@example.com", "password"))
        assert weak.status_code == 400
        assert "password" in weak.json()["error"]["details"]

        mismatch = await client.post(
            "/api/auth/accept-invite",
            json=_accept_body(token, "alice@example.com", confirm="Different-1!"),
        )
        assert mismatch.status_code == 400
        assert mismatch.json()["error"]["code"] == "VALIDATION_ERROR"


class TestInvitationMetadata:
    """Tests for GET /api/v1/invitations/metadata."""

    async def test_returns_name_and_role(self, client, invite, link_token):
        token = await _invite_token(invite, link_token, "alice@example.com", name="Alice", role="ADMIN")

        resp = await client.get("/api/v1/invitations/metadata", params={"token": token, "email": "alice@example.com"})

        assert resp.status_code == 200
        assert resp.json()["data"] == {"name": "Alice", "role": "ADMIN"}

    async def test_invalid_token(self, client, invite, link_token):
        await _invite_token(invite, link_token, "alice@example.com")
        resp = await client.get("/api/v1/invitations/metadata", params={"token": "nope", "email": "alice@example.com"})

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["message"] == "Invalid or expired invitation token"
        assert error["details"] == {"reason": "invalid_token"}

    async def test_unknown_email(self, client):
        resp = await client.get("/api/v1/invitations/metadata", params={"token": "nope", "email": "ghost@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"reason": "not_found"}

    async def test_missing_params(self, client):
        resp = await client.get("/api/v1/invitations/metadata")
        assert resp.status_code == 400
        details = resp.json()["error"]["details"]
        assert "token" in details
        assert "email" in details
