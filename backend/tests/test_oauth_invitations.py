from urllib.parse import parse_qs, urlparse

from sqlalchemy import select

from sunrise.models.account import Account
from sunrise.models.user import User
from sunrise.services.invitations import get_valid_invitation, validate_invitation_token
from sunrise.services.oauth import encode_state


async def _start(client, invitation=None):
    body = {"provider": "google", "callbackURL": "/dashboard"}
    if invitation is not None:
        body["additionalData"] = invitation
    resp = await client.post("/api/auth/sign-in/social", json=body)
    assert resp.status_code == 200, resp.json()
    return parse_qs(urlparse(resp.json()["data"]["url"]).query)["state"][0]


async def _callback(client, state):
    return await client.get("/api/auth/callback/google", params={"code": "auth-code", "state": state})


async def _user(session_factory, email):
    async with session_factory() as db:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()


class TestSocialSignIn:
    """Tests for starting and completing Google sign-in."""

    async def test_authorization_url(self, client):
        resp = await client.post("/api/auth/sign-in/social", json={"provider": "google"})

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["redirect"] is True
        query = parse_qs(urlparse(data["url"]).query)
        assert query["state"][0]
        assert query["redirect_uri"][0].endswith("/api/auth/callback/google")

    async def test_new_user(self, client, session_factory, email_client):
        resp = await _callback(client, await _start(client))

        assert resp.status_code == 200
        user = resp.json()["data"]["user"]
        assert user["email"] == "oauth.user@example.com"
        assert user["role"] == "USER"
        assert user["emailVerified"] is True

        async with session_factory() as db:
            accounts = (await db.execute(select(Account))).scalars().all()
        assert [(a.provider_id, a.account_id) for a in accounts] == [("google", "google-sub-1")]
        assert email_client.subjects_to("oauth.user@example.com") == ["Welcome to Sunrise"]

    async def test_returning_user_signs_in(self, client, session_factory):
        first = await _callback(client, await _start(client))
        second = await _callback(client, await _start(client))

        assert first.json()["data"]["user"]["id"] == second.json()["data"]["user"]["id"]
        async with session_factory() as db:
            assert len((await db.execute(select(User))).scalars().all()) == 1

    async def test_links_verified_email_to_existing_user(self, client, make_user, oauth_provider):
        user = await make_user(email="oauth.user@example.com")
        resp = await _callback(client, await _start(client))

        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["id"] == str(user.id)

    async def test_refuses_to_link_unverified_email(self, client, make_user, oauth_provider):
        await make_user(email="oauth.user@example.com")
        oauth_provider.profile.email_verified = False

        resp = await _callback(client, await _start(client))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "OAUTH_ERROR"

    async def test_rejects_tampered_state(self, client):
        state = await _start(client)
        resp = await _callback(client, state[:-2] + "xx")

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "OAUTH_ERROR"

    async def test_rejects_state_signed_with_another_key(self, client, settings):
        forged = encode_state(None, None, settings.model_copy(update={"secret_key": "someone-else"}))
        resp = await _callback(client, forged)
        assert resp.status_code == 400

    async def test_rejects_unknown_invitation_fields(self, client):
        resp = await client.post("/api/auth/sign-in/social", json={
            "provider": "google",
            "additionalData": {"invitationToken": "t", "invitationEmail": "a@example.com", "role": "ADMIN"},
        })
        assert resp.status_code == 400

    async def test_unsupported_provider(self, client):
        resp = await client.post("/api/auth/sign-in/social", json={"provider": "github"})
        assert resp.status_code == 400


class TestOAuthInvitationAcceptance:
    """Tests for accepting an invitation through Google sign-in."""

    async def test_applies_invited_role(self, client, invite, link_token, session_factory, email_client):
        resp = await invite("oauth.user@example.com", name="Olivia", role="ADMIN")
        token = link_token(resp.json()["data"]["invitation"]["link"])

        state = await _start(client, {"invitationToken": token, "invitationEmail": "oauth.user@example.com"})
        resp = await _callback(client, state)

        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["role"] == "ADMIN"

        async with session_factory() as db:
            assert await get_valid_invitation(db, "oauth.user@example.com") is None
        assert "Welcome to Sunrise" in email_client.subjects_to("oauth.user@example.com")

    async def test_first_session_has_invited_role(self, client, invite, link_token):
        resp = await invite("oauth.user@example.com", role="ADMIN")
        token = link_token(resp.json()["data"]["invitation"]["link"])

        state = await _start(client, {"invitationToken": token, "invitationEmail": "oauth.user@example.com"})
        access_token = (await _callback(client, state)).json()["data"]["accessToken"]

        stats = await client.get("/api/v1/admin/stats", headers={"Authorization": f"Bearer {access_token}"})
        assert stats.status_code == 200

    async def test_email_mismatch_creates_no_user(self, client, invite, link_token, session_factory):
        resp = await invite("invited@example.com", role="ADMIN")
        token = link_token(resp.json()["data"]["invitation"]["link"])

        state = await _start(client, {"invitationToken": token, "invitationEmail": "invited@example.com"})
        resp = await _callback(client, state)

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "INVITATION_EMAIL_MISMATCH"
        assert error["message"] == (
            "This invitation was sent to invited@example.com. Please use an account "
            "with that email address, or set a password instead."
        )

        assert await _user(session_factory, "oauth.user@example.com") is None
        async with session_factory() as db:
            assert await validate_invitation_token(db, "invited@example.com", token)

    async def test_invalid_token_falls_back_to_regular_signup(self, client, invite, session_factory):
        await invite("oauth.user@example.com", role="ADMIN")

        state = await _start(client, {"invitationToken": "0" * 64, "invitationEmail": "oauth.user@example.com"})
        resp = await _callback(client, state)

        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["role"] == "USER"
        async with session_factory() as db:
            assert await get_valid_invitation(db, "oauth.user@example.com") is not None

    async def test_token_cannot_be_used_twice(self, client, invite, link_token, oauth_provider, session_factory):
        resp = await invite("oauth.user@example.com", role="ADMIN")
        token = link_token(resp.json()["data"]["invitation"]["link"])
        invitation = {"invitationToken": token, "invitationEmail": "oauth.user@example.com"}

        assert (await _callback(client, await _start(client, invitation))).status_code == 200

        # Same person signing up again through a second Google identity
        async with session_factory() as db:
            user = (await db.execute(select(User).where(User.email == "oauth.user@example.com"))).scalar_one()
            await db.delete(user)
            await db.commit()
        oauth_provider.profile.account_id = "google-sub-2"

        resp = await _callback(client, await _start(client, invitation))
        assert resp.status_code == 200
        assert resp.json()["data"]["user"]["role"] == "USER"

    async def test_failed_insert_keeps_invitation(
        self, client, invite, link_token, make_user, auth_service, session_factory, monkeypatch
    ):
        resp = await invite("oauth.user@example.com", role="ADMIN")
        token = link_token(resp.json()["data"]["invitation"]["link"])

        # Another signup for the same address lands after the lookup
        await make_user(email="oauth.user@example.com")

        async def no_user(db, email):
            return None

        monkeypatch.setattr(auth_service, "get_user_by_email", no_user)

        state = await _start(client, {"invitationToken": token, "invitationEmail": "oauth.user@example.com"})
        resp = await _callback(client, state)

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "EMAIL_TAKEN"
        async with session_factory() as db:
            assert await validate_invitation_token(db, "oauth.user@example.com", token)

    async def test_default_preferences_are_set(self, client, session_factory):
        await _callback(client, await _start(client))

        user = await _user(session_factory, "oauth.user@example.com")
        assert user.preferences == {
            "email": {"marketing": False, "productUpdates": True, "securityAlerts": True}
        }
