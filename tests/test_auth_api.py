import time

from conftest import auth
from fixit.auth import Identity, IdentityProvider, get_identity_provider, resolve_user
from fixit.database import models
from fixit.dependencies import get_health_cache
from fixit.health import HealthCheckCache
from main import app


async def test_register_creates_account(client):
    response = await client.post(
        "/api/auth/register", json={"name": "Meera", "phone": "555-0101"}, headers={"Authorization": "Bearer uid-new"}
    )

    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "uid-new@example.com"
    assert body["role"] == "user"
    assert body["level"] == 1
    assert body["levelTitle"] == "Civic Observer"
    assert body["isEmailVerified"] is True


async def test_register_again_returns_existing_account(client, make_user):
    user = await make_user("Meera")

    response = await client.post("/api/auth/register", json={"name": "Meera"}, headers=auth(user))

    assert response.status_code == 200
    assert response.json()["id"] == user.id


async def test_register_links_account_created_by_email(client, session_factory):
    async with session_factory() as session:
        imported = models.User(name="Imported", email="uid-linked@example.com", firebase_uid=None, role="user")
        session.add(imported)
        await session.commit()

    response = await client.post(
        "/api/auth/register", json={"name": "Imported"}, headers={"Authorization": "Bearer uid-linked"}
    )

    assert response.status_code == 200
    assert response.json()["id"] == imported.id
    assert response.json()["isEmailVerified"] is True


async def test_register_with_email_of_another_account(client, make_user):
    await make_user(email="uid-taken@example.com", firebase_uid="someone-else")

    response = await client.post(
        "/api/auth/register", json={"name": "Taken"}, headers={"Authorization": "Bearer uid-taken"}
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "User with this email already exists"


async def test_me_and_my_votes(client, make_user, make_issue):
    user = await make_user("Voter")
    liked = await make_issue(await make_user())
    disliked = await make_issue(await make_user())
    await client.post(f"/api/issues/{liked.id}/vote", json={"voteType": "upvote"}, headers=auth(user))
    await client.post(f"/api/issues/{disliked.id}/vote", json={"voteType": "downvote"}, headers=auth(user))

    me = await client.get("/api/auth/me", headers=auth(user))
    votes = await client.get("/api/auth/my-votes", headers=auth(user))

    assert me.json()["name"] == "Voter"
    assert votes.json() == {"upvotedIssues": [liked.id], "downvotedIssues": [disliked.id]}


async def test_authentication_errors(client, make_user):
    missing = await client.get("/api/auth/me")
    invalid = await client.get("/api/auth/me", headers={"Authorization": "Bearer invalid-token"})
    unknown = await client.get("/api/auth/me", headers={"Authorization": "Bearer uid-stranger"})

    assert missing.status_code == 401
    assert missing.json()["detail"] == "Access denied. No token provided."
    assert invalid.status_code == 401
    assert unknown.status_code == 401
    assert unknown.json()["detail"] == "User not found in system."


async def test_health(client):
    response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "connected"}
    assert response.headers["X-Process-Time"].endswith("ms")


async def test_unhealthy_database_returns_503(client):
    cache = HealthCheckCache(ttl_seconds=60)
    cache.healthy = False
    cache.last_checked = time.monotonic()
    app.dependency_overrides[get_health_cache] = lambda: cache

    health = await client.get("/api/health")
    guarded = await client.get("/api/issues/")

    assert health.status_code == 503
    assert health.json() == {"status": "degraded", "database": "disconnected"}
    assert guarded.status_code == 503
    assert guarded.json()["code"] == "SERVICE_UNAVAILABLE"


class UnverifiedIdentityProvider(IdentityProvider):
    async def verify(self, token: str) -> Identity:
        return Identity(uid=token, email="boss@city.gov", email_verified=False)


async def test_unverified_email_does_not_claim_account(session_factory):
    async with session_factory() as session:
        admin = models.User(name="Boss", email="boss@city.gov", firebase_uid=None, role="admin")
        session.add(admin)
        await session.commit()

    async with session_factory() as session:
        found = await resolve_user(session, Identity(uid="other-uid", email="boss@city.gov", email_verified=False))
        assert found is None

    async with session_factory() as session:
        stored = await session.get(models.User, admin.id)
        assert stored.firebase_uid is None


async def test_register_with_unverified_email_of_existing_account(client, session_factory):
    async with session_factory() as session:
        session.add(models.User(name="Boss", email="boss@city.gov", firebase_uid=None, role="admin"))
        await session.commit()
    app.dependency_overrides[get_identity_provider] = lambda: UnverifiedIdentityProvider()

    response = await client.post(
        "/api/auth/register", json={"name": "Boss"}, headers={"Authorization": "Bearer other-uid"}
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "User with this email already exists"
    me = await client.get("/api/auth/me", headers={"Authorization": "Bearer other-uid"})
    assert me.status_code == 401
