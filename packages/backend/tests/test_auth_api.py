"""HTTP tests for the auth routes.

Learn: These go through the real app (middleware, exception handler,
dependencies) with only the database session and mailer swapped out.
Error bodies are {"detail": ..., "error_code": ...}; the error_code is
what clients branch on.
"""

import pytest
import pytest_asyncio
from fastapi import APIRouter, Depends
from httpx import ASGITransport, AsyncClient

from warden.auth.dependencies import (
    CurrentIdentity,
    get_current_user,
    get_mailer,
    require_permission,
    require_role,
)
from warden.db.engine import get_db
from warden.main import app, create_app

from conftest import ALICE, FailingMailer

AUTH = "/api/v1/auth"


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _sign_in(client, mailer, email=ALICE["email"], password=ALICE["password"]) -> dict:
    resp = await client.post(f"{AUTH}/login", json={"email": email, "password": password})
    assert resp.status_code == 200
    resp = await client.post(
        f"{AUTH}/verify-2fa", json={"email": email, "code": mailer.last_code()}
    )
    assert resp.status_code == 200
    return resp.json()


@pytest_asyncio.fixture()
async def registered(client):
    resp = await client.post(f"{AUTH}/register", json=ALICE)
    assert resp.status_code == 201
    return resp.json()


# ─── Register ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_register(client):
    resp = await client.post(f"{AUTH}/register", json={**ALICE, "role": "user"})
    assert resp.status_code == 201
    data = resp.json()
    assert data["email"] == ALICE["email"]
    assert data["roles"][0]["name"] == "user"
    assert "password" not in data and "password_hash" not in data
    assert "uid" in data


@pytest.mark.asyncio
async def test_register_duplicate(client, registered):
    resp = await client.post(f"{AUTH}/register", json=ALICE)
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "already_exists"


@pytest.mark.asyncio
async def test_register_unknown_role(client):
    resp = await client.post(f"{AUTH}/register", json={**ALICE, "role": "nope"})
    assert resp.status_code == 404
    assert resp.json()["error_code"] == "role_not_found"


@pytest.mark.asyncio
async def test_register_weak_password(client):
    resp = await client.post(f"{AUTH}/register", json={**ALICE, "password": "123"})
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "weak_password"


@pytest.mark.parametrize(
    "email", ["not-an-email", "alice@", "@example.com", "alice@@example.com", "alice smith@example.com"]
)
@pytest.mark.asyncio
async def test_register_malformed_email(client, email):
    resp = await client.post(f"{AUTH}/register", json={**ALICE, "email": email})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_register_keeps_email_as_given(client):
    resp = await client.post(f"{AUTH}/register", json={**ALICE, "email": "Alice.Smith@example.com"})
    assert resp.status_code == 201
    assert resp.json()["email"] == "Alice.Smith@example.com"


# ─── Login / 2FA ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_login_returns_message_not_tokens(client, mailer, registered):
    resp = await client.post(
        f"{AUTH}/login", json={"email": ALICE["email"], "password": ALICE["password"]}
    )
    assert resp.status_code == 200
    assert set(resp.json()) == {"message"}
    assert len(mailer.messages) == 1


@pytest.mark.asyncio
async def test_login_wrong_password(client, registered):
    resp = await client.post(
        f"{AUTH}/login", json={"email": ALICE["email"], "password": "wrong-one"}
    )
    assert resp.status_code == 401
    assert resp.json()["error_code"] == "invalid_credentials"
    assert resp.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_verify_2fa_wrong_code(client, mailer, registered):
    await client.post(
        f"{AUTH}/login", json={"email": ALICE["email"], "password": ALICE["password"]}
    )
    wrong = "000000" if mailer.last_code() != "000000" else "111111"
    resp = await client.post(f"{AUTH}/verify-2fa", json={"email": ALICE["email"], "code": wrong})
    assert resp.status_code == 401
    assert resp.json()["error_code"] == "invalid_two_factor_code"


@pytest.mark.asyncio
async def test_sign_in_returns_token_pair(client, mailer, registered):
    tokens = await _sign_in(client, mailer)
    assert tokens["token_type"] == "bearer"
    assert tokens["access_token"] and tokens["refresh_token"]
    assert tokens["access_token"] != tokens["refresh_token"]


# ─── Authenticated routes ───────────────────────────────


@pytest.mark.asyncio
async def test_me(client, mailer, registered):
    tokens = await _sign_in(client, mailer)
    resp = await client.get(f"{AUTH}/me", headers=bearer(tokens["access_token"]))
    assert resp.status_code == 200
    data = resp.json()
    assert data["email"] == ALICE["email"]
    assert data["id"] == registered["id"]
    assert {p["name"] for p in data["permissions"]} == {"users.read", "users.write"}


@pytest.mark.asyncio
async def test_me_requires_token(client):
    resp = await client.get(f"{AUTH}/me")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_me_rejects_refresh_token(client, mailer, registered):
    tokens = await _sign_in(client, mailer)
    resp = await client.get(f"{AUTH}/me", headers=bearer(tokens["refresh_token"]))
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_refresh_token_route(client, mailer, registered):
    tokens = await _sign_in(client, mailer)
    resp = await client.post(
        f"{AUTH}/refresh-token", json={"refresh_token": tokens["refresh_token"]}
    )
    assert resp.status_code == 200
    new_access = resp.json()["access_token"]
    assert (await client.get(f"{AUTH}/me", headers=bearer(new_access))).status_code == 200


@pytest.mark.asyncio
async def test_refresh_with_access_token_fails(client, mailer, registered):
    tokens = await _sign_in(client, mailer)
    resp = await client.post(
        f"{AUTH}/refresh-token", json={"refresh_token": tokens["access_token"]}
    )
    assert resp.status_code == 401
    assert resp.json()["error_code"] == "invalid_refresh_token"


@pytest.mark.asyncio
async def test_logout_revokes_bearer_token(client, mailer, registered):
    tokens = await _sign_in(client, mailer)
    headers = bearer(tokens["access_token"])

    resp = await client.post(
        f"{AUTH}/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers
    )
    assert resp.status_code == 200

    assert (await client.get(f"{AUTH}/me", headers=headers)).status_code == 401
    resp = await client.post(
        f"{AUTH}/refresh-token", json={"refresh_token": tokens["refresh_token"]}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_logout_with_body_token_also_revokes_bearer(client, mailer, registered):
    tokens = await _sign_in(client, mailer)
    resp = await client.post(
        f"{AUTH}/refresh-token", json={"refresh_token": tokens["refresh_token"]}
    )
    other_access = resp.json()["access_token"]

    resp = await client.post(
        f"{AUTH}/logout",
        json={"access_token": other_access},
        headers=bearer(tokens["access_token"]),
    )
    assert resp.status_code == 200

    for token in (tokens["access_token"], other_access):
        assert (await client.get(f"{AUTH}/me", headers=bearer(token))).status_code == 401


@pytest.mark.asyncio
async def test_logout_cannot_drop_another_users_refresh_token(client, mailer, registered):
    alice = await _sign_in(client, mailer)
    bob = {"email": "bob@example.com", "password": "secret2", "name": "Bob", "role": "user"}
    await client.post(f"{AUTH}/register", json=bob)
    bob_tokens = await _sign_in(client, mailer, bob["email"], bob["password"])

    resp = await client.post(
        f"{AUTH}/logout",
        json={"refresh_token": alice["refresh_token"]},
        headers=bearer(bob_tokens["access_token"]),
    )
    assert resp.status_code == 200

    resp = await client.post(
        f"{AUTH}/refresh-token", json={"refresh_token": alice["refresh_token"]}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_second_device_login_ends_first_refresh(client, mailer, registered):
    first = await _sign_in(client, mailer)
    second = await _sign_in(client, mailer)

    resp = await client.post(
        f"{AUTH}/refresh-token", json={"refresh_token": first["refresh_token"]}
    )
    assert resp.status_code == 401
    resp = await client.post(
        f"{AUTH}/refresh-token", json={"refresh_token": second["refresh_token"]}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_check_email(client, registered):
    resp = await client.get(f"{AUTH}/check-email", params={"email": ALICE["email"]})
    assert resp.json() == {"exists": True}
    resp = await client.get(f"{AUTH}/check-email", params={"email": "x@example.com"})
    assert resp.json() == {"exists": False}


# ─── Password flows ─────────────────────────────────────


@pytest.mark.asyncio
async def test_password_reset_over_http(client, mailer, registered):
    resp = await client.post(f"{AUTH}/password-reset/request", json={"email": ALICE["email"]})
    assert resp.status_code == 200
    token = mailer.last_reset_token()

    resp = await client.post(
        f"{AUTH}/password-reset/confirm", json={"token": token, "new_password": "newpass1"}
    )
    assert resp.status_code == 200

    resp = await client.post(
        f"{AUTH}/password-reset/confirm", json={"token": token, "new_password": "newpass2"}
    )
    assert resp.status_code == 400
    assert resp.json()["error_code"] == "invalid_reset_token"

    await _sign_in(client, mailer, password="newpass1")


@pytest.mark.asyncio
async def test_password_reset_unknown_email_same_response(client, mailer, registered):
    known = await client.post(f"{AUTH}/password-reset/request", json={"email": ALICE["email"]})
    unknown = await client.post(
        f"{AUTH}/password-reset/request", json={"email": "nobody@example.com"}
    )
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert len(mailer.messages) == 1


@pytest.mark.asyncio
async def test_password_reset_mail_failure_is_reported(client, registered):
    app.dependency_overrides[get_mailer] = FailingMailer

    known = await client.post(f"{AUTH}/password-reset/request", json={"email": ALICE["email"]})
    unknown = await client.post(
        f"{AUTH}/password-reset/request", json={"email": "nobody@example.com"}
    )
    assert known.status_code == 502
    assert known.json()["error_code"] == "delivery_failed"
    assert unknown.status_code == 200


@pytest.mark.asyncio
async def test_change_password_route(client, mailer, registered):
    tokens = await _sign_in(client, mailer)
    resp = await client.post(
        f"{AUTH}/password/change",
        json={"current_password": ALICE["password"], "new_password": "changed1"},
        headers=bearer(tokens["access_token"]),
    )
    assert resp.status_code == 200
    await _sign_in(client, mailer, password="changed1")


# ─── Role / permission guards ───────────────────────────


@pytest_asyncio.fixture()
async def guarded_client(db_session, mailer):
    """A fresh app with extra routes behind require_role/require_permission."""
    app = create_app()
    guarded = APIRouter(prefix="/api/v1/guarded")

    @guarded.get("/admin")
    async def admin_only(identity: CurrentIdentity = Depends(require_role("administrator"))):
        return {"user_id": identity.user_id}

    @guarded.get("/write")
    async def writers_only(identity: CurrentIdentity = Depends(require_permission("users.write"))):
        return {"user_id": identity.user_id}

    @guarded.get("/anyone")
    async def anyone(identity: CurrentIdentity = Depends(get_current_user)):
        return {"roles": identity.roles}

    app.include_router(guarded)

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_guards_admit_administrator(guarded_client, mailer):
    await guarded_client.post(f"{AUTH}/register", json=ALICE)
    tokens = await _sign_in(guarded_client, mailer)
    headers = bearer(tokens["access_token"])

    assert (await guarded_client.get("/api/v1/guarded/admin", headers=headers)).status_code == 200
    assert (await guarded_client.get("/api/v1/guarded/write", headers=headers)).status_code == 200


@pytest.mark.asyncio
async def test_guards_reject_plain_user(guarded_client, mailer):
    bob = {"email": "bob@example.com", "password": "secret2", "name": "Bob", "role": "user"}
    await guarded_client.post(f"{AUTH}/register", json=bob)
    tokens = await _sign_in(guarded_client, mailer, bob["email"], bob["password"])
    headers = bearer(tokens["access_token"])

    resp = await guarded_client.get("/api/v1/guarded/admin", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["error_code"] == "forbidden"
    resp = await guarded_client.get("/api/v1/guarded/write", headers=headers)
    assert resp.status_code == 403

    resp = await guarded_client.get("/api/v1/guarded/anyone", headers=headers)
    assert resp.json() == {"roles": ["user"]}


# ─── Health ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["redis"] == "unavailable"
