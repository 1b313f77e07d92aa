"""API tests for /api/auth: registration, login, verification and passwords."""
from datetime import datetime, timedelta

import pytest

from microshop.permissions import Permission, Role

PASSWORD = "secret123"


def as_user(user_id: int) -> dict:
    return {"X-User-Id": str(user_id)}


async def login(client, email, password=PASSWORD, **kwargs):
    return await client.post("/api/auth/login", json={"email": email, "password": password}, **kwargs)


# =============================================================================
# Registration
# =============================================================================

@pytest.mark.asyncio
async def test_first_registration_becomes_admin(client, notifier):
    resp = await client.post("/api/auth/register", json={
        "email": "Owner@Example.com",
        "password": PASSWORD,
        "confirmPassword": PASSWORD,
        "firstName": "Olive"
    })

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["email"] == "owner@example.com"
    assert data["role"] == Role.ADMIN
    assert data["permissions"] == Permission.ALL
    assert data["emailVerified"] is False
    assert data["verificationToken"]
    assert data["verificationToken"] in body["message"]
    assert notifier.sent[-1]["to"] == "owner@example.com"
    assert notifier.sent[-1]["link"].endswith(f"/?verify={data['verificationToken']}")


@pytest.mark.asyncio
async def test_later_registrations_get_default_permissions(admin, register_user):
    data = await register_user("second@example.com", verify=False)

    assert data["role"] == Role.USER
    assert data["permissions"] == Permission.VIEW_PRODUCTS
    assert data["userId"] != admin["userId"]


@pytest.mark.asyncio
async def test_bootstrap_admin_still_needs_verification(client, register_user):
    await register_user("boss@example.com", verify=False)

    resp = await login(client, "boss@example.com")

    assert resp.status_code == 401
    assert resp.json()["message"] == "Please verify your email before logging in"


@pytest.mark.asyncio
async def test_register_duplicate_email_is_case_insensitive(client, admin):
    resp = await client.post("/api/auth/register", json={
        "email": "ADMIN@example.com",
        "password": PASSWORD,
        "confirmPassword": PASSWORD
    })

    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "message": "Email already registered",
        "code": "EMAIL_EXISTS",
        "errors": None
    }


@pytest.mark.asyncio
async def test_register_password_mismatch(client):
    resp = await client.post("/api/auth/register", json={
        "email": "someone@example.com",
        "password": PASSWORD,
        "confirmPassword": "different"
    })

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Passwords do not match"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"email": "not-an-email", "password": PASSWORD, "confirmPassword": PASSWORD},
    {"email": "short@example.com", "password": "abc", "confirmPassword": "abc"},
    {"password": PASSWORD, "confirmPassword": PASSWORD},
])
async def test_register_rejects_invalid_input(client, payload):
    resp = await client.post("/api/auth/register", json=payload)

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"]


# =============================================================================
# Login
# =============================================================================

@pytest.mark.asyncio
async def test_login_returns_working_jwt(client, shopper):
    resp = await login(client, "shopper@example.com")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["userId"] == shopper["userId"]
    assert data["tokenType"] == "bearer"
    assert data["emailVerified"] is True

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "shopper@example.com"
    assert me.json()["data"]["lastLoginAt"] is not None


@pytest.mark.asyncio
async def test_login_unknown_email_leaves_no_audit_row(client, mongo_db):
    resp = await login(client, "ghost@example.com")

    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid email or password"
    assert await mongo_db.login_activity.count_documents({}) == 0


@pytest.mark.asyncio
async def test_login_wrong_password_is_audited(client, shopper, mongo_db):
    resp = await login(client, "shopper@example.com", password="wrong-password")

    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid email or password"
    row = await mongo_db.login_activity.find_one({"user_id": shopper["userId"]})
    assert row["is_successful"] is False
    assert row["failure_reason"] == "Invalid password"


@pytest.mark.asyncio
async def test_login_deactivated_account(client, admin, shopper):
    resp = await client.put(
        f"/api/users/{shopper['userId']}",
        json={"isActive": False},
        headers=as_user(admin["userId"])
    )
    assert resp.status_code == 200

    resp = await login(client, "shopper@example.com")

    assert resp.status_code == 401
    assert resp.json()["message"] == "Account is deactivated"


@pytest.mark.asyncio
async def test_login_unverified_is_audited(client, admin, register_user, mongo_db):
    data = await register_user("pending@example.com", verify=False)

    resp = await login(client, "pending@example.com")

    assert resp.status_code == 401
    row = await mongo_db.login_activity.find_one({"user_id": data["userId"]})
    assert row["failure_reason"] == "Email not verified"


# =============================================================================
# Caller identity
# =============================================================================

@pytest.mark.asyncio
async def test_me_requires_authentication(client):
    resp = await client.get("/api/auth/me")

    assert resp.status_code == 401
    assert resp.json()["message"] == "Authentication required"


@pytest.mark.asyncio
async def test_me_rejects_garbage_token(client, admin):
    resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_me_with_user_id_header(client, shopper):
    resp = await client.get("/api/auth/me", headers=as_user(shopper["userId"]))

    assert resp.status_code == 200
    assert resp.json()["data"]["permissionNames"] == ["View Products"]


@pytest.mark.asyncio
async def test_user_id_header_ignored_when_not_trusted(client, shopper, monkeypatch):
    from microshop import config
    monkeypatch.setattr(config, "TRUST_USER_ID_HEADER", False)

    resp = await client.get("/api/auth/me", headers=as_user(shopper["userId"]))

    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unknown_user_id_header(client, admin):
    resp = await client.get("/api/auth/me", headers=as_user(999))

    assert resp.status_code == 401


# =============================================================================
# Email verification
# =============================================================================

@pytest.mark.asyncio
async def test_verification_token_is_single_use(client, register_user):
    data = await register_user("once@example.com", verify=False)
    token = data["verificationToken"]

    first = await client.get("/api/auth/verify-email", params={"token": token})
    second = await client.get("/api/auth/verify-email", params={"token": token})

    assert first.status_code == 200
    assert first.json()["data"] is True
    assert second.status_code == 400
    assert second.json()["message"] == "Invalid or expired verification token"


@pytest.mark.asyncio
async def test_expired_verification_token(client, register_user, mongo_db):
    data = await register_user("late@example.com", verify=False)
    await mongo_db.users.update_one(
        {"_id": data["userId"]},
        {"$set": {"email_verification_expiry": datetime.utcnow() - timedelta(minutes=1)}}
    )

    resp = await client.get("/api/auth/verify-email", params={"token": data["verificationToken"]})

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_verify_without_token(client):
    resp = await client.get("/api/auth/verify-email")

    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_resend_verification_unknown_email(client):
    resp = await client.post("/api/auth/resend-verification", json={"email": "nobody@example.com"})

    assert resp.status_code == 200
    assert resp.json()["message"] == "If the email exists, a verification link has been sent"
    assert resp.json()["data"] is None


@pytest.mark.asyncio
async def test_resend_verification_already_verified(client, admin):
    resp = await client.post("/api/auth/resend-verification", json={"email": "admin@example.com"})

    assert resp.status_code == 400
    assert resp.json()["message"] == "Email is already verified"


@pytest.mark.asyncio
async def test_resend_verification_replaces_token(client, register_user):
    data = await register_user("again@example.com", verify=False)

    resp = await client.post("/api/auth/resend-verification", json={"email": "again@example.com"})
    new_token = resp.json()["data"]

    assert resp.status_code == 200
    assert new_token and new_token != data["verificationToken"]
    old = await client.get("/api/auth/verify-email", params={"token": data["verificationToken"]})
    assert old.status_code == 400
    new = await client.get("/api/auth/verify-email", params={"token": new_token})
    assert new.status_code == 200


# =============================================================================
# Passwords
# =============================================================================

@pytest.mark.asyncio
async def test_forgot_password_unknown_email(client):
    resp = await client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})

    assert resp.status_code == 200
    assert resp.json()["message"] == "If the email exists, a password reset link has been sent"
    assert resp.json()["data"] is None


@pytest.mark.asyncio
async def test_password_reset_flow(client, shopper, notifier):
    resp = await client.post("/api/auth/forgot-password", json={"email": "shopper@example.com"})
    token = resp.json()["data"]
    assert resp.status_code == 200
    assert notifier.sent[-1]["link"].endswith(f"/?reset={token}")

    reset = await client.post("/api/auth/reset-password", json={
        "token": token,
        "newPassword": "brand-new-pass",
        "confirmPassword": "brand-new-pass"
    })
    assert reset.status_code == 200

    assert (await login(client, "shopper@example.com")).status_code == 401
    assert (await login(client, "shopper@example.com", password="brand-new-pass")).status_code == 200

    reuse = await client.post("/api/auth/reset-password", json={
        "token": token,
        "newPassword": "another-pass",
        "confirmPassword": "another-pass"
    })
    assert reuse.status_code == 400
    assert reuse.json()["message"] == "Invalid or expired reset token"


@pytest.mark.asyncio
async def test_expired_reset_token(client, shopper, mongo_db):
    resp = await client.post("/api/auth/forgot-password", json={"email": "shopper@example.com"})
    token = resp.json()["data"]
    await mongo_db.users.update_one(
        {"_id": shopper["userId"]},
        {"$set": {"password_reset_expiry": datetime.utcnow() - timedelta(seconds=1)}}
    )

    reset = await client.post("/api/auth/reset-password", json={
        "token": token,
        "newPassword": "brand-new-pass",
        "confirmPassword": "brand-new-pass"
    })

    assert reset.status_code == 400


@pytest.mark.asyncio
async def test_change_password(client, shopper):
    resp = await client.post(
        f"/api/auth/change-password/{shopper['userId']}",
        json={"currentPassword": PASSWORD, "newPassword": "changed-pass", "confirmPassword": "changed-pass"},
        headers=as_user(shopper["userId"])
    )

    assert resp.status_code == 200
    assert (await login(client, "shopper@example.com", password="changed-pass")).status_code == 200


@pytest.mark.asyncio
async def test_change_password_wrong_current(client, shopper):
    resp = await client.post(
        f"/api/auth/change-password/{shopper['userId']}",
        json={"currentPassword": "nope-nope", "newPassword": "changed-pass", "confirmPassword": "changed-pass"},
        headers=as_user(shopper["userId"])
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Current password is incorrect"


@pytest.mark.asyncio
async def test_change_password_for_someone_else(client, admin, shopper):
    resp = await client.post(
        f"/api/auth/change-password/{admin['userId']}",
        json={"currentPassword": PASSWORD, "newPassword": "changed-pass", "confirmPassword": "changed-pass"},
        headers=as_user(shopper["userId"])
    )

    assert resp.status_code == 401


# =============================================================================
# Login activity
# =============================================================================

@pytest.mark.asyncio
async def test_login_activity_newest_first(client, shopper):
    await login(client, "shopper@example.com", password="wrong-password")
    await login(client, "shopper@example.com", headers={"User-Agent": "x" * 600})

    resp = await client.get(f"/api/auth/login-activity/{shopper['userId']}", headers=as_user(shopper["userId"]))

    assert resp.status_code == 200
    rows = resp.json()["data"]
    assert [r["isSuccessful"] for r in rows] == [True, False]
    assert len(rows[0]["userAgent"]) == 500
    assert rows[1]["failureReason"] == "Invalid password"
    assert rows[0]["ipAddress"]


@pytest.mark.asyncio
async def test_login_activity_is_capped(client, shopper):
    for _ in range(22):
        await login(client, "shopper@example.com")

    resp = await client.get(f"/api/auth/login-activity/{shopper['userId']}", headers=as_user(shopper["userId"]))

    assert len(resp.json()["data"]) == 20


@pytest.mark.asyncio
async def test_login_activity_of_others_needs_view_users(client, admin, shopper):
    denied = await client.get(f"/api/auth/login-activity/{admin['userId']}", headers=as_user(shopper["userId"]))
    allowed = await client.get(f"/api/auth/login-activity/{shopper['userId']}", headers=as_user(admin["userId"]))

    assert denied.status_code == 401
    assert allowed.status_code == 200


# =============================================================================
# Permissions and roles
# =============================================================================

@pytest.mark.asyncio
async def test_update_permissions(client, admin, shopper):
    mask = int(Permission.VIEW_USERS | Permission.VIEW_PRODUCTS | Permission.EDIT_PRODUCTS)

    resp = await client.post(
        "/api/auth/update-permissions",
        json={"userId": shopper["userId"], "permissions": mask},
        headers=as_user(admin["userId"])
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["permissions"] == mask
    assert data["permissionNames"] == ["View Users", "View Products", "Edit Products"]


@pytest.mark.asyncio
async def test_update_permissions_requires_admin(client, admin, shopper):
    resp = await client.post(
        "/api/auth/update-permissions",
        json={"userId": shopper["userId"], "permissions": 63},
        headers=as_user(shopper["userId"])
    )

    assert resp.status_code == 401
    assert resp.json()["message"] == "Admin access required"


@pytest.mark.asyncio
@pytest.mark.parametrize("permissions", [-1, 64, 128])
async def test_update_permissions_rejects_unknown_bits(client, admin, shopper, permissions):
    resp = await client.post(
        "/api/auth/update-permissions",
        json={"userId": shopper["userId"], "permissions": permissions},
        headers=as_user(admin["userId"])
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_PERMISSIONS"


@pytest.mark.asyncio
async def test_update_own_permissions(client, admin):
    resp = await client.post(
        "/api/auth/update-permissions",
        json={"userId": admin["userId"], "permissions": 0},
        headers=as_user(admin["userId"])
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Cannot change your own permissions"


@pytest.mark.asyncio
async def test_update_permissions_missing_user(client, admin):
    resp = await client.post(
        "/api/auth/update-permissions",
        json={"userId": 404, "permissions": 8},
        headers=as_user(admin["userId"])
    )

    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_make_and_remove_admin(client, admin, shopper):
    headers = as_user(admin["userId"])

    promoted = await client.post(f"/api/auth/make-admin/{shopper['userId']}", headers=headers)
    again = await client.post(f"/api/auth/make-admin/{shopper['userId']}", headers=headers)
    demoted = await client.post(f"/api/auth/remove-admin/{shopper['userId']}", headers=headers)

    assert promoted.status_code == 200
    assert promoted.json()["data"]["role"] == Role.ADMIN
    assert promoted.json()["data"]["permissions"] == Permission.ALL
    assert promoted.json()["data"]["permissionNames"] == ["All Permissions (Admin)"]
    assert again.status_code == 400
    assert again.json()["message"] == "User is already an admin"
    assert demoted.status_code == 200
    assert demoted.json()["data"]["role"] == Role.USER
    assert demoted.json()["data"]["permissions"] == Permission.VIEW_PRODUCTS


@pytest.mark.asyncio
async def test_remove_admin_guards(client, admin, shopper):
    headers = as_user(admin["userId"])

    self_demote = await client.post(f"/api/auth/remove-admin/{admin['userId']}", headers=headers)
    not_admin = await client.post(f"/api/auth/remove-admin/{shopper['userId']}", headers=headers)

    assert self_demote.status_code == 400
    assert self_demote.json()["message"] == "Cannot remove your own admin status"
    assert not_admin.status_code == 400
    assert not_admin.json()["message"] == "User is not an admin"
