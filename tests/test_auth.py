import base64

from pontual.auth import create_access_token, decode_user_id, hash_password, verify_password
from pontual.config import Settings


def test_hash_and_verify():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


def test_long_passwords_are_not_truncated():
    base = "x" * 80
    hashed = hash_password(base + "a")
    assert verify_password(base + "a", hashed)
    assert not verify_password(base + "b", hashed)


def test_verify_against_garbage_hash():
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_token_roundtrip(settings):
    token = create_access_token(7, settings)
    assert decode_user_id(token, settings) == 7

    other = Settings(secret_key="another-secret", _env_file=None)
    assert decode_user_id(token, other) is None
    assert decode_user_id("garbage", settings) is None


# ---------------- endpoints ----------------

def test_status_tracks_initialization(client, admin_payload):
    assert client.get("/api/auth/status").json() == {"initialized": False}
    client.post("/api/auth/initialize", json=admin_payload)
    assert client.get("/api/auth/status").json() == {"initialized": True}


def test_initialize_returns_admin_token(admin_login):
    assert admin_login["tokenType"] == "bearer"
    assert admin_login["apiKey"].startswith("pk_")
    assert admin_login["user"]["role"] == "admin"
    assert "passwordHash" not in admin_login["user"]


def test_initialize_only_once(client, admin_login, admin_payload):
    res = client.post("/api/auth/initialize", json=admin_payload)
    assert res.status_code == 400
    assert res.json()["detail"] == "System already initialized"


def test_login_and_me(client, admin_login, admin_payload):
    res = client.post("/api/auth/login", json={"username": "admin", "password": admin_payload["password"]})
    assert res.status_code == 200
    token = res.json()["accessToken"]
    assert res.json()["user"]["lastLogin"] is not None

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["username"] == "admin"


def test_login_wrong_password(client, admin_login):
    res = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    assert res.status_code == 401


def test_requests_without_credentials_are_rejected(client):
    res = client.get("/api/tasks")
    assert res.status_code == 401
    assert res.json() == {"detail": "Authentication required"}


def test_invalid_bearer_token(client, admin_login):
    res = client.get("/api/tasks", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401


def test_api_key_and_basic_auth(client, admin_login, admin_payload):
    assert client.get("/api/auth/me", headers={"X-API-Key": admin_login["apiKey"]}).status_code == 200

    raw = base64.b64encode(f"admin:{admin_payload['password']}".encode()).decode()
    assert client.get("/api/auth/me", headers={"Authorization": f"Basic {raw}"}).status_code == 200

    bad = base64.b64encode(b"admin:wrong").decode()
    assert client.get("/api/auth/me", headers={"Authorization": f"Basic {bad}"}).status_code == 401


def test_regenerated_api_key_replaces_old_one(client, admin_login, auth_headers):
    new_key = client.post("/api/auth/api-key", headers=auth_headers).json()["apiKey"]
    assert new_key != admin_login["apiKey"]
    assert client.get("/api/auth/me", headers={"X-API-Key": admin_login["apiKey"]}).status_code == 401
    assert client.get("/api/auth/me", headers={"X-API-Key": new_key}).status_code == 200


def test_change_password(client, auth_headers, admin_payload):
    res = client.post(
        "/api/auth/change-password",
        json={"currentPassword": "wrong", "newPassword": "brand-new-pass"},
        headers=auth_headers,
    )
    assert res.status_code == 400

    res = client.post(
        "/api/auth/change-password",
        json={"currentPassword": admin_payload["password"], "newPassword": "brand-new-pass"},
        headers=auth_headers,
    )
    assert res.status_code == 200
    login = client.post("/api/auth/login", json={"username": "admin", "password": "brand-new-pass"})
    assert login.status_code == 200


# ---------------- user administration ----------------

def _create_member(client, auth_headers, username="joana"):
    res = client.post(
        "/api/users",
        json={"username": username, "email": f"{username}@pontual.com.br", "fullName": "Joana Lima"},
        headers=auth_headers,
    )
    assert res.status_code == 201, res.text
    return res.json()


def test_admin_creates_user_with_temporary_password(client, auth_headers):
    created = _create_member(client, auth_headers)
    assert created["user"]["mustResetPassword"]
    assert created["user"]["role"] == "user"

    login = client.post(
        "/api/auth/login", json={"username": "joana", "password": created["temporaryPassword"]}
    )
    assert login.status_code == 200

    listing = client.get("/api/users", headers=auth_headers).json()
    assert [u["username"] for u in listing] == ["admin", "joana"]


def test_duplicate_username_rejected(client, auth_headers):
    _create_member(client, auth_headers)
    res = client.post(
        "/api/users",
        json={"username": "joana", "email": "outra@pontual.com.br", "fullName": "Outra Joana"},
        headers=auth_headers,
    )
    assert res.status_code == 400


def test_non_admin_cannot_manage_users(client, auth_headers):
    created = _create_member(client, auth_headers)
    token = client.post(
        "/api/auth/login", json={"username": "joana", "password": created["temporaryPassword"]}
    ).json()["accessToken"]

    res = client.get("/api/users", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 403


def test_reset_token_flow(client, auth_headers):
    user_id = _create_member(client, auth_headers)["user"]["id"]

    token = client.post(f"/api/users/{user_id}/reset-token", headers=auth_headers).json()["resetToken"]
    res = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "joana-nova"})
    assert res.status_code == 200

    again = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "outra-senha"})
    assert again.status_code == 400

    login = client.post("/api/auth/login", json={"username": "joana", "password": "joana-nova"})
    assert login.status_code == 200
    assert not login.json()["user"]["mustResetPassword"]


def test_deactivated_user_cannot_log_in(client, auth_headers):
    created = _create_member(client, auth_headers)
    user_id = created["user"]["id"]

    res = client.put(f"/api/users/{user_id}", json={"isActive": False}, headers=auth_headers)
    assert res.json()["isActive"] is False

    login = client.post(
        "/api/auth/login", json={"username": "joana", "password": created["temporaryPassword"]}
    )
    assert login.status_code == 401


def test_admin_cannot_delete_self(client, admin_login, auth_headers):
    res = client.delete(f"/api/users/{admin_login['user']['id']}", headers=auth_headers)
    assert res.status_code == 400

    member = _create_member(client, auth_headers)
    assert client.delete(f"/api/users/{member['user']['id']}", headers=auth_headers).json() == {"ok": True}
