from datetime import datetime, timedelta, timezone

import jwt

from cropscan import auth, config
from cropscan.models import Role, User

from conftest import auth_header, make_user

FARMER_PAYLOAD = {
    "email": "Rahim@Example.com",
    "password": "secret123",
    "name": "Rahim",
    "phone": "01712345678",
    "farmer_profile": {"crop_types": ["rice", "jute"], "farm_size": 2.5, "soil_type": "clay"},
}


def test_hash_password_roundtrip():
    encoded = auth.hash_password("hunter22")
    assert encoded.startswith("pbkdf2_sha256$")
    assert auth.verify_password("hunter22", encoded)
    assert not auth.verify_password("hunter23", encoded)
    assert not auth.verify_password("hunter22", "not-a-hash")


def test_bearer_token_parsing():
    assert auth.bearer_token("Bearer abc") == "abc"
    assert auth.bearer_token("bearer abc") == "abc"
    assert auth.bearer_token("abc") == "abc"
    assert auth.bearer_token(None) is None
    assert auth.bearer_token("Bearer ") is None


def test_register_farmer_creates_user_and_profile(client, db):
    r = client.post("/api/v1/auth/register/farmer", json=FARMER_PAYLOAD)
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    user = body["data"]["user"]
    assert user["email"] == "rahim@example.com"
    assert user["role"] == "FARMER"
    assert user["farmer_profile"]["crop_types"] == ["rice", "jute"]
    assert "password" not in user

    stored = db.query(User).filter_by(email="rahim@example.com").one()
    assert stored.password != "secret123"


def test_register_duplicate_email(client):
    assert client.post("/api/v1/auth/register/farmer", json=FARMER_PAYLOAD).status_code == 201
    r = client.post("/api/v1/auth/register/farmer", json=FARMER_PAYLOAD)
    assert r.status_code == 400
    assert r.json()["message"] == "Email already registered"


def test_register_validation_errors(client):
    payload = dict(FARMER_PAYLOAD, phone="12345", farmer_profile={"crop_types": []})
    r = client.post("/api/v1/auth/register/farmer", json=payload)
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["message"] == "Validation Error"
    paths = {e["path"] for e in body["error_messages"]}
    assert "phone" in paths
    assert "farmer_profile.crop_types" in paths


def test_login_sets_refresh_cookie_and_refreshes(client, farmer):
    r = client.post("/api/v1/auth/login", json={"email": "farmer@example.com", "password": "secret123"})
    assert r.status_code == 200
    data = r.json()["data"]
    assert auth.verify_access_token(data["access_token"])["user_id"] == farmer.id
    assert data["need_password_change"] is False
    assert "refresh_token" in r.cookies

    r = client.post("/api/v1/auth/refresh-token")
    assert r.status_code == 200
    assert auth.verify_access_token(r.json()["data"]["access_token"])["role"] == "FARMER"


def test_login_rejects_bad_password(client, farmer):
    r = client.post("/api/v1/auth/login", json={"email": "farmer@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid credentials"


def test_refresh_with_body_token(client, farmer):
    token = auth.create_refresh_token(farmer)
    r = client.post("/api/v1/auth/refresh-token", json={"refresh_token": token})
    assert r.status_code == 200


def test_refresh_rejects_expired_token(client, farmer):
    past = datetime.now(timezone.utc) - timedelta(days=1)
    token = jwt.encode(
        {"user_id": farmer.id, "role": "FARMER", "type": "refresh", "iat": past - timedelta(days=1), "exp": past},
        config.refresh_token_secret(),
        algorithm=config.JWT_ALG,
    )
    r = client.post("/api/v1/auth/refresh-token", json={"refresh_token": token})
    assert r.status_code == 401
    assert r.json()["message"] == "Your token has expired. Please log in again"


def test_refresh_rejects_access_token(client, farmer):
    r = client.post("/api/v1/auth/refresh-token", json={"refresh_token": auth.create_access_token(farmer)})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token. Please log in again"


def test_refresh_requires_token(client):
    r = client.post("/api/v1/auth/refresh-token")
    assert r.status_code == 401


def test_logout_clears_cookie(client):
    r = client.post("/api/v1/auth/logout")
    assert r.status_code == 200
    assert "refresh_token" in r.headers.get("set-cookie", "")


def test_profile_requires_token(client):
    r = client.get("/api/v1/auth/profile")
    assert r.status_code == 401
    assert r.json()["message"] == "Access token is required"


def test_profile_update_and_no_password(client, farmer):
    r = client.put("/api/v1/auth/profile", json={"name": "Karim", "address": "Bogura"}, headers=auth_header(farmer))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["name"] == "Karim"
    assert data["address"] == "Bogura"
    assert "password" not in data


def test_change_password(client, farmer):
    headers = auth_header(farmer)
    r = client.post("/api/v1/auth/change-password", headers=headers, json={
        "current_password": "nope", "new_password": "brandnew1", "confirm_password": "brandnew1",
    })
    assert r.status_code == 400
    assert r.json()["message"] == "Current password is incorrect"

    r = client.post("/api/v1/auth/change-password", headers=headers, json={
        "current_password": "secret123", "new_password": "brandnew1", "confirm_password": "different",
    })
    assert r.status_code == 400

    r = client.post("/api/v1/auth/change-password", headers=headers, json={
        "current_password": "secret123", "new_password": "brandnew1", "confirm_password": "brandnew1",
    })
    assert r.status_code == 200
    r = client.post("/api/v1/auth/login", json={"email": "farmer@example.com", "password": "brandnew1"})
    assert r.status_code == 200


def test_deactivated_user_loses_access(client, farmer):
    headers = auth_header(farmer)
    assert client.post("/api/v1/auth/deactivate", headers=headers).status_code == 200
    r = client.get("/api/v1/auth/profile", headers=headers)
    assert r.status_code == 401
    assert r.json()["message"] == "User not found or inactive"


def test_register_admin_requires_admin(client, admin, farmer):
    payload = {"email": "ops@crophealth.com", "password": "secret123", "name": "Ops",
               "admin_profile": {"department": "Operations"}}
    r = client.post("/api/v1/auth/register/admin", json=payload, headers=auth_header(farmer))
    assert r.status_code == 403
    assert r.json()["message"] == "Insufficient permissions"

    r = client.post("/api/v1/auth/register/admin", json=payload, headers=auth_header(admin))
    assert r.status_code == 201
    assert r.json()["data"]["user"]["admin_profile"]["department"] == "Operations"


def test_list_users_paginates(client, db, admin):
    for i in range(3):
        make_user(db, Role.FARMER, email=f"f{i}@example.com", name=f"Farmer {i}")
    r = client.get("/api/v1/auth/users", params={"role": "FARMER", "limit": 2}, headers=auth_header(admin))
    assert r.status_code == 200
    body = r.json()
    assert len(body["data"]) == 2
    assert body["meta"] == {
        "page": 1, "limit": 2, "total": 3, "total_pages": 2, "has_next_page": True, "has_prev_page": False,
    }
    assert all("password" not in u for u in body["data"])


def test_profile_update_rejects_null_name(client, farmer):
    r = client.put("/api/v1/auth/profile", json={"name": None}, headers=auth_header(farmer))
    assert r.status_code == 400
    assert r.json()["error_messages"][0]["path"] == "name"
