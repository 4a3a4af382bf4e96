from datetime import timedelta

from bson import ObjectId
from jose import jwt

import auth
from conftest import PASSWORD, auth_headers


def test_missing_token(client):
    resp = client.get("/auth/me")
    assert resp.status_code == 401
    assert resp.json()["message"] == "No token, authorization denied"


def test_malformed_token(client):
    resp = client.get("/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Token is not valid"


def test_forged_token(client, guest):
    token = jwt.encode({"sub": guest.id}, "some-other-secret", algorithm=auth.ALGORITHM)
    resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.json()["message"] == "Token is not valid"


def test_expired_token(client, guest):
    resp = client.get("/auth/me", headers=auth_headers(guest, expires_delta=timedelta(minutes=-5)))
    assert resp.status_code == 401
    assert resp.json()["message"] == "Token expired"


def test_token_for_unknown_user(client):
    token = auth.create_access_token({"sub": str(ObjectId()), "role": "guest"})
    resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.json()["message"] == "Token is not valid"


def test_me(client, guest):
    resp = client.get("/auth/me", headers=auth_headers(guest))
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["id"] == guest.id
    assert user["role"] == "guest"
    assert "passwordHash" not in user and "password_hash" not in user


def test_register_then_login(client):
    resp = client.post("/auth/register", json={
        "name": "Nina New",
        "email": "Nina@Example.com",
        "password": "s3cret!",
        "role": "host",
    })
    assert resp.status_code == 201
    registered = resp.json()
    assert registered["user"]["email"] == "nina@example.com"
    assert registered["user"]["role"] == "host"

    resp = client.get("/auth/me", headers={"Authorization": f"Bearer {registered['accessToken']}"})
    assert resp.json()["user"]["name"] == "Nina New"

    resp = client.post("/auth/login", json={"email": "nina@example.com", "password": "s3cret!"})
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == registered["user"]["id"]


def test_register_rejects_duplicate_email(client, guest):
    resp = client.post("/auth/register", json={"name": "Copy", "email": guest.email, "password": "abcdef"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Email already registered"


def test_register_validation(client):
    resp = client.post("/auth/register", json={"name": "", "email": "nope", "password": "123", "role": "admin"})
    assert resp.status_code == 400
    fields = {e["field"] for e in resp.json()["errors"]}
    assert fields == {"name", "email", "password", "role"}


def test_login_wrong_password(client, guest):
    resp = client.post("/auth/login", json={"email": guest.email, "password": "wrong-password"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid email or password"}


def test_login_disabled_account(client, db, guest):
    db["user"].update_one({"_id": ObjectId(guest.id)}, {"$set": {"is_active": False}})
    resp = client.post("/auth/login", json={"email": guest.email, "password": PASSWORD})
    assert resp.status_code == 403


def test_update_profile(client, guest):
    resp = client.put("/users/profile", json={"bio": "Loves hiking", "avatarUrl": "/me.png"},
                      headers=auth_headers(guest))
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["bio"] == "Loves hiking"
    assert user["avatarUrl"] == "/me.png"
    assert user["name"] == guest.name


def test_update_profile_needs_fields(client, guest):
    assert client.put("/users/profile", json={}, headers=auth_headers(guest)).status_code == 400


def test_public_profile_hides_contact_details(client, host):
    resp = client.get(f"/users/{host.id}")
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["name"] == host.name
    assert "email" not in user
    assert client.get("/users/xyz").status_code == 400


def test_update_profile_ignores_null_name(client, guest):
    resp = client.put("/users/profile", json={"name": None, "bio": "Night owl"}, headers=auth_headers(guest))
    assert resp.status_code == 200
    assert resp.json()["user"]["name"] == guest.name
    assert resp.json()["user"]["bio"] == "Night owl"

    resp = client.put("/users/profile", json={"name": None}, headers=auth_headers(guest))
    assert resp.status_code == 400
    assert client.get("/auth/me", headers=auth_headers(guest)).json()["user"]["name"] == guest.name
