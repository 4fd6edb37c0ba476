from datetime import timedelta

from auth import CurrentUser, authorize, create_access_token

REGISTER = {
    "name": "Mario",
    "last_name": "Ruiz",
    "email": "Mario@Example.com",
    "password": "ClaveSegura1",
}


def test_register_and_login(client):
    res = client.post("/api/auth/register", json=REGISTER)
    assert res.status_code == 201
    user = res.json()["user"]
    assert user["email"] == "mario@example.com"
    assert user["role"] == "client"
    assert "password_hash" not in user

    res = client.post("/api/auth/login", json={"email": "MARIO@example.com", "password": "ClaveSegura1"})
    assert res.status_code == 200
    body = res.json()
    assert body["token_type"] == "bearer"
    me = client.get("/api/users/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["id"] == user["id"]
    assert me.json()["last_login_at"]


def test_duplicate_email_is_conflict(client):
    client.post("/api/auth/register", json=REGISTER)
    res = client.post("/api/auth/register", json=REGISTER)
    assert res.status_code == 409
    assert res.json() == {"error": "ConflictError", "message": "El correo electrónico ya está registrado."}


def test_deleted_account_cannot_register_again(client, database):
    client.post("/api/auth/register", json=REGISTER)
    database["user"].update_one({"email": "mario@example.com"}, {"$set": {"is_deleted": True}})
    res = client.post("/api/auth/register", json=REGISTER)
    assert res.status_code == 409
    assert "reactivarla" in res.json()["message"]


def test_bad_credentials(client, client_user):
    res = client.post("/api/auth/login", json={"email": client_user["email"], "password": "nope-nope"})
    assert res.status_code == 401
    assert res.headers["www-authenticate"] == "Bearer"


def test_invalid_payload_is_bad_request_with_details(client):
    res = client.post("/api/auth/register", json={"email": "not-an-email"})
    assert res.status_code == 400
    body = res.json()
    assert body["error"] == "BadRequestError"
    assert any(d["field"].endswith("email") for d in body["details"])


def test_expired_and_garbage_tokens(client, client_user, settings):
    expired = create_access_token({"sub": str(client_user["_id"])}, settings, timedelta(minutes=-1))
    for token in (expired, "garbage"):
        res = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.json()["message"] == "Token inválido o expirado."


def test_policy_scopes_client_reads():
    client_user = CurrentUser(id="u1", role="client", name="Ana", email="a@example.com")
    staff = CurrentUser(id="u2", role="employee", name="Eva", email="e@example.com")

    assert authorize(client_user, "orders:read").scope == {"user_id": "u1"}
    assert authorize(staff, "orders:read").scope == {}
    assert not authorize(client_user, "orders:manage").allowed
    assert not authorize(staff, "orders:create").allowed
    assert not authorize(staff, "reviews:delete").allowed
    assert not authorize(client_user, "unknown:capability").allowed


def test_seed_is_admin_only(client, client_headers, admin_headers, database):
    assert client.post("/seed", headers=client_headers).status_code == 403
    res = client.post("/seed", headers=admin_headers)
    assert res.status_code == 200
    created = res.json()["created"]
    assert created == database["product"].count_documents({})
    assert client.post("/seed", headers=admin_headers).json()["created"] == 0


def test_health_routes(client):
    assert client.get("/").json()["message"].endswith("API is running")
    assert client.get("/test").json()["database_name"] in ("✅ Set", "❌ Not Set")
