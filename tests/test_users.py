def _defaults(addresses):
    return [a["id"] for a in addresses if a["is_default"]]


def test_profile_hides_password_hash(client, client_headers, client_user):
    res = client.get("/api/users/me", headers=client_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["email"] == client_user["email"]
    assert "password_hash" not in body


def test_update_profile(client, client_headers):
    res = client.patch("/api/users/me", json={"phone": "3312345678"}, headers=client_headers)
    assert res.json()["user"]["phone"] == "3312345678"


def test_single_default_address(client, client_headers, address):
    first = client.post("/api/users/addresses", json={**address, "is_default": True}, headers=client_headers)
    assert first.status_code == 201
    first_id = first.json()["addresses"][0]["id"]

    res = client.post("/api/users/addresses", json={**address, "street": "Calle 2", "is_default": True},
                      headers=client_headers)
    addresses = res.json()["addresses"]
    second_id = addresses[1]["id"]
    assert _defaults(addresses) == [second_id]

    client.patch(f"/api/users/addresses/{first_id}/set-default", headers=client_headers)
    addresses = client.get("/api/users/addresses", headers=client_headers).json()
    assert _defaults(addresses) == [first_id]


def test_address_update_and_delete(client, client_headers, address):
    address_id = client.post("/api/users/addresses", json=address, headers=client_headers).json()["addresses"][0]["id"]

    res = client.patch(f"/api/users/addresses/{address_id}", json={"city": "Zapopan"}, headers=client_headers)
    assert res.json()["address"]["city"] == "Zapopan"

    assert client.delete(f"/api/users/addresses/{address_id}", headers=client_headers).status_code == 200
    assert client.delete(f"/api/users/addresses/{address_id}", headers=client_headers).status_code == 404
    assert client.patch("/api/users/addresses/bad/set-default", headers=client_headers).status_code == 404


def test_payment_methods(client, client_headers):
    method = {"type": "credit_card", "last4": "4242", "provider": "Visa", "expiration": "08/29"}
    res = client.post("/api/users/payment-methods", json=method, headers=client_headers)
    assert res.status_code == 201
    method_id = res.json()["payment_methods"][0]["id"]

    res = client.patch(f"/api/users/payment-methods/{method_id}", json={"expiration": "09/30"}, headers=client_headers)
    assert res.json()["payment_method"]["expiration"] == "09/30"

    assert client.delete(f"/api/users/payment-methods/{method_id}", headers=client_headers).status_code == 200
    assert client.get("/api/users/payment-methods", headers=client_headers).json() == []


def test_payment_method_rejects_card_numbers(client, client_headers):
    res = client.post("/api/users/payment-methods", json={"type": "credit_card", "last4": "4242424242424242"},
                      headers=client_headers)
    assert res.status_code == 400


def test_change_password(client, client_headers, client_user, password):
    res = client.patch("/api/users/change-password",
                       json={"current_password": "wrong-one", "new_password": "NuevaClave123"},
                       headers=client_headers)
    assert res.status_code == 401

    res = client.patch("/api/users/change-password",
                       json={"current_password": password, "new_password": "NuevaClave123"},
                       headers=client_headers)
    assert res.status_code == 200
    login = client.post("/api/auth/login", json={"email": client_user["email"], "password": "NuevaClave123"})
    assert login.status_code == 200


def test_soft_delete_blocks_login_and_token(client, client_headers, client_user, password):
    assert client.delete("/api/users/me", headers=client_headers).status_code == 200

    login = client.post("/api/auth/login", json={"email": client_user["email"], "password": password})
    assert login.status_code == 401
    assert client.get("/api/users/me", headers=client_headers).status_code == 401
