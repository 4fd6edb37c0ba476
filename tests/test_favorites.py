def test_favorites_round_trip(client, client_headers, make_product, database):
    first = make_product(name="Mouse")
    second = make_product(name="Teclado")

    assert client.post(f"/api/favorites/{second}", headers=client_headers).status_code == 201
    assert client.post(f"/api/favorites/{first}", headers=client_headers).status_code == 201
    assert client.post(f"/api/favorites/{first}", headers=client_headers).status_code == 409

    names = [p["name"] for p in client.get("/api/favorites", headers=client_headers).json()]
    assert names == ["Teclado", "Mouse"]

    assert client.delete(f"/api/favorites/{first}", headers=client_headers).status_code == 200
    assert client.delete(f"/api/favorites/{first}", headers=client_headers).status_code == 200
    names = [p["name"] for p in client.get("/api/favorites", headers=client_headers).json()]
    assert names == ["Teclado"]


def test_add_favorite_validation(client, client_headers):
    assert client.post("/api/favorites/not-an-id", headers=client_headers).status_code == 400
    assert client.post("/api/favorites/5f0c1f1f1f1f1f1f1f1f1f1f", headers=client_headers).status_code == 404


def test_deleted_products_drop_out_of_favorites(client, client_headers, make_product, database):
    product_id = make_product()
    client.post(f"/api/favorites/{product_id}", headers=client_headers)
    database["product"].delete_many({})
    assert client.get("/api/favorites", headers=client_headers).json() == []
