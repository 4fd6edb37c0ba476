import pytest

import cart as cart_service
from errors import BadRequestError, NotFoundError


def _add(client, headers, product_id, quantity, variation=None):
    body = {"product_id": product_id, "quantity": quantity}
    if variation:
        body["selected_variation"] = variation
    return client.post("/api/cart", json=body, headers=headers)


def test_get_cart_without_items_is_not_found(client, client_headers):
    res = client.get("/api/cart", headers=client_headers)
    assert res.status_code == 404
    assert res.json()["error"] == "NotFoundError"


def test_cart_requires_authentication(client):
    res = client.get("/api/cart")
    assert res.status_code == 401
    assert res.json()["error"] == "UnauthorizedError"


def test_same_product_and_variation_merge_into_one_line(client, client_headers, make_product):
    product_id = make_product(stock=5, price=250.0)
    assert _add(client, client_headers, product_id, 2).status_code == 201
    res = _add(client, client_headers, product_id, 3)
    assert res.status_code == 201

    items = res.json()["cart"]["items"]
    assert len(items) == 1
    assert items[0]["quantity"] == 5
    assert items[0]["price_at_addition"] == 250.0


def test_different_variations_are_separate_lines(client, client_headers, make_product):
    product_id = make_product(stock=5)
    _add(client, client_headers, product_id, 1, "black")
    res = _add(client, client_headers, product_id, 1, "white")
    assert len(res.json()["cart"]["items"]) == 2


def test_merge_over_stock_is_rejected_and_cart_unchanged(client, client_headers, make_product):
    product_id = make_product(stock=3)
    _add(client, client_headers, product_id, 2)

    res = _add(client, client_headers, product_id, 2)
    assert res.status_code == 400
    assert res.json()["error"] == "BadRequestError"

    cart = client.get("/api/cart", headers=client_headers).json()
    assert cart["items"][0]["quantity"] == 2


def test_add_more_than_stock_is_bad_request(client, client_headers, make_product):
    product_id = make_product(stock=1)
    res = _add(client, client_headers, product_id, 2)
    assert res.status_code == 400
    assert "Solo quedan 1" in res.json()["message"]


def test_add_unknown_or_malformed_product_is_not_found(client, client_headers):
    assert _add(client, client_headers, "5f0c1f1f1f1f1f1f1f1f1f1f", 1).status_code == 404
    assert _add(client, client_headers, "not-an-id", 1).status_code == 404


def test_get_cart_resolves_current_product(client, client_headers, make_product):
    product_id = make_product(name="Ryzen 7", stock=4)
    _add(client, client_headers, product_id, 1)
    cart = client.get("/api/cart", headers=client_headers).json()
    assert cart["items"][0]["product"]["name"] == "Ryzen 7"
    assert cart["items"][0]["product"]["id"] == product_id


def test_update_item_quantity(client, client_headers, make_product):
    product_id = make_product(stock=4)
    item_id = _add(client, client_headers, product_id, 1).json()["cart"]["items"][0]["id"]

    res = client.patch(f"/api/cart/items/{item_id}", json={"quantity": 4}, headers=client_headers)
    assert res.status_code == 200
    assert res.json()["cart"]["items"][0]["quantity"] == 4

    res = client.patch(f"/api/cart/items/{item_id}", json={"quantity": 5}, headers=client_headers)
    assert res.status_code == 400

    res = client.patch(f"/api/cart/items/{item_id}", json={"quantity": 0}, headers=client_headers)
    assert res.status_code == 400


def test_update_unknown_item_is_not_found(client, client_headers, make_product):
    _add(client, client_headers, make_product(), 1)
    res = client.patch("/api/cart/items/5f0c1f1f1f1f1f1f1f1f1f1f", json={"quantity": 1}, headers=client_headers)
    assert res.status_code == 404


def test_update_item_of_deleted_product_drops_the_line(database, client_user, make_product):
    user_id = str(client_user["_id"])
    product_id = make_product(stock=3)
    cart = cart_service.add_item(database, user_id, product_id, 1)
    item_id = str(cart["items"][0]["_id"])
    database["product"].delete_many({})

    with pytest.raises(NotFoundError):
        cart_service.update_item(database, user_id, item_id, quantity=2)
    assert database["cart"].find_one({"user_id": user_id})["items"] == []


def test_remove_item_and_clear_are_idempotent(client, client_headers, make_product):
    item_id = _add(client, client_headers, make_product(), 1).json()["cart"]["items"][0]["id"]

    assert client.delete(f"/api/cart/items/{item_id}", headers=client_headers).status_code == 200
    assert client.delete(f"/api/cart/items/{item_id}", headers=client_headers).status_code == 200
    assert client.delete("/api/cart/items", headers=client_headers).status_code == 200
    assert client.delete("/api/cart/items", headers=client_headers).status_code == 200


def test_clear_cart_empties_items(client, client_headers, make_product):
    _add(client, client_headers, make_product(name="A"), 1)
    _add(client, client_headers, make_product(name="B"), 1)
    client.delete("/api/cart/items", headers=client_headers)
    assert client.get("/api/cart", headers=client_headers).status_code == 404


def test_sync_skips_bad_ids_and_clamps_to_stock(client, client_headers, make_product, caplog):
    low = make_product(name="Low stock", stock=2)
    empty = make_product(name="Sold out", stock=0)
    payload = {"items": [
        {"product_id": "garbage", "quantity": 1},
        {"product_id": "5f0c1f1f1f1f1f1f1f1f1f1f", "quantity": 1},
        {"product_id": low, "quantity": 5},
        {"product_id": empty, "quantity": 1},
    ]}

    res = client.post("/api/cart/sync", json=payload, headers=client_headers)
    assert res.status_code == 200
    items = res.json()["items"]
    assert [(i["product_id"], i["quantity"]) for i in items] == [(low, 2)]
    assert "invalid product id" in caplog.text


def test_sync_sums_with_existing_lines_and_clamps_again(database, client_user, make_product):
    user_id = str(client_user["_id"])
    product_id = make_product(stock=4)
    cart_service.add_item(database, user_id, product_id, 3)

    cart = cart_service.sync_cart(database, user_id, [{"product_id": product_id, "quantity": 3}])
    assert cart["items"][0]["quantity"] == 4


def test_add_item_service_leaves_cart_untouched_on_failure(database, client_user, make_product):
    user_id = str(client_user["_id"])
    product_id = make_product(stock=3)
    cart_service.add_item(database, user_id, product_id, 2)
    with pytest.raises(BadRequestError):
        cart_service.add_item(database, user_id, product_id, 2)
    assert database["cart"].find_one({"user_id": user_id})["items"][0]["quantity"] == 2


def test_changing_variation_onto_an_existing_line_merges_them(client, client_headers, make_product):
    product_id = make_product(stock=5)
    _add(client, client_headers, product_id, 1, "black")
    items = _add(client, client_headers, product_id, 2, "white").json()["cart"]["items"]
    black = next(i for i in items if i["selected_variation"] == "black")

    res = client.patch(f"/api/cart/items/{black['id']}", json={"selected_variation": "white"}, headers=client_headers)
    assert res.status_code == 200
    items = res.json()["cart"]["items"]
    assert len(items) == 1
    assert items[0]["selected_variation"] == "white"
    assert items[0]["quantity"] == 3


def test_variation_merge_over_stock_leaves_cart_unchanged(client, client_headers, make_product):
    product_id = make_product(stock=3)
    _add(client, client_headers, product_id, 2, "black")
    items = _add(client, client_headers, product_id, 2, "white").json()["cart"]["items"]
    black = next(i for i in items if i["selected_variation"] == "black")

    res = client.patch(f"/api/cart/items/{black['id']}", json={"selected_variation": "white"}, headers=client_headers)
    assert res.status_code == 400
    items = client.get("/api/cart", headers=client_headers).json()["items"]
    assert sorted(i["selected_variation"] for i in items) == ["black", "white"]
