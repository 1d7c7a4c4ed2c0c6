import pytest
from fastapi.testclient import TestClient

ADDRESS = {
    "addressLine": "742 Evergreen Terrace",
    "city": "Springfield",
    "state": "OR",
    "postalCode": "97403",
    "country": "USA",
}


@pytest.fixture
def registered(client):
    response = client.post(
        "/auth/register",
        json={"email": "homer@example.com", "password": "donuts!", "name": "homer", "username": "homer"},
    )
    assert response.status_code == 201
    return response.json()["data"]


@pytest.fixture
def products(client):
    category = client.post("/categories", json=[{"title": "Kitchen"}]).json()["data"][0]
    response = client.post(
        "/products",
        json=[
            {"title": "Blender", "price": 600, "description": "Fast", "categoryId": category["id"]},
            {"title": "Toaster", "price": 150, "categoryId": category["id"], "image": "https://img/t.png"},
        ],
    )
    assert response.status_code == 201
    return response.json()["data"]


def test_root(client):
    assert client.get("/").status_code == 200


def test_database_probe(client):
    body = client.get("/test").json()
    assert body["connection_status"] == "Connected"
    assert "orders" in body["tables"]


def test_register_conflict_and_login(client, registered):
    again = client.post(
        "/auth/register", json={"email": "homer@example.com", "password": "donuts!", "name": "homer"}
    )
    assert again.status_code == 409
    assert again.json() == {"status": 409, "msg": "Email already registered"}

    ok = client.post("/auth/login", json={"email": "homer@example.com", "password": "donuts!"})
    assert ok.status_code == 200
    assert ok.json()["msg"] == "Login successful"
    assert ok.json()["data"]["token"].startswith("tok_")

    bad = client.post("/auth/login", json={"email": "homer@example.com", "password": "nope123"})
    assert bad.status_code == 401
    assert bad.json() == {"status": 401, "msg": "Invalid credentials"}


def test_invalid_body_is_400_envelope(client):
    response = client.post("/auth/register", json={"email": "not-an-email", "password": "x"})
    assert response.status_code == 400
    assert response.json()["status"] == 400


def test_forgot_password(client, registered, notifier):
    response = client.post("/auth/forgot-password", json={"email": "homer@example.com"})
    assert response.status_code == 200
    assert notifier.password_resets[0]["email"] == "homer@example.com"

    missing = client.post("/auth/forgot-password", json={"email": "marge@example.com"})
    assert missing.status_code == 404


def test_forgot_password_email_failure_is_generic_500(client, registered, notifier):
    notifier.fail = True
    response = client.post("/auth/forgot-password", json={"email": "homer@example.com"})
    assert response.status_code == 500
    assert response.json() == {"status": 500, "msg": "Failed to send email"}


def test_product_routes(client, products):
    blender = products[0]
    assert client.get(f"/products/{blender['id']}").json()["data"]["title"] == "Blender"
    assert len(client.get("/products").json()["data"]) == 2
    assert len(client.get(f"/products/category/{blender['categoryId']}").json()["data"]) == 2

    updated = client.put(f"/products/{blender['id']}", json={"title": "Blender XL", "price": 650})
    assert updated.json()["data"]["price"] == 650

    assert client.delete(f"/products/{blender['id']}").status_code == 200
    missing = client.get(f"/products/{blender['id']}")
    assert missing.status_code == 404
    assert missing.json() == {"status": 404, "msg": "Product not found"}


def test_product_with_unknown_category_is_400(client, products):
    created = client.post("/products", json=[{"title": "X", "price": 1, "categoryId": 999}])
    assert created.status_code == 400
    assert created.json() == {"status": 400, "msg": "Category does not exist"}

    updated = client.put(f"/products/{products[0]['id']}", json={"title": "Blender", "price": 600, "categoryId": 999})
    assert updated.status_code == 400
    assert updated.json() == {"status": 400, "msg": "Category does not exist"}


def test_category_routes(client):
    created = client.post("/categories", json={"title": "Garden"}).json()["data"][0]
    assert client.get(f"/categories/{created['id']}").json()["data"]["title"] == "Garden"
    assert client.put(f"/categories/{created['id']}", json={"title": "Yard"}).json()["data"]["title"] == "Yard"
    assert client.delete(f"/categories/{created['id']}").status_code == 200
    assert client.delete(f"/categories/{created['id']}").status_code == 404


def test_cart_routes(client, registered, products):
    user_id = registered["id"]
    blender, toaster = products

    first = client.post(f"/cart/{user_id}", json={"productId": blender["id"], "quantity": 2})
    assert first.status_code == 200
    assert first.json()["msg"] == "Item added to cart successfully"
    merged = client.post(f"/cart/{user_id}", json={"productId": blender["id"], "quantity": 3}).json()["data"]
    assert merged["quantity"] == 5
    assert merged["productName"] == "Blender"

    client.post(f"/cart/{user_id}", json={"productId": toaster["id"]})
    lines = client.get(f"/cart/{user_id}").json()["data"]
    assert [(l["productName"], l["quantity"]) for l in lines] == [("Blender", 5), ("Toaster", 1)]
    assert lines[1]["imageUrl"] == "https://img/t.png"

    updated = client.put(f"/cart/{user_id}/{lines[1]['id']}", json={"quantity": 4})
    assert updated.json()["data"]["quantity"] == 4

    removed = client.delete(f"/cart/{user_id}/{lines[1]['id']}")
    assert removed.status_code == 200
    assert removed.json()["data"]["productName"] == "Toaster"

    assert client.put(f"/cart/{user_id}/9999", json={"quantity": 1}).json() == {
        "status": 404,
        "msg": "Cart item not found",
    }
    assert client.delete(f"/cart/{user_id}/9999").status_code == 404
    assert client.post(f"/cart/{user_id}", json={"productId": 9999, "quantity": 1}).status_code == 404
    assert client.post(f"/cart/{user_id}", json={"productId": blender["id"], "quantity": 0}).status_code == 400


def test_checkout_flow(client, registered, products, notifier):
    user_id = registered["id"]
    client.post(f"/cart/{user_id}", json={"productId": products[0]["id"], "quantity": 2})

    summary = client.get(f"/orders/checkout/{user_id}").json()["data"]
    assert summary["subtotal"] == 1200
    assert summary["tax"] == 120
    assert summary["shipping"] == 0
    assert summary["discount"] == 0
    assert summary["total"] == 1320
    assert summary["items"][0]["productName"] == "Blender"

    placed = client.post(f"/orders/{user_id}", json=ADDRESS)
    assert placed.status_code == 200
    assert placed.json()["msg"] == "Place order successfully"
    order_id = placed.json()["data"]["id"]

    assert client.get(f"/cart/{user_id}").json()["data"] == []
    history = client.get(f"/orders/{user_id}").json()["data"]
    assert len(history) == 1
    assert history[0]["id"] == order_id
    assert history[0]["totalAmount"] == summary["total"]
    assert history[0]["address"] == ADDRESS
    assert history[0]["items"][0]["productName"] == "Blender"
    assert notifier.confirmations[0]["order_id"] == order_id

    again = client.post(f"/orders/{user_id}", json=ADDRESS)
    assert again.status_code == 400
    assert again.json() == {"status": 400, "msg": "Cart is empty"}


def test_place_order_requires_full_address(client, registered):
    response = client.post(f"/orders/{registered['id']}", json={"city": "Springfield"})
    assert response.status_code == 400


def test_unexpected_errors_become_generic_500(app, monkeypatch):
    def boom(user_id, conn=None):
        raise RuntimeError("driver exploded: password=hunter2")

    monkeypatch.setattr(app.state.cart, "get_cart", boom)
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/cart/1")
    assert response.status_code == 500
    assert response.json() == {"status": 500, "msg": "An unexpected error occurred"}


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.json()["status"] == 404
