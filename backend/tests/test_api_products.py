"""
HTTP-level tests for catalogue, party, manual-ledger and health routes.
"""


def test_health_endpoint(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["checks"]["database"]["status"] == "healthy"


def test_products_require_actor(client, db_session):
    assert client.get("/api/products").status_code == 401
    assert client.get("/api/products", headers={"X-User-Id": "   "}).status_code == 401


def test_create_product(client, actor_headers, db_session):
    response = client.post(
        "/api/products",
        json={
            "sku": "air-300",
            "name": "Air Filter",
            "category": "Filters",
            "costPrice": 25,
            "sellingPrice": 40,
            "stock": {"current": 12, "reorderThreshold": 4},
        },
        headers=actor_headers,
    )

    assert response.status_code == 201
    product = response.get_json()["product"]
    assert product["sku"] == "AIR-300"
    assert product["stock"]["current"] == 12
    assert product["createdBy"] == "tester"

    detail = client.get(f"/api/products/{product['id']}", headers=actor_headers).get_json()["product"]
    assert [entry["reason"] for entry in detail["activityLog"]] == ["Initial stock"]


def test_create_product_missing_fields(client, actor_headers, db_session):
    response = client.post("/api/products", json={"sku": "X-1"}, headers=actor_headers)
    assert response.status_code == 400
    assert response.get_json()["category"] == "validation"


def test_create_product_unknown_field(client, actor_headers, db_session):
    response = client.post(
        "/api/products",
        json={
            "sku": "X-2", "name": "X", "category": "Misc", "costPrice": 1, "sellingPrice": 2,
            "colour": "red",
        },
        headers=actor_headers,
    )
    assert response.status_code == 400


def test_stock_movement_endpoint(client, actor_headers, product):
    response = client.post(
        f"/api/products/{product.id}/stock",
        json={"quantity": 5, "type": "stock_out", "reason": "Damaged"},
        headers=actor_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["product"]["stock"]["current"] == 45

    response = client.post(
        f"/api/products/{product.id}/stock",
        json={"quantity": 500, "type": "stock_out", "reason": "Too many"},
        headers=actor_headers,
    )
    assert response.status_code == 409

    response = client.post(
        f"/api/products/{product.id}/stock",
        json={"quantity": 1, "type": "sale", "reason": "Not manual"},
        headers=actor_headers,
    )
    assert response.status_code == 400


def test_low_stock_listing(client, actor_headers, product, second_product):
    body = client.get("/api/products?lowStock=true", headers=actor_headers).get_json()
    assert [row["sku"] for row in body["items"]] == ["BRK-002"]


def test_missing_product_is_404(client, actor_headers, db_session):
    response = client.get("/api/products/12345", headers=actor_headers)
    assert response.status_code == 404
    assert response.get_json()["category"] == "not_found"


def test_archive_and_restore(client, actor_headers, product):
    archived = client.post(f"/api/products/{product.id}/archive", headers=actor_headers)
    assert archived.get_json()["product"]["isArchived"] is True

    restored = client.post(f"/api/products/{product.id}/restore", headers=actor_headers)
    assert restored.get_json()["product"]["isArchived"] is False


def test_create_customer_and_blacklist(client, actor_headers, db_session):
    response = client.post(
        "/api/customers",
        json={"name": "Kemi Ade", "phone": "08066660000", "address": {"city": "Ibadan"}},
        headers=actor_headers,
    )
    assert response.status_code == 201
    customer = response.get_json()["customer"]
    assert customer["address"]["city"] == "Ibadan"

    blocked = client.post(f"/api/customers/{customer['id']}/blacklist", headers=actor_headers).get_json()
    assert blocked["customer"]["isBlacklisted"] is True

    duplicate = client.post(
        "/api/customers", json={"name": "Other", "phone": "08066660000"}, headers=actor_headers,
    )
    assert duplicate.status_code == 409


def test_supplier_performance_endpoint(client, actor_headers, supplier):
    response = client.put(
        f"/api/suppliers/{supplier.id}/performance",
        json={"reliability": 5, "deliveryTime": 4},
        headers=actor_headers,
    )
    assert response.status_code == 200
    performance = response.get_json()["supplier"]["performance"]
    assert performance["deliveryTime"] == 4
    assert performance["overallRating"] == 4.0

    bad = client.put(f"/api/suppliers/{supplier.id}/performance", json={"quality": 9}, headers=actor_headers)
    assert bad.status_code == 400


def test_manual_transaction_and_chain_verify(client, actor_headers, db_session):
    response = client.post(
        "/api/transactions",
        json={
            "type": "opening_balance",
            "category": "asset",
            "amount": 250,
            "description": "Opening float",
            "account": "cash",
        },
        headers=actor_headers,
    )
    assert response.status_code == 201
    tx = response.get_json()["transaction"]
    assert tx["balanceAfter"] == 250.0

    verify = client.get("/api/transactions/accounts/cash/verify", headers=actor_headers).get_json()
    assert verify["ok"] is True

    bad_account = client.get("/api/transactions/accounts/vault/verify", headers=actor_headers)
    assert bad_account.status_code == 400
