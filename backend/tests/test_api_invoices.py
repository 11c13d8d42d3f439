"""
HTTP-level tests for invoice, payment and transaction routes.

Focus on the JSON contract: status codes, error categories and the shape
of created resources.
"""

from bizledger.models import Invoice


def _sale_body(product, customer, quantity=2, **extra):
    body = {
        "customer": customer.id,
        "items": [{"product": product.id, "quantity": quantity, "unitPrice": 100}],
    }
    body.update(extra)
    return body


def test_requires_actor_header(client, db_session):
    response = client.get("/api/invoices/sales")
    assert response.status_code == 401
    assert response.get_json()["category"] == "auth"


def test_create_sale_invoice(client, actor_headers, product, customer):
    response = client.post(
        "/api/invoices/sales",
        json=_sale_body(product, customer, paymentAmount=50),
        headers=actor_headers,
    )

    assert response.status_code == 201
    invoice = response.get_json()["invoice"]
    assert invoice["total"] == 200.0
    assert invoice["amountDue"] == 150.0
    assert invoice["paymentStatus"] == "partially_paid"
    assert invoice["createdBy"] == "tester"
    assert invoice["payments"][0]["method"] == "cash"


def test_create_sale_with_new_customer(client, actor_headers, product):
    response = client.post(
        "/api/invoices/sales",
        json={
            "isNewCustomer": True,
            "customerInfo": {"name": "Ngozi Eze", "phone": "08044440000", "address": {"city": "Enugu"}},
            "items": [{"productId": product.id, "quantity": 1, "unitPrice": "100.00"}],
        },
        headers=actor_headers,
    )

    assert response.status_code == 201
    assert response.get_json()["invoice"]["partyName"] == "Ngozi Eze"


def test_sale_oversell_returns_business_rule_error(client, actor_headers, second_product, customer):
    response = client.post(
        "/api/invoices/sales",
        json=_sale_body(second_product, customer, quantity=4),
        headers=actor_headers,
    )

    assert response.status_code == 409
    body = response.get_json()
    assert body["category"] == "business_rule"
    assert body["details"]["shortfalls"][0]["available"] == 3
    assert Invoice.query.count() == 0


def test_sale_rejects_bad_items(client, actor_headers, customer):
    response = client.post(
        "/api/invoices/sales",
        json={"customer": customer.id, "items": [{"product": 1, "quantity": 0, "unitPrice": 10}]},
        headers=actor_headers,
    )
    assert response.status_code == 400
    assert response.get_json()["category"] == "validation"

    response = client.post("/api/invoices/sales", json={"customer": customer.id, "items": []}, headers=actor_headers)
    assert response.status_code == 400


def test_sale_with_unknown_customer(client, actor_headers, product):
    response = client.post(
        "/api/invoices/sales",
        json={"customer": 9999, "items": [{"product": product.id, "quantity": 1, "unitPrice": 100}]},
        headers=actor_headers,
    )
    assert response.status_code == 404
    assert response.get_json()["category"] == "not_found"


def test_overpayment_is_rejected(client, actor_headers, product, customer):
    created = client.post(
        "/api/invoices/sales",
        json=_sale_body(product, customer, paymentAmount=50),
        headers=actor_headers,
    ).get_json()["invoice"]

    response = client.post(
        f"/api/invoices/{created['id']}/payments",
        json={"amount": 200, "method": "cash"},
        headers=actor_headers,
    )
    assert response.status_code == 409
    assert response.get_json()["details"]["amountDue"] == 150.0

    response = client.post(
        f"/api/invoices/{created['id']}/payments",
        json={"amount": 150, "method": "card"},
        headers=actor_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["invoice"]["status"] == "paid"


def test_quick_invoice_without_customer(client, actor_headers, product):
    response = client.post(
        "/api/invoices/quick",
        json={"items": [{"product": product.id, "quantity": 1, "unitPrice": 100}]},
        headers=actor_headers,
    )

    assert response.status_code == 201
    invoice = response.get_json()["invoice"]
    assert invoice["status"] == "paid"
    assert invoice["partyName"] == "Walk-in Customer"
    assert invoice["dueDate"] is None


def test_purchase_with_new_product(client, actor_headers, supplier):
    response = client.post(
        "/api/invoices/purchases",
        json={
            "supplier": supplier.id,
            "items": [{
                "newProductInfo": {
                    "sku": "blt-100",
                    "name": "Fan Belt",
                    "category": "Belts",
                    "costPrice": 30,
                    "sellingPrice": 55,
                },
                "quantity": 4,
                "unitPrice": 30,
            }],
        },
        headers=actor_headers,
    )

    assert response.status_code == 201
    invoice = response.get_json()["invoice"]
    assert invoice["status"] == "received"
    assert invoice["items"][0]["product"]["sku"] == "BLT-100"


def test_update_invoice_rejects_amount_changes(client, actor_headers, product, customer):
    created = client.post(
        "/api/invoices/sales", json=_sale_body(product, customer), headers=actor_headers,
    ).get_json()["invoice"]

    response = client.put(f"/api/invoices/{created['id']}", json={"total": 1}, headers=actor_headers)
    assert response.status_code == 400

    response = client.put(f"/api/invoices/{created['id']}", json={"notes": "Call first"}, headers=actor_headers)
    assert response.status_code == 200
    assert response.get_json()["invoice"]["notes"] == "Call first"


def test_cancel_invoice(client, actor_headers, product, credit_customer):
    created = client.post(
        "/api/invoices/sales", json=_sale_body(product, credit_customer), headers=actor_headers,
    ).get_json()["invoice"]

    response = client.post(
        f"/api/invoices/{created['id']}/cancel", json={"reason": "Duplicate"}, headers=actor_headers,
    )
    assert response.status_code == 200
    assert response.get_json()["invoice"]["status"] == "cancelled"

    again = client.post(f"/api/invoices/{created['id']}/cancel", json={}, headers=actor_headers)
    assert again.status_code == 409


def test_list_sales_paginates(client, actor_headers, product, customer):
    for _ in range(3):
        client.post("/api/invoices/sales", json=_sale_body(product, customer, quantity=1), headers=actor_headers)

    body = client.get("/api/invoices/sales?page=2&limit=2", headers=actor_headers).get_json()
    assert body["count"] == 1
    assert body["pagination"] == {
        "page": 2, "limit": 2, "total": 3, "totalPages": 2, "hasNext": False, "hasPrev": True,
    }


def test_invalid_date_range(client, actor_headers, db_session):
    response = client.get(
        "/api/invoices/sales?startDate=2024-03-10&endDate=2024-03-01", headers=actor_headers,
    )
    assert response.status_code == 400


def test_quick_payment_and_balances(client, actor_headers, db_session):
    response = client.post(
        "/api/payments/quick",
        json={"amount": 75, "method": "cash", "type": "walkin"},
        headers=actor_headers,
    )
    assert response.status_code == 201

    balances = client.get("/api/transactions/account-balances", headers=actor_headers).get_json()
    assert balances["totals"]["totalAssets"] == 75.0


def test_profit_loss_endpoint(client, actor_headers, product, customer):
    client.post("/api/invoices/sales", json=_sale_body(product, customer, paymentAmount=200), headers=actor_headers)

    body = client.get("/api/transactions/profit-loss", headers=actor_headers).get_json()
    assert body["profitLoss"]["salesRevenue"] == 200.0


def test_dashboard_overview_endpoint(client, actor_headers, product, credit_customer):
    client.post("/api/invoices/sales", json=_sale_body(product, credit_customer), headers=actor_headers)

    assert client.get("/api/dashboard/overview").status_code == 401

    body = client.get("/api/dashboard/overview", headers=actor_headers).get_json()
    assert body["overview"]["totalSales"] == 200.0
    assert body["overview"]["totalCustomerDues"] == 200.0
    assert body["recentActivity"]["recentSales"][0]["customer"] == "Bola Stores"
    assert set(body["period"]) == {"startDate", "endDate"}


def test_sales_chart_endpoint(client, actor_headers, product, customer):
    client.post("/api/invoices/sales", json=_sale_body(product, customer, paymentAmount=200), headers=actor_headers)

    body = client.get("/api/dashboard/sales-chart?period=7d&type=sales", headers=actor_headers).get_json()
    assert body["type"] == "sales"
    assert [(row["total"], row["count"]) for row in body["data"]] == [(200.0, 1)]

    bad = client.get("/api/dashboard/sales-chart?period=2w", headers=actor_headers)
    assert bad.status_code == 400
    assert bad.get_json()["category"] == "validation"
