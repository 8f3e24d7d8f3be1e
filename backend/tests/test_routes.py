# Overview: End-to-end API tests through the Flask test client.

"""
API tests.

Verifies:
- Unauthenticated requests return 401, wrong roles 403
- Domain errors surface with their code and HTTP status
- Checkout, credit and restock flows work end to end over HTTP
"""

import pytest

from commerce.extensions import db
from commerce.models import Product


PASSWORD = "Password123"


def _qty(product_id):
    return db.session.query(Product.available_quantity).filter(Product.id == product_id).scalar()


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:
    def test_login_me_logout(self, client, customer):
        resp = client.post("/api/auth/login", json={"username": "customer", "password": PASSWORD})
        assert resp.status_code == 200
        token = resp.get_json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.get_json()["user"]["username"] == "customer"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_login_by_email(self, client, customer):
        resp = client.post("/api/auth/login", json={"email": "customer@example.com", "password": PASSWORD})
        assert resp.status_code == 200

    def test_bad_password(self, client, customer):
        resp = client.post("/api/auth/login", json={"username": "customer", "password": "wrong1234"})
        assert resp.status_code == 401

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"username": "x"}).status_code == 400

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/orders/"),
            ("GET", "/api/credits/"),
            ("POST", "/api/credits/"),
            ("GET", "/api/restock/"),
            ("GET", "/api/reports/dashboard"),
            ("GET", "/api/products/low-stock"),
            ("GET", "/api/users/"),
            ("GET", "/api/credits/payments"),
            ("POST", "/api/categories/"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# SYSTEM / CATALOG
# =============================================================================


class TestSystemAndProducts:
    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"

    def test_public_catalog(self, client, product):
        resp = client.get("/api/products/")
        assert resp.status_code == 200
        assert resp.get_json()["total"] == 1

        detail = client.get(f"/api/products/{product.id}")
        assert detail.status_code == 200
        assert detail.get_json()["product"]["name"] == "Rice 5kg"

    def test_unknown_product_is_404(self, client, db_session):
        resp = client.get("/api/products/999")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"

    def test_outlet_creates_product(self, client, outlet, auth_headers):
        resp = client.post(
            "/api/products/",
            json={"name": "Garri", "price_cents": 800, "available_quantity": 4},
            headers=auth_headers(outlet),
        )
        assert resp.status_code == 201
        assert resp.get_json()["product"]["outlet_id"] == outlet.id

    def test_customer_cannot_create_product(self, client, customer, auth_headers):
        resp = client.post(
            "/api/products/",
            json={"name": "Garri", "price_cents": 800},
            headers=auth_headers(customer),
        )
        assert resp.status_code == 403

    def test_stock_is_not_editable(self, client, outlet, product, auth_headers):
        resp = client.patch(
            f"/api/products/{product.id}",
            json={"available_quantity": 500},
            headers=auth_headers(outlet),
        )
        assert resp.status_code == 400
        assert _qty(product.id) == 10


# =============================================================================
# ORDERS
# =============================================================================


class TestOrderFlow:
    def test_checkout_and_fulfillment(self, client, customer, outlet, product, shipping, auth_headers):
        resp = client.post(
            "/api/orders/",
            json={
                "items": [{"product_id": product.id, "quantity": 3}],
                "shipping": shipping,
                "payment_method": "cash",
                "expected_total_cents": 3000,
            },
            headers=auth_headers(customer),
        )
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["total_price_cents"] == 3000
        assert order["user_id"] == customer.id
        assert _qty(product.id) == 7

        outlet_headers = auth_headers(outlet)
        listed = client.get("/api/orders/", headers=outlet_headers).get_json()
        assert listed["total"] == 1

        resp = client.patch(
            f"/api/orders/{order['id']}/status",
            json={"status": "processing"},
            headers=outlet_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "processing"

        resp = client.patch(
            f"/api/orders/{order['id']}/status",
            json={"status": "delivered"},
            headers=outlet_headers,
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "invalid_transition"

    def test_insufficient_stock_is_409(self, client, customer, product, shipping, auth_headers):
        resp = client.post(
            "/api/orders/",
            json={
                "items": [{"product_id": product.id, "quantity": 11}],
                "shipping": shipping,
                "payment_method": "cash",
            },
            headers=auth_headers(customer),
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "insufficient_stock"
        assert _qty(product.id) == 10

    def test_guest_checkout_and_callback(self, client, product, shipping):
        resp = client.post(
            "/api/orders/",
            json={
                "items": [{"product_id": product.id, "quantity": 1}],
                "shipping": shipping,
                "payment_method": "cash",
                "payment_transaction_id": "GUEST-1",
                "buyer": {"name": "Guest", "email": "guest@example.com", "phone_number": "0811111111"},
            },
        )
        assert resp.status_code == 201

        resp = client.post("/api/orders/payment-callback/GUEST-1", json={"status": "success"})
        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "processing"

    def test_unverified_paystack_callback_is_402(self, client, product, shipping, verifier):
        client.post(
            "/api/orders/",
            json={
                "items": [{"product_id": product.id, "quantity": 1}],
                "shipping": shipping,
                "payment_method": "paystack",
                "payment_transaction_id": "PS-404",
                "buyer": {"name": "Guest", "email": "guest@example.com", "phone_number": "0811111111"},
            },
        )
        resp = client.post("/api/orders/payment-callback/PS-404", json={"status": "success"})
        assert resp.status_code == 402
        assert resp.get_json()["code"] == "payment_verification_failed"

    def test_order_visibility(self, client, customer, admin, other_outlet, product, shipping, auth_headers):
        resp = client.post(
            "/api/orders/",
            json={
                "items": [{"product_id": product.id, "quantity": 1}],
                "shipping": shipping,
                "payment_method": "cash",
            },
            headers=auth_headers(customer),
        )
        order_id = resp.get_json()["order"]["id"]

        assert client.get(f"/api/orders/{order_id}", headers=auth_headers(customer)).status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=auth_headers(admin)).status_code == 200
        assert client.get(f"/api/orders/{order_id}", headers=auth_headers(other_outlet)).status_code == 403
        assert client.get("/api/orders/424242", headers=auth_headers(admin)).status_code == 404


# =============================================================================
# CREDIT
# =============================================================================


class TestCreditFlow:
    def _order(self, client, customer, product, shipping, auth_headers, quantity=5):
        resp = client.post(
            "/api/orders/",
            json={
                "items": [{"product_id": product.id, "quantity": quantity}],
                "shipping": shipping,
                "payment_method": "cash",
            },
            headers=auth_headers(customer),
        )
        return resp.get_json()["order"]["id"]

    def test_open_pay_and_read(self, client, customer, outlet, product, shipping, auth_headers, future_due):
        order_id = self._order(client, customer, product, shipping, auth_headers)
        headers = auth_headers(customer)

        resp = client.post(
            "/api/credits/",
            json={"order_id": order_id, "amount_cents": 5000, "due_at": future_due.isoformat() + "Z"},
            headers=headers,
        )
        assert resp.status_code == 201
        credit = resp.get_json()["credit"]
        assert credit["status"] == "pending"
        assert credit["outlet_id"] == outlet.id

        resp = client.post(
            f"/api/credits/{credit['id']}/payments",
            json={"amount_cents": 6000, "payment_method": "cash"},
            headers=headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "amount_exceeds_remaining"

        resp = client.post(
            f"/api/credits/{credit['id']}/payments",
            json={"amount_cents": 5000, "payment_method": "cash"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["credit"]["status"] == "paid"

        overview = client.get(f"/api/credits/users/{customer.id}", headers=headers).get_json()
        assert overview["credit_used_cents"] == 0

        listed = client.get("/api/credits/?status=paid", headers=auth_headers(outlet)).get_json()
        assert listed["total"] == 1

    def test_outlet_payment_records(self, client, customer, outlet, other_outlet, product, shipping, auth_headers, future_due):
        order_id = self._order(client, customer, product, shipping, auth_headers)
        headers = auth_headers(customer)
        credit = client.post(
            "/api/credits/",
            json={"order_id": order_id, "amount_cents": 4000, "due_at": future_due.isoformat() + "Z"},
            headers=headers,
        ).get_json()["credit"]
        client.post(
            f"/api/credits/{credit['id']}/payments",
            json={"amount_cents": 1500, "payment_method": "cash", "reference": "TILL-9"},
            headers=headers,
        )

        body = client.get("/api/credits/payments", headers=auth_headers(outlet)).get_json()
        assert body["total"] == 1
        assert body["payments"][0]["reference"] == "TILL-9"
        assert body["payments"][0]["order_id"] == order_id

        other = client.get("/api/credits/payments", headers=auth_headers(other_outlet)).get_json()
        assert other["total"] == 0

    def test_limit_exceeded(self, client, customer, make_product, shipping, auth_headers, future_due):
        bulk = make_product(name="Bulk Rice", available_quantity=50)
        first = self._order(client, customer, bulk, shipping, auth_headers, quantity=10)
        second = self._order(client, customer, bulk, shipping, auth_headers, quantity=1)
        headers = auth_headers(customer)

        resp = client.post(
            "/api/credits/",
            json={"order_id": first, "amount_cents": 10000, "due_at": future_due.isoformat()},
            headers=headers,
        )
        assert resp.status_code == 201

        resp = client.post(
            "/api/credits/",
            json={"order_id": second, "amount_cents": 1, "due_at": future_due.isoformat()},
            headers=headers,
        )
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["code"] == "credit_limit_exceeded"
        assert body["details"]["credit_limit_cents"] == 10000

    def test_ownership_mismatch_is_403(self, client, customer, admin, product, shipping, auth_headers, future_due):
        order_id = self._order(client, customer, product, shipping, auth_headers)
        resp = client.post(
            "/api/credits/",
            json={"user_id": admin.id, "order_id": order_id, "amount_cents": 100, "due_at": future_due.isoformat()},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "order_ownership_mismatch"

    def test_overdue_summary_for_outlet(self, client, customer, outlet, admin, product, shipping, auth_headers, past_due):
        order_id = self._order(client, customer, product, shipping, auth_headers)
        client.post(
            "/api/credits/",
            json={"order_id": order_id, "amount_cents": 3000, "due_at": past_due.isoformat()},
            headers=auth_headers(customer),
        )

        summary = client.get("/api/credits/summary", headers=auth_headers(outlet)).get_json()["summary"]
        assert summary["overdue_amount_cents"] == 3000
        assert summary["by_status"]["overdue"] == 1

        overdue = client.get("/api/credits/?status=overdue", headers=auth_headers(admin)).get_json()
        assert overdue["total"] == 1
        assert overdue["credits"][0]["stored_status"] == "pending"

    def test_limit_change_requires_admin(self, client, customer, admin, auth_headers):
        resp = client.put(
            f"/api/credits/users/{customer.id}/limit",
            json={"credit_limit_cents": 50},
            headers=auth_headers(customer),
        )
        assert resp.status_code == 403

        resp = client.put(
            f"/api/credits/users/{customer.id}/limit",
            json={"credit_limit_cents": 50},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.get_json()["credit_limit_cents"] == 50


# =============================================================================
# RESTOCK / REPORTS
# =============================================================================


class TestRestockAndReports:
    def test_restock_flow(self, client, outlet, admin, product, auth_headers):
        resp = client.post(
            "/api/restock/",
            json={"product_id": product.id, "requested_quantity": 20},
            headers=auth_headers(outlet),
        )
        assert resp.status_code == 201
        request_id = resp.get_json()["request"]["id"]

        denied = client.post(
            f"/api/restock/{request_id}/process",
            json={"status": "approved"},
            headers=auth_headers(outlet),
        )
        assert denied.status_code == 403

        admin_headers = auth_headers(admin)
        resp = client.post(
            f"/api/restock/{request_id}/process",
            json={"status": "approved", "admin_note": "go"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert _qty(product.id) == 30

        again = client.post(
            f"/api/restock/{request_id}/process",
            json={"status": "approved"},
            headers=admin_headers,
        )
        assert again.status_code == 409
        assert again.get_json()["code"] == "already_processed"
        assert _qty(product.id) == 30

    def test_invalid_decision_is_400(self, client, outlet, admin, product, auth_headers):
        resp = client.post(
            "/api/restock/",
            json={"product_id": product.id, "requested_quantity": 2},
            headers=auth_headers(outlet),
        )
        request_id = resp.get_json()["request"]["id"]
        resp = client.post(
            f"/api/restock/{request_id}/process",
            json={"status": "later"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_decision"

    def test_reports_scoped_to_outlet(self, client, customer, outlet, product, shipping, auth_headers):
        client.post(
            "/api/orders/",
            json={
                "items": [{"product_id": product.id, "quantity": 2}],
                "shipping": shipping,
                "payment_method": "cash",
            },
            headers=auth_headers(customer),
        )
        resp = client.get("/api/reports/sales?group_by=month", headers=auth_headers(outlet))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["summary"]["revenue_cents"] == 2000
        assert body["summary"]["outlet_id"] == outlet.id
        assert len(body["periods"]["rows"]) == 1

        assert client.get("/api/reports/sales", headers=auth_headers(customer)).status_code == 403
        assert client.get("/api/reports/dashboard", headers=auth_headers(outlet)).status_code == 200


# =============================================================================
# ACCOUNTS / CATEGORIES
# =============================================================================


class TestAccounts:
    def test_register_then_checkout(self, client, product, shipping):
        resp = client.post(
            "/api/auth/register",
            json={"username": "newbie", "password": PASSWORD, "email": "newbie@example.com", "name": "New Bie"},
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["user"]["role"] == "customer"
        headers = {"Authorization": f"Bearer {body['token']}"}

        resp = client.post(
            "/api/orders/",
            json={
                "items": [{"product_id": product.id, "quantity": 1}],
                "shipping": shipping,
                "payment_method": "cash",
            },
            headers=headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["order"]["user_id"] == body["user"]["id"]

    def test_register_rejects_admin_and_duplicates(self, client, customer):
        resp = client.post("/api/auth/register", json={"username": "boss", "password": PASSWORD, "role": "admin"})
        assert resp.status_code == 400
        resp = client.post("/api/auth/register", json={"username": "customer", "password": PASSWORD})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_admin_lists_and_updates_clients(self, client, admin, outlet, customer, auth_headers):
        headers = auth_headers(admin)

        body = client.get("/api/users/?role=customer", headers=headers).get_json()
        assert body["total"] == 1
        assert body["users"][0]["id"] == customer.id

        resp = client.patch(f"/api/users/{customer.id}", json={"name": "Renamed"}, headers=headers)
        assert resp.status_code == 200
        assert resp.get_json()["user"]["name"] == "Renamed"

        assert client.get("/api/users/", headers=auth_headers(customer)).status_code == 403

    def test_profile_is_private(self, client, customer, outlet, auth_headers):
        assert client.get(f"/api/users/{customer.id}", headers=auth_headers(customer)).status_code == 200
        assert client.get(f"/api/users/{customer.id}", headers=auth_headers(outlet)).status_code == 403
        resp = client.patch(f"/api/users/{customer.id}", json={"role": "admin"}, headers=auth_headers(customer))
        assert resp.status_code == 400

    def test_deactivation_logs_user_out(self, client, admin, customer, auth_headers):
        customer_headers = auth_headers(customer)
        assert client.get("/api/auth/me", headers=customer_headers).status_code == 200

        resp = client.post(f"/api/users/{customer.id}/deactivate", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.get_json()["sessions_revoked"] == 1

        assert client.get("/api/auth/me", headers=customer_headers).status_code == 401
        resp = client.post("/api/auth/login", json={"username": "customer", "password": PASSWORD})
        assert resp.status_code == 401

        resp = client.post(f"/api/users/{customer.id}/reactivate", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.get_json()["user"]["is_active"] is True


class TestCategories:
    def test_category_crud_and_product_link(self, client, admin, outlet, auth_headers):
        admin_headers = auth_headers(admin)
        resp = client.post("/api/categories/", json={"name": "Grains"}, headers=admin_headers)
        assert resp.status_code == 201
        grains = resp.get_json()["category"]

        resp = client.post(
            "/api/products/",
            json={"name": "Ofada Rice", "price_cents": 1500, "available_quantity": 3, "category_id": grains["id"]},
            headers=auth_headers(outlet),
        )
        assert resp.status_code == 201
        product_id = resp.get_json()["product"]["id"]

        listed = client.get(f"/api/products/?category_id={grains['id']}").get_json()
        assert [p["id"] for p in listed["products"]] == [product_id]

        public = client.get("/api/categories/").get_json()
        assert public["count"] == 1

        resp = client.patch(f"/api/categories/{grains['id']}", json={"featured": True}, headers=admin_headers)
        assert resp.get_json()["category"]["featured"] is True

        resp = client.delete(f"/api/categories/{grains['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["products_detached"] == 1
        assert client.get(f"/api/categories/{grains['id']}").status_code == 404
        assert client.get(f"/api/products/{product_id}").get_json()["product"]["category_id"] is None

    def test_outlets_cannot_manage_categories(self, client, outlet, auth_headers):
        resp = client.post("/api/categories/", json={"name": "Oils"}, headers=auth_headers(outlet))
        assert resp.status_code == 403
