"""
Tests for /api/admin endpoints.

Covers:
- Access control (401 anonymous, 403 customer)
- Product, category, coupon and carrier management
- Order listing, dashboard stats
- User management, including the self-demotion guard
"""

import pytest

from storefront.db.models import Carrier, Product, User

from conftest import checkout_body, create_user, reload


class TestAccessControl:
    @pytest.mark.parametrize("method,path", [
        ("get", "/api/admin/stats"),
        ("get", "/api/admin/products"),
        ("get", "/api/admin/orders"),
        ("get", "/api/admin/users"),
        ("get", "/api/admin/settings/general"),
        ("delete", "/api/admin/products/1"),
    ])
    def test_anonymous_is_401(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Authentication required", "code": "UNAUTHORIZED"}

    def test_customer_is_403(self, client, customer):
        _, headers = customer
        response = client.get("/api/admin/products", headers=headers)
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_demoted_admin_loses_access_immediately(self, app, client, admin):
        user_id, headers = admin
        with app.state.db.session() as db:
            db.get(User, user_id).account_type = "customer"
            db.commit()
        assert client.get("/api/admin/stats", headers=headers).status_code == 403


class TestProducts:
    def test_create_product(self, client, admin, catalog):
        _, headers = admin
        response = client.post("/api/admin/products", headers=headers, json={
            "name": "Lamp", "price": "$45.00", "stock_quantity": 4, "category_id": catalog["gear"],
            "tags": ["home"],
        })
        assert response.status_code == 201
        product = response.json()["product"]
        assert product["price"] == 45.0
        assert product["category_name"] == "Gear"
        assert product["in_stock"] is True

    def test_create_requires_name(self, client, admin):
        _, headers = admin
        assert client.post("/api/admin/products", headers=headers, json={"price": 3}).status_code == 400

    @pytest.mark.parametrize("body", [
        {"name": "Bad", "price": -1},
        {"name": "Bad", "price": 1, "stock_quantity": -2},
        {"name": "Bad", "price": 1, "category_id": 999},
    ])
    def test_create_rejects_invalid_values(self, client, admin, body):
        _, headers = admin
        assert client.post("/api/admin/products", headers=headers, json=body).status_code == 400

    def test_update_is_partial(self, client, admin, catalog):
        _, headers = admin
        response = client.put(f"/api/admin/products/{catalog['mug']}", headers=headers,
                              json={"stock_quantity": 42})
        product = response.json()["product"]
        assert product["stock_quantity"] == 42
        assert product["price"] == 20.0
        assert product["name"] == "Mug"

    def test_update_unknown_product(self, client, admin):
        _, headers = admin
        assert client.put("/api/admin/products/999", headers=headers, json={"name": "x"}).status_code == 404

    def test_delete_is_soft(self, app, client, admin, catalog):
        _, headers = admin
        response = client.delete(f"/api/admin/products/{catalog['mug']}", headers=headers)
        assert response.status_code == 200
        assert reload(app, Product, catalog["mug"]).is_active is False
        assert client.get(f"/api/products/{catalog['mug']}").status_code == 404
        listed = client.get("/api/admin/products", headers=headers).json()["products"]
        assert catalog["mug"] in [p["id"] for p in listed]

    def test_deleted_product_cannot_be_ordered(self, client, admin, catalog):
        _, headers = admin
        client.delete(f"/api/admin/products/{catalog['mug']}", headers=headers)
        response = client.post("/api/orders", json=checkout_body(
            [{"product_id": catalog["mug"], "quantity": 1}], catalog["carrier"],
        ))
        assert response.status_code == 404


class TestCategories:
    def test_crud(self, client, admin):
        _, headers = admin
        created = client.post("/api/admin/categories", headers=headers, json={"name": "Toys", "slug": "toys"})
        assert created.status_code == 201
        category_id = created.json()["category"]["id"]

        updated = client.put(f"/api/admin/categories/{category_id}", headers=headers, json={"sort_order": 3})
        assert updated.json()["category"]["sort_order"] == 3

        assert client.delete(f"/api/admin/categories/{category_id}", headers=headers).status_code == 200
        assert "toys" not in [c["slug"] for c in client.get("/api/categories").json()["categories"]]

    def test_duplicate_slug_is_409(self, client, admin, catalog):
        _, headers = admin
        response = client.post("/api/admin/categories", headers=headers, json={"name": "Gear 2", "slug": "gear"})
        assert response.status_code == 409

    def test_category_with_products_cannot_be_deleted(self, client, admin, catalog):
        _, headers = admin
        response = client.delete(f"/api/admin/categories/{catalog['books']}", headers=headers)
        assert response.status_code == 409


class TestCoupons:
    def test_create_normalizes_code(self, client, admin):
        _, headers = admin
        response = client.post("/api/admin/coupons", headers=headers, json={
            "code": " summer ", "discount_type": "percentage", "discount_value": 15,
        })
        assert response.status_code == 201
        coupon = response.json()["coupon"]
        assert coupon["code"] == "SUMMER"
        assert coupon["usage_count"] == 0
        assert coupon["minimum_order_amount"] == 0.0

    @pytest.mark.parametrize("body", [
        {"code": "A", "discount_type": "bogo", "discount_value": 5},
        {"code": "A", "discount_type": "percentage", "discount_value": 0},
        {"code": "A", "discount_type": "percentage", "discount_value": 150},
        {"code": "A", "discount_type": "fixed_amount"},
        {"code": "A", "discount_type": "fixed_amount", "discount_value": 5,
         "valid_from": "2025-06-01T00:00:00", "valid_until": "2025-05-01T00:00:00"},
    ])
    def test_invalid_coupons_rejected(self, client, admin, body):
        _, headers = admin
        assert client.post("/api/admin/coupons", headers=headers, json=body).status_code == 400

    def test_duplicate_code_is_409(self, client, admin):
        _, headers = admin
        body = {"code": "DUP", "discount_type": "fixed_amount", "discount_value": 5}
        client.post("/api/admin/coupons", headers=headers, json=body)
        body["code"] = "dup"
        assert client.post("/api/admin/coupons", headers=headers, json=body).status_code == 409

    def test_timezone_aware_dates_are_stored_as_utc(self, client, admin):
        _, headers = admin
        response = client.post("/api/admin/coupons", headers=headers, json={
            "code": "TZ", "discount_type": "fixed_amount", "discount_value": 5,
            "valid_until": "2025-12-31T23:00:00-05:00",
        })
        assert response.json()["coupon"]["valid_until"] == "2026-01-01T04:00:00"

    def test_update_and_delete(self, client, admin):
        _, headers = admin
        coupon_id = client.post("/api/admin/coupons", headers=headers, json={
            "code": "EDIT", "discount_type": "fixed_amount", "discount_value": 5,
        }).json()["coupon"]["id"]
        updated = client.put(f"/api/admin/coupons/{coupon_id}", headers=headers,
                             json={"is_active": False, "usage_limit": 10})
        assert updated.json()["coupon"]["is_active"] is False
        assert updated.json()["coupon"]["usage_limit"] == 10
        assert [c["code"] for c in client.get("/api/admin/coupons", headers=headers).json()["coupons"]] == ["EDIT"]
        assert client.delete(f"/api/admin/coupons/{coupon_id}", headers=headers).status_code == 200
        assert client.delete(f"/api/admin/coupons/{coupon_id}", headers=headers).status_code == 404


class TestCarriers:
    def test_create_hides_credentials(self, client, admin):
        _, headers = admin
        response = client.post("/api/admin/carriers", headers=headers, json={
            "name": "DHL", "service_name": "Express", "base_delivery_days": 2, "api_key": "k-123",
        })
        assert response.status_code == 201
        carrier = response.json()["carrier"]
        assert "api_key" not in carrier
        assert carrier["has_api_credentials"] is True

    def test_duplicate_name_and_service_is_409(self, client, admin, catalog):
        _, headers = admin
        response = client.post("/api/admin/carriers", headers=headers, json={
            "name": "UPS", "service_name": "Ground", "base_delivery_days": 3,
        })
        assert response.status_code == 409

    def test_negative_days_rejected(self, client, admin):
        _, headers = admin
        response = client.post("/api/admin/carriers", headers=headers, json={
            "name": "X", "service_name": "Y", "base_delivery_days": -1,
        })
        assert response.status_code == 400

    def test_blank_credentials_keep_stored_ones(self, app, client, admin, catalog):
        _, headers = admin
        client.put(f"/api/admin/carriers/{catalog['carrier']}", headers=headers, json={"api_key": "first"})
        client.put(f"/api/admin/carriers/{catalog['carrier']}", headers=headers,
                   json={"api_key": "", "base_delivery_days": 4})
        carrier = reload(app, Carrier, catalog["carrier"])
        assert carrier.api_key == "first"
        assert carrier.base_delivery_days == 4

    def test_unused_carrier_is_deleted(self, app, client, admin, catalog):
        _, headers = admin
        response = client.delete(f"/api/admin/carriers/{catalog['carrier']}", headers=headers)
        assert response.json()["deleted"] is True
        assert reload(app, Carrier, catalog["carrier"]) is None

    def test_carrier_used_by_orders_is_deactivated(self, app, client, admin, catalog):
        _, headers = admin
        client.post("/api/orders", json=checkout_body(
            [{"product_id": catalog["mug"], "quantity": 1}], catalog["carrier"],
        ))
        response = client.delete(f"/api/admin/carriers/{catalog['carrier']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["deleted"] is False
        assert reload(app, Carrier, catalog["carrier"]).is_active is False


class TestOrdersAndStats:
    def test_list_orders_with_filters(self, client, admin, catalog):
        _, headers = admin
        for _ in range(3):
            client.post("/api/orders", json=checkout_body(
                [{"product_id": catalog["novel"], "quantity": 1}], catalog["carrier"],
            ))
        listed = client.get("/api/admin/orders", headers=headers, params={"limit": 2}).json()
        assert len(listed["orders"]) == 2
        assert listed["pagination"] == {"total": 3, "limit": 2, "offset": 0, "hasMore": True}
        number = listed["orders"][0]["order_number"]
        found = client.get("/api/admin/orders", headers=headers, params={"search": number.lower()}).json()
        assert [o["order_number"] for o in found["orders"]] == [number]
        shipped = client.get("/api/admin/orders", headers=headers, params={"status": "shipped"}).json()
        assert shipped["orders"] == []

    def test_invalid_status_filter(self, client, admin):
        _, headers = admin
        assert client.get("/api/admin/orders", headers=headers, params={"status": "lost"}).status_code == 400

    def test_dashboard_stats(self, client, admin, customer, catalog):
        _, headers = admin
        client.post("/api/orders", json=checkout_body(
            [{"product_id": catalog["mug"], "quantity": 1}], catalog["carrier"],
        ))
        stats = client.get("/api/admin/stats", headers=headers).json()
        assert stats["orders"]["total_orders"] == 1
        assert stats["orders"]["by_status"]["pending"] == 1
        assert stats["orders"]["paid_revenue"] == 0.0
        assert stats["users"]["total_users"] == 2
        assert stats["users"]["admin_users"] == 1


class TestUsers:
    def test_list_and_search(self, app, client, admin, customer):
        _, headers = admin
        create_user(app, "zed@example.com", first_name="Zed")
        everyone = client.get("/api/admin/users", headers=headers).json()
        assert everyone["pagination"]["total"] == 3
        assert all("password_hash" not in u for u in everyone["users"])
        zed = client.get("/api/admin/users", headers=headers, params={"search": "ZED"}).json()["users"]
        assert [u["email"] for u in zed] == ["zed@example.com"]
        admins = client.get("/api/admin/users", headers=headers, params={"accountType": "admin"}).json()["users"]
        assert [u["email"] for u in admins] == ["admin@example.com"]

    def test_user_detail(self, client, admin, customer):
        _, headers = admin
        user_id, _ = customer
        detail = client.get(f"/api/admin/users/{user_id}", headers=headers).json()["user"]
        assert detail["email"] == "jane@example.com"
        assert detail["order_stats"] == {"paid_orders": 0, "paid_total": 0.0}
        assert detail["recent_orders"] == []

    def test_user_stats(self, client, admin, customer):
        _, headers = admin
        stats = client.get("/api/admin/users/stats", headers=headers).json()["stats"]
        assert stats["total_users"] == 2
        assert stats["verified_users"] == 2

    def test_promote_and_unlock(self, app, client, admin, customer):
        _, headers = admin
        user_id, _ = customer
        with app.state.db.session() as db:
            user = db.get(User, user_id)
            user.account_locked = True
            user.failed_login_attempts = 5
            db.commit()
        response = client.put(f"/api/admin/users/{user_id}", headers=headers,
                              json={"account_type": "admin", "tier": "gold", "account_locked": False})
        assert response.status_code == 200
        user = response.json()["user"]
        assert user["account_type"] == "admin"
        assert user["tier"] == "gold"
        assert user["account_locked"] is False
        assert user["failed_login_attempts"] == 0

    @pytest.mark.parametrize("changes", [{"is_active": False}, {"account_type": "customer"}])
    def test_admin_cannot_demote_or_disable_self(self, client, admin, changes):
        user_id, headers = admin
        response = client.put(f"/api/admin/users/{user_id}", headers=headers, json=changes)
        assert response.status_code == 400

    @pytest.mark.parametrize("changes", [{"tier": "diamond"}, {"account_type": "root"}])
    def test_invalid_values(self, client, admin, customer, changes):
        _, headers = admin
        user_id, _ = customer
        assert client.put(f"/api/admin/users/{user_id}", headers=headers, json=changes).status_code == 400

    def test_password_cannot_be_set_here(self, client, admin, customer):
        _, headers = admin
        user_id, _ = customer
        response = client.put(f"/api/admin/users/{user_id}", headers=headers, json={"password_hash": "x"})
        assert response.status_code == 422

    def test_unknown_user(self, client, admin):
        _, headers = admin
        assert client.get("/api/admin/users/999", headers=headers).status_code == 404
