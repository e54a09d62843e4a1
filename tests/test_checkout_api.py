"""
Tests for checkout and order endpoints.

Covers:
- POST /api/orders: server-side totals, stock and coupon reservation, rollback
- Notification emails queued after checkout
- GET /api/orders/track, /api/user/orders, /api/orders/{id}, /api/orders/{id}/invoice
- PUT /api/orders/{id}/status
"""

import re

import pytest

from storefront.db.models import Coupon, Order, Product
from storefront.services.checkout import generate_order_number
from storefront.services.coupons import CouponService

from conftest import add_coupon, checkout_body, create_user, reload


def place(client, catalog, items, headers=None, **extra):
    response = client.post(
        "/api/orders",
        json=checkout_body(items, catalog["carrier"], **extra),
        headers=headers or {},
    )
    return response


class TestOrderNumber:
    def test_format(self):
        assert re.fullmatch(r"ORD-\d{13}-[A-Z0-9]{9}", generate_order_number())

    def test_prefix(self):
        assert generate_order_number("SHOP").startswith("SHOP-")

    def test_unique(self):
        assert len({generate_order_number() for _ in range(200)}) == 200


class TestPlaceOrder:
    """POST /api/orders"""

    def test_totals_are_computed_on_the_server(self, client, catalog):
        response = place(client, catalog, [
            {"product_id": catalog["mug"], "quantity": 2, "price": 1.00},
            {"product_id": catalog["shirt"], "quantity": 1},
        ], total_amount=2.00)
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["orderNumber"].startswith("ORD-")
        assert body["totals"] == {
            "subtotal": 55.5,
            "discountAmount": 0.0,
            "shippingAmount": 0.0,
            "taxAmount": 0.0,
            "totalAmount": 55.5,
        }
        assert body["estimatedDelivery"]

    def test_local_shipping_rate_below_threshold(self, client, catalog):
        body = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()
        assert body["totals"]["shippingAmount"] == 5.99
        assert body["totals"]["totalAmount"] == 25.99

    def test_order_rows_are_persisted(self, app, client, catalog):
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 3}]).json()["orderId"]
        with app.state.db.session() as db:
            order = db.get(Order, order_id)
            assert order.status == "pending"
            assert order.payment_status == "pending"
            assert order.customer_email == "jane@example.com"
            assert order.shipping_carrier_id == catalog["carrier"]
            assert order.shipping_address["city"] == "Albany"
            assert order.billing_address == order.shipping_address
            assert [(i.product_name, i.quantity, i.price, i.total) for i in order.items] == [("Mug", 3, 20.0, 60.0)]

    def test_stock_is_decremented(self, app, client, catalog):
        place(client, catalog, [{"product_id": catalog["mug"], "quantity": 4}])
        assert reload(app, Product, catalog["mug"]).stock_quantity == 6

    def test_signed_in_customer_owns_the_order(self, app, client, catalog, customer):
        user_id, headers = customer
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], headers=headers).json()["orderId"]
        assert reload(app, Order, order_id).user_id == user_id

    def test_guest_order_has_no_user(self, app, client, catalog):
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderId"]
        assert reload(app, Order, order_id).user_id is None

    def test_insufficient_stock_is_rejected(self, app, client, catalog):
        response = place(client, catalog, [
            {"product_id": catalog["mug"], "quantity": 1},
            {"product_id": catalog["shirt"], "quantity": 4},
        ])
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"]["available"] == 3
        assert reload(app, Product, catalog["mug"]).stock_quantity == 10
        with app.state.db.session() as db:
            assert db.query(Order).count() == 0

    def test_exact_stock_sells_out(self, app, client, catalog):
        assert place(client, catalog, [{"product_id": catalog["shirt"], "quantity": 3}]).status_code == 201
        assert reload(app, Product, catalog["shirt"]).stock_quantity == 0
        again = place(client, catalog, [{"product_id": catalog["shirt"], "quantity": 1}])
        assert again.status_code == 409

    def test_unknown_product_is_404(self, client, catalog):
        assert place(client, catalog, [{"product_id": 999, "quantity": 1}]).status_code == 404

    def test_inactive_carrier_is_404(self, app, client, catalog):
        from storefront.db.models import Carrier

        with app.state.db.session() as db:
            db.get(Carrier, catalog["carrier"]).is_active = False
            db.commit()
        assert place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).status_code == 404

    @pytest.mark.parametrize("drop,field", [
        ("customer_email", "email"),
        ("customer_name", "name"),
        ("shipping_carrier_id", "carrier"),
    ])
    def test_missing_required_fields(self, client, catalog, drop, field):
        body = checkout_body([{"product_id": catalog["mug"], "quantity": 1}], catalog["carrier"])
        body.pop(drop)
        if drop == "customer_email":
            body["shipping_address"].pop("email")
        if drop == "customer_name":
            body["shipping_address"].pop("first_name")
            body["shipping_address"].pop("last_name")
        response = client.post("/api/orders", json=body)
        assert response.status_code == 400
        assert field in response.json()["details"]["fields"]

    def test_missing_address_fields(self, client, catalog):
        body = checkout_body([{"product_id": catalog["mug"], "quantity": 1}], catalog["carrier"])
        del body["shipping_address"]["zip"]
        body["shipping_address"]["city"] = "  "
        response = client.post("/api/orders", json=body)
        assert response.status_code == 400
        assert set(response.json()["details"]["fields"]) == {"city", "zip"}

    def test_empty_cart(self, client, catalog):
        response = place(client, catalog, [])
        assert response.status_code == 400
        assert "items" in response.json()["details"]["fields"]

    def test_unknown_body_field_is_422(self, client, catalog):
        response = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], surprise=True)
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestCheckoutCoupons:
    def test_coupon_is_applied_and_redeemed(self, app, client, catalog):
        coupon_id = add_coupon(app, code="SAVE20", discount_value=20, maximum_discount_amount=15)
        body = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 5}], coupon_code="save20").json()
        assert body["totals"]["subtotal"] == 100.0
        assert body["totals"]["discountAmount"] == 15.0
        assert body["totals"]["totalAmount"] == 85.0
        assert reload(app, Order, body["orderId"]).coupon_code == "SAVE20"
        assert reload(app, Coupon, coupon_id).usage_count == 1

    def test_single_use_coupon_cannot_be_used_twice(self, app, client, catalog):
        coupon_id = add_coupon(app, code="ONCE", usage_limit=1)
        first = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], coupon_code="ONCE")
        second = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], coupon_code="ONCE")
        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["code"] == "COUPON_REJECTED"
        assert second.json()["details"]["reason"] == "USAGE_LIMIT_REACHED"
        assert reload(app, Coupon, coupon_id).usage_count == 1
        assert reload(app, Product, catalog["mug"]).stock_quantity == 9

    def test_invalid_coupon_rejects_the_order(self, client, catalog):
        response = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], coupon_code="NOPE")
        assert response.status_code == 409
        assert response.json()["details"]["reason"] == "NOT_FOUND"

    def test_failed_redemption_rolls_back_stock(self, app, client, catalog, monkeypatch):
        add_coupon(app, code="RACE", usage_limit=5)
        # Another checkout took the last redemption between validation and commit
        monkeypatch.setattr(CouponService, "redeem", lambda self, coupon_id: False)
        response = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 2}], coupon_code="RACE")
        assert response.status_code == 409
        assert reload(app, Product, catalog["mug"]).stock_quantity == 10
        with app.state.db.session() as db:
            assert db.query(Order).count() == 0


class TestClientTotals:
    def test_mismatch_is_tolerated_by_default(self, client, catalog):
        response = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}],
                         subtotal="19.00", total_amount=24.99)
        assert response.status_code == 201
        assert response.json()["totals"]["totalAmount"] == 25.99

    def test_mismatch_rejected_when_configured(self, config, client, catalog):
        config.reject_price_mismatch = True
        response = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], total_amount=24.99)
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "PRICING_MISMATCH"
        assert body["details"]["total_amount"] == {"client": 24.99, "server": 25.99}

    def test_matching_totals_pass_when_strict(self, config, client, catalog):
        config.reject_price_mismatch = True
        response = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}],
                         subtotal="20.00", shipping_amount=5.99, total_amount="25.99")
        assert response.status_code == 201


class TestCheckoutEmails:
    def test_customer_and_admin_are_notified(self, client, catalog, mailer_transport):
        body = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()
        number = body["orderNumber"]
        assert mailer_transport.subjects() == [f"Order {number} - Pending", f"New Order: {number}"]
        assert mailer_transport.recipients() == ["jane@example.com", "owner@test.local"]

    def test_mail_failure_does_not_fail_checkout(self, app, client, catalog, mailer_transport):
        mailer_transport.fail = True
        response = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}])
        assert response.status_code == 201
        assert reload(app, Product, catalog["mug"]).stock_quantity == 9
        assert mailer_transport.sent == []

    def test_no_smtp_means_no_mail(self, config, client, catalog, mailer_transport):
        config.smtp_host = ""
        assert place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).status_code == 201
        assert mailer_transport.sent == []


class TestOrderLookup:
    def test_track_requires_matching_email(self, client, catalog):
        number = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderNumber"]
        found = client.get("/api/orders/track", params={"orderNumber": number, "email": "JANE@example.com"})
        assert found.status_code == 200
        assert found.json()["order"]["order_number"] == number
        wrong = client.get("/api/orders/track", params={"orderNumber": number, "email": "other@example.com"})
        assert wrong.status_code == 404

    def test_track_requires_both_params(self, client):
        assert client.get("/api/orders/track", params={"orderNumber": "ORD-1"}).status_code == 400

    def test_user_orders_lists_only_own_orders(self, app, client, catalog, customer):
        _, headers = customer
        place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], headers=headers)
        place(client, catalog, [{"product_id": catalog["novel"], "quantity": 1}], headers=headers)
        place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}])
        orders = client.get("/api/user/orders", headers=headers).json()["orders"]
        assert len(orders) == 2
        assert orders[0]["items"][0]["product_name"] == "Novel"

    def test_user_orders_requires_auth(self, client):
        assert client.get("/api/user/orders").status_code == 401

    def test_order_detail_hidden_from_other_customers(self, app, client, catalog, customer):
        _, headers = customer
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], headers=headers).json()["orderId"]
        _, other_token = create_user(app, "other@example.com")
        other = client.get(f"/api/orders/{order_id}", headers={"Authorization": f"Bearer {other_token}"})
        assert other.status_code == 404
        own = client.get(f"/api/orders/{order_id}", headers=headers)
        assert own.status_code == 200
        assert own.json()["order"]["id"] == order_id

    def test_admin_can_view_any_order(self, client, catalog, admin):
        _, headers = admin
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderId"]
        assert client.get(f"/api/orders/{order_id}", headers=headers).status_code == 200


class TestStatusUpdate:
    """PUT /api/orders/{id}/status"""

    def test_requires_admin(self, client, catalog, customer):
        _, headers = customer
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderId"]
        response = client.put(f"/api/orders/{order_id}/status", json={"status": "processing"}, headers=headers)
        assert response.status_code == 403

    def test_shipped_with_tracking_sends_shipping_notification(self, app, client, catalog, admin, mailer_transport):
        _, headers = admin
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderId"]
        mailer_transport.sent.clear()
        response = client.put(f"/api/orders/{order_id}/status", headers=headers,
                              json={"status": "shipped", "trackingNumber": "1Z999"})
        assert response.status_code == 200
        order = response.json()["order"]
        assert order["status"] == "shipped"
        assert order["tracking_number"] == "1Z999"
        assert order["shipped_at"] is not None
        assert len(mailer_transport.sent) == 1
        assert "has shipped" in mailer_transport.subjects()[0]

    def test_other_changes_send_status_update(self, client, catalog, admin, mailer_transport):
        _, headers = admin
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderId"]
        mailer_transport.sent.clear()
        client.put(f"/api/orders/{order_id}/status", headers=headers, json={"status": "processing"})
        assert len(mailer_transport.sent) == 1
        assert mailer_transport.subjects()[0].endswith("- Processing")

    def test_unchanged_status_sends_nothing(self, client, catalog, admin, mailer_transport):
        _, headers = admin
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderId"]
        mailer_transport.sent.clear()
        response = client.put(f"/api/orders/{order_id}/status", headers=headers,
                              json={"status": "pending", "notes": "called customer"})
        assert response.json()["order"]["notes"] == "called customer"
        assert mailer_transport.sent == []

    def test_invalid_status(self, client, catalog, admin):
        _, headers = admin
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderId"]
        response = client.put(f"/api/orders/{order_id}/status", headers=headers, json={"status": "lost"})
        assert response.status_code == 400

    def test_unknown_order(self, client, admin):
        _, headers = admin
        assert client.put("/api/orders/999/status", headers=headers, json={"status": "shipped"}).status_code == 404


class TestInvoice:
    """GET /api/orders/{id}/invoice"""

    def test_owner_gets_the_invoice(self, client, catalog, customer):
        _, headers = customer
        placed = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 2}], headers=headers).json()
        response = client.get(f"/api/orders/{placed['orderId']}/invoice", headers=headers)
        assert response.status_code == 200
        invoice = response.json()["invoice"]
        assert invoice["invoice_number"] == f"INV-{placed['orderNumber']}"
        assert invoice["seller"]["name"] == "Test Store"
        assert invoice["bill_to"]["email"] == "jane@example.com"
        assert invoice["bill_to"]["address"] == invoice["ship_to"]
        assert invoice["items"][0]["product_name"] == "Mug"
        assert invoice["items"][0]["total"] == 40.0
        assert invoice["totals"]["total_amount"] == placed["totals"]["totalAmount"]
        assert invoice["payment_status"] == "pending"

    def test_seller_details_come_from_general_settings(self, client, catalog, admin):
        _, headers = admin
        client.patch("/api/admin/settings/general", headers=headers, json={
            "version": 0, "values": {"store_name": "Corner Shop", "store_address": "1 Back Lane"},
        })
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}]).json()["orderId"]
        seller = client.get(f"/api/orders/{order_id}/invoice", headers=headers).json()["invoice"]["seller"]
        assert seller["name"] == "Corner Shop"
        assert seller["address"] == "1 Back Lane"
        assert seller["email"] == "shop@test.local"

    def test_hidden_from_other_customers(self, app, client, catalog, customer):
        _, headers = customer
        order_id = place(client, catalog, [{"product_id": catalog["mug"], "quantity": 1}], headers=headers).json()["orderId"]
        _, other_token = create_user(app, "other@example.com")
        other = client.get(f"/api/orders/{order_id}/invoice", headers={"Authorization": f"Bearer {other_token}"})
        assert other.status_code == 404
        assert client.get(f"/api/orders/{order_id}/invoice").status_code == 401

    def test_unknown_order(self, client, admin):
        _, headers = admin
        assert client.get("/api/orders/999/invoice", headers=headers).status_code == 404
