"""
Tests for store settings (public read, admin read/patch with versioning).
"""

from storefront.db.models import Setting
from storefront.services.settings_store import SettingsStore


def patch(client, headers, key, values, version):
    return client.patch(f"/api/admin/settings/{key}", headers=headers, json={"version": version, "values": values})


class TestPublicSettings:
    """GET /api/settings"""

    def test_only_public_fields(self, client):
        settings = client.get("/api/settings").json()["settings"]
        assert set(settings) == {"general", "payments", "shipping"}
        assert set(settings["payments"]) == {"stripe_publishable_key"}
        assert settings["shipping"]["simple_shipping_enabled"] is False
        assert "email" not in settings

    def test_reflects_admin_changes(self, client, admin):
        _, headers = admin
        patch(client, headers, "general", {"store_name": "Corner Shop", "store_address": "1 Back Lane"}, 0)
        general = client.get("/api/settings").json()["settings"]["general"]
        assert general["store_name"] == "Corner Shop"
        assert "store_address" not in general


class TestAdminSettings:
    """GET/PATCH /api/admin/settings/{key}"""

    def test_defaults_before_first_write(self, client, admin):
        _, headers = admin
        body = client.get("/api/admin/settings/shipping", headers=headers).json()
        assert body["version"] == 0
        assert body["values"]["simple_shipping_days"] == 5

    def test_secrets_are_redacted(self, client, admin):
        _, headers = admin
        response = patch(client, headers, "payments",
                         {"stripe_secret_key": "sk_live_abc", "stripe_publishable_key": "pk_live_abc"}, 0)
        values = response.json()["values"]
        assert "stripe_secret_key" not in values
        assert values["is_stripe_secret_key_set"] is True
        assert values["is_stripe_webhook_secret_set"] is False
        assert values["stripe_publishable_key"] == "pk_live_abc"
        fetched = client.get("/api/admin/settings/payments", headers=headers).json()
        assert "sk_live_abc" not in str(fetched)

    def test_version_increments(self, client, admin):
        _, headers = admin
        assert patch(client, headers, "general", {"store_name": "A"}, 0).json()["version"] == 1
        assert patch(client, headers, "general", {"store_phone": "555"}, 1).json()["version"] == 2
        values = client.get("/api/admin/settings/general", headers=headers).json()["values"]
        assert values["store_name"] == "A"
        assert values["store_phone"] == "555"

    def test_stale_version_is_409(self, client, admin):
        _, headers = admin
        patch(client, headers, "general", {"store_name": "First"}, 0)
        response = patch(client, headers, "general", {"store_name": "Second"}, 0)
        assert response.status_code == 409
        assert response.json()["details"] == {"current_version": 1}
        values = client.get("/api/admin/settings/general", headers=headers).json()["values"]
        assert values["store_name"] == "First"

    def test_first_write_needs_version_zero(self, client, admin):
        _, headers = admin
        assert patch(client, headers, "general", {"store_name": "X"}, 3).status_code == 409

    def test_empty_secret_keeps_stored_value(self, app, client, admin):
        _, headers = admin
        patch(client, headers, "payments", {"stripe_secret_key": "sk_live_abc"}, 0)
        patch(client, headers, "payments", {"stripe_secret_key": "", "test_mode": False}, 1)
        with app.state.db.session() as db:
            stored = db.get(Setting, "payments").value
        assert stored["stripe_secret_key"] == "sk_live_abc"
        assert stored["test_mode"] is False

    def test_unknown_key_is_404(self, client, admin):
        _, headers = admin
        assert client.get("/api/admin/settings/nope", headers=headers).status_code == 404
        assert patch(client, headers, "nope", {"a": 1}, 0).status_code == 404

    def test_unknown_field_is_400(self, client, admin):
        _, headers = admin
        response = patch(client, headers, "general", {"store_name": "X", "colour": "red"}, 0)
        assert response.status_code == 400
        assert response.json()["details"]["fields"] == ["colour"]

    def test_admin_only(self, client, customer):
        _, headers = customer
        assert client.get("/api/admin/settings/general", headers=headers).status_code == 403
        assert client.get("/api/admin/settings/general").status_code == 401


class TestSettingsStore:
    def test_get_value_falls_back_on_empty(self, session):
        store = SettingsStore(session)
        assert store.get_value("payments", "stripe_secret_key", "env-key") == "env-key"
        store.patch("payments", {"stripe_secret_key": "db-key"}, 0)
        assert store.get_value("payments", "stripe_secret_key", "env-key") == "db-key"
