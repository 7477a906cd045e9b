"""
Integration package registry — Tests

Credential encryption at rest, status derivation, snapshot immutability and
refresh behaviour, and the admin/enabled endpoints.
"""

from types import MappingProxyType

import pytest

from crm.models import db
from crm.models.package import IntegrationPackage
from crm.services.package_registry import PackageRegistry, get_registry, upsert_package
from crm.utils.crypto import decrypt_secret

API = "/api/v1"


def _whatsapp(**overrides):
    data = {
        "display_name": "WhatsApp",
        "is_enabled": True,
        "config": {"phone_number_id": "1001"},
        "api_config": {"access_token": "secret-token", "retries": 3},
    }
    data.update(overrides)
    return upsert_package("whatsapp", data)


class TestUpsertPackage:
    def test_string_credentials_encrypted_at_rest(self):
        _whatsapp()
        row = IntegrationPackage.query.filter_by(name="whatsapp").one()
        assert row.api_config["access_token"] != "secret-token"
        assert decrypt_secret(row.api_config["access_token"]) == "secret-token"
        assert row.api_config["retries"] == 3

    def test_response_masks_credentials(self):
        result = _whatsapp()
        assert result["api_config"] == {"access_token": "********", "retries": "********"}
        assert result["status"] == "active"

    @pytest.mark.parametrize(
        "overrides, status",
        [
            ({"is_enabled": False}, "inactive"),
            ({"api_config": {}}, "error"),
            ({}, "active"),
        ],
    )
    def test_status(self, overrides, status):
        assert _whatsapp(**overrides)["status"] == status

    def test_omitted_api_config_keeps_credentials(self):
        _whatsapp()
        result = upsert_package("whatsapp", {"is_enabled": True})
        assert result["status"] == "active"
        assert get_registry().get("whatsapp").api_config["access_token"] == "secret-token"

    def test_default_display_name(self):
        assert upsert_package("sms_consent", {})["display_name"] == "Sms Consent"

    @pytest.mark.parametrize(
        "name, data",
        [
            ("WhatsApp", {}),
            ("x", {}),
            ("mailchimp", {"config": ["a"]}),
            ("mailchimp", {"api_config": "token"}),
            ("mailchimp", {"is_enabled": "yes"}),
        ],
    )
    def test_validation(self, name, data):
        from crm.core.exceptions import ValidationError

        with pytest.raises(ValidationError):
            upsert_package(name, data)


class TestRegistrySnapshot:
    def test_snapshot_contains_only_active_packages(self):
        _whatsapp()
        upsert_package("mailchimp", {"is_enabled": False, "api_config": {"api_key": "k"}})
        upsert_package("calendar", {"is_enabled": True})

        snapshot = get_registry().snapshot()
        assert list(snapshot) == ["whatsapp"]
        assert snapshot["whatsapp"].api_config["access_token"] == "secret-token"

    def test_snapshot_is_read_only(self):
        _whatsapp()
        snapshot = get_registry().snapshot()
        assert isinstance(snapshot, MappingProxyType)
        with pytest.raises(TypeError):
            snapshot["evil"] = None
        with pytest.raises(TypeError):
            snapshot["whatsapp"].config["phone_number_id"] = "2"
        with pytest.raises(AttributeError):
            snapshot["whatsapp"].name = "other"

    def test_old_snapshot_unchanged_after_refresh(self):
        _whatsapp()
        before = get_registry().snapshot()
        _whatsapp(is_enabled=False)
        after = get_registry().snapshot()
        assert "whatsapp" in before
        assert "whatsapp" not in after

    def test_direct_db_change_seen_after_refresh(self):
        _whatsapp()
        registry = get_registry()
        assert "whatsapp" in registry.snapshot()

        row = IntegrationPackage.query.filter_by(name="whatsapp").one()
        row.is_enabled = False
        db.session.commit()
        assert "whatsapp" in registry.snapshot()

        registry.refresh()
        assert "whatsapp" not in registry.snapshot()

    def test_stale_snapshot_rebuilt_on_read(self):
        registry = PackageRegistry(refresh_seconds=0)
        assert registry.get("whatsapp") is None
        _whatsapp()
        assert registry.get("whatsapp") is not None

    def test_undecryptable_credential_skipped(self):
        _whatsapp()
        row = IntegrationPackage.query.filter_by(name="whatsapp").one()
        row.api_config = {"access_token": "not-a-fernet-token", "retries": 3}
        db.session.commit()

        pkg = get_registry().refresh()["whatsapp"]
        assert "access_token" not in pkg.api_config
        assert pkg.api_config["retries"] == 3


class TestPackageEndpoints:
    def test_upsert_and_get_as_admin(self, client, admin_headers):
        res = client.put(
            f"{API}/packages/whatsapp",
            json={"is_enabled": True, "api_config": {"access_token": "t"}},
            headers=admin_headers,
        )
        assert res.status_code == 200
        assert res.get_json()["api_config"] == {"access_token": "********"}

        res = client.get(f"{API}/packages/whatsapp", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "active"

    def test_list_packages(self, client, admin_headers):
        _whatsapp()
        upsert_package("mailchimp", {"display_name": "Mailchimp"})
        res = client.get(f"{API}/packages", headers=admin_headers)
        assert [p["name"] for p in res.get_json()] == ["mailchimp", "whatsapp"]

    def test_enabled_packages_for_any_user(self, client, user_headers):
        _whatsapp()
        res = client.get(f"{API}/packages/enabled", headers=user_headers)
        assert res.status_code == 200
        assert res.get_json() == {
            "packages": {
                "whatsapp": {
                    "name": "whatsapp",
                    "display_name": "WhatsApp",
                    "config": {"phone_number_id": "1001"},
                    "has_config": True,
                }
            }
        }

    def test_refresh_endpoint(self, client, admin_headers):
        _whatsapp()
        row = IntegrationPackage.query.filter_by(name="whatsapp").one()
        row.is_enabled = False
        db.session.commit()
        res = client.post(f"{API}/packages/refresh", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json() == {"packages": {}}

    def test_unknown_package(self, client, admin_headers):
        res = client.get(f"{API}/packages/nothing_here", headers=admin_headers)
        assert res.status_code == 404

    def test_admin_only(self, client, manager_headers):
        res = client.put(f"{API}/packages/whatsapp", json={"is_enabled": True}, headers=manager_headers)
        assert res.status_code == 403


class TestKeyRotation:
    def test_rotate_rewrites_under_new_primary_key(self, app, monkeypatch):
        from cryptography.fernet import Fernet

        from crm.services.package_registry import rotate_package_credentials

        _whatsapp()
        old_key = app.config["ENCRYPTION_KEY"]
        new_key = Fernet.generate_key().decode()
        monkeypatch.setitem(app.config, "ENCRYPTION_KEY", f"{new_key},{old_key}")

        assert rotate_package_credentials() == 1

        row = IntegrationPackage.query.filter_by(name="whatsapp").one()
        assert Fernet(new_key.encode()).decrypt(row.api_config["access_token"].encode()) == b"secret-token"
        assert row.api_config["retries"] == 3
        assert get_registry().get("whatsapp").api_config["access_token"] == "secret-token"

    def test_encryption_keys_valid(self):
        from crm.utils.crypto import encryption_keys_valid

        assert encryption_keys_valid("x9VbR0V1cXp8h1Qe6tY6rQ3wJ9m1K2n3p4s5u6v7w8Y=")
        assert not encryption_keys_valid("not-a-key")
        assert not encryption_keys_valid(" , ")
