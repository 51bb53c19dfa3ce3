"""
Tests for runtime configuration and app wiring.
"""

import pytest
from fastapi.testclient import TestClient
from omegaconf.errors import OmegaConfBaseException

from campus_print_backend.configuration import load_settings
from campus_print_backend.main import create_app

from conftest import WEBHOOK_KEY


class TestLoadSettings:
    def test_environment_is_interpolated(self):
        settings = load_settings()

        assert settings.webhook.api_key == WEBHOOK_KEY
        assert settings.conversion.remote.secret == ""
        assert settings.billing.a3_multiplier == 2.0

    def test_overrides_are_merged(self, tmp_path):
        settings = load_settings({"billing": {"a3_multiplier": 3.0}, "database": {"path": str(tmp_path / "x.db")}})

        assert settings.billing.a3_multiplier == 3.0
        assert settings.database.path == str(tmp_path / "x.db")
        assert settings.payments.memo_prefix == "SSPS"

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(OmegaConfBaseException):
            load_settings({"billing": {"a5_multiplier": 0.5}})


class TestCreateApp:
    def test_internal_webhook_error_without_ack(self, tmp_path, monkeypatch):
        settings = load_settings(
            {
                "database": {"path": str(tmp_path / "app.db")},
                "storage": {"temp_root": str(tmp_path / "tmp")},
                "webhook": {"ack_on_internal_error": False},
            }
        )
        app = create_app(settings)

        def explode(event):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(app.state.services.reconciler, "reconcile", explode)
        client = TestClient(app)

        response = client.post(
            "/payments/sepay-webhook",
            json={"transferType": "in", "transferAmount": 10000, "content": "SSPS x"},
            headers={"Authorization": f"Apikey {WEBHOOK_KEY}"},
        )
        assert response.status_code == 500

    def test_apps_do_not_share_stores(self, tmp_path):
        first = create_app(load_settings({"database": {"path": str(tmp_path / "a.db")}}))
        second = create_app(load_settings({"database": {"path": str(tmp_path / "b.db")}}))

        TestClient(first).post("/students/s1/balance", json={"default_pages": 5})

        assert TestClient(second).get("/students/s1/balance").status_code == 404
