"""
Health probes and request middleware — Tests
"""

import json
import logging

from flask import Blueprint, Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from crm.middleware.logging_config import JSONFormatter
from crm.middleware.rate_limiter import init_rate_limits

API = "/api/v1"


class TestHealth:
    def test_ready(self, client):
        res = client.get(f"{API}/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get(f"{API}/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["package_registry"]["status"] == "ok"
        assert body["checks"]["app"]["testing"] is True

    def test_health_ignores_bad_token(self, client):
        res = client.get(f"{API}/health/ready", headers={"Authorization": "Bearer junk"})
        assert res.status_code == 200


class TestRequestMiddleware:
    def test_request_id_generated(self, client, user_headers):
        res = client.get(f"{API}/custom-fields", headers=user_headers)
        assert len(res.headers["X-Request-ID"]) > 0
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0

    def test_request_id_propagated(self, client, user_headers):
        headers = {**user_headers, "X-Request-ID": "trace-123"}
        res = client.get(f"{API}/custom-fields", headers=headers)
        assert res.headers["X-Request-ID"] == "trace-123"

    def test_security_headers(self, client, user_headers):
        res = client.get(f"{API}/custom-fields", headers=user_headers)
        assert res.headers["X-Content-Type-Options"] == "nosniff"
        assert res.headers["X-Frame-Options"] == "DENY"
        assert "default-src 'none'" in res.headers["Content-Security-Policy"]
        assert res.headers["Cache-Control"] == "no-store"

    def test_unknown_route_is_json_404(self, client):
        res = client.get(f"{API}/does-not-exist")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"

    def test_method_not_allowed(self, client, user_headers):
        res = client.patch(f"{API}/chain-rules", json={}, headers=user_headers)
        assert res.status_code == 405

    def test_non_object_body_rejected(self, client, manager_headers):
        res = client.post(f"{API}/custom-fields", json=["x"], headers=manager_headers)
        assert res.status_code == 400


class TestJSONFormatter:
    def test_extra_fields_serialized(self):
        record = logging.LogRecord("crm.test", logging.INFO, __file__, 1, "rule %s", (5,), None)
        record.rule_id = 5
        record.module_name = "leads"
        payload = json.loads(JSONFormatter().format(record))
        assert payload["message"] == "rule 5"
        assert payload["level"] == "INFO"
        assert payload["rule_id"] == 5
        assert payload["module_name"] == "leads"


class TestWriteRateLimit:
    def _limited_app(self):
        app = Flask("ratelimit-test")
        app.config["WRITE_RATE_LIMIT"] = "1/minute"
        bp = Blueprint("custom_fields", __name__)

        @bp.route("/things", methods=["GET", "POST"])
        def things():
            return jsonify({"ok": True})

        app.register_blueprint(bp)
        limiter = Limiter(get_remote_address, app=app, storage_uri="memory://")
        init_rate_limits(app, limiter)
        return app.test_client()

    def test_reads_do_not_spend_write_budget(self):
        client = self._limited_app()
        for _ in range(3):
            assert client.get("/things").status_code == 200
        assert client.post("/things").status_code == 200

    def test_writes_are_limited(self):
        client = self._limited_app()
        assert client.post("/things").status_code == 200
        assert client.post("/things").status_code == 429
        assert client.get("/things").status_code == 200
