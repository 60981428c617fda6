import hashlib
import hmac
import json
import uuid

import pytest

from ispsync.models.api_access import ApiKey
from ispsync.models.network import NetworkIntegration, NetworkSyncLog
from ispsync.services import auth_dependencies, payments


# =============================================================================
# Operator auth
# =============================================================================


class TestOperatorAuth:
    def test_missing_token(self, client):
        response = client.get("/api/v1/network/integrations")
        assert response.status_code == 401
        body = response.json()
        assert body["code"] == "http_401"
        assert body["message"] == "Unauthorized"
        assert body["request_id"]

    def test_non_operator_role(self, client, tenant, operator_headers):
        response = client.get(
            "/api/v1/network/integrations", headers=operator_headers(tenant, roles=["viewer"])
        )
        assert response.status_code == 403

    def test_garbage_token(self, client):
        response = client.get(
            "/api/v1/network/integrations", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    def test_other_tenant_is_forbidden(self, client, tenant, other_tenant, operator_headers):
        response = client.get(
            "/api/v1/network/integrations",
            params={"tenant_id": str(other_tenant.id)},
            headers=operator_headers(tenant),
        )
        assert response.status_code == 403

    def test_super_admin_picks_tenant(
        self, client, other_tenant, make_integration, operator_headers
    ):
        make_integration(other_tenant)
        response = client.get(
            "/api/v1/network/integrations",
            params={"tenant_id": str(other_tenant.id)},
            headers=operator_headers(None, roles=["super_admin"]),
        )
        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_super_admin_without_tenant(self, client, operator_headers):
        response = client.get(
            "/api/v1/network/integrations",
            headers=operator_headers(None, roles=["super_admin"]),
        )
        assert response.status_code == 400


# =============================================================================
# Integrations
# =============================================================================


class TestIntegrationsApi:
    def test_create_hides_secrets(self, client, db_session, tenant, operator_headers):
        response = client.post(
            "/api/v1/network/integrations",
            headers=operator_headers(tenant),
            json={
                "name": "Hotspot RouterOS",
                "provider_type": "mikrotik",
                "host": "10.0.0.1",
                "port": 8728,
                "username": "api",
                "password": "s3cret-pass",
                "sync_mode": "event_driven",
                "is_enabled": True,
            },
        )

        assert response.status_code == 201
        assert "s3cret-pass" not in response.text
        body = response.json()
        assert body["has_credentials"] is True
        stored = db_session.get(NetworkIntegration, uuid.UUID(body["id"]))
        assert stored.credentials_encrypted != "s3cret-pass"

    def test_second_enabled_integration_conflicts(
        self, client, tenant, integration, operator_headers
    ):
        response = client.post(
            "/api/v1/network/integrations",
            headers=operator_headers(tenant),
            json={"name": "Backup", "provider_type": "custom", "is_enabled": True},
        )
        assert response.status_code == 409

    def test_update_toggle_delete(self, client, tenant, integration, operator_headers):
        headers = operator_headers(tenant)
        base = f"/api/v1/network/integrations/{integration.id}"

        renamed = client.patch(base, headers=headers, json={"name": "Edge router"})
        assert renamed.json()["name"] == "Edge router"

        toggled = client.post(f"{base}/toggle", headers=headers, json={"enabled": False})
        assert toggled.json()["is_enabled"] is False

        deleted = client.delete(base, headers=headers)
        assert deleted.json() == {"id": str(integration.id), "result": "deleted"}
        assert client.get(base, headers=headers).status_code == 404

    def test_foreign_integration_is_404(
        self, client, tenant, other_tenant, make_integration, operator_headers
    ):
        foreign = make_integration(other_tenant)
        response = client.get(
            f"/api/v1/network/integrations/{foreign.id}", headers=operator_headers(tenant)
        )
        assert response.status_code == 404


# =============================================================================
# Manual sync, tasks and logs
# =============================================================================


class TestManualSyncApi:
    def test_sync_customer(
        self, client, db_session, tenant, customer, integration, fake_provider, operator_headers
    ):
        response = client.post(
            "/api/v1/network/sync",
            headers=operator_headers(tenant, user_id="noc-7"),
            json={
                "action": "disable",
                "integration_id": str(integration.id),
                "customer_id": str(customer.id),
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["queued"] is False
        log = db_session.get(NetworkSyncLog, uuid.UUID(body["log_id"]))
        assert log.triggered_by_user == "noc-7"

    def test_failed_sync_is_a_bad_request(
        self, client, tenant, customer, integration, fake_provider, operator_headers
    ):
        fake_provider.fail("router down")
        response = client.post(
            "/api/v1/network/sync",
            headers=operator_headers(tenant),
            json={
                "action": "disable",
                "integration_id": str(integration.id),
                "customer_id": str(customer.id),
            },
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["queued"] is False
        assert body["message"] == "router down"
        assert body["task_id"] and body["log_id"]

    def test_unknown_action(self, client, tenant, customer, integration, operator_headers):
        response = client.post(
            "/api/v1/network/sync",
            headers=operator_headers(tenant),
            json={
                "action": "reboot",
                "integration_id": str(integration.id),
                "customer_id": str(customer.id),
            },
        )
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_tasks_and_logs_listing(
        self, client, tenant, customer, integration, fake_provider, operator_headers
    ):
        headers = operator_headers(tenant)
        fake_provider.fail("no route to host")
        sync = client.post(
            "/api/v1/network/sync",
            headers=headers,
            json={
                "action": "enable",
                "integration_id": str(integration.id),
                "customer_id": str(customer.id),
            },
        ).json()

        tasks = client.get(
            "/api/v1/network/tasks", params={"status": "retrying"}, headers=headers
        ).json()
        logs = client.get(
            "/api/v1/network/logs", params={"customer_id": str(customer.id)}, headers=headers
        ).json()
        task = client.get(f"/api/v1/network/tasks/{sync['task_id']}", headers=headers).json()
        log = client.get(f"/api/v1/network/logs/{sync['log_id']}", headers=headers).json()

        assert [item["id"] for item in tasks["items"]] == [sync["task_id"]]
        assert logs["count"] == 1
        assert task["retry_count"] == 1
        assert log["error_message"] == "no route to host"

    def test_malformed_filter_is_400(self, client, tenant, operator_headers):
        response = client.get(
            "/api/v1/network/logs",
            params={"customer_id": "nope"},
            headers=operator_headers(tenant),
        )
        assert response.status_code == 400


# =============================================================================
# API keys
# =============================================================================


class TestApiKeysApi:
    def test_create_list_revoke(self, client, db_session, tenant, operator_headers):
        headers = operator_headers(tenant)

        created = client.post("/api/v1/api-keys", headers=headers, json={"name": "ERP"})
        assert created.status_code == 201
        body = created.json()
        assert body["key"].startswith("isp_")
        stored = db_session.get(ApiKey, uuid.UUID(body["id"]))
        assert stored.key_hash == hashlib.sha256(body["key"].encode()).hexdigest()

        listed = client.get("/api/v1/api-keys", headers=headers).json()
        assert [item["id"] for item in listed["items"]] == [body["id"]]
        assert "key" not in listed["items"][0]

        revoked = client.post(f"/api/v1/api-keys/{body['id']}/revoke", headers=headers)
        assert revoked.status_code == 200
        assert revoked.json()["is_active"] is False
        again = client.post(f"/api/v1/api-keys/{body['id']}/revoke", headers=headers)
        assert again.status_code == 409

        assert client.get("/v1/status", headers={"x-api-key": body["key"]}).status_code == 403

    def test_operator_role_cannot_manage_keys(self, client, tenant, operator_headers):
        response = client.post(
            "/api/v1/api-keys",
            headers=operator_headers(tenant, roles=["operator"]),
            json={"name": "ERP"},
        )
        assert response.status_code == 403


# =============================================================================
# Auto-suspend trigger
# =============================================================================


class TestAutoSuspendTrigger:
    @pytest.fixture()
    def cron_secret(self, monkeypatch):
        monkeypatch.setattr(
            auth_dependencies,
            "settings",
            auth_dependencies.settings.model_copy(update={"cron_secret": "cron-123"}),
        )
        return "cron-123"

    def test_cron_secret(self, client, cron_secret, tenant):
        response = client.post("/api/v1/auto-suspend/run", headers={"x-cron-secret": cron_secret})
        assert response.status_code == 200
        assert response.json()["tenants_processed"] == 1

    def test_wrong_secret(self, client, cron_secret):
        response = client.post("/api/v1/auto-suspend/run", headers={"x-cron-secret": "guess"})
        assert response.status_code == 401

    def test_super_admin(self, client, operator_headers):
        response = client.post(
            "/api/v1/auto-suspend/run", headers=operator_headers(None, roles=["super_admin"])
        )
        assert response.status_code == 200

    def test_tenant_admin_cannot_trigger(self, client, tenant, operator_headers):
        response = client.post("/api/v1/auto-suspend/run", headers=operator_headers(tenant))
        assert response.status_code == 403


# =============================================================================
# Payment webhook
# =============================================================================


class TestPaymentWebhookApi:
    def _body(self, customer, bill):
        return json.dumps(
            {
                "transaction_id": "TXN-HTTP-1",
                "status": "COMPLETED",
                "amount": "800.00",
                "metadata": {
                    "bill_id": str(bill.id),
                    "customer_id": str(customer.id),
                    "tenant_id": str(customer.tenant_id),
                },
            }
        ).encode()

    def test_applies_payment(self, client, customer, make_bill):
        body = self._body(customer, make_bill(customer))
        response = client.post(
            "/webhooks/payments", content=body, headers={"content-type": "application/json"}
        )
        assert response.status_code == 200
        assert response.json()["processed"] is True

        replay = client.post(
            "/webhooks/payments", content=body, headers={"content-type": "application/json"}
        )
        assert replay.json()["duplicate"] is True

    def test_signed_delivery(self, client, monkeypatch, customer, make_bill):
        monkeypatch.setattr(
            payments,
            "settings",
            payments.settings.model_copy(update={"payment_webhook_secret": "whsec"}),
        )
        body = self._body(customer, make_bill(customer))
        signature = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()

        bad = client.post("/webhooks/payments", content=body, headers={"x-webhook-signature": "00"})
        good = client.post(
            "/webhooks/payments", content=body, headers={"x-webhook-signature": signature}
        )

        assert bad.status_code == 401
        assert good.status_code == 200

    def test_malformed_payload(self, client):
        response = client.post(
            "/webhooks/payments",
            content=b'{"status": "COMPLETED"}',
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"


# =============================================================================
# Service endpoints
# =============================================================================


class TestServiceEndpoints:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_metrics(self, client, make_api_key, tenant):
        _, raw_key = make_api_key(tenant)
        client.get("/v1/status", headers={"x-api-key": raw_key})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "api_gateway_requests_total" in response.text
        assert response.headers["x-request-id"]
