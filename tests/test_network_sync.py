"""Tests for the sync executor and its manual/immediate entry points."""

import json
import time
from datetime import timedelta

import pytest
from fastapi import HTTPException

from ispsync.models.network import (
    NetworkSyncLog,
    NetworkSyncTask,
    SyncAction,
    SyncLogStatus,
    SyncTaskStatus,
)
from ispsync.services import network_sync, sync_queue
from ispsync.services.common import as_utc, utcnow
from ispsync.services.network_providers import ProviderResult


def _claimed(db_session, customer, integration, action=SyncAction.disable, **kwargs):
    task = sync_queue.enqueue(
        db_session, customer.tenant_id, integration.id, customer.id, action, **kwargs
    )
    assert sync_queue.claim(db_session, task)
    return task


def _make_due(db_session, task):
    task.next_attempt_at = utcnow() - timedelta(seconds=1)
    db_session.commit()


def _logs(db_session, task):
    return (
        db_session.query(NetworkSyncLog)
        .filter(NetworkSyncLog.task_id == task.id)
        .order_by(NetworkSyncLog.started_at.asc())
        .all()
    )


class TestExecute:
    def test_success_records_one_log(self, db_session, customer, integration, fake_provider):
        task = _claimed(db_session, customer, integration)

        log = network_sync.execute(db_session, task)

        assert log.status == SyncLogStatus.success
        assert task.status == SyncTaskStatus.success
        assert task.completed_at is not None
        assert fake_provider.calls == [("disable", customer.network_username)]
        assert len(_logs(db_session, task)) == 1
        db_session.refresh(customer)
        db_session.refresh(integration)
        assert customer.last_network_sync_status == "success"
        assert integration.last_sync_status == "success"

    def test_unclaimed_task_is_rejected(self, db_session, customer, integration, fake_provider):
        task = sync_queue.enqueue(
            db_session, customer.tenant_id, integration.id, customer.id, SyncAction.enable
        )
        with pytest.raises(ValueError):
            network_sync.execute(db_session, task)
        assert fake_provider.calls == []

    def test_disabled_integration_fails_without_provider_call(
        self, db_session, customer, integration, fake_provider
    ):
        task = _claimed(db_session, customer, integration)
        integration.is_enabled = False
        db_session.commit()

        log = network_sync.execute(db_session, task)

        assert fake_provider.calls == []
        assert task.status == SyncTaskStatus.failed
        assert task.retry_count == 0
        assert log.status == SyncLogStatus.failed
        assert "disabled" in log.error_message
        assert str(integration.id) in log.error_message

    def test_customer_without_network_username_is_terminal(
        self, db_session, make_customer, tenant, integration, fake_provider
    ):
        customer = make_customer(tenant, network_username=None)
        task = _claimed(db_session, customer, integration)

        log = network_sync.execute(db_session, task)

        assert task.status == SyncTaskStatus.failed
        assert "network username" in log.error_message
        assert fake_provider.calls == []

    def test_transient_failure_schedules_backoff(
        self, db_session, customer, integration, fake_provider
    ):
        fake_provider.fail("router unreachable")
        task = _claimed(db_session, customer, integration)
        before = utcnow()

        log = network_sync.execute(db_session, task)

        assert task.status == SyncTaskStatus.retrying
        assert task.retry_count == 1
        assert task.last_error == "router unreachable"
        delay = (as_utc(task.next_attempt_at) - before).total_seconds()
        assert 29 <= delay <= 35
        assert log.status == SyncLogStatus.failed
        assert log.next_retry_at is not None
        db_session.refresh(customer)
        assert customer.last_network_sync_status == "failed"

    def test_retries_stop_at_max_retries(self, db_session, customer, integration, fake_provider):
        fake_provider.fail("timeout")
        fake_provider.fail("timeout")
        task = _claimed(db_session, customer, integration, max_retries=1)

        network_sync.execute(db_session, task)
        assert task.status == SyncTaskStatus.retrying

        _make_due(db_session, task)
        assert sync_queue.claim(db_session, task)
        network_sync.execute(db_session, task)

        assert task.status == SyncTaskStatus.failed
        assert task.retry_count == 1
        logs = _logs(db_session, task)
        assert [log.status for log in logs] == [SyncLogStatus.failed, SyncLogStatus.failed]
        assert logs[-1].next_retry_at is None

    def test_non_retryable_result_fails_immediately(
        self, db_session, customer, integration, fake_provider
    ):
        fake_provider.queue(
            ProviderResult(success=False, message="unknown user", retryable=False)
        )
        task = _claimed(db_session, customer, integration)
        network_sync.execute(db_session, task)
        assert task.status == SyncTaskStatus.failed
        assert task.retry_count == 0

    def test_unexpected_exception_is_retried(
        self, db_session, customer, integration, fake_provider
    ):
        fake_provider.queue(RuntimeError("socket closed"))
        task = _claimed(db_session, customer, integration)
        log = network_sync.execute(db_session, task)
        assert task.status == SyncTaskStatus.retrying
        assert "RuntimeError" in log.error_message

    def test_slow_provider_times_out(
        self, db_session, customer, integration, fake_provider, monkeypatch
    ):
        def _slow(integration, target):
            time.sleep(0.5)
            return ProviderResult(success=True, message="late")

        monkeypatch.setattr(fake_provider, "disable", _slow)
        task = _claimed(db_session, customer, integration)

        log = network_sync.execute(db_session, task, timeout=0.05)

        assert task.status == SyncTaskStatus.retrying
        assert "timed out" in log.error_message

    def test_log_payloads_hold_no_secrets(
        self, db_session, make_customer, tenant, make_integration, fake_provider
    ):
        integration = make_integration(tenant, credentials_encrypted="plain:router-pass")
        customer = make_customer(tenant, network_password_encrypted="plain:cust-pass")
        fake_provider.queue(
            ProviderResult(success=True, message="ok", data={"api_token": "leaky"})
        )
        task = _claimed(db_session, customer, integration, action=SyncAction.enable)

        log = network_sync.execute(db_session, task)

        dumped = json.dumps([log.request_payload, log.response_payload])
        assert "router-pass" not in dumped
        assert "cust-pass" not in dumped
        assert "leaky" not in dumped
        assert log.request_payload["customer"]["network_username"] == customer.network_username

    def test_test_connection_needs_no_customer(self, db_session, tenant, integration, fake_provider):
        task = sync_queue.enqueue(
            db_session, tenant.id, integration.id, None, SyncAction.test_connection
        )
        assert sync_queue.claim(db_session, task)
        log = network_sync.execute(db_session, task)
        assert log.status == SyncLogStatus.success
        assert fake_provider.calls == [("test_connection", None)]


class TestSyncCustomerNow:
    def test_manual_sync_runs_immediately(self, db_session, tenant, customer, integration, fake_provider):
        result = network_sync.sync_customer_now(
            db_session,
            tenant.id,
            integration.id,
            customer.id,
            "enable",
            triggered_by_user="op-1",
        )
        assert result["success"] is True
        assert result["queued"] is False
        log = db_session.get(NetworkSyncLog, result["log_id"])
        assert log.triggered_by == "manual"
        assert log.triggered_by_user == "op-1"

    def test_manual_sync_works_on_disabled_integration_check(
        self, db_session, tenant, customer, make_integration, fake_provider
    ):
        integration = make_integration(tenant, is_enabled=False)
        result = network_sync.sync_customer_now(
            db_session, tenant.id, integration.id, customer.id, SyncAction.disable
        )
        assert result["success"] is False
        assert "disabled" in result["message"]
        assert fake_provider.calls == []

    def test_manual_sync_requires_customer_for_customer_actions(
        self, db_session, tenant, integration, fake_provider
    ):
        with pytest.raises(HTTPException) as exc:
            network_sync.sync_customer_now(
                db_session, tenant.id, integration.id, None, SyncAction.enable
            )
        assert exc.value.status_code == 400

    def test_other_tenants_customer_is_404(
        self, db_session, tenant, other_tenant, make_customer, integration, fake_provider
    ):
        stranger = make_customer(other_tenant)
        with pytest.raises(HTTPException) as exc:
            network_sync.sync_customer_now(
                db_session, tenant.id, integration.id, stranger.id, SyncAction.enable
            )
        assert exc.value.status_code == 404

    def test_in_flight_customer_is_queued(
        self, db_session, tenant, customer, integration, fake_provider
    ):
        _claimed(db_session, customer, integration, action=SyncAction.update_speed)

        result = network_sync.sync_customer_now(
            db_session, tenant.id, integration.id, customer.id, SyncAction.enable
        )

        assert result["queued"] is True
        assert result["message"] == "Request queued behind an open task for this customer"
        assert fake_provider.calls == []
        task = db_session.get(NetworkSyncTask, result["task_id"])
        assert task.status == SyncTaskStatus.pending


class TestSyncCustomerImmediately:
    def test_no_enabled_integration(self, db_session, customer, fake_provider):
        assert (
            network_sync.sync_customer_immediately(
                db_session, customer, SyncAction.disable, "auto_suspend"
            )
            is None
        )

    def test_runs_against_enabled_integration(self, db_session, customer, integration, fake_provider):
        result = network_sync.sync_customer_immediately(
            db_session, customer, SyncAction.disable, "auto_suspend"
        )
        assert result["success"] is True
        task = db_session.get(NetworkSyncTask, result["task_id"])
        assert task.payload["triggered_by"] == "auto_suspend"
        assert task.priority == 5
