from datetime import timedelta

import pytest
from celery.schedules import crontab

from ispsync.services import scheduler_config

SCHEDULE_ENV = (
    "SYNC_QUEUE_DRAIN_ENABLED",
    "SYNC_QUEUE_DRAIN_INTERVAL_SECONDS",
    "SYNC_QUEUE_STALE_SWEEP_MINUTES",
    "AUTO_SUSPEND_ENABLED",
    "AUTO_SUSPEND_HOUR",
)


@pytest.fixture()
def clean_env(monkeypatch):
    for name in SCHEDULE_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.mark.parametrize("raw, expected", [("1", True), ("Yes", True), ("ON", True), ("off", False)])
def test_env_bool(monkeypatch, raw, expected):
    monkeypatch.setenv("BOOL_VAR", raw)
    assert scheduler_config._env_bool("BOOL_VAR") is expected


def test_blank_and_missing_env(monkeypatch):
    monkeypatch.setenv("EMPTY_VAR", "")
    monkeypatch.delenv("MISSING_VAR", raising=False)
    assert scheduler_config._env_value("EMPTY_VAR") is None
    assert scheduler_config._env_bool("MISSING_VAR") is None


def test_env_int_ignores_garbage(monkeypatch):
    monkeypatch.setenv("INT_VAR", "abc")
    assert scheduler_config._env_int("INT_VAR") is None
    monkeypatch.setenv("INT_VAR", "42")
    assert scheduler_config._env_int("INT_VAR") == 42


def test_broker_prefers_explicit_url(monkeypatch):
    monkeypatch.setenv("CELERY_BROKER_URL", "redis://broker:6379/3")
    monkeypatch.setenv("REDIS_URL", "redis://other:6379/0")
    config = scheduler_config.get_celery_config()
    assert config["broker_url"] == "redis://broker:6379/3"
    assert config["timezone"] == "UTC"
    assert config["task_acks_late"] is True


def test_broker_and_backend_fall_back_to_redis_url(monkeypatch):
    monkeypatch.delenv("CELERY_BROKER_URL", raising=False)
    monkeypatch.delenv("CELERY_RESULT_BACKEND", raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
    config = scheduler_config.get_celery_config()
    assert config["broker_url"] == config["result_backend"] == "redis://cache:6379/0"


def test_default_schedule(clean_env):
    schedule = scheduler_config.build_beat_schedule()

    assert schedule["network_sync_drain"] == {
        "task": "ispsync.tasks.network_sync.drain_sync_queue",
        "schedule": timedelta(seconds=30),
    }
    assert schedule["network_sync_requeue_stale"]["schedule"] == timedelta(minutes=5)
    assert schedule["auto_suspend_daily"]["task"] == "ispsync.tasks.auto_suspend.run_auto_suspend"
    assert schedule["auto_suspend_daily"]["schedule"] == crontab(minute=0, hour=1)


def test_intervals_are_clamped(clean_env):
    clean_env.setenv("SYNC_QUEUE_DRAIN_INTERVAL_SECONDS", "1")
    clean_env.setenv("AUTO_SUSPEND_HOUR", "30")
    schedule = scheduler_config.build_beat_schedule()
    assert schedule["network_sync_drain"]["schedule"] == timedelta(seconds=5)
    assert schedule["auto_suspend_daily"]["schedule"] == crontab(minute=0, hour=23)


def test_jobs_can_be_switched_off(clean_env):
    clean_env.setenv("SYNC_QUEUE_DRAIN_ENABLED", "0")
    clean_env.setenv("AUTO_SUSPEND_ENABLED", "false")
    assert scheduler_config.build_beat_schedule() == {}
