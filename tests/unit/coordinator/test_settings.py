"""
Unit tests for environment-driven engine settings.
"""

from behavior_delivery.coordinator import EngineSettings, get_settings


def test_defaults():
    s = EngineSettings(_env_file=None)
    assert s.scheduler_interval == 0.1
    assert s.coordination_interval == 0.5
    assert s.max_retries == 3
    assert s.dependency_mode == "permissive"
    assert s.queue_capacity is None


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("BDE_MAX_RETRIES", "5")
    monkeypatch.setenv("BDE_DEPENDENCY_MODE", "strict")
    monkeypatch.setenv("BDE_INITIAL_BACKOFF_MS", "250")
    s = EngineSettings(_env_file=None)

    assert s.max_retries == 5
    assert s.dependency_mode == "strict"
    policy = s.retry_policy()
    assert policy.max_attempts == 6
    assert policy.next_backoff_ms(1) == 250


def test_get_settings_cached():
    assert get_settings() is get_settings()
