from datetime import datetime, timezone

import pytest

from activity_poller.config import DEFAULT_SCOPES, PollerConfig, load_config
from activity_poller.errors import ConfigError


def test_load_from_env_json_targets():
    config = load_config(env={
        "POLL_TARGETS": '["login", "admin", "drive"]',
        "POLL_START_TS": "2024-01-10T12:00:00Z",
        "POLL_INTERVAL_SEC": "120",
        "MAX_PAGES_PER_INVOCATION": "5",
        "GSUITE_SCOPES": "scope-a, scope-b",
    })

    assert config.targets == ["login", "admin", "drive"]
    assert config.start_ts == datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
    assert config.poll_interval_sec == 120
    assert config.page_budget == 5
    assert config.scopes == ["scope-a", "scope-b"]


def test_comma_separated_targets_and_defaults():
    config = load_config(env={"POLL_TARGETS": "login, token"})

    assert config.targets == ["login", "token"]
    assert config.start_ts is None
    assert config.poll_interval_sec == 60
    assert config.page_budget == 1
    assert config.scopes == DEFAULT_SCOPES
    assert config.user_key == "all"
    assert config.policy.quota_cooldown_sec == 900
    assert config.policy.quota_timezone == "America/Los_Angeles"


def test_zero_page_budget_means_one_page():
    config = load_config(env={"POLL_TARGETS": "login", "MAX_PAGES_PER_INVOCATION": "0"})
    assert config.page_budget == 1


@pytest.mark.parametrize("env", [
    {},
    {"POLL_TARGETS": "[]"},
    {"POLL_TARGETS": "login,login"},
    {"POLL_TARGETS": "login,"},
    {"POLL_TARGETS": "[\"login\""},
    {"POLL_TARGETS": "login", "POLL_START_TS": "not-a-timestamp"},
    {"POLL_TARGETS": "login", "POLL_INTERVAL_SEC": "0"},
    {"POLL_TARGETS": "login", "QUOTA_TIMEZONE": "Mars/Olympus"},
])
def test_invalid_config_is_fatal(env):
    with pytest.raises(ConfigError):
        load_config(env=env)


def test_yaml_file_with_env_override(tmp_path):
    config_file = tmp_path / "poller.yaml"
    config_file.write_text(
        "targets: [login, admin]\n"
        "poll_interval_sec: 300\n"
        "policy:\n"
        "  quota_cooldown_sec: 600\n"
        "  quota_timezone: UTC\n"
    )

    config = load_config(str(config_file), env={"POLL_INTERVAL_SEC": "90"})

    assert config.targets == ["login", "admin"]
    assert config.poll_interval_sec == 90
    assert config.policy.quota_cooldown_sec == 600
    assert config.policy.quota_timezone == "UTC"


def test_unreadable_yaml(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.yaml"), env={})

    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        load_config(str(bad), env={})


def test_naive_start_is_utc():
    config = PollerConfig(targets=["login"], start_ts="2024-01-10T12:00:00")
    assert config.start_ts.tzinfo is not None
    assert config.start_ts == datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def test_creds_hidden_from_repr():
    config = PollerConfig(targets=["login"], creds_json='{"private_key": "secret"}')
    assert "secret" not in repr(config)
