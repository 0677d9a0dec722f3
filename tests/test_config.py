import pytest
from pydantic import ValidationError

from portrace.config import RunConfig, available_parallelism, build_config, env_overrides


def test_defaults():
    cfg = RunConfig()
    assert cfg.workers == available_parallelism()
    assert cfg.workers >= 1
    assert cfg.skip_port is None
    assert cfg.failure_mode == "cooperative"
    assert cfg.status_interval_s == 1.0
    assert cfg.iterations is None
    assert cfg.bind_host == "127.0.0.1"
    assert cfg.metrics.enabled is False
    assert cfg.log_level is None
    assert cfg.effective_log_level == "INFO"


def test_effective_log_level():
    assert RunConfig(debug=True).effective_log_level == "DEBUG"
    assert RunConfig(debug=True, log_level="WARNING").effective_log_level == "DEBUG"
    assert RunConfig(log_level="warning").effective_log_level == "WARNING"


def test_log_level_from_env(env):
    env({"PORTRACE_LOG_LEVEL": "error"})
    assert build_config().effective_log_level == "ERROR"


@pytest.mark.parametrize("field,value", [
    ("workers", 0),
    ("skip_port", 0),
    ("skip_port", 70000),
    ("failure_mode", "panic"),
    ("status_interval_s", -1),
    ("iterations", 0),
    ("bind_host", "10.0.0.1"),
    ("bind_host", "localhost"),
    ("log_level", "chatty"),
])
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        RunConfig(**{field: value})


def test_other_loopback_addresses_accepted():
    assert RunConfig(bind_host="127.0.0.2").bind_host == "127.0.0.2"


def test_env_overrides_and_explicit_values_win(env):
    env({"PORTRACE_WORKERS": "3", "PORTRACE_SKIP_PORT": "50000", "PORTRACE_FAILURE_MODE": "strict"})
    cfg = build_config(workers=5, skip_port=None)
    assert cfg.workers == 5
    assert cfg.skip_port == 50000
    assert cfg.failure_mode == "strict"


def test_env_overrides_ignores_blank_values():
    values = env_overrides({"PORTRACE_WORKERS": " ", "PORTRACE_STATUS_INTERVAL": "0.5", "OTHER": "x"})
    assert values == {"status_interval_s": "0.5"}


def test_invalid_env_value_raises(env):
    env({"PORTRACE_WORKERS": "many"})
    with pytest.raises(ValidationError):
        build_config()
