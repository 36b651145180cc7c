"""Tests for config loading."""

import os
import subprocess
import sys

import pytest

from guide_orders.config import (
    _deep_merge,
    _default_config,
    get_config,
    get_config_hash,
    validate_case_numbering,
)


def test_default_config() -> None:
    cfg = _default_config()
    assert cfg["app"]["log_level"] == "INFO"
    assert cfg["cases"]["number_prefix"] == "CASE"
    assert cfg["workflow"]["policy_path"] is None
    assert cfg["workflow"]["async_notifications"] is False


def test_deep_merge() -> None:
    base = {"a": 1, "b": {"x": 1, "y": 2}}
    override = {"b": {"y": 3}, "c": 4}
    out = _deep_merge(base, override)
    assert out["a"] == 1
    assert out["b"]["x"] == 1
    assert out["b"]["y"] == 3
    assert out["c"] == 4


def test_get_config_with_file(config_path: str) -> None:
    cfg = get_config(config_path)
    assert cfg["database"]["url"].endswith("cfg.db")
    assert cfg["cases"]["number_prefix"] == "SG"
    # defaults fill sections the file omits
    assert cfg["api"]["port"] == 8000
    assert cfg["database"]["lock_timeout_seconds"] == 5


def test_missing_file_falls_back_to_defaults(tmp_path) -> None:
    cfg = get_config(str(tmp_path / "absent.yaml"))
    assert cfg["database"]["url"] == "sqlite:///./data/guide_orders.db"


def test_dev_overlay_only_in_dev_env(config_path: str, monkeypatch) -> None:
    dev = os.path.join(os.path.dirname(config_path), "dev.yaml")
    with open(dev, "w", encoding="utf-8") as f:
        f.write("app:\n  log_level: DEBUG\n")
    monkeypatch.delenv("GUIDE_ENV", raising=False)
    assert get_config(config_path)["app"]["log_level"] == "INFO"
    monkeypatch.setenv("GUIDE_ENV", "dev")
    assert get_config(config_path)["app"]["log_level"] == "DEBUG"


def test_env_overrides(config_path: str, monkeypatch) -> None:
    monkeypatch.setenv("GUIDE_DATABASE_URL", "sqlite:///./override.db")
    monkeypatch.setenv("GUIDE_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("GUIDE_POLICY_PATH", "config/express.yaml")
    cfg = get_config(config_path)
    assert cfg["database"]["url"] == "sqlite:///./override.db"
    assert cfg["app"]["log_level"] == "WARNING"
    assert cfg["workflow"]["policy_path"] == "config/express.yaml"


def test_database_url_env_wins(config_path: str, monkeypatch) -> None:
    monkeypatch.setenv("GUIDE_DATABASE_URL", "sqlite:///./guide.db")
    monkeypatch.setenv("DATABASE_URL", "postgresql://guide@db/guide")
    assert get_config(config_path)["database"]["url"] == "postgresql://guide@db/guide"


@pytest.mark.parametrize("prefix", ["", "CASE-", "SG 1", "ABCDEFGHIJKLM", 42])
def test_case_prefix_validation_rejects(prefix) -> None:
    with pytest.raises(ValueError, match="number_prefix"):
        validate_case_numbering({"cases": {"number_prefix": prefix}})


def test_config_rejects_bad_prefix(tmp_path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text('cases: { number_prefix: "SG 1" }\n')
    with pytest.raises(ValueError, match="number_prefix"):
        get_config(str(cfg_path))


def test_config_hash_is_order_independent() -> None:
    a = {"app": {"log_level": "INFO"}, "cases": {"number_prefix": "SG"}}
    b = {"cases": {"number_prefix": "SG"}, "app": {"log_level": "INFO"}}
    assert get_config_hash(a) == get_config_hash(b)
    assert get_config_hash(a) != get_config_hash({**a, "cases": {"number_prefix": "XX"}})


def test_policy_version_respects_env() -> None:
    """GUIDE_POLICY_VERSION env is used when set (subprocess to avoid import-time cache)."""
    env = {**os.environ, "GUIDE_POLICY_VERSION": "2.0.0"}
    code = "from guide_orders import POLICY_VERSION; assert POLICY_VERSION == '2.0.0'"
    result = subprocess.run(
        [sys.executable, "-c", code],
        env=env,
        capture_output=True,
        text=True,
        timeout=10,
    )
    assert result.returncode == 0, (result.stdout or "") + (result.stderr or "")
