from __future__ import annotations

import json

import pytest

from operator_config import CONTAINER_BROWSER_ARGS, OperatorConfig, load_config, read_config


def test_defaults_without_env(tmp_path):
    cfg = load_config(env={}, config_path=tmp_path / "missing.json")
    assert cfg.port == 3000
    assert cfg.headless is True
    assert cfg.target_url == "https://grok.com"
    assert cfg.executable_path == "/usr/bin/chromium"
    assert cfg.nav_timeout_ms == 30_000
    assert (cfg.viewport_width, cfg.viewport_height) == (1280, 720)
    assert cfg.result_strategy == "last"


def test_browser_args_are_container_safe_plus_extras():
    cfg = OperatorConfig(extra_browser_args=["--lang=en-US"])
    assert cfg.browser_args[: len(CONTAINER_BROWSER_ARGS)] == list(CONTAINER_BROWSER_ARGS)
    assert "--no-sandbox" in cfg.browser_args
    assert "--disable-gpu" in cfg.browser_args
    assert cfg.browser_args[-1] == "--lang=en-US"


def test_env_overrides(tmp_path):
    env = {
        "PORT": "8080",
        "HEADLESS": "false",
        "CHROME_EXECUTABLE_PATH": "/opt/chrome/chrome",
        "EXTRA_BROWSER_ARGS": "--lang=en-US  --mute-audio",
        "RESULT_TIMEOUT_S": "12.5",
        "RESULT_STRATEGY": "newest",
        "DEBUG_DIR": "",
    }
    cfg = load_config(env=env, config_path=tmp_path / "missing.json")
    assert cfg.port == 8080
    assert cfg.headless is False
    assert cfg.executable_path == "/opt/chrome/chrome"
    assert cfg.extra_browser_args == ["--lang=en-US", "--mute-audio"]
    assert cfg.result_timeout_s == 12.5
    assert cfg.result_strategy == "newest"
    assert cfg.debug_dir is None


def test_puppeteer_path_alias(tmp_path):
    cfg = load_config(env={"PUPPETEER_EXECUTABLE_PATH": "/usr/bin/chrome"}, config_path=tmp_path / "none.json")
    assert cfg.executable_path == "/usr/bin/chrome"


def test_config_json_below_env(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"target_url": "https://example.test", "port": 4000, "bogus": 1}), encoding="utf-8")
    cfg = load_config(env={"PORT": "5000"}, config_path=path)
    assert cfg.target_url == "https://example.test"
    assert cfg.port == 5000


def test_invalid_config_json_is_ignored(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    assert read_config(path) == {}


def test_bad_values_rejected(tmp_path):
    with pytest.raises(ValueError, match="PORT"):
        load_config(env={"PORT": "eighty"}, config_path=tmp_path / "none.json")
    with pytest.raises(ValueError, match="strategy"):
        load_config(env={"RESULT_STRATEGY": "random"}, config_path=tmp_path / "none.json")


def test_with_overrides_skips_none():
    cfg = OperatorConfig().with_overrides(port=None, headless=False)
    assert cfg.port == 3000
    assert cfg.headless is False
