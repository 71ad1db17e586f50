"""
Configuration for the web-edit operator and service.
Defaults, then config.json beside this module (optional), then environment.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

log = logging.getLogger(__name__)


# ----------------------------
# Defaults
# ----------------------------

DEFAULT_TARGET_URL = "https://grok.com"
DEFAULT_EXECUTABLE_PATH = "/usr/bin/chromium"

# Flags required to run Chromium inside a container without an OS sandbox,
# GPU or a usable /dev/shm.
CONTAINER_BROWSER_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
)

RESULT_STRATEGIES = ("last", "newest", "largest")


@dataclass(frozen=True)
class OperatorConfig:
    host: str = "0.0.0.0"
    port: int = 3000
    service_name: str = "grok-web-edit"

    # Browser
    headless: bool = True
    executable_path: Optional[str] = DEFAULT_EXECUTABLE_PATH
    extra_browser_args: List[str] = field(default_factory=list)
    viewport_width: int = 1280
    viewport_height: int = 720
    storage_state_path: Optional[str] = None

    # Navigation
    target_url: str = DEFAULT_TARGET_URL
    nav_timeout_ms: int = 30_000
    quiet_max_inflight: int = 2
    quiet_window_ms: int = 500

    # Interaction
    upload_settle_ms: int = 2000
    prompt_settle_ms: int = 1000
    result_timeout_s: float = 60.0
    result_poll_s: float = 1.0
    result_strategy: str = "last"

    # Asset staging
    asset_timeout_s: float = 30.0
    max_asset_bytes: int = 20 * 1024 * 1024

    # Diagnostics
    debug_dir: Optional[str] = None
    log_level: str = "INFO"

    @property
    def browser_args(self) -> List[str]:
        return list(CONTAINER_BROWSER_ARGS) + list(self.extra_browser_args)

    def executable_available(self) -> bool:
        return bool(self.executable_path) and Path(self.executable_path).exists()

    def with_overrides(self, **changes: Any) -> "OperatorConfig":
        """Return a copy with the non-None values in changes applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# ----------------------------
# Loading
# ----------------------------

# env var -> field name
ENV_FIELDS = {
    "HOST": "host",
    "PORT": "port",
    "HEADLESS": "headless",
    "CHROME_EXECUTABLE_PATH": "executable_path",
    "EXTRA_BROWSER_ARGS": "extra_browser_args",
    "STORAGE_STATE_PATH": "storage_state_path",
    "TARGET_URL": "target_url",
    "NAV_TIMEOUT_MS": "nav_timeout_ms",
    "UPLOAD_SETTLE_MS": "upload_settle_ms",
    "PROMPT_SETTLE_MS": "prompt_settle_ms",
    "RESULT_TIMEOUT_S": "result_timeout_s",
    "RESULT_STRATEGY": "result_strategy",
    "ASSET_TIMEOUT_S": "asset_timeout_s",
    "MAX_ASSET_BYTES": "max_asset_bytes",
    "DEBUG_DIR": "debug_dir",
    "LOG_LEVEL": "log_level",
}

# Older deployments set the Puppeteer variable; honored when the Chrome one is unset.
EXECUTABLE_ENV_ALIASES = ("CHROME_EXECUTABLE_PATH", "PUPPETEER_EXECUTABLE_PATH")


def get_project_root() -> Path:
    return Path(__file__).resolve().parent


def read_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read config.json from project root. Missing or invalid file returns {}."""
    path = path or (get_project_root() / "config.json")
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning("Ignoring unreadable config %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _coerce(name: str, value: Any) -> Any:
    default = getattr(OperatorConfig, name, None)
    if name == "extra_browser_args":
        if isinstance(value, str):
            return [a for a in value.split() if a]
        return [str(a) for a in value]
    if name in ("executable_path", "storage_state_path", "debug_dir"):
        value = str(value).strip()
        return value or None
    if isinstance(default, bool):
        return parse_bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def load_config(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> OperatorConfig:
    """Build an OperatorConfig from config.json and environment variables."""
    env = os.environ if env is None else env
    known = {f.name for f in fields(OperatorConfig)}
    values: Dict[str, Any] = {}

    for key, value in read_config(config_path).items():
        if key in known:
            values[key] = _coerce(key, value)
        else:
            log.warning("Unknown config.json key ignored: %s", key)

    for env_name, field_name in ENV_FIELDS.items():
        if field_name == "executable_path":
            continue
        raw = env.get(env_name)
        if raw is not None and raw.strip() != "":
            try:
                values[field_name] = _coerce(field_name, raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_name}: {raw!r}") from e

    for env_name in EXECUTABLE_ENV_ALIASES:
        raw = env.get(env_name)
        if raw is not None and raw.strip():
            values["executable_path"] = raw.strip()
            break

    config = OperatorConfig(**values)
    if config.result_strategy not in RESULT_STRATEGIES:
        raise ValueError(
            f"Unknown result strategy {config.result_strategy!r}; expected one of {', '.join(RESULT_STRATEGIES)}."
        )
    return config
