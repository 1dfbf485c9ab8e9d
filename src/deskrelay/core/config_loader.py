"""Load and query DeskRelay JSON config files."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("config/config.json")
DEFAULT_PROFILES_PATH = Path("config/profiles.json")

DEFAULT_API_BASE_URL = "https://desk.zoho.com/api/v1"
DEFAULT_TOKEN_URL = "https://accounts.zoho.com/oauth/v2/token"
DEFAULT_AUTH_SCHEME = "Zoho-oauthtoken"
DEFAULT_TIMEOUT_SEC = 20.0
DEFAULT_TOKEN_EXPIRY_SKEW_SEC = 60

DEFAULT_PAUSE_POLL_SEC = 0.5
DEFAULT_SLEEP_TICK_SEC = 0.1
DEFAULT_VERIFY_DELAY_SEC = 10.0

_CONFIG_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}


def repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def _resolve_repo_relative(raw_path: str | Path) -> Path:
    candidate = Path(raw_path)
    if not candidate.is_absolute():
        candidate = repo_root() / candidate
    return candidate.resolve()


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Resolve config path against repo root.

    Priority:
    1. explicit function argument
    2. `DESKRELAY_CONFIG_PATH` environment variable
    3. default `config/config.json`
    """
    raw_path: str | Path | None = config_path or os.getenv("DESKRELAY_CONFIG_PATH")
    return _resolve_repo_relative(raw_path if raw_path else DEFAULT_CONFIG_PATH)


def load_config(config_path: str | Path | None = None, *, use_cache: bool = True) -> dict[str, Any]:
    """Load config JSON as a dictionary."""
    resolved = resolve_config_path(config_path)
    if not resolved.exists():
        raise FileNotFoundError(f"Config file not found: {resolved}")

    mtime_ns = resolved.stat().st_mtime_ns
    if use_cache and resolved in _CONFIG_CACHE:
        cached_mtime_ns, cached_payload = _CONFIG_CACHE[resolved]
        if cached_mtime_ns == mtime_ns:
            return cached_payload

    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in config file: {resolved}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be a JSON object: {resolved}")

    _CONFIG_CACHE[resolved] = (mtime_ns, payload)
    return payload


def load_config_or_defaults(config_path: str | Path | None = None) -> dict[str, Any]:
    """Like `load_config`, but a missing file means "use built-in defaults"."""
    try:
        return load_config(config_path)
    except FileNotFoundError:
        return {}


def clear_config_cache() -> None:
    """Clear in-memory config cache."""
    _CONFIG_CACHE.clear()


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _positive_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value) if value > 0 else default


def _non_negative_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value) if value >= 0 else default


def _non_empty_str(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def get_profiles_path(config: dict[str, Any] | None = None) -> Path:
    """Return the profile list location.

    `DESKRELAY_PROFILES_PATH` wins over the `profiles_path` config key.
    """
    payload = config if config is not None else load_config_or_defaults()
    raw = os.getenv("DESKRELAY_PROFILES_PATH") or payload.get("profiles_path")
    if not isinstance(raw, str) or not raw.strip():
        return _resolve_repo_relative(DEFAULT_PROFILES_PATH)
    return _resolve_repo_relative(raw.strip())


def get_desk_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return help-desk API settings merged over defaults."""
    payload = config if config is not None else load_config_or_defaults()
    desk = _section(payload, "desk")
    skew = desk.get("token_expiry_skew_sec", DEFAULT_TOKEN_EXPIRY_SKEW_SEC)
    if isinstance(skew, bool) or not isinstance(skew, int) or skew < 0:
        skew = DEFAULT_TOKEN_EXPIRY_SKEW_SEC
    return {
        "api_base_url": _non_empty_str(desk.get("api_base_url"), DEFAULT_API_BASE_URL).rstrip("/"),
        "token_url": _non_empty_str(desk.get("token_url"), DEFAULT_TOKEN_URL),
        "auth_scheme": _non_empty_str(desk.get("auth_scheme"), DEFAULT_AUTH_SCHEME),
        "timeout_sec": _positive_float(desk.get("timeout_sec"), DEFAULT_TIMEOUT_SEC),
        "token_expiry_skew_sec": skew,
    }


def get_job_runtime_config(config: dict[str, Any] | None = None) -> dict[str, float]:
    """Return bulk job pacing knobs merged over defaults."""
    payload = config if config is not None else load_config_or_defaults()
    jobs = _section(payload, "jobs")
    return {
        "pause_poll_sec": _positive_float(jobs.get("pause_poll_sec"), DEFAULT_PAUSE_POLL_SEC),
        "sleep_tick_sec": _positive_float(jobs.get("sleep_tick_sec"), DEFAULT_SLEEP_TICK_SEC),
        "verify_delay_sec": _non_negative_float(jobs.get("verify_delay_sec"), DEFAULT_VERIFY_DELAY_SEC),
    }


def get_logging_config(config: dict[str, Any] | None = None) -> dict[str, str]:
    payload = config if config is not None else load_config_or_defaults()
    block = _section(payload, "logging")
    return {"level": _non_empty_str(block.get("level"), "INFO").upper()}
