from __future__ import annotations

"""Chat client settings read from environment variables."""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar
import os

PROJECT_ROOT = Path(__file__).resolve().parents[3]

_T = TypeVar("_T")
_TRUTHY = {"1", "true", "yes", "on"}


def _env(name: str, default: _T, cast: Callable[[str], _T]) -> _T:
    """Return `cast(value)` for a set, non-blank variable, else `default`."""
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return cast(value)
    except ValueError as exc:
        raise ValueError(f"{name} has an invalid value: {value!r}") from exc


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Settings:
    """Chat service connection, polling and local bridge configuration.

    `project_root` locates `config/logging.*.json`; `app_env` selects which
    one is loaded.
    """
    project_root: Path
    api_base_url: str
    api_token: str
    api_timeout_seconds: float
    poll_interval_seconds: float
    poll_max_iterations: int
    bridge_debug: bool
    bridge_host: str
    bridge_port: int
    app_env: str

    @classmethod
    def from_env(cls) -> "Settings":
        poll_interval_seconds = _env("POLL_INTERVAL_SECONDS", 2.0, float)
        poll_max_iterations = _env("POLL_MAX_ITERATIONS", 10000, int)
        if poll_interval_seconds <= 0:
            raise ValueError("POLL_INTERVAL_SECONDS must be positive.")
        if poll_max_iterations <= 0:
            raise ValueError("POLL_MAX_ITERATIONS must be positive.")
        return cls(
            project_root=PROJECT_ROOT,
            api_base_url=_env("CHAT_API_BASE_URL", "http://localhost:8000", str).rstrip("/"),
            api_token=_env("CHAT_API_TOKEN", "", str),
            api_timeout_seconds=_env("CHAT_API_TIMEOUT_SECONDS", 30.0, float),
            poll_interval_seconds=poll_interval_seconds,
            poll_max_iterations=poll_max_iterations,
            bridge_debug=_env_flag("BRIDGE_DEBUG"),
            bridge_host=_env("BRIDGE_HOST", "127.0.0.1", str),
            bridge_port=_env("BRIDGE_PORT", 8765, int),
            app_env=_env("APP_ENV", "dev", str).lower(),
        )
