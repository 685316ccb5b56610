from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it's easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    guide_api_url: str
    guide_api_token: str | None
    guide_api_timeout: float | None

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    timeout_raw = _getenv("GUIDE_API_TIMEOUT", "")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    guide_api_url = _getenv("GUIDE_API_URL", "http://localhost:8000/users").rstrip("/")
    if not guide_api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"GUIDE_API_URL must be an http(s) URL (got {guide_api_url!r})"
        )

    # Unset means no timeout: a stalled request leaves tours undecided.
    guide_api_timeout: float | None = None
    if timeout_raw:
        try:
            guide_api_timeout = float(timeout_raw)
        except ValueError:
            raise ValueError(
                f"GUIDE_API_TIMEOUT must be a number of seconds (got {timeout_raw!r})"
            ) from None
        if guide_api_timeout <= 0:
            raise ValueError(
                f"GUIDE_API_TIMEOUT must be positive (got {timeout_raw!r})"
            )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("1", "true", "yes"),
        guide_api_url=guide_api_url,
        guide_api_token=_getenv("GUIDE_API_TOKEN", "") or None,
        guide_api_timeout=guide_api_timeout,
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
