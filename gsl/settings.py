from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _default_home() -> str:
    return os.path.join(os.path.expanduser("~"), "GameServerLifecycle")


@dataclass(frozen=True)
class Settings:
    # Core
    home: str = os.getenv("GSL_HOME", _default_home())
    db_path: str | None = os.getenv("GSL_DB_PATH")
    templates_path: str | None = os.getenv("GSL_TEMPLATES_PATH")

    # Lifecycle timing
    settle_delay_s: float = _env_float("GSL_SETTLE_DELAY_S", 0.5)
    stop_timeout_s: int = _env_int("GSL_STOP_TIMEOUT_S", 30)
    graceful_stop_wait_s: float = _env_float("GSL_GRACEFUL_STOP_WAIT_S", 5.0)

    # Log streaming
    log_tail: int = _env_int("GSL_LOG_TAIL", 50)
    log_max_reconnects: int = _env_int("GSL_LOG_MAX_RECONNECTS", 10)
    log_reconnect_delay_s: float = _env_float("GSL_LOG_RECONNECT_DELAY_S", 1.0)
    connect_retry_s: float = _env_float("GSL_CONNECT_RETRY_S", 2.0)
    stream_supersede_wait_s: float = _env_float("GSL_STREAM_SUPERSEDE_WAIT_S", 0.1)

    # Install runner
    install_poll_s: float = _env_float("GSL_INSTALL_POLL_S", 1.0)
    open_auth_links: bool = _env_bool("GSL_OPEN_AUTH_LINKS", True)

    # Console fallback when stdin attach is not supported by the image.
    console_helper: str = os.getenv("GSL_CONSOLE_HELPER", "mc-send-to-console")

    @property
    def config_dir(self) -> str:
        """One JSON document per server lives here."""
        return os.path.join(self.home, "config")

    @property
    def servers_dir(self) -> str:
        return os.path.join(self.home, "servers")

    @property
    def journal_path(self) -> str:
        return self.db_path or os.path.join(self.home, "gsl.db")

    @property
    def games_path(self) -> str:
        return self.templates_path or os.path.join(self.home, "games.json")


settings = Settings()
