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


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("VGR_DB_PATH", "vgr.db")
    docker_network: str = os.getenv("VGR_DOCKER_NETWORK", "vgr")
    # Host directory holding one sub-directory per secret name.
    secrets_dir: str = os.getenv("VGR_SECRETS_DIR", "/var/lib/vgr/secrets")

    # Controller loop
    workers: int = _env_int("VGR_WORKERS", 2)
    resync_interval_s: int = _env_int("VGR_RESYNC_INTERVAL_S", 30)
    retry_delay_s: float = _env_float("VGR_RETRY_DELAY_S", 3.0)

    # Settle / backoff waits inside a reconciliation
    settle_s: float = _env_float("VGR_SETTLE_S", 5.0)
    pod_missing_wait_s: float = _env_float("VGR_POD_MISSING_WAIT_S", 1.0)
    pod_not_running_wait_s: float = _env_float("VGR_POD_NOT_RUNNING_WAIT_S", 5.0)
    exec_failure_wait_s: float = _env_float("VGR_EXEC_FAILURE_WAIT_S", 2.0)

    # "output": any output from the refresh command counts as failure.
    # "exit_code": only a non-zero exit code or stderr output counts as failure.
    refresh_success_mode: str = os.getenv("VGR_REFRESH_SUCCESS_MODE", "output")

    # API
    api_user: str = os.getenv("VGR_API_USER", "admin")
    api_password: str = os.getenv("VGR_API_PASSWORD", "change-me")
    start_controller: bool = _env_bool("VGR_START_CONTROLLER", True)


settings = Settings()
