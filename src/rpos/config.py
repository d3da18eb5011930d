from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class Settings:
    tax_rate: float = 0.18
    busy_timeout_seconds: float = 5.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.05
    default_page_size: int = 10
    max_page_size: int = 100


PAGE_SIZE_OPTIONS = (10, 20, 30, 50, 100)


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "RetailPOS") -> AppPaths:
    if sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "pos.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def _env(environ: Mapping[str, str], name: str, cast, default):
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from e


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    defaults = Settings()
    settings = Settings(
        tax_rate=_env(env, "RPOS_TAX_RATE", float, defaults.tax_rate),
        busy_timeout_seconds=_env(env, "RPOS_BUSY_TIMEOUT", float, defaults.busy_timeout_seconds),
        retry_attempts=_env(env, "RPOS_RETRY_ATTEMPTS", int, defaults.retry_attempts),
        retry_backoff_seconds=_env(env, "RPOS_RETRY_BACKOFF", float, defaults.retry_backoff_seconds),
        default_page_size=_env(env, "RPOS_PAGE_SIZE", int, defaults.default_page_size),
        max_page_size=defaults.max_page_size,
    )

    if settings.tax_rate < 0:
        raise ValueError("RPOS_TAX_RATE must be >= 0.")
    if settings.busy_timeout_seconds < 0:
        raise ValueError("RPOS_BUSY_TIMEOUT must be >= 0.")
    if settings.retry_attempts < 1:
        raise ValueError("RPOS_RETRY_ATTEMPTS must be >= 1.")
    if settings.retry_backoff_seconds < 0:
        raise ValueError("RPOS_RETRY_BACKOFF must be >= 0.")
    if settings.default_page_size not in PAGE_SIZE_OPTIONS:
        raise ValueError(f"RPOS_PAGE_SIZE must be one of {PAGE_SIZE_OPTIONS}.")
    return settings
