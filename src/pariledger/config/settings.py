"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"

DEFAULT_ADMIN_WALLET = "2dEqAfP7J8TLG7apsR2CSv6Y6kcs36tZVSqrYjCB48ZC"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return config_dir
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    directory = _find_config_dir(config_dir)
    default_path = directory / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = directory / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        storage: dict[str, Any] | None = None,
        fees: dict[str, Any] | None = None,
        admin: dict[str, Any] | None = None,
        betting: dict[str, Any] | None = None,
        maintenance: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.storage = storage or {}
        self.fees = fees or {}
        self.admin = admin or {}
        self.betting = betting or {}
        self.maintenance = maintenance or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            storage=raw.get("storage"),
            fees=raw.get("fees"),
            admin=raw.get("admin"),
            betting=raw.get("betting"),
            maintenance=raw.get("maintenance"),
            logging=raw.get("logging"),
        )

    # Convenience accessors with defaults
    @property
    def storage_backend(self) -> str:
        return self.storage.get("backend", "file")

    @property
    def data_dir(self) -> str:
        return self.storage.get("data_dir", "data")

    @property
    def cache_dir(self) -> str:
        return self.storage.get("cache_dir", "data/cache")

    @property
    def http_base_url(self) -> str:
        return self.storage.get("http_base_url", "")

    @property
    def http_bucket(self) -> str:
        return self.storage.get("http_bucket", "pariledger")

    @property
    def http_token(self) -> str | None:
        return self.storage.get("http_token") or None

    @property
    def storage_timeout_sec(self) -> float:
        return float(self.storage.get("timeout_sec", 30.0))

    @property
    def max_retries(self) -> int:
        return int(self.storage.get("max_retries", 3))

    @property
    def retry_base_delay_sec(self) -> float:
        return float(self.storage.get("retry_base_delay_sec", 0.5))

    @property
    def retry_max_delay_sec(self) -> float:
        return float(self.storage.get("retry_max_delay_sec", 8.0))

    @property
    def platform_fee_pct(self) -> float:
        return float(self.fees.get("platform_fee_pct", 2.5))

    @property
    def settlement_fee_pct(self) -> float:
        return float(self.fees.get("settlement_fee_pct", 3.0))

    @property
    def admin_wallet(self) -> str:
        return self.admin.get("wallet", DEFAULT_ADMIN_WALLET)

    @property
    def minimum_bet(self) -> float:
        return float(self.betting.get("minimum_bet", 0.01))

    @property
    def refund_threshold_hours(self) -> float:
        return float(self.maintenance.get("refund_threshold_hours", 78))

    @property
    def sweep_interval_sec(self) -> float:
        return float(self.maintenance.get("sweep_interval_sec", 600))

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
