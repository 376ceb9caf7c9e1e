from __future__ import annotations

from dataclasses import dataclass, field
import os

APP_VERSION = "1.0.0a1"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from error


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class AppConfig:
    namespace: str = field(default_factory=lambda: os.getenv("EKVOLS_NAMESPACE", "").strip())
    request_timeout_seconds: int = field(default_factory=lambda: _env_int("EKVOLS_REQUEST_TIMEOUT_SECONDS", 30))
    pass_timeout_seconds: int = field(default_factory=lambda: _env_int("EKVOLS_PASS_TIMEOUT_SECONDS", 300))
    scrape_workers: int = field(default_factory=lambda: _env_int("EKVOLS_SCRAPE_WORKERS", 8))
    volume_batch_size: int = field(default_factory=lambda: _env_int("EKVOLS_VOLUME_BATCH_SIZE", 200))
    aws_region: str | None = field(default_factory=lambda: _env_optional("EKVOLS_AWS_REGION"))
    aws_profile: str | None = field(default_factory=lambda: _env_optional("EKVOLS_AWS_PROFILE"))
    aws_enabled: bool = field(default_factory=lambda: not _env_flag("EKVOLS_DISABLE_AWS"))

    @property
    def ec2_timeout_seconds(self) -> int:
        # Never longer than the whole pass.
        return min(self.request_timeout_seconds, self.pass_timeout_seconds)


def validate_config(config: AppConfig) -> None:
    if config.request_timeout_seconds <= 0:
        raise ValueError("request_timeout_seconds must be positive")
    if config.pass_timeout_seconds <= 0:
        raise ValueError("pass_timeout_seconds must be positive")
    if config.scrape_workers <= 0:
        raise ValueError("scrape_workers must be positive")
    if config.volume_batch_size <= 0:
        raise ValueError("volume_batch_size must be positive")
