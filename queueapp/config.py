"""Application configuration using pydantic-settings.

Every tunable policy constant (archive cutover, document size ceilings,
plan limits) lives here so tests and deployments can override it through
environment variables prefixed with ``QUEUEAPP_``.
"""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUEUEAPP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = "sqlite:///data/queueapp.db"
    store_backend: Literal["sql", "memory"] = "sql"

    # Months >= this one are archived into the sharded archive collection
    archive_cutover_month: str = "2026-01"

    # Hard per-document ceiling of the store and the headroom kept below it
    document_limit_bytes: int = 1000 * 1024
    archive_safety_buffer_bytes: int = 100 * 1024
    record_size_estimate_bytes: int = 200
    measure_archive_parts: bool = False

    free_monthly_limit: int = 500
    freemium_grace_customers: int = 500

    transaction_max_attempts: int = 5

    log_level: str = "INFO"
    debug: bool = False

    @field_validator("archive_cutover_month")
    @classmethod
    def validate_cutover_month(cls, v: str) -> str:
        parts = v.split("-")
        if len(parts) != 2 or len(parts[0]) != 4 or len(parts[1]) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError("archive_cutover_month must use YYYY-MM format")
        if not 1 <= int(parts[1]) <= 12:
            raise ValueError("archive_cutover_month has an invalid month")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("record_size_estimate_bytes", "transaction_max_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive integer")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
