from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Identity
    service_name: str = Field("presence-service", alias="SERVICE_NAME")
    service_version: str = Field("0.1.0", alias="SERVICE_VERSION")
    node_name: str = Field("inoffice", alias="NODE_NAME")
    port: int = Field(8080, alias="PORT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Transaction feed over the bus (webhook is always mounted)
    bus_url: str = Field(
        "redis://localhost:6379/0",
        validation_alias=AliasChoices("INOFFICE_BUS_URL", "REDIS_URL"),
    )
    transaction_bus_enabled: bool = Field(False, alias="TRANSACTION_BUS_ENABLED")
    channel_transactions: str = Field("inoffice:transactions", alias="CHANNEL_TRANSACTIONS")
    bus_connect_timeout_sec: float = Field(10.0, alias="BUS_CONNECT_TIMEOUT_SEC")

    # Chassis
    heartbeat_interval_sec: float = Field(30.0, alias="HEARTBEAT_INTERVAL_SEC")
    health_channel: str = Field("system.health", alias="HEALTH_CHANNEL")
    error_channel: str = Field("system.error", alias="ERROR_CHANNEL")
    shutdown_grace_sec: float = Field(10.0, alias="SHUTDOWN_GRACE_SEC")

    # Office tracker
    officetracker_base_url: str = Field("https://officetracker.baileys.page", alias="OFFICETRACKER_BASE_URL")
    officetracker_api_key: str = Field("", alias="OFFICETRACKER_API_KEY")
    officetracker_timeout_sec: float = Field(5.0, alias="OFFICETRACKER_TIMEOUT_SEC")
    office_status_poll_interval_sec: float = Field(300.0, alias="OFFICE_STATUS_POLL_INTERVAL_SEC")
    office_status_refresh_before_render: bool = Field(False, alias="OFFICE_STATUS_REFRESH_BEFORE_RENDER")
    office_assert_on_presence: bool = Field(False, alias="OFFICE_ASSERT_ON_PRESENCE")

    # Notification webhook
    notify_webhook_url: Optional[str] = Field(None, alias="NOTIFY_WEBHOOK_URL")
    notify_timeout_sec: float = Field(5.0, alias="NOTIFY_TIMEOUT_SEC")

    # Classification criteria
    presence_timezone: str = Field("Australia/Melbourne", alias="PRESENCE_TIMEZONE")
    criteria_min_units: int = Field(-700, alias="CRITERIA_MIN_UNITS")
    criteria_max_units: int = Field(-400, alias="CRITERIA_MAX_UNITS")
    criteria_hour_range_enabled: bool = Field(False, alias="CRITERIA_HOUR_RANGE_ENABLED")
    criteria_min_hour: int = Field(6, ge=0, le=23, alias="CRITERIA_MIN_HOUR")
    criteria_max_hour: int = Field(12, ge=0, le=23, alias="CRITERIA_MAX_HOUR")
    criteria_hour_basis: Literal["embedded", "utc", "reference"] = Field("embedded", alias="CRITERIA_HOUR_BASIS")
    criteria_category: str = Field("restaurants-and-cafes", alias="CRITERIA_CATEGORY")

    # Freshness
    freshness_policy: Literal["day_boundary", "rolling"] = Field("day_boundary", alias="FRESHNESS_POLICY")
    freshness_window_hours: float = Field(12.0, alias="FRESHNESS_WINDOW_HOURS")
    daily_refresh_skew_sec: float = Field(5.0, alias="DAILY_REFRESH_SKEW_SEC")

    # Persistence of the last qualifying transaction (empty disables)
    state_cache_redis_url: Optional[str] = Field(None, alias="STATE_CACHE_REDIS_URL")
    state_cache_key: str = Field("inoffice:presence:transaction", alias="STATE_CACHE_KEY")

    # Page copy
    presence_subject: str = Field("Bailey", alias="PRESENCE_SUBJECT")
    presence_question: str = Field("Is Bailey in the office?", alias="PRESENCE_QUESTION")

    @field_validator(
        "office_status_poll_interval_sec",
        "officetracker_timeout_sec",
        "notify_timeout_sec",
        "freshness_window_hours",
    )
    @classmethod
    def _ensure_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Intervals, timeouts and windows must be positive")
        return v

    @field_validator("criteria_max_units")
    @classmethod
    def _ensure_spend(cls, v: int) -> int:
        if v >= 0:
            raise ValueError("CRITERIA_MAX_UNITS must be negative (a spend)")
        return v

    @model_validator(mode="after")
    def _ensure_ranges(self) -> "Settings":
        if self.criteria_min_units > self.criteria_max_units:
            raise ValueError("CRITERIA_MIN_UNITS must not exceed CRITERIA_MAX_UNITS")
        if self.criteria_min_hour > self.criteria_max_hour:
            raise ValueError("CRITERIA_MIN_HOUR must not exceed CRITERIA_MAX_HOUR")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
