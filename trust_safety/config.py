from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str
    admin_token_secret: str
    admin_profile_ids: str = ""
    admin_token_expiry_hours: int = 12
    cors_allow_origins: str = "http://localhost:3000"

    store_timeout_seconds: float = 2.0
    rate_limit_fail_open: bool = True
    default_ip_max_requests: int = 60
    default_ip_window_minutes: int = 60
    default_profile_max_requests: int = 30
    default_profile_window_minutes: int = 60
    pattern_window_minutes: int = 60

    rapid_actions_medium: int = 101
    rapid_actions_high: int = 301
    rapid_actions_critical: int = 501
    multiple_accounts_medium: int = 4
    multiple_accounts_high: int = 6
    multiple_accounts_critical: int = 11
    coordinated_profiles_low: int = 3
    coordinated_profiles_medium: int = 5
    coordinated_profiles_high: int = 8
    coordinated_profiles_critical: int = 12

    risk_band_medium: float = 5.0
    risk_band_high: float = 7.0
    risk_band_critical: float = 9.0

    farming_cooldown_minutes: int = 60
    farming_event_threshold: int = 1
    reputation_pattern_min_actions: int = 50
    reputation_pattern_max_sources: int = 5
    reputation_rapid_gain_points: int = 1000

    escalation_age_hours: float = 24.0
    escalation_priority_step: int = 10
    escalation_priority_cap: int = 100
    escalation_risk_step: float = 0.0
    escalation_sweep_interval_minutes: float = 60.0
    activity_retention_days: int = 30

    ops_event_buffer_size: int = 500

    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_seconds: int = 30
    db_echo_sql: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_store_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("STORE_TIMEOUT_SECONDS must be positive")
        return value

    @field_validator("farming_event_threshold")
    @classmethod
    def validate_farming_threshold(cls, value: int) -> int:
        if value < 1:
            raise ValueError("FARMING_EVENT_THRESHOLD must be at least 1")
        return value

    def admin_profile_id_list(self) -> list[str]:
        return [item.strip().lower() for item in self.admin_profile_ids.split(",") if item.strip()]

    def cors_allow_origin_list(self) -> list[str]:
        return [item.strip() for item in self.cors_allow_origins.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
