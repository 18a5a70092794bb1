from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Stockledger Inventory Engine"
    env: str = "dev"

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)
    db_statement_timeout_ms: int = Field(default=5000, ge=100, le=600_000)
    db_lock_timeout_ms: int = Field(default=2000, ge=50, le=600_000)

    # LEDGER
    ledger_retry_attempts: int = Field(default=3, ge=1, le=10)
    ledger_retry_backoff_seconds: float = Field(default=0.05, ge=0, le=5)
    stock_history_default_limit: int = Field(default=50, ge=1, le=1000)

    # RESERVATIONS
    reservation_default_ttl_minutes: int = Field(default=1440, ge=1)
    reservation_max_ttl_minutes: int = Field(default=10_080, ge=1)
    reservation_sweep_enabled: bool = True
    reservation_sweep_interval_seconds: int = Field(default=900, ge=1, le=86_400)
    reservation_sweep_batch_size: int = Field(default=50, ge=1, le=5000)

    # ANALYTICS
    low_stock_default_threshold: int = Field(default=5, ge=0)
    sales_velocity_window_days: int = Field(default=30, ge=1, le=365)
    forecast_horizon_days: int = Field(default=30, ge=1, le=365)
    forecast_full_confidence_samples: int = Field(default=20, ge=1)
    reorder_lead_time_days: int = Field(default=14, ge=0, le=365)
    aging_slow_after_days: int = Field(default=90, ge=1)
    aging_dead_after_days: int = Field(default=180, ge=1)
    safety_stock_window_days: int = Field(default=60, ge=1, le=365)
    safety_stock_lead_time_days: int = Field(default=7, ge=0, le=365)
    reservation_alert_expiration_rate: float = Field(default=20.0, ge=0, le=100)
    reservation_alert_low_stock_units: int = Field(default=5, ge=0)

    # TRANSFERS
    transfer_suggestion_cover_days: int = Field(default=14, ge=1, le=365)
    transfer_suggestion_limit: int = Field(default=20, ge=1, le=500)

    @field_validator("env", mode="before")
    @classmethod
    def normalize_env(cls, value: str | None) -> str:
        if value is None:
            return "dev"
        cleaned = str(value).strip().lower()
        return cleaned or "dev"

    @model_validator(mode="after")
    def validate_thresholds(self) -> "Settings":
        if self.aging_slow_after_days >= self.aging_dead_after_days:
            raise ValueError("AGING_SLOW_AFTER_DAYS must be lower than AGING_DEAD_AFTER_DAYS")
        if self.reservation_default_ttl_minutes > self.reservation_max_ttl_minutes:
            raise ValueError("RESERVATION_DEFAULT_TTL_MINUTES cannot exceed RESERVATION_MAX_TTL_MINUTES")
        return self

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        if self.env not in {"prod", "production"}:
            return self

        if self.database_url.lower().startswith("sqlite"):
            raise ValueError("DATABASE_URL cannot point at SQLite in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
