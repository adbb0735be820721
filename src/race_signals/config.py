from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "racing-market-signals"
    debug: bool = False

    database_url_async: str = "postgresql+asyncpg://rs:rs@localhost:5432/race_signals"
    database_url_sync: str = "postgresql+psycopg://rs:rs@localhost:5432/race_signals"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    mock_mode: bool = True
    mock_feed_path: str = "data/mock/racecards.json"

    feed_base_url: str = "https://api.theracingapi.com/v1"
    feed_username: str | None = None
    feed_password: str | None = None
    feed_timeout_seconds: float = 12.0
    feed_max_retries: int = 2

    sources_config_path: str = "config/sources.yml"
    signal_source_id: str | None = "Betfair"

    market_timezone: str = "Europe/London"
    active_window_start: str = "08:00"
    active_window_end: str = "21:00"
    monitor_interval_sec: int = 60
    ingest_concurrency: int = 8

    # absolute decimal-odds delta below which a new price is treated as jitter
    price_noise_floor: float = 0.0

    mover_threshold_pct: float = 10.0
    persistent_mover_threshold_pct: float = 20.0

    estimators: list[str] = ["mlp", "rf", "xgboost", "benter", "ensemble"]
    edge_estimator: str = "ensemble"
    value_edge_threshold: float = 1.10
    probability_scale: float = 1.0
    top_pick_min_agree: int = 3


settings = Settings()
