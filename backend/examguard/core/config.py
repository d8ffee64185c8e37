import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    port: int = 8000
    environment: str = "development"

    postgres_user: str = os.getenv("POSTGRES_USER", "user")
    postgres_password: str = os.getenv("POSTGRES_PASSWORD", "password")
    postgres_db: str = os.getenv("POSTGRES_DB", "examguard_db")
    postgres_host: str = os.getenv("POSTGRES_HOST", "db")
    postgres_port: int = 5432

    # Full async URL, e.g. sqlite+aiosqlite:///./examguard.db; wins over the postgres_* parts
    sqlalchemy_database_url: Optional[str] = None

    @property
    def async_database_url(self) -> str:
        if self.sqlalchemy_database_url:
            return self.sqlalchemy_database_url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    cors_origins_str: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins_str.split(",")]

    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    cache_enabled: bool = True
    cache_default_ttl: int = 600
    exam_stats_cache_ttl: int = 10

    slow_request_threshold: float = 1.0

    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

    default_timezone: str = "UTC"
    timezone_display_format: str = "%d.%m.%Y, %H:%M:%S"

    # Escalation policy
    pause_violation_threshold: int = 1
    auto_submit_violation_threshold: int = 3
    auto_submit_grace_seconds: float = 2.0

    # Face-sample classification
    look_away_alert_threshold: int = 3
    status_broadcast_interval_seconds: float = 10.0

    # Incident rate limit per (session, incident type)
    incident_rate_limit_count: int = 3
    incident_rate_limit_window_seconds: int = 60

    # Countdown
    timer_tick_seconds: float = 1.0
    timer_persist_every_ticks: int = 10

    ws_outbound_queue_size: int = 100

    default_exam_duration_minutes: int = 180
    default_total_questions: int = 20
    stale_session_grace_seconds: int = 300

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
