from typing import List, Union
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # Application
    APP_NAME: str = "SLA Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./sla_engine.db"

    # CORS
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Recomputation scheduler
    SLA_SCHEDULER_ENABLED: bool = True
    SLA_RECOMPUTE_INTERVAL_SECONDS: int = 60
    SLA_SCHEDULER_WORKSPACES: List[str] = []  # Shard: empty means every workspace

    @field_validator("SLA_SCHEDULER_WORKSPACES", mode="before")
    @classmethod
    def assemble_workspace_shard(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    # Policy behaviour
    SLA_PROPAGATE_POLICY_EDITS: bool = False  # Re-project active instances when budgets change
    SLA_DEFAULT_TIMEZONE: str = "UTC"
    SLA_DEFAULT_WARNING_THRESHOLD: int = 80

    # Escalation delivery
    SLA_ESCALATION_WEBHOOK_TIMEOUT: float = 10.0

    # Server-sent events
    SSE_HEARTBEAT_SECONDS: float = 30.0
    SSE_QUEUE_MAXSIZE: int = 100

    # Monitoring & Performance Settings
    SLOW_REQUEST_THRESHOLD_MS: float = 1000.0  # Log requests slower than this (milliseconds)
    ENABLE_STRUCTURED_LOGGING: bool = True  # Use JSON structured logging
    ENABLE_PROMETHEUS_METRICS: bool = True  # Enable Prometheus metrics collection

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
