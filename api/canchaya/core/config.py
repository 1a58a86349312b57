"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "Canchaya"
    debug: bool = True
    api_prefix: str = "/api/v1"
    timezone: str = "America/Argentina/Buenos_Aires"
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://canchaya:canchaya@db:5432/canchaya"
    database_echo: bool = False

    # Redis (Celery broker + result backend, worker-to-API change relay)
    redis_url: str = "redis://redis:6379/0"
    change_relay_enabled: bool = True
    change_channel: str = "canchaya:changes"

    # Auth - tokens are issued by the external identity provider, we only verify them
    jwt_secret: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Pending booking expiry
    pending_ttl_minutes: int = 5
    sweep_interval_seconds: int = 60
    sweep_on_startup: bool = True

    # Courts
    default_operating_hours: str = "08:00-23:00"

    model_config = {"env_prefix": "CANCHAYA_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
