"""
Hive Monitor - Configuration
All settings loaded from environment variables
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str

    # Operator auth
    secret_key: str = "change-me"
    token_ttl_hours: int = 24
    admin_username: str = "admin"
    admin_password: str = "admin"

    # Device liveness (seconds since last reading)
    online_threshold_seconds: int = 600
    lvd_online_threshold_seconds: int = 300
    # Backfilled timestamps may run ahead of server time by this much
    max_clock_skew_seconds: int = 300

    # Request handling
    request_timeout_seconds: float = 12.0
    policy_cache_seconds: float = 5.0
    chart_max_points: int = 200

    # Bootstrap
    seed_devices: str = "Alpha,Bravo,Charlie,Delta"  # Comma-separated device names
    seed_on_startup: bool = True

    # Display timezone for charts
    tz: str = "Africa/Lagos"

    log_level: str = "INFO"

    @property
    def seed_device_names(self) -> list[str]:
        """Parse seed device names from comma-separated string."""
        if not self.seed_devices:
            return []
        return [name.strip() for name in self.seed_devices.split(",") if name.strip()]

    class Config:
        env_file = ".env"  # Fallback for local development
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
