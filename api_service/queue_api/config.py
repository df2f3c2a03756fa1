"""Configuration module for the ticketing API service.

This module defines application-level settings using Pydantic's BaseSettings
to load values from environment variables or default values. It also exposes
a global `settings` instance used throughout the application.
"""

from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    mongo_username: str = "queue_user"
    mongo_password: str = "queue_password"
    mongo_database_name: str = "hospital_queue_db"
    mongo_host: str = "localhost"
    mongo_port: int = 27017

    ml_service_url: str = "http://ml_service:8001"
    wait_time_oracle: Literal["heuristic", "external"] = "heuristic"
    oracle_timeout_seconds: float = 0.3

    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"

    # Calendar days, working hours and ticket numbers are all evaluated here.
    local_timezone: str = "Asia/Kolkata"
    booking_lead_minutes: int = 30
    cancellation_cutoff_minutes: int = 30
    conflict_window_minutes: int = 30

    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins_list(self) -> List[str]:
        """Split cors_origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


# Global settings instance used throughout the API service.
settings = Settings()
