"""
Configuration module for the grazing simulation engine
Centralizes all environment variable access and configuration settings
"""

import os
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Model and farm definitions shipped with the package
PACKAGE_DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables

    All settings can be overridden via environment variables.
    Default values are provided for development.
    """

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "human"
    log_file: Optional[str] = None
    log_max_bytes: int = 10 * 1024 * 1024  # 10 MB
    log_backup_count: int = 5

    # Environment
    env: str = "development"  # "development" or "production"
    debug: bool = False

    # CORS configuration
    allowed_origins: str = "*"  # Comma-separated list of origins

    # Request limits
    max_request_size: int = 1 * 1024 * 1024  # 1 MB
    simulation_timeout: int = 60  # seconds

    # Data locations
    models_dir: str = os.path.join(PACKAGE_DATA_DIR, "models")
    farm_config: str = os.path.join(PACKAGE_DATA_DIR, "farm.yaml")
    data_dir: str = "data"
    default_model: str = "grazing-rotation"
    weather_archive_file: str = "weather-archive.json"
    rotation_history_file: str = "rotation-history.json"
    planting_schedule_file: str = "planting-schedule.json"

    # State estimation
    historical_days: int = Field(60, gt=0)
    # Calibration parameter: scales forage stock initials to approximate the
    # start of the historical window. Tuned on one farm, not derived.
    forage_correction_factor: float = 1.4

    # Rotation planning
    days_per_rotation: int = Field(14, gt=0)
    min_rest_days: int = Field(0, ge=0)
    moves_ahead: int = Field(2, ge=1, le=2)

    # Scenario projection
    hay_supplement_factor: float = 0.4
    projection_days: int = Field(90, gt=0)

    # Weather preprocessing
    default_et: float = 1.5  # mm/day used when the archive has no value
    moisture_window: int = 14  # days in the rolling water balance

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def log_format_json(self) -> bool:
        """Check if logging should use JSON format"""
        return self.log_format.lower() == "json"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.env.lower() == "production"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Get allowed origins as a list"""
        origins = [origin.strip() for origin in self.allowed_origins.split(",")]
        if "*" in origins:
            return ["*"]
        return origins

    def data_path(self, filename: str) -> str:
        """Resolve a farm record filename against data_dir"""
        return os.path.join(self.data_dir, filename)

    def __init__(self, **kwargs):
        """Initialize settings with environment variable overrides"""
        super().__init__(**kwargs)
        # Force JSON logging in production if not explicitly set
        if self.is_production and not self.log_format_json:
            self.log_format = "json"


# Global settings instance (singleton)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton pattern)

    Returns:
        Settings instance with current configuration
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
