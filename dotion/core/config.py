"""
Configuration management for Dotion.

This module handles loading and validating configuration from YAML files
and environment variables using Pydantic for type safety.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from .errors import handle_missing_config

# Load environment variables from .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
DATA_DIR = PROJECT_ROOT / "data"


class GeneralConfig(BaseModel):
    """General configuration."""
    name: str = "Dotion"
    version: str = "0.1.0"
    debug: bool = False
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)
    requests_per_minute: int = Field(default=120, ge=1)
    cors_origins: List[str] = Field(default_factory=lambda: [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ])


class CalendarConfig(BaseModel):
    """Calendar window configuration."""
    window_days: int = Field(default=7, ge=1, le=62)
    week_start: str = Field(default="monday", pattern="^(monday|sunday)$")
    max_results: int = Field(default=250, ge=1, le=2500)


class LLMConfig(BaseModel):
    """Chat model configuration."""
    model: str = "gpt-4o"
    base_url: str = "https://api.openai.com/v1"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout: int = Field(default=60, ge=1)


class AuthConfig(BaseModel):
    """OAuth / cookie configuration."""
    scopes: List[str] = Field(default_factory=lambda: [
        "openid",
        "email",
        "profile",
        "https://www.googleapis.com/auth/calendar",
    ])
    secure_cookies: Optional[bool] = None  # None = follow DOTION_ENV


class DesktopConfig(BaseModel):
    """Desktop app control configuration."""
    enabled: bool = False
    allowed_apps: Optional[List[str]] = None


class DotionConfig(BaseModel):
    """Main Dotion configuration."""
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    desktop: DesktopConfig = Field(default_factory=DesktopConfig)


class EnvSettings(BaseSettings):
    """Environment variables settings."""

    # Model provider
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")

    # Google OAuth
    google_client_id: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = Field(default=None, alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: Optional[str] = Field(default=None, alias="GOOGLE_REDIRECT_URI")

    # Calendar
    google_calendar_id: Optional[str] = Field(default=None, alias="GOOGLE_CALENDAR_ID")
    google_timezone: str = Field(default="UTC", alias="GOOGLE_TIMEZONE")

    # Deployment
    dotion_env: str = Field(default="development", alias="DOTION_ENV")

    @field_validator("google_timezone", mode="before")
    @classmethod
    def validate_timezone(cls, v):
        """Blank timezone falls back to UTC."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return "UTC"
        return v.strip()

    @property
    def is_production(self) -> bool:
        return self.dotion_env.lower() == "production"

    def require_calendar_id(self) -> str:
        """Return the configured calendar id or raise ConfigurationError."""
        if not self.google_calendar_id:
            raise handle_missing_config("calendar_id", "GOOGLE_CALENDAR_ID")
        return self.google_calendar_id

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        populate_by_name = True


def load_yaml_config(config_path: Path | str | None = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = CONFIG_DIR / "settings.yaml"

    config_path = Path(config_path)

    if not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_config(config_path: Path | str | None = None) -> DotionConfig:
    """
    Load and return the Dotion configuration.

    Missing sections fall back to defaults.
    """
    yaml_config = load_yaml_config(config_path)
    return DotionConfig(**yaml_config)


def get_env_settings() -> EnvSettings:
    """Get environment settings."""
    return EnvSettings()


# Global configuration instances (lazy loaded)
_config: Optional[DotionConfig] = None
_env_settings: Optional[EnvSettings] = None


def config() -> DotionConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = get_config()
    return _config


def env() -> EnvSettings:
    """Get the global environment settings instance."""
    global _env_settings
    if _env_settings is None:
        _env_settings = get_env_settings()
    return _env_settings


def check_config(settings: Optional[EnvSettings] = None) -> List[str]:
    """
    List missing boundary settings.

    Returns:
        Names of required environment variables that are not set.
    """
    settings = settings or env()
    required = {
        "OPENAI_API_KEY": settings.openai_api_key,
        "GOOGLE_CLIENT_ID": settings.google_client_id,
        "GOOGLE_CLIENT_SECRET": settings.google_client_secret,
        "GOOGLE_REDIRECT_URI": settings.google_redirect_uri,
        "GOOGLE_CALENDAR_ID": settings.google_calendar_id,
    }
    return [name for name, value in required.items() if not value]
