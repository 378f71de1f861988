"""Core modules for Dotion."""

from .config import DATA_DIR, PROJECT_ROOT, config, env
from .errors import (
    ConfigurationError,
    DotionError,
    ParseError,
    ToolArgumentError,
    Unauthenticated,
    UpstreamError,
    ValidationError,
)
from .logger import setup_logging

__all__ = [
    "DATA_DIR",
    "PROJECT_ROOT",
    "config",
    "env",
    "setup_logging",
    "DotionError",
    "Unauthenticated",
    "ValidationError",
    "ToolArgumentError",
    "UpstreamError",
    "ParseError",
    "ConfigurationError",
]
