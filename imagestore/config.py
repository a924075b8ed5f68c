"""
Configuration management for the image store.

Loads and validates configuration from environment variables with sensible defaults.
The upload directory is created if missing and checked for write permission at startup.
"""

import os
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

TRUE_WORDS = ("1", "true", "yes", "on")
FALSE_WORDS = ("0", "false", "no", "off")


def _fail(message: str) -> None:
    logger.critical(f"Configuration error: {message}")
    sys.exit(1)


def _env_dir(name: str, default: str) -> Path:
    """Resolve a directory setting, creating it; exit unless it is a writable dir."""
    raw = os.environ.get(name, default)
    path = Path(raw).expanduser().resolve()

    if not path.exists():
        logger.info(f"Creating directory: {path}")
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _fail(f"cannot create {name}={raw}: {exc}")

    if not path.is_dir():
        _fail(f"{name}={raw} resolves to {path}, which is not a directory")
    if not os.access(path, os.W_OK):
        _fail(f"{name}={raw}: {path} is not writable")
    return path


def _env_int(name: str, default: int, low: Optional[int] = None, high: Optional[int] = None) -> int:
    raw = os.environ.get(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        _fail(f"{name}={raw} is not an integer")

    if (low is not None and value < low) or (high is not None and value > high):
        _fail(f"{name}={value} must be within [{low}, {high}]")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default

    word = raw.strip().lower()
    if word not in TRUE_WORDS + FALSE_WORDS:
        _fail(f"{name}={raw} is not a boolean (one of {', '.join(TRUE_WORDS + FALSE_WORDS)})")
    return word in TRUE_WORDS


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Storage
    image_dir: Path

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    environment: str = "development"
    max_upload_mb: int = 10
    cors_origin: str = "*"

    # Listing cache
    cache_ttl_ms: int = 5000
    scan_max_seconds: int = 30
    cache_warm_interval_seconds: int = 0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    debug_requests: bool = False
    slow_request_ms: int = 1000

    @property
    def production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load and validate configuration from environment variables.

        Exits with error code 1 if any validation fails.
        """
        logger.info("Loading configuration from environment variables...")

        image_dir = _env_dir("IMAGE_DIR", "./images")
        logger.info(f"  IMAGE_DIR: {image_dir}")

        log_level = os.environ.get("IMAGESTORE_LOG_LEVEL", "INFO").upper()
        if log_level not in VALID_LOG_LEVELS:
            logger.warning(
                f"Invalid log level: {log_level}, using INFO"
            )
            log_level = "INFO"

        log_file_str = os.environ.get("IMAGESTORE_LOG_FILE", "").strip()

        environment = os.environ.get("IMAGESTORE_ENV", "development").strip().lower()

        config = cls(
            image_dir=image_dir,
            host=os.environ.get("IMAGESTORE_HOST", "0.0.0.0"),
            port=_env_int("IMAGESTORE_PORT", 3000, low=1, high=65535),
            environment=environment,
            max_upload_mb=_env_int("MAX_UPLOAD_MB", 10, low=0, high=4096),
            cors_origin=os.environ.get("CORS_ORIGIN", "*"),
            cache_ttl_ms=_env_int("CACHE_TTL_MS", 5000, low=0, high=86_400_000),
            scan_max_seconds=_env_int("SCAN_MAX_SECONDS", 30, low=1, high=3600),
            cache_warm_interval_seconds=_env_int(
                "CACHE_WARM_INTERVAL_SECONDS", 0, low=0, high=86400
            ),
            log_level=log_level,
            log_file=Path(log_file_str).expanduser() if log_file_str else None,
            debug_requests=_env_bool("IMAGESTORE_DEBUG_REQUESTS", False),
            slow_request_ms=_env_int("SLOW_REQUEST_MS", 1000, low=0),
        )

        logger.info(f"  CACHE_TTL_MS: {config.cache_ttl_ms}")
        logger.info(f"  IMAGESTORE_ENV: {config.environment}")
        logger.info("Configuration loaded and validated successfully")
        return config
