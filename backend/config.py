"""
PharmaGuard settings, read from the environment once per process.
"""

import os
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

logger = logging.getLogger("PharmaGuard.Config")

DEFAULT_MAX_UPLOAD_MB = 50
DEFAULT_LOG_LEVEL = "INFO"
ALLOWED_EXTENSIONS = (".vcf",)


@dataclass(frozen=True)
class Settings:
    max_upload_bytes: int
    log_level: str
    cors_origins: Tuple[str, ...]
    allowed_extensions: Tuple[str, ...] = ALLOWED_EXTENSIONS


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"{name}={raw!r} must be positive, using default {default}")
        return default
    return value


def _log_level_from_env(name: str, default: str) -> str:
    level = os.environ.get(name, default).strip().upper()
    # getLevelName returns an int only for registered level names
    if not isinstance(logging.getLevelName(level), int):
        logger.warning(f"{name}={level!r} is not a logging level, using default {default}")
        return default
    return level


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build Settings from PHARMAGUARD_* environment variables."""
    max_mb = _int_from_env("PHARMAGUARD_MAX_UPLOAD_MB", DEFAULT_MAX_UPLOAD_MB)
    origins = os.environ.get("PHARMAGUARD_CORS_ORIGINS", "*")
    return Settings(
        max_upload_bytes=max_mb * 1024 * 1024,
        log_level=_log_level_from_env("PHARMAGUARD_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
    )
