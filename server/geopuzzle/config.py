"""Server configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: GEOPUZZLE_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class StorageConfig:
    backend: str = "file"
    base_dir: str = "data/geopuzzle"


@dataclass
class WalkConfig:
    collection_radius_m: float = 30.0
    min_radius_m: float = 10.0
    max_radius_m: float = 100.0
    position_max_age_seconds: float = 5.0
    position_timeout_seconds: float = 10.0
    position_queue_size: int = 100
    error_history: int = 20


@dataclass
class TilingConfig:
    fragment_format: str = "PNG"
    max_image_bytes: int = 20 * 1024 * 1024


@dataclass
class LimitsConfig:
    active_window_seconds: float = 120.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"
    file: str = ""


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    walk: WalkConfig = field(default_factory=WalkConfig)
    tiling: TilingConfig = field(default_factory=TilingConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "GEOPUZZLE_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "GEOPUZZLE_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "GEOPUZZLE_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "GEOPUZZLE_STORAGE_BACKEND": lambda v: setattr(config.storage, "backend", v),
        "GEOPUZZLE_STORAGE_BASE_DIR": lambda v: setattr(config.storage, "base_dir", v),
        "GEOPUZZLE_WALK_RADIUS": lambda v: setattr(config.walk, "collection_radius_m", float(v)),
        "GEOPUZZLE_WALK_MAX_AGE": lambda v: setattr(config.walk, "position_max_age_seconds", float(v)),
        "GEOPUZZLE_WALK_TIMEOUT": lambda v: setattr(config.walk, "position_timeout_seconds", float(v)),
        "GEOPUZZLE_TILING_FORMAT": lambda v: setattr(config.tiling, "fragment_format", v),
        "GEOPUZZLE_TILING_MAX_IMAGE_BYTES": lambda v: setattr(config.tiling, "max_image_bytes", int(v)),
        "GEOPUZZLE_LIMITS_ACTIVE_WINDOW": lambda v: setattr(config.limits, "active_window_seconds", float(v)),
        "GEOPUZZLE_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "GEOPUZZLE_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
        "GEOPUZZLE_LOG_FILE": lambda v: setattr(config.logging, "file", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path(os.environ.get("GEOPUZZLE_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section in ("server", "storage", "walk", "tiling", "limits", "logging"):
            target = getattr(config, section)
            for k, v in (raw.get(section) or {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
