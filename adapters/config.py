"""Configuration loading: config.yaml plus environment overrides.

Environment variables win over the file: DATABASE_URL, REDIS_URL, LOG_LEVEL.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

import yaml

from domain.models import SelectionMode
from domain.settings import EngineSettings

CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config.yaml")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class AppConfig:
    database_url: str | None = None
    redis_url: str | None = None
    cache_ttl: int = 3600
    log_level: str = "INFO"
    engine: EngineSettings = field(default_factory=EngineSettings)


def engine_settings(section: dict | None) -> EngineSettings:
    """Build EngineSettings from the ``engine`` section; unknown keys are rejected."""
    section = dict(section or {})
    if "selection_mode" in section:
        section["selection_mode"] = SelectionMode(section["selection_mode"])
    try:
        return EngineSettings(**section)
    except TypeError as exc:
        raise ValueError(f"Invalid engine configuration: {exc}") from exc


def load_config(path: str | None = None) -> AppConfig:
    """Read *path* (default: config.yaml at the project root) and apply env overrides."""
    path = path or CONFIG_PATH
    raw = {}
    if os.path.exists(path):
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    database = raw.get("database", {}) or {}
    cache = raw.get("cache", {}) or {}
    logging_section = raw.get("logging", {}) or {}
    return AppConfig(
        database_url=os.environ.get("DATABASE_URL") or database.get("url"),
        redis_url=os.environ.get("REDIS_URL") or cache.get("redis_url"),
        cache_ttl=int(cache.get("ttl", 3600)),
        log_level=(os.environ.get("LOG_LEVEL") or logging_section.get("level") or "INFO").upper(),
        engine=engine_settings(raw.get("engine")),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
