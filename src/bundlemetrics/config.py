from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(slots=True)
class DatabaseConfig:
    path: Path
    timeout_seconds: float = 30.0


@dataclass(slots=True)
class CollectorConfig:
    interval_seconds: int = 3600
    workers: int = 1
    job_timeout_seconds: float = 60.0


@dataclass(slots=True)
class LoggingConfig:
    path: Path | None = None
    level: str = "INFO"


@dataclass(slots=True)
class AppConfig:
    database: DatabaseConfig
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    database_raw = _require(raw, "database", "root")
    if not isinstance(database_raw, dict):
        raise ValueError("`database` must be a mapping")
    collector_raw = _section(raw, "collector")
    logging_raw = _section(raw, "logging")

    def to_path(value: object) -> Path:
        output = Path(str(value)).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    database = DatabaseConfig(
        path=to_path(_require(database_raw, "path", "database")),
        timeout_seconds=float(database_raw.get("timeout_seconds", 30.0)),
    )
    if database.timeout_seconds <= 0:
        raise ValueError("`database.timeout_seconds` must be > 0")

    collector = CollectorConfig(
        interval_seconds=int(collector_raw.get("interval_seconds", 3600)),
        workers=int(collector_raw.get("workers", 1)),
        job_timeout_seconds=float(collector_raw.get("job_timeout_seconds", 60.0)),
    )
    if collector.interval_seconds < 1:
        raise ValueError("`collector.interval_seconds` must be >= 1")
    if collector.workers < 1:
        raise ValueError("`collector.workers` must be >= 1")
    if collector.job_timeout_seconds <= 0:
        raise ValueError("`collector.job_timeout_seconds` must be > 0")

    log_path_raw = logging_raw.get("path")
    logging_config = LoggingConfig(
        path=to_path(log_path_raw) if log_path_raw else None,
        level=str(logging_raw.get("level", "INFO")).upper(),
    )
    if logging_config.level not in _LOG_LEVELS:
        raise ValueError(f"`logging.level` must be one of {sorted(_LOG_LEVELS)}")

    return AppConfig(database=database, collector=collector, logging=logging_config)


def ensure_local_paths(config: AppConfig) -> None:
    config.database.path.parent.mkdir(parents=True, exist_ok=True)
    if config.logging.path is not None:
        config.logging.path.parent.mkdir(parents=True, exist_ok=True)
