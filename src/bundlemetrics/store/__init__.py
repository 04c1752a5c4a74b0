"""Hand-written data access over the bundler tables."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .archives import ArchiveService
from .database import (
    CascadeDeleteError,
    Database,
    InvalidIdentifierError,
    StoreError,
)
from .files import FileService
from .jobs import CascadeDeleteResult, JobService
from .metrics import InsertOutcome, MetricsService

__all__ = [
    "ArchiveService",
    "CascadeDeleteError",
    "CascadeDeleteResult",
    "Database",
    "FileService",
    "InsertOutcome",
    "InvalidIdentifierError",
    "JobService",
    "MetricsService",
    "Services",
    "StoreError",
    "open_services",
]


@dataclass(slots=True)
class Services:
    database: Database
    files: FileService
    archives: ArchiveService
    jobs: JobService
    metrics: MetricsService


def open_services(db_path: Path, *, timeout_seconds: float = 30.0, logger: logging.Logger | None = None) -> Services:
    """Wire the services together over one database; nothing is looked up at runtime."""
    database = Database(db_path, timeout_seconds=timeout_seconds, logger=logger)
    files = FileService(database, logger)
    archives = ArchiveService(database, files, logger)
    jobs = JobService(database, archives, logger)
    metrics = MetricsService(database, logger)
    return Services(database=database, files=files, archives=archives, jobs=jobs, metrics=metrics)
