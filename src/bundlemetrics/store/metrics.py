from __future__ import annotations

import logging
import sqlite3
import time
from enum import Enum

from ..app_logging import get_logger, log_with_fields
from ..derivation import compression_percentage
from ..models import ArchiveType, JobMetrics
from ..states import JobState
from ..utils import elapsed_ms
from .database import DECODE_ERRORS, Database, ordered_bounds, require_job_id

TABLE_NAME = "BUNDLER_JOB_METRICS"

_COLUMNS = (
    "ARCHIVE_SIZE, ARCHIVE_TYPE, ELAPSED_TIME, JOB_ID, JOB_STATE, NUM_ARCHIVES, "
    "NUM_ARCHIVES_COMPLETE, NUM_FILES, NUM_FILES_COMPLETE, START_TIME, "
    "TOTAL_COMPRESSED_SIZE, TOTAL_SIZE, USER_NAME"
)

_DUPLICATE_ERROR_NAMES = {"SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE"}


class InsertOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FAILED = "failed"


def _row_to_metrics(row: sqlite3.Row) -> JobMetrics:
    total_size = int(row["TOTAL_SIZE"])
    total_compressed_size = int(row["TOTAL_COMPRESSED_SIZE"])
    return JobMetrics(
        job_id=row["JOB_ID"],
        archive_type=ArchiveType.from_text(row["ARCHIVE_TYPE"]),
        archive_size=int(row["ARCHIVE_SIZE"]),
        compression_percentage=compression_percentage(total_size, total_compressed_size),
        elapsed_time=int(row["ELAPSED_TIME"]),
        job_state=JobState.from_text(row["JOB_STATE"]),
        num_archives=int(row["NUM_ARCHIVES"]),
        num_archives_complete=int(row["NUM_ARCHIVES_COMPLETE"]),
        num_files=int(row["NUM_FILES"]),
        num_files_complete=int(row["NUM_FILES_COMPLETE"]),
        start_time=int(row["START_TIME"]),
        total_compressed_size=total_compressed_size,
        total_size=total_size,
        user_name=row["USER_NAME"] or "",
    )


def _is_duplicate_key(exc: sqlite3.IntegrityError) -> bool:
    if getattr(exc, "sqlite_errorname", None) in _DUPLICATE_ERROR_NAMES:
        return True
    return "UNIQUE constraint failed" in str(exc)


class MetricsService:
    def __init__(self, database: Database, logger: logging.Logger | None = None) -> None:
        self.database = database
        self.logger = logger or get_logger()

    def get_job_ids(self) -> set[str]:
        started = time.monotonic()
        try:
            with self.database.connection() as conn:
                rows = conn.execute(f"SELECT JOB_ID FROM {TABLE_NAME}").fetchall()
        except sqlite3.Error as exc:
            self.database.log_store_error("get_metrics_job_ids", exc)
            return set()
        job_ids = {str(row["JOB_ID"]) for row in rows}
        self.database.log_rows("get_metrics_job_ids", len(job_ids), elapsed_ms(started))
        return job_ids

    def job_id_exists(self, job_id: str) -> bool:
        job_id = require_job_id(job_id, "job_id_exists", self.logger)
        try:
            with self.database.connection() as conn:
                row = conn.execute(f"SELECT 1 FROM {TABLE_NAME} WHERE JOB_ID = ? LIMIT 1", (job_id,)).fetchone()
        except sqlite3.Error as exc:
            self.database.log_store_error("job_id_exists", exc, job_id=job_id)
            return False
        return row is not None

    def get_metrics(self, job_id: str) -> JobMetrics | None:
        job_id = require_job_id(job_id, "get_metrics", self.logger)
        try:
            with self.database.connection() as conn:
                row = conn.execute(f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE JOB_ID = ?", (job_id,)).fetchone()
        except sqlite3.Error as exc:
            self.database.log_store_error("get_metrics", exc, job_id=job_id)
            return None
        if row is None:
            return None
        try:
            return _row_to_metrics(row)
        except DECODE_ERRORS as exc:
            self.database.log_undecodable_row("get_metrics", exc, job_id=job_id)
            return None

    def get_metrics_by_date(self, start_time: int, end_time: int) -> list[JobMetrics]:
        """Records whose start time falls strictly between the bounds, newest first."""
        start_time, end_time = ordered_bounds(start_time, end_time, "get_metrics_by_date", self.logger)
        started = time.monotonic()
        try:
            with self.database.connection() as conn:
                rows = conn.execute(
                    f"""
                    SELECT {_COLUMNS} FROM {TABLE_NAME}
                    WHERE START_TIME > ? AND START_TIME < ?
                    ORDER BY START_TIME DESC
                    """,
                    (start_time, end_time),
                ).fetchall()
        except sqlite3.Error as exc:
            self.database.log_store_error("get_metrics_by_date", exc)
            return []
        records: list[JobMetrics] = []
        for row in rows:
            try:
                records.append(_row_to_metrics(row))
            except DECODE_ERRORS as exc:
                self.database.log_undecodable_row("get_metrics_by_date", exc, job_id=row["JOB_ID"])
        self.database.log_rows("get_metrics_by_date", len(records), elapsed_ms(started))
        return records

    def count(self) -> int:
        try:
            with self.database.connection() as conn:
                row = conn.execute(f"SELECT COUNT(*) AS count FROM {TABLE_NAME}").fetchone()
        except sqlite3.Error as exc:
            self.database.log_store_error("count_metrics", exc)
            return 0
        return int(row["count"]) if row else 0

    def insert_metrics(self, metrics: JobMetrics) -> InsertOutcome:
        """Insert one record. A second insert for the same job id yields DUPLICATE."""
        job_id = require_job_id(metrics.job_id, "insert_metrics", self.logger)
        started = time.monotonic()
        try:
            with self.database.transaction() as conn:
                conn.execute(
                    f"INSERT INTO {TABLE_NAME}({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        metrics.archive_size,
                        metrics.archive_type.value,
                        metrics.elapsed_time,
                        job_id,
                        metrics.job_state.value,
                        metrics.num_archives,
                        metrics.num_archives_complete,
                        metrics.num_files,
                        metrics.num_files_complete,
                        metrics.start_time,
                        metrics.total_compressed_size,
                        metrics.total_size,
                        metrics.user_name,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            if _is_duplicate_key(exc):
                log_with_fields(self.logger, logging.INFO, "metrics_duplicate", job_id=job_id)
                return InsertOutcome.DUPLICATE
            self.database.log_store_error("insert_metrics", exc, job_id=job_id)
            return InsertOutcome.FAILED
        except sqlite3.Error as exc:
            self.database.log_store_error("insert_metrics", exc, job_id=job_id)
            return InsertOutcome.FAILED
        log_with_fields(
            self.logger,
            logging.DEBUG,
            "metrics_inserted",
            job_id=job_id,
            elapsed_ms=elapsed_ms(started),
        )
        return InsertOutcome.INSERTED
