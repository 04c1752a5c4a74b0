"""SQLite connection scopes, schema and the validation shared by all services.

Every public service call opens its own connection and closes it before
returning; nothing holds a connection across a sweep.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..app_logging import get_logger, log_with_fields
from ..models import UnknownArchiveTypeError
from ..states import UnknownStateError

# Raised by the row decoders when a persisted enumeration token is unknown.
DECODE_ERRORS = (UnknownStateError, UnknownArchiveTypeError)

SCHEMA = """
CREATE TABLE IF NOT EXISTS JOBS (
    JOB_ID TEXT PRIMARY KEY,
    ARCHIVE_SIZE INTEGER NOT NULL DEFAULT 0,
    ARCHIVE_TYPE TEXT NOT NULL,
    END_TIME INTEGER NOT NULL DEFAULT 0,
    NUM_ARCHIVES INTEGER NOT NULL DEFAULT 0,
    NUM_ARCHIVES_COMPLETE INTEGER NOT NULL DEFAULT 0,
    NUM_FILES INTEGER NOT NULL DEFAULT 0,
    NUM_FILES_COMPLETE INTEGER NOT NULL DEFAULT 0,
    START_TIME INTEGER NOT NULL DEFAULT 0,
    JOB_STATE TEXT NOT NULL,
    TOTAL_SIZE INTEGER NOT NULL DEFAULT 0,
    TOTAL_SIZE_COMPLETE INTEGER NOT NULL DEFAULT 0,
    USER_NAME TEXT
);

CREATE TABLE IF NOT EXISTS ARCHIVE_JOBS (
    ID INTEGER PRIMARY KEY AUTOINCREMENT,
    ARCHIVE_FILE TEXT,
    ARCHIVE_ID INTEGER NOT NULL,
    ARCHIVE_STATE TEXT NOT NULL,
    ARCHIVE_TYPE TEXT NOT NULL,
    ARCHIVE_URL TEXT,
    END_TIME INTEGER NOT NULL DEFAULT 0,
    HASH_FILE TEXT,
    HASH_FILE_URL TEXT,
    HOST_NAME TEXT,
    JOB_ID TEXT NOT NULL,
    NUM_FILES INTEGER NOT NULL DEFAULT 0,
    SERVER_NAME TEXT,
    ARCHIVE_SIZE INTEGER NOT NULL DEFAULT 0,
    START_TIME INTEGER NOT NULL DEFAULT 0,
    UNIQUE (ARCHIVE_ID, JOB_ID)
);

CREATE TABLE IF NOT EXISTS FILE_ENTRY (
    ID INTEGER PRIMARY KEY AUTOINCREMENT,
    ARCHIVE_ID INTEGER NOT NULL,
    ARCHIVE_ENTRY_PATH TEXT,
    FILE_STATE TEXT NOT NULL,
    JOB_ID TEXT NOT NULL,
    PATH TEXT NOT NULL,
    FILE_SIZE INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS BUNDLER_JOB_METRICS (
    JOB_ID TEXT PRIMARY KEY,
    ARCHIVE_SIZE INTEGER NOT NULL DEFAULT 0,
    ARCHIVE_TYPE TEXT NOT NULL,
    ELAPSED_TIME INTEGER NOT NULL DEFAULT 0,
    JOB_STATE TEXT NOT NULL,
    NUM_ARCHIVES INTEGER NOT NULL DEFAULT 0,
    NUM_ARCHIVES_COMPLETE INTEGER NOT NULL DEFAULT 0,
    NUM_FILES INTEGER NOT NULL DEFAULT 0,
    NUM_FILES_COMPLETE INTEGER NOT NULL DEFAULT 0,
    START_TIME INTEGER NOT NULL DEFAULT 0,
    TOTAL_COMPRESSED_SIZE INTEGER NOT NULL DEFAULT 0,
    TOTAL_SIZE INTEGER NOT NULL DEFAULT 0,
    USER_NAME TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_start_time ON JOBS(START_TIME);
CREATE INDEX IF NOT EXISTS idx_archive_jobs_job ON ARCHIVE_JOBS(JOB_ID, ARCHIVE_ID);
CREATE INDEX IF NOT EXISTS idx_file_entry_job_archive ON FILE_ENTRY(JOB_ID, ARCHIVE_ID);
CREATE INDEX IF NOT EXISTS idx_metrics_start_time ON BUNDLER_JOB_METRICS(START_TIME);
"""


class StoreError(RuntimeError):
    pass


class InvalidIdentifierError(ValueError):
    pass


class CascadeDeleteError(StoreError):
    def __init__(self, job_id: str, step: str, reason: str) -> None:
        super().__init__(f"cascade delete of job {job_id} failed at step {step!r}: {reason}")
        self.job_id = job_id
        self.step = step
        self.reason = reason


class Database:
    def __init__(
        self,
        db_path: Path,
        *,
        timeout_seconds: float = 30.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db_path = db_path
        self.timeout_seconds = timeout_seconds
        self.logger = logger or get_logger()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout_seconds)
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection whose statements commit together or roll back together.

        The write lock is taken up front so concurrent writers wait on the
        busy timeout instead of failing on a lock upgrade.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            with conn:
                yield conn

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """Connection inside a read transaction, so several SELECTs see one state."""
        with self.connection() as conn:
            conn.execute("BEGIN")
            try:
                yield conn
            finally:
                conn.rollback()

    def init_schema(self) -> None:
        with self.connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()
        log_with_fields(self.logger, logging.INFO, "schema_initialized", db_path=str(self.db_path))

    def log_store_error(self, operation: str, exc: BaseException, **fields: object) -> None:
        log_with_fields(
            self.logger,
            logging.ERROR,
            "store_error",
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
            **fields,
        )

    def log_undecodable_row(self, operation: str, exc: BaseException, **fields: object) -> None:
        log_with_fields(
            self.logger,
            logging.WARNING,
            "undecodable_row",
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
            **fields,
        )

    def log_rows(self, operation: str, count: int, elapsed: int, **fields: object) -> None:
        log_with_fields(
            self.logger,
            logging.DEBUG,
            "rows_selected",
            operation=operation,
            count=count,
            elapsed_ms=elapsed,
            **fields,
        )


def require_job_id(job_id: object, operation: str, logger: logging.Logger) -> str:
    if not isinstance(job_id, str) or not job_id.strip():
        log_with_fields(
            logger,
            logging.WARNING,
            "invalid_identifier",
            operation=operation,
            field="job_id",
            value=repr(job_id),
        )
        raise InvalidIdentifierError(f"{operation}: job_id must be a non-empty string, got {job_id!r}")
    return job_id


def require_archive_id(archive_id: object, operation: str, logger: logging.Logger) -> int:
    if isinstance(archive_id, bool) or not isinstance(archive_id, int) or archive_id < 0:
        log_with_fields(
            logger,
            logging.WARNING,
            "invalid_identifier",
            operation=operation,
            field="archive_id",
            value=repr(archive_id),
        )
        raise InvalidIdentifierError(f"{operation}: archive_id must be an integer >= 0, got {archive_id!r}")
    return archive_id


def ordered_bounds(start: int, end: int, operation: str, logger: logging.Logger) -> tuple[int, int]:
    if start > end:
        log_with_fields(logger, logging.WARNING, "time_bounds_swapped", operation=operation, start=start, end=end)
        return end, start
    if start == end:
        log_with_fields(logger, logging.WARNING, "time_bounds_equal", operation=operation, start=start)
    return start, end


def require_parent_key(
    value: object,
    expected: object,
    field: str,
    operation: str,
    logger: logging.Logger,
) -> None:
    """Reject a child row whose key does not match the parent it is stored under."""
    if value != expected:
        log_with_fields(
            logger,
            logging.WARNING,
            "invalid_identifier",
            operation=operation,
            field=field,
            value=repr(value),
            expected=repr(expected),
        )
        raise InvalidIdentifierError(f"{operation}: {field} {value!r} does not match parent {expected!r}")
