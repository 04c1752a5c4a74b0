from __future__ import annotations

import logging
import sqlite3
import time

from ..app_logging import get_logger, log_with_fields
from ..models import FileEntry
from ..states import FILE_STATES, JobState
from ..utils import elapsed_ms
from .database import (
    DECODE_ERRORS,
    Database,
    StoreError,
    require_archive_id,
    require_job_id,
    require_parent_key,
)

TABLE_NAME = "FILE_ENTRY"

_COLUMNS = "ID, ARCHIVE_ID, ARCHIVE_ENTRY_PATH, FILE_STATE, JOB_ID, PATH, FILE_SIZE"


def _row_to_file(row: sqlite3.Row) -> FileEntry:
    return FileEntry(
        id=int(row["ID"]),
        job_id=row["JOB_ID"],
        archive_id=int(row["ARCHIVE_ID"]),
        file_path=row["PATH"],
        entry_path=row["ARCHIVE_ENTRY_PATH"] or "",
        size=int(row["FILE_SIZE"]),
        file_state=JobState.from_text(row["FILE_STATE"]),
    )


def _file_values(entry: FileEntry) -> tuple[object, ...]:
    return (
        entry.archive_id,
        entry.entry_path,
        entry.file_state.value,
        entry.job_id,
        entry.file_path,
        entry.size,
    )


class FileService:
    def __init__(self, database: Database, logger: logging.Logger | None = None) -> None:
        self.database = database
        self.logger = logger or get_logger()

    def validate_entries(
        self,
        entries: list[FileEntry],
        operation: str,
        *,
        job_id: str | None = None,
        archive_id: int | None = None,
    ) -> None:
        """Check every key before any SQL runs; children must match their parent archive."""
        for entry in entries:
            require_job_id(entry.job_id, operation, self.logger)
            require_archive_id(entry.archive_id, operation, self.logger)
            if job_id is not None:
                require_parent_key(entry.job_id, job_id, "job_id", operation, self.logger)
            if archive_id is not None:
                require_parent_key(entry.archive_id, archive_id, "archive_id", operation, self.logger)

    # Connection-scoped helpers, composed into larger transactions by the
    # archive and job services.

    def select_files(self, conn: sqlite3.Connection, archive_id: int, job_id: str) -> list[FileEntry]:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE ARCHIVE_ID = ? AND JOB_ID = ? ORDER BY ID",
            (archive_id, job_id),
        ).fetchall()
        return [_row_to_file(row) for row in rows]

    def insert_rows(self, conn: sqlite3.Connection, entries: list[FileEntry]) -> None:
        for entry in entries:
            if entry.file_state not in FILE_STATES:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "unexpected_file_state",
                    job_id=entry.job_id,
                    archive_id=entry.archive_id,
                    file_state=entry.file_state.value,
                )
            cursor = conn.execute(
                f"""
                INSERT INTO {TABLE_NAME}(ARCHIVE_ID, ARCHIVE_ENTRY_PATH, FILE_STATE, JOB_ID, PATH, FILE_SIZE)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                _file_values(entry),
            )
            entry.id = cursor.lastrowid

    def delete_rows_for_job(self, conn: sqlite3.Connection, job_id: str) -> int:
        cursor = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE JOB_ID = ?", (job_id,))
        return cursor.rowcount

    def delete_rows_for_archive(self, conn: sqlite3.Connection, archive_id: int, job_id: str) -> int:
        cursor = conn.execute(
            f"DELETE FROM {TABLE_NAME} WHERE ARCHIVE_ID = ? AND JOB_ID = ?",
            (archive_id, job_id),
        )
        return cursor.rowcount

    # Public operations, one connection each.

    def get_files(self, archive_id: int, job_id: str) -> list[FileEntry]:
        archive_id = require_archive_id(archive_id, "get_files", self.logger)
        job_id = require_job_id(job_id, "get_files", self.logger)
        started = time.monotonic()
        try:
            with self.database.connection() as conn:
                files = self.select_files(conn, archive_id, job_id)
        except (sqlite3.Error, *DECODE_ERRORS) as exc:
            self.database.log_store_error("get_files", exc, job_id=job_id, archive_id=archive_id)
            return []
        self.database.log_rows("get_files", len(files), elapsed_ms(started), job_id=job_id, archive_id=archive_id)
        return files

    def insert_file(self, entry: FileEntry) -> bool:
        return self.insert_files([entry])

    def insert_files(self, entries: list[FileEntry]) -> bool:
        if not entries:
            return True
        self.validate_entries(entries, "insert_files")
        try:
            with self.database.transaction() as conn:
                self.insert_rows(conn, entries)
        except sqlite3.Error as exc:
            self.database.log_store_error("insert_files", exc, count=len(entries))
            return False
        return True

    def update_file(self, entry: FileEntry) -> bool:
        return self.update_files([entry])

    def update_files(self, entries: list[FileEntry]) -> bool:
        for entry in entries:
            if entry.id is None:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "invalid_identifier",
                    operation="update_files",
                    field="id",
                    value=repr(entry.id),
                )
                return False
            require_job_id(entry.job_id, "update_files", self.logger)
            require_archive_id(entry.archive_id, "update_files", self.logger)
        try:
            with self.database.transaction() as conn:
                for entry in entries:
                    conn.execute(
                        f"""
                        UPDATE {TABLE_NAME}
                        SET ARCHIVE_ID = ?, ARCHIVE_ENTRY_PATH = ?, FILE_STATE = ?, JOB_ID = ?,
                            PATH = ?, FILE_SIZE = ?
                        WHERE ID = ?
                        """,
                        (*_file_values(entry), entry.id),
                    )
        except sqlite3.Error as exc:
            self.database.log_store_error("update_files", exc, count=len(entries))
            return False
        return True

    def delete_files(self, job_id: str) -> int:
        job_id = require_job_id(job_id, "delete_files", self.logger)
        try:
            with self.database.transaction() as conn:
                return self.delete_rows_for_job(conn, job_id)
        except sqlite3.Error as exc:
            self.database.log_store_error("delete_files", exc, job_id=job_id)
            raise StoreError(f"delete of files for job {job_id} failed: {exc}") from exc

    def delete_archive_files(self, archive_id: int, job_id: str) -> int:
        archive_id = require_archive_id(archive_id, "delete_archive_files", self.logger)
        job_id = require_job_id(job_id, "delete_archive_files", self.logger)
        try:
            with self.database.transaction() as conn:
                return self.delete_rows_for_archive(conn, archive_id, job_id)
        except sqlite3.Error as exc:
            self.database.log_store_error("delete_archive_files", exc, job_id=job_id, archive_id=archive_id)
            raise StoreError(
                f"delete of files for archive {archive_id} of job {job_id} failed: {exc}"
            ) from exc
