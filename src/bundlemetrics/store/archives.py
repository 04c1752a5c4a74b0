from __future__ import annotations

import logging
import sqlite3
import time

from ..app_logging import get_logger
from ..models import Archive, ArchiveType
from ..states import JobState
from ..utils import elapsed_ms
from .database import (
    DECODE_ERRORS,
    Database,
    StoreError,
    require_archive_id,
    require_job_id,
    require_parent_key,
)
from .files import FileService

TABLE_NAME = "ARCHIVE_JOBS"

_COLUMNS = (
    "ID, ARCHIVE_FILE, ARCHIVE_ID, ARCHIVE_STATE, ARCHIVE_TYPE, ARCHIVE_URL, END_TIME, "
    "HASH_FILE, HASH_FILE_URL, HOST_NAME, JOB_ID, NUM_FILES, SERVER_NAME, ARCHIVE_SIZE, START_TIME"
)


def _row_to_archive(row: sqlite3.Row) -> Archive:
    return Archive(
        id=int(row["ID"]),
        job_id=row["JOB_ID"],
        archive_id=int(row["ARCHIVE_ID"]),
        archive_type=ArchiveType.from_text(row["ARCHIVE_TYPE"]),
        archive_state=JobState.from_text(row["ARCHIVE_STATE"]),
        archive_path=row["ARCHIVE_FILE"],
        archive_url=row["ARCHIVE_URL"],
        hash_file=row["HASH_FILE"],
        hash_file_url=row["HASH_FILE_URL"],
        host_name=row["HOST_NAME"],
        server_name=row["SERVER_NAME"] or "",
        num_files=int(row["NUM_FILES"]),
        size=int(row["ARCHIVE_SIZE"]),
        start_time=int(row["START_TIME"]),
        end_time=int(row["END_TIME"]),
    )


class ArchiveService:
    def __init__(
        self,
        database: Database,
        files: FileService,
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.files = files
        self.logger = logger or get_logger()

    def select_archives(self, conn: sqlite3.Connection, job_id: str) -> list[Archive]:
        rows = conn.execute(
            f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE JOB_ID = ? ORDER BY ARCHIVE_ID",
            (job_id,),
        ).fetchall()
        return [_row_to_archive(row) for row in rows]

    def select_materialized_archives(self, conn: sqlite3.Connection, job_id: str) -> list[Archive]:
        archives = self.select_archives(conn, job_id)
        for archive in archives:
            archive.files = self.files.select_files(conn, archive.archive_id, job_id)
        return archives

    def validate_archives(self, archives: list[Archive], operation: str, *, job_id: str | None = None) -> None:
        """Check archive and file keys before any SQL runs.

        Every file must carry the job and archive id of the archive holding it,
        and every archive the id of its parent job when one is given.
        """
        for archive in archives:
            require_job_id(archive.job_id, operation, self.logger)
            require_archive_id(archive.archive_id, operation, self.logger)
            if job_id is not None:
                require_parent_key(archive.job_id, job_id, "job_id", operation, self.logger)
            self.files.validate_entries(
                archive.files,
                operation,
                job_id=archive.job_id,
                archive_id=archive.archive_id,
            )

    def insert_rows(self, conn: sqlite3.Connection, archives: list[Archive]) -> None:
        for archive in archives:
            cursor = conn.execute(
                f"""
                INSERT INTO {TABLE_NAME}(
                    ARCHIVE_FILE, ARCHIVE_ID, ARCHIVE_STATE, ARCHIVE_TYPE, ARCHIVE_URL, END_TIME,
                    HASH_FILE, HASH_FILE_URL, HOST_NAME, JOB_ID, NUM_FILES, SERVER_NAME,
                    ARCHIVE_SIZE, START_TIME
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    archive.archive_path,
                    archive.archive_id,
                    archive.archive_state.value,
                    archive.archive_type.value,
                    archive.archive_url,
                    archive.end_time,
                    archive.hash_file,
                    archive.hash_file_url,
                    archive.host_name,
                    archive.job_id,
                    archive.num_files,
                    archive.server_name,
                    archive.size,
                    archive.start_time,
                ),
            )
            archive.id = cursor.lastrowid
            self.files.insert_rows(conn, archive.files)

    def delete_rows_for_job(self, conn: sqlite3.Connection, job_id: str) -> int:
        cursor = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE JOB_ID = ?", (job_id,))
        return cursor.rowcount

    def get_archives(self, job_id: str) -> list[Archive]:
        """Archive rows for a job, ordered by archive id, without their files."""
        job_id = require_job_id(job_id, "get_archives", self.logger)
        started = time.monotonic()
        try:
            with self.database.connection() as conn:
                archives = self.select_archives(conn, job_id)
        except (sqlite3.Error, *DECODE_ERRORS) as exc:
            self.database.log_store_error("get_archives", exc, job_id=job_id)
            return []
        self.database.log_rows("get_archives", len(archives), elapsed_ms(started), job_id=job_id)
        return archives

    def get_materialized_archives(self, job_id: str) -> list[Archive]:
        job_id = require_job_id(job_id, "get_materialized_archives", self.logger)
        started = time.monotonic()
        try:
            with self.database.snapshot() as conn:
                archives = self.select_materialized_archives(conn, job_id)
        except (sqlite3.Error, *DECODE_ERRORS) as exc:
            self.database.log_store_error("get_materialized_archives", exc, job_id=job_id)
            return []
        self.database.log_rows("get_materialized_archives", len(archives), elapsed_ms(started), job_id=job_id)
        return archives

    def get_materialized_archive(self, archive_id: int, job_id: str) -> Archive | None:
        archive_id = require_archive_id(archive_id, "get_materialized_archive", self.logger)
        job_id = require_job_id(job_id, "get_materialized_archive", self.logger)
        try:
            with self.database.snapshot() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE JOB_ID = ? AND ARCHIVE_ID = ?",
                    (job_id, archive_id),
                ).fetchone()
                if row is None:
                    return None
                archive = _row_to_archive(row)
                archive.files = self.files.select_files(conn, archive_id, job_id)
        except (sqlite3.Error, *DECODE_ERRORS) as exc:
            self.database.log_store_error("get_materialized_archive", exc, job_id=job_id, archive_id=archive_id)
            return None
        return archive

    def get_unique_hosts(self) -> list[str]:
        started = time.monotonic()
        try:
            with self.database.connection() as conn:
                rows = conn.execute(
                    f"SELECT DISTINCT HOST_NAME FROM {TABLE_NAME} WHERE HOST_NAME IS NOT NULL ORDER BY HOST_NAME"
                ).fetchall()
        except sqlite3.Error as exc:
            self.database.log_store_error("get_unique_hosts", exc)
            return []
        hosts = [str(row["HOST_NAME"]) for row in rows]
        self.database.log_rows("get_unique_hosts", len(hosts), elapsed_ms(started))
        return hosts

    def insert_archive(self, archive: Archive) -> bool:
        """Persist an archive row together with its file entries."""
        self.validate_archives([archive], "insert_archive")
        try:
            with self.database.transaction() as conn:
                self.insert_rows(conn, [archive])
        except sqlite3.Error as exc:
            self.database.log_store_error(
                "insert_archive", exc, job_id=archive.job_id, archive_id=archive.archive_id
            )
            return False
        return True

    def update_archive(self, archive: Archive) -> bool:
        require_job_id(archive.job_id, "update_archive", self.logger)
        require_archive_id(archive.archive_id, "update_archive", self.logger)
        try:
            with self.database.transaction() as conn:
                cursor = conn.execute(
                    f"""
                    UPDATE {TABLE_NAME}
                    SET ARCHIVE_FILE = ?, ARCHIVE_STATE = ?, ARCHIVE_TYPE = ?, ARCHIVE_URL = ?,
                        END_TIME = ?, HASH_FILE = ?, HASH_FILE_URL = ?, HOST_NAME = ?,
                        NUM_FILES = ?, SERVER_NAME = ?, ARCHIVE_SIZE = ?, START_TIME = ?
                    WHERE ARCHIVE_ID = ? AND JOB_ID = ?
                    """,
                    (
                        archive.archive_path,
                        archive.archive_state.value,
                        archive.archive_type.value,
                        archive.archive_url,
                        archive.end_time,
                        archive.hash_file,
                        archive.hash_file_url,
                        archive.host_name,
                        archive.num_files,
                        archive.server_name,
                        archive.size,
                        archive.start_time,
                        archive.archive_id,
                        archive.job_id,
                    ),
                )
        except sqlite3.Error as exc:
            self.database.log_store_error(
                "update_archive", exc, job_id=archive.job_id, archive_id=archive.archive_id
            )
            return False
        return cursor.rowcount > 0

    def delete_archive(self, archive_id: int, job_id: str) -> int:
        """Delete one archive and its file entries; returns archive rows removed."""
        archive_id = require_archive_id(archive_id, "delete_archive", self.logger)
        job_id = require_job_id(job_id, "delete_archive", self.logger)
        try:
            with self.database.transaction() as conn:
                self.files.delete_rows_for_archive(conn, archive_id, job_id)
                cursor = conn.execute(
                    f"DELETE FROM {TABLE_NAME} WHERE ARCHIVE_ID = ? AND JOB_ID = ?",
                    (archive_id, job_id),
                )
                return cursor.rowcount
        except sqlite3.Error as exc:
            self.database.log_store_error("delete_archive", exc, job_id=job_id, archive_id=archive_id)
            raise StoreError(f"delete of archive {archive_id} of job {job_id} failed: {exc}") from exc
