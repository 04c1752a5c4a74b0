from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass

from ..app_logging import get_logger, log_with_fields
from ..models import ArchiveType, Job
from ..states import JobState
from ..utils import elapsed_ms
from .archives import ArchiveService
from .database import DECODE_ERRORS, CascadeDeleteError, Database, ordered_bounds, require_job_id

TABLE_NAME = "JOBS"

_COLUMNS = (
    "JOB_ID, ARCHIVE_SIZE, ARCHIVE_TYPE, END_TIME, NUM_ARCHIVES, NUM_ARCHIVES_COMPLETE, "
    "NUM_FILES, NUM_FILES_COMPLETE, START_TIME, JOB_STATE, TOTAL_SIZE, TOTAL_SIZE_COMPLETE, USER_NAME"
)


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        job_id=row["JOB_ID"],
        user_name=row["USER_NAME"] or "",
        archive_type=ArchiveType.from_text(row["ARCHIVE_TYPE"]),
        archive_size=int(row["ARCHIVE_SIZE"]),
        state=JobState.from_text(row["JOB_STATE"]),
        start_time=int(row["START_TIME"]),
        end_time=int(row["END_TIME"]),
        num_archives=int(row["NUM_ARCHIVES"]),
        num_archives_complete=int(row["NUM_ARCHIVES_COMPLETE"]),
        num_files=int(row["NUM_FILES"]),
        num_files_complete=int(row["NUM_FILES_COMPLETE"]),
        total_size=int(row["TOTAL_SIZE"]),
        total_size_complete=int(row["TOTAL_SIZE_COMPLETE"]),
    )


@dataclass(slots=True, frozen=True)
class CascadeDeleteResult:
    job_id: str
    files: int
    archives: int
    jobs: int

    @property
    def found(self) -> bool:
        return self.jobs > 0


class JobService:
    def __init__(
        self,
        database: Database,
        archives: ArchiveService,
        logger: logging.Logger | None = None,
    ) -> None:
        self.database = database
        self.archives = archives
        self.logger = logger or get_logger()

    def _select_ids(self, operation: str, query: str, params: tuple[object, ...] = ()) -> set[str]:
        started = time.monotonic()
        try:
            with self.database.connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            self.database.log_store_error(operation, exc)
            return set()
        job_ids = {str(row["JOB_ID"]) for row in rows}
        self.database.log_rows(operation, len(job_ids), elapsed_ms(started))
        return job_ids

    def _select_jobs(self, operation: str, query: str, params: tuple[object, ...] = ()) -> list[Job]:
        started = time.monotonic()
        try:
            with self.database.connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            self.database.log_store_error(operation, exc)
            return []
        jobs: list[Job] = []
        for row in rows:
            try:
                jobs.append(_row_to_job(row))
            except DECODE_ERRORS as exc:
                self.database.log_undecodable_row(operation, exc, job_id=row["JOB_ID"])
        self.database.log_rows(operation, len(jobs), elapsed_ms(started))
        return jobs

    def get_job_ids(self) -> set[str]:
        return self._select_ids("get_job_ids", f"SELECT JOB_ID FROM {TABLE_NAME}")

    def get_job_ids_started_before(self, time_ms: int) -> set[str]:
        """Identifiers of jobs started before ``time_ms``, for retention cleanup."""
        return self._select_ids(
            "get_job_ids_started_before",
            f"SELECT JOB_ID FROM {TABLE_NAME} WHERE START_TIME < ?",
            (time_ms,),
        )

    def get_jobs(self) -> list[Job]:
        """All job rows, newest first, without archives."""
        return self._select_jobs("get_jobs", f"SELECT {_COLUMNS} FROM {TABLE_NAME} ORDER BY START_TIME DESC")

    def get_jobs_by_date(self, start_time: int, end_time: int) -> list[Job]:
        start_time, end_time = ordered_bounds(start_time, end_time, "get_jobs_by_date", self.logger)
        return self._select_jobs(
            "get_jobs_by_date",
            f"""
            SELECT {_COLUMNS} FROM {TABLE_NAME}
            WHERE START_TIME > ? AND START_TIME < ?
            ORDER BY START_TIME DESC
            """,
            (start_time, end_time),
        )

    def get_job(self, job_id: str) -> Job | None:
        job_id = require_job_id(job_id, "get_job", self.logger)
        try:
            with self.database.connection() as conn:
                row = conn.execute(f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE JOB_ID = ?", (job_id,)).fetchone()
        except sqlite3.Error as exc:
            self.database.log_store_error("get_job", exc, job_id=job_id)
            return None
        if row is None:
            return None
        try:
            return _row_to_job(row)
        except DECODE_ERRORS as exc:
            self.database.log_undecodable_row("get_job", exc, job_id=job_id)
            return None

    def materialize_job(self, job_id: str) -> Job | None:
        """Load a job with its archives and their file entries.

        The three levels are read with separate queries inside one read
        transaction. Returns ``None`` when the job row is absent or any level
        fails to load, so a caller never sees a partial graph. A job with no
        archives is returned with an empty ``archives`` list.
        """
        job_id = require_job_id(job_id, "materialize_job", self.logger)
        started = time.monotonic()
        try:
            with self.database.snapshot() as conn:
                row = conn.execute(f"SELECT {_COLUMNS} FROM {TABLE_NAME} WHERE JOB_ID = ?", (job_id,)).fetchone()
                if row is None:
                    log_with_fields(
                        self.logger,
                        logging.DEBUG,
                        "job_not_found",
                        job_id=job_id,
                        elapsed_ms=elapsed_ms(started),
                    )
                    return None
                job = _row_to_job(row)
                job.archives = self.archives.select_materialized_archives(conn, job_id)
        except sqlite3.Error as exc:
            self.database.log_store_error("materialize_job", exc, job_id=job_id)
            return None
        except DECODE_ERRORS as exc:
            self.database.log_undecodable_row("materialize_job", exc, job_id=job_id)
            return None
        log_with_fields(
            self.logger,
            logging.DEBUG,
            "job_materialized",
            job_id=job_id,
            archives=len(job.archives),
            files=sum(len(archive.files) for archive in job.archives),
            elapsed_ms=elapsed_ms(started),
        )
        return job

    def insert_job(self, job: Job) -> bool:
        """Persist a job row with all of its archives and file entries in one transaction."""
        job_id = require_job_id(job.job_id, "insert_job", self.logger)
        self.archives.validate_archives(job.archives, "insert_job", job_id=job_id)
        try:
            with self.database.transaction() as conn:
                conn.execute(
                    f"""
                    INSERT INTO {TABLE_NAME}(
                        JOB_ID, ARCHIVE_SIZE, ARCHIVE_TYPE, END_TIME, NUM_ARCHIVES,
                        NUM_ARCHIVES_COMPLETE, NUM_FILES, NUM_FILES_COMPLETE, START_TIME,
                        JOB_STATE, TOTAL_SIZE, TOTAL_SIZE_COMPLETE, USER_NAME
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job_id,
                        job.archive_size,
                        job.archive_type.value,
                        job.end_time,
                        job.num_archives,
                        job.num_archives_complete,
                        job.num_files,
                        job.num_files_complete,
                        job.start_time,
                        job.state.value,
                        job.total_size,
                        job.total_size_complete,
                        job.user_name,
                    ),
                )
                self.archives.insert_rows(conn, job.archives)
        except sqlite3.Error as exc:
            self.database.log_store_error("insert_job", exc, job_id=job_id)
            return False
        return True

    def update_job(self, job: Job) -> bool:
        """Rewrite the mutable job columns; archives are updated separately."""
        job_id = require_job_id(job.job_id, "update_job", self.logger)
        try:
            with self.database.transaction() as conn:
                cursor = conn.execute(
                    f"""
                    UPDATE {TABLE_NAME}
                    SET JOB_STATE = ?, END_TIME = ?, NUM_ARCHIVES = ?, NUM_ARCHIVES_COMPLETE = ?,
                        NUM_FILES = ?, NUM_FILES_COMPLETE = ?, TOTAL_SIZE = ?, TOTAL_SIZE_COMPLETE = ?
                    WHERE JOB_ID = ?
                    """,
                    (
                        job.state.value,
                        job.end_time,
                        job.num_archives,
                        job.num_archives_complete,
                        job.num_files,
                        job.num_files_complete,
                        job.total_size,
                        job.total_size_complete,
                        job_id,
                    ),
                )
        except sqlite3.Error as exc:
            self.database.log_store_error("update_job", exc, job_id=job_id)
            return False
        return cursor.rowcount > 0

    def delete_job_cascade(self, job_id: str) -> CascadeDeleteResult:
        """Delete file entries, then archives, then the job row, as one unit.

        A job that does not exist is a no-op. On failure every step is rolled
        back and :class:`CascadeDeleteError` names the step that failed.
        """
        job_id = require_job_id(job_id, "delete_job_cascade", self.logger)
        started = time.monotonic()
        step = "connect"
        counts = {"files": 0, "archives": 0, "job": 0}
        try:
            with self.database.transaction() as conn:
                step = "files"
                counts["files"] = self.archives.files.delete_rows_for_job(conn, job_id)
                step = "archives"
                counts["archives"] = self.archives.delete_rows_for_job(conn, job_id)
                step = "job"
                counts["job"] = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE JOB_ID = ?", (job_id,)).rowcount
                step = "commit"
        except sqlite3.Error as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "cascade_delete_failed",
                job_id=job_id,
                step=step,
                error=str(exc),
            )
            raise CascadeDeleteError(job_id, step, str(exc)) from exc

        result = CascadeDeleteResult(
            job_id=job_id,
            files=counts["files"],
            archives=counts["archives"],
            jobs=counts["job"],
        )
        log_with_fields(
            self.logger,
            logging.INFO if result.found else logging.DEBUG,
            "job_deleted" if result.found else "job_delete_noop",
            job_id=job_id,
            files=result.files,
            archives=result.archives,
            elapsed_ms=elapsed_ms(started),
        )
        return result

    def summary_counts(self) -> dict[str, int]:
        output = {state.value: 0 for state in JobState}
        try:
            with self.database.connection() as conn:
                rows = conn.execute(
                    f"SELECT JOB_STATE, COUNT(*) AS count FROM {TABLE_NAME} GROUP BY JOB_STATE"
                ).fetchall()
        except sqlite3.Error as exc:
            self.database.log_store_error("summary_counts", exc)
            return output
        for row in rows:
            try:
                state = JobState.from_text(row["JOB_STATE"])
            except DECODE_ERRORS:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "unexpected_state",
                    operation="summary_counts",
                    state=row["JOB_STATE"],
                    count=int(row["count"]),
                )
                continue
            output[state.value] += int(row["count"])
        return output
