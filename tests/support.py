from __future__ import annotations

from pathlib import Path
import logging

from bundlemetrics.models import Archive, ArchiveType, FileEntry, Job
from bundlemetrics.states import JobState
from bundlemetrics.store import Services, open_services


def quiet_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


def open_test_services(root: Path, logger: logging.Logger) -> Services:
    services = open_services(root / "bundler.db", timeout_seconds=10.0, logger=logger)
    services.database.init_schema()
    return services


def make_job(
    job_id: str,
    *,
    state: JobState = JobState.COMPLETE,
    archives: int = 2,
    files_per_archive: int = 3,
    file_size: int = 100,
    archive_size: int = 80,
    start_time: int = 1_000,
    end_time: int = 5_000,
    host_name: str | None = "bundler-01",
) -> Job:
    job = Job(
        job_id=job_id,
        user_name="jdoe",
        archive_type=ArchiveType.ZIP,
        archive_size=1_000_000,
        state=state,
        start_time=start_time,
        end_time=end_time,
    )
    for archive_id in range(archives):
        archive = Archive(
            job_id=job_id,
            archive_id=archive_id,
            archive_type=ArchiveType.ZIP,
            archive_state=state,
            archive_path=f"/data/out/{job_id}_{archive_id}.zip",
            hash_file=f"/data/out/{job_id}_{archive_id}.sha256",
            host_name=host_name,
            start_time=start_time,
            end_time=end_time,
        )
        for index in range(files_per_archive):
            archive.add(
                FileEntry(
                    job_id=job_id,
                    archive_id=archive_id,
                    file_path=f"/data/in/{job_id}/{archive_id}/file{index}.dat",
                    entry_path=f"file{index}.dat",
                    size=file_size,
                    file_state=JobState.COMPLETE if state is JobState.COMPLETE else JobState.NOT_STARTED,
                )
            )
        archive.num_files = len(archive.files)
        archive.size = archive_size
        job.add_archive(archive)

    job.num_archives = archives
    job.num_files = archives * files_per_archive
    job.total_size = job.num_files * file_size
    if state is JobState.COMPLETE:
        job.num_archives_complete = job.num_archives
        job.num_files_complete = job.num_files
        job.total_size_complete = job.total_size
    return job
