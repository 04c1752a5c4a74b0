"""Pure functions that turn a materialized :class:`Job` into a metrics record."""

from __future__ import annotations

from .models import Job, JobMetrics


def elapsed_time(job: Job) -> int:
    """End minus start, in milliseconds.

    Not clamped: a job read before its end time was written yields a
    negative value, which callers report as an anomaly.
    """
    return job.end_time - job.start_time


def total_compressed_size(job: Job) -> int:
    return sum(archive.size for archive in job.archives)


def compression_percentage(total_size: int, compressed_size: int) -> float:
    """Fraction of the original size saved by compression.

    Returns 0.0 when either size is non-positive. A compressed size larger
    than the original gives a negative fraction and is returned as is.
    """
    if total_size <= 0 or compressed_size <= 0:
        return 0.0
    return (total_size - compressed_size) / total_size


def build_metrics(job: Job) -> JobMetrics:
    """Assemble the write-once record; raises InvalidMetricsError on a blank job id."""
    compressed = total_compressed_size(job)
    return JobMetrics(
        job_id=job.job_id,
        archive_type=job.archive_type,
        archive_size=job.archive_size,
        compression_percentage=compression_percentage(job.total_size, compressed),
        elapsed_time=elapsed_time(job),
        job_state=job.state,
        num_archives=job.num_archives,
        num_archives_complete=job.num_archives_complete,
        num_files=job.num_files,
        num_files_complete=job.num_files_complete,
        start_time=job.start_time,
        total_compressed_size=compressed,
        total_size=job.total_size,
        user_name=job.user_name,
    )
