from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum

from .app_logging import log_with_fields
from .config import CollectorConfig
from .derivation import build_metrics
from .states import is_terminal
from .store import InsertOutcome, JobService, MetricsService
from .utils import elapsed_ms


class ReconcileOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    IN_FLIGHT = "in_flight"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(slots=True)
class SweepSummary:
    candidates: int = 0
    inserted: int = 0
    duplicates: int = 0
    in_flight: int = 0
    missing: int = 0
    failed: int = 0
    timed_out: int = 0
    cancelled: bool = False

    def record(self, outcome: ReconcileOutcome) -> None:
        if outcome is ReconcileOutcome.INSERTED:
            self.inserted += 1
        elif outcome is ReconcileOutcome.DUPLICATE:
            self.duplicates += 1
        elif outcome is ReconcileOutcome.IN_FLIGHT:
            self.in_flight += 1
        elif outcome is ReconcileOutcome.NOT_FOUND:
            self.missing += 1
        elif outcome is ReconcileOutcome.FAILED:
            self.failed += 1
        elif outcome is ReconcileOutcome.TIMED_OUT:
            self.timed_out += 1
        else:
            self.cancelled = True


class MetricsCollector:
    """Writes one metrics record for every finished job that lacks one.

    The work list of a sweep is the set difference between job ids and
    metrics ids; the primary key of the metrics table backs that up when two
    sweeps overlap.
    """

    def __init__(
        self,
        config: CollectorConfig,
        jobs: JobService,
        metrics: MetricsService,
        logger: logging.Logger,
    ) -> None:
        self.config = config
        self.jobs = jobs
        self.metrics = metrics
        self.logger = logger
        self._stop = threading.Event()

    def run_forever(self) -> None:
        while not self._stop.is_set():
            self.collect_metrics()
            self._stop.wait(self.config.interval_seconds)

    def run_once(self) -> None:
        self.collect_metrics()

    def cancel(self) -> None:
        """Stop the run loop and any sweep in progress before its next job."""
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def collect_metrics(self) -> None:
        try:
            self.sweep()
        except Exception as exc:
            # Called from a timer; nothing may escape.
            log_with_fields(
                self.logger,
                logging.ERROR,
                "metrics_collection_failed",
                exc_info=True,
                error=str(exc),
            )

    def pending_job_ids(self) -> list[str]:
        job_ids = self.jobs.get_job_ids()
        recorded = self.metrics.get_job_ids()
        return sorted(job_ids - recorded)

    def sweep(self) -> SweepSummary:
        started = time.monotonic()
        log_with_fields(self.logger, logging.INFO, "metrics_collection_started", workers=self.config.workers)

        summary = SweepSummary()
        work_list = self.pending_job_ids()
        summary.candidates = len(work_list)
        if not work_list:
            log_with_fields(self.logger, logging.INFO, "no_jobs_pending")
        elif self.config.workers > 1:
            self._sweep_parallel(work_list, summary)
        else:
            for job_id in work_list:
                outcome = self.reconcile_job(job_id)
                summary.record(outcome)
                if outcome is ReconcileOutcome.CANCELLED:
                    break

        log_with_fields(
            self.logger,
            logging.INFO,
            "metrics_collection_completed",
            candidates=summary.candidates,
            inserted=summary.inserted,
            duplicates=summary.duplicates,
            in_flight=summary.in_flight,
            missing=summary.missing,
            failed=summary.failed,
            timed_out=summary.timed_out,
            cancelled=summary.cancelled,
            elapsed_ms=elapsed_ms(started),
        )
        return summary

    def _sweep_parallel(self, work_list: list[str], summary: SweepSummary) -> None:
        """Reconcile jobs on a bounded pool, waiting at most the job timeout for each.

        A worker thread cannot be interrupted, so a timed-out job that already
        started keeps running and may still insert its record after the sweep
        returns; the sweep itself does not wait for it. A timed-out job that
        never started is cancelled and stays pending for the next sweep.
        """
        pool = ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="collector")
        try:
            futures = [(job_id, pool.submit(self.reconcile_job, job_id)) for job_id in work_list]
            for job_id, future in futures:
                try:
                    outcome = future.result(timeout=self.config.job_timeout_seconds)
                except FutureTimeoutError:
                    started = not future.cancel()
                    log_with_fields(
                        self.logger,
                        logging.ERROR,
                        "job_timeout",
                        job_id=job_id,
                        timeout_seconds=self.config.job_timeout_seconds,
                        still_running=started,
                    )
                    outcome = ReconcileOutcome.TIMED_OUT
                summary.record(outcome)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def reconcile_job(self, job_id: str) -> ReconcileOutcome:
        """Materialize one job and record its metrics if it has finished.

        Any failure is logged and reported as FAILED so the sweep moves on.
        """
        if self._stop.is_set():
            return ReconcileOutcome.CANCELLED
        started = time.monotonic()
        try:
            job = self.jobs.materialize_job(job_id)
            if job is None:
                log_with_fields(self.logger, logging.WARNING, "job_not_found", job_id=job_id)
                return ReconcileOutcome.NOT_FOUND

            if not is_terminal(job.state):
                log_with_fields(self.logger, logging.DEBUG, "job_in_flight", job_id=job_id, state=job.state.value)
                return ReconcileOutcome.IN_FLIGHT

            violations = job.invariant_violations()
            if violations:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "job_invariant_violation",
                    job_id=job_id,
                    violations=violations,
                )

            record = build_metrics(job)
            if record.elapsed_time < 0:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "negative_elapsed_time",
                    job_id=job_id,
                    start_time=job.start_time,
                    end_time=job.end_time,
                )
            if record.compression_percentage < 0:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "negative_compression",
                    job_id=job_id,
                    total_size=record.total_size,
                    total_compressed_size=record.total_compressed_size,
                )

            outcome = self.metrics.insert_metrics(record)
        except Exception as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "job_reconcile_failed",
                job_id=job_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ReconcileOutcome.FAILED

        if outcome is InsertOutcome.INSERTED:
            log_with_fields(
                self.logger,
                logging.INFO,
                "metrics_recorded",
                job_id=job_id,
                state=record.job_state.value,
                elapsed_time=record.elapsed_time,
                compression=record.compression_percentage_text,
                duration_ms=elapsed_ms(started),
            )
            return ReconcileOutcome.INSERTED
        if outcome is InsertOutcome.DUPLICATE:
            return ReconcileOutcome.DUPLICATE
        return ReconcileOutcome.FAILED
