from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys

from .app_logging import get_logger, log_with_fields, setup_logger
from .collector import MetricsCollector
from .config import AppConfig, ensure_local_paths, load_config
from .states import JobState
from .store import CascadeDeleteError, InvalidIdentifierError, Services, open_services
from .utils import format_millis, human_readable_size


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bundlemetrics", description="Bundler job metrics collector")
    parser.add_argument("--config", required=True, help="Path to bundlemetrics YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database schema")
    subparsers.add_parser("collect", help="Run exactly one metrics collection pass")

    run_parser = subparsers.add_parser("run", help="Run the scheduled collection loop")
    run_parser.add_argument(
        "--once",
        action="store_true",
        help="Run one collection pass, then exit",
    )
    subparsers.add_parser("status", help="Show job and metrics counts")

    show = subparsers.add_parser("show-job", help="Print a materialized job as JSON")
    show.add_argument("--job-id", required=True, help="Job id to show")

    purge = subparsers.add_parser("purge", help="Delete a job with its archives and files")
    purge.add_argument("--job-id", required=True, help="Job id to delete")
    return parser


def _open_runtime(config: AppConfig) -> tuple[Services, MetricsCollector]:
    ensure_local_paths(config)
    logger = setup_logger(config.logging.path, config.logging.level)
    services = open_services(config.database.path, timeout_seconds=config.database.timeout_seconds, logger=logger)
    services.database.init_schema()
    collector = MetricsCollector(
        config=config.collector,
        jobs=services.jobs,
        metrics=services.metrics,
        logger=logger,
    )
    return services, collector


def cmd_init_db(config: AppConfig) -> int:
    services, _ = _open_runtime(config)
    print(f"Database initialized at {services.database.db_path}")
    return 0


def cmd_collect(config: AppConfig) -> int:
    _, collector = _open_runtime(config)
    try:
        summary = collector.sweep()
    except Exception as exc:
        log_with_fields(get_logger(), logging.ERROR, "metrics_collection_failed", exc_info=True, error=str(exc))
        print(f"collection failed: {exc}", file=sys.stderr)
        return 1
    print(
        f"Processed {summary.candidates} jobs. "
        f"Inserted: {summary.inserted}, in flight: {summary.in_flight}, "
        f"missing: {summary.missing}, duplicates: {summary.duplicates}, failed: {summary.failed}, "
        f"timed out: {summary.timed_out}."
    )
    return 0


def cmd_run(config: AppConfig, *, once: bool = False) -> int:
    _, collector = _open_runtime(config)
    try:
        if once:
            collector.run_once()
            return 0
        collector.run_forever()
    except KeyboardInterrupt:
        collector.cancel()
        log_with_fields(get_logger(), logging.INFO, "shutdown", reason="keyboard_interrupt")
    return 0


def cmd_status(config: AppConfig) -> int:
    services, collector = _open_runtime(config)
    counts = services.jobs.summary_counts()
    print("Jobs:")
    for state in JobState:
        print(f"  {state.value:16} {counts.get(state.value, 0)}")
    print(f"\nMetrics records: {services.metrics.count()}")
    print(f"Jobs without metrics: {len(collector.pending_job_ids())}")
    hosts = services.archives.get_unique_hosts()
    print(f"Hosts: {', '.join(hosts) if hosts else '(none)'}")
    return 0


def cmd_show_job(config: AppConfig, job_id: str) -> int:
    services, _ = _open_runtime(config)
    try:
        job = services.jobs.materialize_job(job_id)
    except InvalidIdentifierError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    if job is None:
        print(f"job not found: {job_id}", file=sys.stderr)
        return 2
    payload = dataclasses.asdict(job)
    payload["start_time_text"] = format_millis(job.start_time)
    payload["total_size_text"] = human_readable_size(job.total_size)
    print(json.dumps(payload, indent=2, sort_keys=True))
    metrics = services.metrics.get_metrics(job_id)
    if metrics is not None:
        print(
            f"metrics: elapsed={metrics.elapsed_time} ms "
            f"compression={metrics.compression_percentage_text} started={metrics.start_time_text}"
        )
    return 0


def cmd_purge(config: AppConfig, job_id: str) -> int:
    services, _ = _open_runtime(config)
    try:
        result = services.jobs.delete_job_cascade(job_id)
    except InvalidIdentifierError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except CascadeDeleteError as exc:
        print(f"purge failed at step {exc.step}: {exc.reason}", file=sys.stderr)
        return 1
    if not result.found:
        print(f"job not found: {job_id}")
        return 0
    print(f"deleted {job_id}: {result.archives} archives, {result.files} files")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    if args.command == "init-db":
        return cmd_init_db(config)
    if args.command == "collect":
        return cmd_collect(config)
    if args.command == "run":
        return cmd_run(config, once=bool(args.once))
    if args.command == "status":
        return cmd_status(config)
    if args.command == "show-job":
        return cmd_show_job(config, args.job_id)
    if args.command == "purge":
        return cmd_purge(config, args.job_id)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
