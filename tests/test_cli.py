from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path
from tempfile import TemporaryDirectory
import json
import unittest
from unittest.mock import patch

from bundlemetrics.cli import build_parser, main
from bundlemetrics.collector import MetricsCollector
from bundlemetrics.states import JobState
from bundlemetrics.store import open_services

from support import make_job, quiet_logger


class CliTest(unittest.TestCase):
    def test_run_once_flag(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--config", "bundlemetrics.yaml", "run", "--once"])
        self.assertEqual(args.command, "run")
        self.assertTrue(args.once)

    def test_show_job_requires_job_id(self) -> None:
        parser = build_parser()
        with redirect_stderr(StringIO()):
            with self.assertRaises(SystemExit) as raised:
                parser.parse_args(["--config", "bundlemetrics.yaml", "show-job"])
        self.assertEqual(raised.exception.code, 2)

    def test_collect_failure_is_reported(self) -> None:
        with TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "bundlemetrics.yaml"
            config_path.write_text('database:\n  path: "./bundler.db"\nlogging:\n  level: CRITICAL\n', encoding="utf-8")
            errors = StringIO()
            with patch.object(MetricsCollector, "sweep", side_effect=RuntimeError("store exploded")):
                with redirect_stdout(StringIO()), redirect_stderr(errors):
                    self.assertEqual(main(["--config", str(config_path), "collect"]), 1)
            self.assertIn("collection failed: store exploded", errors.getvalue())

    def test_collect_show_and_purge(self) -> None:
        with TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            config_path = root / "bundlemetrics.yaml"
            config_path.write_text('database:\n  path: "./bundler.db"\nlogging:\n  level: ERROR\n', encoding="utf-8")
            argv = ["--config", str(config_path)]

            with redirect_stdout(StringIO()), redirect_stderr(StringIO()):
                self.assertEqual(main([*argv, "init-db"]), 0)

            services = open_services(root / "bundler.db", logger=quiet_logger("test_bundlemetrics_cli"))
            services.jobs.insert_job(make_job("JOB1"))
            services.jobs.insert_job(make_job("JOB2", state=JobState.IN_PROGRESS))

            output = StringIO()
            with redirect_stdout(output), redirect_stderr(StringIO()):
                self.assertEqual(main([*argv, "collect"]), 0)
            self.assertIn("Processed 2 jobs. Inserted: 1, in flight: 1", output.getvalue())
            self.assertEqual(services.metrics.get_job_ids(), {"JOB1"})

            output = StringIO()
            with redirect_stdout(output), redirect_stderr(StringIO()):
                self.assertEqual(main([*argv, "show-job", "--job-id", "JOB1"]), 0)
            text = output.getvalue()
            payload = json.loads(text[: text.index("\nmetrics:")])
            self.assertEqual(payload["job_id"], "JOB1")
            self.assertEqual(len(payload["archives"]), 2)

            with redirect_stdout(StringIO()), redirect_stderr(StringIO()):
                self.assertEqual(main([*argv, "show-job", "--job-id", "NOPE"]), 2)
                self.assertEqual(main([*argv, "purge", "--job-id", "JOB2"]), 0)
            self.assertIsNone(services.jobs.materialize_job("JOB2"))

            output = StringIO()
            with redirect_stdout(output), redirect_stderr(StringIO()):
                self.assertEqual(main([*argv, "status"]), 0)
            self.assertIn("Metrics records: 1", output.getvalue())
            self.assertIn("Jobs without metrics: 0", output.getvalue())


if __name__ == "__main__":
    unittest.main()
