from io import StringIO
import json
import logging
import unittest

from bundlemetrics.app_logging import JsonFormatter, log_with_fields


class AppLoggingTest(unittest.TestCase):
    def test_json_record_with_fields_and_exception(self) -> None:
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JsonFormatter())
        logger = logging.getLogger("test_bundlemetrics_logging")
        logger.handlers.clear()
        logger.addHandler(handler)
        logger.propagate = False
        logger.setLevel(logging.DEBUG)

        log_with_fields(logger, logging.INFO, "metrics_recorded", job_id="JOB1", elapsed_time=42)
        try:
            raise RuntimeError("disk gone")
        except RuntimeError:
            log_with_fields(logger, logging.ERROR, "metrics_collection_failed", exc_info=True, error="disk gone")

        first, second = (json.loads(line) for line in stream.getvalue().splitlines())
        self.assertEqual(first["message"], "metrics_recorded")
        self.assertEqual(first["job_id"], "JOB1")
        self.assertEqual(first["elapsed_time"], 42)
        self.assertNotIn("exception", first)
        self.assertEqual(second["level"], "ERROR")
        self.assertEqual(second["error"], "disk gone")
        self.assertIn("RuntimeError: disk gone", second["exception"])


if __name__ == "__main__":
    unittest.main()
