import unittest

from bundlemetrics.derivation import build_metrics, compression_percentage, elapsed_time, total_compressed_size
from bundlemetrics.models import InvalidMetricsError, Job
from bundlemetrics.states import JobState

from support import make_job


class CompressionPercentageTest(unittest.TestCase):
    def test_non_positive_sizes(self) -> None:
        self.assertEqual(compression_percentage(0, 0), 0.0)
        self.assertEqual(compression_percentage(1000, 0), 0.0)
        self.assertEqual(compression_percentage(0, 500), 0.0)
        self.assertEqual(compression_percentage(-5, 500), 0.0)

    def test_fraction_saved(self) -> None:
        self.assertAlmostEqual(compression_percentage(1000, 900), 0.10)
        self.assertAlmostEqual(compression_percentage(1000, 250), 0.75)

    def test_expansion_is_negative(self) -> None:
        self.assertAlmostEqual(compression_percentage(1000, 1100), -0.10)


class BuildMetricsTest(unittest.TestCase):
    def test_elapsed_time_not_clamped(self) -> None:
        self.assertEqual(elapsed_time(Job(job_id="A", start_time=1_000, end_time=4_500)), 3_500)
        self.assertEqual(elapsed_time(Job(job_id="A", start_time=5_000, end_time=0)), -5_000)

    def test_build_from_materialized_job(self) -> None:
        job = make_job("JOB1", archives=2, files_per_archive=3, file_size=100, archive_size=150)
        self.assertEqual(total_compressed_size(job), 300)

        metrics = build_metrics(job)
        self.assertEqual(metrics.job_id, "JOB1")
        self.assertIs(metrics.job_state, JobState.COMPLETE)
        self.assertEqual(metrics.total_size, 600)
        self.assertEqual(metrics.total_compressed_size, 300)
        self.assertAlmostEqual(metrics.compression_percentage, 0.5)
        self.assertEqual(metrics.elapsed_time, 4_000)
        self.assertEqual(metrics.num_archives, 2)
        self.assertEqual(metrics.num_files_complete, 6)
        self.assertEqual(metrics.user_name, "jdoe")

    def test_job_without_archives(self) -> None:
        job = make_job("JOB2", state=JobState.INVALID_REQUEST, archives=0)
        job.total_size = 500
        metrics = build_metrics(job)
        self.assertEqual(metrics.total_compressed_size, 0)
        self.assertEqual(metrics.compression_percentage, 0.0)

    def test_blank_job_id(self) -> None:
        with self.assertRaises(InvalidMetricsError):
            build_metrics(Job(job_id=" "))


if __name__ == "__main__":
    unittest.main()
