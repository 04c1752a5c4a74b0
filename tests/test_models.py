import unittest

from bundlemetrics.models import (
    Archive,
    ArchiveType,
    FileEntry,
    InvalidMetricsError,
    Job,
    JobMetrics,
    UnknownArchiveTypeError,
)
from bundlemetrics.states import JobState


class ArchiveTypeTest(unittest.TestCase):
    def test_from_text(self) -> None:
        self.assertIs(ArchiveType.from_text("gz"), ArchiveType.GZIP)
        self.assertIs(ArchiveType.from_text("GZIP"), ArchiveType.GZIP)
        self.assertIs(ArchiveType.from_text("Zip"), ArchiveType.ZIP)
        with self.assertRaises(UnknownArchiveTypeError):
            ArchiveType.from_text("rar")


class ArchiveTest(unittest.TestCase):
    def test_complete_rolls_up_files(self) -> None:
        archive = Archive(job_id="JOB1", archive_id=0)
        archive.add(FileEntry(job_id="JOB1", archive_id=0, file_path="/a", size=10))
        archive.add(FileEntry(job_id="JOB1", archive_id=0, file_path="/b", size=32))
        archive.complete()
        self.assertEqual(archive.num_files, 2)
        self.assertEqual(archive.size, 42)

    def test_filenames(self) -> None:
        archive = Archive(
            job_id="JOB1",
            archive_id=0,
            archive_path="/data/out/JOB1_0.zip",
            hash_file="/data/out/JOB1_0.sha256",
        )
        self.assertEqual(archive.archive_filename, "JOB1_0.zip")
        self.assertEqual(archive.hash_filename, "JOB1_0.sha256")
        self.assertEqual(Archive(job_id="JOB1", archive_id=1, archive_path="  ").archive_filename, "")
        self.assertEqual(Archive(job_id="JOB1", archive_id=1).hash_filename, "")


class JobTest(unittest.TestCase):
    def test_get_archive(self) -> None:
        job = Job(job_id="JOB1")
        job.add_archive(Archive(job_id="JOB1", archive_id=3))
        job.add_archive(Archive(job_id="JOB1", archive_id=7))
        archive = job.get_archive(7)
        assert archive is not None
        self.assertEqual(archive.archive_id, 7)
        self.assertIsNone(job.get_archive(4))

    def test_invariant_violations(self) -> None:
        job = Job(
            job_id="JOB1",
            state=JobState.COMPLETE,
            num_archives=2,
            num_archives_complete=2,
            num_files=5,
            num_files_complete=5,
            total_size=100,
            total_size_complete=100,
            end_time=10,
        )
        self.assertEqual(job.invariant_violations(), [])

        job.num_files_complete = 6
        job.total_size_complete = 101
        job.state = JobState.COMPRESSING
        problems = job.invariant_violations()
        self.assertEqual(len(problems), 3)
        self.assertIn("end_time set while state is compressing", problems)


class JobMetricsTest(unittest.TestCase):
    def test_blank_job_id_rejected(self) -> None:
        for job_id in ("", "   ", None):
            with self.assertRaises(InvalidMetricsError):
                JobMetrics(job_id=job_id)  # type: ignore[arg-type]

    def test_text_properties(self) -> None:
        metrics = JobMetrics(job_id="JOB1", compression_percentage=0.1234, start_time=1_234)
        self.assertEqual(metrics.compression_percentage_text, "12.34%")
        self.assertEqual(metrics.start_time_text, "1970/01/01 00:00:01:234")


if __name__ == "__main__":
    unittest.main()
