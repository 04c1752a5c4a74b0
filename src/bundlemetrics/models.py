from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath

from .states import JobState, is_terminal
from .utils import format_millis


class UnknownArchiveTypeError(ValueError):
    pass


class InvalidMetricsError(ValueError):
    pass


class ArchiveType(str, Enum):
    ZIP = "zip"
    TAR = "tar"
    GZIP = "gz"
    BZIP2 = "bz2"

    @classmethod
    def from_text(cls, text: str | None) -> ArchiveType:
        """Decode a wire token (``gz``) or a member name (``GZIP``)."""
        if text is not None:
            token = str(text).strip()
            for member in cls:
                if token.lower() == member.value or token.upper() == member.name:
                    return member
        raise UnknownArchiveTypeError(f"Unknown archive type: {text!r}")


@dataclass(slots=True)
class FileEntry:
    job_id: str
    archive_id: int
    file_path: str
    entry_path: str = ""
    size: int = 0
    file_state: JobState = JobState.NOT_STARTED
    id: int | None = None


@dataclass(slots=True)
class Archive:
    job_id: str
    archive_id: int
    archive_type: ArchiveType = ArchiveType.ZIP
    archive_state: JobState = JobState.NOT_STARTED
    archive_path: str | None = None
    archive_url: str | None = None
    hash_file: str | None = None
    hash_file_url: str | None = None
    host_name: str | None = None
    server_name: str = ""
    num_files: int = 0
    size: int = 0
    start_time: int = 0
    end_time: int = 0
    files: list[FileEntry] = field(default_factory=list)
    id: int | None = None

    def add(self, entry: FileEntry) -> None:
        self.files.append(entry)

    def complete(self) -> None:
        """Finalize the file list: roll child sizes and count up into the archive."""
        self.num_files = len(self.files)
        self.size = sum(entry.size for entry in self.files)

    @property
    def archive_filename(self) -> str:
        if not self.archive_path or not self.archive_path.strip():
            return ""
        return PurePath(self.archive_path).name

    @property
    def hash_filename(self) -> str:
        if not self.hash_file or not self.hash_file.strip():
            return ""
        return PurePath(self.hash_file).name


@dataclass(slots=True)
class Job:
    job_id: str
    user_name: str = ""
    archive_type: ArchiveType = ArchiveType.ZIP
    archive_size: int = 0
    state: JobState = JobState.NOT_STARTED
    start_time: int = 0
    end_time: int = 0
    num_archives: int = 0
    num_archives_complete: int = 0
    num_files: int = 0
    num_files_complete: int = 0
    total_size: int = 0
    total_size_complete: int = 0
    archives: list[Archive] = field(default_factory=list)

    def add_archive(self, archive: Archive) -> None:
        self.archives.append(archive)

    def get_archive(self, archive_id: int) -> Archive | None:
        for archive in self.archives:
            if archive.archive_id == archive_id:
                return archive
        return None

    def invariant_violations(self) -> list[str]:
        problems: list[str] = []
        if self.num_archives_complete > self.num_archives:
            problems.append(
                f"num_archives_complete ({self.num_archives_complete}) > num_archives ({self.num_archives})"
            )
        if self.num_files_complete > self.num_files:
            problems.append(f"num_files_complete ({self.num_files_complete}) > num_files ({self.num_files})")
        if self.total_size_complete > self.total_size:
            problems.append(
                f"total_size_complete ({self.total_size_complete}) > total_size ({self.total_size})"
            )
        if self.end_time != 0 and not is_terminal(self.state):
            problems.append(f"end_time set while state is {self.state.value}")
        return problems


@dataclass(slots=True, frozen=True)
class JobMetrics:
    """Write-once performance summary for a finished job.

    Construction fails with :class:`InvalidMetricsError` when ``job_id`` is
    missing or blank, so an invalid record can never reach the store.
    """

    job_id: str
    archive_type: ArchiveType = ArchiveType.ZIP
    archive_size: int = 0
    compression_percentage: float = 0.0
    elapsed_time: int = 0
    job_state: JobState = JobState.NOT_STARTED
    num_archives: int = 0
    num_archives_complete: int = 0
    num_files: int = 0
    num_files_complete: int = 0
    start_time: int = 0
    total_compressed_size: int = 0
    total_size: int = 0
    user_name: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.job_id, str) or not self.job_id.strip():
            raise InvalidMetricsError(f"Invalid value for job_id: {self.job_id!r}")

    @property
    def compression_percentage_text(self) -> str:
        return f"{self.compression_percentage:.2%}"

    @property
    def start_time_text(self) -> str:
        return format_millis(self.start_time)
